"""Кеш HTML-документа WhatsApp Web, позволяющий закрепить версию клиента."""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

import anyio

from wabridge.config import CONFIG
from wabridge.exceptions import VersionResolveError

logger = logging.getLogger(__name__)

# manifest-2.2412.54.json -> 2.2412.54
_MANIFEST_VERSION_RE = re.compile(r'manifest-([\d.]+)\.json')


class WebCache(ABC):
	"""Хранилище версий index.html WhatsApp Web."""

	@abstractmethod
	async def resolve(self, version: str) -> str | None:
		"""Вернуть HTML запрошенной версии или None, если его нет."""

	@abstractmethod
	async def persist(self, index_html: str) -> str | None:
		"""Сохранить загруженный index.html, вернуть извлечённую версию."""


class NoWebCache(WebCache):
	async def resolve(self, version: str) -> str | None:
		return None

	async def persist(self, index_html: str) -> str | None:
		return None


class LocalWebCache(WebCache):
	"""Версии лежат файлами `<path>/<version>.html`.

	strict=True превращает промах кеша в VersionResolveError вместо загрузки актуальной версии.
	"""

	def __init__(self, path: str | Path | None = None, strict: bool = False):
		self.path = Path(path) if path is not None else CONFIG.WABRIDGE_CACHE_DIR
		self.strict = strict

	def __repr__(self) -> str:
		return f'LocalWebCache(path={self.path}, strict={self.strict})'

	async def resolve(self, version: str) -> str | None:
		file_path = anyio.Path(self.path / f'{version}.html')
		try:
			return await file_path.read_text(encoding='utf-8')
		except OSError:
			if self.strict:
				raise VersionResolveError(f"Couldn't load version {version} from the cache") from None
			logger.debug(f'📦 WhatsApp Web {version} is not cached in {self.path}, the live version will be used')
			return None

	async def persist(self, index_html: str) -> str | None:
		match = _MANIFEST_VERSION_RE.search(index_html)
		if not match:
			logger.debug('📦 No manifest version found in WhatsApp Web index, nothing cached')
			return None

		version = match.group(1).strip('.')
		await anyio.Path(self.path).mkdir(parents=True, exist_ok=True)
		await anyio.Path(self.path / f'{version}.html').write_text(index_html, encoding='utf-8')
		logger.debug(f'📦 Cached WhatsApp Web {version} in {self.path}')
		return version


def create_web_cache(cache_type: str = 'none', **options) -> WebCache:
	"""Создать кеш по типу: 'local' или 'none'."""
	if cache_type == 'local':
		return LocalWebCache(**options)
	if cache_type == 'none':
		return NoWebCache()
	raise ValueError(f'Invalid web cache type {cache_type!r}, expected "local" or "none"')
