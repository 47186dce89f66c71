"""Определение типа содержимого sendMessage: байты, base64, data URI, URL, файл или текст."""

import base64
import binascii
import logging
import mimetypes
import random
import re
from pathlib import Path
from urllib.parse import urlparse

import anyio
import filetype
import httpx
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

BASE64_PATTERN = re.compile(r'^[a-zA-Z0-9+/]*={0,2}$')
DATA_URI_PATTERN = re.compile(r'^data:.*?/.*?;base64,', re.IGNORECASE)
URL_PATTERN = re.compile(r'^https?://')

UNKNOWN_EXTENSION = '.bin'
UNKNOWN_MIMETYPE = 'application/octet-stream'


class LoadedFile(BaseModel):
	"""Загруженное содержимое с распознанным типом."""

	model_config = ConfigDict(frozen=True)

	data: bytes
	mimetype: str
	ext: str
	source_name: str | None = None

	@property
	def size(self) -> int:
		return len(self.data)

	@property
	def is_unknown(self) -> bool:
		return self.ext == UNKNOWN_EXTENSION

	def as_base64(self) -> str:
		return base64.b64encode(self.data).decode('ascii')


def sniff_kind(content: object) -> str | None:
	"""Вид содержимого, который нужно загрузить как файл; None для обычного текста.

	Порядок проверок: bytes, base64-строка, data URI, http(s) URL, существующий файл.
	"""
	if isinstance(content, (bytes, bytearray, memoryview)):
		return 'bytes'
	if not isinstance(content, str):
		return None
	if BASE64_PATTERN.match(content):
		return 'base64'
	if DATA_URI_PATTERN.match(content):
		return 'data_uri'
	if URL_PATTERN.match(content):
		return 'url'
	if _is_existing_file(content):
		return 'file'
	return None


def _is_existing_file(content: str) -> bool:
	if not content or len(content) > 4096 or '\n' in content or '\x00' in content:
		return False
	try:
		return Path(content).expanduser().is_file()
	except OSError:
		return False


def _decode_base64(value: str) -> bytes | None:
	padded = value + '=' * (-len(value) % 4)
	try:
		return base64.b64decode(padded, validate=False)
	except (binascii.Error, ValueError):
		return None


def guess_type(data: bytes, name: str | None = None) -> tuple[str, str]:
	"""(mimetype, ext) по сигнатуре содержимого, затем по имени файла."""
	kind = filetype.guess(data) if data else None
	if kind is not None:
		return kind.mime, f'.{kind.extension}'
	if name:
		mimetype, _ = mimetypes.guess_type(name)
		if mimetype:
			ext = mimetypes.guess_extension(mimetype) or Path(name).suffix or UNKNOWN_EXTENSION
			return mimetype, ext
	return UNKNOWN_MIMETYPE, UNKNOWN_EXTENSION


async def load_content(content: str | bytes | bytearray | memoryview, kind: str) -> LoadedFile | None:
	"""Загрузить содержимое указанного вида. None, если его не удалось прочитать."""
	name: str | None = None
	data: bytes | None
	if kind == 'bytes':
		data = bytes(content)
	elif kind == 'base64':
		data = _decode_base64(str(content))
	elif kind == 'data_uri':
		header, _, payload = str(content).partition(',')
		data = _decode_base64(payload)
		declared = header[len('data:') :].split(';', 1)[0]
		if data is not None and declared:
			mimetype, ext = guess_type(data)
			if mimetype == UNKNOWN_MIMETYPE:
				ext = mimetypes.guess_extension(declared) or UNKNOWN_EXTENSION
				return LoadedFile(data=data, mimetype=declared, ext=ext)
	elif kind == 'url':
		name = Path(urlparse(str(content)).path).name or None
		async with httpx.AsyncClient(follow_redirects=True, timeout=60) as client:
			response = await client.get(str(content))
			response.raise_for_status()
			data = response.content
		logger.debug(f'📥 Downloaded {len(data)} bytes from {content}')
	elif kind == 'file':
		path = Path(str(content)).expanduser()
		name = path.name
		data = await anyio.Path(path).read_bytes()
	else:
		raise ValueError(f'Unknown content kind {kind!r}')

	if data is None:
		return None
	mimetype, ext = guess_type(data, name)
	return LoadedFile(data=data, mimetype=mimetype, ext=ext, source_name=name)


def random_file_name(ext: str) -> str:
	return f'{random.randint(0, 9999)}{ext}'
