"""Стратегии аутентификации: где хранится и как восстанавливается сессия WhatsApp Web."""

import json
import logging
import re
import shutil
from abc import ABC
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

import anyio
from anyio import to_thread
from pydantic import BaseModel

from wabridge.config import CONFIG, WHATSAPP_REFERER
from wabridge.exceptions import InvalidArgument

if TYPE_CHECKING:
	from wabridge.client import Client

logger = logging.getLogger(__name__)

LEGACY_SESSION_KEYS = ('WABrowserId', 'WASecretBundle', 'WAToken1', 'WAToken2')


class AuthNeededResult(BaseModel):
	"""Ответ стратегии на появление экрана сопряжения."""

	failed: bool = False
	failure_event_payload: Any = None
	restart: bool = False


class AuthStrategy(ABC):
	"""Базовая стратегия: все хуки по умолчанию ничего не делают.

	Клиент вызывает хуки в порядке жизненного цикла:
	setup -> before_browser_initialized -> after_browser_initialized ->
	(on_authentication_needed) -> get_auth_event_payload -> after_auth_ready,
	и disconnect / logout / destroy при завершении сессии.
	"""

	def __init__(self) -> None:
		self.client: 'Client | None' = None

	def setup(self, client: 'Client') -> None:
		self.client = client

	async def before_browser_initialized(self) -> None:
		pass

	async def after_browser_initialized(self) -> None:
		pass

	async def on_authentication_needed(self) -> AuthNeededResult:
		return AuthNeededResult()

	async def get_auth_event_payload(self) -> Any:
		return None

	async def after_auth_ready(self) -> None:
		pass

	async def disconnect(self) -> None:
		pass

	async def destroy(self) -> None:
		pass

	async def logout(self) -> None:
		pass


class NoAuth(AuthStrategy):
	"""Сессия не сохраняется: каждый запуск требует нового сопряжения."""


class LocalAuth(AuthStrategy):
	"""Сессия хранится в профиле браузера в `<data_path>/session[-<client_id>]`."""

	CLIENT_ID_PATTERN = re.compile(r'^[-_\w]+$')

	def __init__(self, client_id: str | None = None, data_path: str | Path | None = None) -> None:
		super().__init__()
		if client_id is not None and not self.CLIENT_ID_PATTERN.match(client_id):
			raise InvalidArgument('Invalid client_id. Only alphanumeric characters, underscores and hyphens are allowed.')
		self.client_id = client_id
		self.data_path = Path(data_path).expanduser().resolve() if data_path else CONFIG.WABRIDGE_DATA_DIR
		self.user_data_dir: Path | None = None

	@property
	def session_dir_name(self) -> str:
		return f'session-{self.client_id}' if self.client_id else 'session'

	async def before_browser_initialized(self) -> None:
		assert self.client is not None, 'LocalAuth.setup() must be called before the browser starts'
		profile = self.client.browser_profile
		session_dir = self.data_path / self.session_dir_name

		user_supplied = self.client.options.browser_profile.user_data_dir
		if user_supplied is not None and Path(user_supplied).expanduser().resolve() != session_dir:
			raise InvalidArgument('LocalAuth is not compatible with a user-supplied user_data_dir.')

		await anyio.Path(session_dir).mkdir(parents=True, exist_ok=True)
		profile.user_data_dir = session_dir
		self.user_data_dir = session_dir
		logger.debug(f'💾 LocalAuth profile directory: {session_dir}')

	async def logout(self) -> None:
		if self.user_data_dir is None:
			return
		logger.info(f'🗑️ Removing LocalAuth session directory {self.user_data_dir}')
		await to_thread.run_sync(partial(shutil.rmtree, self.user_data_dir, ignore_errors=True))


class LegacySessionAuth(AuthStrategy):
	"""Восстановление по сохранённым токенам localStorage (WABrowserId, WASecretBundle, WAToken1, WAToken2).

	Устаревший способ: WhatsApp Web с multi-device больше не принимает такие токены,
	поэтому при появлении экрана сопряжения стратегия сообщает об ошибке.
	"""

	def __init__(self, session: dict[str, str] | None = None, restart_on_auth_fail: bool = False) -> None:
		super().__init__()
		self.session = dict(session) if session else None
		self.restart_on_auth_fail = restart_on_auth_fail
		logger.warning('⚠️ LegacySessionAuth is deprecated and may not work with multi-device WhatsApp Web, use LocalAuth')

	async def after_browser_initialized(self) -> None:
		if not self.session:
			return
		assert self.client is not None and self.client.session is not None
		await self.client.session.add_init_script(self._restore_script(self.session))

	@staticmethod
	def _restore_script(session: dict[str, str]) -> str:
		tokens = {key: session.get(key) for key in LEGACY_SESSION_KEYS}
		return f"""(() => {{
			const session = {json.dumps(tokens)};
			if (document.referrer === {json.dumps(WHATSAPP_REFERER)}) {{
				localStorage.clear();
				for (const [key, value] of Object.entries(session)) {{
					if (value !== null && value !== undefined) localStorage.setItem(key, value);
				}}
			}}
			localStorage.setItem('remember-me', 'true');
		}})();"""

	async def on_authentication_needed(self) -> AuthNeededResult:
		if self.session:
			restart = self.restart_on_auth_fail
			if restart:
				# токены отвергнуты: при перезапуске сопрягаемся заново
				self.session = None
			return AuthNeededResult(
				failed=True,
				restart=restart,
				failure_event_payload='Unable to log in. Are the session details valid?',
			)
		return AuthNeededResult()

	async def get_auth_event_payload(self) -> dict[str, Any]:
		assert self.client is not None and self.client.session is not None
		return await self.client.session.evaluate(
			"""(keys) => Object.fromEntries(keys.map((key) => [key, window.localStorage.getItem(key)]))""",
			list(LEGACY_SESSION_KEYS),
		)
