"""Сессия страницы WhatsApp Web поверх CDP, управляемая событиями bubus."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from functools import cached_property
from pathlib import Path
from typing import Any

import anyio
import httpx
from bubus import EventBus
from cdp_use import CDPClient
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from uuid_extensions import uuid7str

from wabridge.session.events import BrowserStartEvent, BrowserStopEvent
from wabridge.session.profile import BrowserProfile
from wabridge.webcache.local import WebCache


class PageSession(BaseModel):
	"""Единственный владелец вкладки WhatsApp Web.

	Только эта сессия открывает, навигирует и закрывает страницу. Остальные
	компоненты работают со страницей через её методы:

	```python
	session = PageSession(browser_profile=BrowserProfile(headless=True))
	await session.start()
	await session.navigate('https://web.whatsapp.com/')
	title = await session.evaluate('() => document.title')
	await session.teardown()
	```
	"""

	model_config = ConfigDict(
		arbitrary_types_allowed=True,
		validate_assignment=True,
		extra='forbid',
		revalidate_instances='never',
	)

	id: str = Field(default_factory=lambda: str(uuid7str()))
	browser_profile: BrowserProfile = Field(
		default_factory=BrowserProfile,
		description='BrowserProfile() options to use for the session',
	)

	# У каждой сессии своя шина: сессия не переиспользуется после teardown()
	event_bus: EventBus = Field(default_factory=EventBus)

	bypass_csp: bool = Field(default=False, description='Page.setBypassCSP for the WhatsApp tab')
	user_agent: str | None = Field(default=None, description='User agent override, falls back to the profile one')
	web_cache: WebCache | None = Field(default=None, description='WhatsApp Web version cache, None disables it')
	web_version: str | None = Field(default=None, description='WhatsApp Web version to serve from web_cache')

	_cdp_client_root: CDPClient | None = PrivateAttr(default=None)
	_connection_lock: Any = PrivateAttr(default=None)
	_target_id: str | None = PrivateAttr(default=None)
	_session_id: str | None = PrivateAttr(default=None)

	_lifecycle_manager: Any = PrivateAttr(default=None)
	_page_operations: Any = PrivateAttr(default=None)
	_local_browser_watchdog: Any | None = PrivateAttr(default=None)
	_watchdogs_attached: bool = PrivateAttr(default=False)

	_closed_signal: asyncio.Event = PrivateAttr(default_factory=asyncio.Event)
	_tearing_down: bool = PrivateAttr(default=False)
	_teardown_task: asyncio.Task | None = PrivateAttr(default=None)

	@property
	def cdp_url(self) -> str | None:
		return self.browser_profile.cdp_url

	@property
	def is_local(self) -> bool:
		return self.browser_profile.is_local

	@property
	def target_id(self) -> str | None:
		return self._target_id

	@property
	def session_id(self) -> str | None:
		return self._session_id

	@property
	def cdp_client(self) -> CDPClient:
		"""Корневой CDP клиент, создаётся в connect()."""
		assert self._cdp_client_root is not None, 'CDP client not initialized - browser may not be connected yet'
		return self._cdp_client_root

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'wabridge.{self}')

	@property
	def tearing_down(self) -> bool:
		return self._tearing_down

	@property
	def closed(self) -> bool:
		"""Страница закрыта или закрывается: новые вызовы к ней не уходят."""
		return self._closed_signal.is_set()

	@property
	def closed_signal(self) -> asyncio.Event:
		return self._closed_signal

	@cached_property
	def _id_for_logs(self) -> str:
		return self.id[-4:]

	def __repr__(self) -> str:
		return f'PageSession {self._id_for_logs} (cdp_url={self.cdp_url}, profile={self.browser_profile!r})'

	def __str__(self) -> str:
		return f'PageSession {self._id_for_logs}'

	def model_post_init(self, __context) -> None:
		self._connection_lock = asyncio.Lock()

		if not self.browser_profile.cdp_url:
			self.browser_profile.is_local = True

		from wabridge.session.lifecycle_manager import SessionLifecycleManager
		from wabridge.session.page_operations import PageOperationsManager
		from wabridge.session.watchdog_base import BaseWatchdog

		self._lifecycle_manager = SessionLifecycleManager(self)
		self._page_operations = PageOperationsManager(self)

		start_handler_names = [getattr(h, '__name__', str(h)) for h in self.event_bus.handlers.get('BrowserStartEvent', [])]
		if any('on_BrowserStartEvent' in name for name in start_handler_names):
			raise RuntimeError(
				'[PageSession] Duplicate handler registration attempted! '
				'on_BrowserStartEvent is already registered. '
				'This likely means PageSession was initialized multiple times with the same EventBus.'
			)

		BaseWatchdog.attach_handler_to_session(self, BrowserStartEvent, self._lifecycle_manager.on_BrowserStartEvent)
		BaseWatchdog.attach_handler_to_session(self, BrowserStopEvent, self._lifecycle_manager.on_BrowserStopEvent)

	# region - lifecycle

	async def start(self) -> None:
		"""Запустить или подключить браузер и подготовить вкладку. Ошибки: BrowserLaunchError."""
		await self._lifecycle_manager.start()

	async def teardown(self) -> None:
		"""Закрыть браузер и освободить CDP-клиент.

		Идемпотентно и безопасно из любого состояния: повторный вызов ждёт первый,
		уже закрытый браузер ошибкой не считается.
		"""
		if self._teardown_task is None:
			self._tearing_down = True
			self._closed_signal.set()
			self._teardown_task = asyncio.ensure_future(self._run_teardown())
		await asyncio.shield(self._teardown_task)

	async def _run_teardown(self) -> None:
		self.logger.debug('🛑 Tearing down page session')
		try:
			stop_event = self.event_bus.dispatch(BrowserStopEvent(force=True))
			await stop_event
		except Exception as e:
			self.logger.debug(f'Error while stopping browser during teardown: {type(e).__name__}: {e}')
		finally:
			if self._cdp_client_root is not None:
				await self._lifecycle_manager.reset()
			try:
				await self.event_bus.stop(clear=True, timeout=10)
			except Exception as e:
				self.logger.debug(f'Error stopping session event bus: {type(e).__name__}: {e}')
		self.logger.debug('✅ Page session closed')

	def mark_page_closed(self) -> None:
		"""Страница исчезла сама (закрыта пользователем или упала): будим ожидающие вызовы."""
		self._closed_signal.set()

	def is_connected(self) -> bool:
		return self._cdp_client_root is not None and self._session_id is not None and not self.closed

	# endregion

	# region - page operations

	async def navigate(self, url: str, referer: str | None = None, timeout: float | None = None) -> None:
		"""Page.navigate и ожидание события load. timeout в секундах, по умолчанию без ограничения."""
		await self._page_operations.navigate(url, referer=referer, timeout=timeout)

	async def evaluate(self, page_function: str, *args: Any) -> Any:
		return await self._page_operations.evaluate(page_function, *args)

	async def add_init_script(self, source: str) -> str:
		return await self._page_operations.add_init_script(source)

	async def inject_scripts(self, scripts: Sequence[str | Path]) -> None:
		"""Выполнить скрипты в странице: исходный код, путь к файлу или http(s) URL."""
		for script in scripts:
			source = await self._load_script_source(script)
			await self._page_operations.run_script(source)

	async def _load_script_source(self, script: str | Path) -> str:
		script_text = str(script)
		if script_text.startswith(('http://', 'https://')):
			async with httpx.AsyncClient(follow_redirects=True, timeout=60) as client:
				response = await client.get(script_text)
				response.raise_for_status()
				self.logger.debug(f'📜 Fetched page script {script_text} ({len(response.text)} chars)')
				return response.text
		if isinstance(script, Path) or (len(script_text) < 1024 and '\n' not in script_text and await anyio.Path(script_text).is_file()):
			return await anyio.Path(script_text).read_text(encoding='utf-8')
		return script_text

	async def expose_function(self, name: str, handler: Callable[..., Any | Awaitable[Any]]) -> None:
		await self._page_operations.expose_function(name, handler)

	async def wait_for_selector(self, selector: str, timeout_ms: int | None = None) -> bool:
		return await self._page_operations.wait_for_selector(selector, timeout_ms)

	async def wait_for_function(self, expression: str, timeout_ms: int | None = None, polling_ms: int = 100) -> bool:
		return await self._page_operations.wait_for_function(expression, timeout_ms, polling_ms)

	async def click(self, selector: str) -> None:
		await self._page_operations.click(selector)

	async def type_text(self, selector: str, text: str) -> None:
		await self._page_operations.type_text(selector, text)

	async def press(self, key: str) -> None:
		await self._page_operations.press(key)

	async def get_value(self, selector: str) -> str | None:
		return await self._page_operations.get_value(selector)

	async def screenshot(self) -> bytes:
		return await self._page_operations.screenshot()

	async def set_viewport(self, width: int, height: int) -> None:
		await self._page_operations.set_viewport(width, height)

	# endregion
