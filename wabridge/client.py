"""Клиент WhatsApp Web: запуск страницы, вход, мост событий и команды."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from bubus import EventBus
from uuid_extensions import uuid7str

from wabridge.auth import selectors
from wabridge.auth.state_machine import AuthResult, AuthState, AuthStateMachine
from wabridge.bridge import scripts
from wabridge.bridge.relay import BridgeRelay
from wabridge.commands.dispatcher import CommandDispatcher
from wabridge.config import WHATSAPP_REFERER, WHATSAPP_WEB_URL
from wabridge.events import AuthenticatedEvent, ClientReadyEvent, LoadingScreenEvent, WhatsAppEvent, resolve_event_class
from wabridge.exceptions import BridgeNotReadyError, PageClosedDuringOperation
from wabridge.options import ClientOptions
from wabridge.session.events import FrameNavigatedEvent
from wabridge.session.monitors.watchdogs.connection_watchdog import ConnectionWatchdog
from wabridge.session.profile import BrowserProfile
from wabridge.session.session import PageSession
from wabridge.structures.models import Chat, ClientInfo
from wabridge.structures.states import SessionState
from wabridge.webcache.local import WebCache, create_web_cache

LOGOUT_POLL_INTERVAL = 0.1
LOGOUT_POLL_ATTEMPTS = 10

# Операции CommandDispatcher, доступные прямо на клиенте
COMMAND_NAMES = frozenset(
	{
		'get_wweb_version',
		'send_seen',
		'send_message',
		'search_messages',
		'get_chats',
		'get_chat_by_id',
		'get_contacts',
		'get_contact_by_id',
		'get_message_by_id',
		'get_invite_info',
		'accept_invite',
		'accept_group_v4_invite',
		'set_status',
		'set_display_name',
		'send_presence_available',
		'send_presence_unavailable',
		'archive_chat',
		'unarchive_chat',
		'pin_chat',
		'unpin_chat',
		'mute_chat',
		'unmute_chat',
		'mark_chat_unread',
		'get_profile_pic_url',
		'get_common_groups',
		'reset_state',
		'is_registered_user',
		'get_number_id',
		'get_formatted_number',
		'get_country_code',
		'create_group',
		'get_labels',
		'get_label_by_id',
		'get_chat_labels',
		'get_chats_by_label_id',
		'get_blocked_contacts',
		'set_profile_picture',
		'delete_profile_picture',
		'add_or_remove_labels',
		'group_metadata',
		'get_name',
		'screenshot',
	}
)


class Client:
	"""Клиент WhatsApp Web поверх Chromium и CDP.

	```python
	client = Client(ClientOptions(auth_strategy=LocalAuth(client_id='bot')))
	client.on('qr', lambda event: print(event.qr))
	client.on('message', handle_message)
	await client.initialize()
	await client.send_message('123@c.us', 'hello')
	```

	У клиента одна сессия страницы за раз. destroy() закрывает её, повторный
	initialize() создаёт новую PageSession.
	"""

	def __init__(self, options: ClientOptions | None = None, **option_fields: Any) -> None:
		self.options = options if options is not None else ClientOptions(**option_fields)
		self.id = uuid7str()

		client_id_suffix = str(self.id)[-4:].replace('-', '_')
		if client_id_suffix and client_id_suffix[0].isdigit():
			client_id_suffix = 'c' + client_id_suffix
		self.event_bus = EventBus(name=f'WhatsAppClient_{client_id_suffix}')

		self.state: SessionState | None = None
		self.browser_profile: BrowserProfile = self.options.browser_profile.model_copy(deep=True)
		self.session: PageSession | None = None
		self.auth_machine: AuthStateMachine | None = None
		self.relay: BridgeRelay | None = None
		self.dispatcher: CommandDispatcher | None = None
		self.info: ClientInfo | None = None

		self._web_cache = self._create_web_cache()
		self._last_loading_screen: tuple[Any, str] | None = None

		assert self.options.auth_strategy is not None
		self.auth_strategy = self.options.auth_strategy
		self.auth_strategy.setup(self)

		self.connection_watchdog = ConnectionWatchdog(event_bus=self.event_bus, client=self)
		self.connection_watchdog.attach_to_session()

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'wabridge.Client.{self.id[-4:]}')

	@property
	def auth_state(self) -> AuthState | None:
		return self.auth_machine.state if self.auth_machine is not None else None

	@property
	def is_ready(self) -> bool:
		return self.state == SessionState.READY and self.relay is not None and self.relay.is_ready

	def _create_web_cache(self) -> WebCache | None:
		cache_option = self.options.web_version_cache
		if cache_option is None or isinstance(cache_option, WebCache):
			return cache_option
		cache_options = dict(cache_option)
		return create_web_cache(cache_options.pop('type', 'none'), **cache_options)

	# region - events

	def on(self, event: str | type[WhatsAppEvent], handler: Callable[[Any], Any] | None = None) -> Any:
		"""Подписаться на событие по имени ('qr', 'message', ...) или классу.

		Без handler работает как декоратор.
		"""
		event_class = resolve_event_class(event)
		if handler is None:

			def decorator(func: Callable[[Any], Any]) -> Callable[[Any], Any]:
				self.event_bus.on(event_class, func)
				return func

			return decorator
		self.event_bus.on(event_class, handler)
		return handler

	def emit(self, event: WhatsAppEvent) -> WhatsAppEvent:
		return self.event_bus.dispatch(event)

	# endregion

	# region - lifecycle

	async def initialize(self) -> None:
		"""Запустить браузер, открыть WhatsApp Web, войти и подключить мост.

		Ошибки запуска и определения состояния закрывают клиента и пробрасываются.
		Ошибки сопряжения приходят событиями auth_failure / disconnected.
		"""
		await self._initialize(allow_restart=True)

	async def _initialize(self, allow_restart: bool) -> None:
		if self.state not in (None, SessionState.DESTROYED):
			raise RuntimeError(f'Client is already initialized (state={self.state.value}), call destroy() first')

		self.state = SessionState.LAUNCHING
		self.relay = None
		self.dispatcher = None
		self.auth_machine = None
		self.info = None

		self.browser_profile = self.options.browser_profile.model_copy(deep=True)
		self.browser_profile.user_agent = self.options.resolved_user_agent

		try:
			await self.auth_strategy.before_browser_initialized()
			session = PageSession(
				browser_profile=self.browser_profile,
				bypass_csp=self.options.bypass_csp,
				user_agent=self.options.resolved_user_agent,
				web_cache=self._web_cache,
				web_version=self.options.web_version,
			)
			self.session = session
			session.event_bus.on(FrameNavigatedEvent, self.event_bus.dispatch)

			await session.start()
			await self.auth_strategy.after_browser_initialized()
			await self._open_whatsapp(session)

			self.state = SessionState.AWAITING_AUTH
			self.auth_machine = AuthStateMachine(
				session=session,
				strategy=self.auth_strategy,
				linking_method=self.options.linking_method,
				event_bus=self.event_bus,
				destroy=self.destroy,
				main_selector=selectors.main_screen_selector(self.options.selector),
				auth_timeout_ms=self.options.auth_timeout_ms,
			)
			result = await self.auth_machine.run()
			if not result.authenticated:
				await self._handle_unauthenticated(result, allow_restart)
				return

			await self._finish_initialization(session)
		except PageClosedDuringOperation as e:
			if e.during_teardown:
				self.logger.debug('Page closed by destroy() during initialize, stopping')
				return
			await self.destroy()
			raise
		except Exception:
			await self.destroy()
			raise

	async def _open_whatsapp(self, session: PageSession) -> None:
		await session.navigate(WHATSAPP_WEB_URL, referer=WHATSAPP_REFERER)
		await session.inject_scripts(self.options.page_scripts)
		await session.wait_for_function(self.options.page_ready_expression, self.options.auth_timeout_ms)

		applied = await session.evaluate(scripts.WPP_DEFAULTS, self.options.mark_online_available)
		if not applied:
			self.logger.debug('WPP defaults were not applied')
		await session.evaluate(scripts.WPP_LIMITS)

		await session.expose_function('loadingScreen', self._on_loading_screen)
		await session.evaluate(
			scripts.LOADING_SCREEN_OBSERVER,
			scripts.LOADING_PROGRESS_SELECTOR,
			scripts.LOADING_MESSAGE_SELECTOR,
		)
		self.logger.info(f'🔎 Using main screen selector {self.options.selector or "default"}')

	async def _on_loading_screen(self, percent: Any, message: str) -> None:
		try:
			percent = float(percent)
		except (TypeError, ValueError):
			percent = None
		if self._last_loading_screen == (percent, message):
			return
		self._last_loading_screen = (percent, message)
		self.logger.debug(f'⏳ Loading {percent}%: {message}')
		self.event_bus.dispatch(LoadingScreenEvent(percent=percent, message=message or ''))

	async def _handle_unauthenticated(self, result: AuthResult, allow_restart: bool) -> None:
		if result.aborted:
			return
		if result.state == AuthState.AUTH_FAILED and result.restart and allow_restart:
			self.logger.info('🔁 Authentication failed, restarting the client once')
			if self.state != SessionState.DESTROYED:
				await self.destroy()
			await self._initialize(allow_restart=False)
			return
		if result.error is not None:
			self.logger.warning(f'❌ Pairing stopped: {result.error}')

	async def _finish_initialization(self, session: PageSession) -> None:
		assert self.auth_machine is not None
		self.state = SessionState.AUTHENTICATING

		await session.evaluate(scripts.COMPARE_WWEB_VERSIONS)
		await session.inject_scripts(self.options.store_scripts)

		auth_payload = await self.auth_strategy.get_auth_event_payload()
		self.event_bus.dispatch(AuthenticatedEvent(payload=auth_payload))

		if self.options.store_scripts:
			await session.wait_for_function(scripts.STORE_READY_EXPRESSION, self.options.auth_timeout_ms)
		await session.evaluate(scripts.UNREGISTER_SERVICE_WORKERS)
		self.info = ClientInfo.from_raw(await session.evaluate(scripts.CLIENT_INFO))

		self.relay = BridgeRelay(session, self.event_bus, fetch_chat=self._fetch_chat)
		self.dispatcher = CommandDispatcher(session, self.relay, self.options)
		self.dispatcher.client_info = self.info
		await self.relay.wire()

		self.auth_machine.mark_ready()
		self.state = SessionState.READY
		self.logger.info('✅ WhatsApp Web client is ready')
		self.event_bus.dispatch(ClientReadyEvent())
		await self.auth_strategy.after_auth_ready()

	async def _fetch_chat(self, chat_id: str) -> Chat | None:
		assert self.dispatcher is not None
		return await self.dispatcher.get_chat_by_id(chat_id)

	async def destroy(self) -> None:
		"""Закрыть браузер и сообщить стратегии. Повторный вызов ничего не делает."""
		if self.state == SessionState.DESTROYED:
			return
		self.connection_watchdog.cancel_pending()
		session = self.session
		try:
			if session is not None:
				await session.teardown()
		finally:
			self.state = SessionState.DESTROYED
			await self.auth_strategy.destroy()
		self.logger.debug('🛑 Client destroyed')

	async def logout(self) -> None:
		"""Выйти из WhatsApp на телефоне, закрыть браузер и удалить сохранённую сессию."""
		session = self.session
		if self.dispatcher is not None and self.relay is not None and self.relay.is_ready:
			await self.dispatcher.logout_page()

		if session is not None:
			await session.teardown()
			for _ in range(LOGOUT_POLL_ATTEMPTS):
				if not session.is_connected():
					break
				await asyncio.sleep(LOGOUT_POLL_INTERVAL)

		self.state = SessionState.DESTROYED
		await self.auth_strategy.logout()

	# endregion

	# region - commands

	async def get_state(self) -> str | None:
		if self.dispatcher is None:
			return None
		return await self.dispatcher.get_state()

	async def takeover(self) -> None:
		if self.dispatcher is None:
			raise BridgeNotReadyError('WhatsApp Web bridge is not ready yet, wait for the ready event')
		await self.dispatcher.takeover()

	def __getattr__(self, name: str) -> Any:
		if name in COMMAND_NAMES:
			dispatcher = self.__dict__.get('dispatcher')
			if dispatcher is None:
				raise BridgeNotReadyError(f'Cannot call {name}(): WhatsApp Web bridge is not ready yet, wait for the ready event')
			return getattr(dispatcher, name)
		raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

	# endregion
