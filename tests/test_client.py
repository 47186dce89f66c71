from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from wabridge import client as client_module
from wabridge.auth import AuthResult, AuthState, LegacySessionAuth, LinkingMethod, LocalAuth, NoAuth, PhoneLinking, QrLinking
from wabridge.client import Client
from wabridge.bridge import scripts
from wabridge.events import ClientReadyEvent, LoadingScreenEvent
from wabridge.exceptions import BridgeNotReadyError, InvalidArgument
from wabridge.options import WA_JS_RELEASE_URL, ClientOptions
from wabridge.session.profile import BrowserProfile
from wabridge.session.session import PageSession
from wabridge.structures import SessionState
from wabridge.webcache import LocalWebCache


@pytest.fixture
async def client():
	client = Client()
	client.auth_strategy.destroy = AsyncMock()
	client.auth_strategy.logout = AsyncMock()
	return client


# region - options


def test_client_options_defaults():
	options = ClientOptions()

	assert isinstance(options.auth_strategy, NoAuth)
	assert options.linking_method.is_qr()
	assert options.linking_method.qr.max_retries == 0
	assert options.page_scripts == [WA_JS_RELEASE_URL]
	assert options.store_scripts == []
	assert options.page_ready_expression == scripts.WPP_READY_EXPRESSION
	assert options.mark_online_available is True


def test_client_options_legacy_session_selects_legacy_auth():
	options = ClientOptions(session={'WABrowserId': 'x'}, restart_on_auth_fail=True, qr_max_retries=3)

	assert isinstance(options.auth_strategy, LegacySessionAuth)
	assert options.auth_strategy.restart_on_auth_fail is True
	assert options.linking_method.qr.max_retries == 3


def test_client_options_validation():
	with pytest.raises(ValueError):
		ClientOptions(selector=7)
	with pytest.raises(ValueError):
		ClientOptions(unknown=True)


def test_linking_method_accepts_one_method():
	assert LinkingMethod().is_qr()
	assert LinkingMethod(phone=PhoneLinking(number='+1 (555) 010-9999')).phone.number == '15550109999'
	with pytest.raises(ValueError):
		LinkingMethod(qr=QrLinking(), phone=PhoneLinking(number='1555'))
	with pytest.raises(ValueError):
		PhoneLinking(number='no digits')


def test_user_agent_resolution():
	assert ClientOptions(user_agent='UA/1').resolved_user_agent == 'UA/1'
	profile = BrowserProfile(user_agent='UA/2')
	assert ClientOptions(browser_profile=profile).resolved_user_agent == 'UA/2'


async def test_web_cache_option_from_dict(tmp_path):
	client = Client(web_version_cache={'type': 'local', 'path': tmp_path, 'strict': True})

	assert isinstance(client._web_cache, LocalWebCache)
	assert client._web_cache.strict is True


# endregion

# region - auth strategies


async def test_local_auth_uses_session_directory(tmp_path):
	strategy = LocalAuth(client_id='bot-1', data_path=tmp_path)
	client = Client(auth_strategy=strategy)

	await strategy.before_browser_initialized()

	assert client.browser_profile.user_data_dir == tmp_path / 'session-bot-1'
	assert (tmp_path / 'session-bot-1').is_dir()

	await strategy.logout()
	assert not (tmp_path / 'session-bot-1').exists()


def test_local_auth_rejects_bad_client_id():
	with pytest.raises(InvalidArgument):
		LocalAuth(client_id='bad id!')


async def test_local_auth_rejects_custom_user_data_dir(tmp_path):
	strategy = LocalAuth(data_path=tmp_path)
	Client(auth_strategy=strategy, browser_profile=BrowserProfile(user_data_dir=tmp_path / 'elsewhere'))

	with pytest.raises(InvalidArgument):
		await strategy.before_browser_initialized()


# endregion

# region - events and commands


async def test_on_accepts_names_classes_and_decorator(client):
	def handler(event):
		pass

	client.on('qr', handler)
	client.on(LoadingScreenEvent, handler)

	@client.on('ready')
	def on_ready(event):
		pass

	assert on_ready is not None
	registered = {key for key, handlers in client.event_bus.handlers.items() if handlers}
	assert {'QrReceivedEvent', 'LoadingScreenEvent', 'ClientReadyEvent'} <= registered
	with pytest.raises(ValueError):
		client.on('not_an_event', handler)


async def test_commands_before_ready_raise(client):
	assert not client.is_ready
	with pytest.raises(BridgeNotReadyError):
		client.send_message
	with pytest.raises(BridgeNotReadyError):
		await client.takeover()
	with pytest.raises(AttributeError):
		client.not_a_command
	assert await client.get_state() is None


async def test_commands_delegate_to_dispatcher(client):
	client.dispatcher = SimpleNamespace(get_chats=AsyncMock(return_value=[]))

	assert await client.get_chats() == []
	client.dispatcher.get_chats.assert_awaited_once()


async def test_loading_screen_events_are_deduplicated(client):
	client.event_bus = MagicMock()

	await client._on_loading_screen('10', 'Loading your chats')
	await client._on_loading_screen(10, 'Loading your chats')
	await client._on_loading_screen('55', 'Loading your chats')

	events = [call.args[0] for call in client.event_bus.dispatch.call_args_list]
	assert [event.percent for event in events] == [10.0, 55.0]


# endregion

# region - lifecycle


async def test_destroy_is_idempotent(client):
	client.session = SimpleNamespace(teardown=AsyncMock())

	await client.destroy()
	await client.destroy()

	assert client.state == SessionState.DESTROYED
	client.session.teardown.assert_awaited_once()
	client.auth_strategy.destroy.assert_awaited_once()


async def test_initialize_twice_is_rejected(client):
	client.state = SessionState.READY

	with pytest.raises(RuntimeError, match='already initialized'):
		await client.initialize()


async def test_auth_failure_restarts_once(client):
	client._initialize = AsyncMock()
	client.destroy = AsyncMock()
	result = AuthResult(state=AuthState.AUTH_FAILED, restart=True)

	await client._handle_unauthenticated(result, allow_restart=True)

	client.destroy.assert_awaited_once()
	client._initialize.assert_awaited_once_with(allow_restart=False)

	client._initialize.reset_mock()
	await client._handle_unauthenticated(result, allow_restart=False)
	client._initialize.assert_not_called()


async def test_aborted_auth_does_not_restart(client):
	client._initialize = AsyncMock()

	await client._handle_unauthenticated(AuthResult(state=AuthState.DETECTING, aborted=True), allow_restart=True)

	client._initialize.assert_not_called()


async def test_ready_is_not_emitted_without_store(client, page_session):
	client.event_bus = MagicMock()
	client.auth_machine = MagicMock()
	page_session.inject_scripts = AsyncMock()

	with pytest.raises(BridgeNotReadyError, match='store_scripts'):
		await client._finish_initialization(page_session)

	assert not client.relay.is_ready
	assert not client.is_ready
	client.auth_machine.mark_ready.assert_not_called()
	events = [call.args[0] for call in client.event_bus.dispatch.call_args_list]
	assert not any(isinstance(event, ClientReadyEvent) for event in events)


async def test_logout_waits_for_disconnect(client, monkeypatch):
	monkeypatch.setattr(client_module, 'LOGOUT_POLL_INTERVAL', 0)
	is_connected = MagicMock(side_effect=[True, True, False])
	client.session = SimpleNamespace(teardown=AsyncMock(), is_connected=is_connected)

	await client.logout()

	assert is_connected.call_count == 3
	assert client.state == SessionState.DESTROYED
	client.auth_strategy.logout.assert_awaited_once()


async def test_page_session_teardown_without_browser_is_idempotent():
	session = PageSession(browser_profile=BrowserProfile(headless=True))

	await session.teardown()
	await session.teardown()

	assert session.closed
	assert session.tearing_down
	assert not session.is_connected()


# endregion
