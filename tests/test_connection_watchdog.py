from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from bubus import EventBus

from tests.helpers import dispatched_events, wait_until
from wabridge.auth import AuthState, NoAuth
from wabridge.events import DisconnectedEvent, StateChangedEvent
from wabridge.session.events import FrameNavigatedEvent
from wabridge.session.monitors.watchdogs.connection_watchdog import ConnectionWatchdog
from wabridge.structures import SessionState


@pytest.fixture
def client():
	strategy = NoAuth()
	strategy.disconnect = AsyncMock()
	return SimpleNamespace(
		options=SimpleNamespace(takeover_on_conflict=False, takeover_timeout_ms=0, auth_strategy=strategy),
		state=SessionState.READY,
		auth_state=AuthState.READY,
		get_state=AsyncMock(return_value='CONNECTED'),
		destroy=AsyncMock(),
		takeover=AsyncMock(),
	)


@pytest.fixture
async def watchdog(client):
	watchdog = ConnectionWatchdog(event_bus=EventBus(), client=client)
	watchdog.event_bus = MagicMock()
	return watchdog


@pytest.mark.parametrize('state', ['CONNECTED', 'OPENING', 'PAIRING', 'TIMEOUT'])
async def test_accepted_states_keep_session(watchdog, client, state):
	await watchdog.on_StateChangedEvent(StateChangedEvent(state=state))

	assert client.state == SessionState.READY
	client.destroy.assert_not_called()


@pytest.mark.parametrize('state', ['UNPAIRED', 'CONFLICT', 'TOS_BLOCK'])
async def test_unaccepted_state_disconnects(watchdog, client, state):
	await watchdog.on_StateChangedEvent(StateChangedEvent(state=state))

	assert client.state == SessionState.DISCONNECTED
	client.options.auth_strategy.disconnect.assert_awaited_once()
	client.destroy.assert_awaited_once()
	assert [event.reason for event in dispatched_events(watchdog.event_bus, DisconnectedEvent)] == [state]


async def test_disconnect_happens_once(watchdog, client):
	await watchdog.on_StateChangedEvent(StateChangedEvent(state='UNPAIRED'))
	await watchdog.on_StateChangedEvent(StateChangedEvent(state='UNPAIRED_IDLE'))

	assert len(dispatched_events(watchdog.event_bus, DisconnectedEvent)) == 1
	client.destroy.assert_awaited_once()


async def test_conflict_with_takeover_schedules_takeover(watchdog, client):
	client.options.takeover_on_conflict = True

	await watchdog.on_StateChangedEvent(StateChangedEvent(state='CONFLICT'))
	await wait_until(lambda: client.takeover.await_count == 1)

	assert client.state == SessionState.READY
	client.destroy.assert_not_called()


async def test_pending_takeover_is_cancelled_on_disconnect(watchdog, client):
	client.options.takeover_on_conflict = True
	client.options.takeover_timeout_ms = 60_000

	await watchdog.on_StateChangedEvent(StateChangedEvent(state='CONFLICT'))
	await watchdog.on_StateChangedEvent(StateChangedEvent(state='UNPAIRED'))
	await wait_until(lambda: not watchdog._takeover_tasks)

	client.takeover.assert_not_called()


async def test_navigation_while_pairing_is_logout(watchdog, client):
	client.state = SessionState.AUTHENTICATING
	client.auth_state = AuthState.PAIRING_IN_PROGRESS

	await watchdog.on_FrameNavigatedEvent(FrameNavigatedEvent(url='https://web.whatsapp.com/'))

	assert [event.reason for event in dispatched_events(watchdog.event_bus, DisconnectedEvent)] == ['NAVIGATION']
	client.get_state.assert_not_called()


@pytest.mark.parametrize('app_state', [None, '', 'PAIRING'])
async def test_navigation_after_ready_without_session_is_logout(watchdog, client, app_state):
	client.get_state.return_value = app_state

	await watchdog.on_FrameNavigatedEvent(FrameNavigatedEvent(url='https://web.whatsapp.com/'))

	assert [event.reason for event in dispatched_events(watchdog.event_bus, DisconnectedEvent)] == ['NAVIGATION']
	client.destroy.assert_awaited_once()


async def test_navigation_with_live_session_is_ignored(watchdog, client):
	await watchdog.on_FrameNavigatedEvent(FrameNavigatedEvent(url='https://web.whatsapp.com/'))

	assert dispatched_events(watchdog.event_bus) == []
	client.destroy.assert_not_called()


async def test_navigation_before_pairing_is_ignored(watchdog, client):
	client.state = SessionState.AWAITING_AUTH
	client.auth_state = AuthState.DETECTING

	await watchdog.on_FrameNavigatedEvent(FrameNavigatedEvent(url='https://web.whatsapp.com/'))

	client.get_state.assert_not_called()
	assert dispatched_events(watchdog.event_bus) == []
