import asyncio
from unittest.mock import AsyncMock

import pytest

from tests.helpers import dispatched_events, wait_until
from wabridge.auth import AuthState, AuthStateMachine, LegacySessionAuth, LinkingMethod, NoAuth, PhoneLinking, QrLinking
from wabridge.auth import selectors
from wabridge.events import AuthFailureEvent, DisconnectedEvent, PairingCodeReceivedEvent, QrReceivedEvent
from wabridge.exceptions import AuthDetectionTimeout, MaxPairingRetriesExceeded, PageClosedDuringOperation

MAIN = selectors.DEFAULT_MAIN_SCREEN_SELECTOR
PAIRING = selectors.PAIRING_SCREEN_SELECTOR


@pytest.fixture
def destroy():
	return AsyncMock()


def make_machine(page_session, event_bus, destroy, strategy=None, linking_method=None):
	return AuthStateMachine(
		session=page_session,
		strategy=strategy or NoAuth(),
		linking_method=linking_method or LinkingMethod(),
		event_bus=event_bus,
		destroy=destroy,
		auth_timeout_ms=1000,
	)


async def start_detection(page_session, coro):
	task = asyncio.create_task(coro)
	await wait_until(lambda: page_session.has_pending_waiter(MAIN) and page_session.has_pending_waiter(PAIRING))
	return task


# region - detection race


async def test_main_screen_first_means_already_authenticated(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)
	task = await start_detection(page_session, machine.run())

	page_session.pending_waiter(MAIN).set_result(True)
	result = await task

	assert result.authenticated
	assert machine.state == AuthState.AUTHENTICATED
	assert page_session.waiters[PAIRING][0].cancelled()
	destroy.assert_not_called()


async def test_pairing_screen_first_means_needs_pairing(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)
	task = await start_detection(page_session, machine.detect())

	page_session.pending_waiter(PAIRING).set_result(True)

	assert await task == AuthState.NEEDS_PAIRING
	assert page_session.waiters[MAIN][0].cancelled()


async def test_both_screens_present_prefers_main(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)
	task = await start_detection(page_session, machine.detect())

	page_session.pending_waiter(PAIRING).set_result(True)
	page_session.pending_waiter(MAIN).set_result(True)

	assert await task == AuthState.ALREADY_AUTHENTICATED


async def test_first_settled_wait_failing_is_detection_timeout(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)
	task = await start_detection(page_session, machine.detect())

	page_session.pending_waiter(PAIRING).set_exception(TimeoutError('waiting for selector timed out'))

	with pytest.raises(AuthDetectionTimeout) as exc_info:
		await task
	assert exc_info.value.selector == PAIRING
	assert exc_info.value.timeout_ms == 1000
	assert page_session.waiters[MAIN][0].cancelled()


async def test_page_closed_during_detection_propagates(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)
	task = await start_detection(page_session, machine.detect())

	page_session.pending_waiter(MAIN).set_exception(PageClosedDuringOperation())

	with pytest.raises(PageClosedDuringOperation):
		await task


async def test_teardown_during_detection_aborts_quietly(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)
	task = await start_detection(page_session, machine.run())

	page_session.close_for_teardown()
	result = await task

	assert result.aborted
	assert not result.authenticated
	assert dispatched_events(event_bus) == []


def test_invalid_transition_raises(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)

	with pytest.raises(RuntimeError, match='START -> READY'):
		machine.mark_ready()


# endregion

# region - QR pairing


async def start_qr_pairing(page_session, machine):
	task = await start_detection(page_session, machine.run())
	page_session.pending_waiter(PAIRING).set_result(True)
	await wait_until(lambda: 'qrChanged' in page_session.exposed and page_session.has_pending_waiter(MAIN))
	return task


async def test_qr_tokens_are_emitted_in_order(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)
	task = await start_qr_pairing(page_session, machine)
	assert machine.state == AuthState.PAIRING_IN_PROGRESS

	on_qr = page_session.exposed['qrChanged']
	for token in ('a1', 'b2', 'c3'):
		await on_qr(token)

	page_session.pending_waiter(MAIN).set_result(True)
	result = await task

	assert result.authenticated
	assert [event.qr for event in dispatched_events(event_bus, QrReceivedEvent)] == ['a1', 'b2', 'c3']
	observer_call = page_session.evaluate.await_args_list[0]
	assert observer_call.args[1:] == (selectors.QR_CONTAINER, selectors.QR_RETRY_BUTTON)


async def test_qr_max_retries_disconnects_and_destroys(page_session, event_bus, destroy):
	destroy.side_effect = page_session.close_for_teardown
	machine = make_machine(page_session, event_bus, destroy, linking_method=LinkingMethod(qr=QrLinking(max_retries=2)))
	task = await start_qr_pairing(page_session, machine)

	on_qr = page_session.exposed['qrChanged']
	for token in ('a1', 'b2', 'c3', 'd4'):
		await on_qr(token)
	result = await task

	assert [event.qr for event in dispatched_events(event_bus, QrReceivedEvent)] == ['a1', 'b2', 'c3']
	disconnected = dispatched_events(event_bus, DisconnectedEvent)
	assert [event.reason for event in disconnected] == ['Max qrcode retries reached']
	destroy.assert_awaited_once()
	assert result.state == AuthState.AUTH_FAILED
	assert isinstance(result.error, MaxPairingRetriesExceeded)
	assert result.error.max_retries == 2


# endregion

# region - strategy failure


async def test_legacy_session_rejected_requests_restart(page_session, event_bus, destroy):
	strategy = LegacySessionAuth(session={'WABrowserId': 'x', 'WAToken1': 'y'}, restart_on_auth_fail=True)
	machine = make_machine(page_session, event_bus, destroy, strategy=strategy)
	task = await start_detection(page_session, machine.run())

	page_session.pending_waiter(PAIRING).set_result(True)
	result = await task

	assert result.state == AuthState.AUTH_FAILED
	assert result.restart is True
	assert strategy.session is None
	failures = dispatched_events(event_bus, AuthFailureEvent)
	assert [event.payload for event in failures] == ['Unable to log in. Are the session details valid?']
	destroy.assert_awaited_once()


async def test_legacy_session_rejected_without_restart(page_session, event_bus, destroy):
	strategy = LegacySessionAuth(session={'WABrowserId': 'x'})
	machine = make_machine(page_session, event_bus, destroy, strategy=strategy)
	task = await start_detection(page_session, machine.run())

	page_session.pending_waiter(PAIRING).set_result(True)
	result = await task

	assert result.state == AuthState.AUTH_FAILED
	assert result.restart is False
	assert strategy.session is not None


# endregion

# region - phone pairing


async def test_phone_pairing_enters_number_and_emits_codes(page_session, event_bus, destroy):
	page_session.get_value.return_value = '12'
	linking = LinkingMethod(phone=PhoneLinking(number='+7 900 000-00-00'))
	machine = make_machine(page_session, event_bus, destroy, linking_method=linking)
	task = await start_detection(page_session, machine.run())

	page_session.pending_waiter(PAIRING).set_result(True)
	await wait_until(lambda: page_session.has_pending_waiter(selectors.LINK_WITH_PHONE_BUTTON))
	page_session.pending_waiter(selectors.LINK_WITH_PHONE_BUTTON).set_result(True)
	await wait_until(lambda: page_session.has_pending_waiter(selectors.PHONE_NUMBER_INPUT))
	page_session.pending_waiter(selectors.PHONE_NUMBER_INPUT).set_result(True)
	await wait_until(lambda: page_session.has_pending_waiter(MAIN))

	assert page_session.press.await_count == 2
	page_session.type_text.assert_awaited_once_with(selectors.PHONE_NUMBER_INPUT, '79000000000')
	clicked = [call.args[0] for call in page_session.click.await_args_list]
	assert clicked == [selectors.LINK_WITH_PHONE_BUTTON, selectors.PHONE_NUMBER_INPUT, selectors.NEXT_BUTTON]

	await page_session.exposed['codeChanged']('ABCD-EFGH')
	page_session.pending_waiter(MAIN).set_result(True)
	result = await task

	assert result.authenticated
	assert [event.code for event in dispatched_events(event_bus, PairingCodeReceivedEvent)] == ['ABCD-EFGH']
	assert 'qrChanged' not in page_session.exposed


# endregion


async def test_teardown_while_pairing_aborts(page_session, event_bus, destroy):
	machine = make_machine(page_session, event_bus, destroy)
	task = await start_qr_pairing(page_session, machine)

	page_session.close_for_teardown()
	result = await task

	assert result.aborted
	assert result.error is None
	assert machine.state == AuthState.PAIRING_IN_PROGRESS
