import asyncio
from unittest.mock import AsyncMock, MagicMock, PropertyMock

import pytest
from bubus import EventBus

from tests.helpers import dispatched_events
from wabridge.bridge import BridgeRelay
from wabridge.bridge import scripts
from wabridge.events import (
	BatteryChangedEvent,
	ContactChangedEvent,
	GroupJoinEvent,
	GroupLeaveEvent,
	GroupUpdateEvent,
	MessageCreateEvent,
	MessageEditEvent,
	MessageReactionEvent,
	MessageReceivedEvent,
	MessageRevokeEveryoneEvent,
	QrReceivedEvent,
	StateChangedEvent,
	UnreadCountEvent,
)
from wabridge.exceptions import BridgeNotReadyError, BridgeSealedError
from wabridge.structures import Chat


def raw_message(message_id='X', from_me=False, remote='111@c.us', **fields):
	key = {
		'fromMe': from_me,
		'remote': remote,
		'id': message_id,
		'_serialized': f'{"true" if from_me else "false"}_{remote}_{message_id}',
	}
	return {'id': key, 'type': 'chat', 'body': '', 't': 1700000000, **fields}


@pytest.fixture
def fetch_chat():
	return AsyncMock(return_value=Chat(id='111@c.us', unread_count=4))


@pytest.fixture
def relay(page_session, event_bus, fetch_chat):
	return BridgeRelay(page_session, event_bus, fetch_chat)


# region - wiring


async def test_wire_exposes_functions_and_seals(relay, page_session):
	page_session.evaluate.return_value = True
	relay.expose_host_function('onCustom', MagicMock())
	assert not relay.is_ready
	with pytest.raises(BridgeNotReadyError):
		relay.ensure_ready()

	await relay.wire()

	assert relay.is_ready
	assert relay.sealed
	relay.ensure_ready()
	assert {'onAddMessageEvent', 'onReaction', 'onCustom'} <= set(page_session.exposed)
	page_session.evaluate.assert_awaited_once_with(scripts.STORE_OBSERVER)


async def test_sealed_bridge_rejects_new_functions(relay, page_session):
	page_session.evaluate.return_value = True
	await relay.wire()

	with pytest.raises(BridgeSealedError):
		relay.expose_host_function('onLate', MagicMock())
	with pytest.raises(BridgeSealedError):
		relay.subscribe_page_event('onLateEvent', MagicMock())
	with pytest.raises(BridgeSealedError):
		await relay.wire()


async def test_wire_without_store_is_not_ready(relay, page_session):
	page_session.evaluate.return_value = False

	with pytest.raises(BridgeNotReadyError, match='store_scripts'):
		await relay.wire()

	assert not relay.is_ready
	assert not relay.sealed
	with pytest.raises(BridgeNotReadyError):
		relay.ensure_ready()


# endregion

# region - messages


async def test_incoming_message_produces_create_and_received(relay, event_bus):
	await page_event(relay, 'onAddMessageEvent', raw_message(body='hi'))

	events = dispatched_events(event_bus)
	assert [type(event) for event in events] == [MessageCreateEvent, MessageReceivedEvent]
	assert events[0].message.body == 'hi'


async def test_own_message_produces_only_create(relay, event_bus):
	await page_event(relay, 'onAddMessageEvent', raw_message(from_me=True))

	assert [type(event) for event in dispatched_events(event_bus)] == [MessageCreateEvent]


@pytest.mark.parametrize(
	'subtype, event_class',
	[
		('add', GroupJoinEvent),
		('invite', GroupJoinEvent),
		('leave', GroupLeaveEvent),
		('remove', GroupLeaveEvent),
		('subject', GroupUpdateEvent),
	],
)
async def test_group_notifications_are_routed_by_subtype(relay, event_bus, subtype, event_class):
	msg = raw_message(remote='999@g.us', type='gp2', subtype=subtype, recipients=[{'_serialized': '222@c.us'}])

	await page_event(relay, 'onAddMessageEvent', msg)

	events = dispatched_events(event_bus)
	assert [type(event) for event in events] == [event_class]
	assert events[0].notification.chat_id == '999@g.us'
	assert events[0].notification.recipient_ids == ['222@c.us']


async def test_revoke_everyone_pairs_with_last_seen_message(relay, event_bus):
	await page_event(relay, 'onChangeMessageEvent', raw_message('X', body='secret'))
	await page_event(relay, 'onChangeMessageEvent', raw_message('X', type='revoked'))
	await page_event(relay, 'onChangeMessageTypeEvent', raw_message('X', type='revoked'))

	[event] = dispatched_events(event_bus, MessageRevokeEveryoneEvent)
	assert event.message.type == 'revoked'
	assert event.revoked_message is not None
	assert event.revoked_message.body == 'secret'


async def test_revoke_everyone_without_matching_message(relay, event_bus):
	await page_event(relay, 'onChangeMessageEvent', raw_message('OTHER', body='unrelated'))
	await page_event(relay, 'onChangeMessageTypeEvent', raw_message('X', type='revoked'))

	[event] = dispatched_events(event_bus, MessageRevokeEveryoneEvent)
	assert event.revoked_message is None


async def test_change_number_notification(relay, event_bus):
	msg = raw_message(
		type='notification_template',
		subtype='change_number',
		to={'_serialized': '222@c.us'},
		templateParams=[{'_serialized': '111@c.us'}, {'_serialized': '222@c.us'}],
	)

	await page_event(relay, 'onChangeMessageEvent', msg)

	[event] = dispatched_events(event_bus, ContactChangedEvent)
	assert event.is_contact is True
	assert (event.old_id, event.new_id) == ('111@c.us', '222@c.us')


async def test_edit_of_revoked_message_is_ignored(relay, event_bus):
	await page_event(relay, 'onEditMessageEvent', raw_message(type='revoked'), 'new', 'old')
	await page_event(relay, 'onEditMessageEvent', raw_message(), 'new', 'old')

	[event] = dispatched_events(event_bus, MessageEditEvent)
	assert (event.new_body, event.prev_body) == ('new', 'old')


# endregion

# region - reactions, state and chats


async def test_reactions_fan_out_one_event_each(relay, event_bus):
	reactions = [
		{
			'msgKey': 'false_111@c.us_R1',
			'parentMsgKey': 'true_111@c.us_P1',
			'reactionText': '👍',
			'timestamp': 1700000000500,
			'senderUserJid': '111@c.us',
		},
		{'msgKey': 'false_222@c.us_R2', 'parentMsgKey': 'true_111@c.us_P1', 'reactionText': '', 'timestamp': 1700000001000},
	]

	await page_event(relay, 'onReaction', reactions)

	events = dispatched_events(event_bus, MessageReactionEvent)
	assert len(events) == 2
	first = events[0].reaction
	assert first.id.id == 'R1'
	assert first.msg_id.serialized == 'true_111@c.us_P1'
	assert first.msg_id.from_me is True
	assert first.reaction == '👍'
	assert first.sender_id == '111@c.us'
	assert first.timestamp == 1700000000.5
	assert events[1].reaction.reaction == ''


async def test_app_state_change(relay, event_bus):
	await page_event(relay, 'onAppStateChangedEvent', 'CONFLICT')

	[event] = dispatched_events(event_bus, StateChangedEvent)
	assert event.state == 'CONFLICT'


async def test_battery_without_level_is_skipped(relay, event_bus):
	await page_event(relay, 'onBatteryStateChangedEvent', {'plugged': True})
	await page_event(relay, 'onBatteryStateChangedEvent', {'battery': 42, 'plugged': False})

	[event] = dispatched_events(event_bus, BatteryChangedEvent)
	assert event.battery.battery == 42
	assert event.battery.plugged is False


async def test_unread_count_fetches_chat(relay, event_bus, fetch_chat):
	await page_event(relay, 'onChatUnreadCountEvent', {'id': {'_serialized': '111@c.us'}, 'unreadCount': 4})

	fetch_chat.assert_awaited_once_with('111@c.us')
	[event] = dispatched_events(event_bus, UnreadCountEvent)
	assert event.chat.unread_count == 4


async def test_unread_count_for_missing_chat_is_dropped(relay, event_bus, fetch_chat):
	fetch_chat.return_value = None

	await page_event(relay, 'onChatUnreadCountEvent', {'id': '111@c.us', 'unreadCount': 1})

	assert dispatched_events(event_bus) == []


# endregion


async def test_translator_error_is_logged_and_other_translators_run(relay, event_bus, mocker):
	relay.subscribe_page_event('onQr', MagicMock(side_effect=KeyError('ref')))
	relay.subscribe_page_event('onQr', lambda qr: QrReceivedEvent(qr=qr))
	logger = MagicMock()
	mocker.patch.object(BridgeRelay, 'logger', new_callable=PropertyMock, return_value=logger)

	produced = await relay.relay('onQr', 'token')

	assert [event.qr for event in produced] == ['token']
	assert [event.qr for event in dispatched_events(event_bus, QrReceivedEvent)] == ['token']
	logger.error.assert_called_once()
	assert 'KeyError' in logger.error.call_args.args[0]


async def test_state_changes_reach_event_bus_listeners(page_session, fetch_chat):
	event_bus = EventBus(name='RelayTestBus')
	states = []

	def on_state_changed(event: StateChangedEvent):
		states.append(event.state)

	event_bus.on(StateChangedEvent, on_state_changed)
	relay = BridgeRelay(page_session, event_bus, fetch_chat)

	for state in ('OPENING', 'CONNECTED', 'CONFLICT'):
		await asyncio.wait_for(page_event(relay, 'onAppStateChangedEvent', state), timeout=1)
	await event_bus.wait_until_idle(timeout=1)

	assert states == ['OPENING', 'CONNECTED', 'CONFLICT']
	await event_bus.stop(clear=True)


async def page_event(relay, name, *args):
	"""Вызвать host-функцию так, как её вызывает страница."""
	await relay._host_functions[name](*args)
