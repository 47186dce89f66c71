import pytest

from wabridge.events import EVENT_NAMES, MessageReceivedEvent, QrReceivedEvent, resolve_event_class
from wabridge.exceptions import RemoteOperationError
from wabridge.helpers import is_target_closed_error
from wabridge.session.page_operations import classify_page_error, remote_error_from_exception_details
from wabridge.structures import Chat, ClientInfo, Message, MessageKey


def test_resolve_event_class_by_name_and_class():
	assert resolve_event_class('qr') is QrReceivedEvent
	assert resolve_event_class('message') is MessageReceivedEvent
	assert resolve_event_class(QrReceivedEvent) is QrReceivedEvent


def test_resolve_event_class_rejects_unknown():
	with pytest.raises(ValueError, match='Unknown event name'):
		resolve_event_class('messages')
	with pytest.raises(TypeError):
		resolve_event_class(dict)


def test_event_names_are_unique_classes():
	assert len(set(EVENT_NAMES.values())) == len(EVENT_NAMES)


# region - models


def test_message_key_from_string():
	key = MessageKey.from_string('false_123@c.us_3EB0ABC')

	assert key.from_me is False
	assert key.remote == '123@c.us'
	assert key.id == '3EB0ABC'
	assert key.participant is None
	assert str(key) == 'false_123@c.us_3EB0ABC'


def test_group_message_key_keeps_participant():
	key = MessageKey.from_string('true_999@g.us_3EB0ABC_111@c.us')

	assert key.from_me is True
	assert key.participant == '111@c.us'


def test_message_key_rejects_garbage():
	with pytest.raises(ValueError):
		MessageKey.from_string('not-a-key')


def test_message_from_raw():
	message = Message.from_raw(
		{
			'id': {'fromMe': False, 'remote': {'_serialized': '123@c.us'}, 'id': 'ABC', '_serialized': 'false_123@c.us_ABC'},
			'body': 'hi',
			'type': 'chat',
			't': 1700000000,
			'from': {'_serialized': '123@c.us'},
			'to': '999@c.us',
			'mediaKey': 'k',
			'directPath': '/d',
			'mentionedJidList': [{'_serialized': '1@c.us'}, '2@c.us'],
		}
	)

	assert message.id.remote == '123@c.us'
	assert message.from_ == '123@c.us'
	assert message.chat_id == '123@c.us'
	assert message.has_media is True
	assert message.mentioned_ids == ['1@c.us', '2@c.us']
	assert message.raw['body'] == 'hi'
	assert Message.from_raw(None) is None


def test_chat_and_client_info_from_raw():
	chat = Chat.from_raw({'id': {'_serialized': '999@g.us'}, 'isGroup': True, 'formattedTitle': 'Team', 'unreadCount': 2})
	info = ClientInfo.from_raw({'wid': {'_serialized': '5511999@c.us'}, 'pushname': 'Me', 'platform': 'android'})

	assert (chat.id, chat.name, chat.is_group, chat.unread_count) == ('999@g.us', 'Team', True, 2)
	assert (info.wid, info.pushname) == ('5511999@c.us', 'Me')


def test_models_are_frozen():
	chat = Chat(id='1@c.us')

	with pytest.raises(ValueError):
		chat.name = 'changed'


# endregion

# region - page errors


@pytest.mark.parametrize(
	'name, message, status, category',
	[
		('Error', '[LT01] Only Whatsapp business', None, 'not_allowed'),
		('Error', 'Chat 123@c.us not found', None, 'not_found'),
		('ServerStatusCodeError', 'rate-overlimit', None, 'rate_limited'),
		('Error', 'something odd', 401, 'privacy_restricted'),
		('TypeError', 'Cannot read properties of undefined', None, 'invalid'),
		('Error', 'something odd', None, 'unknown'),
	],
)
def test_classify_page_error(name, message, status, category):
	assert classify_page_error(name, message, status) == category


def test_remote_error_from_exception_details():
	error = remote_error_from_exception_details(
		{
			'text': 'Uncaught',
			'exception': {
				'className': 'Error',
				'description': 'Error: Chat 123@c.us not found\n    at <anonymous>:3:27',
				'preview': {'properties': [{'name': 'status', 'value': '404'}]},
			},
		}
	)

	assert isinstance(error, RemoteOperationError)
	assert error.message == 'Chat 123@c.us not found'
	assert error.category == 'not_found'
	assert error.remote_name == 'Error'
	assert str(error) == '[not_found] Chat 123@c.us not found'


def test_is_target_closed_error():
	assert is_target_closed_error(RuntimeError('Target closed'))
	assert is_target_closed_error(RuntimeError('Execution context was destroyed.'))
	assert not is_target_closed_error(RuntimeError('Chat not found'))


# endregion
