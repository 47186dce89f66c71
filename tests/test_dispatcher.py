import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from wabridge.commands.dispatcher import (
	CommandDispatcher,
	normalize_country_code_number,
	normalize_formatted_number,
	normalize_user_id,
)
from wabridge.commands.models import SendMessageOptions
from wabridge.commands.sticker import StickerMetadata, get_default_sticker_metadata, set_default_sticker_metadata
from wabridge.exceptions import BridgeNotReadyError, InvalidArgument, PageClosedDuringOperation, RemoteOperationError
from wabridge.structures import ClientInfo, Contact, InviteV4, Location, Message

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 32

RAW_SENT_MESSAGE = {
	'id': {'fromMe': True, 'remote': '123@c.us', 'id': 'ABC', '_serialized': 'true_123@c.us_ABC'},
	'body': 'hello world',
	'type': 'chat',
	't': 1700000000,
}


@pytest.fixture
def relay():
	relay = MagicMock()
	relay.ensure_ready = MagicMock()
	return relay


@pytest.fixture
def dispatcher(page_session, relay):
	return CommandDispatcher(page_session, relay, SimpleNamespace(sticker_converter=None))


@pytest.fixture
def restore_sticker_defaults():
	saved = get_default_sticker_metadata()
	yield
	set_default_sticker_metadata(saved)


# region - bridge guard


async def test_command_before_bridge_ready_raises(dispatcher, relay, page_session):
	relay.ensure_ready.side_effect = BridgeNotReadyError('Bridge is not wired yet')

	with pytest.raises(BridgeNotReadyError):
		await dispatcher.get_chats()

	page_session.evaluate.assert_not_called()


async def test_command_returns_none_when_page_closed_by_teardown(dispatcher, page_session):
	page_session.evaluate.side_effect = PageClosedDuringOperation(during_teardown=True)

	assert await dispatcher.get_chat_by_id('123@c.us') is None
	assert await dispatcher.get_state() is None


async def test_page_closed_outside_teardown_propagates(dispatcher, page_session):
	page_session.evaluate.side_effect = PageClosedDuringOperation()

	with pytest.raises(PageClosedDuringOperation):
		await dispatcher.get_state()


async def test_remote_error_propagates_with_category(dispatcher, page_session):
	page_session.evaluate.side_effect = RemoteOperationError('[LT01] Only Whatsapp business', category='not_allowed')

	with pytest.raises(RemoteOperationError) as exc_info:
		await dispatcher.add_or_remove_labels(['1'], ['123@c.us'])

	assert exc_info.value.category == 'not_allowed'


# endregion

# region - pin_chat


async def test_pin_chat_already_pinned_is_noop(dispatcher, page_session):
	page_session.evaluate.return_value = {'pinned': True, 'pins': [True, False]}

	assert await dispatcher.pin_chat('123@c.us') is True
	assert page_session.evaluate.await_count == 1


async def test_pin_chat_refuses_when_pin_limit_reached(dispatcher, page_session):
	page_session.evaluate.return_value = {'pinned': False, 'pins': [True, True, True, False, False]}

	assert await dispatcher.pin_chat('123@c.us') is False
	assert page_session.evaluate.await_count == 1


async def test_pin_chat_pins_when_slot_available(dispatcher, page_session):
	page_session.evaluate.side_effect = [{'pinned': False, 'pins': [True, False, False, False]}, None]

	assert await dispatcher.pin_chat('123@c.us') is True
	assert page_session.evaluate.await_count == 2
	assert page_session.evaluate.await_args.args[1] == '123@c.us'


async def test_pin_chat_few_chats_always_pins(dispatcher, page_session):
	page_session.evaluate.side_effect = [{'pinned': False, 'pins': [True, True, True]}, None]

	assert await dispatcher.pin_chat('123@c.us') is True


# endregion

# region - groups


async def test_create_group_reports_missing_participants(dispatcher, page_session):
	page_session.evaluate.return_value = {
		'gid': {'_serialized': '999@g.us'},
		'participants': [
			{'id': '111@c.us', 'error': None},
			{'id': '222@c.us', 'error': '403'},
			{'id': '333@c.us', 'error': '200'},
			{'id': '444@c.us', 'error': 0},
			{'id': '555@c.us', 'error': ''},
		],
	}

	result = await dispatcher.create_group('Team', ['111@c.us', '222@c.us', Contact(id='333@c.us')])

	assert result.title == 'Team'
	assert result.gid == '999@g.us'
	assert result.missing_participants == {'222@c.us': '403'}
	assert page_session.evaluate.await_args.args[2] == ['111@c.us', '222@c.us', '333@c.us']


@pytest.mark.parametrize('participants', [[], (), '111@c.us'])
async def test_create_group_requires_participants(dispatcher, page_session, participants):
	with pytest.raises(InvalidArgument):
		await dispatcher.create_group('Team', participants)

	page_session.evaluate.assert_not_called()


async def test_accept_group_v4_invite_validates_code(dispatcher, page_session):
	with pytest.raises(InvalidArgument, match='Invalid invite code'):
		await dispatcher.accept_group_v4_invite({'groupId': '999@g.us', 'fromId': '111@c.us'})

	with pytest.raises(InvalidArgument, match='Expired'):
		await dispatcher.accept_group_v4_invite(
			InviteV4(group_id='999@g.us', from_id='111@c.us', invite_code='abc', invite_code_exp=0)
		)

	page_session.evaluate.assert_not_called()


async def test_accept_group_v4_invite_passes_fields(dispatcher, page_session):
	page_session.evaluate.return_value = {'status': 200}

	await dispatcher.accept_group_v4_invite(
		{'groupId': '999@g.us', 'fromId': '111@c.us', 'inviteCode': 'abc', 'inviteCodeExp': 1700000000}
	)

	assert page_session.evaluate.await_args.args[1:] == ('999@g.us', '111@c.us', 'abc', 1700000000)


# endregion

# region - numbers


def test_normalize_formatted_number():
	assert normalize_formatted_number('5511999') == '5511999@s.whatsapp.net'
	assert normalize_formatted_number('5511999@c.us') == '5511999@s.whatsapp.net'
	assert normalize_formatted_number('5511999@s.whatsapp.net') == '5511999@s.whatsapp.net'


def test_normalize_country_code_number_replaces_all_occurrences():
	assert normalize_country_code_number('+55 11 999 99@c.us') == '551199999'


def test_normalize_user_id():
	assert normalize_user_id('5511999') == '5511999@c.us'
	assert normalize_user_id('5511999@c.us') == '5511999@c.us'


async def test_is_registered_user(dispatcher, page_session):
	page_session.evaluate.return_value = {'_serialized': '5511999@c.us'}
	assert await dispatcher.is_registered_user('5511999') is True
	assert page_session.evaluate.await_args.args[1] == '5511999@c.us'

	page_session.evaluate.return_value = None
	assert await dispatcher.is_registered_user('5511000') is False


async def test_profile_picture_requires_client_info(dispatcher, page_session):
	with pytest.raises(BridgeNotReadyError):
		await dispatcher.delete_profile_picture()

	dispatcher.client_info = ClientInfo(wid='5511999@c.us')
	page_session.evaluate.return_value = True

	assert await dispatcher.delete_profile_picture() is True
	assert page_session.evaluate.await_args.args[1] == '5511999@c.us'


# endregion

# region - send_message


async def test_send_text_message(dispatcher, page_session):
	page_session.evaluate.return_value = RAW_SENT_MESSAGE

	message = await dispatcher.send_message('123@c.us', 'hello world', quoted='false_123@c.us_XYZ', mentions=[Contact(id='1@c.us')])

	assert isinstance(message, Message)
	assert message.id.serialized == 'true_123@c.us_ABC'
	_, chat_id, content, internal, send_seen = page_session.evaluate.await_args.args
	assert chat_id == '123@c.us'
	assert content == 'hello world'
	assert 'attachment' not in internal
	assert internal['quotedMessageId'] == 'false_123@c.us_XYZ'
	assert internal['mentionedJidList'] == ['1@c.us']
	assert send_seen is True


async def test_send_png_bytes_as_attachment(dispatcher, page_session):
	page_session.evaluate.return_value = RAW_SENT_MESSAGE

	await dispatcher.send_message('123@c.us', PNG_BYTES, caption='look')

	_, _, content, internal, _ = page_session.evaluate.await_args.args
	attachment = internal['attachment']
	assert content == ''
	assert internal['caption'] == 'look'
	assert attachment['mimetype'] == 'image/png'
	assert attachment['filename'].endswith('.png')
	assert attachment['filesize'] == len(PNG_BYTES)
	assert base64.b64decode(attachment['data']) == PNG_BYTES


async def test_send_unknown_bytes_falls_back_to_text(dispatcher, page_session):
	page_session.evaluate.return_value = RAW_SENT_MESSAGE

	await dispatcher.send_message('123@c.us', b'plain words')

	_, _, content, internal, _ = page_session.evaluate.await_args.args
	assert content == 'plain words'
	assert 'attachment' not in internal


async def test_send_location(dispatcher, page_session):
	page_session.evaluate.return_value = RAW_SENT_MESSAGE

	await dispatcher.send_message('123@c.us', Location(latitude=1.5, longitude=2.5, name='Office'))

	_, _, content, internal, _ = page_session.evaluate.await_args.args
	assert content == ''
	assert internal['location']['name'] == 'Office'


async def test_send_contact_cards(dispatcher, page_session):
	page_session.evaluate.return_value = RAW_SENT_MESSAGE

	await dispatcher.send_message('123@c.us', [Contact(id='1@c.us'), Contact(id='2@c.us')])

	internal = page_session.evaluate.await_args.args[3]
	assert internal['contactCardList'] == ['1@c.us', '2@c.us']


async def test_send_unsupported_content(dispatcher):
	with pytest.raises(InvalidArgument):
		await dispatcher.send_message('123@c.us', 42)


async def test_send_sticker_uses_defaults_for_missing_fields(page_session, relay, restore_sticker_defaults):
	converter = AsyncMock(return_value={'mimetype': 'image/webp', 'data': 'AAAA'})
	dispatcher = CommandDispatcher(page_session, relay, SimpleNamespace(sticker_converter=converter))
	set_default_sticker_metadata(pack_name='Default pack', pack_publish='Default author')
	page_session.evaluate.return_value = RAW_SENT_MESSAGE

	await dispatcher.send_message('123@c.us', PNG_BYTES, SendMessageOptions(as_sticker=True, pack_name='Custom pack'))

	attachment, metadata, session = converter.await_args.args
	assert attachment['mimetype'] == 'image/png'
	assert metadata == StickerMetadata(pack_name='Custom pack', pack_publish='Default author')
	assert session is page_session
	assert page_session.evaluate.await_args.args[3]['attachment'] == {'mimetype': 'image/webp', 'data': 'AAAA'}


def test_send_message_options_reject_unknown_fields():
	with pytest.raises(ValueError):
		SendMessageOptions(unknown_option=True)


# endregion


async def test_screenshot_sets_viewport(dispatcher, page_session):
	assert await dispatcher.screenshot() == b'\x89PNG'
	page_session.set_viewport.assert_awaited_once_with(961, 2000)
