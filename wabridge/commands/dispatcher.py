"""Команды клиента: каждая операция выполняет функцию в странице и нормализует результат."""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

from wabridge.commands.content import load_content, random_file_name, sniff_kind
from wabridge.commands.models import SearchOptions, SendMessageOptions
from wabridge.commands.sticker import page_sticker_converter, resolve_sticker_metadata
from wabridge.exceptions import BridgeNotReadyError, InvalidArgument, PageClosedDuringOperation
from wabridge.structures.models import (
	Chat,
	ClientInfo,
	Contact,
	CreateGroupResult,
	InviteV4,
	Label,
	Location,
	Message,
	MessageMedia,
	serialized_id,
)

if TYPE_CHECKING:
	from wabridge.bridge.relay import BridgeRelay
	from wabridge.options import ClientOptions
	from wabridge.session.session import PageSession

MAX_PIN_COUNT = 3
SCREENSHOT_VIEWPORT = (961, 2000)

_SEND_MESSAGE = """async (chatId, message, options, sendSeen) => {
	const chatWid = window.Store.WidFactory.createWid(chatId);
	const chat = await window.Store.Chat.find(chatWid);
	if (sendSeen) {
		window.WWebJS.sendSeen(chatId);
	}
	const msg = await window.WWebJS.sendMessage(chat, message, options, sendSeen);
	return msg ? msg.serialize() : null;
}"""

_SEARCH_MESSAGES = """async (query, page, count, remote) => {
	const { messages } = await window.Store.Msg.search(query, page, count, remote);
	return messages.map((msg) => window.WWebJS.getMessageModel(msg));
}"""

_GET_MESSAGE_BY_ID = """async (messageId) => {
	let msg = window.Store.Msg.get(messageId);
	if (msg) return window.WWebJS.getMessageModel(msg);

	const params = messageId.split('_');
	if (params.length !== 3) throw new Error('Invalid serialized message id specified');

	const messagesObject = await window.Store.Msg.getMessagesById([messageId]);
	if (messagesObject && messagesObject.messages.length) msg = messagesObject.messages[0];
	return msg ? window.WWebJS.getMessageModel(msg) : null;
}"""

_SET_DISPLAY_NAME = """async (displayName) => {
	if (!window.Store.Conn.canSetMyPushname()) return false;
	if (window.Store.MDBackend) return false;
	const res = await window.Store.Wap.setPushname(displayName);
	return !res.status || res.status === 200;
}"""

_PIN_STATE = """(chatId) => {
	const chat = window.Store.Chat.get(chatId);
	if (!chat) throw new Error(`Chat ${chatId} not found`);
	return {
		pinned: Boolean(chat.pin),
		pins: window.Store.Chat.getModelsArray().map((model) => Boolean(model.pin)),
	};
}"""

_GET_PROFILE_PIC_URL = """async (contactId) => {
	try {
		const chatWid = window.Store.WidFactory.createWid(contactId);
		const profilePic = await window.Store.ProfilePic.profilePicFind(chatWid);
		return profilePic ? profilePic.eurl : null;
	} catch (err) {
		if (err.name === 'ServerStatusCodeError') return null;
		throw err;
	}
}"""

_GET_COMMON_GROUPS = """async (contactId) => {
	let contact = window.Store.Contact.get(contactId);
	if (!contact) {
		const wid = window.Store.WidFactory.createUserWid(contactId);
		const ContactModel = window.Store.Contact.getModelsArray().find((c) => !c.isGroup).constructor;
		contact = new ContactModel({ id: wid });
	}
	if (!contact.commonGroups) {
		const status = await window.Store.findCommonGroups(contact);
		if (!status) return [];
	}
	return contact.commonGroups.serialize().map((group) => group.id._serialized ?? group.id);
}"""

_GET_NUMBER_ID = """async (number) => {
	const wid = window.Store.WidFactory.createWid(number);
	const result = await window.Store.QueryExist(wid);
	if (!result || result.wid === undefined) return null;
	return result.wid._serialized ?? result.wid;
}"""

_CREATE_GROUP = """async (name, participantIds) => {
	const participantWids = participantIds.map((p) => window.Store.WidFactory.createWid(p));
	const res = await window.Store.GroupUtils.createGroup(name, participantWids, 0);
	return {
		gid: res.wid._serialized ?? res.wid,
		participants: res.participants.map((p) => ({
			id: p.wid._serialized ?? p.wid,
			error: p.error === undefined || p.error === null ? null : p.error.toString(),
		})),
	};
}"""

_GET_CHATS_BY_LABEL_ID = """(labelId) => {
	const label = window.Store.Label.get(labelId);
	const labelItems = label.labelItemCollection.getModelsArray();
	return labelItems.filter((item) => item.parentType === 'Chat').map((item) => item.parentId);
}"""

_GET_BLOCKED_CONTACTS = """() => {
	const contactIds = window.Store.Blocklist.getModelsArray().map((a) => a.id._serialized);
	return Promise.all(contactIds.map((id) => window.WWebJS.getContact(id)));
}"""

_ADD_OR_REMOVE_LABELS = """async (labelIds, chatIds) => {
	if (['smba', 'smbi'].indexOf(window.Store.Conn.platform) === -1) {
		throw new Error('[LT01] Only Whatsapp business');
	}
	const labels = window.WWebJS.getLabels().filter((e) => labelIds.find((l) => l == e.id) !== undefined);
	const chats = window.Store.Chat.filter((e) => chatIds.includes(e.id._serialized));

	const actions = labels.map((label) => ({ id: label.id, type: 'add' }));
	chats.forEach((chat) => {
		(chat.labels || []).forEach((n) => {
			if (!actions.find((e) => e.id == n)) actions.push({ id: n, type: 'remove' });
		});
	});
	return await window.Store.Label.addOrRemoveLabels(actions, chats);
}"""

_GROUP_METADATA = """async (chatId) => {
	const chatWid = window.Store.WidFactory.createWid(chatId);
	const chat = await window.Store.GroupMetadata.find(chatWid);
	return chat ? chat.serialize() : null;
}"""


def normalize_formatted_number(number: str) -> str:
	"""Привести номер к виду <номер>@s.whatsapp.net."""
	if not number.endswith('@s.whatsapp.net'):
		number = number.replace('c.us', 's.whatsapp.net', 1)
	if '@s.whatsapp.net' not in number:
		number = f'{number}@s.whatsapp.net'
	return number


def normalize_country_code_number(number: str) -> str:
	return number.replace(' ', '').replace('+', '').replace('@c.us', '')


def normalize_user_id(number: str) -> str:
	return number if number.endswith('@c.us') else f'{number}@c.us'


class CommandDispatcher:
	"""Публичные операции клиента поверх PageSession.

	Каждая операция проверяет, что мост подключён (BridgeNotReadyError), выполняет
	функцию в странице и нормализует результат в модели wabridge.structures.
	Ошибки страницы приходят как RemoteOperationError с категорией. Если страница
	закрылась из-за идущего teardown, операция возвращает None.
	"""

	def __init__(self, session: 'PageSession', relay: 'BridgeRelay', options: 'ClientOptions') -> None:
		self.session = session
		self.relay = relay
		self.options = options
		self.client_info: ClientInfo | None = None

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'wabridge.CommandDispatcher.{self.session.id[-4:]}')

	async def _evaluate(self, page_function: str, *args: Any) -> Any:
		self.relay.ensure_ready()
		try:
			return await self.session.evaluate(page_function, *args)
		except PageClosedDuringOperation as e:
			if e.during_teardown:
				self.logger.debug(f'Page closed by teardown during command, ignoring: {e}')
				return None
			raise

	def _own_wid(self) -> str:
		if self.client_info is None or not self.client_info.wid:
			raise BridgeNotReadyError('Client info is not available yet, wait for the ready event')
		return self.client_info.wid

	# region - messages

	async def get_wweb_version(self) -> str | None:
		return await self._evaluate('() => window.Debug.VERSION')

	async def send_seen(self, chat_id: str) -> bool:
		return bool(await self._evaluate('async (chatId) => window.WWebJS.sendSeen(chatId)', chat_id))

	async def send_message(
		self,
		chat_id: str,
		content: Any,
		options: SendMessageOptions | None = None,
		**option_fields: Any,
	) -> Message | None:
		"""Отправить сообщение.

		content: текст, bytes, base64, data URI, http(s) URL, путь к файлу,
		MessageMedia, Location, Contact или список Contact. Файловое содержимое
		определяется по сигнатуре; неизвестный тип без явного mimetype и HTML
		отправляются как текст.
		"""
		self.relay.ensure_ready()
		if options is None:
			options = SendMessageOptions(**option_fields)
		elif option_fields:
			options = options.model_copy(update=option_fields)

		internal: dict[str, Any] = {
			'linkPreview': options.link_preview,
			'sendAudioAsVoice': options.ptt,
			'sendVideoAsGif': options.gif_playback,
			'sendMediaAsSticker': options.as_sticker,
			'sendMediaAsDocument': options.as_document,
			'caption': options.caption,
			'quotedMessageId': options.quoted_message_id(),
			'parseVCards': options.parse_vcards,
			'mentionedJidList': options.mentioned_ids(),
			'extraOptions': options.extra,
		}

		attachment: dict[str, Any] | None = None
		kind = sniff_kind(content)
		if kind is not None:
			loaded = await load_content(content, kind)
			ext = loaded.ext if loaded is not None else '.bin'
			if loaded is None or (not options.mimetype and ext == '.bin') or ext == '.html':
				self.logger.debug(f'📝 Content sniffed as {kind} but type is {ext}, sending as text')
				if isinstance(content, (bytes, bytearray, memoryview)):
					content = bytes(content).decode('utf-8', errors='replace')
			else:
				attachment = {
					'mimetype': options.mimetype or loaded.mimetype,
					'data': loaded.as_base64(),
					'filename': options.file_name or random_file_name(ext),
					'filesize': options.file_size or loaded.size,
				}
				content = ''

		if attachment is None:
			if isinstance(content, MessageMedia):
				attachment = content.to_page_payload()
				content = ''
			elif options.media is not None:
				attachment = options.media.to_page_payload()
				internal['caption'] = content
				content = ''
			elif isinstance(content, Location):
				internal['location'] = content.to_page_payload()
				content = ''
			elif isinstance(content, Contact):
				internal['contactCard'] = content.id
				content = ''
			elif isinstance(content, list) and content and isinstance(content[0], Contact):
				internal['contactCardList'] = [contact.id for contact in content]
				content = ''
			elif not isinstance(content, str):
				raise InvalidArgument(f'Unsupported message content type: {type(content).__name__}')

		if attachment is not None and options.as_sticker:
			converter = self.options.sticker_converter or page_sticker_converter
			attachment = await converter(attachment, resolve_sticker_metadata(options), self.session)
		if attachment is not None:
			internal['attachment'] = attachment

		raw_message = await self._evaluate(_SEND_MESSAGE, chat_id, content, internal, options.send_seen)
		return Message.from_raw(raw_message)

	async def search_messages(self, query: str, options: SearchOptions | None = None, **option_fields: Any) -> list[Message]:
		options = options or SearchOptions(**option_fields)
		messages = await self._evaluate(_SEARCH_MESSAGES, query, options.page, options.count, options.remote)
		return [message for message in map(Message.from_raw, messages or []) if message is not None]

	async def get_message_by_id(self, message_id: str) -> Message | None:
		return Message.from_raw(await self._evaluate(_GET_MESSAGE_BY_ID, message_id))

	# endregion

	# region - chats and contacts

	async def get_chats(self) -> list[Chat]:
		chats = await self._evaluate('async () => await window.WWebJS.getChats()')
		return [chat for chat in map(Chat.from_raw, chats or []) if chat is not None]

	async def get_chat_by_id(self, chat_id: str) -> Chat | None:
		return Chat.from_raw(await self._evaluate('async (chatId) => await window.WWebJS.getChat(chatId)', chat_id))

	async def get_contacts(self) -> list[Contact]:
		contacts = await self._evaluate('() => window.WWebJS.getContacts()')
		return [contact for contact in map(Contact.from_raw, contacts or []) if contact is not None]

	async def get_contact_by_id(self, contact_id: str) -> Contact | None:
		return Contact.from_raw(await self._evaluate('(contactId) => window.WWebJS.getContact(contactId)', contact_id))

	async def get_blocked_contacts(self) -> list[Contact]:
		contacts = await self._evaluate(_GET_BLOCKED_CONTACTS)
		return [contact for contact in map(Contact.from_raw, contacts or []) if contact is not None]

	async def archive_chat(self, chat_id: str) -> bool:
		await self._evaluate(
			'async (chatId) => { const chat = await window.Store.Chat.get(chatId); await window.Store.Cmd.archiveChat(chat, true); }',
			chat_id,
		)
		return True

	async def unarchive_chat(self, chat_id: str) -> bool:
		await self._evaluate(
			'async (chatId) => { const chat = await window.Store.Chat.get(chatId); await window.Store.Cmd.archiveChat(chat, false); }',
			chat_id,
		)
		return False

	async def pin_chat(self, chat_id: str) -> bool:
		"""Закрепить чат. Не больше MAX_PIN_COUNT закреплённых: если третий чат списка уже закреплён, ничего не меняет."""
		state = await self._evaluate(_PIN_STATE, chat_id)
		if state is None:
			return False
		if state['pinned']:
			return True
		pins = state['pins']
		if len(pins) > MAX_PIN_COUNT and pins[MAX_PIN_COUNT - 1]:
			self.logger.debug(f'📌 Cannot pin {chat_id}: {MAX_PIN_COUNT} chats are already pinned')
			return False
		await self._evaluate(
			'async (chatId) => { await window.Store.Cmd.pinChat(window.Store.Chat.get(chatId), true); }',
			chat_id,
		)
		return True

	async def unpin_chat(self, chat_id: str) -> bool:
		await self._evaluate(
			"""async (chatId) => {
				const chat = window.Store.Chat.get(chatId);
				if (chat.pin) await window.Store.Cmd.pinChat(chat, false);
			}""",
			chat_id,
		)
		return False

	async def mute_chat(self, chat_id: str, unmute_date: datetime | None = None) -> None:
		expiration = int(unmute_date.timestamp()) if unmute_date else -1
		await self._evaluate(
			"""async (chatId, timestamp) => {
				const chat = await window.Store.Chat.get(chatId);
				await chat.mute.mute({ expiration: timestamp, sendDevice: true });
			}""",
			chat_id,
			expiration,
		)

	async def unmute_chat(self, chat_id: str) -> None:
		await self._evaluate(
			'async (chatId) => { const chat = await window.Store.Chat.get(chatId); await window.Store.Cmd.muteChat(chat, false); }',
			chat_id,
		)

	async def mark_chat_unread(self, chat_id: str) -> None:
		await self._evaluate(
			'async (chatId) => { const chat = await window.Store.Chat.get(chatId); await window.Store.Cmd.markChatUnread(chat, true); }',
			chat_id,
		)

	async def get_profile_pic_url(self, contact_id: str) -> str | None:
		return await self._evaluate(_GET_PROFILE_PIC_URL, contact_id)

	async def get_common_groups(self, contact_id: str) -> list[str]:
		return list(await self._evaluate(_GET_COMMON_GROUPS, contact_id) or [])

	async def get_name(self, contact_id: str) -> str | None:
		contact = await self.get_contact_by_id(contact_id)
		if contact is None:
			return None
		return contact.name or contact.pushname or contact.short_name or contact.number

	# endregion

	# region - numbers

	async def get_number_id(self, number: str) -> str | None:
		return serialized_id(await self._evaluate(_GET_NUMBER_ID, normalize_user_id(number)))

	async def is_registered_user(self, number: str) -> bool:
		return bool(await self.get_number_id(number))

	async def get_formatted_number(self, number: str) -> str | None:
		return await self._evaluate(
			'async (numberId) => window.Store.NumberInfo.formattedPhoneNumber(numberId)',
			normalize_formatted_number(number),
		)

	async def get_country_code(self, number: str) -> str | None:
		return await self._evaluate(
			'async (numberId) => window.Store.NumberInfo.findCC(numberId)',
			normalize_country_code_number(number),
		)

	# endregion

	# region - groups and invites

	async def get_invite_info(self, invite_code: str) -> dict[str, Any] | None:
		return await self._evaluate('(inviteCode) => window.Store.InviteInfo.queryGroupInvite(inviteCode)', invite_code)

	async def accept_invite(self, invite_code: str) -> str | None:
		return await self._evaluate(
			"""async (inviteCode) => {
				const res = await window.Store.Invite.joinGroupViaInvite(inviteCode);
				return res.gid._serialized;
			}""",
			invite_code,
		)

	async def accept_group_v4_invite(self, invite: InviteV4 | dict[str, Any]) -> Any:
		if isinstance(invite, dict):
			invite = InviteV4(
				group_id=invite.get('group_id') or invite.get('groupId') or '',
				from_id=invite.get('from_id') or invite.get('fromId') or '',
				invite_code=invite.get('invite_code') or invite.get('inviteCode'),
				invite_code_exp=invite.get('invite_code_exp', invite.get('inviteCodeExp')),
			)
		if not invite.invite_code:
			raise InvalidArgument('Invalid invite code, try passing the message.inviteV4 object')
		if invite.invite_code_exp == 0:
			raise InvalidArgument('Expired invite code')
		return await self._evaluate(
			"""async (groupId, fromId, inviteCode, inviteCodeExp) => {
				const userWid = window.Store.WidFactory.createWid(fromId);
				return await window.Store.JoinInviteV4.joinGroupViaInviteV4(inviteCode, String(inviteCodeExp), groupId, userWid);
			}""",
			invite.group_id,
			invite.from_id,
			invite.invite_code,
			invite.invite_code_exp,
		)

	async def create_group(self, name: str, participants: Sequence[str | Contact]) -> CreateGroupResult | None:
		"""Создать группу. Участники, которых не удалось добавить, попадают в missing_participants."""
		if not isinstance(participants, (list, tuple)) or len(participants) == 0:
			raise InvalidArgument('You need to add at least one other participant to the group')
		participant_ids = [participant.id if isinstance(participant, Contact) else participant for participant in participants]

		result = await self._evaluate(_CREATE_GROUP, name, participant_ids)
		if result is None:
			return None
		# пустая ошибка участника означает успешное добавление
		errors = {participant['id']: str(participant.get('error') or '200') for participant in result.get('participants') or []}
		missing = {participant_id: error for participant_id, error in errors.items() if error != '200'}
		return CreateGroupResult(title=name, gid=serialized_id(result['gid']) or '', missing_participants=missing)

	async def group_metadata(self, chat_id: str) -> dict[str, Any] | None:
		return await self._evaluate(_GROUP_METADATA, chat_id)

	# endregion

	# region - labels

	async def get_labels(self) -> list[Label]:
		labels = await self._evaluate('async () => window.WWebJS.getLabels()')
		return [label for label in map(Label.from_raw, labels or []) if label is not None]

	async def get_label_by_id(self, label_id: str) -> Label | None:
		return Label.from_raw(await self._evaluate('async (labelId) => window.WWebJS.getLabel(labelId)', label_id))

	async def get_chat_labels(self, chat_id: str) -> list[Label]:
		labels = await self._evaluate('async (chatId) => window.WWebJS.getChatLabels(chatId)', chat_id)
		return [label for label in map(Label.from_raw, labels or []) if label is not None]

	async def get_chats_by_label_id(self, label_id: str) -> list[Chat]:
		chat_ids = await self._evaluate(_GET_CHATS_BY_LABEL_ID, label_id)
		chats = await asyncio.gather(*(self.get_chat_by_id(serialized_id(chat_id) or '') for chat_id in chat_ids or []))
		return [chat for chat in chats if chat is not None]

	async def add_or_remove_labels(self, label_ids: Sequence[str | int], chat_ids: Sequence[str]) -> Any:
		"""Только для WhatsApp Business, иначе RemoteOperationError с категорией not_allowed."""
		return await self._evaluate(_ADD_OR_REMOVE_LABELS, list(label_ids), list(chat_ids))

	# endregion

	# region - account and state

	async def set_status(self, status: str) -> None:
		await self._evaluate('async (status) => await window.Store.StatusUtils.setMyStatus(status)', status)

	async def set_display_name(self, display_name: str) -> bool:
		return bool(await self._evaluate(_SET_DISPLAY_NAME, display_name))

	async def get_state(self) -> str | None:
		return await self._evaluate('() => window.Store ? window.Store.AppState.state : null')

	async def send_presence_available(self) -> None:
		await self._evaluate('() => window.Store.PresenceUtils.sendPresenceAvailable()')

	async def send_presence_unavailable(self) -> None:
		await self._evaluate('() => window.Store.PresenceUtils.sendPresenceUnavailable()')

	async def reset_state(self) -> None:
		await self._evaluate('() => { window.Store.AppState.phoneWatchdog.shiftTimer.forceRunNow(); }')

	async def logout_page(self) -> None:
		await self._evaluate('() => window.Store.AppState.logout()')

	async def takeover(self) -> None:
		"""Забрать сессию у другого открытого WhatsApp Web после CONFLICT."""
		await self._evaluate('() => window.Store.AppState.takeover()')

	async def set_profile_picture(self, media: MessageMedia) -> bool:
		return bool(
			await self._evaluate(
				'(chatId, media) => window.WWebJS.setPicture(chatId, media)',
				self._own_wid(),
				media.to_page_payload(),
			)
		)

	async def delete_profile_picture(self) -> bool:
		return bool(await self._evaluate('(chatId) => window.WWebJS.deletePicture(chatId)', self._own_wid()))

	async def screenshot(self) -> bytes | None:
		"""PNG-снимок вкладки с окном 961x2000."""
		self.relay.ensure_ready()
		try:
			await self.session.set_viewport(*SCREENSHOT_VIEWPORT)
			return await self.session.screenshot()
		except PageClosedDuringOperation as e:
			if e.during_teardown:
				return None
			raise

	# endregion
