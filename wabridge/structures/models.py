"""Нормализованные снимки объектов страницы WhatsApp Web.

Все модели неизменяемы и хранят исходный payload страницы в `raw`.
Ни одна модель не держит ссылку на страницу: методы, которым нужна страница,
живут в CommandDispatcher.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def serialized_id(value: Any) -> str | None:
	"""Привести id страницы ({_serialized: ...} или строку) к строке."""
	if value is None:
		return None
	if isinstance(value, dict):
		return value.get('_serialized') or value.get('id')
	return str(value)


class Entity(BaseModel):
	model_config = ConfigDict(frozen=True, extra='ignore', populate_by_name=True)

	raw: dict[str, Any] = Field(default_factory=dict, repr=False, description='Исходный payload страницы')


class MessageKey(Entity):
	"""Ключ сообщения: fromMe, remote, id и participant для групп."""

	from_me: bool = False
	remote: str = ''
	id: str = ''
	participant: str | None = None
	serialized: str = ''

	@classmethod
	def from_raw(cls, data: dict | str | None) -> 'MessageKey | None':
		if data is None:
			return None
		if isinstance(data, str):
			return cls.from_string(data)
		return cls(
			raw=dict(data),
			from_me=bool(data.get('fromMe', False)),
			remote=serialized_id(data.get('remote')) or '',
			id=data.get('id', ''),
			participant=serialized_id(data.get('participant')),
			serialized=data.get('_serialized') or '',
		)

	@classmethod
	def from_string(cls, value: str) -> 'MessageKey':
		"""Разобрать строку вида `{fromMe}_{remote}_{id}[_{participant}]`."""
		parts = value.split('_')
		if len(parts) < 3 or parts[0] not in ('true', 'false'):
			raise ValueError(f'Not a serialized message key: {value!r}')
		return cls(
			raw={'_serialized': value},
			from_me=parts[0] == 'true',
			remote=parts[1],
			id=parts[2],
			participant='_'.join(parts[3:]) or None,
			serialized=value,
		)

	def __str__(self) -> str:
		return self.serialized


class Message(Entity):
	id: MessageKey | None = None
	body: str = ''
	type: str = ''
	timestamp: int | None = None
	from_: str | None = Field(default=None, alias='from')
	to: str | None = None
	author: str | None = None
	ack: int | None = None
	from_me: bool = False
	has_media: bool = False
	has_quoted_msg: bool = False
	has_reaction: bool = False
	is_forwarded: bool = False
	forwarding_score: int = 0
	is_status: bool = False
	is_starred: bool = False
	is_ephemeral: bool = False
	broadcast: bool = False
	subtype: str | None = None
	mentioned_ids: list[str] = Field(default_factory=list)
	links: list[dict[str, Any]] = Field(default_factory=list)

	@classmethod
	def from_raw(cls, data: dict | None) -> 'Message | None':
		if not data:
			return None
		key = MessageKey.from_raw(data.get('id'))
		return cls(
			raw=dict(data),
			id=key,
			body=data.get('body') or data.get('caption') or '',
			type=data.get('type', ''),
			timestamp=data.get('t'),
			from_=serialized_id(data.get('from')),
			to=serialized_id(data.get('to')),
			author=serialized_id(data.get('author')),
			ack=data.get('ack'),
			from_me=key.from_me if key else False,
			has_media=bool(data.get('mediaKey') and data.get('directPath')),
			has_quoted_msg=bool(data.get('quotedMsg')),
			has_reaction=bool(data.get('hasReaction')),
			is_forwarded=bool(data.get('isForwarded')),
			forwarding_score=data.get('forwardingScore') or 0,
			is_status=bool(data.get('isStatusV3') or (key is not None and key.remote == 'status@broadcast')),
			is_starred=bool(data.get('star')),
			is_ephemeral=bool(data.get('isEphemeral')),
			broadcast=bool(data.get('broadcast')),
			subtype=data.get('subtype'),
			mentioned_ids=[serialized_id(mentioned) for mentioned in data.get('mentionedJidList') or []],
			links=list(data.get('links') or []),
		)

	@property
	def chat_id(self) -> str | None:
		"""id чата, к которому относится сообщение."""
		if self.id and self.id.remote:
			return self.id.remote
		return self.to if self.from_me else self.from_


class Chat(Entity):
	id: str = ''
	name: str | None = None
	is_group: bool = False
	is_read_only: bool = False
	unread_count: int = 0
	timestamp: int | None = None
	archived: bool = False
	pinned: bool = False
	is_muted: bool = False
	mute_expiration: int = 0
	last_message: Message | None = None

	@classmethod
	def from_raw(cls, data: dict | None) -> 'Chat | None':
		if not data:
			return None
		return cls(
			raw=dict(data),
			id=serialized_id(data.get('id')) or '',
			name=data.get('formattedTitle') or data.get('name'),
			is_group=bool(data.get('isGroup')),
			is_read_only=bool(data.get('isReadOnly')),
			unread_count=data.get('unreadCount') or 0,
			timestamp=data.get('t'),
			archived=bool(data.get('archive')),
			pinned=bool(data.get('pin')),
			is_muted=bool(data.get('isMuted')),
			mute_expiration=data.get('muteExpiration') or 0,
			last_message=Message.from_raw(data.get('lastMessage')),
		)


class Contact(Entity):
	id: str = ''
	number: str | None = None
	name: str | None = None
	pushname: str | None = None
	short_name: str | None = None
	is_business: bool = False
	is_enterprise: bool = False
	is_me: bool = False
	is_user: bool = False
	is_group: bool = False
	is_wa_contact: bool = False
	is_my_contact: bool = False
	is_blocked: bool = False

	@classmethod
	def from_raw(cls, data: dict | None) -> 'Contact | None':
		if not data:
			return None
		contact_id = data.get('id')
		return cls(
			raw=dict(data),
			id=serialized_id(contact_id) or '',
			number=data.get('userid') or (contact_id.get('user') if isinstance(contact_id, dict) else None),
			name=data.get('name'),
			pushname=data.get('pushname'),
			short_name=data.get('shortName'),
			is_business=bool(data.get('isBusiness')),
			is_enterprise=bool(data.get('isEnterprise')),
			is_me=bool(data.get('isMe')),
			is_user=bool(data.get('isUser')),
			is_group=bool(data.get('isGroup')),
			is_wa_contact=bool(data.get('isWAContact')),
			is_my_contact=bool(data.get('isMyContact')),
			is_blocked=bool(data.get('isBlocked')),
		)


class Label(Entity):
	id: str = ''
	name: str = ''
	hex_color: str | None = None

	@classmethod
	def from_raw(cls, data: dict | None) -> 'Label | None':
		if not data:
			return None
		return cls(raw=dict(data), id=str(data.get('id', '')), name=data.get('name', ''), hex_color=data.get('hexColor'))


class Call(Entity):
	id: str = ''
	from_: str | None = Field(default=None, alias='from')
	timestamp: int | None = None
	is_video: bool = False
	is_group: bool = False
	from_me: bool = False
	can_handle_locally: bool = False
	web_client_should_handle: bool = False
	participants: list[Any] = Field(default_factory=list)

	@classmethod
	def from_raw(cls, data: dict | None) -> 'Call | None':
		if not data:
			return None
		return cls(
			raw=dict(data),
			id=str(data.get('id', '')),
			from_=serialized_id(data.get('peerJid')),
			timestamp=data.get('offerTime'),
			is_video=bool(data.get('isVideo')),
			is_group=bool(data.get('isGroup')),
			from_me=bool(data.get('outgoing')),
			can_handle_locally=bool(data.get('canHandleLocally')),
			web_client_should_handle=bool(data.get('webClientShouldHandle')),
			participants=list(data.get('participants') or []),
		)


class Reaction(Entity):
	id: MessageKey | None = None
	msg_id: MessageKey | None = None
	reaction: str = ''
	sender_id: str | None = None
	timestamp: float | None = None
	orphan: int = 0
	orphan_reason: str | None = None
	read: bool = False
	ack: int | None = None


class GroupNotification(Entity):
	"""Системное сообщение группы (gp2): вход, выход, смена админов и т.п."""

	id: MessageKey | None = None
	body: str = ''
	type: str = ''
	timestamp: int | None = None
	chat_id: str | None = None
	author: str | None = None
	recipient_ids: list[str] = Field(default_factory=list)

	@classmethod
	def from_raw(cls, data: dict | None) -> 'GroupNotification | None':
		if not data:
			return None
		key = MessageKey.from_raw(data.get('id'))
		return cls(
			raw=dict(data),
			id=key,
			body=data.get('body') or '',
			type=data.get('subtype') or '',
			timestamp=data.get('t'),
			chat_id=key.remote if key and key.remote else serialized_id(data.get('from')),
			author=serialized_id(data.get('author')),
			recipient_ids=[serialized_id(recipient) for recipient in data.get('recipients') or []],
		)


class ClientInfo(Entity):
	wid: str = ''
	pushname: str | None = None
	platform: str | None = None

	@classmethod
	def from_raw(cls, data: dict | None) -> 'ClientInfo | None':
		if not data:
			return None
		return cls(
			raw=dict(data),
			wid=serialized_id(data.get('wid') or data.get('me')) or '',
			pushname=data.get('pushname'),
			platform=data.get('platform'),
		)


class BatteryInfo(Entity):
	battery: int
	plugged: bool = False


class MessageMedia(BaseModel):
	"""Вложение: base64-данные с типом и необязательным именем файла."""

	model_config = ConfigDict(frozen=True)

	mimetype: str
	data: str = Field(description='Содержимое в base64')
	filename: str | None = None
	filesize: int | None = None

	def to_page_payload(self) -> dict[str, Any]:
		return {'mimetype': self.mimetype, 'data': self.data, 'filename': self.filename, 'filesize': self.filesize}


class Location(BaseModel):
	model_config = ConfigDict(frozen=True)

	latitude: float
	longitude: float
	name: str | None = None
	address: str | None = None
	url: str | None = None

	def to_page_payload(self) -> dict[str, Any]:
		return {
			'latitude': self.latitude,
			'longitude': self.longitude,
			'name': self.name,
			'address': self.address,
			'url': self.url,
		}


class CreateGroupResult(BaseModel):
	"""Результат создания группы: gid и участники, которых не удалось добавить (код != 200)."""

	model_config = ConfigDict(frozen=True)

	title: str
	gid: str
	missing_participants: dict[str, str] = Field(default_factory=dict)


class InviteV4(BaseModel):
	"""Приглашение в группу, пришедшее сообщением groups_v4_invite."""

	model_config = ConfigDict(frozen=True)

	group_id: str
	from_id: str
	invite_code: str | None = None
	invite_code_exp: int | None = None
