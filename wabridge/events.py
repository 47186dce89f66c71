"""События клиента, которые получает приложение через Client.on().

Каждое событие имеет короткое имя (EVENT_NAMES), совпадающее с именем события WhatsApp Web клиента:
'qr', 'message_create', 'change_state' и т.д.
"""

import inspect
from typing import Any

from bubus import BaseEvent
from pydantic import Field

from wabridge.session.events import _get_timeout
from wabridge.structures.models import BatteryInfo, Call, Chat, GroupNotification, Message, Reaction


class WhatsAppEvent(BaseEvent[None]):
	"""Базовое событие, доставляемое обработчикам приложения."""

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_WhatsAppEvent', 120.0))  # seconds


# ============================================================================
# Аутентификация и состояние
# ============================================================================


class QrReceivedEvent(WhatsAppEvent):
	"""Получен новый QR-токен для сопряжения."""

	qr: str


class PairingCodeReceivedEvent(WhatsAppEvent):
	"""Получен код сопряжения для входа по номеру телефона."""

	code: str


class AuthenticatedEvent(WhatsAppEvent):
	payload: Any = None


class AuthFailureEvent(WhatsAppEvent):
	payload: Any = None


class ClientReadyEvent(WhatsAppEvent):
	"""Клиент аутентифицирован и мост к странице подключён."""


class DisconnectedEvent(WhatsAppEvent):
	"""Сессия отключена; reason - состояние WAState, 'NAVIGATION' или 'LOGOUT'."""

	reason: str


class StateChangedEvent(WhatsAppEvent):
	state: str


class LoadingScreenEvent(WhatsAppEvent):
	percent: float | int | None = None
	message: str = ''


class BatteryChangedEvent(WhatsAppEvent):
	battery: BatteryInfo


# ============================================================================
# Сообщения
# ============================================================================


class MessageReceivedEvent(WhatsAppEvent):
	"""Новое входящее сообщение (не fromMe)."""

	message: Message


class MessageCreateEvent(WhatsAppEvent):
	"""Создано новое сообщение, включая отправленные текущим аккаунтом."""

	message: Message


class MessageAckEvent(WhatsAppEvent):
	message: Message
	ack: int


class MessageRevokeMeEvent(WhatsAppEvent):
	message: Message


class MessageRevokeEveryoneEvent(WhatsAppEvent):
	"""Сообщение удалено для всех; revoked_message - последнее известное состояние до удаления."""

	message: Message
	revoked_message: Message | None = None


class MessageEditEvent(WhatsAppEvent):
	message: Message
	new_body: str = ''
	prev_body: str = ''


class MessageReactionEvent(WhatsAppEvent):
	reaction: Reaction


class MediaUploadedEvent(WhatsAppEvent):
	message: Message


class ContactChangedEvent(WhatsAppEvent):
	"""Контакт сменил номер."""

	message: Message
	old_id: str | None = None
	new_id: str | None = None
	is_contact: bool = False


# ============================================================================
# Группы
# ============================================================================


class GroupJoinEvent(WhatsAppEvent):
	notification: GroupNotification


class GroupLeaveEvent(WhatsAppEvent):
	notification: GroupNotification


class GroupAdminChangedEvent(WhatsAppEvent):
	notification: GroupNotification


class GroupUpdateEvent(WhatsAppEvent):
	notification: GroupNotification


# ============================================================================
# Чаты и звонки
# ============================================================================


class ChatRemovedEvent(WhatsAppEvent):
	chat: Chat


class ChatArchivedEvent(WhatsAppEvent):
	chat: Chat
	current_state: bool
	previous_state: bool


class UnreadCountEvent(WhatsAppEvent):
	chat: Chat


class IncomingCallEvent(WhatsAppEvent):
	call: Call


EVENT_NAMES: dict[str, type[WhatsAppEvent]] = {
	'qr': QrReceivedEvent,
	'code': PairingCodeReceivedEvent,
	'authenticated': AuthenticatedEvent,
	'auth_failure': AuthFailureEvent,
	'ready': ClientReadyEvent,
	'disconnected': DisconnectedEvent,
	'change_state': StateChangedEvent,
	'loading_screen': LoadingScreenEvent,
	'change_battery': BatteryChangedEvent,
	'message': MessageReceivedEvent,
	'message_create': MessageCreateEvent,
	'message_ack': MessageAckEvent,
	'message_revoke_me': MessageRevokeMeEvent,
	'message_revoke_everyone': MessageRevokeEveryoneEvent,
	'message_edit': MessageEditEvent,
	'message_reaction': MessageReactionEvent,
	'media_uploaded': MediaUploadedEvent,
	'contact_changed': ContactChangedEvent,
	'group_join': GroupJoinEvent,
	'group_leave': GroupLeaveEvent,
	'group_admin_changed': GroupAdminChangedEvent,
	'group_update': GroupUpdateEvent,
	'chat_removed': ChatRemovedEvent,
	'chat_archived': ChatArchivedEvent,
	'unread_count': UnreadCountEvent,
	'incoming_call': IncomingCallEvent,
}


def resolve_event_class(name_or_class: str | type[WhatsAppEvent]) -> type[WhatsAppEvent]:
	"""Найти класс события по короткому имени ('message') или вернуть переданный класс."""
	if isinstance(name_or_class, str):
		try:
			return EVENT_NAMES[name_or_class]
		except KeyError:
			raise ValueError(f'Unknown event name {name_or_class!r}, expected one of: {", ".join(EVENT_NAMES)}') from None
	if inspect.isclass(name_or_class) and issubclass(name_or_class, WhatsAppEvent):
		return name_or_class
	raise TypeError(f'Expected an event name or a WhatsAppEvent subclass, got {name_or_class!r}')


def _check_event_names_dont_overlap():
	"""
	check that event names defined in this file are valid and non-overlapping
	"""
	all_event_names = {
		class_name.split('[')[0]
		for class_name in globals().keys()
		if not class_name.startswith('_')
		and inspect.isclass(globals()[class_name])
		and issubclass(globals()[class_name], BaseEvent)
		and class_name not in ('BaseEvent', 'WhatsAppEvent')
	}
	for first_event_name in all_event_names:
		assert first_event_name.endswith('Event'), f'Event with name {first_event_name} does not end with "Event"'
		for second_event_name in all_event_names:
			if first_event_name != second_event_name:
				assert first_event_name not in second_event_name, (
					f'Event with name {first_event_name} is a substring of {second_event_name}, all events must be completely unique to avoid find-and-replace accidents'
				)


_check_event_names_dont_overlap()
