"""Мост между страницей и процессом: host-функции, подписки на Store и перевод payload в события."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any

from bubus import EventBus

from wabridge.bridge import scripts
from wabridge.events import (
	BatteryChangedEvent,
	ChatArchivedEvent,
	ChatRemovedEvent,
	ContactChangedEvent,
	GroupAdminChangedEvent,
	GroupJoinEvent,
	GroupLeaveEvent,
	GroupUpdateEvent,
	IncomingCallEvent,
	MediaUploadedEvent,
	MessageAckEvent,
	MessageCreateEvent,
	MessageEditEvent,
	MessageReactionEvent,
	MessageReceivedEvent,
	MessageRevokeEveryoneEvent,
	MessageRevokeMeEvent,
	StateChangedEvent,
	UnreadCountEvent,
	WhatsAppEvent,
)
from wabridge.exceptions import BridgeNotReadyError, BridgeSealedError
from wabridge.structures.models import (
	BatteryInfo,
	Call,
	Chat,
	GroupNotification,
	Message,
	MessageKey,
	Reaction,
	serialized_id,
)

if TYPE_CHECKING:
	from wabridge.session.session import PageSession

HostFunction = Callable[..., Any | Awaitable[Any]]
EventTranslator = Callable[..., WhatsAppEvent | Iterable[WhatsAppEvent] | None | Awaitable[WhatsAppEvent | Iterable[WhatsAppEvent] | None]]

GROUP_JOIN_SUBTYPES = ('add', 'invite', 'linked_group_join')
GROUP_LEAVE_SUBTYPES = ('remove', 'leave')
GROUP_ADMIN_SUBTYPES = ('promote', 'demote')


class BridgeRelay:
	"""Открывает host-функции странице и переводит уведомления Store в события шины клиента.

	Набор host-функций фиксируется один раз: wire() открывает их все, ставит
	подписки на Store и запечатывает мост. После этого is_ready == True, а
	expose_host_function() бросает BridgeSealedError.

	События отправляются в шину в порядке прихода (FIFO), без группировки и отбрасывания.
	"""

	def __init__(
		self,
		session: 'PageSession',
		event_bus: EventBus,
		fetch_chat: Callable[[str], Awaitable[Chat | None]],
	) -> None:
		self.session = session
		self.event_bus = event_bus
		self.fetch_chat = fetch_chat

		# последнее не удалённое сообщение из Msg 'change', нужно для пары message_revoke_everyone
		self.last_message: dict[str, Any] | None = None

		self._host_functions: dict[str, HostFunction] = {}
		self._translators: dict[str, list[EventTranslator]] = {}
		self._sealed = False
		self._ready = False

		self._subscribe_store_events()

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'wabridge.BridgeRelay.{self.session.id[-4:]}')

	@property
	def is_ready(self) -> bool:
		return self._ready

	@property
	def sealed(self) -> bool:
		return self._sealed

	def ensure_ready(self) -> None:
		if not self._ready:
			raise BridgeNotReadyError('WhatsApp Web bridge is not ready yet, wait for the ready event')

	# region - registration

	def expose_host_function(self, name: str, handler: HostFunction) -> None:
		"""Зарегистрировать функцию, которую страница вызывает как window[name](...)."""
		if self._sealed:
			raise BridgeSealedError(f'Cannot expose {name!r}: the bridge is already wired')
		if name in self._host_functions:
			self.logger.debug(f'🔁 Replacing host function {name}')
		self._host_functions[name] = handler

	def subscribe_page_event(self, event_name: str, translator: EventTranslator) -> None:
		"""Переводить вызовы window[event_name](...) страницы в события шины через translator."""
		if self._sealed:
			raise BridgeSealedError(f'Cannot subscribe to {event_name!r}: the bridge is already wired')
		translators = self._translators.setdefault(event_name, [])
		translators.append(translator)
		if event_name not in self._host_functions:
			self.expose_host_function(event_name, self._make_page_event_handler(event_name))

	def seal(self) -> None:
		self._sealed = True

	def _make_page_event_handler(self, event_name: str) -> HostFunction:
		async def handle_page_event(*args: Any) -> None:
			await self.relay(event_name, *args)

		handle_page_event.__name__ = f'handle_{event_name}'
		return handle_page_event

	# endregion

	async def relay(self, event_name: str, *args: Any) -> list[WhatsAppEvent]:
		"""Перевести одно уведомление страницы и отправить получившиеся события в шину.

		Ошибки перевода логируются и не выходят за пределы моста.
		"""
		dispatched: list[WhatsAppEvent] = []
		for translator in self._translators.get(event_name, []):
			try:
				produced = translator(*args)
				# события bubus тоже awaitable, их не ждём
				if asyncio.iscoroutine(produced) or asyncio.isfuture(produced):
					produced = await produced
			except Exception as e:
				self.logger.error(f'❌ Failed to translate page event {event_name}: {type(e).__name__}: {e}')
				continue

			if produced is None:
				continue
			for event in [produced] if isinstance(produced, WhatsAppEvent) else produced:
				self.event_bus.dispatch(event)
				dispatched.append(event)
		return dispatched

	async def wire(self) -> None:
		"""Открыть все host-функции, поставить подписки Store и запечатать мост.

		Если window.Store не открыт скриптами store_scripts, бросает BridgeNotReadyError
		и мост остаётся не готовым.
		"""
		if self._sealed:
			raise BridgeSealedError('The bridge is already wired')

		for name, handler in self._host_functions.items():
			await self.session.expose_function(name, handler)
		observers_installed = await self.session.evaluate(scripts.STORE_OBSERVER)
		if not observers_installed:
			raise BridgeNotReadyError('window.Store is not available, pass a script exposing it in ClientOptions.store_scripts')

		self.seal()
		self._ready = True
		self.logger.debug(f'🔌 Bridge wired with {len(self._host_functions)} host functions')

	# region - store event translators

	def _subscribe_store_events(self) -> None:
		self.subscribe_page_event('onAddMessageEvent', self._on_add_message)
		self.subscribe_page_event('onChangeMessageTypeEvent', self._on_change_message_type)
		self.subscribe_page_event('onChangeMessageEvent', self._on_change_message)
		self.subscribe_page_event('onRemoveMessageEvent', self._on_remove_message)
		self.subscribe_page_event('onMessageAckEvent', self._on_message_ack)
		self.subscribe_page_event('onChatUnreadCountEvent', self._on_chat_unread_count)
		self.subscribe_page_event('onMessageMediaUploadedEvent', self._on_media_uploaded)
		self.subscribe_page_event('onAppStateChangedEvent', self._on_app_state_changed)
		self.subscribe_page_event('onBatteryStateChangedEvent', self._on_battery_changed)
		self.subscribe_page_event('onIncomingCall', self._on_incoming_call)
		self.subscribe_page_event('onReaction', self._on_reaction)
		self.subscribe_page_event('onRemoveChatEvent', self._on_remove_chat)
		self.subscribe_page_event('onArchiveChatEvent', self._on_archive_chat)
		self.subscribe_page_event('onEditMessageEvent', self._on_edit_message)

	def _on_add_message(self, msg: dict[str, Any]) -> list[WhatsAppEvent]:
		if msg.get('type') == 'gp2':
			notification = GroupNotification.from_raw(msg)
			assert notification is not None
			subtype = msg.get('subtype')
			if subtype in GROUP_JOIN_SUBTYPES:
				return [GroupJoinEvent(notification=notification)]
			if subtype in GROUP_LEAVE_SUBTYPES:
				return [GroupLeaveEvent(notification=notification)]
			if subtype in GROUP_ADMIN_SUBTYPES:
				return [GroupAdminChangedEvent(notification=notification)]
			return [GroupUpdateEvent(notification=notification)]

		message = Message.from_raw(msg)
		assert message is not None
		events: list[WhatsAppEvent] = [MessageCreateEvent(message=message)]
		if not message.from_me:
			events.append(MessageReceivedEvent(message=message))
		return events

	def _on_change_message_type(self, msg: dict[str, Any]) -> WhatsAppEvent | None:
		if msg.get('type') != 'revoked':
			return None
		message = Message.from_raw(msg)
		assert message is not None
		revoked_message = None
		if self.last_message is not None and message.id is not None:
			last_key = MessageKey.from_raw(self.last_message.get('id'))
			if last_key is not None and last_key.id == message.id.id:
				revoked_message = Message.from_raw(self.last_message)
		return MessageRevokeEveryoneEvent(message=message, revoked_message=revoked_message)

	def _on_change_message(self, msg: dict[str, Any]) -> WhatsAppEvent | None:
		if msg.get('type') != 'revoked':
			self.last_message = msg

		is_participant = msg.get('type') == 'gp2' and msg.get('subtype') == 'modify'
		is_contact = msg.get('type') == 'notification_template' and msg.get('subtype') == 'change_number'
		if not (is_participant or is_contact):
			return None

		message = Message.from_raw(msg)
		assert message is not None
		if is_participant:
			recipients = msg.get('recipients') or []
			new_id = serialized_id(recipients[0]) if recipients else None
			old_id = serialized_id(msg.get('author'))
		else:
			new_id = serialized_id(msg.get('to'))
			template_params = [serialized_id(param) for param in msg.get('templateParams') or []]
			old_id = next((param for param in template_params if param != new_id), None)
		return ContactChangedEvent(message=message, old_id=old_id, new_id=new_id, is_contact=is_contact)

	def _on_remove_message(self, msg: dict[str, Any]) -> WhatsAppEvent | None:
		if not msg.get('isNewMsg'):
			return None
		message = Message.from_raw(msg)
		assert message is not None
		return MessageRevokeMeEvent(message=message)

	def _on_message_ack(self, msg: dict[str, Any], ack: int) -> WhatsAppEvent:
		message = Message.from_raw(msg)
		assert message is not None
		return MessageAckEvent(message=message, ack=ack)

	async def _on_chat_unread_count(self, data: dict[str, Any]) -> WhatsAppEvent | None:
		chat_id = serialized_id(data.get('id'))
		if not chat_id:
			return None
		chat = await self.fetch_chat(chat_id)
		if chat is None:
			self.logger.debug(f'Chat {chat_id} disappeared before its unread count could be reported')
			return None
		return UnreadCountEvent(chat=chat)

	def _on_media_uploaded(self, msg: dict[str, Any]) -> WhatsAppEvent:
		message = Message.from_raw(msg)
		assert message is not None
		return MediaUploadedEvent(message=message)

	def _on_app_state_changed(self, state: str) -> WhatsAppEvent:
		return StateChangedEvent(state=state)

	def _on_battery_changed(self, state: dict[str, Any]) -> WhatsAppEvent | None:
		battery = state.get('battery')
		if battery is None:
			return None
		return BatteryChangedEvent(battery=BatteryInfo(raw=dict(state), battery=battery, plugged=bool(state.get('plugged'))))

	def _on_incoming_call(self, call: dict[str, Any]) -> WhatsAppEvent:
		parsed = Call.from_raw(call)
		assert parsed is not None
		return IncomingCallEvent(call=parsed)

	def _on_reaction(self, reactions: list[dict[str, Any]]) -> list[WhatsAppEvent]:
		return [MessageReactionEvent(reaction=self.reaction_from_raw(reaction)) for reaction in reactions or []]

	@staticmethod
	def reaction_from_raw(data: dict[str, Any]) -> Reaction:
		"""Реакция из createOrUpdateReactions: ключи-строки в MessageKey, timestamp из мс в секунды."""
		timestamp = data.get('timestamp')
		return Reaction(
			raw=dict(data),
			id=MessageKey.from_raw(data.get('msgKey')),
			msg_id=MessageKey.from_raw(data.get('parentMsgKey')),
			reaction=data.get('reactionText') or data.get('reaction') or '',
			sender_id=serialized_id(data.get('senderUserJid') or data.get('senderId')),
			timestamp=timestamp / 1000 if timestamp is not None else None,
			orphan=data.get('orphan') or 0,
			orphan_reason=data.get('orphanReason'),
			read=bool(data.get('read')),
			ack=data.get('ack'),
		)

	def _on_remove_chat(self, chat: dict[str, Any]) -> WhatsAppEvent | None:
		parsed = Chat.from_raw(chat)
		return ChatRemovedEvent(chat=parsed) if parsed is not None else None

	def _on_archive_chat(self, chat: dict[str, Any], current_state: bool, previous_state: bool) -> WhatsAppEvent | None:
		parsed = Chat.from_raw(chat)
		if parsed is None:
			return None
		return ChatArchivedEvent(chat=parsed, current_state=bool(current_state), previous_state=bool(previous_state))

	def _on_edit_message(self, msg: dict[str, Any], new_body: str, prev_body: str) -> WhatsAppEvent | None:
		if msg.get('type') == 'revoked':
			return None
		message = Message.from_raw(msg)
		assert message is not None
		return MessageEditEvent(message=message, new_body=new_body or '', prev_body=prev_body or '')

	# endregion
