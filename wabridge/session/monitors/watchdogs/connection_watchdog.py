"""Watchdog соединения WhatsApp: допустимые состояния, перехват сессии при конфликте, выход при навигации."""

import asyncio
import logging
from typing import Any, ClassVar

from bubus import BaseEvent
from pydantic import Field, PrivateAttr

from wabridge.events import DisconnectedEvent, StateChangedEvent
from wabridge.helpers import create_task_with_error_handling
from wabridge.session.events import FrameNavigatedEvent
from wabridge.session.watchdog_base import BaseWatchdog
from wabridge.structures.states import SessionState, WAState

ACCEPTED_STATES = frozenset({WAState.CONNECTED, WAState.OPENING, WAState.PAIRING, WAState.TIMEOUT})
NAVIGATION_REASON = 'NAVIGATION'


class ConnectionWatchdog(BaseWatchdog):
	"""Следит за Store.AppState и навигацией главного фрейма.

	Состояние вне ACCEPTED_STATES (и CONFLICT без takeover_on_conflict) означает
	потерю сессии: стратегия получает disconnect(), приложение событие
	disconnected(state), клиент закрывается. Навигация главного фрейма во время
	сопряжения или при пустом состоянии / PAIRING считается неявным выходом.
	"""

	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [StateChangedEvent, FrameNavigatedEvent]
	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [DisconnectedEvent]

	client: Any = Field(default=None, description='Client, чьё соединение отслеживается')

	_takeover_tasks: set[asyncio.Task] = PrivateAttr(default_factory=set)

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger('wabridge.ConnectionWatchdog')

	def accepted_states(self) -> set[str]:
		states = {state.value for state in ACCEPTED_STATES}
		if self.client.options.takeover_on_conflict:
			states.add(WAState.CONFLICT.value)
		return states

	async def on_StateChangedEvent(self, event: StateChangedEvent) -> None:
		options = self.client.options
		if options.takeover_on_conflict and event.state == WAState.CONFLICT.value:
			self._schedule_takeover(options.takeover_timeout_ms)

		if event.state not in self.accepted_states():
			self.logger.warning(f'⚠️ WhatsApp connection state {event.state} is not accepted, disconnecting')
			await self.disconnect(event.state)

	async def on_FrameNavigatedEvent(self, event: FrameNavigatedEvent) -> None:
		if self._client_is_closing():
			return

		from wabridge.auth.state_machine import AuthState

		if self.client.auth_state == AuthState.PAIRING_IN_PROGRESS:
			self.logger.info(f'🧭 Page navigated to {event.url} while pairing, treating as logout')
			await self.disconnect(NAVIGATION_REASON)
			return

		if self.client.state != SessionState.READY:
			return

		app_state = await self.client.get_state()
		if self._client_is_closing():
			return
		if not app_state or app_state == WAState.PAIRING.value:
			self.logger.info(f'🧭 Page navigated to {event.url} with app state {app_state!r}, treating as logout')
			await self.disconnect(NAVIGATION_REASON)

	async def disconnect(self, reason: str) -> None:
		"""Сообщить стратегии и приложению об отключении и закрыть клиента."""
		if self._client_is_closing():
			return
		self.client.state = SessionState.DISCONNECTED
		self.cancel_pending()

		await self.client.options.auth_strategy.disconnect()
		self.event_bus.dispatch(DisconnectedEvent(reason=reason))
		await self.client.destroy()

	def _schedule_takeover(self, delay_ms: int) -> None:
		async def takeover_after_delay() -> None:
			await asyncio.sleep(delay_ms / 1000)
			if self._client_is_closing():
				return
			self.logger.info('🔄 Taking over WhatsApp Web session after conflict')
			await self.client.takeover()

		task = create_task_with_error_handling(
			takeover_after_delay(), name='whatsapp_takeover', logger_instance=self.logger
		)
		self._takeover_tasks.add(task)
		task.add_done_callback(self._takeover_tasks.discard)

	def cancel_pending(self) -> None:
		current = asyncio.current_task()
		for task in list(self._takeover_tasks):
			if task is not current and not task.done():
				task.cancel()

	def _client_is_closing(self) -> bool:
		return self.client.state in (SessionState.DISCONNECTED, SessionState.DESTROYED)
