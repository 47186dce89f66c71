"""Базовый класс watchdog для компонентов, которые слушают события шины."""

import inspect
import time
from collections.abc import Iterable
from typing import Any, ClassVar

from bubus import BaseEvent, EventBus
from pydantic import BaseModel, ConfigDict, Field


class BaseWatchdog(BaseModel):
	"""Базовый класс для всех watchdog.

	Watchdogs отслеживают состояние браузера и страницы и реагируют на события шины.
	Обработчики регистрируются автоматически по именам методов: on_EventTypeName(self, event: EventTypeName)
	"""

	model_config = ConfigDict(
		arbitrary_types_allowed=True,  # разрешаем несериализуемые объекты типа EventBus/PageSession в полях
		extra='forbid',  # всё состояние должно быть типизированным Field или PrivateAttr
		validate_assignment=False,
		revalidate_instances='never',  # иначе приватные атрибуты стираются при повторной валидации
	)

	# События, которые слушает и генерирует watchdog (для чтения кода и проверок при регистрации)
	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = []
	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

	# Основные зависимости
	browser_session: Any = Field(default=None)
	event_bus: EventBus = Field()

	@property
	def logger(self):
		"""Получить logger из сессии страницы."""
		return self.browser_session.logger

	@staticmethod
	def attach_handler_to_session(owner: Any, event_class: type[BaseEvent[Any]], handler) -> None:
		"""Прикрепить один обработчик событий к шине владельца.

		Args:
			owner: объект с атрибутами event_bus и logger (PageSession, Client или сам watchdog)
			event_class: Класс события, которое слушаем
			handler: Метод-обработчик (должен начинаться с 'on_' и заканчиваться типом события)
		"""
		event_bus = owner.event_bus

		assert hasattr(handler, '__name__'), 'Handler must have a __name__ attribute'
		assert handler.__name__.startswith('on_'), f'Handler {handler.__name__} must start with "on_"'
		assert handler.__name__.endswith(event_class.__name__), (
			f'Handler {handler.__name__} must end with event type {event_class.__name__}'
		)

		watchdog_instance = getattr(handler, '__self__', None)
		watchdog_class_name = watchdog_instance.__class__.__name__ if watchdog_instance else 'Unknown'

		# Обёртка с уникальным именем, handler захватываем по значению
		def make_unique_handler(actual_handler):
			async def unique_handler(event):
				parent_event = event_bus.event_history.get(event.event_parent_id) if event.event_parent_id else None
				parent = (
					f'↲  triggered by on_{parent_event.event_type}#{parent_event.event_id[-4:]}' if parent_event else '👈 by Client'
				)
				event_str = f'#{event.event_id[-4:]}'
				time_start = time.time()
				watchdog_and_handler_str = f'[{watchdog_class_name}.{actual_handler.__name__}({event_str})]'.ljust(54)
				owner.logger.debug(f'🚌 {watchdog_and_handler_str} ⏳ Starting...       {parent}')

				try:
					result = await actual_handler(event)

					if isinstance(result, Exception):
						raise result

					time_elapsed = time.time() - time_start
					result_summary = '' if result is None else f' ➡️ <{type(result).__name__}>'
					owner.logger.debug(f'🚌 {watchdog_and_handler_str} Succeeded ({time_elapsed:.2f}s){result_summary}')
					return result
				except Exception as e:
					time_elapsed = time.time() - time_start
					owner.logger.error(f'🚌 {watchdog_and_handler_str} ❌ Failed ({time_elapsed:.2f}s): {type(e).__name__}: {e}')
					# Ошибка записывается шиной в результат события
					raise

			return unique_handler

		unique_handler = make_unique_handler(handler)
		unique_handler.__name__ = f'{watchdog_class_name}.{handler.__name__}'

		existing_handlers = event_bus.handlers.get(event_class.__name__, [])
		handler_names = [getattr(h, '__name__', str(h)) for h in existing_handlers]

		if unique_handler.__name__ in handler_names:
			raise RuntimeError(
				f'[{watchdog_class_name}] Попытка дублирующей регистрации обработчика! '
				f'Обработчик {unique_handler.__name__} уже зарегистрирован для {event_class.__name__}. '
				f'Это, вероятно, означает, что attach_to_session() был вызван несколько раз.'
			)

		event_bus.on(event_class, unique_handler)

	def attach_to_session(self) -> None:
		"""Зарегистрировать все методы on_EventName этого watchdog на его шине."""
		from wabridge import events as client_events
		from wabridge.session import events as session_events

		event_classes = {}
		for events_module in (session_events, client_events):
			for name in dir(events_module):
				obj = getattr(events_module, name)
				if inspect.isclass(obj) and issubclass(obj, BaseEvent) and obj is not BaseEvent:
					event_classes[name] = obj

		registered_events = set()
		for method_name in dir(self):
			if method_name.startswith('on_') and callable(getattr(self, method_name)):
				event_name = method_name[3:]

				if event_name in event_classes:
					event_class = event_classes[event_name]

					if self.LISTENS_TO:
						assert event_class in self.LISTENS_TO, (
							f'[{self.__class__.__name__}] Handler {method_name} listens to {event_name} '
							f'but {event_name} is not declared in LISTENS_TO: {[e.__name__ for e in self.LISTENS_TO]}'
						)

					self.attach_handler_to_session(self, event_class, getattr(self, method_name))
					registered_events.add(event_class)

		if self.LISTENS_TO:
			missing_handlers = set(self.LISTENS_TO) - registered_events
			if missing_handlers:
				missing_names = [e.__name__ for e in missing_handlers]
				self.logger.warning(
					f'[{self.__class__.__name__}] LISTENS_TO объявляет {missing_names} '
					f'но обработчики не найдены (отсутствуют методы on_{"_, on_".join(missing_names)})'
				)

	def __del__(self) -> None:
		"""Отменить незавершённые задачи (_*_task, _*_tasks) при сборке мусора."""
		try:
			for attr_name in dir(self):
				if attr_name.startswith('_') and attr_name.endswith('_task'):
					try:
						task = getattr(self, attr_name)
						if hasattr(task, 'cancel') and callable(task.cancel) and not task.done():
							task.cancel()
					except Exception:
						pass

				if attr_name.startswith('_') and attr_name.endswith('_tasks') and isinstance(getattr(self, attr_name), Iterable):
					for task in getattr(self, attr_name):
						try:
							if hasattr(task, 'cancel') and callable(task.cancel) and not task.done():
								task.cancel()
						except Exception:
							pass
		except Exception as e:
			from wabridge.helpers import logger

			logger.error(f'⚠️ Ошибка во время сборки мусора {self.__class__.__name__} __del__(): {type(e)}: {e}')
