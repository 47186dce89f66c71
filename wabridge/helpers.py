import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger('wabridge')

# Сообщения CDP/websocket, которые означают, что страница или браузер уже закрыты
_TARGET_CLOSED_MARKERS = (
	'target closed',
	'session closed',
	'no target with given id',
	'cannot find context with specified id',
	'execution context was destroyed',
	'inspected target navigated or closed',
	'websocket is not connected',
	'connection closed',
	'client is not started',
)


def is_target_closed_error(error: BaseException) -> bool:
	"""Проверить, что ошибка означает закрытую страницу или оборванное CDP-соединение."""
	error_type = str(type(error))
	if 'ConnectionClosed' in error_type or 'ConnectionError' in error_type:
		return True
	message = str(error).lower()
	return any(marker in message for marker in _TARGET_CLOSED_MARKERS)


def create_task_with_error_handling(
	coro: Coroutine[Any, Any, Any],
	name: str | None = None,
	logger_instance: logging.Logger | None = None,
	suppress_exceptions: bool = False,
) -> asyncio.Task:
	"""Запустить фоновую задачу, ошибки которой не теряются молча.

	Args:
		coro: корутина для запуска
		name: имя задачи для логов
		logger_instance: логгер, в который пишем ошибку (по умолчанию логгер пакета)
		suppress_exceptions: если True, ошибка только логируется на уровне debug
	"""
	task = asyncio.create_task(coro, name=name)
	log = logger_instance or logger

	def _on_done(finished_task: asyncio.Task) -> None:
		if finished_task.cancelled():
			return
		task_error = finished_task.exception()
		if task_error is None:
			return
		if suppress_exceptions:
			log.debug(f'Background task {name or finished_task.get_name()} failed: {type(task_error).__name__}: {task_error}')
		else:
			log.error(f'❌ Background task {name or finished_task.get_name()} failed: {type(task_error).__name__}: {task_error}')

	task.add_done_callback(_on_done)
	return task
