import asyncio
from unittest.mock import AsyncMock

from wabridge.exceptions import PageClosedDuringOperation


class FakePageSession:
	"""PageSession без браузера: ожидания селекторов управляются тестом через futures."""

	def __init__(self):
		self.id = 'fake-session-0001'
		self.closed = False
		self.tearing_down = False
		self.waiters: dict[str, list[asyncio.Future]] = {}
		self.exposed: dict[str, object] = {}
		self.evaluate = AsyncMock(return_value=None)
		self.click = AsyncMock()
		self.press = AsyncMock()
		self.type_text = AsyncMock()
		self.get_value = AsyncMock(return_value='')
		self.add_init_script = AsyncMock(return_value='1')
		self.set_viewport = AsyncMock()
		self.screenshot = AsyncMock(return_value=b'\x89PNG')

	async def wait_for_selector(self, selector, timeout_ms=None):
		future = asyncio.get_running_loop().create_future()
		self.waiters.setdefault(selector, []).append(future)
		return await future

	async def expose_function(self, name, handler):
		self.exposed[name] = handler

	def pending_waiter(self, selector) -> asyncio.Future:
		return next(future for future in reversed(self.waiters.get(selector, [])) if not future.done())

	def has_pending_waiter(self, selector) -> bool:
		return any(not future.done() for future in self.waiters.get(selector, []))

	def close_for_teardown(self):
		self.closed = True
		self.tearing_down = True
		for futures in self.waiters.values():
			for future in futures:
				if not future.done():
					future.set_exception(PageClosedDuringOperation(during_teardown=True))


async def wait_until(condition, attempts: int = 200):
	"""Дать циклу событий поработать, пока condition() не станет истинным."""
	for _ in range(attempts):
		if condition():
			return
		await asyncio.sleep(0)
	raise AssertionError('Condition was not met')


def dispatched_events(event_bus, event_class=None) -> list:
	events = [call.args[0] for call in event_bus.dispatch.call_args_list]
	if event_class is None:
		return events
	return [event for event in events if isinstance(event, event_class)]
