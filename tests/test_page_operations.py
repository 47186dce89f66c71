import asyncio
import json
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from tests.helpers import wait_until
from wabridge.session.page_operations import BINDING_NAME, PageOperationsManager


@pytest.fixture
def operations():
	browser_session = SimpleNamespace(
		logger=logging.getLogger('tests.page_operations'),
		session_id='SESSION-1',
		closed=False,
		tearing_down=False,
	)
	operations = PageOperationsManager(browser_session)
	operations.evaluate = AsyncMock()
	operations.add_init_script = AsyncMock(return_value='1')
	operations._ensure_binding = AsyncMock()
	return operations


def binding_call(name, seq, *args, binding=BINDING_NAME):
	return {'name': binding, 'payload': json.dumps({'name': name, 'seq': seq, 'args': list(args)})}


def delivered(operations) -> list[tuple]:
	"""Ответы, отправленные странице через window.__wabridgeDeliver."""
	return [call.args[1:] for call in operations.evaluate.await_args_list if len(call.args) == 4]


async def test_page_calls_are_handled_in_order(operations):
	received = []

	async def on_event(value):
		# первый вызов уступает циклу событий, порядок всё равно сохраняется
		if value == 'a':
			await asyncio.sleep(0)
		received.append(value)
		return value.upper()

	await operations.expose_function('onEvent', on_event)
	for seq, value in enumerate(('a', 'b', 'c'), start=1):
		operations.on_binding_called(binding_call('onEvent', seq, value), session_id='SESSION-1')
	await wait_until(lambda: len(delivered(operations)) == 3)

	assert received == ['a', 'b', 'c']
	assert delivered(operations) == [(1, 'A', None), (2, 'B', None), (3, 'C', None)]


async def test_reexposing_replaces_handler(operations):
	await operations.expose_function('onEvent', lambda: 'old')
	await operations.expose_function('onEvent', lambda: 'new')

	operations.on_binding_called(binding_call('onEvent', 1))
	await wait_until(lambda: delivered(operations))

	assert delivered(operations) == [(1, 'new', None)]
	operations.add_init_script.assert_awaited_once()


async def test_handler_errors_are_delivered_to_page(operations):
	def failing():
		raise ValueError('boom')

	await operations.expose_function('onFail', failing)
	operations.on_binding_called(binding_call('onFail', 1))
	operations.on_binding_called(binding_call('onMissing', 2))
	await wait_until(lambda: len(delivered(operations)) == 2)

	first, second = delivered(operations)
	assert first == (1, None, 'ValueError: boom')
	assert second[:2] == (2, None)
	assert second[2].startswith('LookupError')


async def test_foreign_bindings_are_ignored(operations):
	handler = AsyncMock()
	await operations.expose_function('onEvent', handler)

	operations.on_binding_called(binding_call('onEvent', 1, binding='otherBinding'))
	operations.on_binding_called(binding_call('onEvent', 2), session_id='OTHER-SESSION')
	operations.on_binding_called({'name': BINDING_NAME, 'payload': 'not json'})
	await asyncio.sleep(0)

	handler.assert_not_called()
	assert delivered(operations) == []
