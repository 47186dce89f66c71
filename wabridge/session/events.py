"""Event definitions for browser communication."""

import inspect
import os
from typing import Any

from bubus import BaseEvent
from pydantic import BaseModel, Field


def _get_timeout(env_var: str, default: float) -> float | None:
	"""
	Safely parse environment variable timeout values.

	Args:
		env_var: Environment variable name (e.g. 'TIMEOUT_BrowserStartEvent')
		default: Default timeout value as float (e.g. 30.0)

	Returns:
		Parsed float value or the default if parsing fails
	"""
	timeout_env_value = os.getenv(env_var)
	if timeout_env_value:
		try:
			timeout_float = float(timeout_env_value)
			if timeout_float < 0:
				print(f'Warning: {env_var}={timeout_env_value} is negative, using default {default}')
				return default
			return timeout_float
		except (ValueError, TypeError):
			print(f'Warning: {env_var}={timeout_env_value} is not a valid number, using default {default}')

	return default


# ============================================================================
# Жизненный цикл браузера
# ============================================================================


class BrowserStartEvent(BaseEvent):
	"""Start/connect to browser."""

	cdp_url: str | None = None
	launch_options: dict[str, Any] = Field(default_factory=dict)

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_BrowserStartEvent', 30.0))  # seconds


class BrowserStopEvent(BaseEvent):
	"""Stop/disconnect from browser."""

	force: bool = False

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_BrowserStopEvent', 45.0))  # seconds


class BrowserLaunchResult(BaseModel):
	"""Result of launching a browser."""

	cdp_url: str


class BrowserLaunchEvent(BaseEvent[BrowserLaunchResult]):
	"""Launch a local browser process."""

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_BrowserLaunchEvent', 30.0))  # seconds


class BrowserKillEvent(BaseEvent):
	"""Kill local browser subprocess."""

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_BrowserKillEvent', 30.0))  # seconds


class BrowserConnectedEvent(BaseEvent):
	"""Browser has started/connected."""

	cdp_url: str

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_BrowserConnectedEvent', 30.0))  # seconds


class BrowserStoppedEvent(BaseEvent):
	"""Browser has stopped/disconnected."""

	reason: str | None = None

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_BrowserStoppedEvent', 30.0))  # seconds


# ============================================================================
# События страницы
# ============================================================================


class FrameNavigatedEvent(BaseEvent):
	"""The main frame of the WhatsApp page navigated."""

	url: str

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_FrameNavigatedEvent', 30.0))  # seconds


class BrowserErrorEvent(BaseEvent):
	"""An error occurred in the browser layer."""

	error_type: str
	message: str
	details: dict[str, Any] = Field(default_factory=dict)

	event_timeout: float | None = Field(default_factory=lambda: _get_timeout('TIMEOUT_BrowserErrorEvent', 30.0))  # seconds


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
		and class_name != 'BaseEvent'
	}
	for first_event_name in all_event_names:
		assert first_event_name.endswith('Event'), f'Event with name {first_event_name} does not end with "Event"'
		for second_event_name in all_event_names:
			if first_event_name != second_event_name:
				assert first_event_name not in second_event_name, (
					f'Event with name {first_event_name} is a substring of {second_event_name}, all events must be completely unique to avoid find-and-replace accidents'
				)


# Имена событий не должны перекрываться (например, StopEvent и BrowserStopEvent)
_check_event_names_dont_overlap()
