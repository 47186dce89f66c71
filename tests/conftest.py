from unittest.mock import MagicMock

import pytest

from tests.helpers import FakePageSession


@pytest.fixture
def page_session():
	return FakePageSession()


@pytest.fixture
def event_bus():
	return MagicMock()
