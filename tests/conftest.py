"""
Pytest configuration and shared fixtures for Event Source tests.

This module provides:
- A deterministic clock so timestamp equality never depends on clock resolution
- Independent EventSource instances per test
- A loguru sink that collects log messages
- Sample payloads
"""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from loguru import logger

from event_source.core.dispatcher import HandlerErrorPolicy
from event_source.core.event_source import EventSource


class TickingClock:
    """Clock returning a strictly increasing time, one second per call."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.current = start
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        self.current = self.current + timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock() -> TickingClock:
    """Provide a fresh ticking clock."""
    return TickingClock()


@pytest.fixture
def event_source(clock: TickingClock) -> EventSource:
    """Provide an EventSource that propagates handler errors."""
    return EventSource(clock=clock)


@pytest.fixture
def isolating_event_source(clock: TickingClock) -> EventSource:
    """Provide an EventSource that logs and isolates handler errors."""
    return EventSource(error_policy=HandlerErrorPolicy.ISOLATE, clock=clock)


@pytest.fixture
def log_messages() -> List[str]:
    """Collect loguru messages emitted during the test."""
    messages: List[str] = []
    sink_id = logger.add(lambda message: messages.append(str(message)), level="DEBUG")
    yield messages
    logger.remove(sink_id)


@pytest.fixture
def james_doe():
    """Provide the ActionCreated payload used across scenarios."""
    return {
        'firstName': 'James',
        'lastName': 'Doe',
        'email': 'james.doe@email.com',
    }


@pytest.fixture
def janet_duo():
    """Provide a second ActionCreated payload."""
    return {
        'firstName': 'Janet',
        'lastName': 'Duo',
        'email': 'janet.duo@email.com',
    }


@pytest.fixture
def user_event(james_doe):
    """Provide a complete publish request for the ActionCreated topic."""
    return {
        'type': 'user',
        'version': '1',
        'data': james_doe,
    }
