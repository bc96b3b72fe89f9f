"""
Event Source - in-process event store with publish/subscribe delivery

This package couples an append-only, queryable event log with synchronous
publish/subscribe delivery, backlog backfill for late subscribers, and
replay/republish of historical events.

Modules:
    core: Event store, dispatcher and the EventSource that binds them
    events: Topic enumeration, payload validation and publisher/subscriber facades
    config: Settings loading and logging setup
"""

from .core.event_source import EventSource
from .events.helpers import get_event_source, get_publisher, get_subscriber
from .events.topics import EventTopic

__version__ = "0.1.0"
__author__ = "Event Source Team"

__all__ = [
    "EventSource",
    "EventTopic",
    "get_event_source",
    "get_publisher",
    "get_subscriber",
]
