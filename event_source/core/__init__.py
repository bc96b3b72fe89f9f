"""
Core module for the event source.

This module provides the foundational components:
- EventStore: Ordered, queryable event log
- Dispatcher: Per-topic handler registry and delivery
- EventSource: Store and dispatcher behind one lock, with backfill,
  republish and replay
"""

from .dispatcher import Dispatcher, HandlerErrorPolicy, Subscription
from .event_source import EventSource
from .event_store import EventNotFoundError, EventStore
from .models import Event, EventFilter, EventReceipt, PublishRequest

__all__ = [
    "Dispatcher",
    "Event",
    "EventFilter",
    "EventNotFoundError",
    "EventReceipt",
    "EventSource",
    "EventStore",
    "HandlerErrorPolicy",
    "PublishRequest",
    "Subscription",
]
