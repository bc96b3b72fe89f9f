"""
Topic-facing layer of the event source.

- EventTopic: closed set of channels
- validator: required-field and per-topic payload validation
- helpers: topic-scoped Publisher/Subscriber facades and their factories
"""

from .topics import EventTopic

__all__ = [
    "EventTopic",
]
