"""
Topic-scoped publisher and subscriber facades.

get_publisher() and get_subscriber() are the entry points applications use.
Both bind to an explicit EventSource when one is given and otherwise to the
process-wide default, which is created on first access from load_settings().

Examples:
    >>> from event_source import EventTopic, get_publisher, get_subscriber
    >>> subscriber = get_subscriber(EventTopic.ACTION_CREATED)
    >>> subscriber.subscribe(lambda data: print(data["email"]))
    >>> publisher = get_publisher(EventTopic.ACTION_CREATED)
    >>> publisher.publish({
    ...     "type": "user",
    ...     "version": "1",
    ...     "data": {
    ...         "firstName": "James",
    ...         "lastName": "Doe",
    ...         "email": "james.doe@email.com",
    ...     },
    ... })
    james.doe@email.com
    EventReceipt(event_id='...')
"""

import threading
from typing import Any, List, Mapping, Optional, Union

from loguru import logger

from ..config import load_settings
from ..core.dispatcher import SubscriberHandler, Subscription
from ..core.event_source import EventSource
from ..core.event_store import FilterLike
from ..core.models import EventReceipt, PublishRequest
from .topics import EventTopic
from .validator import validate_publish_request

_default_source: Optional[EventSource] = None
_default_lock = threading.Lock()


def get_event_source() -> EventSource:
    """
    Return the process-wide EventSource, creating it on first call.

    The instance lives for the rest of the process. EventSource.flush() is
    the only way to reset it.
    """
    global _default_source

    with _default_lock:
        if _default_source is None:
            settings = load_settings()
            _default_source = EventSource(error_policy=settings.handler_error_policy)
            logger.debug(
                f"Created default event source "
                f"(handler_error_policy={settings.handler_error_policy.value})"
            )
        return _default_source


class Publisher:
    """
    Publish-side view of an EventSource bound to one topic.

    Attributes:
        topic (EventTopic): Topic new events are published on
        event_source (EventSource): Backing event source
    """

    def __init__(self, topic: EventTopic, event_source: EventSource):
        if not isinstance(topic, EventTopic):
            raise TypeError(f"topic must be EventTopic enum, got {type(topic)}")

        self.topic = topic
        self.event_source = event_source

    def publish(self, event_data: Union[PublishRequest, Mapping[str, Any]]) -> EventReceipt:
        """
        Validate and publish an event on this publisher's topic.

        Args:
            event_data: Mapping or PublishRequest with ``type``, ``version``
                and ``data``. ``data`` must satisfy the topic schema.

        Returns:
            EventReceipt: Receipt carrying the new event id

        Raises:
            EventValidationError: "Required parameters are missing." when
                type/version are absent or not strings, or a topic-specific
                message when data fails its schema. Nothing is stored.
        """
        request = validate_publish_request(self.topic, event_data)
        return self.event_source.publish(self.topic, request)

    def republish(self, fields: FilterLike = None) -> List[EventReceipt]:
        """
        Publish new copies of the matched events.

        The filter is not restricted to this publisher's topic; include
        ``topic`` in it to scope the match. Each copy is published on the
        original event's topic.
        """
        return self.event_source.republish(fields)

    def replay(self, fields: FilterLike = None) -> List[EventReceipt]:
        """Re-deliver the matched events under their original ids."""
        return self.event_source.replay(fields)


class Subscriber:
    """Subscribe-side view of an EventSource bound to one topic."""

    def __init__(self, topic: EventTopic, event_source: EventSource):
        if not isinstance(topic, EventTopic):
            raise TypeError(f"topic must be EventTopic enum, got {type(topic)}")

        self.topic = topic
        self.event_source = event_source

    def subscribe(self, handler: SubscriberHandler) -> Subscription:
        """Register a handler; unconsumed events are backfilled before returning."""
        return self.event_source.subscribe(self.topic, handler)

    def unsubscribe(self, target: Union[Subscription, SubscriberHandler]) -> bool:
        """Remove a registration by token or handler."""
        return self.event_source.unsubscribe(self.topic, target)


def get_publisher(topic: EventTopic, event_source: Optional[EventSource] = None) -> Publisher:
    """Return a Publisher for the topic, bound to event_source or the default."""
    return Publisher(topic, event_source if event_source is not None else get_event_source())


def get_subscriber(topic: EventTopic, event_source: Optional[EventSource] = None) -> Subscriber:
    """Return a Subscriber for the topic, bound to event_source or the default."""
    return Subscriber(topic, event_source if event_source is not None else get_event_source())
