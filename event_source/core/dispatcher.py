"""
Handler registry and delivery for the event source.

The Dispatcher keeps an ordered list of handlers per topic and delivers an
event's data to them. Handlers receive a deep copy of ``event.data``, never
the envelope, so nothing a handler does can change the stored event.

Delivery is synchronous: dispatch() returns after every handler has run.
How a raising handler is treated is governed by HandlerErrorPolicy.
"""

import copy
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from ..events.topics import EventTopic
from .models import Event

SubscriberHandler = Callable[[Dict[str, Any]], None]


class HandlerErrorPolicy(str, Enum):
    """
    What happens when a handler raises during delivery.

    PROPAGATE: the exception leaves dispatch() and the calling operation;
        handlers after the failing one are skipped.
    ISOLATE: the exception is logged and delivery continues with the
        next handler.
    """

    PROPAGATE = "propagate"
    ISOLATE = "isolate"


@dataclass(frozen=True)
class Subscription:
    """
    Registration token returned by subscribe().

    Tokens compare by id and topic, so a token can always remove the exact
    registration it came from, even when the same handler is registered
    several times.
    """

    id: int
    topic: EventTopic
    handler: SubscriberHandler = field(compare=False, repr=False)


def _handler_name(handler: SubscriberHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class Dispatcher:
    """
    Ordered per-topic handler registry.

    Registration order is delivery order. The same handler may be registered
    more than once and is then called once per registration.

    Thread Safety:
        Not thread-safe on its own. EventSource serializes every call under
        its lock.

    Examples:
        >>> dispatcher = Dispatcher()
        >>> sub = dispatcher.subscribe(EventTopic.ACTION_CREATED, print)
        >>> dispatcher.dispatch(event)
        {'firstName': 'James', ...}
        1
        >>> dispatcher.unsubscribe(EventTopic.ACTION_CREATED, sub)
        True
    """

    def __init__(self, error_policy: HandlerErrorPolicy = HandlerErrorPolicy.PROPAGATE):
        """
        Initialize the dispatcher with empty handler lists.

        Args:
            error_policy: Treatment of handler exceptions
        """
        self.error_policy = HandlerErrorPolicy(error_policy)
        self._subscribers: Dict[EventTopic, List[Subscription]] = {
            topic: [] for topic in EventTopic
        }
        self._ids = itertools.count(1)

    def subscribe(self, topic: EventTopic, handler: SubscriberHandler) -> Subscription:
        """
        Append a handler to a topic's delivery list.

        Args:
            topic: Topic to subscribe to
            handler: Callable taking the event data dict

        Returns:
            Subscription: Token that can be passed to unsubscribe()

        Raises:
            TypeError: If topic is not an EventTopic or handler is not callable
        """
        if not isinstance(topic, EventTopic):
            raise TypeError(f"topic must be EventTopic enum, got {type(topic)}")
        if not callable(handler):
            raise TypeError(f"handler must be callable, got {type(handler)}")

        subscription = Subscription(id=next(self._ids), topic=topic, handler=handler)
        self._subscribers[topic].append(subscription)
        return subscription

    def unsubscribe(
        self,
        topic: EventTopic,
        target: Union[Subscription, SubscriberHandler],
    ) -> bool:
        """
        Remove the first registration matching a token or handler.

        Events already delivered are unaffected.

        Args:
            topic: Topic to unsubscribe from
            target: Subscription token, or the handler that was registered

        Returns:
            bool: True if a registration was removed, False otherwise
        """
        subscriptions = self._subscribers.get(topic, [])

        for index, subscription in enumerate(subscriptions):
            if isinstance(target, Subscription):
                found = subscription == target
            else:
                found = subscription.handler == target
            if found:
                del subscriptions[index]
                return True

        return False

    def dispatch(self, event: Event) -> int:
        """
        Deliver event data to every handler registered for the event's topic.

        Handlers run in registration order over a snapshot of the list, so a
        handler may subscribe or unsubscribe while being called.

        Args:
            event: Event to deliver

        Returns:
            int: Number of handlers that received the data; 0 when nobody
            is subscribed. Under ISOLATE a handler that raised is not counted.

        Raises:
            Exception: Whatever a handler raised, under PROPAGATE
        """
        handlers = list(self._subscribers[event.topic])

        logger.debug(
            f"Dispatching event {event.id} ({event.topic.value}) "
            f"to {len(handlers)} handler(s)"
        )

        delivered = 0
        for subscription in handlers:
            if self.deliver(subscription.handler, event):
                delivered += 1

        return delivered

    def deliver(self, handler: SubscriberHandler, event: Event) -> bool:
        """
        Deliver a private copy of the event data to a single handler.

        Returns:
            bool: True if the handler returned normally, False if it raised
            and the fault was isolated
        """
        try:
            handler(copy.deepcopy(event.data))
        except Exception as e:
            if self.error_policy is HandlerErrorPolicy.PROPAGATE:
                raise
            logger.error(
                f"Error in subscriber {_handler_name(handler)} "
                f"for {event.topic.value} event {event.id}: {e}"
            )
            return False
        return True

    def subscriber_count(self, topic: EventTopic) -> int:
        """Return the number of registrations for a topic."""
        return len(self._subscribers[topic])

    def clear_subscribers(self, topic: Optional[EventTopic] = None) -> None:
        """
        Clear registrations for one topic, or for every topic when None.
        """
        if topic is None:
            for subscriptions in self._subscribers.values():
                subscriptions.clear()
        else:
            self._subscribers[topic].clear()
