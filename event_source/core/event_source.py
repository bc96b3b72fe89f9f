"""
EventSource: the event log and the handler registry behind one lock.

EventSource owns an EventStore and a Dispatcher and implements the
operations that need both:

- append/publish: persist a new event, deliver it, mark it consumed
- subscribe: register a handler, then backfill every unconsumed event on
  its topic into that handler before returning
- republish: publish copies of matched events under new ids
- replay: re-deliver matched events under their original ids
- flush: drop every event and every subscription

Every operation holds a single re-entrant lock from id generation through
the consumed_at update that follows dispatch. Handlers run while the lock
is held, so a handler may publish or subscribe on the same thread but other
threads wait until the whole operation has finished.
"""

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from loguru import logger

from ..events.topics import EventTopic
from .dispatcher import Dispatcher, HandlerErrorPolicy, SubscriberHandler, Subscription
from .event_store import EventStore, FilterLike
from .models import Event, EventFilter, EventReceipt, PublishRequest


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid4() -> str:
    return str(uuid.uuid4())


class EventSource:
    """
    In-process event store with publish/subscribe delivery.

    Construct one explicitly and share it, or use
    ``event_source.get_event_source()`` for the lazily created process-wide
    default.

    Attributes:
        store (EventStore): Ordered event log
        dispatcher (Dispatcher): Per-topic handler registry

    Examples:
        >>> source = EventSource()
        >>> received = []
        >>> source.subscribe(EventTopic.ACTION_UPDATED, received.append)
        >>> source.publish(
        ...     EventTopic.ACTION_UPDATED,
        ...     {"type": "action", "version": "1", "data": {"actionId": 1}},
        ... )
        EventReceipt(event_id='...')
        >>> received
        [{'actionId': 1}]
    """

    def __init__(
        self,
        error_policy: HandlerErrorPolicy = HandlerErrorPolicy.PROPAGATE,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize an empty event source.

        Args:
            error_policy: Treatment of handler exceptions
            clock: Returns the current time. Defaults to timezone-aware UTC now.
            id_factory: Returns a fresh event id. Defaults to uuid4 strings.
        """
        self.store = EventStore()
        self.dispatcher = Dispatcher(error_policy)
        self._clock = clock or _utcnow
        self._new_id = id_factory or _uuid4
        self._lock = threading.RLock()

    @property
    def error_policy(self) -> HandlerErrorPolicy:
        return self.dispatcher.error_policy

    def append(
        self,
        topic: EventTopic,
        event_type: str,
        version: str,
        data: Dict[str, Any],
    ) -> str:
        """
        Create, store and deliver a new event.

        No validation happens here; publishers validate before calling.
        The event is stored before delivery, so a handler that raises under
        HandlerErrorPolicy.PROPAGATE leaves it in the log unconsumed.

        Args:
            topic: Topic to publish on
            event_type: Publisher classification
            version: Publisher version
            data: Topic payload

        Returns:
            str: Id of the new event
        """
        with self._lock:
            event = Event(
                id=self._new_id(),
                topic=topic,
                type=event_type,
                version=version,
                data=data,
                published_at=self._clock(),
            )
            self.store.append(event)
            self._dispatch_and_mark(event)
            return event.id

    def publish(
        self,
        topic: EventTopic,
        request: Union[PublishRequest, Mapping[str, Any]],
    ) -> EventReceipt:
        """
        Append a publish request on a topic.

        Args:
            topic: Topic to publish on
            request: PublishRequest or mapping with type, version and data

        Returns:
            EventReceipt: Receipt carrying the new event id
        """
        if not isinstance(request, PublishRequest):
            request = PublishRequest.model_validate(request)

        event_id = self.append(topic, request.type, request.version, request.data)
        return EventReceipt(event_id=event_id)

    def subscribe(self, topic: EventTopic, handler: SubscriberHandler) -> Subscription:
        """
        Register a handler and backfill the topic's unconsumed events into it.

        Before returning, every event on the topic whose consumed_at is None
        is delivered to this handler only, oldest first, and marked consumed
        right after it was delivered. A late subscriber therefore receives
        everything published since the topic last had no unconsumed events.

        Args:
            topic: Topic to subscribe to
            handler: Callable taking the event data dict

        Returns:
            Subscription: Token for unsubscribe()
        """
        with self._lock:
            subscription = self.dispatcher.subscribe(topic, handler)

            backlog = self.store.find_all(EventFilter(topic=topic, consumed_at=None))
            if backlog:
                logger.debug(
                    f"Backfilling {len(backlog)} unconsumed {topic.value} event(s) "
                    f"into subscription {subscription.id}"
                )

            for event in backlog:
                if self.dispatcher.deliver(handler, event):
                    self.store.update(event.id, consumed_at=self._clock())

            return subscription

    def unsubscribe(
        self,
        topic: EventTopic,
        target: Union[Subscription, SubscriberHandler],
    ) -> bool:
        """Remove a registration by token or handler; True if one was removed."""
        with self._lock:
            return self.dispatcher.unsubscribe(topic, target)

    def republish(self, fields: FilterLike = None) -> List[EventReceipt]:
        """
        Publish a fresh copy of every matched event.

        Each copy keeps the original topic, type, version and data but gets
        a new id, a new published_at, its own dispatch and its own
        consumed_at. The originals are untouched.

        Args:
            fields: Filter selecting the events to copy

        Returns:
            List[EventReceipt]: New ids, in the order the events matched
        """
        with self._lock:
            matched = self.store.find_all(fields)
            return [
                self.publish(event.topic, PublishRequest.from_event(event))
                for event in matched
            ]

    def replay(self, fields: FilterLike = None) -> List[EventReceipt]:
        """
        Re-deliver every matched event under its original id.

        No event is created. consumed_at is refreshed for each event that
        reached at least one handler; published_at never changes.

        Args:
            fields: Filter selecting the events to replay

        Returns:
            List[EventReceipt]: Original ids, in match order
        """
        with self._lock:
            receipts = []
            for event in self.store.find_all(fields):
                self._dispatch_and_mark(event)
                receipts.append(EventReceipt(event_id=event.id))
            return receipts

    def find_by_id(self, event_id: str) -> Optional[Event]:
        with self._lock:
            return self.store.find_by_id(event_id)

    def find_all(self, fields: FilterLike = None) -> List[Event]:
        with self._lock:
            return self.store.find_all(fields)

    def update(self, event_id: str, **fields: Any) -> Event:
        with self._lock:
            return self.store.update(event_id, **fields)

    def subscriber_count(self, topic: EventTopic) -> int:
        with self._lock:
            return self.dispatcher.subscriber_count(topic)

    def flush(self) -> None:
        """
        Clear the event log and every subscription.

        Waits for any in-flight operation on another thread to finish, so
        nothing observes a half-flushed state.
        """
        with self._lock:
            event_count = len(self.store)
            self.store.clear()
            self.dispatcher.clear_subscribers()
        logger.info(f"Event source flushed ({event_count} event(s) dropped)")

    def _dispatch_and_mark(self, event: Event) -> None:
        # Caller holds the lock.
        if self.dispatcher.dispatch(event):
            self.store.update(event.id, consumed_at=self._clock())
