"""
Ordered event log for the event source.

The EventStore keeps every event in insertion order and offers:
- Point lookup by id
- Field-equality scans through EventFilter
- Partial updates that swap in a new immutable record

It is a plain container. Locking, id generation and delivery belong to
EventSource, which owns the store.
"""

from typing import Any, Dict, List, Mapping, Optional, Union

from loguru import logger

from .models import Event, EventFilter

FilterLike = Union[EventFilter, Mapping[str, Any], None]


class EventNotFoundError(KeyError):
    """Raised when an update targets an id that is not in the log."""

    def __init__(self, event_id: str):
        super().__init__(event_id)
        self.event_id = event_id

    def __str__(self) -> str:
        return f"Item with id {self.event_id} not found."


def as_filter(fields: FilterLike) -> EventFilter:
    """
    Coerce a filter-like value into an EventFilter.

    Accepts an EventFilter, a mapping of field names (snake_case or the
    camelCase timestamp names), or None for "match everything".
    """
    if fields is None:
        return EventFilter()
    if isinstance(fields, EventFilter):
        return fields
    return EventFilter.model_validate(dict(fields))


class EventStore:
    """
    Append-only, queryable event log.

    Attributes:
        events: Events in insertion order

    Examples:
        >>> store = EventStore()
        >>> store.append(event)
        '3f1c...'
        >>> store.find_all({"consumed_at": None})
        [Event(...)]
    """

    def __init__(self):
        """Initialize the store with an empty log."""
        self.events: List[Event] = []
        self._positions: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.events)

    def append(self, event: Event) -> str:
        """
        Append an event to the end of the log.

        Args:
            event: Fully built event

        Returns:
            str: The event id

        Raises:
            ValueError: If an event with the same id is already stored
        """
        if event.id in self._positions:
            raise ValueError(f"Duplicate event id {event.id}")

        self._positions[event.id] = len(self.events)
        self.events.append(event)
        return event.id

    def find_by_id(self, event_id: str) -> Optional[Event]:
        """Return the event with exactly this id, or None."""
        position = self._positions.get(event_id)
        if position is None:
            return None
        return self.events[position]

    def find_all(self, fields: FilterLike = None) -> List[Event]:
        """
        Return events matching every given filter field, oldest first.

        Timestamps are compared by exact equality (see EventFilter).

        Args:
            fields: EventFilter, mapping of filter fields, or None

        Returns:
            List[Event]: Matching events in insertion order. Empty list if
            nothing matches.

        Examples:
            >>> store.find_all({"topic": EventTopic.ACTION_CREATED, "consumed_at": None})
        """
        event_filter = as_filter(fields)
        matched = [event for event in self.events if event_filter.matches(event)]

        logger.debug(
            f"Scan {sorted(event_filter.model_fields_set)} matched "
            f"{len(matched)}/{len(self.events)} event(s)"
        )

        return matched

    def update(self, event_id: str, **fields: Any) -> Event:
        """
        Merge fields into a stored event.

        The stored record is replaced by a newly validated copy; earlier
        snapshots returned by queries keep their old values.

        Args:
            event_id: Id of the event to update
            **fields: Event field names and new values

        Returns:
            Event: The updated record

        Raises:
            ValueError: If a field name is not an Event field, or the id
                would change
            EventNotFoundError: If no event has this id
            pydantic.ValidationError: If a new value does not fit its field
        """
        unknown = set(fields) - set(Event.model_fields)
        if unknown:
            raise ValueError(f"Unknown event field(s): {', '.join(sorted(unknown))}")
        if fields.get("id", event_id) != event_id:
            raise ValueError("Event id cannot be changed")

        position = self._positions.get(event_id)
        if position is None:
            raise EventNotFoundError(event_id)

        updated = Event.model_validate({**self.events[position].model_dump(), **fields})
        self.events[position] = updated
        return updated

    def clear(self) -> None:
        """Remove every event from the log."""
        self.events.clear()
        self._positions.clear()
