"""
Event envelope and query models with validation.

This module defines the records that flow through the event source:
- Event: Stored envelope around a topic payload
- EventFilter: Field-equality predicate used by find_all/republish/replay
- PublishRequest: Classification fields and payload supplied by a publisher
- EventReceipt: Identifier returned to publishers
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field, StrictStr

from ..events.topics import EventTopic


class Event(BaseModel):
    """
    Immutable stored event.

    Every field is fixed at creation. The only value that changes over an
    event's life is ``consumed_at``; the store swaps in an updated copy
    rather than mutating the record, so events handed out by queries are
    stable snapshots.

    Attributes:
        id: Unique identifier, never reused within a store
        topic: Channel the event belongs to
        type: Free-form classification supplied by the publisher
        version: Free-form schema version supplied by the publisher
        data: Topic payload, already validated against the topic schema
        published_at: When the event was appended to the log
        consumed_at: Time of the most recent delivery that reached at least
            one handler, or None if it has not been delivered yet

    Examples:
        >>> from datetime import datetime, timezone
        >>> event = Event(
        ...     id="3f1c",
        ...     topic=EventTopic.ACTION_UPDATED,
        ...     type="action",
        ...     version="1",
        ...     data={"actionId": 7},
        ...     published_at=datetime.now(timezone.utc),
        ... )
        >>> event.consumed_at is None
        True
    """

    model_config = {"frozen": True}

    id: str = Field(
        min_length=1,
        description="Unique event identifier"
    )
    topic: EventTopic = Field(
        description="Channel the event belongs to"
    )
    type: str = Field(
        description="Publisher-supplied classification"
    )
    version: str = Field(
        description="Publisher-supplied version"
    )
    data: Dict[str, Any] = Field(
        description="Topic payload"
    )
    published_at: datetime = Field(
        description="When the event was appended"
    )
    consumed_at: Optional[datetime] = Field(
        default=None,
        description="Most recent successful delivery time"
    )

    def __str__(self) -> str:
        """Return human-readable event description."""
        return f"Event({self.topic.name} {self.id} at {self.published_at})"


class EventFilter(BaseModel):
    """
    Equality predicate over stored events.

    Only fields that were explicitly given constrain a match; absent fields
    impose no constraint. Passing ``consumed_at=None`` therefore selects
    events that have not been consumed yet, while an empty filter selects
    everything.

    ``published_at`` and ``consumed_at`` compare by exact timestamp equality,
    not by range. Matching a time window only works when the caller holds
    the exact value read back from a stored event.

    camelCase keys (``publishedAt``, ``consumedAt``) are accepted as well.

    Examples:
        >>> EventFilter(consumed_at=None).model_fields_set
        {'consumed_at'}
        >>> EventFilter.model_validate({"publishedAt": None}).model_fields_set
        {'published_at'}
    """

    model_config = {"frozen": True, "extra": "forbid"}

    topic: Optional[EventTopic] = None
    type: Optional[str] = None
    version: Optional[str] = None
    published_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("published_at", "publishedAt"),
    )
    consumed_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("consumed_at", "consumedAt"),
    )

    def matches(self, event: Event) -> bool:
        """Return True when every given field equals the event's value."""
        for name in self.model_fields_set:
            if getattr(event, name) != getattr(self, name):
                return False
        return True


class PublishRequest(BaseModel):
    """
    Data a publisher hands to the event source.

    ``type`` and ``version`` must be real strings; no coercion is applied.
    """

    type: StrictStr
    version: StrictStr
    data: Dict[str, Any]

    @classmethod
    def from_event(cls, event: Event) -> "PublishRequest":
        """Build a request carrying an existing event's classification and data."""
        return cls(type=event.type, version=event.version, data=dict(event.data))


class EventReceipt(BaseModel):
    """Identifier of a published, republished or replayed event."""

    model_config = {"frozen": True}

    event_id: str
