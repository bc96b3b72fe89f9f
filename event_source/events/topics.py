"""
Topic enumeration for the event source.

Each topic is a named channel bound to exactly one payload shape. The payload
schemas live in the validator module.
"""

from enum import Enum


class EventTopic(str, Enum):
    """
    Enumeration of all topics events can be published on.

    Topic values are snake_case string literals so they read clearly in
    logs. Components should use the enum members rather than raw strings.

    Examples:
        >>> EventTopic.ACTION_CREATED
        <EventTopic.ACTION_CREATED: 'action_created'>

        >>> EventTopic.ACTION_CREATED.value
        'action_created'

        >>> str(EventTopic.ACTION_DELETED)
        'ACTION_DELETED'
    """

    ACTION_CREATED = "action_created"
    """
    Emitted when an action is created.

    Payload: firstName, lastName, email.
    """

    ACTION_UPDATED = "action_updated"
    """
    Emitted when an existing action changes.

    Payload: actionId.
    """

    ACTION_DELETED = "action_deleted"
    """
    Emitted when an action is removed.

    Payload: actionId.
    """

    def __str__(self) -> str:
        """Return the topic name (e.g., 'ACTION_CREATED')."""
        return self.name

    def __repr__(self) -> str:
        """Return the detailed representation including the value."""
        return f"<EventTopic.{self.name}: '{self.value}'>"
