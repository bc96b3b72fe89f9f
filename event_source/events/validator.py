"""
Payload validation for published events.

Two layers of checks run before an event reaches the store:
- Required classification fields (type, version) plus a data mapping
- Topic-specific payload schema, keyed by EventTopic

Payload schemas use camelCase aliases because that is the wire shape
handlers receive. Validated payloads are normalized to their alias-keyed
dict form; unknown keys are dropped.
"""

from typing import Any, Dict, List, Mapping, Type, Union

from loguru import logger
from pydantic import BaseModel, Field, StrictFloat, StrictInt
from pydantic import ValidationError as PydanticValidationError

from ..core.models import PublishRequest
from .topics import EventTopic

REQUIRED_FIELDS_MESSAGE = "Required parameters are missing."


class EventValidationError(ValueError):
    """
    Raised when a publish request fails validation.

    Attributes:
        errors: Violated constraints as "location: message" strings
    """

    def __init__(self, message: str, errors: List[str] = None):
        super().__init__(message)
        self.errors: List[str] = errors or []


class ActionCreatedData(BaseModel):
    """Payload for EventTopic.ACTION_CREATED."""

    model_config = {"strict": True, "populate_by_name": True}

    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    email: str


class ActionUpdatedData(BaseModel):
    """Payload for EventTopic.ACTION_UPDATED."""

    model_config = {"strict": True, "populate_by_name": True}

    action_id: Union[StrictInt, StrictFloat] = Field(alias="actionId")


class ActionDeletedData(ActionUpdatedData):
    """Payload for EventTopic.ACTION_DELETED."""


TOPIC_SCHEMAS: Dict[EventTopic, Type[BaseModel]] = {
    EventTopic.ACTION_CREATED: ActionCreatedData,
    EventTopic.ACTION_UPDATED: ActionUpdatedData,
    EventTopic.ACTION_DELETED: ActionDeletedData,
}


def _format_errors(exc: PydanticValidationError) -> List[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


def validate_required_fields(
    candidate: Union[PublishRequest, Mapping[str, Any]]
) -> PublishRequest:
    """
    Check that a candidate carries string ``type``/``version`` and a data dict.

    Args:
        candidate: PublishRequest or mapping supplied by a publisher

    Returns:
        PublishRequest: Parsed request

    Raises:
        EventValidationError: "Required parameters are missing." when any
            required field is absent or has the wrong type

    Examples:
        >>> validate_required_fields({"type": "user", "version": "1", "data": {}}).type
        'user'
    """
    if isinstance(candidate, PublishRequest):
        return candidate

    try:
        return PublishRequest.model_validate(candidate)
    except PydanticValidationError as e:
        raise EventValidationError(REQUIRED_FIELDS_MESSAGE, _format_errors(e)) from e


def validate_event_data(topic: EventTopic, data: Any) -> Dict[str, Any]:
    """
    Validate a payload against its topic schema.

    Args:
        topic: Topic whose schema applies
        data: Candidate payload

    Returns:
        Dict[str, Any]: Normalized payload keyed by the schema's aliases

    Raises:
        EventValidationError: If the payload violates the schema
    """
    schema = TOPIC_SCHEMAS[EventTopic(topic)]

    try:
        parsed = schema.model_validate(data)
    except PydanticValidationError as e:
        raise EventValidationError(
            f"Invalid data for topic {EventTopic(topic).name}.", _format_errors(e)
        ) from e

    return parsed.model_dump(by_alias=True)


def validate_publish_request(
    topic: EventTopic,
    candidate: Union[PublishRequest, Mapping[str, Any]],
) -> PublishRequest:
    """Run both validation layers and return a request with normalized data."""
    try:
        request = validate_required_fields(candidate)
        data = validate_event_data(topic, request.data)
    except EventValidationError as e:
        logger.warning(f"Rejected publish on {EventTopic(topic).name}: {e} {e.errors}")
        raise

    return request.model_copy(update={"data": data})
