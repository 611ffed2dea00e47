"""Typed view of the messages the engine publishes on the counts topic.

Every Kafka record is keyed by the simulation id and carries one JSON object
in one of three shapes:

* counts:       ``{"hour": 12, "susceptible": 90, "infected": 10, ...}``
* intervention: ``{"hour": 12, "intervention": "lockdown", "data": {...}}``
* termination:  ``{"simulation_ended": true}``

:func:`parse_message` is the single validating entry point; it returns one of
the three models below or raises :class:`MalformedMessageError`.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, TypeAlias

from pydantic import (
    BaseModel,
    Field,
    StrictFloat,
    StrictInt,
    ValidationError,
    field_validator,
)

from app.models.count import COUNT_FIELDS
from app.services.ingestion_errors import MalformedMessageError

# Keys of a counts payload that are not agent-state counts.
_NON_COUNT_KEYS = frozenset({"hour", "simulation_id"})

_RAW_PREVIEW_CHARS = 200

# Upper bound of the 4-byte INTEGER columns holding ids, hours and counts.
MAX_COLUMN_INT = 2**31 - 1

SimulationId = Annotated[StrictInt, Field(ge=0, le=MAX_COLUMN_INT)]
Hour = Annotated[StrictInt, Field(ge=0, le=MAX_COLUMN_INT)]


class CountMessage(BaseModel):
    kind: Literal["count"] = "count"
    simulation_id: SimulationId
    hour: Hour
    counts: dict[str, StrictInt | StrictFloat] = Field(default_factory=dict)

    @field_validator("counts")
    @classmethod
    def _known_states_fit_their_columns(
        cls, counts: dict[str, int | float]
    ) -> dict[str, int | float]:
        # Only extra fields may be fractional; known states are INTEGER columns.
        for field in COUNT_FIELDS:
            if field not in counts:
                continue
            value = counts[field]
            if not isinstance(value, int) or not 0 <= value <= MAX_COLUMN_INT:
                raise ValueError(
                    f"{field} must be an integer between 0 and {MAX_COLUMN_INT}"
                )
        return counts


class InterventionMessage(BaseModel):
    kind: Literal["intervention"] = "intervention"
    simulation_id: SimulationId
    hour: Hour
    intervention: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)

    def entry(self) -> dict[str, Any]:
        """Return the intervention as it is stored on the counts row."""
        return {"intervention": self.intervention, "data": self.data}


class TerminationMessage(BaseModel):
    kind: Literal["termination"] = "termination"
    simulation_id: SimulationId


SimulationMessage: TypeAlias = CountMessage | InterventionMessage | TerminationMessage


def _preview(value: bytes | str | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return value[:_RAW_PREVIEW_CHARS]


def parse_simulation_id(key: bytes | str | int | None) -> int:
    """Parse the record key into a simulation id.

    Raises:
        MalformedMessageError: If the key is missing or not a decimal integer.
    """

    if key is None:
        raise MalformedMessageError("message has no simulation id key")
    if isinstance(key, int) and not isinstance(key, bool):
        return key
    try:
        text = key.decode("utf-8") if isinstance(key, bytes) else str(key)
        return int(text.strip())
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedMessageError(
            "message key is not a simulation id", raw=_preview(key)  # type: ignore[arg-type]
        ) from exc


def _decode_payload(value: bytes | str | None) -> dict[str, Any]:
    if value is None:
        raise MalformedMessageError("message has no payload")
    try:
        payload = json.loads(value)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedMessageError(
            "message payload is not valid JSON", raw=_preview(value)
        ) from exc
    if not isinstance(payload, dict):
        raise MalformedMessageError(
            "message payload is not a JSON object", raw=_preview(value)
        )
    return payload


def classify_payload(simulation_id: int, payload: dict[str, Any]) -> SimulationMessage:
    """Build the typed message for an already decoded payload.

    The first matching rule wins: ``simulation_ended`` marks a termination,
    ``intervention`` an intervention, anything else is a counts message.

    Raises:
        MalformedMessageError: If the payload does not validate as the
            selected shape.
    """

    try:
        if "simulation_ended" in payload:
            return TerminationMessage(simulation_id=simulation_id)
        if "intervention" in payload:
            return InterventionMessage.model_validate(
                {
                    "simulation_id": simulation_id,
                    "hour": payload.get("hour"),
                    "intervention": payload.get("intervention"),
                    "data": payload.get("data", {}),
                }
            )
        counts = {k: v for k, v in payload.items() if k not in _NON_COUNT_KEYS}
        return CountMessage.model_validate(
            {
                "simulation_id": simulation_id,
                "hour": payload.get("hour"),
                "counts": counts,
            }
        )
    except ValidationError as exc:
        raise MalformedMessageError(
            f"invalid message for simulation {simulation_id}: "
            f"{exc.error_count()} validation error(s)",
            raw=_preview(json.dumps(payload, default=str)),
        ) from exc


def parse_message(key: bytes | str | int | None, value: bytes | str | None) -> SimulationMessage:
    """Parse one raw record into a typed message.

    Args:
        key: Record key holding the simulation id.
        value: JSON-encoded record value.

    Returns:
        A ``CountMessage``, ``InterventionMessage`` or ``TerminationMessage``.

    Raises:
        MalformedMessageError: For anything matching none of the shapes.
    """

    simulation_id = parse_simulation_id(key)
    payload = _decode_payload(value)
    return classify_payload(simulation_id, payload)
