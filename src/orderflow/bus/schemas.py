"""Wire schema registry and codec.

Every record on the broker is a JSON envelope::

    {"_type": "OrderEvent", "_version": 1, "_data": {...}}

``_data`` holds the model's fields under their wire aliases.  Decoding
ignores unknown keys (in the envelope and in ``_data``) and accepts
newer versions than this build knows, so producers can add fields
without breaking running consumers.
"""

from __future__ import annotations

import json
import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from orderflow.core.errors import SchemaError
from orderflow.core.events import OperatorAlert, OrderEvent

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Current schema version per event type.  Bump when a schema changes in a
# backward-incompatible way so consumers can detect mismatches.
SCHEMA_VERSIONS: dict[str, int] = {
    OrderEvent.__name__: 1,
    OperatorAlert.__name__: 1,
}

# Flat map: event class name → event class (for deserialization)
EVENT_TYPE_MAP: dict[str, type[BaseModel]] = {
    OrderEvent.__name__: OrderEvent,
    OperatorAlert.__name__: OperatorAlert,
}


def get_event_class(event_type_name: str) -> type[BaseModel] | None:
    """Look up event class by name."""
    return EVENT_TYPE_MAP.get(event_type_name)


def encode(event: BaseModel) -> bytes:
    """Serialize *event* into a versioned envelope."""
    type_name = type(event).__name__
    if type_name not in SCHEMA_VERSIONS:
        raise SchemaError(f"No wire schema registered for {type_name}")
    envelope = {
        "_type": type_name,
        "_version": SCHEMA_VERSIONS[type_name],
        "_data": event.model_dump(mode="json", by_alias=True),
    }
    return json.dumps(envelope, separators=(",", ":")).encode("utf-8")


def decode(value: bytes | str, expected: type[M] = OrderEvent) -> M:  # type: ignore[assignment]
    """Deserialize an envelope, raising ``SchemaError`` if it is unusable."""
    try:
        envelope = json.loads(value)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SchemaError(f"Record is not valid JSON: {exc}") from exc

    if not isinstance(envelope, dict):
        raise SchemaError("Record envelope is not a JSON object")

    type_name = envelope.get("_type")
    data = envelope.get("_data")
    if not type_name or not isinstance(data, dict):
        raise SchemaError(f"Malformed envelope: keys={sorted(envelope)}")

    event_cls = get_event_class(type_name)
    if event_cls is None:
        raise SchemaError(f"Unknown event type: {type_name}")
    if event_cls is not expected:
        raise SchemaError(
            f"Expected {expected.__name__}, got {type_name}"
        )

    version = envelope.get("_version", 1)
    if isinstance(version, int) and version > SCHEMA_VERSIONS[type_name]:
        logger.info(
            "Decoding %s v%d with v%d schema; unknown fields ignored",
            type_name,
            version,
            SCHEMA_VERSIONS[type_name],
        )

    try:
        return expected.model_validate(data)
    except ValidationError as exc:
        raise SchemaError(f"Invalid {type_name}: {exc}") from exc
