"""Request body validation using JSON Schema."""

import logging
from typing import Any

from jsonschema import Draft7Validator

from ..errors import InvalidRequestError
from ..models import MAX_INTEGER

logger = logging.getLogger(__name__)

SYNC_REQUEST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "content": {"type": "string"},
        "clientTimestamp": {"type": "integer", "minimum": 0, "maximum": MAX_INTEGER},
    },
    "required": ["content", "clientTimestamp"],
}

HISTORY_REQUEST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"enum": ["list", "get"]},
        "id": {"type": "integer", "minimum": 1, "maximum": MAX_INTEGER},
        "limit": {"type": "integer", "minimum": 1, "maximum": MAX_INTEGER},
    },
    "required": ["action"],
    "if": {"properties": {"action": {"const": "get"}}},
    "then": {"required": ["id"]},
}

_SYNC_VALIDATOR = Draft7Validator(SYNC_REQUEST_SCHEMA)
_HISTORY_VALIDATOR = Draft7Validator(HISTORY_REQUEST_SCHEMA)


def _check(validator: Draft7Validator, payload: Any, request_name: str) -> None:
    """Raise InvalidRequestError listing every schema violation."""
    errors = list(validator.iter_errors(payload))
    if not errors:
        return

    error_msgs = []
    for error in errors:
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        error_msgs.append(f"{path}: {error.message}")

    message = f"Invalid {request_name} request: " + "; ".join(error_msgs)
    logger.debug(message)
    raise InvalidRequestError(message)


def validate_sync_request(payload: Any) -> tuple[str, int]:
    """Validate a sync request body.

    Args:
        payload: Decoded JSON body.

    Returns:
        Tuple of (content, client_timestamp).

    Raises:
        InvalidRequestError: If fields are missing or malformed.
    """
    _check(_SYNC_VALIDATOR, payload, "sync")
    return payload["content"], int(payload["clientTimestamp"])


def validate_history_request(payload: Any) -> dict[str, Any]:
    """Validate a history request body.

    Returns:
        Dict with ``action`` plus ``id`` (get) or ``limit`` (list, may be None).

    Raises:
        InvalidRequestError: If the action is unknown or ``id`` is missing.
    """
    _check(_HISTORY_VALIDATOR, payload, "history")
    action = payload["action"]
    if action == "get":
        return {"action": action, "id": int(payload["id"])}
    limit = payload.get("limit")
    return {"action": action, "limit": int(limit) if limit is not None else None}
