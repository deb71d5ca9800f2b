"""
JSON serialization helpers backed by ujson.
"""

from datetime import datetime
from typing import Any

import ujson

from apphost.core.exceptions import SerializationError


def _default_json_serializer(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


def to_json(obj: Any, ensure_ascii: bool = False, sort_keys: bool = False) -> str:
    """
    Serialize an object to a JSON string.

    Raises:
        SerializationError: the object cannot be encoded
    """
    try:
        return ujson.dumps(
            obj,
            ensure_ascii=ensure_ascii,
            sort_keys=sort_keys,
            default=_default_json_serializer,
        )
    except (TypeError, ValueError, OverflowError) as e:
        raise SerializationError(f"JSON serialization failed: {e}") from e


def from_json(data: str | bytes) -> Any:
    """
    Deserialize a JSON document.

    Raises:
        SerializationError: the document is not valid JSON
    """
    try:
        return ujson.loads(data)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"JSON deserialization failed: {e}") from e
