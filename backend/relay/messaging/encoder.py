"""
JSON encoder/decoder for the relay wire format.

Every frame is a single JSON object. Frames arrive as WebSocket text frames;
binary frames carrying UTF-8 JSON are accepted too.
"""

import json
from typing import Any


class DecodeError(Exception):
    """Error raised when a frame cannot be decoded into a message object."""


# Hard ceiling independent of the configurable transport limit.
MAX_BUFFER_LEN = 64 * 1024


def encode(data: dict[str, Any]) -> str:
    """
    Encode a dict to a compact JSON string.
    """
    return json.dumps(data, separators=(",", ":"))


def decode(data: str | bytes) -> dict[str, Any]:
    """
    Decode a JSON frame to a dict.

    Raises DecodeError if data is invalid, not an object, or too large.
    """
    if len(data) > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {len(data)} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
        raise DecodeError(f"failed to decode JSON data: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected object, got {type(result).__name__}")

    return result
