"""
Fast JSON codec for persisted values.

Uses orjson when available (3-10x faster than stdlib json).
Falls back to stdlib json for compatibility.

Usage:
    from livepersist.core.json_utils import JsonCodec

    codec = JsonCodec()
    data = codec.encode({"x": 1})
    value = codec.decode(data)
"""

from __future__ import annotations

from typing import Any

from livepersist.errors import ParseError

try:
    import orjson

    def dumps(obj: Any) -> str:
        """Fast JSON encode to string."""
        return orjson.dumps(obj).decode("utf-8")

    def dumps_bytes(obj: Any) -> bytes:
        """Fast JSON encode to bytes (even faster, skip utf-8 decode)."""
        return orjson.dumps(obj)

    def loads(s: str | bytes) -> Any:
        """Fast JSON decode."""
        return orjson.loads(s)

    ENCODE_ERRORS: tuple = (orjson.JSONEncodeError, TypeError, ValueError)
    DECODE_ERRORS: tuple = (orjson.JSONDecodeError, ValueError)
    ORJSON_AVAILABLE = True

except ImportError:
    import json

    def dumps(obj: Any) -> str:
        """Stdlib JSON encode with compact separators."""
        return json.dumps(obj, separators=(",", ":"), allow_nan=False)

    def dumps_bytes(obj: Any) -> bytes:
        """Stdlib JSON encode to bytes."""
        return json.dumps(obj, separators=(",", ":"), allow_nan=False).encode("utf-8")

    def loads(s: str | bytes) -> Any:
        """Stdlib JSON decode."""
        return json.loads(s)

    ENCODE_ERRORS = (TypeError, ValueError)
    DECODE_ERRORS = (ValueError, UnicodeDecodeError)
    ORJSON_AVAILABLE = False


class JsonCodec:
    """
    Value <-> bytes transcoder used by persistent roots.

    Handles dicts (string keys), lists, strings, numbers, booleans and None.
    Managed containers are dict/list subclasses and encode like plain ones.
    """

    def encode(self, value: Any) -> bytes:
        try:
            return dumps_bytes(value)
        except ENCODE_ERRORS as exc:
            raise ParseError(f"Value is not representable as JSON: {exc}") from exc

    def decode(self, data: bytes | str) -> Any:
        try:
            return loads(data)
        except DECODE_ERRORS as exc:
            raise ParseError(f"Corrupt JSON data: {exc}") from exc
