"""
Core utilities package.

This package contains the JSON codec used to persist root values.
"""

from livepersist.core.json_utils import JsonCodec, ORJSON_AVAILABLE, dumps, dumps_bytes, loads

__all__ = [
    "JsonCodec",
    "ORJSON_AVAILABLE",
    "dumps",
    "dumps_bytes",
    "loads",
]
