"""
Environment-driven defaults for persistent roots.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from livepersist.errors import ValidationError


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _float_env(key: str, default: float, field: str) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(field, f"{key}={raw!r} is not a number", raw) from exc
    if not math.isfinite(value) or value < 0:
        raise ValidationError(field, f"{key}={raw!r} must be a finite, non-negative number", value)
    return value


def _int_env(key: str, default: int, field: str) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(field, f"{key}={raw!r} is not an integer", raw) from exc
    if value < 0:
        raise ValidationError(field, f"{key}={raw!r} must not be negative", value)
    return value


@dataclass(frozen=True)
class Settings:
    delay: float              # Debounce window in seconds (0 = flush on next loop iteration)
    depth: int                # Tracking depth bound (0 = unlimited)
    log_level: int
    log_file: Optional[str]
    fsync: bool               # FileStore fsyncs the temp file before replacing

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging."""
        return self.__dict__.copy()

    @classmethod
    def load(cls, dotenv: bool = True) -> "Settings":
        """
        Read LIVEPERSIST_* variables.

        Raises:
            ValidationError: LIVEPERSIST_DELAY / LIVEPERSIST_DEPTH is malformed,
                negative or not finite
        """
        if dotenv:
            load_dotenv()
        level = logging.getLevelName(os.getenv("LIVEPERSIST_LOG_LEVEL", "INFO").upper())
        return cls(
            delay=_float_env("LIVEPERSIST_DELAY", 0.0, "delay"),
            depth=_int_env("LIVEPERSIST_DEPTH", 0, "depth"),
            log_level=level if isinstance(level, int) else logging.INFO,
            log_file=os.getenv("LIVEPERSIST_LOG_FILE") or None,
            fsync=env_bool("LIVEPERSIST_FSYNC", False),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings loaded once per process."""
    return Settings.load()
