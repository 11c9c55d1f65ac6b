"""
Error taxonomy for live persisted values.

Validation and adoption errors are raised synchronously at the offending call.
Load errors fail the awaitable returned by ``create()``. Write errors are
asynchronous and reach the caller through ``on_saved`` or the event loop's
exception handler.
"""

from __future__ import annotations

from typing import Any, Optional


class PersistError(Exception):
    """Base class for all livepersist errors."""
    pass


class ValidationError(PersistError, TypeError):
    """Bad construction argument. Raised before any I/O."""

    def __init__(self, field: str, message: str, value: Any = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


class LoadError(PersistError):
    """Backing store read failed for a reason other than NotFound."""

    def __init__(self, path: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Cannot load {path!r}")
        self.path = path


class ParseError(PersistError):
    """Persisted bytes could not be decoded, or a value could not be encoded."""
    pass


class ContractViolation(PersistError):
    """A value cannot be transparently instrumented; the mutation did not apply."""
    pass


class WriteError(PersistError):
    """Backing store write failed."""

    def __init__(self, path: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Cannot write {path!r}")
        self.path = path
