"""
Construction-argument validation for persistent roots.

Runs synchronously inside ``create()`` before any I/O is started. All issues
are collected; the first error is raised as ``ValidationError`` naming the
offending field.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, List, Optional

from livepersist.errors import ParseError, ValidationError

logger = logging.getLogger("livepersist")


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""
    ERROR = auto()    # Blocks construction
    WARNING = auto()  # Logged, construction continues


@dataclass
class ValidationIssue:
    """A single validation issue."""
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None


@dataclass
class ValidationResult:
    """Result of argument validation."""
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.has_errors()

    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    def raise_for_errors(self) -> None:
        errors = self.get_errors()
        if errors:
            first = errors[0]
            raise ValidationError(first.field, first.message, first.value)


@dataclass
class RootConfig:
    """Arguments of a persistent root, as given by the caller."""
    path: Any
    depth: Any = None
    default: Any = None
    on_saved: Any = None
    delay: Any = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_root_config(config: RootConfig, encode: Optional[Callable[[Any], bytes]] = None) -> ValidationResult:
    """
    Check argument types and ranges.

    ``encode`` is used to verify that the default value is representable by
    the codec, so that a bad default fails here rather than at first flush.
    """
    result = ValidationResult()
    add = result.issues.append

    if not isinstance(config.path, str) or not config.path:
        add(ValidationIssue("path", "Argument 'path' expected to be a non-empty string",
                            ValidationSeverity.ERROR, config.path))

    if config.depth is not None:
        if not _is_number(config.depth):
            add(ValidationIssue("depth", f"Option 'depth' expected to be a number, got {type(config.depth).__name__}",
                                ValidationSeverity.ERROR, config.depth))
        elif not math.isfinite(config.depth):
            add(ValidationIssue("depth", "Option 'depth' must be finite (use 0 for unlimited)",
                                ValidationSeverity.ERROR, config.depth))
        elif config.depth < 0:
            add(ValidationIssue("depth", "Option 'depth' must not be negative",
                                ValidationSeverity.ERROR, config.depth))
        elif config.depth != int(config.depth):
            add(ValidationIssue("depth", "Option 'depth' is fractional and will be truncated",
                                ValidationSeverity.WARNING, config.depth))

    if config.delay is not None:
        if not _is_number(config.delay):
            add(ValidationIssue("delay", f"Option 'delay' expected to be a number, got {type(config.delay).__name__}",
                                ValidationSeverity.ERROR, config.delay))
        elif not math.isfinite(config.delay):
            add(ValidationIssue("delay", "Option 'delay' must be finite",
                                ValidationSeverity.ERROR, config.delay))
        elif config.delay < 0:
            add(ValidationIssue("delay", "Option 'delay' must not be negative",
                                ValidationSeverity.ERROR, config.delay))

    if config.default is not None:
        if not isinstance(config.default, (dict, list)):
            add(ValidationIssue("default", f"Option 'default' expected to be a dict or list, got {type(config.default).__name__}",
                                ValidationSeverity.ERROR, config.default))
        elif encode is not None:
            try:
                encode(config.default)
            except ParseError as exc:
                add(ValidationIssue("default", f"Option 'default' is not representable: {exc}",
                                    ValidationSeverity.ERROR, config.default))

    if config.on_saved is not None and not callable(config.on_saved):
        add(ValidationIssue("on_saved", f"Option 'on_saved' expected to be callable, got {type(config.on_saved).__name__}",
                            ValidationSeverity.ERROR, config.on_saved))

    for issue in result.get_warnings():
        logger.warning("root_config_warning field=%s msg=%s", issue.field, issue.message)

    return result
