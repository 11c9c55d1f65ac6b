"""
Configuration package.

This package contains environment defaults and construction-argument validation.
"""

from livepersist.config.config import Settings, get_settings
from livepersist.config.validator import (
    RootConfig,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
    validate_root_config,
)

__all__ = [
    "Settings",
    "get_settings",
    "RootConfig",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
    "validate_root_config",
]
