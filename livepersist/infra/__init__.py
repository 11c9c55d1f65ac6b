"""
Infrastructure package.

This package contains logging configuration.
"""

from livepersist.infra.logging_cfg import build_logger, configure_logging, log_event

__all__ = [
    "build_logger",
    "configure_logging",
    "log_event",
]
