"""
Logging for persistent roots.

Every record the package emits is a JSON object produced by log_event():

    {"event": "flush_failed", "path": "state.json", "error_type": "WriteError", ...}

configure_logging() applies LIVEPERSIST_LOG_LEVEL / LIVEPERSIST_LOG_FILE to
the "livepersist" logger. The first PersistentRoot calls it; records still
propagate to the application's handlers. Standalone scripts can ask for a
rich console as well with configure_logging(console=True).

The log file is written from a background thread so that flush completions
on the event loop never wait on disk.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
import threading
import time
from typing import Dict, Optional, TYPE_CHECKING

from livepersist.core.json_utils import dumps, loads

if TYPE_CHECKING:
    from livepersist.config import Settings

try:  # rich is optional; fallback to plain stream if unavailable
    from rich.logging import RichHandler
except ImportError:  # pragma: no cover - optional import
    RichHandler = None


LOGGER_NAME = "livepersist"

_configured = False


class JsonFormatter(logging.Formatter):
    """One JSON line per record; structured event payloads are inlined."""

    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": round(record.created, 6),
            "level": record.levelname,
            "logger": record.name,
        }
        message = record.getMessage()
        try:
            event = loads(message)
        except ValueError:
            event = None
        if isinstance(event, dict):
            line.update(event)
        else:
            line["msg"] = message
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return dumps(line)


class QueueWriterHandler(logging.Handler):
    """
    Hands records to a daemon thread that feeds ``target``.

    Records are dropped (and counted) when the queue is full. close() drains
    what is queued and is safe to call more than once.
    """

    def __init__(self, target: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._target = target
        self._closed = False
        self._dropped = 0
        self._thread = threading.Thread(target=self._drain, daemon=True, name="livepersist-log")
        self._thread.start()
        atexit.register(self.close)

    def emit(self, record: logging.LogRecord) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._dropped += 1

    def _drain(self) -> None:
        while not self._closed or not self._queue.empty():
            try:
                record = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._target.handle(record)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._thread.join(timeout=2.0)
        if self._dropped:
            sys.stderr.write(f"[livepersist] {self._dropped} log records dropped (queue full)\n")
        self._target.close()
        super().close()


class FlushFailureThrottle(logging.Filter):
    """
    Lets one ``flush_failed`` record per path through every ``cooldown_sec``.

    A root whose store keeps failing would otherwise log once per flush.
    """

    def __init__(self, cooldown_sec: float = 30.0):
        super().__init__()
        self._cooldown = cooldown_sec
        self._last_by_path: Dict[str, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            event = loads(record.getMessage())
        except ValueError:
            return True
        if not isinstance(event, dict) or event.get("event") != "flush_failed":
            return True

        path = str(event.get("path", ""))
        now = time.monotonic()
        last = self._last_by_path.get(path)
        if last is not None and now - last < self._cooldown:
            return False
        self._last_by_path[path] = now
        return True


def _console_handler(level: int) -> logging.Handler:
    if RichHandler:
        handler: logging.Handler = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
    handler.setLevel(level)
    handler.addFilter(FlushFailureThrottle())
    return handler


def _file_handler(file_path: str, level: int, queued: bool) -> logging.Handler:
    handler: logging.Handler = logging.FileHandler(file_path)
    handler.setFormatter(JsonFormatter())
    handler.setLevel(level)
    if queued:
        handler = QueueWriterHandler(handler)
        handler.setLevel(level)
    return handler


def build_logger(
    name: str = LOGGER_NAME,
    level: int = logging.INFO,
    file_path: Optional[str] = None,
    queued_file: bool = True,
) -> logging.Logger:
    """
    Give ``name`` its own console (and optional JSON file) output.

    The logger stops propagating. Calling again only updates levels.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    logger.addHandler(_console_handler(level))
    if file_path:
        logger.addHandler(_file_handler(file_path, level, queued_file))
    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data
) -> None:
    """
    Log a structured event with proper level.

    Usage:
        log_event(log, "flush_ok", level=DEBUG, path="state.json", bytes=42)
    """
    if not logger.isEnabledFor(level):
        return
    logger.log(level, dumps({"event": event, **data}))


def configure_logging(settings: Optional["Settings"] = None, console: bool = False) -> logging.Logger:
    """
    Apply LIVEPERSIST_LOG_LEVEL / LIVEPERSIST_LOG_FILE to the package logger.

    Without ``console`` only the level and the optional JSON file are applied,
    once per process.
    """
    global _configured
    from livepersist.config import get_settings

    settings = settings or get_settings()
    if console:
        _configured = True
        return build_logger(LOGGER_NAME, level=settings.log_level, file_path=settings.log_file)

    logger = logging.getLogger(LOGGER_NAME)
    if _configured:
        return logger
    _configured = True
    logger.setLevel(settings.log_level)
    if settings.log_file:
        logger.addHandler(_file_handler(settings.log_file, settings.log_level, queued=True))
    return logger
