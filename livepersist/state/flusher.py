"""
Flusher: encodes a root value and performs exactly one store write.

Outcome reporting:
- on_saved configured: called once per attempt with (None, value) on success
  or (error, value) on failure.
- no on_saved: failures are escalated to the event loop's exception handler.
  The mutation that caused the write has already returned to its caller, so
  the error must not be dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TYPE_CHECKING

from livepersist.errors import ParseError, PersistError, WriteError
from livepersist.infra.logging_cfg import log_event

if TYPE_CHECKING:
    from livepersist.core.json_utils import JsonCodec
    from livepersist.monitoring.metrics import PersistMetrics
    from livepersist.state.store import Store

log = logging.getLogger("livepersist")

OnSaved = Callable[[Optional[BaseException], Any], None]


@dataclass
class FlushOutcome:
    """Result of one flush attempt."""
    ok: bool
    error: Optional[PersistError] = None
    nbytes: int = 0
    elapsed_ms: float = 0.0


class Flusher:
    def __init__(
        self,
        path: str,
        store: "Store",
        codec: "JsonCodec",
        loop: asyncio.AbstractEventLoop,
        on_saved: Optional[OnSaved] = None,
        metrics: Optional["PersistMetrics"] = None,
    ) -> None:
        self.path = path
        self._store = store
        self._codec = codec
        self._loop = loop
        self._on_saved = on_saved
        self._metrics = metrics
        self.last_error: Optional[PersistError] = None

    async def flush(self, value: Any) -> FlushOutcome:
        """Write the current value once. Never raises (except cancellation)."""
        started = time.perf_counter()
        error: Optional[PersistError] = None
        nbytes = 0
        try:
            data = self._codec.encode(value)
        except ParseError as exc:
            error = exc
        except Exception as exc:
            error = ParseError(f"Codec failed to encode value: {exc}")
            error.__cause__ = exc
        else:
            nbytes = len(data)
            try:
                await self._store.write(self.path, data)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = WriteError(self.path, f"Cannot write {self.path!r}: {exc}")
                error.__cause__ = exc

        outcome = FlushOutcome(
            ok=error is None,
            error=error,
            nbytes=nbytes,
            elapsed_ms=(time.perf_counter() - started) * 1000.0,
        )
        self._record(outcome)
        self._report(outcome, value)
        return outcome

    def _record(self, outcome: FlushOutcome) -> None:
        if outcome.ok:
            self.last_error = None
            log_event(log, "flush_ok", level=logging.DEBUG, path=self.path,
                      bytes=outcome.nbytes, ms=round(outcome.elapsed_ms, 3))
        else:
            self.last_error = outcome.error
            log_event(log, "flush_failed",
                      level=logging.WARNING if self._on_saved else logging.ERROR,
                      path=self.path, error_type=type(outcome.error).__name__, err=str(outcome.error))

        if self._metrics is not None:
            self._metrics.flushes.labels(path=self.path, outcome="ok" if outcome.ok else "error").inc()
            self._metrics.flush_latency_ms.labels(path=self.path).observe(outcome.elapsed_ms)
            if outcome.ok:
                self._metrics.flush_bytes.labels(path=self.path).set(outcome.nbytes)

    def _report(self, outcome: FlushOutcome, value: Any) -> None:
        if self._on_saved is not None:
            try:
                self._on_saved(outcome.error, value)
            except Exception as exc:
                self._escalate(f"on_saved callback for {self.path!r} raised", exc)
        elif outcome.error is not None:
            self._escalate(f"Unhandled flush failure for {self.path!r}", outcome.error)

    def _escalate(self, message: str, exc: BaseException) -> None:
        self._loop.call_exception_handler({
            "message": message,
            "exception": exc,
            "path": self.path,
        })
