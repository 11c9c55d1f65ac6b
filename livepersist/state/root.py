"""
PersistentRoot: a value graph whose mutations are saved automatically.

Architecture:
    PersistentRoot owns the configuration (path, depth bound, default value,
    completion callback, timing policy) and wires

        Interceptor (TrackedDict/TrackedList) -> FlushScheduler -> Flusher -> Store

    The root value is loaded once in open(). Afterwards every tracked mutation
    calls mark_dirty(); the scheduler coalesces those into single writes.

Usage:
    data = await create("state.json", default={"runs": 0})
    data["runs"] += 1            # written shortly after, no save() call

    root = PersistentRoot("state.json", delay=0.5, on_saved=callback)
    data = await root.open()
    ...
    await root.wait_idle()       # e.g. before shutdown
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, TYPE_CHECKING

from livepersist.config import RootConfig, get_settings, validate_root_config
from livepersist.core.json_utils import JsonCodec
from livepersist.errors import LoadError, ParseError
from livepersist.infra.logging_cfg import configure_logging, log_event
from livepersist.monitoring.metrics import default_metrics
from livepersist.state.flusher import Flusher, OnSaved
from livepersist.state.interceptor import is_tracked, wrap
from livepersist.state.scheduler import FlushScheduler, FlushState
from livepersist.state.store import FileStore

if TYPE_CHECKING:
    from livepersist.monitoring.metrics import PersistMetrics
    from livepersist.state.store import Store

log = logging.getLogger("livepersist")

_STATE_CODES = {
    FlushState.IDLE: 0,
    FlushState.SCHEDULED: 1,
    FlushState.SAVING: 2,
    FlushState.SAVING_DIRTY: 3,
}


class PersistentRoot:
    """
    One persisted value graph and its persistence configuration.

    Construction validates every argument synchronously and performs no I/O;
    open() loads the value. Options left as None fall back to the
    LIVEPERSIST_* environment settings.
    """

    def __init__(
        self,
        path: str,
        *,
        depth: Optional[int] = None,
        default: Any = None,
        on_saved: Optional[OnSaved] = None,
        delay: Optional[float] = None,
        store: Optional["Store"] = None,
        codec: Optional[JsonCodec] = None,
        metrics: Optional["PersistMetrics"] = None,
    ) -> None:
        """
        Args:
            path: Store key (file path for FileStore), non-empty
            depth: Tracking depth bound, 0 = unlimited
            default: dict or list used when the store has nothing at path
            on_saved: Callback (error_or_None, value) after every flush attempt
            delay: Debounce window in seconds, 0 = flush on next loop iteration
            store: Backing store (default FileStore)
            codec: Value <-> bytes codec (default JsonCodec)
            metrics: Metrics sink (default process-wide PersistMetrics)
        """
        self._codec = codec or JsonCodec()
        validate_root_config(
            RootConfig(path=path, depth=depth, default=default, on_saved=on_saved, delay=delay),
            encode=self._codec.encode,
        ).raise_for_errors()

        settings = get_settings()
        configure_logging(settings)
        self.path: str = path
        self.depth: int = int(depth) if depth is not None else settings.depth
        self.delay: float = float(delay) if delay is not None else settings.delay
        # Kept encoded so that every load gets an independent deep copy
        self._default_bytes = self._codec.encode(default if default is not None else {})
        self._on_saved = on_saved
        self._store = store if store is not None else FileStore(fsync=settings.fsync)
        self._metrics = metrics or default_metrics()

        self._value: Any = None
        self._opened = False
        self._loaded = False
        self._scheduler: Optional[FlushScheduler] = None
        self._flusher: Optional[Flusher] = None

    def __repr__(self) -> str:
        state = self._scheduler.state.name if self._scheduler else "UNLOADED"
        return f"PersistentRoot(path={self.path!r}, depth={self.depth}, state={state})"

    # ========== Properties ==========

    @property
    def value(self) -> Any:
        """The managed root value (None before open() completes)."""
        return self._value

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def state(self) -> Optional[FlushState]:
        return self._scheduler.state if self._scheduler else None

    @property
    def last_error(self):
        """Error of the most recent flush attempt, None after a success."""
        return self._flusher.last_error if self._flusher else None

    @property
    def scheduler(self) -> Optional[FlushScheduler]:
        return self._scheduler

    # ========== Loading ==========

    async def open(self) -> Any:
        """
        Load the value from the store and start tracking it.

        Returns:
            The managed root value

        Raises:
            LoadError: store read failed for a reason other than NotFound
            ParseError: stored bytes could not be decoded
        """
        if self._opened:
            raise RuntimeError(f"Root {self.path!r} is already opened")
        self._opened = True
        loop = asyncio.get_running_loop()

        try:
            data = await self._store.read(self.path)
        except FileNotFoundError:
            raw = self._codec.decode(self._default_bytes)
            source = "default"
        except Exception as exc:
            log_event(log, "load_failed", level=logging.ERROR, path=self.path, err=str(exc))
            raise LoadError(self.path, f"Cannot load {self.path!r}: {exc}") from exc
        else:
            try:
                raw = self._codec.decode(data)
            except ParseError as exc:
                log_event(log, "load_failed", level=logging.ERROR, path=self.path, err=str(exc))
                raise
            source = "store"

        self._flusher = Flusher(
            self.path, self._store, self._codec, loop,
            on_saved=self._on_saved, metrics=self._metrics,
        )
        self._scheduler = FlushScheduler(
            self._flush_once, loop, delay=self.delay,
            name=self.path, on_transition=self._on_transition,
        )
        self._value = wrap(self, 1, raw)
        self._loaded = True
        log_event(log, "root_loaded", path=self.path, source=source, depth=self.depth, delay=self.delay)
        return self._value

    # ========== Interceptor owner protocol ==========

    def mark_dirty(self) -> None:
        """Dirty signal from a managed node owned by this root."""
        scheduler = self._scheduler
        if scheduler is None:
            return
        coalesced = scheduler.coalesced
        scheduler.mark_dirty()
        self._metrics.marks.labels(path=self.path).inc()
        if scheduler.coalesced != coalesced:
            self._metrics.coalesced.labels(path=self.path).inc()

    # ========== Flushing ==========

    async def _flush_once(self) -> None:
        await self._flusher.flush(self._value)

    def _on_transition(self, old: FlushState, new: FlushState) -> None:
        self._metrics.state.labels(path=self.path).set(_STATE_CODES[new])

    async def wait_idle(self) -> None:
        """Wait until every pending write of this root has completed."""
        if self._scheduler is not None:
            await self._scheduler.wait_idle()

    async def flush_now(self) -> None:
        """Start a debounced flush immediately and wait for it."""
        if self._scheduler is not None:
            await self._scheduler.flush_now()


def create(
    path: str,
    *,
    depth: Optional[int] = None,
    default: Any = None,
    on_saved: Optional[OnSaved] = None,
    delay: Optional[float] = None,
    store: Optional["Store"] = None,
    codec: Optional[JsonCodec] = None,
    metrics: Optional["PersistMetrics"] = None,
) -> Coroutine[Any, Any, Any]:
    """
    Create a persistent root and return an awaitable resolving to its value.

    Arguments are validated immediately; ValidationError is raised by this
    call itself, before anything is awaited or read.
    """
    root = PersistentRoot(
        path, depth=depth, default=default, on_saved=on_saved, delay=delay,
        store=store, codec=codec, metrics=metrics,
    )
    return root.open()


def root_of(value: Any) -> Optional[PersistentRoot]:
    """The PersistentRoot whose top-level value is ``value``, if any."""
    if not is_tracked(value):
        return None
    for owner in value.owners():
        if isinstance(owner, PersistentRoot) and owner.value is value:
            return owner
    return None
