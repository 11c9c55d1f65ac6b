"""
Flush Scheduler - per-root write coalescing state machine.

    IDLE ──mark_dirty──> SCHEDULED ──timer──> SAVING ──done──> IDLE
                           │  ▲                 │  ▲
                           └──┘ (debounce       │  │ done: flush again
                                 restart)       ▼  │
                                            SAVING_DIRTY
                                            (mark_dirty while writing)

Guarantees:
- At most one flush in flight per root.
- A burst of mark_dirty() calls with no quiescent gap produces one flush.
- A mark_dirty() during a flush produces exactly one follow-up flush.

Timing policies:
- delay == 0: flush via loop.call_soon, i.e. once the code currently running
  on the event loop yields. A tight burst of mutations coalesces.
- delay > 0: debounce. Every mark_dirty() while SCHEDULED restarts the timer,
  so the flush starts only after `delay` seconds without mutations. A root
  that never quiesces may defer its flush indefinitely.

Not thread-safe: mark_dirty() must be called on the scheduler's loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Union

log = logging.getLogger("livepersist")


class FlushState(Enum):
    IDLE = auto()          # Nothing to write
    SCHEDULED = auto()     # Dirty, flush armed
    SAVING = auto()        # Write in flight
    SAVING_DIRTY = auto()  # Write in flight and mutated since it started


VALID_TRANSITIONS: Dict[FlushState, FrozenSet[FlushState]] = {
    FlushState.IDLE: frozenset({FlushState.SCHEDULED}),
    FlushState.SCHEDULED: frozenset({FlushState.SAVING}),
    FlushState.SAVING: frozenset({FlushState.IDLE, FlushState.SAVING_DIRTY}),
    FlushState.SAVING_DIRTY: frozenset({FlushState.SAVING}),
}


class FlushScheduler:
    """
    Coalesces dirty signals of one root into single flushes.

    Usage:
        scheduler = FlushScheduler(root.flush_once, loop, delay=0.5)
        scheduler.mark_dirty()      # from mutation interception
        await scheduler.wait_idle() # all pending writes done
    """

    def __init__(
        self,
        flush: Callable[[], Awaitable[None]],
        loop: asyncio.AbstractEventLoop,
        delay: float = 0.0,
        name: str = "",
        on_transition: Optional[Callable[[FlushState, FlushState], None]] = None,
    ) -> None:
        """
        Args:
            flush: Coroutine function performing one write; errors it raises
                are reported to the loop exception handler
            loop: Event loop the root lives on
            delay: Debounce window in seconds (0 = next loop iteration)
            name: Label for log messages (usually the root path)
            on_transition: Called after every state change
        """
        self._flush = flush
        self._loop = loop
        self._delay = float(delay or 0.0)
        self._name = name
        self._on_transition = on_transition

        self._state = FlushState.IDLE
        self._handle: Optional[Union[asyncio.Handle, asyncio.TimerHandle]] = None
        self._task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()

        # Statistics
        self.marks = 0
        self.coalesced = 0
        self.flushes = 0

    @property
    def state(self) -> FlushState:
        return self._state

    @property
    def delay(self) -> float:
        return self._delay

    def _set_state(self, new_state: FlushState) -> None:
        old = self._state
        if new_state not in VALID_TRANSITIONS[old]:
            raise RuntimeError(f"Invalid flush transition {old.name} -> {new_state.name}")
        self._state = new_state
        if new_state is FlushState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()
        log.debug("flush_transition path=%s %s->%s", self._name, old.name, new_state.name)
        if self._on_transition:
            self._on_transition(old, new_state)

    # ========== Dirty signal ==========

    def mark_dirty(self) -> None:
        self.marks += 1
        state = self._state
        if state is FlushState.IDLE:
            self._set_state(FlushState.SCHEDULED)
            self._arm()
        elif state is FlushState.SCHEDULED:
            self.coalesced += 1
            if self._delay > 0:
                # Debounce: quiet period restarts with every mutation
                self._cancel_timer()
                self._arm()
        elif state is FlushState.SAVING:
            self._set_state(FlushState.SAVING_DIRTY)
        else:
            self.coalesced += 1

    def _arm(self) -> None:
        if self._delay > 0:
            self._handle = self._loop.call_later(self._delay, self._start)
        else:
            self._handle = self._loop.call_soon(self._start)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    # ========== Flush loop ==========

    def _start(self) -> None:
        self._handle = None
        if self._state is not FlushState.SCHEDULED:
            return
        self._set_state(FlushState.SAVING)
        self._task = self._loop.create_task(self._run())

    async def _run(self) -> None:
        try:
            while True:
                self.flushes += 1
                await self._flush()
                if self._state is FlushState.SAVING_DIRTY:
                    self._set_state(FlushState.SAVING)
                    continue
                self._set_state(FlushState.IDLE)
                break
        except asyncio.CancelledError:
            self._abandon()
            raise
        except Exception as exc:
            dirty = self._state is FlushState.SAVING_DIRTY
            self._abandon()
            log.error("flush_crashed path=%s err=%s", self._name, exc)
            self._loop.call_exception_handler({
                "message": f"Flush task for {self._name!r} failed",
                "exception": exc,
                "path": self._name,
            })
            if dirty:
                # Mutations made during the failed flush still need a write
                self._set_state(FlushState.SCHEDULED)
                self._arm()
        finally:
            self._task = None

    def _abandon(self) -> None:
        # Never stay stuck in SAVING / SAVING_DIRTY
        old = self._state
        if old is not FlushState.IDLE:
            self._state = FlushState.IDLE
            self._idle.set()
            if self._on_transition:
                self._on_transition(old, FlushState.IDLE)

    # ========== Waiting ==========

    async def wait_idle(self) -> None:
        """Wait until no flush is scheduled or in flight."""
        while self._state is not FlushState.IDLE:
            await self._idle.wait()

    async def flush_now(self) -> None:
        """Skip a pending debounce window, then wait for the writes to finish."""
        if self._state is FlushState.SCHEDULED:
            self._cancel_timer()
            self._start()
        await self.wait_idle()
