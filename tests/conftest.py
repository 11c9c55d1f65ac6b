"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import livepersist uninstalled.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from livepersist.config import get_settings  # noqa: E402
from livepersist.core.json_utils import loads  # noqa: E402
from livepersist.monitoring.metrics import PersistMetrics  # noqa: E402


class SpyStore:
    """Store double recording every call; failures are configurable."""

    def __init__(self) -> None:
        self.reads: List[str] = []
        self.writes: List[Tuple[str, bytes]] = []
        self.read_result: bytes = b"{}"
        self.read_error: Optional[BaseException] = None
        self.write_error: Optional[BaseException] = None
        # When set, writes block until the event is set
        self.write_gate: Optional[asyncio.Event] = None

    async def read(self, path: str) -> bytes:
        self.reads.append(path)
        if self.read_error is not None:
            raise self.read_error
        return self.read_result

    async def write(self, path: str, data: bytes) -> None:
        self.writes.append((path, data))
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.write_error is not None:
            raise self.write_error

    def written(self, path: Optional[str] = None) -> List[Any]:
        """Decoded payloads of writes (optionally for one path), in order."""
        return [loads(data) for p, data in self.writes if path is None or p == path]


class FakeOwner:
    """Minimal interceptor owner: counts dirty signals."""

    def __init__(self, depth: int = 0) -> None:
        self.depth = depth
        self.marks = 0

    def mark_dirty(self) -> None:
        self.marks += 1


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep LIVEPERSIST_* variables of the developer shell out of tests."""
    for key in ("LIVEPERSIST_DELAY", "LIVEPERSIST_DEPTH", "LIVEPERSIST_LOG_LEVEL",
                "LIVEPERSIST_LOG_FILE", "LIVEPERSIST_FSYNC"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("livepersist.config.config.load_dotenv", lambda *a, **k: False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def spy_store() -> SpyStore:
    return SpyStore()


@pytest.fixture
def enoent_store(spy_store) -> SpyStore:
    spy_store.read_error = FileNotFoundError(2, "No such file or directory")
    return spy_store


@pytest.fixture
def metrics() -> PersistMetrics:
    return PersistMetrics()


@pytest.fixture
def fake_owner_factory() -> Callable[..., FakeOwner]:
    return FakeOwner


@pytest.fixture
def capture_faults() -> Callable[[], List[Dict[str, Any]]]:
    """Call inside an async test to collect loop exception-handler contexts."""

    def install() -> List[Dict[str, Any]]:
        faults: List[Dict[str, Any]] = []
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda _loop, context: faults.append(context))
        return faults

    return install


@pytest.fixture
def until() -> Callable:
    """Spin the event loop until predicate() holds."""

    async def spin(predicate: Callable[[], bool], limit: int = 200) -> None:
        for _ in range(limit):
            if predicate():
                return
            await asyncio.sleep(0)
        raise AssertionError("condition not reached")

    return spin
