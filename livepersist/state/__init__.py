"""
State package.

This package contains mutation interception, flush scheduling, the flusher,
backing stores and the persistent root handle.
"""

from livepersist.state.store import FileStore, MemoryStore, Store
from livepersist.state.interceptor import TrackedDict, TrackedList, is_tracked, tracked, unwrap, wrap
from livepersist.state.scheduler import FlushScheduler, FlushState
from livepersist.state.flusher import Flusher, FlushOutcome
from livepersist.state.root import PersistentRoot, create, root_of

__all__ = [
    "Store",
    "FileStore",
    "MemoryStore",
    "TrackedDict",
    "TrackedList",
    "is_tracked",
    "tracked",
    "unwrap",
    "wrap",
    "FlushScheduler",
    "FlushState",
    "Flusher",
    "FlushOutcome",
    "PersistentRoot",
    "create",
    "root_of",
]
