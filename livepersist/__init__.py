"""
livepersist: values that save themselves.

    from livepersist import create

    data = await create("state.json", default={})
    data["x"] = 1    # persisted without an explicit save
"""

from livepersist.errors import (
    ContractViolation,
    LoadError,
    ParseError,
    PersistError,
    ValidationError,
    WriteError,
)
from livepersist.infra import configure_logging
from livepersist.state import (
    FileStore,
    FlushState,
    MemoryStore,
    PersistentRoot,
    TrackedDict,
    TrackedList,
    create,
    root_of,
    tracked,
    unwrap,
)

__version__ = "0.3.0"

__all__ = [
    "create",
    "configure_logging",
    "root_of",
    "tracked",
    "unwrap",
    "PersistentRoot",
    "TrackedDict",
    "TrackedList",
    "FlushState",
    "FileStore",
    "MemoryStore",
    "PersistError",
    "ValidationError",
    "LoadError",
    "ParseError",
    "ContractViolation",
    "WriteError",
]
