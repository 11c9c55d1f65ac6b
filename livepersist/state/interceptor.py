"""
Mutation interception for persisted value graphs.

Containers reachable from a persistent root are replaced by managed nodes:
``TrackedDict`` and ``TrackedList`` are ``dict`` / ``list`` subclasses whose
mutating methods apply the change to the underlying structure and then signal
every owning root. Reads, iteration, equality and JSON encoding behave exactly
like the builtin containers, so callers use ordinary container syntax.

Ownership:
    Each node carries a tag table ``owner -> {nest level: references}``. Nest
    level 1 is the root's top value. A node reachable from two roots (or twice
    from one root at different depths) carries one tag per (owner, nest level)
    and a single mutation marks each owning root dirty once.

    A tag counts the tagged parents referencing the node at that level. When a
    member is overwritten or removed its references are released, and a tag
    whose count drops to zero is removed together with the tags it implied
    further down. A rejected mutation releases whatever its wrapping pass had
    already tagged.

Depth bound:
    An owner with ``depth > 0`` only tracks containers at nest levels
    ``<= depth``. Deeper containers are stored verbatim and their mutations are
    never observed.

Owners are duck-typed: anything with a ``depth`` attribute (0 = unlimited)
and a ``mark_dirty()`` method.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence, Set as AbstractSet
from typing import Any, Dict, Iterable, List, Set, Tuple

from livepersist.errors import ContractViolation

log = logging.getLogger("livepersist")

_MISSING = object()


def _within_bound(owner: Any, nest: int) -> bool:
    depth = owner.depth
    return not depth or nest <= depth


def _is_frozen_container(value: Any) -> bool:
    """Containers we cannot replace by a mutable managed node."""
    if isinstance(value, (dict, list, str, bytes, bytearray)):
        return False
    return isinstance(value, (Mapping, Sequence, AbstractSet))


class _Managed:
    """Ownership bookkeeping shared by TrackedDict and TrackedList."""

    __slots__ = ()

    _tags: Dict[Any, Dict[int, int]]

    # ---- ownership ----

    def _is_tagged(self, owner: Any, nest: int) -> bool:
        return nest in self._tags.get(owner, ())

    def _incref(self, owner: Any, nest: int) -> None:
        levels = self._tags.setdefault(owner, {})
        levels[nest] = levels.get(nest, 0) + 1

    def _decref(self, owner: Any, nest: int) -> bool:
        """Drop one reference; True when the (owner, nest) tag is gone."""
        levels = self._tags.get(owner)
        if not levels or nest not in levels:
            return False
        levels[nest] -= 1
        if levels[nest] > 0:
            return False
        del levels[nest]
        if not levels:
            del self._tags[owner]
        return True

    def owners(self) -> List[Any]:
        """Owners (persistent roots) this node currently signals."""
        return list(self._tags)

    def nest_levels(self, owner: Any) -> Set[int]:
        return set(self._tags.get(owner, ()))

    def _members(self) -> List[Any]:
        raise NotImplementedError

    def _touch(self) -> None:
        for owner in list(self._tags):
            owner.mark_dirty()

    def _mutation(self) -> "_Mutation":
        return _Mutation(self)

    # ---- copies are plain ----

    def __copy__(self):
        return unwrap(self, deep=False)

    def __deepcopy__(self, memo):
        return unwrap(self)

    def __reduce_ex__(self, protocol):
        plain = unwrap(self)
        return (type(plain), (plain,))


def _untag(value: Any, owner: Any, nest: int) -> None:
    if isinstance(value, _Managed) and value._decref(owner, nest):
        for member in value._members():
            _untag(member, owner, nest + 1)


class _Mutation:
    """
    One intercepted mutation of a managed node.

    Usage:
        with node._mutation() as m:
            value = m.adopt(value)        # wrap for every owning tag
            m.detach(old)                 # released after the change applies
            dict.__setitem__(node, key, value)

    On exit the detached members are released and owners are signalled. If
    the block raises, tags added by adopt() are rolled back and nothing is
    signalled.
    """

    __slots__ = ("node", "detached", "_wrapper")

    def __init__(self, node: _Managed) -> None:
        self.node = node
        self.detached: List[Any] = []
        self._wrapper = _Wrapper()

    def __enter__(self) -> "_Mutation":
        return self

    def adopt(self, value: Any) -> Any:
        node = self.node
        if value is node:
            raise ContractViolation("A container cannot be stored inside itself")
        if not node._tags and _is_frozen_container(value):
            raise ContractViolation(f"Value of type {type(value).__name__} cannot be tracked")
        for owner, levels in list(node._tags.items()):
            for nest in sorted(levels):
                value = self._wrapper.wrap(owner, nest + 1, value)
        return value

    def detach(self, *values: Any) -> None:
        self.detached.extend(v for v in values if v is not _MISSING)

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self._wrapper.rollback()
            return False
        node = self.node
        if self.detached:
            for owner, levels in list(node._tags.items()):
                for nest in list(levels):
                    for value in self.detached:
                        _untag(value, owner, nest + 1)
        node._touch()
        return False


class TrackedDict(_Managed, dict):
    """dict whose mutations are reported to its owning roots."""

    __slots__ = ("_tags",)

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._tags = {}

    def _members(self) -> List[Any]:
        return list(dict.values(self))

    def __setitem__(self, key, value) -> None:
        with self._mutation() as m:
            value = m.adopt(value)
            m.detach(dict.get(self, key, _MISSING))
            dict.__setitem__(self, key, value)

    def __delitem__(self, key) -> None:
        with self._mutation() as m:
            m.detach(dict.__getitem__(self, key))
            dict.__delitem__(self, key)

    def pop(self, key, *default):
        if key not in self:
            return dict.pop(self, key, *default)
        with self._mutation() as m:
            value = dict.pop(self, key)
            m.detach(value)
        return value

    def popitem(self):
        with self._mutation() as m:
            item = dict.popitem(self)
            m.detach(item[1])
        return item

    def clear(self) -> None:
        with self._mutation() as m:
            m.detach(*dict.values(self))
            dict.clear(self)

    def setdefault(self, key, default=None):
        if key in self:
            return dict.__getitem__(self, key)
        with self._mutation() as m:
            value = m.adopt(default)
            dict.__setitem__(self, key, value)
        return value

    def update(self, *args, **kwargs) -> None:
        with self._mutation() as m:
            # Adopt everything first so a violation leaves the node untouched
            adopted = [(k, m.adopt(v)) for k, v in dict(*args, **kwargs).items()]
            for key, value in adopted:
                m.detach(dict.get(self, key, _MISSING))
                dict.__setitem__(self, key, value)

    def __ior__(self, other):
        self.update(other)
        return self


class TrackedList(_Managed, list):
    """list whose mutations are reported to its owning roots."""

    __slots__ = ("_tags",)

    def __init__(self, *args) -> None:
        super().__init__(*args)
        self._tags = {}

    def _members(self) -> List[Any]:
        return list.copy(self)

    def __setitem__(self, index, value) -> None:
        with self._mutation() as m:
            if isinstance(index, slice):
                value = [m.adopt(v) for v in value]
                m.detach(*list.__getitem__(self, index))
            else:
                value = m.adopt(value)
                m.detach(list.__getitem__(self, index))
            list.__setitem__(self, index, value)

    def __delitem__(self, index) -> None:
        with self._mutation() as m:
            old = list.__getitem__(self, index)
            if isinstance(index, slice):
                m.detach(*old)
            else:
                m.detach(old)
            list.__delitem__(self, index)

    def append(self, value) -> None:
        with self._mutation() as m:
            list.append(self, m.adopt(value))

    def extend(self, values: Iterable[Any]) -> None:
        with self._mutation() as m:
            adopted = [m.adopt(v) for v in values]
            list.extend(self, adopted)

    def insert(self, index, value) -> None:
        with self._mutation() as m:
            list.insert(self, index, m.adopt(value))

    def pop(self, index=-1):
        with self._mutation() as m:
            value = list.pop(self, index)
            m.detach(value)
        return value

    def remove(self, value) -> None:
        with self._mutation() as m:
            # The stored item may be a different (equal) object than value
            m.detach(list.pop(self, list.index(self, value)))

    def clear(self) -> None:
        with self._mutation() as m:
            m.detach(*list.copy(self))
            list.clear(self)

    def sort(self, *, key=None, reverse=False) -> None:
        list.sort(self, key=key, reverse=reverse)
        self._touch()

    def reverse(self) -> None:
        list.reverse(self)
        self._touch()

    def __iadd__(self, other):
        self.extend(other)
        return self

    def __imul__(self, n):
        with self._mutation() as m:
            before = list.copy(self)
            list.__imul__(self, n)
            if not list.__len__(self):
                m.detach(*before)
            # Repeated members gain one reference per extra copy
            for member in list.__getitem__(self, slice(len(before), None)):
                m.adopt(member)
        return self


def wrap(owner: Any, nest: int, value: Any) -> Any:
    """
    Return ``value`` instrumented for ``owner`` at nest level ``nest``.

    Non-containers and containers beyond the owner's depth bound are returned
    unchanged. Plain dicts/lists become new managed nodes; existing managed
    nodes are tagged in place. Wrapping a node already tagged for the same
    (owner, nest) only adds a reference and returns the same object.

    Raises:
        ContractViolation: an immutable container or a reference cycle was
            found within the depth bound. Tags added before the failure are
            removed again.
    """
    wrapper = _Wrapper()
    try:
        return wrapper.wrap(owner, nest, value)
    except ContractViolation:
        wrapper.rollback()
        raise


class _Wrapper:
    """One wrapping pass. Keeps plain-container identity and a tag journal."""

    def __init__(self) -> None:
        self._converted: Dict[int, _Managed] = {}
        self._active: Set[int] = set()
        self._journal: List[Tuple[_Managed, Any, int]] = []

    def _tag(self, node: _Managed, owner: Any, nest: int) -> None:
        node._incref(owner, nest)
        self._journal.append((node, owner, nest))

    def rollback(self) -> None:
        while self._journal:
            node, owner, nest = self._journal.pop()
            node._decref(owner, nest)

    def wrap(self, owner: Any, nest: int, value: Any) -> Any:
        if isinstance(value, _Managed):
            if not _within_bound(owner, nest):
                return value
            if not value._is_tagged(owner, nest):
                self._enter(value)
                try:
                    self._adopt_members(owner, value, nest)
                finally:
                    self._active.discard(id(value))
            self._tag(value, owner, nest)
            return value

        if isinstance(value, (dict, list)):
            if not _within_bound(owner, nest):
                return value
            seen = self._converted.get(id(value))
            if seen is not None:
                if id(value) in self._active:
                    raise ContractViolation("Reference cycles cannot be persisted")
                return self.wrap(owner, nest, seen)
            node: _Managed = TrackedDict() if isinstance(value, dict) else TrackedList()
            self._converted[id(value)] = node
            self._active.add(id(value))
            try:
                if isinstance(value, dict):
                    for key, member in value.items():
                        dict.__setitem__(node, key, self.wrap(owner, nest + 1, member))
                else:
                    list.extend(node, [self.wrap(owner, nest + 1, member) for member in value])
            finally:
                self._active.discard(id(value))
            self._tag(node, owner, nest)
            return node

        if _is_frozen_container(value) and _within_bound(owner, nest):
            log.debug("contract_violation type=%s nest=%s", type(value).__name__, nest)
            raise ContractViolation(f"Value of type {type(value).__name__} cannot be tracked")
        return value

    def _enter(self, node: _Managed) -> None:
        if id(node) in self._active:
            raise ContractViolation("Reference cycles cannot be persisted")
        self._active.add(id(node))

    def _adopt_members(self, owner: Any, node: _Managed, nest: int) -> None:
        # Raw writes: instrumenting members is not a caller mutation
        if isinstance(node, dict):
            for key, member in list(dict.items(node)):
                wrapped = self.wrap(owner, nest + 1, member)
                if wrapped is not member:
                    dict.__setitem__(node, key, wrapped)
        else:
            for index, member in enumerate(list.copy(node)):
                wrapped = self.wrap(owner, nest + 1, member)
                if wrapped is not member:
                    list.__setitem__(node, index, wrapped)


def tracked(value: Any) -> Any:
    """
    Convert a plain dict/list (recursively) into unowned managed nodes.

    The result can be attached to several roots; it stays the same object in
    each of them, so a single mutation reaches every owner.
    """
    if isinstance(value, _Managed):
        return value
    if isinstance(value, dict):
        node = TrackedDict()
        for key, member in value.items():
            dict.__setitem__(node, key, tracked(member))
        return node
    if isinstance(value, list):
        node = TrackedList()
        list.extend(node, [tracked(member) for member in value])
        return node
    return value


def unwrap(value: Any, deep: bool = True) -> Any:
    """Plain dict/list copy of a (possibly managed) value graph."""
    if isinstance(value, dict):
        if not deep:
            return dict(value)
        return {k: unwrap(v) for k, v in value.items()}
    if isinstance(value, list):
        if not deep:
            return list(value)
        return [unwrap(v) for v in value]
    return value


def is_tracked(value: Any) -> bool:
    return isinstance(value, _Managed)


__all__: Tuple[str, ...] = (
    "TrackedDict",
    "TrackedList",
    "wrap",
    "tracked",
    "unwrap",
    "is_tracked",
)
