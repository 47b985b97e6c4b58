"""Immutable chains of request-scoped values passed down a call stack."""

from __future__ import annotations

from typing import Any


class Context:
    """An immutable chain of key/value pairs.

    Deriving a context with :meth:`with_value` never changes the original;
    lookups walk from the newest entry towards the root, so inner values
    shadow outer ones.
    """

    __slots__ = ("_parent", "_key", "_value")

    def __init__(self) -> None:
        self._parent: Context | None = None
        self._key: Any = None
        self._value: Any = None

    def with_value(self, key: Any, value: Any) -> Context:
        """Return a child context in which ``key`` maps to ``value``."""
        if key is None:
            raise ValueError("context key must not be None")
        hash(key)  # keys must be hashable so that lookups are well defined
        child = Context.__new__(Context)
        child._parent = self
        child._key = key
        child._value = value
        return child

    def value(self, key: Any) -> Any:
        """Return the innermost value stored under ``key``, or None."""
        node = self
        while node._parent is not None:
            if node._key == key:
                return node._value
            node = node._parent
        return None

    def __repr__(self) -> str:
        depth = 0
        node = self
        while node._parent is not None:
            depth += 1
            node = node._parent
        return f"Context(entries={depth})"


_BACKGROUND = Context()


def background() -> Context:
    """Return the shared, empty root context."""
    return _BACKGROUND