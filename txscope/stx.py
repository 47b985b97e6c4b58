"""Carry a database handle through a context and manage transactions on it.

A context created with :func:`new` holds an SQLAlchemy ``Engine`` (or
``Connection``).  Transactional helpers derive child contexts whose handle
is a ``Connection`` with an open transaction; nested transactions use
savepoints.  Callbacks registered with :func:`on_success` run once the
surrounding transaction has succeeded.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from typing import Any, Callable, Iterator, TypeVar

from sqlalchemy.engine import Connection, Engine

from .context import Context

T = TypeVar("T")

_TX_DONE = "transaction has already been committed or rolled back"


@dataclass(frozen=True)
class _ContextKey:
    name: str


TX_CONTEXT_KEY = _ContextKey("txscope:tx")


class StxError(Exception):
    """An error carrying a message and, optionally, the error that caused it."""

    def __init__(self, message: str, err: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.err = err

    def __str__(self) -> str:
        if self.err is not None:
            return f"{self.message}: {self.err}"
        return self.message


class InvalidTransactionError(StxError):
    """Raised when a transaction is requested from a context without a database."""

    def __init__(self) -> None:
        super().__init__("invalid transaction")


class _Scope:
    """A database handle stored in a context, with its pending success callbacks."""

    def __init__(self, db: Any, transaction: Any = None, owns_connection: bool = False) -> None:
        self.db = db
        self.transaction = transaction
        self.owns_connection = owns_connection
        self._callbacks: list[Callable[[], Any]] = []
        self._lock = threading.Lock()

    def add_callback(self, callback: Callable[[], Any]) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def run_callbacks(self) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()

    def settle(self, commit: bool) -> None:
        """Finish the transaction if it is still open and release the connection."""
        try:
            if self.transaction.is_active:
                if commit:
                    self.transaction.commit()
                else:
                    self.transaction.rollback()
        finally:
            if self.owns_connection:
                self.db.close()

    def finish(self, commit: bool) -> None:
        """Finish the transaction, failing if it was already finished."""
        if not self.transaction.is_active:
            if self.owns_connection:
                self.db.close()
            raise StxError(_TX_DONE)
        self.settle(commit)


def _scope_of(ctx: Context | None) -> _Scope | None:
    if ctx is None:
        return None
    found = ctx.value(TX_CONTEXT_KEY)
    return found if isinstance(found, _Scope) else None


def _open_transaction(db: Any) -> _Scope:
    if isinstance(db, Engine):
        conn = db.connect()
        try:
            trans = conn.begin()
        except BaseException:
            conn.close()
            raise
        return _Scope(conn, trans, owns_connection=True)
    if isinstance(db, Connection) and db.in_transaction():
        return _Scope(db, db.begin_nested())
    return _Scope(db, db.begin())


def new(ctx: Context, db: Any) -> Context:
    """Return a child of ``ctx`` that carries the database handle ``db``."""
    return ctx.with_value(TX_CONTEXT_KEY, _Scope(db))


def current(ctx: Context | None) -> Any:
    """Return the database handle carried by ``ctx``, or None."""
    scope = _scope_of(ctx)
    return scope.db if scope is not None else None


def get_current(ctx: Context | None) -> Any:
    """Deprecated alias of :func:`current`."""
    return current(ctx)


def with_transaction(ctx: Context | None, fn: Callable[[Context], T]) -> T:
    """Run ``fn`` inside a transaction and return its result.

    The transaction commits when ``fn`` returns and rolls back when it
    raises.  Success callbacks registered on the transaction context run
    after ``fn`` returns, before the commit.  Inside an existing
    transaction a savepoint is used.
    """
    db = current(ctx)
    if db is None:
        raise InvalidTransactionError()

    scope = _open_transaction(db)
    tx_ctx = ctx.with_value(TX_CONTEXT_KEY, scope)
    try:
        result = fn(tx_ctx)
        scope.run_callbacks()
    except BaseException:
        with suppress(Exception):
            scope.settle(commit=False)
        raise
    scope.settle(commit=True)
    return result


def on_success(ctx: Context | None, callback: Callable[[], Any] | None) -> None:
    """Run ``callback`` once the transaction in ``ctx`` succeeds.

    Without a transaction scope in ``ctx`` the callback runs at once; with
    no context or no callback nothing happens.
    """
    if ctx is None or callback is None:
        return
    scope = _scope_of(ctx)
    if scope is None:
        callback()
        return
    scope.add_callback(callback)


def begin(ctx: Context | None) -> Context | None:
    """Begin a transaction and return a context carrying it.

    A context without a database is returned unchanged.
    """
    db = current(ctx)
    if db is None:
        return ctx
    return ctx.with_value(TX_CONTEXT_KEY, _open_transaction(db))


def commit(ctx: Context | None) -> None:
    """Commit the transaction in ``ctx``; do nothing outside a transaction."""
    scope = _scope_of(ctx)
    if scope is None or scope.transaction is None:
        return
    scope.finish(commit=True)


def rollback(ctx: Context | None) -> None:
    """Roll back the transaction in ``ctx``; do nothing outside a transaction."""
    scope = _scope_of(ctx)
    if scope is None or scope.transaction is None:
        return
    scope.finish(commit=False)


def is_tx(ctx: Context | None) -> bool:
    """Tell whether ``ctx`` carries a transaction."""
    scope = _scope_of(ctx)
    return scope is not None and scope.transaction is not None


def is_transaction(ctx: Context | None) -> bool:
    """Deprecated alias of :func:`is_tx`."""
    return is_tx(ctx)


@contextmanager
def with_defer(ctx: Context | None) -> Iterator[Context | None]:
    """Begin a transaction for the ``with`` block and settle it on exit.

    If the block raises, the transaction is rolled back and the exception
    propagates.  Otherwise it is committed and success callbacks run; a
    failed commit raises :class:`StxError`.
    """
    tx_ctx = begin(ctx)
    try:
        yield tx_ctx
    except BaseException:
        with suppress(Exception):
            rollback(tx_ctx)
        raise

    try:
        commit(tx_ctx)
    except Exception as exc:
        raise StxError("failed to commit transaction", exc) from exc

    scope = _scope_of(tx_ctx)
    if scope is not None:
        scope.run_callbacks()