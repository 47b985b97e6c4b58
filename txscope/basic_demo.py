"""A walk through the context helpers on a small ``users`` table."""

from __future__ import annotations

import argparse
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, insert
from sqlalchemy.engine import Engine

from .context import Context, background
from .stx import (
    InvalidTransactionError,
    begin,
    commit,
    current,
    is_tx,
    new,
    rollback,
    with_defer,
    with_transaction,
)

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False),
    Column("age", Integer),
)


def create_schema(engine: Engine) -> None:
    """Create the ``users`` table if it does not exist."""
    _metadata.create_all(engine)


def _insert_user(db: Any, name: str, age: int) -> dict[str, Any]:
    if db is None:
        raise InvalidTransactionError()
    statement = insert(_users).values(name=name, age=age)
    if isinstance(db, Engine):
        with db.begin() as conn:
            user_id = conn.execute(statement).inserted_primary_key[0]
    else:
        user_id = db.execute(statement).inserted_primary_key[0]
    return {"id": user_id, "name": name, "age": age}


def _describe(user: dict[str, Any]) -> str:
    return f"{{ID:{user['id']} Name:{user['name']} Age:{user['age']}}}"


def basic_usage(ctx: Context) -> dict[str, Any]:
    """Create a user directly through the handle carried by ``ctx``."""
    user = _insert_user(current(ctx), "John Doe", 30)
    print(f"Created user: {_describe(user)}")
    return user


def transaction_example(ctx: Context) -> list[dict[str, Any]]:
    """Create two users in one transaction; return them, or [] on failure."""

    def work(tx_ctx: Context) -> list[dict[str, Any]]:
        tx_db = current(tx_ctx)
        created = []
        for name, age in (("Alice", 25), ("Bob", 35)):
            user = _insert_user(tx_db, name, age)
            print(f"Created user in transaction: {_describe(user)}")
            created.append(user)
        return created

    try:
        created = with_transaction(ctx, work)
    except Exception as exc:
        print(f"Transaction failed: {exc}")
        return []
    print("Transaction completed successfully")
    return created


def manual_transaction_example(ctx: Context) -> dict[str, Any] | None:
    """Begin, use and commit a transaction by hand; return the created user."""
    tx_ctx = begin(ctx)
    tx_db = current(tx_ctx)

    if is_tx(tx_ctx):
        print("Successfully started transaction")

    try:
        user = _insert_user(tx_db, "Charlie", 28)
    except Exception as exc:
        print(f"Error creating user: {exc}")
        rollback(tx_ctx)
        return None

    print(f"Created user: {_describe(user)}")

    try:
        commit(tx_ctx)
    except Exception as exc:
        print(f"Error committing transaction: {exc}")
    else:
        print("Transaction committed successfully")

    print("Calling commit on non-transaction context...")
    try:
        commit(ctx)
    except Exception as exc:
        print(f"Error: {exc}")
    else:
        print("Gracefully handled: no error returned")
    return user


def nested_transaction_example(ctx: Context) -> list[dict[str, Any]]:
    """Create one user in an outer and one in an inner transaction."""

    def outer(outer_ctx: Context) -> list[dict[str, Any]]:
        first = _insert_user(current(outer_ctx), "David", 40)
        print(f"Created user in outer transaction: {_describe(first)}")

        def inner(inner_ctx: Context) -> dict[str, Any]:
            second = _insert_user(current(inner_ctx), "Eve", 22)
            print(f"Created user in inner transaction: {_describe(second)}")
            return second

        return [first, with_transaction(outer_ctx, inner)]

    try:
        created = with_transaction(ctx, outer)
    except Exception as exc:
        print(f"Nested transaction failed: {exc}")
        return []
    print("Nested transaction completed successfully")
    return created


def defer_success(ctx: Context) -> dict[str, Any]:
    """Create a user in a deferred transaction that commits."""
    with with_defer(ctx) as tx_ctx:
        user = _insert_user(current(tx_ctx), "Defer Success", 30)
        print(f"Created user with defer: {_describe(user)}")
    return user


def defer_error(ctx: Context) -> dict[str, Any]:
    """Create a user, then fail so the deferred transaction rolls back."""
    with with_defer(ctx) as tx_ctx:
        user = _insert_user(current(tx_ctx), "Defer Error", 25)
        print(f"Created user but will rollback: {_describe(user)}")
        raise RuntimeError("simulated error")


def defer_panic(ctx: Context) -> dict[str, Any]:
    """Create a user, then fail unexpectedly so the transaction rolls back."""
    with with_defer(ctx) as tx_ctx:
        user = _insert_user(current(tx_ctx), "Defer Panic", 35)
        print(f"Created user but will panic: {_describe(user)}")
        raise RuntimeError("recovered from panic: simulated panic")


def _defer_pattern_example(ctx: Context) -> None:
    print("=== Successful Defer Pattern ===")
    try:
        defer_success(ctx)
    except Exception as exc:
        print(f"Error: {exc}")
    else:
        print("Defer pattern completed successfully")

    print("\n=== Error Handling with Defer ===")
    try:
        defer_error(ctx)
    except Exception as exc:
        print(f"Expected error: {exc}")

    print("\n=== Panic Recovery with Defer ===")
    try:
        defer_panic(ctx)
    except Exception as exc:
        print(f"Recovered from panic: {exc}")


def main(argv: list[str] | None = None) -> int:
    """Run every example against an SQLite database file."""
    parser = argparse.ArgumentParser(description="Walk through the transaction helpers.")
    parser.add_argument("database", nargs="?", default="example.db", help="SQLite database file")
    args = parser.parse_args(argv)

    engine = create_engine(f"sqlite:///{args.database}")
    try:
        create_schema(engine)
        ctx = new(background(), engine)

        print("=== Basic Usage ===")
        try:
            basic_usage(ctx)
        except Exception as exc:
            print(f"Error creating user: {exc}")

        print("\n=== Transaction Management ===")
        transaction_example(ctx)

        print("\n=== Manual Transaction Control ===")
        manual_transaction_example(ctx)

        print("\n=== Nested Transactions ===")
        nested_transaction_example(ctx)

        print("\n=== Defer Pattern ===")
        _defer_pattern_example(ctx)

        print("\n=== Done ===")
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())