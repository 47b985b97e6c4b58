"""Emit events only after the transaction that produced them has committed."""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, create_engine, insert
from sqlalchemy.engine import Engine

from .context import Context, background
from .stx import InvalidTransactionError, current, new, on_success, with_defer

_metadata = MetaData()


def _now() -> datetime:
    return datetime.now(timezone.utc)


_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False),
    Column("email", String, nullable=False, unique=True),
    Column("age", Integer),
    Column("created_at", DateTime, default=_now),
    Column("updated_at", DateTime, default=_now, onupdate=_now),
)


def create_schema(engine: Engine) -> None:
    """Create the ``users`` table if it does not exist."""
    _metadata.create_all(engine)


@dataclass
class EventStream:
    """Collects emitted events as ``"name: data"`` lines."""

    events: list[str] = field(default_factory=list)

    def emit(self, event: str, data: Any) -> None:
        """Record an event and print it."""
        self.events.append(f"{event}: {data}")
        print(f"[EVENT] {event}: {data}")


def _create_user(ctx: Context, user: dict[str, Any]) -> dict[str, Any]:
    db = current(ctx)
    if db is None:
        raise InvalidTransactionError()
    statement = insert(_users).values(name=user["name"], email=user["email"], age=user["age"])
    if isinstance(db, Engine):
        with db.begin() as conn:
            user["id"] = conn.execute(statement).inserted_primary_key[0]
    else:
        user["id"] = db.execute(statement).inserted_primary_key[0]
    print(f"Created user: {user['name']} (ID: {user['id']})")
    return user


def _user(name: str, email: str, age: int) -> dict[str, Any]:
    return {"id": None, "name": name, "email": email, "age": age}


def example_basic_success(ctx: Context, stream: EventStream) -> dict[str, Any]:
    """Register one callback and commit."""
    with with_defer(ctx) as tx_ctx:

        def announce() -> None:
            print("✓ Success callback executed!")
            stream.emit("basic_success", "transaction completed")

        on_success(tx_ctx, announce)
        return _create_user(tx_ctx, _user("Alice Johnson", "alice@example.com", 30))


def example_with_rollback(ctx: Context, stream: EventStream) -> dict[str, Any]:
    """Register a callback, then fail so that it never runs."""
    with with_defer(ctx) as tx_ctx:

        def announce() -> None:
            print("✗ This callback should NOT execute due to rollback!")
            stream.emit("rollback_callback", "this should not happen")

        on_success(tx_ctx, announce)
        _create_user(tx_ctx, _user("Bob Wilson", "bob@example.com", 25))
        raise RuntimeError("forced rollback - callback should not execute")


def example_without_transaction(ctx: Context, stream: EventStream) -> None:
    """Register a callback on ``ctx`` outside any transaction."""
    print("Registering OnSuccess without transaction context...")

    def announce() -> None:
        print("✓ Callback executed immediately (no transaction context)")
        stream.emit("immediate_execution", "no transaction context")

    on_success(ctx, announce)
    print("OnSuccess call completed")


def example_multiple_callbacks(ctx: Context, stream: EventStream) -> dict[str, Any]:
    """Register three callbacks, which run in registration order."""
    with with_defer(ctx) as tx_ctx:
        for ordinal, label in (("First", "first"), ("Second", "second"), ("Third", "third")):
            number = ("first", "second", "third").index(label) + 1

            def announce(ordinal: str = ordinal, label: str = label, number: int = number) -> None:
                print(f"✓ {ordinal} callback executed")
                stream.emit(f"callback_{number}", f"{label} callback")

            on_success(tx_ctx, announce)
        return _create_user(tx_ctx, _user("Charlie Brown", "charlie@example.com", 28))


def example_event_streaming_pattern(ctx: Context, stream: EventStream) -> dict[str, Any]:
    """Emit creation, welcome-mail and analytics events after commit."""
    user = _user("Diana Prince", "diana@example.com", 32)
    with with_defer(ctx) as tx_ctx:
        on_success(
            tx_ctx,
            lambda: stream.emit(
                "user_created", {"id": user["id"], "name": user["name"], "email": user["email"]}
            ),
        )
        on_success(
            tx_ctx,
            lambda: stream.emit("send_welcome_email", {"email": user["email"], "name": user["name"]}),
        )
        on_success(
            tx_ctx,
            lambda: stream.emit(
                "track_user_signup", {"user_id": user["id"], "timestamp": int(time.time())}
            ),
        )
        return _create_user(tx_ctx, user)


def example_complex_business_logic(ctx: Context, stream: EventStream) -> dict[str, Any]:
    """Run notification, audit and cache-invalidation steps after commit."""
    user = _user("Eve Davis", "eve@example.com", 35)

    def post_commit() -> None:
        print("✓ Executing complex post-transaction logic...")
        stream.emit(
            "notification_sent",
            {"type": "user_registered", "user_id": user["id"], "channel": "email"},
        )
        stream.emit(
            "audit_log",
            {
                "action": "user_created",
                "user_id": user["id"],
                "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            },
        )
        stream.emit("cache_invalidated", {"keys": ["user_list", "user_count"]})
        print("✓ Complex post-transaction logic completed")

    with with_defer(ctx) as tx_ctx:
        on_success(tx_ctx, post_commit)
        _create_user(tx_ctx, user)
        time.sleep(0.01)
    return user


def main(argv: list[str] | None = None) -> int:
    """Run every success-callback example against an SQLite database file."""
    parser = argparse.ArgumentParser(description="Show success callbacks on transactions.")
    parser.add_argument(
        "database", nargs="?", default="onsuccess_examples.db", help="SQLite database file"
    )
    args = parser.parse_args(argv)

    engine = create_engine(f"sqlite:///{args.database}")
    try:
        create_schema(engine)
        ctx = new(background(), engine)
        stream = EventStream()

        print("=== OnSuccess Examples ===")

        print("\n1. Basic OnSuccess with successful transaction:")
        try:
            example_basic_success(ctx, stream)
        except Exception as exc:
            print(f"Error: {exc}")

        print("\n2. OnSuccess with transaction rollback:")
        try:
            example_with_rollback(ctx, stream)
        except Exception as exc:
            print(f"Expected error: {exc}")

        print("\n3. OnSuccess without transaction context:")
        example_without_transaction(ctx, stream)

        steps = (
            ("\n4. Multiple OnSuccess callbacks:", example_multiple_callbacks),
            ("\n5. OnSuccess with event streaming pattern:", example_event_streaming_pattern),
            ("\n6. OnSuccess with complex business logic:", example_complex_business_logic),
        )
        for heading, example in steps:
            print(heading)
            try:
                example(ctx, stream)
            except Exception as exc:
                print(f"Error: {exc}")

        print("\n=== All Events Emitted ===")
        for number, event in enumerate(stream.events, start=1):
            print(f"{number}. {event}")

        print("\n=== OnSuccess Examples Done ===")
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())