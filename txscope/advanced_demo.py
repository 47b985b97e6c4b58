"""Money transfers, concurrency, nesting, deadlines and retries with deferred transactions."""

from __future__ import annotations

import argparse
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine

from .context import Context, background
from .defer_demo import User, run_examples
from .defer_demo import create_schema as _create_defer_schema
from .stx import InvalidTransactionError, current, new, with_defer

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
    Column("created_at", DateTime),
    Column("updated_at", DateTime),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("balance", Float, nullable=False, default=0.0),
)

_transactions = Table(
    "transactions",
    _metadata,
    Column("id", Integer, primary_key=True),
    Column("from_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("to_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("amount", Float, nullable=False),
    Column("status", String, nullable=False, default="pending"),
    Column("created_at", DateTime, default=_now),
)


def create_schema(engine: Engine) -> None:
    """Create the users, orders, accounts and transactions tables if missing."""
    _create_defer_schema(engine)
    _metadata.create_all(engine)


def _db(ctx: Context | None) -> Any:
    db = current(ctx)
    if db is None:
        raise InvalidTransactionError()
    return db


def _insert(ctx: Context | None, statement: Any) -> int:
    db = _db(ctx)
    if isinstance(db, Engine):
        with db.begin() as conn:
            return conn.execute(statement).inserted_primary_key[0]
    return db.execute(statement).inserted_primary_key[0]


def _execute(ctx: Context | None, statement: Any) -> None:
    db = _db(ctx)
    if isinstance(db, Engine):
        with db.begin() as conn:
            conn.execute(statement)
    else:
        db.execute(statement)


def _first(ctx: Context | None, statement: Any) -> dict[str, Any] | None:
    db = _db(ctx)
    if isinstance(db, Engine):
        with db.connect() as conn:
            row = conn.execute(statement).mappings().first()
    else:
        row = db.execute(statement).mappings().first()
    return dict(row) if row is not None else None


def _create_user(ctx: Context | None, user: User) -> User:
    now = _now()
    user.created_at = now
    user.updated_at = now
    user.id = _insert(
        ctx,
        insert(_users).values(
            name=user.name, email=user.email, age=user.age, created_at=now, updated_at=now
        ),
    )
    return user


def _create_account(ctx: Context | None, user_id: int, balance: float) -> dict[str, Any]:
    account = {"user_id": user_id, "balance": balance}
    account["id"] = _insert(ctx, insert(_accounts).values(**account))
    return account


def _create_transaction(
    ctx: Context | None, from_id: int, to_id: int, amount: float, status: str
) -> dict[str, Any]:
    record = {"from_id": from_id, "to_id": to_id, "amount": amount, "status": status}
    record["id"] = _insert(ctx, insert(_transactions).values(**record))
    return record


def _save_balance(ctx: Context | None, account: dict[str, Any]) -> None:
    _execute(
        ctx,
        update(_accounts).where(_accounts.c.id == account["id"]).values(balance=account["balance"]),
    )


def money_transfer_with_defer(ctx: Context | None) -> dict[str, Any]:
    """Open two accounts and move money between them in one transaction."""
    with with_defer(ctx) as tx_ctx:
        from_user = _create_user(tx_ctx, User("Alice", "alice.transfer@example.com", 30))
        to_user = _create_user(tx_ctx, User("Bob", "bob.transfer@example.com", 25))

        from_account = _create_account(tx_ctx, from_user.id, 1000.0)
        to_account = _create_account(tx_ctx, to_user.id, 500.0)

        amount = 200.0
        if from_account["balance"] < amount:
            raise ValueError("insufficient funds")

        record = _create_transaction(
            tx_ctx, from_account["id"], to_account["id"], amount, "processing"
        )

        from_account["balance"] -= amount
        to_account["balance"] += amount
        _save_balance(tx_ctx, from_account)
        _save_balance(tx_ctx, to_account)

        record["status"] = "completed"
        _execute(
            tx_ctx,
            update(_transactions)
            .where(_transactions.c.id == record["id"])
            .values(status=record["status"]),
        )

        print(
            f"Transferred ${amount:.2f} from account {from_account['id']} "
            f"to account {to_account['id']}"
        )
        return {"from_account": from_account, "to_account": to_account, "transaction": record}


def _concurrent_operation(ctx: Context | None, worker_id: int) -> User:
    with with_defer(ctx) as tx_ctx:
        user = _create_user(
            tx_ctx,
            User(
                f"Concurrent User {worker_id}",
                f"concurrent{worker_id}@example.com",
                20 + worker_id,
            ),
        )
        time.sleep(worker_id * 0.01)
        print(f"Concurrent operation {worker_id}: Created user {user.name}")
        return user


def concurrent_operations_with_defer(ctx: Context | None) -> int:
    """Run three deferred transactions in parallel; return how many succeeded."""
    with ThreadPoolExecutor(max_workers=3) as pool:
        futures = [pool.submit(_concurrent_operation, ctx, worker_id) for worker_id in range(3)]
        outcomes = [future.exception() for future in futures]

    success_count = 0
    for error in outcomes:
        if error is not None:
            print(f"Concurrent operation failed: {error}")
        else:
            success_count += 1
    print(f"Concurrent operations: {success_count} successful")
    return success_count


def create_account_for_user(ctx: Context | None, user_id: int) -> dict[str, Any]:
    """Open an account with a starting balance for ``user_id``."""
    account = _create_account(ctx, user_id, 1000.0)
    print(f"Created account for user {user_id} with balance ${account['balance']:.2f}")
    return account


def create_initial_transaction(ctx: Context | None, user_id: int) -> dict[str, Any]:
    """Record a zero-amount transaction on the first account of ``user_id``."""
    account = _first(
        ctx,
        select(_accounts).where(_accounts.c.user_id == user_id).order_by(_accounts.c.id).limit(1),
    )
    if account is None:
        raise LookupError("record not found")
    record = _create_transaction(ctx, account["id"], account["id"], 0.0, "initial")
    print(f"Created initial transaction for account {account['id']}")
    return record


def nested_defer_operations(ctx: Context | None) -> dict[str, Any]:
    """Create a user, an account and an initial transaction in one transaction."""
    with with_defer(ctx) as tx_ctx:
        user = _create_user(tx_ctx, User("Nested User", "nested@example.com", 35))
        print(f"Created main user: {user.name}")
        account = create_account_for_user(tx_ctx, user.id)
        record = create_initial_transaction(tx_ctx, user.id)
        return {"user": user, "account": account, "transaction": record}


def defer_with_timeout(
    ctx: Context | None, timeout: float = 0.1, work_time: float = 0.15
) -> User:
    """Create a user, then do work that must finish within ``timeout`` seconds.

    Work that outlasts the deadline raises TimeoutError and rolls back.
    """
    deadline = time.monotonic() + timeout
    with with_defer(ctx) as tx_ctx:
        user = _create_user(tx_ctx, User("Timeout User", "timeout@example.com", 40))
        remaining = deadline - time.monotonic()
        if work_time > remaining:
            time.sleep(max(remaining, 0.0))
            raise TimeoutError("context deadline exceeded")
        time.sleep(work_time)
        print("Long operation completed")
        print(f"Created user with timeout: {user.name}")
        return user


def defer_with_retry(ctx: Context | None, max_retries: int = 3) -> User:
    """Retry a deferred transaction that fails on its first two attempts."""
    last_error: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            with with_defer(ctx) as tx_ctx:
                user = _create_user(
                    tx_ctx,
                    User(f"Retry User {attempt}", f"retry{attempt}@example.com", 20 + attempt),
                )
                if attempt < 3:
                    raise RuntimeError(f"simulated failure on attempt {attempt}")
                print(f"Retry successful on attempt {attempt}: Created user {user.name}")
                return user
        except Exception as exc:
            last_error = exc
            print(f"Attempt {attempt} failed: {exc}")
            if attempt < max_retries:
                time.sleep(attempt * 0.1)
    raise RuntimeError(f"all retry attempts failed, last error: {last_error}")


def run_advanced_examples(ctx: Context | None) -> None:
    """Run every advanced example, reporting each outcome."""
    print("=== Advanced Example 1: Money Transfer ===")
    try:
        money_transfer_with_defer(ctx)
    except Exception as exc:
        print(f"Transfer failed: {exc}")
    else:
        print("Success: Money transfer completed")

    print("\n=== Advanced Example 2: Concurrent Operations ===")
    concurrent_operations_with_defer(ctx)

    print("\n=== Advanced Example 3: Nested Defer Operations ===")
    try:
        nested_defer_operations(ctx)
    except Exception as exc:
        print(f"Nested operations failed: {exc}")
    else:
        print("Success: Nested operations completed")

    print("\n=== Advanced Example 4: Defer with Timeout ===")
    try:
        defer_with_timeout(ctx)
    except Exception as exc:
        print(f"Operation with timeout failed: {exc}")
    else:
        print("Success: Operation with timeout completed")

    print("\n=== Advanced Example 5: Defer with Retry Logic ===")
    try:
        defer_with_retry(ctx)
    except Exception as exc:
        print(f"Retry operation failed: {exc}")
    else:
        print("Success: Retry operation completed")

    print("\n=== Advanced Examples Done ===")


def _open(path: str) -> Engine:
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    create_schema(engine)
    return engine


def main(argv: list[str] | None = None) -> int:
    """Run the deferred-transaction examples, then the advanced ones."""
    parser = argparse.ArgumentParser(description="Show deferred transactions at work.")
    parser.add_argument(
        "database", nargs="?", default="defer_examples.db", help="SQLite database file"
    )
    parser.add_argument(
        "--advanced-database",
        default="advanced_defer.db",
        help="SQLite database file for the advanced examples",
    )
    args = parser.parse_args(argv)

    engine = _open(args.database)
    try:
        run_examples(new(background(), engine))
    finally:
        engine.dispose()

    print("\n" + "=" * 50)
    print("=== ADVANCED EXAMPLES ===")
    print("=" * 50)

    advanced_engine = _open(args.advanced_database)
    try:
        run_advanced_examples(new(background(), advanced_engine))
    finally:
        advanced_engine.dispose()

    print("\n=== All Examples Done ===")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())