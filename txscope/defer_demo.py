"""Deferred transactions around users and their orders."""

from __future__ import annotations

import time
from dataclasses import dataclass
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
    insert,
)
from sqlalchemy.engine import Engine

from .context import Context
from .stx import InvalidTransactionError, StxError, current, with_defer

_metadata = MetaData()

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

_orders = Table(
    "orders",
    _metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("product", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("total", Float),
)


@dataclass
class User:
    """A user row; ``id`` and the timestamps are filled in on insert."""

    name: str
    email: str
    age: int = 0
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def create_schema(engine: Engine) -> None:
    """Create the ``users`` and ``orders`` tables if they do not exist."""
    _metadata.create_all(engine)


def validate_user(user: User) -> None:
    """Raise ValueError if ``user`` is not fit to be stored."""
    if not user.name:
        raise ValueError("user name is required")
    if not user.email:
        raise ValueError("user email is required")
    if user.age < 0:
        raise ValueError("user age must be non-negative")
    if user.age > 150:
        raise ValueError("user age must be realistic")


def simulate_external_api(user_id: int) -> None:
    """Pretend to call a remote service, which fails for ids divisible by 7."""
    time.sleep(0.01)
    if user_id % 7 == 0:
        raise RuntimeError("external API returned error 500")


def _insert(ctx: Context | None, statement: Any) -> int:
    db = current(ctx)
    if db is None:
        raise InvalidTransactionError()
    if isinstance(db, Engine):
        with db.begin() as conn:
            return conn.execute(statement).inserted_primary_key[0]
    return db.execute(statement).inserted_primary_key[0]


def _create_user(ctx: Context | None, user: User) -> User:
    now = datetime.now(timezone.utc)
    user.created_at = now
    user.updated_at = now
    user.id = _insert(
        ctx,
        insert(_users).values(
            name=user.name,
            email=user.email,
            age=user.age,
            created_at=now,
            updated_at=now,
        ),
    )
    print(f"Created user: {user.name} (ID: {user.id})")
    return user


def _create_order(
    ctx: Context | None, user_id: int, product: str, quantity: int, total: float
) -> dict[str, Any]:
    order = {"user_id": user_id, "product": product, "quantity": quantity, "total": total}
    order["id"] = _insert(ctx, insert(_orders).values(**order))
    return order


def basic_defer_success(ctx: Context | None) -> User:
    """Create one user and commit."""
    with with_defer(ctx) as tx_ctx:
        return _create_user(tx_ctx, User("John Doe", "john@example.com", 30))


def defer_with_business_error(ctx: Context | None) -> User:
    """Create a user who then fails a business rule, rolling everything back."""
    with with_defer(ctx) as tx_ctx:
        user = _create_user(tx_ctx, User("Jane Smith", "jane@example.com", 25))
        if user.age < 30:
            raise ValueError("user must be at least 30 years old")
        return user


def defer_with_panic_recovery(ctx: Context | None) -> User:
    """Create a user, then fail unexpectedly so the transaction rolls back."""
    with with_defer(ctx) as tx_ctx:
        _create_user(tx_ctx, User("Bob Wilson", "bob@example.com", 35))
        raise StxError(
            "recovered from panic",
            RuntimeError("something went wrong in business logic"),
        )


def complex_business_transaction(ctx: Context | None) -> tuple[User, dict[str, Any]]:
    """Create a user and an order for that user in one transaction."""
    with with_defer(ctx) as tx_ctx:
        user = _create_user(tx_ctx, User("Alice Johnson", "alice@example.com", 28))
        order = _create_order(tx_ctx, user.id, "Laptop", 1, 999.99)
        print(
            f"Created order: {order['product']} for user {order['user_id']} "
            f"(Total: ${order['total']:.2f})"
        )
        if order["quantity"] > 10:
            raise ValueError("insufficient inventory")
        return user, order


def defer_with_validation(ctx: Context | None) -> User:
    """Validate a user with a negative age before storing it; this fails."""
    with with_defer(ctx) as tx_ctx:
        user = User("Charlie Brown", "charlie@example.com", -5)
        validate_user(user)
        return _create_user(tx_ctx, user)


def defer_with_multiple_ops(ctx: Context | None) -> list[User]:
    """Create three users and one order for each of them."""
    with with_defer(ctx) as tx_ctx:
        users = [
            _create_user(tx_ctx, User(name, email, age))
            for name, email, age in (
                ("User1", "user1@example.com", 25),
                ("User2", "user2@example.com", 30),
                ("User3", "user3@example.com", 35),
            )
        ]
        for user in users:
            order = _create_order(tx_ctx, user.id, f"Product {user.id}", 2, user.age * 10.0)
            print(f"Created order for user {user.id}: {order['product']}")
        return users


def defer_with_external_api(ctx: Context | None) -> User:
    """Create a user and confirm it with a remote service before committing."""
    with with_defer(ctx) as tx_ctx:
        user = _create_user(tx_ctx, User("David Miller", "david@example.com", 40))
        simulate_external_api(user.id)
        print(f"External API call successful for user {user.id}")
        return user


def defer_with_conditional_logic(ctx: Context | None, should_create_order: bool) -> User:
    """Create a user and, if asked, an order for that user."""
    with with_defer(ctx) as tx_ctx:
        user = _create_user(tx_ctx, User("Eve Davis", "eve@example.com", 32))
        if should_create_order:
            _create_order(tx_ctx, user.id, "Conditional Product", 1, 199.99)
            print(f"Created conditional order for user {user.id}")
        return user


def run_examples(ctx: Context | None) -> None:
    """Run every deferred-transaction example, reporting each outcome."""
    print("=== Example 1: Basic Defer Success ===")
    try:
        basic_defer_success(ctx)
    except Exception as exc:
        print(f"Error: {exc}")
    else:
        print("Success: User created and committed")

    print("\n=== Example 2: Defer with Business Logic Error ===")
    try:
        defer_with_business_error(ctx)
    except Exception as exc:
        print(f"Expected error: {exc}")

    print("\n=== Example 3: Defer with Panic Recovery ===")
    try:
        defer_with_panic_recovery(ctx)
    except Exception as exc:
        print(f"Panic recovered: {exc}")

    print("\n=== Example 4: Complex Business Transaction ===")
    try:
        complex_business_transaction(ctx)
    except Exception as exc:
        print(f"Transaction failed: {exc}")
    else:
        print("Success: Order with user created")

    print("\n=== Example 5: Defer with Validation ===")
    try:
        defer_with_validation(ctx)
    except Exception as exc:
        print(f"Validation failed: {exc}")

    print("\n=== Example 6: Defer with Multiple Operations ===")
    try:
        defer_with_multiple_ops(ctx)
    except Exception as exc:
        print(f"Multiple operations failed: {exc}")
    else:
        print("Success: Multiple operations completed")

    print("\n=== Example 7: Defer with External API Call ===")
    try:
        defer_with_external_api(ctx)
    except Exception as exc:
        print(f"External API failed: {exc}")
    else:
        print("Success: User created with external API call")

    print("\n=== Example 8: Defer with Conditional Logic ===")
    try:
        defer_with_conditional_logic(ctx, True)
    except Exception as exc:
        print(f"Conditional logic failed: {exc}")
    else:
        print("Success: Conditional logic completed")