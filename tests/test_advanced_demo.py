import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError

from txscope.advanced_demo import (
    concurrent_operations_with_defer,
    create_account_for_user,
    create_initial_transaction,
    create_schema,
    defer_with_retry,
    defer_with_timeout,
    main,
    money_transfer_with_defer,
    nested_defer_operations,
    run_advanced_examples,
)
from txscope.context import background
from txscope.stx import InvalidTransactionError, new


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'advanced.db'}", connect_args={"check_same_thread": False}
    )
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def ctx(engine):
    return new(background(), engine)


def _count(engine, table):
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()


def _scalar(engine, sql, **params):
    with engine.connect() as conn:
        return conn.execute(text(sql), params).scalar_one()


def test_money_transfer_moves_balances(engine, ctx):
    result = money_transfer_with_defer(ctx)
    assert result["from_account"]["balance"] == 800.0
    assert result["to_account"]["balance"] == 700.0
    assert result["transaction"]["status"] == "completed"
    assert result["transaction"]["amount"] == 200.0
    stored = _scalar(
        engine, "SELECT balance FROM accounts WHERE id = :id", id=result["from_account"]["id"]
    )
    assert stored == result["from_account"]["balance"]
    status = _scalar(
        engine, "SELECT status FROM transactions WHERE id = :id", id=result["transaction"]["id"]
    )
    assert status == "completed"


def test_money_transfer_twice_rolls_back(engine, ctx):
    money_transfer_with_defer(ctx)
    accounts_before = _count(engine, "accounts")
    with pytest.raises(IntegrityError):
        money_transfer_with_defer(ctx)
    assert _count(engine, "accounts") == accounts_before
    assert _count(engine, "users") == 2


def test_concurrent_operations_all_succeed(engine, ctx):
    assert concurrent_operations_with_defer(ctx) == 3
    assert _count(engine, "users") == 3


def test_nested_defer_operations(engine, ctx):
    result = nested_defer_operations(ctx)
    assert result["user"].name == "Nested User"
    assert result["account"]["user_id"] == result["user"].id
    assert result["account"]["balance"] == 1000.0
    record = result["transaction"]
    assert record["status"] == "initial"
    assert record["from_id"] == record["to_id"] == result["account"]["id"]
    assert _count(engine, "transactions") == 1


def test_create_account_without_database():
    with pytest.raises(InvalidTransactionError):
        create_account_for_user(background(), 1)


def test_initial_transaction_without_account(engine, ctx):
    with pytest.raises(LookupError):
        create_initial_transaction(ctx, 42)
    assert _count(engine, "transactions") == 0


def test_timeout_exceeded_rolls_back(engine, ctx):
    with pytest.raises(TimeoutError):
        defer_with_timeout(ctx, timeout=0.01, work_time=0.05)
    assert _count(engine, "users") == 0


def test_timeout_not_exceeded_commits(engine, ctx):
    user = defer_with_timeout(ctx, timeout=1.0, work_time=0.01)
    assert user.name == "Timeout User"
    assert _count(engine, "users") == 1


def test_retry_succeeds_on_third_attempt(engine, ctx):
    user = defer_with_retry(ctx)
    assert user.name == "Retry User 3"
    assert _count(engine, "users") == 1


def test_retry_gives_up(engine, ctx):
    with pytest.raises(RuntimeError, match="all retry attempts failed"):
        defer_with_retry(ctx, max_retries=2)
    assert _count(engine, "users") == 0


def test_run_advanced_examples_reports(ctx, capsys):
    run_advanced_examples(ctx)
    out = capsys.readouterr().out
    assert "Success: Money transfer completed" in out
    assert "Concurrent operations: 3 successful" in out
    assert "Operation with timeout failed" in out
    assert "Success: Retry operation completed" in out
    assert "=== Advanced Examples Done ===" in out


def test_main_runs_both_databases(tmp_path, capsys):
    first = tmp_path / "defer.db"
    second = tmp_path / "adv.db"
    assert main([str(first), "--advanced-database", str(second)]) == 0
    assert first.exists() and second.exists()
    assert "=== All Examples Done ===" in capsys.readouterr().out