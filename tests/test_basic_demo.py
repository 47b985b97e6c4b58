import pytest
from sqlalchemy import create_engine, text

from txscope.basic_demo import (
    basic_usage,
    create_schema,
    defer_error,
    defer_panic,
    defer_success,
    main,
    manual_transaction_example,
    nested_transaction_example,
    transaction_example,
)
from txscope.context import background
from txscope.stx import InvalidTransactionError, new


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'basic.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def ctx(engine):
    return new(background(), engine)


def _names(engine):
    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text("SELECT name FROM users ORDER BY id"))]


def test_basic_usage_creates_user(engine, ctx):
    user = basic_usage(ctx)
    assert user["name"] == "John Doe"
    assert user["age"] == 30
    assert _names(engine) == ["John Doe"]


def test_basic_usage_without_database_raises():
    with pytest.raises(InvalidTransactionError):
        basic_usage(background())


def test_transaction_example_commits_both(engine, ctx):
    created = transaction_example(ctx)
    assert [u["name"] for u in created] == ["Alice", "Bob"]
    assert _names(engine) == ["Alice", "Bob"]


def test_transaction_example_failure_returns_empty(tmp_path, capsys):
    bare = create_engine(f"sqlite:///{tmp_path / 'bare.db'}")
    try:
        assert transaction_example(new(background(), bare)) == []
    finally:
        bare.dispose()
    assert "Transaction failed" in capsys.readouterr().out


def test_manual_transaction_commits(engine, ctx, capsys):
    user = manual_transaction_example(ctx)
    assert user["name"] == "Charlie"
    assert _names(engine) == ["Charlie"]
    out = capsys.readouterr().out
    assert "Successfully started transaction" in out
    assert "Gracefully handled: no error returned" in out


def test_nested_transaction_commits_both(engine, ctx):
    created = nested_transaction_example(ctx)
    assert [u["name"] for u in created] == ["David", "Eve"]
    assert _names(engine) == ["David", "Eve"]


def test_defer_success_commits(engine, ctx):
    user = defer_success(ctx)
    assert user["name"] == "Defer Success"
    assert _names(engine) == ["Defer Success"]


def test_defer_error_rolls_back(engine, ctx):
    with pytest.raises(RuntimeError, match="simulated error"):
        defer_error(ctx)
    assert _names(engine) == []


def test_defer_panic_rolls_back(engine, ctx):
    with pytest.raises(RuntimeError, match="simulated panic"):
        defer_panic(ctx)
    assert _names(engine) == []


def test_main_runs_all_examples(tmp_path, capsys):
    path = tmp_path / "main.db"
    assert main([str(path)]) == 0
    check = create_engine(f"sqlite:///{path}")
    try:
        names = _names(check)
    finally:
        check.dispose()
    assert names == [
        "John Doe",
        "Alice",
        "Bob",
        "Charlie",
        "David",
        "Eve",
        "Defer Success",
    ]
    assert "=== Done ===" in capsys.readouterr().out