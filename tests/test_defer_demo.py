import pytest
from sqlalchemy import create_engine, text

from txscope.context import background
from txscope.defer_demo import (
    User,
    basic_defer_success,
    complex_business_transaction,
    create_schema,
    defer_with_business_error,
    defer_with_conditional_logic,
    defer_with_external_api,
    defer_with_multiple_ops,
    defer_with_panic_recovery,
    defer_with_validation,
    run_examples,
    simulate_external_api,
    validate_user,
)
from txscope.stx import InvalidTransactionError, StxError, new


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'defer.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def ctx(engine):
    return new(background(), engine)


def _scalar(engine, sql):
    with engine.connect() as conn:
        return conn.execute(text(sql)).scalar_one()


def _names(engine):
    with engine.connect() as conn:
        return {row[0] for row in conn.execute(text("SELECT name FROM users"))}


@pytest.mark.parametrize(
    "user, message",
    [
        (User("", "a@example.com", 20), "user name is required"),
        (User("Ann", "", 20), "user email is required"),
        (User("Ann", "a@example.com", -5), "user age must be non-negative"),
        (User("Ann", "a@example.com", 151), "user age must be realistic"),
    ],
)
def test_validate_user_rejects(user, message):
    with pytest.raises(ValueError, match=message):
        validate_user(user)


def test_validate_user_accepts_bounds():
    assert validate_user(User("Ann", "a@example.com", 0)) is None
    assert validate_user(User("Ann", "a@example.com", 150)) is None


def test_simulate_external_api():
    assert simulate_external_api(3) is None
    for user_id in (7, 14):
        with pytest.raises(RuntimeError, match="external API returned error 500"):
            simulate_external_api(user_id)


def test_basic_defer_success_commits(ctx, engine):
    user = basic_defer_success(ctx)
    assert user.name == "John Doe"
    assert user.created_at == user.updated_at
    assert _scalar(engine, "SELECT COUNT(*) FROM users") == 1
    assert _scalar(engine, f"SELECT email FROM users WHERE id = {user.id}") == "john@example.com"


def test_business_error_rolls_back(ctx, engine):
    with pytest.raises(ValueError, match="user must be at least 30 years old"):
        defer_with_business_error(ctx)
    assert _scalar(engine, "SELECT COUNT(*) FROM users") == 0


def test_panic_recovery_rolls_back(ctx, engine):
    with pytest.raises(StxError) as info:
        defer_with_panic_recovery(ctx)
    assert str(info.value) == "recovered from panic: something went wrong in business logic"
    assert _scalar(engine, "SELECT COUNT(*) FROM users") == 0


def test_complex_business_transaction(ctx, engine):
    user, order = complex_business_transaction(ctx)
    assert order["user_id"] == user.id
    assert order["product"] == "Laptop"
    assert _scalar(engine, "SELECT COUNT(*) FROM orders") == 1
    assert _scalar(engine, "SELECT total FROM orders") == pytest.approx(999.99)
    assert _scalar(engine, "SELECT user_id FROM orders") == user.id


def test_validation_failure_writes_nothing(ctx, engine):
    with pytest.raises(ValueError, match="user age must be non-negative"):
        defer_with_validation(ctx)
    assert _scalar(engine, "SELECT COUNT(*) FROM users") == 0


def test_multiple_ops(ctx, engine):
    users = defer_with_multiple_ops(ctx)
    assert [u.name for u in users] == ["User1", "User2", "User3"]
    assert _scalar(engine, "SELECT COUNT(*) FROM orders") == len(users)
    with engine.connect() as conn:
        rows = conn.execute(text("SELECT user_id, product, total FROM orders")).all()
    by_user = {row[0]: (row[1], row[2]) for row in rows}
    for user in users:
        product, total = by_user[user.id]
        assert product == f"Product {user.id}"
        assert total == pytest.approx(user.age * 10.0)


def test_external_api_success(ctx, engine):
    user = defer_with_external_api(ctx)
    assert _names(engine) == {user.name}


def test_external_api_failure_rolls_back(ctx, engine):
    defer_with_multiple_ops(ctx)
    basic_defer_success(ctx)
    complex_business_transaction(ctx)
    defer_with_conditional_logic(ctx, False)
    before = _scalar(engine, "SELECT COUNT(*) FROM users")
    assert _scalar(engine, "SELECT MAX(id) FROM users") % 7 == 6
    with pytest.raises(RuntimeError, match="external API returned error 500"):
        defer_with_external_api(ctx)
    assert _scalar(engine, "SELECT COUNT(*) FROM users") == before
    assert "David Miller" not in _names(engine)


@pytest.mark.parametrize("should_create_order, orders", [(True, 1), (False, 0)])
def test_conditional_logic(ctx, engine, should_create_order, orders):
    user = defer_with_conditional_logic(ctx, should_create_order)
    assert user.name == "Eve Davis"
    assert _scalar(engine, "SELECT COUNT(*) FROM orders") == orders


def test_without_database_raises():
    with pytest.raises(InvalidTransactionError):
        basic_defer_success(background())


def test_run_examples(ctx, engine, capsys):
    run_examples(ctx)
    out = capsys.readouterr().out
    assert "Success: User created and committed" in out
    assert "Expected error: user must be at least 30 years old" in out
    assert "Panic recovered: recovered from panic: something went wrong in business logic" in out
    assert "Validation failed: user age must be non-negative" in out
    assert "Success: Conditional logic completed" in out
    assert _names(engine) == {
        "John Doe",
        "Alice Johnson",
        "User1",
        "User2",
        "User3",
        "David Miller",
        "Eve Davis",
    }