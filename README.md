# txscope

`txscope` keeps an SQLAlchemy `Engine` (or `Connection`) in a context value
and lets code deep in a call chain find it, start a transaction on it, and
register work that should run only once that transaction has succeeded.

Your entry point puts the database into a context once; every function below
it takes the context, asks for the current handle, and does its work. When a
caller wraps a block in a transaction, the same functions get a `Connection`
with that transaction open instead, without any change to their code.

## Installation

```
pip install txscope
```

The package depends on SQLAlchemy. To run the tests:

```
pip install "txscope[test]"
pytest
```

## Contexts

`txscope.context` provides `Context`, an immutable chain of key/value pairs.

- `background()` returns the shared, empty root context.
- `Context.with_value(key, value)` returns a child context; the original is
  left unchanged. Keys must be hashable and not `None`.
- `Context.value(key)` returns the innermost value stored under `key`, or
  `None`.

## Transactions

Everything below lives in `txscope.stx`.

| Name | What it does |
| --- | --- |
| `new(ctx, db)` | A child of `ctx` that carries `db`. |
| `current(ctx)` | The handle carried by `ctx`, or `None` when there is none (also for `ctx=None`). |
| `with_transaction(ctx, fn)` | Calls `fn` with a context holding a new transaction and returns its result. If `fn` raises, the transaction is rolled back and the exception propagates; otherwise the success callbacks run and the transaction is committed. Raises `InvalidTransactionError` when `ctx` carries no database. |
| `begin(ctx)` | A context holding a newly begun transaction; `ctx` itself when it carries no database. |
| `commit(ctx)` / `rollback(ctx)` | Finish a transaction started with `begin`. Nothing happens when `ctx` holds no transaction; a transaction that is already finished raises `StxError`. |
| `is_tx(ctx)` | Whether `ctx` holds a transaction. |
| `with_defer(ctx)` | A context manager: begins a transaction and yields its context. If the block raises, the transaction is rolled back and the exception propagates; otherwise it is committed and then the success callbacks run. A failed commit raises `StxError("failed to commit transaction", ...)`. |
| `on_success(ctx, callback)` | Queues `callback` on the transaction in `ctx`; runs it at once when `ctx` holds no transaction; does nothing when `ctx` or `callback` is `None`. |
| `StxError` | An error with a `message` and an optional cause `err`; its text is `"message: cause"`. |
| `InvalidTransactionError` | A `StxError` raised when a transaction is asked of a context with no database. |

`get_current` and `is_transaction` are older names for `current` and `is_tx`.

When the handle is an `Engine`, a transaction takes a connection of its own,
which is closed when the transaction finishes. Inside a transaction that is
already open, `with_transaction`, `begin` and `with_defer` use a savepoint.

Success callbacks run in the order they were registered, and may be
registered from several threads at once. Note when they run: `with_defer`
runs them after the commit, while `with_transaction` runs them once `fn` has
returned, just before its commit (or savepoint release).

## Example

```python
from sqlalchemy import create_engine, text

from txscope.context import background
from txscope.stx import current, new, on_success, with_defer

engine = create_engine("sqlite:///app.db")
ctx = new(background(), engine)

with with_defer(ctx) as tx_ctx:
    current(tx_ctx).execute(text("CREATE TABLE IF NOT EXISTS notes (body TEXT)"))
    current(tx_ctx).execute(text("INSERT INTO notes VALUES ('hello')"))
    on_success(tx_ctx, lambda: print("note stored"))
```

If the block raises, nothing it wrote is kept, the error reaches the caller,
and the message is never printed.

## Demonstrations

Three commands run worked examples against SQLite database files in the
current directory:

```
txscope-basic-demo [DATABASE]
txscope-events-demo [DATABASE]
txscope-advanced-demo [DATABASE] [--advanced-database FILE]
```

- `txscope-basic-demo` (default file `example.db`) — plain use, automatic and
  manual transactions, nesting, and `with_defer` with success and failure.
- `txscope-events-demo` (default file `onsuccess_examples.db`) — success
  callbacks feeding an `EventStream`, including a rollback in which no event
  is emitted, then a list of every event recorded.
- `txscope-advanced-demo` (default files `defer_examples.db` and
  `advanced_defer.db`) — first the users-and-orders examples of
  `txscope.defer_demo`, then a money transfer, concurrent transactions,
  nested helpers sharing one transaction, a time limit and retries.

The demonstrations insert rows with fixed e-mail addresses into unique
columns, so running one a second time against the same file reports
constraint errors for those examples.

## What it does not do

`txscope` works with SQLAlchemy Core engines and connections only: it has no
ORM session support, and `begin`, `with_transaction` and `with_defer` take no
isolation-level or read-only options.