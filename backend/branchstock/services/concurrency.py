# Overview: Transaction and retry primitives shared by every stock-mutating service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConcurrencyConflict, PersistenceFailure


# Failures that mean "another writer got there first"; the whole unit is retried
RETRYABLE_ERRORS = (ConcurrencyConflict, OperationalError, StaleDataError)


def is_sqlite() -> bool:
    return db.engine.dialect.name == "sqlite"


def begin_write() -> None:
    """
    Open the write transaction for one atomic unit.

    SQLite ignores SELECT ... FOR UPDATE, so writers are serialized with
    BEGIN IMMEDIATE instead; other backends rely on row locks.
    """
    if is_sqlite():
        db.session.execute(text("BEGIN IMMEDIATE"))


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing() makes rows already in the identity map reload, so
    preconditions are checked against the locked values.
    """
    return query.with_for_update().populate_existing()


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when an IntegrityError comes from a unique or primary key (a lost race)."""
    orig = exc.orig
    if getattr(orig, "pgcode", None) == "23505":
        return True
    message = str(orig).lower()
    return "unique" in message or "duplicate" in message


def commit_unit() -> None:
    """
    Commit the current unit.

    A unique-key violation means a concurrent writer won and becomes
    ConcurrencyConflict; any other store failure (CHECK, NOT NULL, FK)
    becomes PersistenceFailure.
    """
    try:
        db.session.commit()
    except (OperationalError, StaleDataError):
        raise
    except IntegrityError as exc:
        db.session.rollback()
        if not is_unique_violation(exc):
            raise PersistenceFailure(
                "Stock mutation violated a database constraint",
                details={"cause": str(exc.orig)},
            ) from exc
        raise ConcurrencyConflict(
            "Concurrent write violated a unique key",
            details={"cause": str(exc.orig)},
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceFailure(
            "Could not commit stock mutation",
            details={"cause": str(exc)},
        ) from exc


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one atomic unit with retry on concurrency-related failures.

    Retries on ConcurrencyConflict (lost conditional update), OperationalError
    (database locked, deadlocks) and StaleDataError (optimistic locking).
    Every other exception rolls the session back and propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 5)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF", 0.05)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, ConcurrencyConflict):
                    raise
                raise ConcurrencyConflict(
                    f"Gave up after {attempts} attempts",
                    details={"attempts": attempts, "cause": str(exc)},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
