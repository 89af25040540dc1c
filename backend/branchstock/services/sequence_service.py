# Overview: Sale id sequencer; atomic per-day counters behind PREFIX-YYYYMMDD-NNNN ids.

from __future__ import annotations

from datetime import date, datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SaleSequence
from .concurrency import begin_write, commit_unit, run_with_retry
from branchstock.time_utils import business_date


class SequenceError(Exception):
    """Raised when sequence operations fail."""
    pass


def format_sale_id(prefix: str, day: date, number: int, pad: int = 4) -> str:
    return f"{prefix}-{day:%Y%m%d}-{number:0{pad}d}"


def _increment(prefix: str, day: date) -> int:
    """
    Bump the (prefix, day) counter and return the value this caller owns.

    The UPDATE is the atomic increment; the follow-up read happens inside the
    same transaction, which already holds the row's write lock.
    """
    stmt = (
        update(SaleSequence)
        .where(
            SaleSequence.prefix == prefix,
            SaleSequence.business_date == day,
        )
        .values(last_number=SaleSequence.last_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return (
            db.session.query(SaleSequence.last_number)
            .filter_by(prefix=prefix, business_date=day)
            .scalar()
        )

    seq = SaleSequence(prefix=prefix, business_date=day, last_number=1)
    try:
        with db.session.begin_nested():
            db.session.add(seq)
    except IntegrityError:
        # Another writer inserted the day's row first; fall back to the UPDATE
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return (
            db.session.query(SaleSequence.last_number)
            .filter_by(prefix=prefix, business_date=day)
            .scalar()
        )
    return 1


def next_sale_id(
    business_day: date | None = None,
    *,
    prefix: str | None = None,
    commit: bool = True,
) -> str:
    """
    Allocate the next sale id for a day, e.g. "VTA-20261019-0007".

    commit=False joins the caller's open transaction (record_sale), so a
    rolled-back sale also rolls back its number. commit=True runs as its own
    atomic unit with retries (test harnesses, CLI).
    """
    day = business_day or business_date()
    if isinstance(day, datetime):
        day = day.date()
    if not isinstance(day, date):
        raise SequenceError("business_day must be a date")
    prefix = prefix or current_app.config.get("SALE_ID_PREFIX", "VTA")
    if not prefix:
        raise SequenceError("prefix is required")

    if not commit:
        return format_sale_id(prefix, day, _increment(prefix, day))

    def _op() -> str:
        begin_write()
        number = _increment(prefix, day)
        commit_unit()
        return format_sale_id(prefix, day, number)

    return run_with_retry(_op)
