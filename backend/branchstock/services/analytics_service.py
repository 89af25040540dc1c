# Overview: Read-only analytics over the stock ledger and product projection.

from __future__ import annotations

import math
from contextlib import contextmanager
from datetime import datetime, timedelta
from fractions import Fraction

from sqlalchemy import case, func, text

from ..extensions import db
from ..errors import InvalidTimestamp
from ..models import Branch, Product, StockMovement
from .concurrency import is_sqlite
from .ledger_service import latest_movement
from .stock_service import validate_quantity
from branchstock.time_utils import normalize_datetime, to_utc_z, utcnow
"""
Analytics rules:
- Nothing here writes. Every report runs inside one read transaction so it
  sees a single consistent snapshot while writers keep appending.
- "Net sold" = SALE units - SALE_REVERSAL units; a cancelled sale does not
  count as demand.
- Money is integer cents; ratios are computed exactly (Fraction) and only
  rounded for presentation.
"""

ROTATION_HIGH = 2
ROTATION_MEDIUM = 1
ABC_A_LIMIT = 80
ABC_B_LIMIT = 95
DAYS_PER_MONTH = 30


@contextmanager
def read_snapshot():
    """
    Pin one read transaction for the duration of a report.

    Only a transaction started here is ended here; a caller's open
    transaction is reused as-is.
    """
    # scoped_session does not proxy in_transaction; ask the thread-local Session
    owns = not db.session().in_transaction()
    if owns:
        if is_sqlite():
            db.session.execute(text("BEGIN"))
        else:
            db.session.connection(execution_options={"isolation_level": "REPEATABLE READ"})
    try:
        yield
    finally:
        if owns:
            db.session.rollback()


def _window(start, end, default_days: int | None = None) -> tuple[datetime | None, datetime]:
    try:
        end_dt = normalize_datetime(end) or utcnow()
        start_dt = normalize_datetime(start)
    except ValueError as exc:
        raise InvalidTimestamp("start/end must be ISO-8601 datetimes") from exc
    if start_dt is None and default_days is not None:
        start_dt = end_dt - timedelta(days=default_days)
    if start_dt is not None and start_dt > end_dt:
        raise InvalidTimestamp("start must not be after end", details={"start": str(start_dt), "end": str(end_dt)})
    return start_dt, end_dt


def _products(branch_id: int | None, *, active_only: bool = True) -> list[Product]:
    q = db.session.query(Product)
    if branch_id is not None:
        q = q.filter(Product.branch_id == branch_id)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.id.asc()).all()


def _scoped(q, branch_id: int | None, start: datetime | None, end: datetime | None):
    if branch_id is not None:
        q = q.filter(StockMovement.branch_id == branch_id)
    if start is not None:
        q = q.filter(StockMovement.occurred_at >= start)
    if end is not None:
        q = q.filter(StockMovement.occurred_at <= end)
    return q


def _net_sold_by_product(branch_id, start, end, *, start_inclusive: bool = True) -> dict[int, int]:
    signed = case(
        (StockMovement.kind == "SALE", StockMovement.quantity),
        (StockMovement.kind == "SALE_REVERSAL", -StockMovement.quantity),
        else_=0,
    )
    q = db.session.query(
        StockMovement.product_id,
        func.coalesce(func.sum(signed), 0).label("units"),
    ).filter(StockMovement.kind.in_(["SALE", "SALE_REVERSAL"]))
    if branch_id is not None:
        q = q.filter(StockMovement.branch_id == branch_id)
    if start is not None:
        q = q.filter(StockMovement.occurred_at >= start if start_inclusive else StockMovement.occurred_at > start)
    q = q.filter(StockMovement.occurred_at <= end)
    rows = q.group_by(StockMovement.product_id).all()
    return {row.product_id: max(int(row.units or 0), 0) for row in rows}


def stock_as_of(product_id: int, as_of: datetime) -> int:
    """stock_after of the last movement at or before as_of (0 before any movement)."""
    mv = (
        db.session.query(StockMovement.stock_after)
        .filter(
            StockMovement.product_id == product_id,
            StockMovement.occurred_at <= as_of,
        )
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .first()
    )
    return int(mv.stock_after) if mv else 0


def _classify_rotation(monthly: Fraction | None) -> str | None:
    if monthly is None:
        return None
    if monthly > ROTATION_HIGH:
        return "HIGH"
    if monthly > ROTATION_MEDIUM:
        return "MEDIUM"
    return "LOW"


def rotation_index(*, branch_id: int | None = None, days: int = 30, end=None) -> dict:
    """
    Sales velocity relative to average stock held over the last `days`.

    rotation_index = net_sold / ((stock_at_start + stock_at_end) / 2)
    The index is None (undefined) when the average stock is 0. The
    classification uses the index normalized to a 30-day month.
    """
    validate_quantity(days, field="days")
    _, end_dt = _window(None, end)
    start_dt = end_dt - timedelta(days=days)

    with read_snapshot():
        sold = _net_sold_by_product(branch_id, start_dt, end_dt, start_inclusive=False)
        rows = []
        for product in _products(branch_id):
            at_start = stock_as_of(product.id, start_dt)
            at_end = stock_as_of(product.id, end_dt)
            average = Fraction(at_start + at_end, 2)
            units = sold.get(product.id, 0)

            if average == 0:
                index = None
                monthly = None
            else:
                index = Fraction(units) / average
                monthly = index * DAYS_PER_MONTH / days

            rows.append({
                "product_id": product.id,
                "branch_id": product.branch_id,
                "code": product.code,
                "name": product.name,
                "sales_quantity": units,
                "stock_at_start": at_start,
                "stock_at_end": at_end,
                "average_stock": float(average),
                "rotation_index": round(float(index), 4) if index is not None else None,
                "monthly_rotation_index": round(float(monthly), 4) if monthly is not None else None,
                "classification": _classify_rotation(monthly),
                "_sort": index,
            })

    rows.sort(key=lambda r: (r["_sort"] is None, -(r["_sort"] or 0), r["product_id"]))
    for r in rows:
        del r["_sort"]

    return {
        "branch_id": branch_id,
        "days": days,
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "summary": {
            "HIGH": sum(1 for r in rows if r["classification"] == "HIGH"),
            "MEDIUM": sum(1 for r in rows if r["classification"] == "MEDIUM"),
            "LOW": sum(1 for r in rows if r["classification"] == "LOW"),
            "UNDEFINED": sum(1 for r in rows if r["classification"] is None),
        },
        "rows": rows,
    }


def classify_abc(values: dict[int, int]) -> list[dict]:
    """
    Pareto classification of {product_id: value_cents}.

    Ranked by value descending (ties by product id ascending); class A while
    the cumulative share is <= 80 %, B while <= 95 %, else C. Shares are
    compared in exact integer arithmetic.
    """
    ranked = sorted(
        ((pid, int(v)) for pid, v in values.items() if v and v > 0),
        key=lambda item: (-item[1], item[0]),
    )
    total = sum(v for _, v in ranked)
    out = []
    cumulative = 0
    for pid, value in ranked:
        cumulative += value
        if cumulative * 100 <= ABC_A_LIMIT * total:
            klass = "A"
        elif cumulative * 100 <= ABC_B_LIMIT * total:
            klass = "B"
        else:
            klass = "C"
        out.append({
            "product_id": pid,
            "value_cents": value,
            "share_pct": round(value * 100 / total, 2),
            "cumulative_pct": round(cumulative * 100 / total, 2),
            "abc_class": klass,
        })
    return out


def abc_classification(*, branch_id: int | None = None, start=None, end=None) -> dict:
    """ABC classification by outbound movement value (EXIT + SALE)."""
    start_dt, end_dt = _window(start, end)

    with read_snapshot():
        q = db.session.query(
            StockMovement.product_id,
            func.coalesce(
                func.sum(StockMovement.quantity * StockMovement.unit_cost_cents_at_time), 0
            ).label("value"),
        ).filter(StockMovement.kind.in_(["EXIT", "SALE"]))
        q = _scoped(q, branch_id, start_dt, end_dt)
        values = {row.product_id: int(row.value or 0) for row in q.group_by(StockMovement.product_id).all()}

        rows = classify_abc(values)
        if rows:
            products = {
                p.id: p
                for p in db.session.query(Product).filter(Product.id.in_([r["product_id"] for r in rows])).all()
            }
            for r in rows:
                product = products.get(r["product_id"])
                r["code"] = product.code if product else None
                r["name"] = product.name if product else None
                r["branch_id"] = product.branch_id if product else None

    return {
        "branch_id": branch_id,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt),
        "total_value_cents": sum(r["value_cents"] for r in rows),
        "summary": {klass: sum(1 for r in rows if r["abc_class"] == klass) for klass in ("A", "B", "C")},
        "rows": rows,
    }


def detect_discrepancies(*, branch_id: int | None = None) -> list[dict]:
    """
    Products whose cached current_stock disagrees with the ledger.

    Compared against stock_after of the latest movement; a product with no
    movements at all is expected to hold 0 units.
    """
    with read_snapshot():
        found = []
        for product in _products(branch_id, active_only=False):
            last = latest_movement(product.id)
            ledger_stock = last.stock_after if last is not None else 0
            if ledger_stock == product.current_stock:
                continue
            found.append({
                "product_id": product.id,
                "branch_id": product.branch_id,
                "code": product.code,
                "name": product.name,
                "current_stock": product.current_stock,
                "ledger_stock": ledger_stock,
                "difference": product.current_stock - ledger_stock,
                "last_movement_id": last.id if last is not None else None,
                "last_movement_at": to_utc_z(last.occurred_at) if last is not None else None,
            })
    return found


def _reorder_priority(days_of_stock: Fraction) -> str:
    if days_of_stock < 7:
        return "CRITICAL"
    if days_of_stock < 15:
        return "HIGH"
    return "MEDIUM"


def reorder_suggestions(
    *,
    branch_id: int | None = None,
    horizon_days: int = 30,
    lookback_days: int = 90,
    end=None,
) -> list[dict]:
    """
    Suggest purchase quantities for products that will run out within the horizon.

    v = net units sold over the lookback window / lookback_days
    suggest ceil(v * H - current_stock) when current_stock / v < H
    """
    validate_quantity(horizon_days, field="horizon_days")
    validate_quantity(lookback_days, field="lookback_days")
    _, end_dt = _window(None, end)
    start_dt = end_dt - timedelta(days=lookback_days)

    with read_snapshot():
        sold = _net_sold_by_product(branch_id, start_dt, end_dt, start_inclusive=False)
        suggestions = []
        for product in _products(branch_id):
            units = sold.get(product.id, 0)
            if units <= 0:
                continue
            velocity = Fraction(units, lookback_days)
            days_of_stock = Fraction(product.current_stock) / velocity
            if days_of_stock >= horizon_days:
                continue
            quantity = math.ceil(velocity * horizon_days - product.current_stock)
            suggestions.append({
                "product_id": product.id,
                "branch_id": product.branch_id,
                "code": product.code,
                "name": product.name,
                "current_stock": product.current_stock,
                "average_daily_consumption": round(float(velocity), 2),
                "days_of_stock": math.floor(days_of_stock),
                "suggested_quantity": quantity,
                "priority": _reorder_priority(days_of_stock),
                "_sort": days_of_stock,
            })

    suggestions.sort(key=lambda s: (s["_sort"], s["product_id"]))
    for s in suggestions:
        del s["_sort"]
    return suggestions


def movement_summary(*, branch_id: int | None = None, start=None, end=None) -> dict:
    """Count, units and value per movement kind inside a window."""
    start_dt, end_dt = _window(start, end)

    with read_snapshot():
        q = db.session.query(
            StockMovement.kind,
            func.count(StockMovement.id).label("movements"),
            func.coalesce(func.sum(StockMovement.quantity), 0).label("units"),
            func.coalesce(
                func.sum(StockMovement.quantity * StockMovement.unit_cost_cents_at_time), 0
            ).label("value"),
        )
        q = _scoped(q, branch_id, start_dt, end_dt)
        rows = q.group_by(StockMovement.kind).all()

    details = sorted(
        (
            {
                "kind": row.kind,
                "movements": int(row.movements),
                "units": int(row.units or 0),
                "value_cents": int(row.value or 0),
            }
            for row in rows
        ),
        key=lambda d: (-d["movements"], d["kind"]),
    )
    return {
        "branch_id": branch_id,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt),
        "totals": {
            "movements": sum(d["movements"] for d in details),
            "units": sum(d["units"] for d in details),
            "value_cents": sum(d["value_cents"] for d in details),
        },
        "rows": details,
    }


def most_moved_products(*, branch_id: int | None = None, start=None, end=None, limit: int = 10) -> list[dict]:
    validate_quantity(limit, field="limit")
    start_dt, end_dt = _window(start, end)

    with read_snapshot():
        q = db.session.query(
            StockMovement.product_id,
            Product.code,
            Product.name,
            Product.branch_id,
            func.count(StockMovement.id).label("movements"),
            func.coalesce(func.sum(StockMovement.quantity), 0).label("units"),
        ).join(Product, Product.id == StockMovement.product_id)
        q = _scoped(q, branch_id, start_dt, end_dt)
        rows = (
            q.group_by(StockMovement.product_id, Product.code, Product.name, Product.branch_id)
            .order_by(func.count(StockMovement.id).desc(), StockMovement.product_id.asc())
            .limit(limit)
            .all()
        )

    return [
        {
            "product_id": row.product_id,
            "branch_id": row.branch_id,
            "code": row.code,
            "name": row.name,
            "movements": int(row.movements),
            "units": int(row.units or 0),
        }
        for row in rows
    ]


def inventory_valuation(*, branch_id: int | None = None) -> dict:
    """Cost and retail value of current stock, per branch."""
    with read_snapshot():
        q = db.session.query(
            Branch.id.label("branch_id"),
            Branch.code,
            Branch.name,
            func.count(Product.id).label("products"),
            func.coalesce(func.sum(Product.current_stock), 0).label("units"),
            func.coalesce(func.sum(Product.current_stock * Product.unit_cost_cents), 0).label("cost"),
            func.coalesce(func.sum(Product.current_stock * Product.unit_price_cents), 0).label("retail"),
        ).join(Product, Product.branch_id == Branch.id).filter(Product.is_active.is_(True))
        if branch_id is not None:
            q = q.filter(Branch.id == branch_id)
        rows = q.group_by(Branch.id, Branch.code, Branch.name).order_by(Branch.name.asc()).all()

    branches = [
        {
            "branch_id": row.branch_id,
            "code": row.code,
            "name": row.name,
            "products": int(row.products),
            "units": int(row.units or 0),
            "cost_value_cents": int(row.cost or 0),
            "retail_value_cents": int(row.retail or 0),
        }
        for row in rows
    ]
    cost = sum(b["cost_value_cents"] for b in branches)
    retail = sum(b["retail_value_cents"] for b in branches)
    margin = retail - cost
    return {
        "totals": {
            "products": sum(b["products"] for b in branches),
            "units": sum(b["units"] for b in branches),
            "cost_value_cents": cost,
            "retail_value_cents": retail,
            "potential_margin_cents": margin,
            "potential_margin_pct": round(margin * 100 / retail, 2) if retail else 0.0,
        },
        "branches": branches,
    }


def low_stock_alerts(*, branch_id: int | None = None) -> list[dict]:
    with read_snapshot():
        q = db.session.query(Product).filter(
            Product.is_active.is_(True),
            Product.current_stock <= Product.reorder_threshold,
        )
        if branch_id is not None:
            q = q.filter(Product.branch_id == branch_id)
        products = q.order_by(Product.current_stock.asc(), Product.id.asc()).all()
        return [
            {
                "product_id": p.id,
                "branch_id": p.branch_id,
                "code": p.code,
                "name": p.name,
                "current_stock": p.current_stock,
                "reorder_threshold": p.reorder_threshold,
                "shortfall": p.reorder_threshold - p.current_stock,
            }
            for p in products
        ]
