# Overview: Service-layer operations for the stock ledger; the only writer of StockMovement rows.

from __future__ import annotations

from datetime import datetime, timedelta

from ..extensions import db
from ..errors import InvalidTimestamp, LedgerIntegrityError
from ..models import StockMovement, movement_sign
from branchstock.time_utils import normalize_datetime, utcnow
"""
Stock Ledger Invariants (authoritative)

- Append-only: rows are inserted once and never updated or deleted.
- stock_after = stock_before + sign(kind) * quantity, quantity > 0, stock_after >= 0.
- Movements are written inside the same DB transaction as the stock change they record.
- occurred_at is business time; created_at is system time (DB default).
- Per product, occurred_at never goes backwards: the latest movement by
  (occurred_at, id) is also the latest one written.
"""

# Clock skew tolerated for client-supplied occurred_at
FUTURE_TOLERANCE = timedelta(minutes=2)


def latest_movement(product_id: int) -> StockMovement | None:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .first()
    )


def has_movements(product_id: int) -> bool:
    return (
        db.session.query(StockMovement.id)
        .filter(StockMovement.product_id == product_id)
        .first()
        is not None
    )


def resolve_occurred_at(product_ids, value=None) -> datetime:
    """
    Validate business time for a movement before anything is written.

    - None -> now
    - must not be in the future (beyond clock skew tolerance)
    - must not precede the latest movement of any affected product
    """
    try:
        occurred = normalize_datetime(value)
    except ValueError as exc:
        raise InvalidTimestamp("occurred_at is not a valid ISO-8601 datetime") from exc

    now = utcnow()
    if occurred is None:
        occurred = now
    if occurred > now + FUTURE_TOLERANCE:
        raise InvalidTimestamp("occurred_at cannot be in the future", details={"occurred_at": str(occurred)})

    for product_id in product_ids:
        last = latest_movement(product_id)
        if last is not None and last.occurred_at is not None and occurred < last.occurred_at:
            # Let "now" fall back to the last stamp when clocks disagree by a hair
            if value is None:
                occurred = last.occurred_at
                continue
            raise InvalidTimestamp(
                "occurred_at precedes the product's latest movement",
                details={"product_id": product_id, "latest_occurred_at": str(last.occurred_at)},
            )
    return occurred


def append_movement(
    *,
    product_id: int,
    branch_id: int,
    kind: str,
    quantity: int,
    stock_before: int,
    stock_after: int,
    unit_cost_cents_at_time: int,
    occurred_at: datetime,
    counterparty_branch_id: int | None = None,
    related_sale_id: str | None = None,
    actor_id: int | None = None,
    reason: str | None = None,
) -> StockMovement:
    """
    Append one movement row.

    - No deletes/updates of existing rows.
    - The arithmetic invariant is checked here as well as by table constraints.
    """
    if quantity <= 0:
        raise LedgerIntegrityError("movement quantity must be positive", details={"quantity": quantity})
    if stock_after != stock_before + movement_sign(kind) * quantity:
        raise LedgerIntegrityError(
            "stock_after does not match stock_before and quantity",
            details={
                "kind": kind,
                "quantity": quantity,
                "stock_before": stock_before,
                "stock_after": stock_after,
            },
        )
    if stock_after < 0:
        raise LedgerIntegrityError("stock_after cannot be negative", details={"stock_after": stock_after})
    if kind in ("TRANSFER_IN", "TRANSFER_OUT") and counterparty_branch_id is None:
        raise LedgerIntegrityError("transfer movements need a counterparty branch")
    if kind in ("SALE", "SALE_REVERSAL") and related_sale_id is None:
        raise LedgerIntegrityError("sale movements need a related sale")

    mv = StockMovement(
        product_id=product_id,
        branch_id=branch_id,
        kind=kind,
        quantity=quantity,
        stock_before=stock_before,
        stock_after=stock_after,
        unit_cost_cents_at_time=unit_cost_cents_at_time,
        counterparty_branch_id=counterparty_branch_id,
        related_sale_id=related_sale_id,
        actor_id=actor_id,
        reason=reason,
        occurred_at=occurred_at,
    )
    db.session.add(mv)
    db.session.flush()  # ensures mv.id is assigned without committing
    return mv


def list_movements(
    *,
    branch_id: int | None = None,
    product_id: int | None = None,
    kind: str | None = None,
    start=None,
    end=None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    """Filtered movement listing, newest first, paginated."""
    start_dt = normalize_datetime(start)
    end_dt = normalize_datetime(end)
    page = max(int(page), 1)
    per_page = min(max(int(per_page), 1), 500)

    q = db.session.query(StockMovement)
    if branch_id is not None:
        q = q.filter(StockMovement.branch_id == branch_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if kind:
        q = q.filter(StockMovement.kind == kind)
    if start_dt is not None:
        q = q.filter(StockMovement.occurred_at >= start_dt)
    if end_dt is not None:
        q = q.filter(StockMovement.occurred_at <= end_dt)

    total = q.count()
    rows = (
        q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": rows,
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }


def product_history(product_id: int, limit: int = 20) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
