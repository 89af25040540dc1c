"""
Sales Service - atomic sale recording and cancellation

WHY: A sale touches N products, N ledger rows and the Sale aggregate. All of
it commits together or not at all; readers never see half a sale.

LIFECYCLE:
    COMPLETED -> CANCELLED (terminal, single transition)

Cancellation adds back exactly the quantities originally sold (additive
reversal), whatever happened to those products in between, and records one
SALE_REVERSAL movement per line.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping

from ..extensions import db
from ..errors import (
    AlreadyCancelled,
    BranchNotFound,
    InsufficientStock,
    InvalidQuantity,
    InvalidSale,
    ProductNotFound,
    SaleNotFound,
)
from ..models import Sale, SaleLine, SALE_STATUS_CANCELLED, SALE_STATUS_COMPLETED
from branchstock.time_utils import business_date, normalize_datetime
from .concurrency import begin_write, commit_unit, lock_for_update, run_with_retry
from .inventory_service import StockMutation, apply_movement
from .ledger_service import resolve_occurred_at
from .sequence_service import next_sale_id
from .stock_service import get_branch, lock_products, validate_quantity


def _normalize_lines(lines: Iterable[Mapping]) -> list[dict]:
    """Shape-check sale lines before touching the database."""
    if lines is None:
        raise InvalidSale("Sale must have at least one line")
    normalized = []
    for i, raw in enumerate(lines, start=1):
        if not isinstance(raw, Mapping):
            raise InvalidSale(f"Line {i} must be an object", details={"line_number": i})
        product_id = raw.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise InvalidSale(f"Line {i} needs an integer product_id", details={"line_number": i})
        try:
            quantity = validate_quantity(raw.get("quantity"))
        except InvalidQuantity as exc:
            exc.details["line_number"] = i
            raise
        unit_price = raw.get("unit_price_cents")
        if unit_price is not None:
            validate_quantity(unit_price, field="unit_price_cents", allow_zero=True)
        normalized.append({
            "line_number": i,
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
        })
    if not normalized:
        raise InvalidSale("Sale must have at least one line")
    return normalized


def _precheck_stock(lines: list[dict], products: dict) -> None:
    """
    Validate every line before any decrement.

    Quantities are aggregated per product, so two lines of the same product
    cannot each pass on their own and jointly oversell. The first line whose
    running total exceeds the available stock is reported.
    """
    running: dict[int, int] = {}
    for line in lines:
        product = products[line["product_id"]]
        running[product.id] = running.get(product.id, 0) + line["quantity"]
        if running[product.id] > product.current_stock:
            raise InsufficientStock(
                product_id=product.id,
                requested=running[product.id],
                available=product.current_stock,
                line_number=line["line_number"],
            )


def record_sale(
    *,
    branch_id: int,
    lines: Iterable[Mapping],
    discount_cents: int = 0,
    actor_id: int | None = None,
    occurred_at=None,
) -> tuple[Sale, StockMutation]:
    """
    Record a completed sale as one atomic unit.

    lines: [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500}, ...]
    unit_price_cents is optional and defaults to the catalog price at sale
    time; either way it is frozen on the SaleLine.

    Returns (sale, mutation) where mutation lists the affected products and
    the SALE movements in line order.
    """
    normalized = _normalize_lines(lines)
    validate_quantity(discount_cents, field="discount_cents", allow_zero=True)

    def _op():
        begin_write()
        # Fresh dicts per attempt so a retry snapshots prices again
        sale_lines = [dict(line) for line in normalized]

        branch = get_branch(branch_id)
        if branch is None:
            raise BranchNotFound(branch_id)

        products = lock_products([line["product_id"] for line in sale_lines])
        for line in sale_lines:
            product = products[line["product_id"]]
            if product.branch_id != branch_id:
                raise ProductNotFound(product.id, reason=f"does not belong to branch {branch_id}")

        _precheck_stock(sale_lines, products)

        subtotal = 0
        for line in sale_lines:
            price = line["unit_price_cents"]
            if price is None:
                price = products[line["product_id"]].unit_price_cents or 0
            line["unit_price_cents"] = price
            line["line_subtotal_cents"] = price * line["quantity"]
            subtotal += line["line_subtotal_cents"]

        if discount_cents > subtotal:
            raise InvalidSale(
                "Discount cannot exceed the sale subtotal",
                details={"discount_cents": discount_cents, "subtotal_cents": subtotal},
            )

        occurred_dt = resolve_occurred_at(products.keys(), occurred_at)

        # All preconditions hold; from here on everything is written in one unit
        sale_id = next_sale_id(business_date(occurred_dt), commit=False)
        sale = Sale(
            id=sale_id,
            branch_id=branch_id,
            status=SALE_STATUS_COMPLETED,
            subtotal_cents=subtotal,
            discount_cents=discount_cents,
            total_cents=subtotal - discount_cents,
            actor_id=actor_id,
            created_at=occurred_dt,
        )
        db.session.add(sale)
        for line in sale_lines:
            db.session.add(SaleLine(
                sale_id=sale_id,
                line_number=line["line_number"],
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                line_subtotal_cents=line["line_subtotal_cents"],
            ))
        db.session.flush()

        movements = []
        for line in sale_lines:
            movements.append(apply_movement(
                products[line["product_id"]],
                kind="SALE",
                quantity=line["quantity"],
                occurred_at=occurred_dt,
                actor_id=actor_id,
                reason=f"Sale {sale_id}",
                related_sale_id=sale_id,
            ))

        commit_unit()
        return sale, StockMutation(products=list(products.values()), movements=movements)

    return run_with_retry(_op)


def cancel_sale(
    *,
    sale_id: str,
    reason: str | None = None,
    actor_id: int | None = None,
) -> tuple[Sale, StockMutation]:
    """
    Cancel a completed sale and return its stock.

    Rejects an already cancelled sale with AlreadyCancelled and writes
    nothing. Deactivated products still get their units back.
    """
    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFound(sale_id)
        if sale.status == SALE_STATUS_CANCELLED:
            raise AlreadyCancelled(sale.id)

        lines = (
            db.session.query(SaleLine)
            .filter_by(sale_id=sale.id)
            .order_by(SaleLine.line_number)
            .all()
        )
        products = lock_products([line.product_id for line in lines], require_active=False)
        occurred_dt = resolve_occurred_at(products.keys())
        note = f"Cancel sale {sale.id}"
        if reason and str(reason).strip():
            note = f"{note}: {str(reason).strip()}"

        movements = []
        for line in lines:
            movements.append(apply_movement(
                products[line.product_id],
                kind="SALE_REVERSAL",
                quantity=line.quantity,
                occurred_at=occurred_dt,
                actor_id=actor_id,
                reason=note[:255],
                related_sale_id=sale.id,
            ))

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_by = actor_id
        sale.cancelled_at = occurred_dt
        sale.cancel_reason = (str(reason).strip()[:255] if reason else None)

        commit_unit()
        return sale, StockMutation(products=list(products.values()), movements=movements)

    return run_with_retry(_op)


def get_sale(sale_id: str) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if sale is None:
        raise SaleNotFound(sale_id)
    return sale


def list_sales(
    *,
    branch_id: int | None = None,
    start=None,
    end=None,
    status: str | None = None,
    limit: int = 200,
) -> list[Sale]:
    start_dt: datetime | None = normalize_datetime(start)
    end_dt: datetime | None = normalize_datetime(end)

    q = db.session.query(Sale)
    if branch_id is not None:
        q = q.filter(Sale.branch_id == branch_id)
    if status:
        q = q.filter(Sale.status == status)
    if start_dt is not None:
        q = q.filter(Sale.created_at >= start_dt)
    if end_dt is not None:
        q = q.filter(Sale.created_at <= end_dt)
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
