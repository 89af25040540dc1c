# Overview: ProductStock projection; the single conditional write path for current_stock.

from __future__ import annotations

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConcurrencyConflict, InvalidQuantity, InvalidTransfer, ProductNotFound
from ..models import Branch, Product, StockMovement, INBOUND_KINDS
from .concurrency import lock_for_update
"""
Stock projection rules:
- Product.current_stock is a cache of the ledger; replay_stock() must always agree.
- apply_stock_delta() is the only code that changes current_stock. The
  non-negativity check lives in the same UPDATE statement as the change, so
  validation and mutation are never observably separate steps.
"""


def validate_quantity(quantity, *, field: str = "quantity", allow_zero: bool = False) -> int:
    # bool is an int subclass; reject it along with floats and strings
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(f"{field} must be an integer", details={field: quantity})
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise InvalidQuantity(
            f"{field} must be {'non-negative' if allow_zero else 'positive'}",
            details={field: quantity},
        )
    return quantity


def get_branch(branch_id: int) -> Branch | None:
    return db.session.query(Branch).filter_by(id=branch_id).first()


def get_product(
    product_id: int,
    *,
    require_active: bool = True,
    lock: bool = False,
) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(product_id)
    if require_active and not product.is_active:
        raise ProductNotFound(product_id, reason="is inactive")
    return product


def lock_products(product_ids, *, require_active: bool = True) -> dict[int, Product]:
    """Lock several products in ascending id order (deadlock-free ordering)."""
    locked = {}
    for product_id in sorted(set(product_ids)):
        locked[product_id] = get_product(product_id, require_active=require_active, lock=True)
    return locked


def apply_stock_delta(product: Product, delta: int) -> tuple[int, int]:
    """
    Atomically change current_stock by delta and return (stock_before, stock_after).

    UPDATE products SET current_stock = current_stock + :delta
     WHERE id = :id AND current_stock + :delta >= 0

    A zero rowcount means another writer drained the stock between our
    precondition check and this statement: ConcurrencyConflict (retried).
    """
    if delta == 0:
        raise InvalidQuantity("stock delta cannot be zero")

    stmt = (
        update(Product)
        .where(Product.id == product.id, Product.current_stock + delta >= 0)
        .values(
            current_stock=Product.current_stock + delta,
            version_id=Product.version_id + 1,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ConcurrencyConflict(
            "Stock changed while the mutation was in flight",
            details={"product_id": product.id, "delta": delta},
        )

    # Reload the row written by the UPDATE (also resyncs version_id)
    db.session.refresh(product)
    stock_after = product.current_stock
    return stock_after - delta, stock_after


def find_or_create_branch_product(source: Product, branch_id: int) -> tuple[Product, bool]:
    """
    Locate the product with the same catalog code in branch_id, creating it
    (stock 0) when missing. Runs inside the caller's transaction so the
    destination row is never visible in a half-made state.
    """
    existing = lock_for_update(
        db.session.query(Product).filter_by(branch_id=branch_id, code=source.code)
    ).first()
    if existing is not None:
        if not existing.is_active:
            raise InvalidTransfer(
                f"Product {source.code} is inactive in branch {branch_id}",
                details={"product_id": existing.id, "branch_id": branch_id},
            )
        return existing, False

    created = Product(
        branch_id=branch_id,
        code=source.code,
        name=source.name,
        unit_cost_cents=source.unit_cost_cents,
        unit_price_cents=source.unit_price_cents,
        reorder_threshold=source.reorder_threshold,
        current_stock=0,
        is_active=True,
    )
    db.session.add(created)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # A concurrent transfer created the row first; the retry loop re-runs the unit and finds it
        raise ConcurrencyConflict(
            "Destination product was created concurrently",
            details={"branch_id": branch_id, "code": source.code},
        ) from exc
    return created, True


def replay_stock(product_id: int) -> int:
    """Recompute a product's stock from its ledger entries alone."""
    signed = case(
        (StockMovement.kind.in_(INBOUND_KINDS), StockMovement.quantity),
        else_=-StockMovement.quantity,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)
