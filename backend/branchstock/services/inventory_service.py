# Overview: Service-layer operations for inventory; every single-product stock mutation goes through here.

# backend/branchstock/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..errors import (
    BranchNotFound,
    InitialStockAlreadyLoaded,
    InsufficientStock,
    InvalidReason,
    InvalidTransfer,
    NoAdjustmentNeeded,
)
from ..models import Product, StockMovement, movement_sign
from .concurrency import begin_write, commit_unit, run_with_retry
from .ledger_service import append_movement, has_movements, resolve_occurred_at
from .stock_service import (
    apply_stock_delta,
    find_or_create_branch_product,
    get_branch,
    get_product,
    validate_quantity,
)
"""
Inventory Mutation Invariants (authoritative)

Single write path:
- current_stock changes only through apply_stock_delta(), and every change
  appends exactly one StockMovement in the same DB transaction.

Ordering inside one unit:
1. open the write transaction (BEGIN IMMEDIATE on SQLite, row locks elsewhere)
2. load + lock every affected product, validate every precondition
3. apply conditional stock updates and append movements
4. commit (or roll back everything)

Nothing is written before step 3, so a failed precondition never leaves
partial state to undo. A lost race in step 3 raises ConcurrencyConflict and
run_with_retry() re-runs the whole unit from step 1.

Cost snapshots:
- unit_cost_cents_at_time is read from the product at mutation time.
- ENTRY with unit_cost_cents updates the standing cost *before* the snapshot.
"""


@dataclass
class StockMutation:
    """Result of one coordinator operation."""
    products: list[Product]
    movements: list[StockMovement]
    created_products: list[Product] = field(default_factory=list)

    @property
    def product(self) -> Product:
        return self.products[0]

    @property
    def movement(self) -> StockMovement:
        return self.movements[0]

    def to_dict(self) -> dict:
        return {
            "products": [p.to_dict() for p in self.products],
            "movements": [m.to_dict() for m in self.movements],
            "created_product_ids": [p.id for p in self.created_products],
        }


def _require_reason(reason: str | None) -> str:
    if reason is None or not str(reason).strip():
        raise InvalidReason("reason is required")
    return str(reason).strip()


def _clean_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    reason = str(reason).strip()
    return reason or None


def _check_available(product: Product, quantity: int) -> None:
    if product.current_stock < quantity:
        raise InsufficientStock(
            product_id=product.id,
            requested=quantity,
            available=product.current_stock,
        )


def _mutate(
    product: Product,
    *,
    kind: str,
    quantity: int,
    occurred_at,
    actor_id: int | None = None,
    reason: str | None = None,
    counterparty_branch_id: int | None = None,
    related_sale_id: str | None = None,
) -> StockMovement:
    """Apply one signed stock change and append its ledger row."""
    stock_before, stock_after = apply_stock_delta(product, movement_sign(kind) * quantity)
    return append_movement(
        product_id=product.id,
        branch_id=product.branch_id,
        kind=kind,
        quantity=quantity,
        stock_before=stock_before,
        stock_after=stock_after,
        unit_cost_cents_at_time=product.unit_cost_cents or 0,
        occurred_at=occurred_at,
        counterparty_branch_id=counterparty_branch_id,
        related_sale_id=related_sale_id,
        actor_id=actor_id,
        reason=reason,
    )


def _single_product_op(
    *,
    kind: str,
    product_id: int,
    quantity: int,
    reason: str | None,
    actor_id: int | None,
    occurred_at,
    before_mutation=None,
) -> StockMutation:
    """Shared shape of entry / exit / loss."""
    def _op():
        begin_write()
        product = get_product(product_id, require_active=True, lock=True)
        occurred_dt = resolve_occurred_at([product.id], occurred_at)

        if movement_sign(kind) < 0:
            _check_available(product, quantity)

        if before_mutation is not None:
            before_mutation(product)

        mv = _mutate(
            product,
            kind=kind,
            quantity=quantity,
            occurred_at=occurred_dt,
            actor_id=actor_id,
            reason=reason,
        )
        commit_unit()
        return StockMutation(products=[product], movements=[mv])

    return run_with_retry(_op)


def register_entry(
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int | None = None,
    reason: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
) -> StockMutation:
    """
    Receive stock (purchase / supplier delivery).

    A provided unit_cost_cents becomes the product's standing cost before the
    movement snapshot is taken, so the ENTRY row carries the new cost.
    """
    validate_quantity(quantity)
    if unit_cost_cents is not None:
        validate_quantity(unit_cost_cents, field="unit_cost_cents", allow_zero=True)

    def _set_cost(product: Product) -> None:
        if unit_cost_cents is not None and product.unit_cost_cents != unit_cost_cents:
            product.unit_cost_cents = unit_cost_cents
            db.session.flush()

    return _single_product_op(
        kind="ENTRY",
        product_id=product_id,
        quantity=quantity,
        reason=_clean_reason(reason),
        actor_id=actor_id,
        occurred_at=occurred_at,
        before_mutation=_set_cost,
    )


def register_exit(
    *,
    product_id: int,
    quantity: int,
    reason: str,
    actor_id: int | None = None,
    occurred_at=None,
) -> StockMutation:
    """Non-sale stock removal; reason is mandatory."""
    validate_quantity(quantity)
    reason = _require_reason(reason)
    return _single_product_op(
        kind="EXIT",
        product_id=product_id,
        quantity=quantity,
        reason=reason,
        actor_id=actor_id,
        occurred_at=occurred_at,
    )


def register_loss(
    *,
    product_id: int,
    quantity: int,
    reason: str,
    actor_id: int | None = None,
    occurred_at=None,
) -> StockMutation:
    """Shrinkage / damage. Same shape as an exit, tagged LOSS for analytics."""
    validate_quantity(quantity)
    reason = _require_reason(reason)
    return _single_product_op(
        kind="LOSS",
        product_id=product_id,
        quantity=quantity,
        reason=reason,
        actor_id=actor_id,
        occurred_at=occurred_at,
    )


def register_adjustment(
    *,
    product_id: int,
    counted_stock: int,
    reason: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
) -> StockMutation:
    """
    Bring current_stock to a physically counted value.

    delta == 0 raises NoAdjustmentNeeded (a signal, not a failure) and writes
    nothing. Otherwise ADJUST_UP / ADJUST_DOWN with quantity = |delta|.
    """
    validate_quantity(counted_stock, field="counted_stock", allow_zero=True)

    def _op():
        begin_write()
        product = get_product(product_id, require_active=True, lock=True)
        occurred_dt = resolve_occurred_at([product.id], occurred_at)

        delta = counted_stock - product.current_stock
        if delta == 0:
            raise NoAdjustmentNeeded(product.id, product.current_stock)

        mv = _mutate(
            product,
            kind="ADJUST_UP" if delta > 0 else "ADJUST_DOWN",
            quantity=abs(delta),
            occurred_at=occurred_dt,
            actor_id=actor_id,
            reason=_clean_reason(reason),
        )
        commit_unit()
        return StockMutation(products=[product], movements=[mv])

    return run_with_retry(_op)


def register_transfer(
    *,
    product_id: int,
    quantity: int,
    destination_branch_id: int,
    reason: str | None = None,
    actor_id: int | None = None,
    occurred_at=None,
) -> StockMutation:
    """
    Move stock to another branch as one atomic unit.

    TRANSFER_OUT decrements the source; the destination row with the same
    code is found or created inside the same transaction and receives
    TRANSFER_IN. Both movements carry the other side's branch id.
    """
    validate_quantity(quantity)

    def _op():
        begin_write()
        source = get_product(product_id, require_active=True, lock=True)

        if destination_branch_id == source.branch_id:
            raise InvalidTransfer(
                "Cannot transfer to the same branch",
                details={"branch_id": source.branch_id},
            )
        destination_branch = get_branch(destination_branch_id)
        if destination_branch is None or not destination_branch.is_active:
            raise BranchNotFound(destination_branch_id)

        _check_available(source, quantity)

        destination, created = find_or_create_branch_product(source, destination_branch_id)
        occurred_dt = resolve_occurred_at([source.id, destination.id], occurred_at)
        note = _clean_reason(reason)

        out_mv = _mutate(
            source,
            kind="TRANSFER_OUT",
            quantity=quantity,
            occurred_at=occurred_dt,
            actor_id=actor_id,
            reason=note,
            counterparty_branch_id=destination_branch_id,
        )
        in_mv = append_movement(
            **_transfer_in_fields(destination, quantity, out_mv),
            occurred_at=occurred_dt,
            actor_id=actor_id,
            reason=note,
        )
        commit_unit()
        return StockMutation(
            products=[source, destination],
            movements=[out_mv, in_mv],
            created_products=[destination] if created else [],
        )

    return run_with_retry(_op)


def _transfer_in_fields(destination: Product, quantity: int, out_mv: StockMovement) -> dict:
    """
    Increment the destination and describe its TRANSFER_IN row.

    The incoming units are valued at the source's cost snapshot.
    """
    stock_before, stock_after = apply_stock_delta(destination, quantity)
    return {
        "product_id": destination.id,
        "branch_id": destination.branch_id,
        "kind": "TRANSFER_IN",
        "quantity": quantity,
        "stock_before": stock_before,
        "stock_after": stock_after,
        "unit_cost_cents_at_time": out_mv.unit_cost_cents_at_time,
        "counterparty_branch_id": out_mv.branch_id,
    }


def register_initial_stock(
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int | None = None,
    actor_id: int | None = None,
    occurred_at=None,
) -> StockMutation:
    """
    Load opening stock for a product that has no ledger history yet.

    Products start at 0; this is how pre-existing shelf stock enters the
    ledger so replaying movements always reproduces current_stock.
    """
    validate_quantity(quantity)
    if unit_cost_cents is not None:
        validate_quantity(unit_cost_cents, field="unit_cost_cents", allow_zero=True)

    def _op():
        begin_write()
        product = get_product(product_id, require_active=True, lock=True)
        if has_movements(product.id) or product.current_stock != 0:
            raise InitialStockAlreadyLoaded(
                f"Product {product.id} already has stock history",
                details={"product_id": product.id, "current_stock": product.current_stock},
            )
        occurred_dt = resolve_occurred_at([product.id], occurred_at)

        if unit_cost_cents is not None:
            product.unit_cost_cents = unit_cost_cents
            db.session.flush()

        mv = _mutate(
            product,
            kind="INITIAL",
            quantity=quantity,
            occurred_at=occurred_dt,
            actor_id=actor_id,
            reason="Initial stock",
        )
        commit_unit()
        return StockMutation(products=[product], movements=[mv])

    return run_with_retry(_op)


def get_stock_summary(product_id: int) -> dict:
    product = get_product(product_id, require_active=False)
    return {
        "product": product.to_dict(),
        "stock_value_cents": product.current_stock * (product.unit_cost_cents or 0),
        "below_threshold": product.current_stock <= product.reorder_threshold,
    }


def apply_movement(product: Product, **kwargs) -> StockMovement:
    """Public entry for multi-product units that already validated their inputs."""
    return _mutate(product, **kwargs)
