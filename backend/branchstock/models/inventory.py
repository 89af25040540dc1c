from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import LedgerIntegrityError
from branchstock.time_utils import to_utc_z


# Movement kinds that add stock / remove stock
INBOUND_KINDS = ("ENTRY", "ADJUST_UP", "TRANSFER_IN", "SALE_REVERSAL", "INITIAL")
OUTBOUND_KINDS = ("EXIT", "ADJUST_DOWN", "TRANSFER_OUT", "LOSS", "SALE")
MOVEMENT_KINDS = INBOUND_KINDS + OUTBOUND_KINDS


def movement_sign(kind: str) -> int:
    if kind in INBOUND_KINDS:
        return 1
    if kind in OUTBOUND_KINDS:
        return -1
    raise ValueError(f"unknown movement kind {kind!r}")


class Product(db.Model):
    """
    Branch-scoped product with its current stock projection.

    CODE DESIGN DECISION:
    The same catalog code exists as an independent row per branch:
    UniqueConstraint("branch_id", "code"). Transfers find-or-create the
    destination row by code.

    STOCK:
    current_stock is a cache of the ledger (stock_after of the latest
    StockMovement). It is only ever changed by the conditional UPDATE in
    stock_service.apply_stock_delta, never assigned directly.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "code", name="uq_products_branch_code"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_branch_active", "branch_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_threshold = db.Column(db.Integer, nullable=False, default=5)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} branch_id={self.branch_id} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "code": self.code,
            "name": self.name,
            "unit_cost_cents": self.unit_cost_cents,
            "unit_price_cents": self.unit_price_cents,
            "current_stock": self.current_stock,
            "reorder_threshold": self.reorder_threshold,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only ledger entry for one stock-changing event.

    Rows are inserted once by ledger_service.append_movement and never
    updated or deleted; corrections are new compensating movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        db.CheckConstraint("stock_before >= 0", name="ck_movements_before_non_negative"),
        db.CheckConstraint("stock_after >= 0", name="ck_movements_after_non_negative"),
        db.CheckConstraint(
            "stock_after - stock_before = quantity OR stock_before - stock_after = quantity",
            name="ck_movements_arithmetic",
        ),
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_movements_branch_occurred", "branch_id", "occurred_at"),
        db.Index("ix_movements_branch_kind_occurred", "branch_id", "kind", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    # Cost snapshot at mutation time (valuation never recomputes it)
    unit_cost_cents_at_time = db.Column(db.Integer, nullable=False, default=0)

    # Transfers only
    counterparty_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)

    # SALE / SALE_REVERSAL only
    related_sale_id = db.Column(db.String(32), db.ForeignKey("sales.id"), nullable=True, index=True)

    actor_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    @property
    def value_cents(self) -> int:
        return self.quantity * (self.unit_cost_cents_at_time or 0)

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} kind={self.kind} product_id={self.product_id} "
            f"{self.stock_before}->{self.stock_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "kind": self.kind,
            "quantity": self.quantity,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "unit_cost_cents_at_time": self.unit_cost_cents_at_time,
            "value_cents": self.value_cents,
            "counterparty_branch_id": self.counterparty_branch_id,
            "related_sale_id": self.related_sale_id,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise LedgerIntegrityError(
        "Stock movements are append-only",
        details={"movement_id": target.id},
    )


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise LedgerIntegrityError(
        "Stock movements are append-only",
        details={"movement_id": target.id},
    )
