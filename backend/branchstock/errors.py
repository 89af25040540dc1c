# Overview: Typed stock-ledger errors shared by models, services and routes.

"""
Stock ledger error taxonomy.

Every precondition failure is raised before the first write of an operation,
so callers never observe partial effects. ConcurrencyConflict is the only kind
the coordinator retries on its own.
"""

from __future__ import annotations


class InventoryError(Exception):
    """Base class for typed stock-mutation failures."""

    code = "INVENTORY_ERROR"
    is_error = True

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ProductNotFound(InventoryError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id, reason: str = "not found"):
        super().__init__(
            f"Product {product_id} {reason}",
            details={"product_id": product_id},
        )
        self.product_id = product_id


class BranchNotFound(InventoryError):
    code = "BRANCH_NOT_FOUND"

    def __init__(self, branch_id):
        super().__init__(f"Branch {branch_id} not found", details={"branch_id": branch_id})
        self.branch_id = branch_id


class SaleNotFound(InventoryError):
    code = "SALE_NOT_FOUND"

    def __init__(self, sale_id):
        super().__init__(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        self.sale_id = sale_id


class InvalidQuantity(InventoryError):
    """Zero, negative or non-integer quantity (or cost)."""
    code = "INVALID_QUANTITY"


class InvalidReason(InventoryError):
    code = "INVALID_REASON"


class InvalidTimestamp(InventoryError):
    code = "INVALID_TIMESTAMP"


class InsufficientStock(InventoryError):
    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        *,
        product_id: int,
        requested: int,
        available: int,
        line_number: int | None = None,
    ):
        where = f" (line {line_number})" if line_number is not None else ""
        super().__init__(
            f"Insufficient stock for product {product_id}{where}. "
            f"Available: {available}, requested: {requested}",
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
                "line_number": line_number,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.line_number = line_number


class InvalidTransfer(InventoryError):
    code = "INVALID_TRANSFER"


class InvalidSale(InventoryError):
    code = "INVALID_SALE"


class InitialStockAlreadyLoaded(InventoryError):
    code = "INITIAL_STOCK_ALREADY_LOADED"


class NoAdjustmentNeeded(InventoryError):
    """Counted stock equals current stock; nothing was written."""
    code = "NO_ADJUSTMENT_NEEDED"
    is_error = False

    def __init__(self, product_id: int, current_stock: int):
        super().__init__(
            f"Product {product_id} already has {current_stock} units; no adjustment needed",
            details={"product_id": product_id, "current_stock": current_stock},
        )
        self.product_id = product_id
        self.current_stock = current_stock


class AlreadyCancelled(InventoryError):
    code = "ALREADY_CANCELLED"

    def __init__(self, sale_id: str):
        super().__init__(f"Sale {sale_id} is already cancelled", details={"sale_id": sale_id})
        self.sale_id = sale_id


class ConcurrencyConflict(InventoryError):
    """A conditional write lost a race; safe to retry."""
    code = "CONCURRENCY_CONFLICT"


class PersistenceFailure(InventoryError):
    """The store could not commit the atomic unit; nothing was applied."""
    code = "PERSISTENCE_FAILURE"


class LedgerIntegrityError(PersistenceFailure):
    code = "LEDGER_INTEGRITY"
