# backend/branchstock/routes/inventory.py
"""
Inventory mutation and ledger routes.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- occurred_at is optional and defaults to server time.
"""
from flask import Blueprint, jsonify, request

from ..errors import InventoryError, NoAdjustmentNeeded
from ..http_errors import error_response, internal_error, json_body, missing_fields
from ..services import inventory_service, ledger_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _common(payload: dict) -> dict:
    return {
        "actor_id": payload.get("actor_id"),
        "occurred_at": payload.get("occurred_at"),
    }


@inventory_bp.post("/entries")
def register_entry_route():
    """Receive stock. Body: product_id, quantity, unit_cost_cents?, reason?"""
    payload = json_body()
    missing = missing_fields(payload, "product_id", "quantity")
    if missing:
        return missing

    try:
        result = inventory_service.register_entry(
            product_id=payload["product_id"],
            quantity=payload["quantity"],
            unit_cost_cents=payload.get("unit_cost_cents"),
            reason=payload.get("reason"),
            **_common(payload),
        )
        return jsonify(result.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to register entry")


@inventory_bp.post("/exits")
def register_exit_route():
    payload = json_body()
    missing = missing_fields(payload, "product_id", "quantity")
    if missing:
        return missing

    try:
        result = inventory_service.register_exit(
            product_id=payload["product_id"],
            quantity=payload["quantity"],
            reason=payload.get("reason"),
            **_common(payload),
        )
        return jsonify(result.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to register exit")


@inventory_bp.post("/losses")
def register_loss_route():
    payload = json_body()
    missing = missing_fields(payload, "product_id", "quantity")
    if missing:
        return missing

    try:
        result = inventory_service.register_loss(
            product_id=payload["product_id"],
            quantity=payload["quantity"],
            reason=payload.get("reason"),
            **_common(payload),
        )
        return jsonify(result.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to register loss")


@inventory_bp.post("/adjustments")
def register_adjustment_route():
    """
    Set stock to a physically counted value.

    A count equal to the current stock is not an error: 200 with adjusted=false.
    """
    payload = json_body()
    missing = missing_fields(payload, "product_id", "counted_stock")
    if missing:
        return missing

    try:
        result = inventory_service.register_adjustment(
            product_id=payload["product_id"],
            counted_stock=payload["counted_stock"],
            reason=payload.get("reason"),
            **_common(payload),
        )
        return jsonify({"adjusted": True, **result.to_dict()}), 201
    except NoAdjustmentNeeded as e:
        return jsonify({
            "adjusted": False,
            "message": e.message,
            "product_id": e.product_id,
            "current_stock": e.current_stock,
        }), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to register adjustment")


@inventory_bp.post("/transfers")
def register_transfer_route():
    payload = json_body()
    missing = missing_fields(payload, "product_id", "quantity", "destination_branch_id")
    if missing:
        return missing

    try:
        result = inventory_service.register_transfer(
            product_id=payload["product_id"],
            quantity=payload["quantity"],
            destination_branch_id=payload["destination_branch_id"],
            reason=payload.get("reason"),
            **_common(payload),
        )
        return jsonify(result.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to register transfer")


@inventory_bp.post("/initial")
def register_initial_stock_route():
    payload = json_body()
    missing = missing_fields(payload, "product_id", "quantity")
    if missing:
        return missing

    try:
        result = inventory_service.register_initial_stock(
            product_id=payload["product_id"],
            quantity=payload["quantity"],
            unit_cost_cents=payload.get("unit_cost_cents"),
            **_common(payload),
        )
        return jsonify(result.to_dict()), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to register initial stock")


@inventory_bp.get("/movements")
def list_movements_route():
    """Filtered ledger listing, newest first."""
    try:
        result = ledger_service.list_movements(
            branch_id=request.args.get("branch_id", type=int),
            product_id=request.args.get("product_id", type=int),
            kind=request.args.get("kind"),
            start=request.args.get("start"),
            end=request.args.get("end"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
    except ValueError:
        return jsonify({"error": "start/end must be ISO-8601 datetimes", "code": "INVALID_TIMESTAMP", "details": {}}), 400

    return jsonify({
        **result,
        "items": [mv.to_dict() for mv in result["items"]],
    }), 200


@inventory_bp.get("/products/<int:product_id>/movements")
def product_history_route(product_id: int):
    limit = request.args.get("limit", 20, type=int)
    try:
        summary = inventory_service.get_stock_summary(product_id)
    except InventoryError as e:
        return error_response(e)

    history = ledger_service.product_history(product_id, limit=max(1, min(limit, 500)))
    return jsonify({
        **summary,
        "movements": [mv.to_dict() for mv in history],
    }), 200
