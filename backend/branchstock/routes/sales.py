# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/branchstock/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, jsonify, request

from ..errors import InventoryError
from ..http_errors import error_response, internal_error, json_body, missing_fields
from ..services import sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def record_sale_route():
    """
    Record a completed sale.

    Body: branch_id, lines=[{product_id, quantity, unit_price_cents?}],
    discount_cents?, actor_id?, occurred_at?
    """
    payload = json_body()
    missing = missing_fields(payload, "branch_id", "lines")
    if missing:
        return missing

    try:
        sale, mutation = sales_service.record_sale(
            branch_id=payload["branch_id"],
            lines=payload["lines"],
            discount_cents=payload.get("discount_cents", 0),
            actor_id=payload.get("actor_id"),
            occurred_at=payload.get("occurred_at"),
        )
        return jsonify({
            "sale": sale.to_dict(),
            "movements": [mv.to_dict() for mv in mutation.movements],
        }), 201
    except InventoryError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to record sale")


@sales_bp.get("")
def list_sales_route():
    try:
        sales = sales_service.list_sales(
            branch_id=request.args.get("branch_id", type=int),
            start=request.args.get("start"),
            end=request.args.get("end"),
            status=request.args.get("status"),
            limit=max(1, min(request.args.get("limit", 200, type=int), 1000)),
        )
    except ValueError:
        return jsonify({"error": "start/end must be ISO-8601 datetimes", "code": "INVALID_TIMESTAMP", "details": {}}), 400

    return jsonify({"sales": [s.to_dict(include_lines=False) for s in sales]}), 200


@sales_bp.get("/<sale_id>")
def get_sale_route(sale_id: str):
    try:
        sale = sales_service.get_sale(sale_id)
    except InventoryError as e:
        return error_response(e)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<sale_id>/cancel")
def cancel_sale_route(sale_id: str):
    """Cancel a completed sale and return its stock."""
    payload = json_body()

    try:
        sale, mutation = sales_service.cancel_sale(
            sale_id=sale_id,
            reason=payload.get("reason"),
            actor_id=payload.get("actor_id"),
        )
        return jsonify({
            "sale": sale.to_dict(),
            "movements": [mv.to_dict() for mv in mutation.movements],
        }), 200
    except InventoryError as e:
        return error_response(e)
    except Exception:
        return internal_error(f"Failed to cancel sale {sale_id}")
