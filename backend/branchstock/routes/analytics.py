from flask import Blueprint, current_app, jsonify, request

from ..errors import InventoryError
from ..http_errors import error_response
from ..services import analytics_service


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


def _branch_id():
    return request.args.get("branch_id", type=int)


@analytics_bp.get("/rotation")
def rotation_route():
    try:
        result = analytics_service.rotation_index(
            branch_id=_branch_id(),
            days=request.args.get("days", 30, type=int),
            end=request.args.get("end"),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)


@analytics_bp.get("/abc")
def abc_route():
    try:
        result = analytics_service.abc_classification(
            branch_id=_branch_id(),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)


@analytics_bp.get("/discrepancies")
def discrepancies_route():
    rows = analytics_service.detect_discrepancies(branch_id=_branch_id())
    return jsonify({"count": len(rows), "rows": rows}), 200


@analytics_bp.get("/reorder")
def reorder_route():
    try:
        rows = analytics_service.reorder_suggestions(
            branch_id=_branch_id(),
            horizon_days=request.args.get(
                "horizon_days", current_app.config["ANALYTICS_DEFAULT_HORIZON_DAYS"], type=int
            ),
            lookback_days=request.args.get(
                "lookback_days", current_app.config["ANALYTICS_DEFAULT_LOOKBACK_DAYS"], type=int
            ),
            end=request.args.get("end"),
        )
        return jsonify({"count": len(rows), "rows": rows}), 200
    except InventoryError as e:
        return error_response(e)


@analytics_bp.get("/movement-summary")
def movement_summary_route():
    try:
        result = analytics_service.movement_summary(
            branch_id=_branch_id(),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(result), 200
    except InventoryError as e:
        return error_response(e)


@analytics_bp.get("/most-moved")
def most_moved_route():
    try:
        rows = analytics_service.most_moved_products(
            branch_id=_branch_id(),
            start=request.args.get("start"),
            end=request.args.get("end"),
            limit=request.args.get("limit", 10, type=int),
        )
        return jsonify({"rows": rows}), 200
    except InventoryError as e:
        return error_response(e)


@analytics_bp.get("/valuation")
def valuation_route():
    return jsonify(analytics_service.inventory_valuation(branch_id=_branch_id())), 200


@analytics_bp.get("/low-stock")
def low_stock_route():
    rows = analytics_service.low_stock_alerts(branch_id=_branch_id())
    return jsonify({"count": len(rows), "rows": rows}), 200
