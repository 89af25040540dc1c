# Overview: Maps typed inventory errors to JSON error responses for the HTTP layer.

from flask import current_app, jsonify, request

from .errors import (
    AlreadyCancelled,
    BranchNotFound,
    ConcurrencyConflict,
    InitialStockAlreadyLoaded,
    InsufficientStock,
    InventoryError,
    PersistenceFailure,
    ProductNotFound,
    SaleNotFound,
)


NOT_FOUND = (ProductNotFound, BranchNotFound, SaleNotFound)
CONFLICT = (InsufficientStock, AlreadyCancelled, ConcurrencyConflict, InitialStockAlreadyLoaded)


def status_for(exc: InventoryError) -> int:
    if isinstance(exc, NOT_FOUND):
        return 404
    if isinstance(exc, CONFLICT):
        return 409
    if isinstance(exc, PersistenceFailure):
        return 500
    return 400


def error_response(exc: InventoryError):
    status = status_for(exc)
    if status >= 500:
        current_app.logger.error("Persistence failure: %s (%s)", exc.message, exc.details)
    return jsonify(exc.to_dict()), status


def missing_fields(payload: dict, *names: str):
    """400 response naming the first absent field, or None when all are present."""
    for name in names:
        if payload.get(name) is None:
            return jsonify({"error": f"{name} required", "code": "MISSING_FIELD", "details": {"field": name}}), 400
    return None


def internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    """Request JSON when it is an object, otherwise an empty dict."""
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}
