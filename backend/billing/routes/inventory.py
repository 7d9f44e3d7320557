# backend/billing/routes/inventory.py
"""
Stock ledger routes.

Every stock change goes through stock_service and leaves a StockHistory row.
Deductions for sales happen inside invoice creation, not here.
"""
from flask import Blueprint, current_app, jsonify, request

from ..services import stock_service
from ..services.stock_service import InvalidAdjustmentError, ProductNotFoundError
from billing.validation import FieldAlias, ValidationError, coerce_positive_int, require_object


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

REFERENCE_TYPE = FieldAlias("reference_type", "referenceType")
REFERENCE_ID = FieldAlias("reference_id", "referenceId")
DELTA = FieldAlias("delta", "quantityChange")


@inventory_bp.post("/<int:product_id>/add")
def add_stock_route(product_id: int):
    """Receive stock (purchase)."""
    try:
        payload = require_object(request.get_json(silent=True))
        entry = stock_service.add_stock(
            product_id,
            payload.get("quantity"),
            reference_type=REFERENCE_TYPE.lookup(payload, "purchase_order"),
            reference_id=REFERENCE_ID.lookup(payload),
            notes=payload.get("notes"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ProductNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to add stock")
        return jsonify({"error": "Internal server error"}), 500

    product = stock_service.get_product_or_raise(product_id)
    return jsonify({"entry": entry.to_dict(), "product": product.to_dict()}), 201


@inventory_bp.post("/<int:product_id>/adjust")
def adjust_stock_route(product_id: int):
    """
    Manual correction (damage, recount, ...).

    Body: {"delta": -3, "reason": "damaged in transit"}
    """
    try:
        payload = require_object(request.get_json(silent=True))
        entry = stock_service.adjust_stock(product_id, DELTA.lookup(payload), payload.get("reason"))
    except (ValidationError, InvalidAdjustmentError) as e:
        details = getattr(e, "details", None)
        body = {"error": str(e)}
        if details:
            body["details"] = details
        return jsonify(body), 400
    except ProductNotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500

    product = stock_service.get_product_or_raise(product_id)
    return jsonify({"entry": entry.to_dict(), "product": product.to_dict()}), 201


@inventory_bp.get("/<int:product_id>/history")
def stock_history_route(product_id: int):
    try:
        limit = coerce_positive_int(request.args.get("limit", 50), "limit")
        rows = stock_service.get_stock_history(product_id, limit=limit)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ProductNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({"history": [row.to_dict() for row in rows]}), 200


@inventory_bp.get("/low-stock")
def low_stock_route():
    products = stock_service.get_low_stock_products()
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@inventory_bp.get("/reorder-suggestions")
def reorder_suggestions_route():
    return jsonify({"suggestions": stock_service.get_reorder_suggestions()}), 200
