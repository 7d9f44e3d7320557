# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/billing/routes/invoices.py
"""
Invoice API routes.

Request bodies accept snake_case and the web client's camelCase names
(customerId, gstType, invoiceType, items[].productId, items[].gstRate).

Responses:
- POST returns the persisted invoice (with items) plus stock warnings.
  A stock shortfall does not fail the request unless
  STOCK_SHORTFALL_POLICY is "reject".
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import invoice_service
from ..services.invoice_service import InvoiceNotFoundError, StorageError
from ..services.stock_service import StockError
from billing.validation import ConflictError, FieldAlias, ValidationError, require_object


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

CUSTOMER_ID = FieldAlias("customer_id", "customerId")
GST_TYPE = FieldAlias("gst_type", "gstType")
INVOICE_TYPE = FieldAlias("invoice_type", "invoiceType")
DUE_DATE = FieldAlias("due_date", "dueDate")


@invoices_bp.post("")
def create_invoice_route():
    """Create an invoice, deduct stock and queue notifications."""
    try:
        payload = require_object(request.get_json(silent=True))
        result = invoice_service.create_invoice(
            customer_id=CUSTOMER_ID.lookup(payload),
            gst_type=GST_TYPE.lookup(payload),
            invoice_type=INVOICE_TYPE.lookup(payload),
            items=payload.get("items"),
            notes=payload.get("notes"),
            due_date=DUE_DATE.lookup(payload),
        )
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except StockError as e:
        # Only reachable under the "reject" shortfall policy
        return jsonify({"error": str(e), "details": e.details}), 409
    except StorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("")
def list_invoices_route():
    status = request.args.get("status")
    limit = request.args.get("limit", 100)
    try:
        invoices = invoice_service.list_invoices(status=status, limit=limit)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"invoices": [inv.to_dict() for inv in invoices]}), 200


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200


@invoices_bp.get("/by-number/<string:invoice_number>")
def get_invoice_by_number_route(invoice_number: str):
    try:
        invoice = invoice_service.get_invoice_by_number(invoice_number)
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200


@invoices_bp.patch("/<int:invoice_id>/status")
def update_invoice_status_route(invoice_id: int):
    """
    Change invoice status (pending, paid, overdue).

    Status is the only field that can change after creation.
    """
    try:
        payload = require_object(request.get_json(silent=True))
        invoice_service.update_invoice_status(invoice_id, payload.get("status"))
        return "", 204

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except StorageError as e:
        return jsonify({"error": str(e)}), 500
    except Exception:
        current_app.logger.exception("Failed to update invoice status")
        return jsonify({"error": "Internal server error"}), 500
