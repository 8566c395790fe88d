# Overview: Flask API routes for sales, cancellations and returns.

# backend/stockledger/routes/sales.py

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.errors import LedgerError
from ..validation import ConflictError, ValidationError, SaleRequest, ReturnRequest
from stockledger.time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@sales_bp.post("/")
def create_sale_route():
    """
    Post a sale.

    Request body:
    {
        "payment_method": "cash",
        "lines": [
            {"product_id": 1, "quantity": 2, "unit_price_cents": 150}
        ],
        "discount_cents": 0,
        "tax_cents": 0
    }

    Stock and (for cash) the drawer total move together or not at all.
    """
    try:
        req = SaleRequest.from_payload(request.get_json(silent=True))
        sale = sales_service.create_sale(
            lines=req.lines,
            payment_method=req.payment_method,
            discount_cents=req.discount_cents,
            tax_cents=req.tax_cents,
            cashier_name=req.cashier_name,
            customer_name=req.customer_name,
            notes=req.notes,
        )
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@sales_bp.get("/")
def list_sales_route():
    try:
        sales = sales_service.list_sales(
            start=parse_iso_datetime(request.args.get("start")),
            end=parse_iso_datetime(request.args.get("end")),
            payment_method=request.args.get("payment_method") or None,
            status=request.args.get("status") or None,
            cash_session_id=request.args.get("cash_session_id", type=int),
            limit=max(1, min(request.args.get("limit", default=200, type=int), 1000)),
        )
        return jsonify({"sales": [s.to_dict() for s in sales]}), 200
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 datetimes"}), 400


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    try:
        payload = request.get_json(silent=True) or {}
        sale = sales_service.cancel_sale(sale_id, reason=payload.get("reason"))
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/returns")
def return_items_route(sale_id: int):
    """
    Request body:
    {
        "items": [{"sale_line_id": 4, "quantity": 1}],
        "reason": "Damaged packaging"
    }
    """
    try:
        req = ReturnRequest.from_payload(request.get_json(silent=True))
        refunded = sales_service.return_sale_items(sale_id, req.items, reason=req.reason)
        sale = sales_service.get_sale(sale_id)
        return jsonify({
            "refunded_amount_cents": refunded,
            "sale": sale.to_dict(include_lines=True),
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to return sale items")
        return jsonify({"error": "Internal server error"}), 500
