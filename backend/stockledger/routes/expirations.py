# Overview: Flask API routes for expiration batches.

# backend/stockledger/routes/expirations.py

from flask import Blueprint, request, jsonify, current_app

from ..services import expiration_service
from ..services.errors import LedgerError
from ..validation import BatchCreateRequest, BatchQuantityRequest
from stockledger.time_utils import utctoday


expirations_bp = Blueprint("expirations", __name__, url_prefix="/api/expirations")


@expirations_bp.get("")
@expirations_bp.get("/")
def list_batches_route():
    """
    Active batches, soonest first.

    Query: bucket=expired|critical|near|watch|ok, within_days, supplier_id,
    product_id, search
    """
    try:
        today = utctoday()
        batches = expiration_service.list_active_batches(
            bucket=request.args.get("bucket") or None,
            within_days=request.args.get("within_days", type=int),
            supplier_id=request.args.get("supplier_id", type=int),
            product_id=request.args.get("product_id", type=int),
            search=request.args.get("search") or None,
            today=today,
        )
        return jsonify({
            "batches": [expiration_service.batch_to_dict(b, today) for b in batches],
        }), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@expirations_bp.post("")
@expirations_bp.post("/")
def create_batch_route():
    """Register a dated lot outside of a replenishment."""
    try:
        req = BatchCreateRequest.from_payload(request.get_json(silent=True))
        batch = expiration_service.create_batch(
            product_id=req.product_id,
            quantity=req.quantity,
            expiration_date=req.expiration_date,
            supplier_id=req.supplier_id,
        )
        return jsonify({"batch": expiration_service.batch_to_dict(batch)}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create expiration batch")
        return jsonify({"error": "Internal server error"}), 500


@expirations_bp.get("/<int:batch_id>")
def get_batch_route(batch_id: int):
    try:
        batch = expiration_service.get_batch(batch_id)
        return jsonify({"batch": expiration_service.batch_to_dict(batch)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@expirations_bp.put("/<int:batch_id>")
@expirations_bp.patch("/<int:batch_id>")
def set_quantity_route(batch_id: int):
    """
    Request body:
    {
        "current_quantity": 30,
        "reason": "Spoiled"
    }

    Quantities only go down; 0 deactivates the batch.
    """
    try:
        req = BatchQuantityRequest.from_payload(request.get_json(silent=True))
        batch = expiration_service.set_current_quantity(
            batch_id, req.current_quantity, reason=req.reason
        )
        return jsonify({"batch": expiration_service.batch_to_dict(batch)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update expiration batch")
        return jsonify({"error": "Internal server error"}), 500


@expirations_bp.get("/<int:batch_id>/history")
def batch_history_route(batch_id: int):
    try:
        history = expiration_service.get_batch_history(batch_id)
        return jsonify({"history": [h.to_dict() for h in history]}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
