# Overview: Flask API routes for products, stock movements and replenishments.

# backend/stockledger/routes/inventory.py
"""
Inventory API Routes

WHY: Every stock change enters through the movement ledger. These routes
never touch Product.stock directly.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import inventory_service
from ..services.errors import LedgerError
from ..validation import (
    ConflictError,
    ValidationError,
    ProductCreateRequest,
    StockMovementRequest,
    StockAdjustRequest,
    ReplenishmentRequest,
)
from stockledger.time_utils import parse_iso_datetime


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _datetime_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


def _limit_arg(default: int = 200) -> int:
    limit = request.args.get("limit", default=default, type=int)
    return max(1, min(limit, 1000))


# =============================================================================
# PRODUCTS
# =============================================================================

@inventory_bp.post("/products")
def create_product_route():
    """
    Request body:
    {
        "sku": "SKU-001",
        "name": "Milk 1L",
        "initial_stock": 24,
        "min_stock": 10,
        "price_cents": 150
    }
    """
    try:
        req = ProductCreateRequest.from_payload(request.get_json(silent=True))
        product = inventory_service.create_product(
            sku=req.sku,
            name=req.name,
            initial_stock=req.initial_stock,
            min_stock=req.min_stock,
            cost_price_cents=req.cost_price_cents,
            price_cents=req.price_cents,
            supplier_id=req.supplier_id,
        )
        return jsonify({"product": product.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products")
def list_products_route():
    """Products for a physical count; ?status=not_worked_on|worked_on|ok|adjusted"""
    try:
        products = inventory_service.list_products_for_inventory(
            status=request.args.get("status") or None,
            supplier_id=request.args.get("supplier_id", type=int),
            search=request.args.get("search") or None,
        )
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@inventory_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/products/<int:product_id>/mark-ok")
def mark_product_ok_route(product_id: int):
    try:
        product = inventory_service.mark_product_ok(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark product as counted")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MOVEMENT LEDGER
# =============================================================================

@inventory_bp.post("/movements")
def append_movement_route():
    """
    Request body:
    {
        "product_id": 1,
        "type": "sale" | "adjustment" | "replenishment" | "return-in",
        "quantity_delta": -3,
        "reason": "Breakage"
    }
    """
    try:
        req = StockMovementRequest.from_payload(request.get_json(silent=True))
        movement = inventory_service.append_movement(
            product_id=req.product_id,
            movement_type=req.movement_type,
            quantity_delta=req.quantity_delta,
            reason=req.reason,
            reference=req.reference,
            notes=req.notes,
            user_name=req.user_name,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to append stock movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
def list_movements_route():
    try:
        movements = inventory_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            movement_type=request.args.get("type") or None,
            start=_datetime_arg("start"),
            end=_datetime_arg("end"),
            reason=request.args.get("reason") or None,
            limit=_limit_arg(),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@inventory_bp.post("/adjust")
def adjust_stock_route():
    """
    Set stock to a counted absolute value.

    Request body:
    {
        "product_id": 1,
        "new_stock": 18,
        "reason": "Monthly count"
    }
    """
    try:
        req = StockAdjustRequest.from_payload(request.get_json(silent=True))
        movement = inventory_service.adjust_stock(
            product_id=req.product_id,
            new_stock=req.new_stock,
            reason=req.reason,
            notes=req.notes,
            user_name=req.user_name,
        )
        product = inventory_service.get_product(req.product_id)
        return jsonify({"movement": movement.to_dict(), "product": product.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/verify")
def verify_ledger_route():
    drift = inventory_service.verify_stock_ledger(
        product_id=request.args.get("product_id", type=int)
    )
    return jsonify({"consistent": not drift, "drift": drift}), 200


# =============================================================================
# REPLENISHMENTS
# =============================================================================

@inventory_bp.post("/replenishments")
def create_replenishment_route():
    """
    Request body:
    {
        "product_id": 1,
        "quantity": 48,
        "unit_price_cents": 90,
        "delivery_cost_cents": 500,
        "supplier_id": 2,
        "receipt_number": "R-1001",
        "expiration_date": "2026-12-31"   (creates an expiration batch)
    }
    """
    try:
        req = ReplenishmentRequest.from_payload(request.get_json(silent=True))
        replenishment = inventory_service.create_replenishment(
            product_id=req.product_id,
            quantity=req.quantity,
            unit_price_cents=req.unit_price_cents,
            delivery_cost_cents=req.delivery_cost_cents,
            supplier_id=req.supplier_id,
            receipt_number=req.receipt_number,
            expiration_date=req.expiration_date,
            notes=req.notes,
            user_name=req.user_name,
        )
        return jsonify({"replenishment": replenishment.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create replenishment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/replenishments")
def list_replenishments_route():
    try:
        replenishments = inventory_service.list_replenishments(
            product_id=request.args.get("product_id", type=int),
            supplier_id=request.args.get("supplier_id", type=int),
            start=_datetime_arg("start"),
            end=_datetime_arg("end"),
            receipt_number=request.args.get("receipt_number") or None,
            limit=_limit_arg(),
        )
        return jsonify({"replenishments": [r.to_dict() for r in replenishments]}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
