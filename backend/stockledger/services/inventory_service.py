# Overview: MovementLedger and StockAccount; every stock quantity change goes through here.

# backend/stockledger/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, InventoryMovement, Replenishment, Supplier
from ..models.inventory import (
    MOVEMENT_SALE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_REPLENISHMENT,
    MOVEMENT_RETURN_IN,
    INVENTORY_STATUS_OK,
    INVENTORY_STATUS_ADJUSTED,
)
from ..validation import ConflictError, ValidationError
from stockledger.time_utils import utcnow
from .alert_service import evaluate_product_stock_best_effort
from .concurrency import lock_for_update, run_with_retry
from .errors import InsufficientStockError, NotFoundError
from .expiration_service import _create_batch_inner

"""
Stock Ledger Invariants (authoritative)

Ledger model:
- InventoryMovement rows are append-only; there is no update or delete path.
- Product.stock is a cache: stock == initial_stock + SUM(quantity_delta).
- A movement row and the stock value it explains are written in the same
  DB transaction, under a row lock on the product (plus optimistic
  version_id for backends that ignore FOR UPDATE).

Business invariants:
- Stock may never go negative. The movement that would make it negative
  fails with InsufficientStockError and writes nothing.
- Each movement type carries its sign convention (MOVEMENT_KINDS).
- Adjustments are expressed as a delta from the locked current stock to the
  requested absolute value.

Side effects:
- After commit, the AlertEngine re-evaluates the product. That step is
  best-effort and can never undo the movement.
"""


@dataclass(frozen=True)
class MovementKind:
    code: str
    # -1 outgoing only, +1 incoming only, 0 either direction
    direction: int
    label: str

    def accepts(self, quantity_delta: int) -> bool:
        if self.direction < 0:
            return quantity_delta < 0
        if self.direction > 0:
            return quantity_delta > 0
        return True


MOVEMENT_KINDS = {
    MOVEMENT_SALE: MovementKind(MOVEMENT_SALE, -1, "Sale"),
    MOVEMENT_ADJUSTMENT: MovementKind(MOVEMENT_ADJUSTMENT, 0, "Adjustment"),
    MOVEMENT_REPLENISHMENT: MovementKind(MOVEMENT_REPLENISHMENT, 1, "Replenishment"),
    MOVEMENT_RETURN_IN: MovementKind(MOVEMENT_RETURN_IN, 1, "Return"),
}


def get_movement_kind(movement_type: str) -> MovementKind:
    kind = MOVEMENT_KINDS.get(movement_type)
    if kind is None:
        raise ValidationError(f"unknown movement type: {movement_type!r}")
    return kind


def _get_product(product_id: int, *, lock: bool = False, require_active: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("product not found", product_id=product_id)
    if require_active and not product.is_active:
        raise NotFoundError("product is inactive", product_id=product_id)
    return product


def get_product(product_id: int) -> Product:
    return _get_product(product_id)


def create_product(
    *,
    sku: str,
    name: str,
    initial_stock: int = 0,
    min_stock: int = 0,
    cost_price_cents: int = 0,
    price_cents: int = 0,
    supplier_id: int | None = None,
) -> Product:
    """
    Register a product with its opening stock.

    The opening stock is recorded as initial_stock, not as a movement: the
    ledger explains every change from that point on.
    """
    if initial_stock < 0:
        raise ValidationError("initial_stock must be >= 0")
    if db.session.query(Product).filter_by(sku=sku).first():
        raise ConflictError(f"SKU '{sku}' already exists")
    if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
        raise NotFoundError("supplier not found", supplier_id=supplier_id)

    product = Product(
        sku=sku,
        name=name,
        stock=initial_stock,
        initial_stock=initial_stock,
        min_stock=min_stock,
        cost_price_cents=cost_price_cents,
        price_cents=price_cents,
        supplier_id=supplier_id,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    return product


def create_supplier(*, name: str, phone: str | None = None, email: str | None = None) -> Supplier:
    supplier = Supplier(name=name, phone=phone, email=email, is_active=True)
    db.session.add(supplier)
    db.session.commit()
    return supplier


# =============================================================================
# MOVEMENT LEDGER
# =============================================================================

def _append_movement_inner(
    *,
    product: Product,
    movement_type: str,
    quantity_delta: int,
    reason: str,
    reference: str | None = None,
    notes: str | None = None,
    user_name: str | None = None,
    financial_impact_cents: int | None = None,
) -> InventoryMovement:
    """Core append logic without locking, retry, or commit.

    The caller must hold the product row lock and owns the transaction.
    Called by append_movement(), adjust_stock(), replenishments and sales.
    """
    kind = get_movement_kind(movement_type)
    if not kind.accepts(quantity_delta):
        raise ValidationError(
            f"{kind.code} movements must have a "
            f"{'negative' if kind.direction < 0 else 'positive'} quantity_delta"
        )

    previous_stock = product.stock
    new_stock = previous_stock + quantity_delta
    if new_stock < 0:
        raise InsufficientStockError(
            f"insufficient stock for product {product.id}",
            product_id=product.id,
            current_stock=previous_stock,
            quantity_delta=quantity_delta,
        )

    movement = InventoryMovement(
        product_id=product.id,
        type=kind.code,
        quantity_delta=quantity_delta,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
        reference=reference,
        notes=notes,
        user_name=user_name,
        financial_impact_cents=financial_impact_cents,
        created_at=utcnow(),
    )
    product.stock = new_stock
    db.session.add(movement)
    db.session.flush()
    return movement


def append_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity_delta: int,
    reason: str,
    reference: str | None = None,
    notes: str | None = None,
    user_name: str | None = None,
) -> InventoryMovement:
    """
    MovementLedger.append: write one movement and the new stock atomically.

    Raises:
        NotFoundError: product absent or inactive
        InsufficientStockError: stock would go below zero (nothing written)
        ValidationError: delta sign does not match the movement type
        StorageUnavailableError: lock/version conflicts survived every retry
    """
    def _op():
        product = _get_product(product_id, lock=True, require_active=True)
        movement = _append_movement_inner(
            product=product,
            movement_type=movement_type,
            quantity_delta=quantity_delta,
            reason=reason,
            reference=reference,
            notes=notes,
            user_name=user_name,
        )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    _evaluate_alerts_after_commit([product_id])
    return movement


def adjust_stock(
    *,
    product_id: int,
    new_stock: int,
    reason: str,
    notes: str | None = None,
    user_name: str | None = None,
) -> InventoryMovement:
    """
    StockAccount.adjust: bring stock to an absolute counted value.

    The delta is computed against the locked current stock, so a sale landing
    between the count and this call is not overwritten. A zero delta still
    records a movement and marks the product OK; any other delta marks it
    ADJUSTED.
    """
    if new_stock < 0:
        raise ValidationError("new_stock must be >= 0")

    def _op():
        product = _get_product(product_id, lock=True, require_active=True)
        delta = new_stock - product.stock
        movement = _append_movement_inner(
            product=product,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity_delta=delta,
            reason=f"Adjustment: {reason}",
            notes=notes,
            user_name=user_name,
        )
        product.last_inventory_date = utcnow()
        product.last_inventory_status = INVENTORY_STATUS_OK if delta == 0 else INVENTORY_STATUS_ADJUSTED
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Stock adjusted for product %s: %s -> %s (%s)",
        product_id, movement.previous_stock, movement.new_stock, reason,
    )
    _evaluate_alerts_after_commit([product_id])
    return movement


def mark_product_ok(product_id: int) -> Product:
    """Record a physical count that matched the ledger. No movement is written."""
    def _op():
        product = _get_product(product_id, lock=True)
        product.last_inventory_date = utcnow()
        product.last_inventory_status = INVENTORY_STATUS_OK
        db.session.commit()
        return product

    return run_with_retry(_op)


# =============================================================================
# REPLENISHMENTS
# =============================================================================

def create_replenishment(
    *,
    product_id: int,
    quantity: int,
    unit_price_cents: int = 0,
    delivery_cost_cents: int = 0,
    supplier_id: int | None = None,
    receipt_number: str | None = None,
    expiration_date: date | None = None,
    notes: str | None = None,
    user_name: str | None = None,
) -> Replenishment:
    """
    Receive goods: Replenishment row, `replenishment` movement and (when the
    goods are dated) an ExpirationBatch, all in one transaction.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be positive")

    def _op():
        product = _get_product(product_id, lock=True, require_active=True)
        if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
            raise NotFoundError("supplier not found", supplier_id=supplier_id)

        total_price = quantity * unit_price_cents + delivery_cost_cents
        replenishment = Replenishment(
            product_id=product_id,
            supplier_id=supplier_id,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            delivery_cost_cents=delivery_cost_cents,
            total_price_cents=total_price,
            receipt_number=receipt_number,
            expiration_date=expiration_date,
            notes=notes,
            user_name=user_name,
            created_at=utcnow(),
        )
        db.session.add(replenishment)
        db.session.flush()

        movement = _append_movement_inner(
            product=product,
            movement_type=MOVEMENT_REPLENISHMENT,
            quantity_delta=quantity,
            reason=f"Replenishment: {receipt_number or 'N/A'}",
            reference=f"Replenishment {replenishment.id}",
            user_name=user_name,
            financial_impact_cents=-total_price,
        )
        replenishment.movement_id = movement.id

        if expiration_date is not None:
            _create_batch_inner(
                product_id=product_id,
                supplier_id=supplier_id,
                replenishment_id=replenishment.id,
                quantity=quantity,
                expiration_date=expiration_date,
            )

        db.session.commit()
        return replenishment

    replenishment = run_with_retry(_op)
    _evaluate_alerts_after_commit([product_id])
    return replenishment


def list_replenishments(
    *,
    product_id: int | None = None,
    supplier_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    receipt_number: str | None = None,
    limit: int = 200,
) -> list[Replenishment]:
    q = db.session.query(Replenishment)
    if product_id is not None:
        q = q.filter(Replenishment.product_id == product_id)
    if supplier_id is not None:
        q = q.filter(Replenishment.supplier_id == supplier_id)
    if start is not None:
        q = q.filter(Replenishment.created_at >= start)
    if end is not None:
        q = q.filter(Replenishment.created_at <= end)
    if receipt_number:
        q = q.filter(Replenishment.receipt_number.contains(receipt_number))
    return q.order_by(Replenishment.created_at.desc(), Replenishment.id.desc()).limit(limit).all()


# =============================================================================
# QUERIES
# =============================================================================

def list_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    reason: str | None = None,
    limit: int = 200,
) -> list[InventoryMovement]:
    """Movements newest first. start/end are inclusive on created_at."""
    q = db.session.query(InventoryMovement)
    if product_id is not None:
        q = q.filter(InventoryMovement.product_id == product_id)
    if movement_type:
        get_movement_kind(movement_type)
        q = q.filter(InventoryMovement.type == movement_type)
    if start is not None:
        q = q.filter(InventoryMovement.created_at >= start)
    if end is not None:
        q = q.filter(InventoryMovement.created_at <= end)
    if reason:
        q = q.filter(InventoryMovement.reason.contains(reason))
    return q.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc()).limit(limit).all()


INVENTORY_FILTERS = {"not_worked_on", "worked_on", "ok", "adjusted"}


def list_products_for_inventory(
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    search: str | None = None,
    not_worked_on_hours: int = 24,
) -> list[Product]:
    """Active products for a physical count, filtered by count status."""
    q = db.session.query(Product).filter(Product.is_active.is_(True))
    if supplier_id is not None:
        q = q.filter(Product.supplier_id == supplier_id)
    if search:
        q = q.filter(or_(Product.name.contains(search), Product.sku.contains(search)))

    if status is not None and status not in INVENTORY_FILTERS:
        raise ValidationError(f"status must be one of: {', '.join(sorted(INVENTORY_FILTERS))}")

    cutoff = utcnow() - timedelta(hours=not_worked_on_hours)
    if status == "not_worked_on":
        q = q.filter(or_(Product.last_inventory_date.is_(None), Product.last_inventory_date < cutoff))
    elif status == "worked_on":
        q = q.filter(Product.last_inventory_date >= cutoff)
    elif status == "ok":
        q = q.filter(Product.last_inventory_status == INVENTORY_STATUS_OK)
    elif status == "adjusted":
        q = q.filter(Product.last_inventory_status == INVENTORY_STATUS_ADJUSTED)

    return q.order_by(Product.name).all()


def get_ledger_stock(product_id: int) -> int:
    """Stock recomputed from the ledger: initial_stock + SUM(quantity_delta)."""
    product = _get_product(product_id)
    total = db.session.query(
        func.coalesce(func.sum(InventoryMovement.quantity_delta), 0)
    ).filter(InventoryMovement.product_id == product_id).scalar()
    return product.initial_stock + int(total or 0)


def verify_stock_ledger(product_id: int | None = None) -> list[dict]:
    """
    Audit the ledger-consistency invariant.

    Returns one row per product whose cached stock disagrees with
    initial_stock + SUM(quantity_delta). An empty list means consistent.
    """
    sums = (
        db.session.query(
            InventoryMovement.product_id,
            func.coalesce(func.sum(InventoryMovement.quantity_delta), 0).label("delta"),
        )
        .group_by(InventoryMovement.product_id)
        .subquery()
    )
    q = db.session.query(Product, sums.c.delta).outerjoin(sums, sums.c.product_id == Product.id)
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    drift = []
    for product, delta in q.all():
        ledger_stock = product.initial_stock + int(delta or 0)
        if ledger_stock != product.stock:
            drift.append({
                "product_id": product.id,
                "sku": product.sku,
                "cached_stock": product.stock,
                "ledger_stock": ledger_stock,
                "difference": product.stock - ledger_stock,
            })
    return drift


def _evaluate_alerts_after_commit(product_ids) -> None:
    # Dedup while keeping order; a sale may touch one product on several lines
    for pid in dict.fromkeys(product_ids):
        evaluate_product_stock_best_effort(pid)
