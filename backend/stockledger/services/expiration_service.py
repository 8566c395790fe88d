# Overview: ExpirationBatchTracker; dated lots whose quantity only ever goes down.

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import ExpirationBatch, ExpirationBatchAdjustment, Product
from ..validation import ValidationError
from stockledger.time_utils import utcnow, utctoday
from .concurrency import lock_for_update, run_with_retry
from .errors import InvalidQuantityIncreaseError, NotFoundError

"""
Batches are created by replenishments and depleted by manual correction.
Sales do not decrement batches: which physical lot a unit left from is not
known to the ledger, so no FIFO rule is guessed.

Buckets are computed at query time from days until expiration:
- expired: expiration_date < today
- critical: 0..7 days
- near: 8..30 days
- watch: 31..90 days
- ok: more than 90 days
"""

BUCKET_EXPIRED = "expired"
BUCKET_CRITICAL = "critical"
BUCKET_NEAR = "near"
BUCKET_WATCH = "watch"
BUCKET_OK = "ok"
BUCKETS = (BUCKET_EXPIRED, BUCKET_CRITICAL, BUCKET_NEAR, BUCKET_WATCH, BUCKET_OK)

CRITICAL_DAYS = 7
NEAR_DAYS = 30
WATCH_DAYS = 90

# (min_days, max_days) inclusive; None = unbounded
_BUCKET_RANGES = {
    BUCKET_EXPIRED: (None, -1),
    BUCKET_CRITICAL: (0, CRITICAL_DAYS),
    BUCKET_NEAR: (CRITICAL_DAYS + 1, NEAR_DAYS),
    BUCKET_WATCH: (NEAR_DAYS + 1, WATCH_DAYS),
    BUCKET_OK: (WATCH_DAYS + 1, None),
}


def days_until_expiration(expiration_date: date, today: date | None = None) -> int:
    today = today or utctoday()
    return (expiration_date - today).days


def classify_expiry(expiration_date: date, today: date | None = None) -> str:
    days = days_until_expiration(expiration_date, today)
    if days < 0:
        return BUCKET_EXPIRED
    if days <= CRITICAL_DAYS:
        return BUCKET_CRITICAL
    if days <= NEAR_DAYS:
        return BUCKET_NEAR
    if days <= WATCH_DAYS:
        return BUCKET_WATCH
    return BUCKET_OK


def batch_to_dict(batch: ExpirationBatch, today: date | None = None) -> dict:
    """Serialize a batch with its query-time expiry classification."""
    data = batch.to_dict()
    data["days_until_expiration"] = days_until_expiration(batch.expiration_date, today)
    data["bucket"] = classify_expiry(batch.expiration_date, today)
    return data


def _create_batch_inner(
    *,
    product_id: int,
    supplier_id: int | None,
    replenishment_id: int | None,
    quantity: int,
    expiration_date: date,
) -> ExpirationBatch:
    """Core batch creation without retry or commit. Caller owns the transaction."""
    if quantity <= 0:
        raise ValidationError("batch quantity must be positive")

    batch = ExpirationBatch(
        product_id=product_id,
        supplier_id=supplier_id,
        replenishment_id=replenishment_id,
        original_quantity=quantity,
        current_quantity=quantity,
        expiration_date=expiration_date,
        is_active=True,
    )
    db.session.add(batch)
    db.session.flush()
    return batch


def create_batch(
    *,
    product_id: int,
    quantity: int,
    expiration_date: date,
    supplier_id: int | None = None,
    replenishment_id: int | None = None,
) -> ExpirationBatch:
    """
    Create a batch on its own.

    Replenishments create their batch inside their own transaction
    (inventory_service.create_replenishment); this entry point serves lots
    registered after the fact.
    """
    def _op():
        if db.session.get(Product, product_id) is None:
            raise NotFoundError("product not found", product_id=product_id)
        batch = _create_batch_inner(
            product_id=product_id,
            supplier_id=supplier_id,
            replenishment_id=replenishment_id,
            quantity=quantity,
            expiration_date=expiration_date,
        )
        db.session.commit()
        return batch

    return run_with_retry(_op)


def get_batch(batch_id: int) -> ExpirationBatch:
    batch = db.session.get(ExpirationBatch, batch_id)
    if batch is None:
        raise NotFoundError("expiration batch not found", batch_id=batch_id)
    return batch


def set_current_quantity(batch_id: int, new_quantity: int, *, reason: str | None = None) -> ExpirationBatch:
    """
    Deplete a batch to new_quantity.

    Raises:
        NotFoundError: batch absent or already inactive
        InvalidQuantityIncreaseError: new_quantity > current_quantity
        ValidationError: new_quantity < 0
    """
    if new_quantity < 0:
        raise ValidationError("current_quantity must be >= 0")

    def _op():
        batch = lock_for_update(db.session.query(ExpirationBatch).filter_by(id=batch_id)).first()
        if batch is None or not batch.is_active:
            raise NotFoundError("expiration batch not found or inactive", batch_id=batch_id)

        if new_quantity > batch.current_quantity:
            raise InvalidQuantityIncreaseError(
                "batch quantity can only be decreased",
                batch_id=batch_id,
                current_quantity=batch.current_quantity,
                requested_quantity=new_quantity,
            )

        db.session.add(
            ExpirationBatchAdjustment(
                batch_id=batch.id,
                previous_quantity=batch.current_quantity,
                new_quantity=new_quantity,
                reason=reason,
                created_at=utcnow(),
            )
        )
        batch.current_quantity = new_quantity
        if new_quantity == 0:
            batch.is_active = False
        db.session.commit()
        return batch

    batch = run_with_retry(_op)
    if not batch.is_active:
        current_app.logger.info("Expiration batch %s depleted and deactivated", batch_id)
    return batch


def get_batch_history(batch_id: int) -> list[ExpirationBatchAdjustment]:
    get_batch(batch_id)
    return (
        db.session.query(ExpirationBatchAdjustment)
        .filter_by(batch_id=batch_id)
        .order_by(ExpirationBatchAdjustment.created_at, ExpirationBatchAdjustment.id)
        .all()
    )


def list_active_batches(
    *,
    bucket: str | None = None,
    within_days: int | None = None,
    supplier_id: int | None = None,
    product_id: int | None = None,
    search: str | None = None,
    today: date | None = None,
) -> list[ExpirationBatch]:
    """
    Active batches with stock left, soonest expiration first.

    bucket selects one expiry class; within_days selects everything from
    today through today + within_days (not yet expired). Both are evaluated
    against `today`, never stored.
    """
    today = today or utctoday()

    q = db.session.query(ExpirationBatch).filter(
        ExpirationBatch.is_active.is_(True),
        ExpirationBatch.current_quantity > 0,
    )

    if bucket is not None:
        if bucket not in _BUCKET_RANGES:
            raise ValidationError(f"bucket must be one of: {', '.join(BUCKETS)}")
        min_days, max_days = _BUCKET_RANGES[bucket]
        if min_days is not None:
            q = q.filter(ExpirationBatch.expiration_date >= today + timedelta(days=min_days))
        if max_days is not None:
            q = q.filter(ExpirationBatch.expiration_date <= today + timedelta(days=max_days))

    if within_days is not None:
        if within_days < 0:
            raise ValidationError("within_days must be >= 0")
        q = q.filter(
            ExpirationBatch.expiration_date >= today,
            ExpirationBatch.expiration_date <= today + timedelta(days=within_days),
        )

    if supplier_id is not None:
        q = q.filter(ExpirationBatch.supplier_id == supplier_id)
    if product_id is not None:
        q = q.filter(ExpirationBatch.product_id == product_id)
    if search:
        q = q.join(Product, Product.id == ExpirationBatch.product_id).filter(
            or_(Product.name.contains(search), Product.sku.contains(search))
        )

    return q.order_by(ExpirationBatch.expiration_date, ExpirationBatch.id).all()
