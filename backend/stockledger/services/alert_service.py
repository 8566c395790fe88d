# Overview: AlertEngine; derives deduplicated notifications from stock and batch thresholds.

from __future__ import annotations

import json
from datetime import date, timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ExpirationBatch, Notification, Product
from ..validation import ValidationError
from stockledger.time_utils import utctoday
from .errors import NotFoundError
from .expiration_service import days_until_expiration

"""
AlertEngine rules (authoritative)

Stock, evaluated per product after every ledger write; only the single most
severe matching rule fires:
- stock == 0                                   -> stock_out      (critical)
- stock <= max(1, floor(min_stock * ratio))    -> stock_critical (high)
- stock <= min_stock                           -> stock_low      (normal)

Expiration, evaluated per active batch with stock left and
0 <= days until expiration <= threshold (default 30):
- <= 7 days -> critical, <= 14 days -> high, otherwise normal

Dedup: a notification is never created while an unread one with the same
(product_id, type) exists. Notification.unread_key (UNIQUE) backs the check
at the storage layer, so two concurrent evaluations cannot both insert.
"""

TYPE_STOCK_OUT = "stock_out"
TYPE_STOCK_CRITICAL = "stock_critical"
TYPE_STOCK_LOW = "stock_low"
TYPE_EXPIRATION = "expiration"

PRIORITY_LOW = "low"
PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"
PRIORITY_CRITICAL = "critical"
PRIORITIES = (PRIORITY_LOW, PRIORITY_NORMAL, PRIORITY_HIGH, PRIORITY_CRITICAL)

STOCK_ALERT_PRIORITIES = {
    TYPE_STOCK_OUT: PRIORITY_CRITICAL,
    TYPE_STOCK_CRITICAL: PRIORITY_HIGH,
    TYPE_STOCK_LOW: PRIORITY_NORMAL,
}


# =============================================================================
# PURE RULES
# =============================================================================

def classify_stock_level(stock: int, min_stock: int, critical_ratio: float = 0.25) -> str | None:
    """Most severe stock alert type for the given levels, or None."""
    if stock == 0:
        return TYPE_STOCK_OUT
    if stock <= max(1, int(min_stock * critical_ratio)):
        return TYPE_STOCK_CRITICAL
    if stock <= min_stock:
        return TYPE_STOCK_LOW
    return None


def classify_expiration_priority(days_until: int) -> str:
    if days_until <= 7:
        return PRIORITY_CRITICAL
    if days_until <= 14:
        return PRIORITY_HIGH
    return PRIORITY_NORMAL


def unread_key_for(notification_type: str, product_id: int | None) -> str | None:
    if product_id is None:
        return None
    return f"{notification_type}:{product_id}"


# =============================================================================
# CREATION
# =============================================================================

def has_unread(notification_type: str, product_id: int) -> bool:
    return db.session.query(Notification.id).filter_by(
        product_id=product_id,
        type=notification_type,
        is_read=False,
    ).first() is not None


def create_notification(
    *,
    notification_type: str,
    title: str,
    message: str,
    priority: str = PRIORITY_NORMAL,
    product_id: int | None = None,
    metadata: dict | None = None,
) -> Notification | None:
    """
    Create a notification unless an unread one for (product_id, type)
    already exists. Returns None when deduplicated.
    """
    if priority not in PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(PRIORITIES)}")

    if product_id is not None and has_unread(notification_type, product_id):
        return None

    notification = Notification(
        type=notification_type,
        title=title,
        message=message,
        priority=priority,
        product_id=product_id,
        is_read=False,
        metadata_json=json.dumps(metadata) if metadata else None,
        unread_key=unread_key_for(notification_type, product_id),
    )
    db.session.add(notification)
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent evaluation stored the same unread alert first
        db.session.rollback()
        return None

    current_app.logger.info("Notification created: %s (%s) product=%s", title, notification_type, product_id)
    return notification


_STOCK_TITLES = {
    TYPE_STOCK_OUT: "Out of stock",
    TYPE_STOCK_CRITICAL: "Critical stock",
    TYPE_STOCK_LOW: "Low stock",
}


def _stock_message(alert_type: str, product: Product) -> str:
    if alert_type == TYPE_STOCK_OUT:
        return f'Product "{product.name}" is out of stock'
    if alert_type == TYPE_STOCK_CRITICAL:
        return f'Product "{product.name}" is critically low ({product.stock} units left)'
    return f'Product "{product.name}" is running low ({product.stock} units left)'


# =============================================================================
# STOCK EVALUATION
# =============================================================================

def evaluate_product_stock(product_id: int) -> Notification | None:
    """Evaluate one product; returns the created notification, if any."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("product not found", product_id=product_id)
    if not product.is_active:
        return None

    ratio = current_app.config.get("STOCK_CRITICAL_RATIO", 0.25)
    alert_type = classify_stock_level(product.stock, product.min_stock, ratio)
    if alert_type is None:
        return None

    return create_notification(
        notification_type=alert_type,
        title=_STOCK_TITLES[alert_type],
        message=_stock_message(alert_type, product),
        priority=STOCK_ALERT_PRIORITIES[alert_type],
        product_id=product.id,
        metadata={
            "product_name": product.name,
            "sku": product.sku,
            "stock": product.stock,
            "min_stock": product.min_stock,
        },
    )


def evaluate_product_stock_best_effort(product_id: int) -> Notification | None:
    """
    Post-commit hook for ledger writes. Failures are logged and swallowed:
    an alert problem must never undo the stock or cash mutation that
    triggered it.
    """
    try:
        return evaluate_product_stock(product_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to evaluate stock alerts for product %s", product_id)
        return None


def evaluate_all_stock_levels() -> list[Notification]:
    created = []
    product_ids = [pid for (pid,) in db.session.query(Product.id).filter(Product.is_active.is_(True)).all()]
    for product_id in product_ids:
        notification = evaluate_product_stock_best_effort(product_id)
        if notification is not None:
            created.append(notification)
    return created


# =============================================================================
# EXPIRATION EVALUATION
# =============================================================================

def evaluate_expirations(*, threshold_days: int | None = None, today: date | None = None) -> list[Notification]:
    """One pass over active batches expiring within the threshold."""
    if threshold_days is None:
        threshold_days = current_app.config.get("EXPIRATION_ALERT_DAYS", 30)
    today = today or utctoday()

    batches = (
        db.session.query(ExpirationBatch)
        .filter(
            ExpirationBatch.is_active.is_(True),
            ExpirationBatch.current_quantity > 0,
            ExpirationBatch.expiration_date >= today,
            ExpirationBatch.expiration_date <= today + timedelta(days=threshold_days),
        )
        .order_by(ExpirationBatch.expiration_date, ExpirationBatch.id)
        .all()
    )

    created = []
    for batch in batches:
        try:
            notification = _notify_expiring_batch(batch, today)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to evaluate expiration alert for batch %s", batch.id)
            continue
        if notification is not None:
            created.append(notification)
    return created


def _notify_expiring_batch(batch: ExpirationBatch, today: date) -> Notification | None:
    days = days_until_expiration(batch.expiration_date, today)
    product = batch.product
    plural = "s" if days != 1 else ""
    return create_notification(
        notification_type=TYPE_EXPIRATION,
        title="Product expiring soon",
        message=(
            f'Product "{product.name}" expires in {days} day{plural} '
            f"({batch.current_quantity} units left)"
        ),
        priority=classify_expiration_priority(days),
        product_id=batch.product_id,
        metadata={
            "expiration_batch_id": batch.id,
            "expiration_date": batch.expiration_date.isoformat(),
            "current_quantity": batch.current_quantity,
            "supplier_name": batch.supplier.name if batch.supplier else None,
            "days_until_expiration": days,
        },
    )


def refresh_alerts(*, today: date | None = None) -> dict:
    """Sweep every stock level and batch. Idempotent thanks to dedup."""
    stock = evaluate_all_stock_levels()
    expiring = evaluate_expirations(today=today)
    return {"stock_notifications": len(stock), "expiration_notifications": len(expiring)}


# =============================================================================
# READ SIDE
# =============================================================================

def list_notifications(
    *,
    is_read: bool | None = None,
    notification_type: str | None = None,
    priority: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    page = max(1, page)
    limit = max(1, min(limit, 200))

    q = db.session.query(Notification)
    if is_read is not None:
        q = q.filter(Notification.is_read.is_(is_read))
    if notification_type:
        q = q.filter(Notification.type == notification_type)
    if priority:
        q = q.filter(Notification.priority == priority)

    total = q.count()
    items = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    total_pages = (total + limit - 1) // limit
    return {
        "notifications": [n.to_dict() for n in items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total_count": total,
            "total_pages": total_pages,
            "has_next_page": page < total_pages,
            "has_prev_page": page > 1,
        },
    }


def notification_counts() -> dict:
    unread = db.session.query(func.count(Notification.id)).filter(Notification.is_read.is_(False)).scalar()
    total = db.session.query(func.count(Notification.id)).scalar()
    rows = (
        db.session.query(Notification.type, func.count(Notification.id))
        .filter(Notification.is_read.is_(False))
        .group_by(Notification.type)
        .all()
    )
    return {
        "unread_count": int(unread or 0),
        "total_count": int(total or 0),
        "type_counts": {t: int(c) for t, c in rows},
    }


def mark_read(ids: list[int] | None = None) -> int:
    """Mark the given notifications (all unread when ids is None) as read."""
    q = db.session.query(Notification).filter(Notification.is_read.is_(False))
    if ids is not None:
        q = q.filter(Notification.id.in_(ids))
    count = q.update(
        {Notification.is_read: True, Notification.unread_key: None},
        synchronize_session=False,
    )
    db.session.commit()
    return count


def delete_notifications(ids: list[int] | None = None) -> int:
    q = db.session.query(Notification)
    if ids is not None:
        q = q.filter(Notification.id.in_(ids))
    count = q.delete(synchronize_session=False)
    db.session.commit()
    return count
