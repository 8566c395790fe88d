from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import utcnow, to_utc_z, to_iso_date


class ExpirationBatch(db.Model):
    """
    Dated, depletable lot created by a replenishment.

    MONOTONIC: current_quantity only ever moves down. A batch that reaches 0
    is deactivated and drops out of expiration queries and alerts. Restocking
    creates a new batch; it never refills an old one.
    """
    __tablename__ = "expiration_batches"
    __table_args__ = (
        db.CheckConstraint(
            "current_quantity >= 0 AND current_quantity <= original_quantity",
            name="ck_batches_quantity_bounds",
        ),
        db.Index("ix_batches_active_expiration", "is_active", "expiration_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    replenishment_id = db.Column(db.Integer, db.ForeignKey("replenishments.id"), nullable=True, unique=True)

    original_quantity = db.Column(db.Integer, nullable=False)
    current_quantity = db.Column(db.Integer, nullable=False)
    expiration_date = db.Column(db.Date, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", backref=db.backref("expiration_batches", lazy=True))
    supplier = db.relationship("Supplier")
    replenishment = db.relationship("Replenishment", backref=db.backref("expiration_batch", uselist=False))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "supplier_id": self.supplier_id,
            "replenishment_id": self.replenishment_id,
            "original_quantity": self.original_quantity,
            "current_quantity": self.current_quantity,
            "expiration_date": to_iso_date(self.expiration_date),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ExpirationBatchAdjustment(db.Model):
    """Append-only history of batch quantity changes (always downward)."""
    __tablename__ = "expiration_batch_adjustments"
    __table_args__ = (
        db.CheckConstraint("new_quantity <= previous_quantity", name="ck_batch_adjustments_downward"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("expiration_batches.id"), nullable=False, index=True)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    batch = db.relationship("ExpirationBatch", backref=db.backref("adjustments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
