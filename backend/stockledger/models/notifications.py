from __future__ import annotations

import json

from ..extensions import db
from stockledger.time_utils import utcnow, to_utc_z


class Notification(db.Model):
    """
    Alert emitted by the AlertEngine (or any caller).

    DEDUP:
    unread_key is "<type>:<product_id>" while a product-scoped notification
    is unread and NULL otherwise. It is UNIQUE, so a second unread
    notification for the same (product_id, type) cannot be stored. Marking
    the notification read clears the key and re-arms the alert.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_read_created", "is_read", "created_at"),
        db.Index("ix_notifications_product_type", "product_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(16), nullable=False, default="normal")  # low, normal, high, critical

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    metadata_json = db.Column(db.Text, nullable=True)
    unread_key = db.Column(db.String(64), nullable=True, unique=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")

    @property
    def metadata_dict(self) -> dict:
        if not self.metadata_json:
            return {}
        return json.loads(self.metadata_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "product_id": self.product_id,
            "is_read": self.is_read,
            "metadata": self.metadata_dict,
            "created_at": to_utc_z(self.created_at),
        }
