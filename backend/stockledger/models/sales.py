from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import utcnow, to_utc_z

SALE_COMPLETED = "completed"
SALE_CANCELLED = "cancelled"

PAYMENT_CASH = "cash"
PAYMENT_METHODS = ("cash", "card", "mobile_money", "check", "credit")


class Sale(db.Model):
    """
    Sale document. Posting one writes a `sale` movement per line and, for cash
    payments, bumps the cash session counters in the same transaction.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_payment_date", "payment_method", "sale_date"),
        db.Index("ix_sales_session", "cash_session_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_date = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)
    payment_method = db.Column(db.String(32), nullable=False)

    # All amounts in minor currency units
    total_amount_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False)

    cashier_name = db.Column(db.String(128), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Session whose counters this sale bumped (cash only)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    cash_session = db.relationship("CashSession", backref=db.backref("sales", lazy=True))

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_date": to_utc_z(self.sale_date),
            "status": self.status,
            "payment_method": self.payment_method,
            "total_amount_cents": self.total_amount_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "final_amount_cents": self.final_amount_cents,
            "cashier_name": self.cashier_name,
            "customer_name": self.customer_name,
            "notes": self.notes,
            "cash_session_id": self.cash_session_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale document."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("returned_quantity <= quantity", name="ck_sale_lines_returned_bounds"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_price_cents = db.Column(db.Integer, nullable=False)
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)

    # The `sale` movement this line produced
    movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "total_price_cents": self.total_price_cents,
            "returned_quantity": self.returned_quantity,
            "movement_id": self.movement_id,
        }
