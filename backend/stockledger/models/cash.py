from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import utcnow, to_utc_z

SESSION_OPEN = "open"
SESSION_COUNTED = "counted"
SESSION_CLOSED = "closed"
SESSION_UNASSIGNED = "unassigned"
SESSION_STATUSES = (SESSION_OPEN, SESSION_COUNTED, SESSION_CLOSED, SESSION_UNASSIGNED)

# drawer_slot values
SLOT_ACTIVE = "active"
SLOT_UNASSIGNED = "unassigned"


class CashSession(db.Model):
    """
    One cashier's custody of the cash drawer.

    LIFECYCLE:
    - open: created by open_session
    - counted: reconciled at least once, still holds the drawer
    - closed: terminal, end_time set, immutable afterward
    - unassigned: parking session for cash sales taken while no drawer is held

    EXCLUSIVITY:
    drawer_slot is UNIQUE. The session holding the drawer (open or counted)
    carries "active", the parking session carries "unassigned", closed
    sessions carry NULL. Two concurrent opens cannot both commit.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index("ix_cash_sessions_status_start", "status", "start_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)
    drawer_slot = db.Column(db.String(16), nullable=True, unique=True)

    cashier_name = db.Column(db.String(128), nullable=True)

    # All amounts in minor currency units
    opening_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_amount_cents = db.Column(db.Integer, nullable=True)
    actual_amount_cents = db.Column(db.Integer, nullable=True)

    # Cache of the cash sale history; refreshed by count/close/recalculate
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_transactions = db.Column(db.Integer, nullable=False, default=0)

    # expected = opening + cash sales; difference = expected - actual (positive = short)
    expected_amount_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)

    session_date = db.Column(db.Date, nullable=False, default=lambda: utcnow().date())
    start_time = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    end_time = db.Column(db.DateTime, nullable=True)
    last_counted_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "cashier_name": self.cashier_name,
            "opening_amount_cents": self.opening_amount_cents,
            "closing_amount_cents": self.closing_amount_cents,
            "actual_amount_cents": self.actual_amount_cents,
            "total_sales_cents": self.total_sales_cents,
            "total_transactions": self.total_transactions,
            "expected_amount_cents": self.expected_amount_cents,
            "difference_cents": self.difference_cents,
            "session_date": self.session_date.isoformat() if self.session_date else None,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "last_counted_at": to_utc_z(self.last_counted_at),
            "notes": self.notes,
            "version_id": self.version_id,
        }
