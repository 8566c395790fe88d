"""
Cash Session Service

WHY: Cashier accountability. A session is one period of drawer custody;
counting and closing reconcile the cash physically in the drawer against
what the sale history says should be there.

DESIGN PRINCIPLES:
- At most one session holds the drawer (open or counted) at any time. The
  UNIQUE drawer_slot column enforces it at the storage layer, so two
  concurrent opens cannot both commit.
- Cash sales taken while nobody holds the drawer are parked on a single
  "unassigned" session.
- total_sales/total_transactions are a cache. count, close and
  recalculate_totals recompute them from the sale history, which is the
  single source of truth, so a stale counter never reaches a reconciliation.
- Sessions are immutable once closed.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import CashSession, Sale
from ..models.cash import (
    SESSION_OPEN,
    SESSION_COUNTED,
    SESSION_CLOSED,
    SESSION_UNASSIGNED,
    SLOT_ACTIVE,
    SLOT_UNASSIGNED,
)
from ..models.sales import PAYMENT_CASH, SALE_CANCELLED
from stockledger.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .errors import NotFoundError, SessionAlreadyOpenError, SessionNotOpenOrCountedError


UNASSIGNED_CASHIER_NAME = "Unassigned sales"


# =============================================================================
# LOOKUPS
# =============================================================================

def get_current_session() -> CashSession | None:
    """The session holding the drawer (open or counted), if any."""
    return db.session.query(CashSession).filter_by(drawer_slot=SLOT_ACTIVE).first()


def get_session(session_id: int) -> CashSession:
    session = db.session.get(CashSession, session_id)
    if session is None:
        raise NotFoundError("cash session not found", session_id=session_id)
    return session


def get_session_history(limit: int = 10) -> list[CashSession]:
    return (
        db.session.query(CashSession)
        .order_by(CashSession.start_time.desc(), CashSession.id.desc())
        .limit(limit)
        .all()
    )


def _lock_session(session_id: int) -> CashSession:
    session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
    if session is None:
        raise NotFoundError("cash session not found", session_id=session_id)
    return session


# =============================================================================
# OPEN
# =============================================================================

def open_session(
    *,
    opening_amount_cents: int,
    cashier_name: str | None = None,
    notes: str | None = None,
) -> CashSession:
    """
    Open a new cash session.

    Raises:
        SessionAlreadyOpenError: another session holds the drawer. The error
            details carry that session so the caller can redirect to it.
    """
    if opening_amount_cents < 0:
        raise ValueError("opening_amount_cents must be >= 0")

    def _op():
        existing = get_current_session()
        if existing is not None:
            raise SessionAlreadyOpenError(
                f"a cash session is already open (session {existing.id})",
                session=existing.to_dict(),
            )

        now = utcnow()
        session = CashSession(
            status=SESSION_OPEN,
            drawer_slot=SLOT_ACTIVE,
            cashier_name=cashier_name,
            opening_amount_cents=opening_amount_cents,
            total_sales_cents=0,
            total_transactions=0,
            expected_amount_cents=opening_amount_cents,
            session_date=now.date(),
            start_time=now,
            notes=notes,
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost the race: a concurrent open committed first
            db.session.rollback()
            winner = get_current_session()
            raise SessionAlreadyOpenError(
                "a cash session is already open",
                session=winner.to_dict() if winner else None,
            )
        return session

    session = run_with_retry(_op)
    current_app.logger.info(
        "Cash session %s opened by %s with %s", session.id, cashier_name, opening_amount_cents
    )
    return session


# =============================================================================
# CASH SALES
# =============================================================================

def _get_or_create_unassigned_inner() -> CashSession:
    session = db.session.query(CashSession).filter_by(drawer_slot=SLOT_UNASSIGNED).first()
    if session is not None:
        return session

    now = utcnow()
    session = CashSession(
        status=SESSION_UNASSIGNED,
        drawer_slot=SLOT_UNASSIGNED,
        cashier_name=UNASSIGNED_CASHIER_NAME,
        opening_amount_cents=0,
        total_sales_cents=0,
        total_transactions=0,
        session_date=now.date(),
        start_time=now,
        notes="Automatic session for cash sales taken with no open drawer",
    )
    # SAVEPOINT so a concurrent creator only costs us this insert
    try:
        with db.session.begin_nested():
            db.session.add(session)
    except IntegrityError:
        session = db.session.query(CashSession).filter_by(drawer_slot=SLOT_UNASSIGNED).one()
    return session


def get_or_create_unassigned_session() -> CashSession:
    def _op():
        session = _get_or_create_unassigned_inner()
        db.session.commit()
        return session

    return run_with_retry(_op)


def _record_cash_sale_inner(amount_cents: int, sale: Sale | None = None) -> CashSession:
    """
    Bump the drawer counters without commit. Caller owns the transaction
    (sales_service writes the sale, its movements and this in one unit).

    The increment is a single UPDATE ... SET x = x + :amount so concurrent
    cash sales never lose each other's updates. The UPDATE only matches a
    session that still holds a drawer slot; when a concurrent close got there
    first, the holder is looked up again and the credit goes there instead.
    """
    for _ in range(2):
        session = get_current_session() or _get_or_create_unassigned_inner()
        result = db.session.execute(
            update(CashSession)
            .where(
                CashSession.id == session.id,
                CashSession.status != SESSION_CLOSED,
                CashSession.drawer_slot.isnot(None),
            )
            .values(
                total_sales_cents=CashSession.total_sales_cents + amount_cents,
                total_transactions=CashSession.total_transactions + 1,
                version_id=CashSession.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        db.session.expire(session)
        if result.rowcount == 1:
            break
    else:
        # Drawer keeps changing hands; run_with_retry restarts the whole unit
        raise StaleDataError(f"cash session {session.id} closed while crediting a sale")

    if sale is not None:
        sale.cash_session_id = session.id
    db.session.flush()
    return session


def _reverse_cash_sale_inner(sale: Sale) -> None:
    """
    Take a cancelled cash sale back out of its session's counters. Closed
    sessions keep their reconciliation; the sale history already excludes
    cancelled sales from any later recalculation.
    """
    if sale.cash_session_id is None:
        return
    db.session.execute(
        update(CashSession)
        .where(
            CashSession.id == sale.cash_session_id,
            CashSession.status != SESSION_CLOSED,
        )
        .values(
            total_sales_cents=CashSession.total_sales_cents - sale.final_amount_cents,
            total_transactions=CashSession.total_transactions - 1,
            version_id=CashSession.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    session = db.session.get(CashSession, sale.cash_session_id)
    if session is not None:
        db.session.expire(session)


def record_cash_sale(amount_cents: int, sale: Sale | None = None) -> CashSession:
    """
    Standalone entry point: credit a cash amount to the session holding the
    drawer (or the unassigned session). Sales go through sales_service, which
    calls the inner helper inside its own transaction.
    """
    def _op():
        session = _record_cash_sale_inner(amount_cents, sale)
        db.session.commit()
        return session

    return run_with_retry(_op)


# =============================================================================
# RECONCILIATION
# =============================================================================

def _cash_sales_aggregate(session: CashSession, *, until: datetime | None) -> tuple[int, int]:
    """
    Authoritative cash takings for a session: (sum of final amounts, count).

    Regular sessions own every completed cash sale dated inside their window
    [start_time, until]. The unassigned session owns the sales explicitly
    parked on it, since its window overlaps other sessions.
    """
    q = db.session.query(
        func.coalesce(func.sum(Sale.final_amount_cents), 0),
        func.count(Sale.id),
    ).filter(
        Sale.payment_method == PAYMENT_CASH,
        Sale.status != SALE_CANCELLED,
    )
    if session.status == SESSION_UNASSIGNED:
        q = q.filter(Sale.cash_session_id == session.id)
    else:
        q = q.filter(Sale.sale_date >= session.start_time)
        if until is not None:
            q = q.filter(Sale.sale_date <= until)

    total, count = q.one()
    return int(total or 0), int(count or 0)


def _reconcile(session: CashSession, *, actual_amount_cents: int, until: datetime | None) -> None:
    total_sales, total_transactions = _cash_sales_aggregate(session, until=until)
    expected = session.opening_amount_cents + total_sales

    session.total_sales_cents = total_sales
    session.total_transactions = total_transactions
    session.expected_amount_cents = expected
    session.actual_amount_cents = actual_amount_cents
    session.difference_cents = expected - actual_amount_cents


def count_cash(session_id: int, *, actual_amount_cents: int, notes: str | None = None) -> CashSession:
    """
    Count the drawer without ending the session.

    expected = opening + cash sales since start_time (recomputed from sales)
    difference = expected - actual (positive = cash short, negative = surplus)

    Re-callable; moves the session to `counted`.
    """
    def _op():
        session = _lock_session(session_id)
        if session.status == SESSION_CLOSED:
            raise SessionNotOpenOrCountedError(
                "cash session is already closed", session=session.to_dict()
            )

        now = utcnow()
        _reconcile(session, actual_amount_cents=actual_amount_cents, until=now)
        if session.status != SESSION_UNASSIGNED:
            session.status = SESSION_COUNTED
        session.last_counted_at = now
        if notes is not None:
            session.notes = notes
        db.session.commit()
        return session

    return run_with_retry(_op)


def close_session(
    session_id: int,
    *,
    actual_amount_cents: int,
    closing_amount_cents: int | None = None,
    notes: str | None = None,
) -> CashSession:
    """
    Reconcile and end the session. Terminal: closed sessions never change again.

    Raises:
        SessionNotOpenOrCountedError: session is closed (or is the unassigned
            parking session, which is never closed)
    """
    def _op():
        session = _lock_session(session_id)
        if session.status not in (SESSION_OPEN, SESSION_COUNTED):
            raise SessionNotOpenOrCountedError(
                f"cash session is {session.status}, only open or counted sessions can be closed",
                session=session.to_dict(),
            )

        now = utcnow()
        _reconcile(session, actual_amount_cents=actual_amount_cents, until=now)
        session.closing_amount_cents = (
            closing_amount_cents if closing_amount_cents is not None else actual_amount_cents
        )
        session.status = SESSION_CLOSED
        session.drawer_slot = None
        session.end_time = now
        if notes is not None:
            session.notes = notes
        db.session.commit()
        return session

    session = run_with_retry(_op)
    current_app.logger.info(
        "Cash session %s closed: expected=%s actual=%s difference=%s",
        session.id, session.expected_amount_cents, session.actual_amount_cents, session.difference_cents,
    )
    return session


def recalculate_totals(session_id: int) -> CashSession:
    """
    Administrative repair: refresh the cached counters and expected amount
    from the sale history for the session's window. The recorded actual
    amount is kept, and difference follows the refreshed expected amount.

    Raises:
        SessionNotOpenOrCountedError: session is closed; its reconciliation
            is final
    """
    def _op():
        session = _lock_session(session_id)
        if session.status == SESSION_CLOSED:
            raise SessionNotOpenOrCountedError(
                "cash session is closed, its totals are final", session=session.to_dict()
            )
        total_sales, total_transactions = _cash_sales_aggregate(session, until=utcnow())

        session.total_sales_cents = total_sales
        session.total_transactions = total_transactions
        session.expected_amount_cents = session.opening_amount_cents + total_sales
        if session.actual_amount_cents is not None:
            session.difference_cents = session.expected_amount_cents - session.actual_amount_cents
        db.session.commit()
        return session

    session = run_with_retry(_op)
    current_app.logger.info(
        "Cash session %s totals recalculated: sales=%s transactions=%s",
        session.id, session.total_sales_cents, session.total_transactions,
    )
    return session
