"""
Sales Service

WHY: Sales are the main writer of both ledgers. Posting a sale moves stock
out through the MovementLedger and, when paid in cash, credits the drawer.
Both happen in one transaction: reconciliation is only accurate if a sale
never lands in one ledger without the other.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleLine
from ..models.inventory import MOVEMENT_RETURN_IN, MOVEMENT_SALE
from ..models.sales import PAYMENT_CASH, SALE_CANCELLED, SALE_COMPLETED
from ..validation import ConflictError, SaleLineRequest, ReturnLineRequest, ValidationError
from stockledger.time_utils import utcnow
from .cash_session_service import _record_cash_sale_inner, _reverse_cash_sale_inner
from .concurrency import lock_for_update, run_with_retry
from .errors import NotFoundError
from .inventory_service import _append_movement_inner, _evaluate_alerts_after_commit, _get_product


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("sale not found", sale_id=sale_id)
    return sale


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFoundError("sale not found", sale_id=sale_id)
    return sale


def list_sales(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    payment_method: str | None = None,
    status: str | None = None,
    cash_session_id: int | None = None,
    limit: int = 200,
) -> list[Sale]:
    q = db.session.query(Sale)
    if start is not None:
        q = q.filter(Sale.sale_date >= start)
    if end is not None:
        q = q.filter(Sale.sale_date <= end)
    if payment_method:
        q = q.filter(Sale.payment_method == payment_method)
    if status:
        q = q.filter(Sale.status == status)
    if cash_session_id is not None:
        q = q.filter(Sale.cash_session_id == cash_session_id)
    return q.order_by(Sale.sale_date.desc(), Sale.id.desc()).limit(limit).all()


def create_sale(
    *,
    lines: list[SaleLineRequest] | tuple[SaleLineRequest, ...],
    payment_method: str,
    discount_cents: int = 0,
    tax_cents: int = 0,
    cashier_name: str | None = None,
    customer_name: str | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Post a sale.

    One unit of work: sale row, lines, one `sale` movement per line and, for
    cash, the drawer credit. InsufficientStockError on any line aborts all
    of it, including the cash total.
    """
    if not lines:
        raise ValidationError("a sale needs at least one line")

    total_amount = sum(line.total_price_cents for line in lines)
    final_amount = total_amount - discount_cents + tax_cents
    if final_amount < 0:
        raise ValidationError("discount cannot exceed the sale amount")

    def _op():
        sale = Sale(
            sale_date=utcnow(),
            status=SALE_COMPLETED,
            payment_method=payment_method,
            total_amount_cents=total_amount,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            final_amount_cents=final_amount,
            cashier_name=cashier_name,
            customer_name=customer_name,
            notes=notes,
        )
        db.session.add(sale)
        db.session.flush()

        for request in lines:
            product = _get_product(request.product_id, lock=True, require_active=True)
            movement = _append_movement_inner(
                product=product,
                movement_type=MOVEMENT_SALE,
                quantity_delta=-request.quantity,
                reason=f"Sale {sale.id}",
                reference=f"Sale {sale.id}",
                user_name=cashier_name,
                financial_impact_cents=request.total_price_cents,
            )
            db.session.add(
                SaleLine(
                    sale_id=sale.id,
                    product_id=request.product_id,
                    quantity=request.quantity,
                    unit_price_cents=request.unit_price_cents,
                    discount_cents=request.discount_cents,
                    total_price_cents=request.total_price_cents,
                    returned_quantity=0,
                    movement_id=movement.id,
                )
            )

        if payment_method == PAYMENT_CASH:
            _record_cash_sale_inner(final_amount, sale)

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s posted: %s %s across %s lines",
        sale.id, payment_method, final_amount, len(lines),
    )
    _evaluate_alerts_after_commit([line.product_id for line in lines])
    return sale


def cancel_sale(sale_id: int, *, reason: str | None = None) -> Sale:
    """
    Cancel a completed sale: every unit not already returned goes back into
    stock through a compensating `return-in` movement.
    """
    def _op():
        sale = _lock_sale(sale_id)
        if sale.status == SALE_CANCELLED:
            raise ConflictError(f"sale {sale_id} is already cancelled")

        for line in sale.lines:
            remaining = line.quantity - line.returned_quantity
            if remaining <= 0:
                continue
            product = _get_product(line.product_id, lock=True)
            _append_movement_inner(
                product=product,
                movement_type=MOVEMENT_RETURN_IN,
                quantity_delta=remaining,
                reason=f"Cancellation of sale {sale.id}" + (f": {reason}" if reason else ""),
                reference=f"Sale {sale.id}",
            )
            line.returned_quantity = line.quantity

        if sale.payment_method == PAYMENT_CASH:
            _reverse_cash_sale_inner(sale)

        sale.status = SALE_CANCELLED
        sale.cancelled_at = utcnow()
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s cancelled", sale_id)
    _evaluate_alerts_after_commit([line.product_id for line in sale.lines])
    return sale


def return_sale_items(sale_id: int, items: list[ReturnLineRequest] | tuple[ReturnLineRequest, ...], *, reason: str) -> int:
    """
    Partial return. Returns the refunded amount in cents, prorated from each
    line's net total.

    Raises:
        ValidationError: a line is not on this sale, or more units would be
            returned than were sold
        ConflictError: the sale is cancelled
    """
    if not items:
        raise ValidationError("items must not be empty")

    def _op():
        sale = _lock_sale(sale_id)
        if sale.status == SALE_CANCELLED:
            raise ConflictError(f"sale {sale_id} is cancelled")

        lines_by_id = {line.id: line for line in sale.lines}
        refunded = 0
        for item in items:
            line = lines_by_id.get(item.sale_line_id)
            if line is None:
                raise ValidationError(
                    f"sale line {item.sale_line_id} does not belong to sale {sale_id}"
                )
            returnable = line.quantity - line.returned_quantity
            if item.quantity > returnable:
                raise ValidationError(
                    f"cannot return {item.quantity} units of line {line.id}; {returnable} returnable"
                )

            product = _get_product(line.product_id, lock=True)
            _append_movement_inner(
                product=product,
                movement_type=MOVEMENT_RETURN_IN,
                quantity_delta=item.quantity,
                reason=f"Return: {reason}",
                reference=f"Sale {sale.id}",
                financial_impact_cents=-(line.total_price_cents * item.quantity // line.quantity),
            )
            line.returned_quantity += item.quantity
            refunded += line.total_price_cents * item.quantity // line.quantity

        db.session.commit()
        return sale, refunded

    sale, refunded = run_with_retry(_op)
    current_app.logger.info("Return on sale %s: refunded %s (%s)", sale_id, refunded, reason)
    _evaluate_alerts_after_commit([line.product_id for line in sale.lines])
    return refunded
