"""
Sales tests.

Verifies:
- A sale writes its lines, one movement per line and the cash credit together
- InsufficientStock on any line aborts the whole sale, cash total included
- Cancellation and returns put stock back through return-in movements
"""

import pytest

from stockledger.extensions import db
from stockledger.models import InventoryMovement, Product, Sale, SaleLine
from stockledger.services import cash_session_service, inventory_service, sales_service
from stockledger.services.errors import InsufficientStockError, NotFoundError
from stockledger.validation import ConflictError, ReturnLineRequest, SaleLineRequest, ValidationError


def _line(product, quantity, unit_price_cents=None, discount_cents=0):
    return SaleLineRequest(
        product_id=product.id,
        quantity=quantity,
        unit_price_cents=product.price_cents if unit_price_cents is None else unit_price_cents,
        discount_cents=discount_cents,
    )


class TestCreateSale:

    def test_sale_moves_stock_and_credits_drawer(self, db_session, product, product_b):
        session = cash_session_service.open_session(opening_amount_cents=1000)

        sale = sales_service.create_sale(
            lines=[_line(product, 2), _line(product_b, 1)],
            payment_method="cash",
            tax_cents=40,
        )

        assert sale.status == "completed"
        assert sale.total_amount_cents == 2 * 150 + 250
        assert sale.final_amount_cents == 2 * 150 + 250 + 40
        assert sale.cash_session_id == session.id
        assert db.session.get(Product, product.id).stock == 18
        assert db.session.get(Product, product_b.id).stock == 9

        lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id).all()
        assert len(lines) == 2
        movement = db.session.get(InventoryMovement, lines[0].movement_id)
        assert movement.type == "sale"
        assert movement.quantity_delta == -2
        assert movement.reference == f"Sale {sale.id}"

        refreshed = cash_session_service.get_session(session.id)
        assert refreshed.total_sales_cents == sale.final_amount_cents
        assert refreshed.total_transactions == 1

    def test_same_product_on_two_lines(self, db_session, product):
        sales_service.create_sale(
            lines=[_line(product, 3), _line(product, 4)],
            payment_method="card",
        )
        assert db.session.get(Product, product.id).stock == 13
        assert inventory_service.verify_stock_ledger() == []

    def test_insufficient_stock_aborts_everything(self, db_session, product, product_b):
        session = cash_session_service.open_session(opening_amount_cents=0)

        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(
                lines=[_line(product, 2), _line(product_b, 11)],
                payment_method="cash",
            )

        assert db.session.query(Sale).count() == 0
        assert db.session.query(SaleLine).count() == 0
        assert db.session.query(InventoryMovement).count() == 0
        assert db.session.get(Product, product.id).stock == 20
        assert db.session.get(Product, product_b.id).stock == 10

        refreshed = cash_session_service.get_session(session.id)
        assert refreshed.total_sales_cents == 0
        assert refreshed.total_transactions == 0

    def test_unknown_product_aborts_sale(self, db_session, product):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(
                lines=[_line(product, 1), SaleLineRequest(product_id=777, quantity=1, unit_price_cents=1)],
                payment_method="cash",
            )
        assert db.session.query(Sale).count() == 0
        assert db.session.get(Product, product.id).stock == 20

    def test_empty_sale_rejected(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.create_sale(lines=[], payment_method="cash")

    def test_discount_larger_than_sale_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            sales_service.create_sale(lines=[_line(product, 1)], payment_method="cash", discount_cents=1000)

    def test_sale_to_zero_raises_stock_out_alert(self, db_session, product_b):
        from stockledger.models import Notification

        sales_service.create_sale(lines=[_line(product_b, 10)], payment_method="card")
        alerts = db.session.query(Notification).filter_by(product_id=product_b.id).all()
        assert [a.type for a in alerts] == ["stock_out"]


class TestCancelAndReturn:

    def test_cancel_restores_stock(self, db_session, product):
        sale = sales_service.create_sale(lines=[_line(product, 5)], payment_method="card")

        cancelled = sales_service.cancel_sale(sale.id, reason="Customer changed mind")

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert db.session.get(Product, product.id).stock == 20
        returns = db.session.query(InventoryMovement).filter_by(type="return-in").all()
        assert [m.quantity_delta for m in returns] == [5]
        assert inventory_service.verify_stock_ledger() == []

    def test_cancel_twice_rejected(self, db_session, product):
        sale = sales_service.create_sale(lines=[_line(product, 1)], payment_method="card")
        sales_service.cancel_sale(sale.id)

        with pytest.raises(ConflictError):
            sales_service.cancel_sale(sale.id)
        assert db.session.get(Product, product.id).stock == 20

    def test_partial_return_then_cancel_only_restores_the_rest(self, db_session, product):
        sale = sales_service.create_sale(lines=[_line(product, 4)], payment_method="card")
        line_id = sale.lines[0].id

        refunded = sales_service.return_sale_items(
            sale.id, [ReturnLineRequest(sale_line_id=line_id, quantity=1)], reason="Damaged")
        assert refunded == 150
        assert db.session.get(Product, product.id).stock == 17

        sales_service.cancel_sale(sale.id)
        assert db.session.get(Product, product.id).stock == 20
        assert db.session.get(SaleLine, line_id).returned_quantity == 4

    def test_return_more_than_sold_rejected(self, db_session, product):
        sale = sales_service.create_sale(lines=[_line(product, 2)], payment_method="card")
        line_id = sale.lines[0].id
        sales_service.return_sale_items(
            sale.id, [ReturnLineRequest(sale_line_id=line_id, quantity=2)], reason="Wrong item")

        with pytest.raises(ValidationError):
            sales_service.return_sale_items(
                sale.id, [ReturnLineRequest(sale_line_id=line_id, quantity=1)], reason="Again")
        assert db.session.get(Product, product.id).stock == 20

    def test_return_line_from_another_sale_rejected(self, db_session, product):
        first = sales_service.create_sale(lines=[_line(product, 1)], payment_method="card")
        second = sales_service.create_sale(lines=[_line(product, 1)], payment_method="card")

        with pytest.raises(ValidationError):
            sales_service.return_sale_items(
                second.id, [ReturnLineRequest(sale_line_id=first.lines[0].id, quantity=1)], reason="x")

    def test_refund_is_prorated_from_line_total(self, db_session, product):
        sale = sales_service.create_sale(
            lines=[_line(product, 3, unit_price_cents=100, discount_cents=30)],
            payment_method="card",
        )
        refunded = sales_service.return_sale_items(
            sale.id, [ReturnLineRequest(sale_line_id=sale.lines[0].id, quantity=1)], reason="x")
        assert refunded == 90
