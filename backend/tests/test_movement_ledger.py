"""
Movement ledger and stock account tests.

Verifies:
- stock == initial_stock + SUM(quantity_delta) after every write
- Stock never goes negative; a rejected movement writes nothing
- Movement kinds enforce their sign convention
- Absolute adjustments record a delta and the count status
- Replenishments write the movement, the receipt and the batch together
"""

from datetime import date, timedelta

import pytest

from stockledger.extensions import db
from stockledger.models import InventoryMovement, Notification, Product, ExpirationBatch
from stockledger.services import inventory_service
from stockledger.services.errors import InsufficientStockError, NotFoundError
from stockledger.validation import ConflictError, ValidationError

from conftest import make_product


def _movement_count(product_id):
    return db.session.query(InventoryMovement).filter_by(product_id=product_id).count()


# =============================================================================
# APPEND
# =============================================================================


class TestAppendMovement:

    def test_append_updates_stock_and_records_previous_and_new(self, db_session, product):
        movement = inventory_service.append_movement(
            product_id=product.id,
            movement_type="sale",
            quantity_delta=-3,
            reason="Counter sale",
        )

        assert movement.previous_stock == 20
        assert movement.new_stock == 17
        assert movement.quantity_delta == -3
        assert db.session.get(Product, product.id).stock == 17

    def test_ledger_consistency_after_mixed_movements(self, db_session, product):
        inventory_service.append_movement(
            product_id=product.id, movement_type="sale", quantity_delta=-4, reason="Sale")
        inventory_service.append_movement(
            product_id=product.id, movement_type="replenishment", quantity_delta=12, reason="Delivery")
        inventory_service.append_movement(
            product_id=product.id, movement_type="return-in", quantity_delta=1, reason="Return")
        inventory_service.adjust_stock(product_id=product.id, new_stock=25, reason="Count")

        assert inventory_service.get_ledger_stock(product.id) == 25
        assert db.session.get(Product, product.id).stock == 25
        assert inventory_service.verify_stock_ledger() == []

    def test_each_movement_chains_from_the_previous_one(self, db_session, product):
        for delta in (-2, -3, 5, -1):
            kind = "sale" if delta < 0 else "replenishment"
            inventory_service.append_movement(
                product_id=product.id, movement_type=kind, quantity_delta=delta, reason="x")

        movements = (
            db.session.query(InventoryMovement)
            .filter_by(product_id=product.id)
            .order_by(InventoryMovement.id)
            .all()
        )
        assert movements[0].previous_stock == 20
        for earlier, later in zip(movements, movements[1:]):
            assert later.previous_stock == earlier.new_stock
        assert movements[-1].new_stock == 19

    def test_sell_to_zero_then_oversell_is_rejected(self, db_session, supplier):
        product = make_product(db_session, sku="LAST-FIVE", stock=5, min_stock=2, supplier=supplier)

        movement = inventory_service.append_movement(
            product_id=product.id, movement_type="sale", quantity_delta=-5, reason="Sale")
        assert movement.new_stock == 0

        alerts = db.session.query(Notification).filter_by(product_id=product.id, is_read=False).all()
        assert [n.type for n in alerts] == ["stock_out"]

        with pytest.raises(InsufficientStockError):
            inventory_service.append_movement(
                product_id=product.id, movement_type="sale", quantity_delta=-1, reason="Sale")

        assert db.session.get(Product, product.id).stock == 0
        assert _movement_count(product.id) == 1

    def test_insufficient_stock_carries_details(self, db_session, product):
        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.append_movement(
                product_id=product.id, movement_type="sale", quantity_delta=-21, reason="Bulk")

        err = exc_info.value
        assert err.status_code == 409
        assert err.details["current_stock"] == 20
        assert err.to_dict()["code"] == "insufficient_stock"
        assert _movement_count(product.id) == 0

    @pytest.mark.parametrize(
        "movement_type,delta",
        [
            ("sale", 3),
            ("sale", 0),
            ("replenishment", -3),
            ("replenishment", 0),
            ("return-in", -1),
        ],
    )
    def test_sign_convention_enforced(self, db_session, product, movement_type, delta):
        with pytest.raises(ValidationError):
            inventory_service.append_movement(
                product_id=product.id, movement_type=movement_type, quantity_delta=delta, reason="x")
        assert _movement_count(product.id) == 0

    def test_unknown_movement_type_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            inventory_service.append_movement(
                product_id=product.id, movement_type="theft", quantity_delta=-1, reason="x")

    def test_missing_product(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.append_movement(
                product_id=9999, movement_type="sale", quantity_delta=-1, reason="x")

    def test_inactive_product_rejected(self, db_session, product):
        product.is_active = False
        db_session.commit()
        with pytest.raises(NotFoundError):
            inventory_service.append_movement(
                product_id=product.id, movement_type="sale", quantity_delta=-1, reason="x")


# =============================================================================
# STORAGE CONSTRAINTS
# =============================================================================


class TestStorageConstraints:

    def test_database_rejects_negative_stock(self, db_session, product):
        from sqlalchemy.exc import IntegrityError

        with pytest.raises(IntegrityError):
            db_session.query(Product).filter_by(id=product.id).update({"stock": -1})
        db_session.rollback()

    def test_database_rejects_inconsistent_movement(self, db_session, product):
        from sqlalchemy.exc import IntegrityError

        db_session.add(InventoryMovement(
            product_id=product.id, type="sale", quantity_delta=-1,
            previous_stock=20, new_stock=18, reason="bad arithmetic",
        ))
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()


# =============================================================================
# ADJUST
# =============================================================================


class TestAdjustStock:

    def test_adjust_records_delta_and_marks_adjusted(self, db_session, product):
        movement = inventory_service.adjust_stock(
            product_id=product.id, new_stock=14, reason="Monthly count")

        assert movement.type == "adjustment"
        assert movement.quantity_delta == -6
        assert movement.reason == "Adjustment: Monthly count"

        refreshed = db.session.get(Product, product.id)
        assert refreshed.stock == 14
        assert refreshed.last_inventory_status == "ADJUSTED"
        assert refreshed.last_inventory_date is not None

    def test_adjust_to_same_value_marks_ok(self, db_session, product):
        movement = inventory_service.adjust_stock(product_id=product.id, new_stock=20, reason="Count")

        assert movement.quantity_delta == 0
        refreshed = db.session.get(Product, product.id)
        assert refreshed.stock == 20
        assert refreshed.last_inventory_status == "OK"

    def test_adjust_upward(self, db_session, product):
        inventory_service.adjust_stock(product_id=product.id, new_stock=31, reason="Found a case")
        assert db.session.get(Product, product.id).stock == 31
        assert inventory_service.verify_stock_ledger(product.id) == []

    def test_adjust_to_negative_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product_id=product.id, new_stock=-1, reason="x")
        assert _movement_count(product.id) == 0

    def test_mark_ok_writes_no_movement(self, db_session, product):
        inventory_service.mark_product_ok(product.id)

        refreshed = db.session.get(Product, product.id)
        assert refreshed.last_inventory_status == "OK"
        assert _movement_count(product.id) == 0

    def test_inventory_filters(self, db_session, product, product_b):
        inventory_service.adjust_stock(product_id=product.id, new_stock=19, reason="Count")

        adjusted = inventory_service.list_products_for_inventory(status="adjusted")
        not_worked = inventory_service.list_products_for_inventory(status="not_worked_on")

        assert [p.id for p in adjusted] == [product.id]
        assert [p.id for p in not_worked] == [product_b.id]

        with pytest.raises(ValidationError):
            inventory_service.list_products_for_inventory(status="bogus")


# =============================================================================
# PRODUCTS AND REPLENISHMENTS
# =============================================================================


class TestProductsAndReplenishments:

    def test_create_product_records_initial_stock(self, db_session, supplier):
        product = inventory_service.create_product(
            sku="EGGS-12", name="Eggs x12", initial_stock=30, min_stock=6, supplier_id=supplier.id)

        assert product.stock == 30
        assert product.initial_stock == 30
        assert _movement_count(product.id) == 0
        assert inventory_service.get_ledger_stock(product.id) == 30

    def test_duplicate_sku_rejected(self, db_session, product):
        with pytest.raises(ConflictError):
            inventory_service.create_product(sku=product.sku, name="Duplicate")

    def test_replenishment_writes_movement_and_batch(self, db_session, product, supplier):
        expires = date.today() + timedelta(days=60)
        replenishment = inventory_service.create_replenishment(
            product_id=product.id,
            quantity=24,
            unit_price_cents=80,
            delivery_cost_cents=300,
            supplier_id=supplier.id,
            receipt_number="R-1001",
            expiration_date=expires,
        )

        assert replenishment.total_price_cents == 24 * 80 + 300
        movement = db.session.get(InventoryMovement, replenishment.movement_id)
        assert movement.type == "replenishment"
        assert movement.quantity_delta == 24
        assert movement.financial_impact_cents == -(24 * 80 + 300)
        assert db.session.get(Product, product.id).stock == 44

        batch = db.session.query(ExpirationBatch).filter_by(replenishment_id=replenishment.id).one()
        assert batch.original_quantity == 24
        assert batch.current_quantity == 24
        assert batch.expiration_date == expires
        assert batch.supplier_id == supplier.id

    def test_replenishment_without_expiry_creates_no_batch(self, db_session, product):
        inventory_service.create_replenishment(product_id=product.id, quantity=5)
        assert db.session.query(ExpirationBatch).count() == 0

    def test_replenishment_with_unknown_supplier_writes_nothing(self, db_session, product):
        with pytest.raises(NotFoundError):
            inventory_service.create_replenishment(product_id=product.id, quantity=5, supplier_id=9999)
        assert db.session.get(Product, product.id).stock == 20
        assert _movement_count(product.id) == 0


# =============================================================================
# QUERIES AND AUDIT
# =============================================================================


class TestQueriesAndAudit:

    def test_list_movements_filters_and_orders_newest_first(self, db_session, product, product_b):
        inventory_service.append_movement(
            product_id=product.id, movement_type="sale", quantity_delta=-1, reason="first")
        inventory_service.append_movement(
            product_id=product_b.id, movement_type="sale", quantity_delta=-1, reason="other")
        inventory_service.append_movement(
            product_id=product.id, movement_type="replenishment", quantity_delta=3, reason="second")

        movements = inventory_service.list_movements(product_id=product.id)
        assert [m.reason for m in movements] == ["second", "first"]

        sales_only = inventory_service.list_movements(movement_type="sale")
        assert {m.product_id for m in sales_only} == {product.id, product_b.id}

    def test_verify_reports_drift(self, db_session, product):
        inventory_service.append_movement(
            product_id=product.id, movement_type="sale", quantity_delta=-2, reason="Sale")

        # Out-of-band write that bypasses the ledger
        db_session.query(Product).filter_by(id=product.id).update({"stock": 50})
        db_session.commit()

        drift = inventory_service.verify_stock_ledger()
        assert drift == [{
            "product_id": product.id,
            "sku": product.sku,
            "cached_stock": 50,
            "ledger_stock": 18,
            "difference": 32,
        }]
