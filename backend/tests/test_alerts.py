"""
Alert engine tests.

Verifies:
- Only the most severe stock rule fires
- Re-evaluating an unchanged product never duplicates an unread alert
- Reading an alert re-arms its (product, type) pair
- Expiration alerts honour the threshold and priority bands
- An alert failure never undoes the stock movement that triggered it
"""

from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from stockledger.extensions import db
from stockledger.models import Notification, Product
from stockledger.services import alert_service, expiration_service, inventory_service

from conftest import make_product


TODAY = date(2026, 3, 1)


def _unread(product_id=None, notification_type=None):
    q = db.session.query(Notification).filter_by(is_read=False)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    if notification_type is not None:
        q = q.filter_by(type=notification_type)
    return q.all()


# =============================================================================
# PURE RULES
# =============================================================================


class TestRules:

    @pytest.mark.parametrize(
        "stock,min_stock,expected",
        [
            (0, 10, "stock_out"),
            (0, 0, "stock_out"),
            (1, 10, "stock_critical"),
            (2, 10, "stock_critical"),
            (3, 10, "stock_low"),
            (10, 10, "stock_low"),
            (11, 10, None),
            (1, 2, "stock_critical"),
            (2, 2, "stock_low"),
            (5, 0, None),
        ],
    )
    def test_stock_level(self, stock, min_stock, expected):
        assert alert_service.classify_stock_level(stock, min_stock) == expected

    @pytest.mark.parametrize(
        "days,priority",
        [(0, "critical"), (7, "critical"), (8, "high"), (14, "high"), (15, "normal"), (30, "normal")],
    )
    def test_expiration_priority(self, days, priority):
        assert alert_service.classify_expiration_priority(days) == priority


# =============================================================================
# STOCK ALERTS
# =============================================================================


class TestStockAlerts:

    def test_low_stock_is_idempotent(self, db_session, supplier):
        product = make_product(db_session, sku="LOW", stock=8, min_stock=10, supplier=supplier)

        first = alert_service.evaluate_product_stock(product.id)
        second = alert_service.evaluate_product_stock(product.id)

        assert first is not None
        assert first.type == "stock_low"
        assert first.priority == "normal"
        assert second is None
        assert len(_unread(product.id, "stock_low")) == 1

    def test_most_severe_rule_only(self, db_session, supplier):
        product = make_product(db_session, sku="CRIT", stock=1, min_stock=10, supplier=supplier)
        alert_service.evaluate_product_stock(product.id)

        assert [n.type for n in _unread(product.id)] == ["stock_critical"]
        assert _unread(product.id)[0].priority == "high"

    def test_healthy_stock_creates_nothing(self, db_session, product):
        assert alert_service.evaluate_product_stock(product.id) is None
        assert _unread() == []

    def test_mark_read_rearms_alert(self, db_session, supplier):
        product = make_product(db_session, sku="REARM", stock=3, min_stock=10, supplier=supplier)
        first = alert_service.evaluate_product_stock(product.id)

        assert alert_service.mark_read([first.id]) == 1
        second = alert_service.evaluate_product_stock(product.id)

        assert second is not None
        assert second.id != first.id
        assert db.session.query(Notification).filter_by(product_id=product.id).count() == 2

    def test_storage_rejects_duplicate_unread_key(self, db_session, product):
        db_session.add(Notification(type="stock_low", title="a", message="a",
                                    product_id=product.id, unread_key=f"stock_low:{product.id}"))
        db_session.commit()
        db_session.add(Notification(type="stock_low", title="b", message="b",
                                    product_id=product.id, unread_key=f"stock_low:{product.id}"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_movement_triggers_evaluation(self, db_session, product):
        inventory_service.append_movement(
            product_id=product.id, movement_type="sale", quantity_delta=-15, reason="Sale")
        assert [n.type for n in _unread(product.id)] == ["stock_low"]

        inventory_service.append_movement(
            product_id=product.id, movement_type="sale", quantity_delta=-1, reason="Sale")
        assert [n.type for n in _unread(product.id)] == ["stock_low"]

    def test_alert_failure_does_not_undo_movement(self, db_session, product, monkeypatch):
        def boom(product_id):
            raise RuntimeError("alert store down")

        monkeypatch.setattr(alert_service, "evaluate_product_stock", boom)

        movement = inventory_service.append_movement(
            product_id=product.id, movement_type="sale", quantity_delta=-20, reason="Sale")

        assert movement.new_stock == 0
        assert db.session.get(Product, product.id).stock == 0
        assert _unread() == []

    def test_sweep_all_stock_levels(self, db_session, supplier, product):
        out = make_product(db_session, sku="OUT", stock=0, min_stock=1, supplier=supplier)
        low = make_product(db_session, sku="LOW2", stock=4, min_stock=5, supplier=supplier)

        created = alert_service.evaluate_all_stock_levels()
        assert {(n.product_id, n.type) for n in created} == {(out.id, "stock_out"), (low.id, "stock_low")}

        assert alert_service.evaluate_all_stock_levels() == []


# =============================================================================
# EXPIRATION ALERTS
# =============================================================================


class TestExpirationAlerts:

    def test_threshold_and_priority(self, db_session, product, product_b):
        soon = expiration_service.create_batch(
            product_id=product.id, quantity=10, expiration_date=TODAY + timedelta(days=5))
        expiration_service.create_batch(
            product_id=product_b.id, quantity=10, expiration_date=TODAY + timedelta(days=45))
        expiration_service.create_batch(
            product_id=product_b.id, quantity=10, expiration_date=TODAY - timedelta(days=1))

        created = alert_service.evaluate_expirations(today=TODAY)

        assert len(created) == 1
        notification = created[0]
        assert notification.product_id == product.id
        assert notification.priority == "critical"
        assert notification.metadata_dict["expiration_batch_id"] == soon.id
        assert notification.metadata_dict["days_until_expiration"] == 5

    def test_custom_threshold(self, db_session, product):
        expiration_service.create_batch(
            product_id=product.id, quantity=10, expiration_date=TODAY + timedelta(days=45))
        assert len(alert_service.evaluate_expirations(threshold_days=60, today=TODAY)) == 1

    def test_expiration_alert_dedup(self, db_session, product):
        expiration_service.create_batch(
            product_id=product.id, quantity=10, expiration_date=TODAY + timedelta(days=10))

        assert len(alert_service.evaluate_expirations(today=TODAY)) == 1
        assert alert_service.evaluate_expirations(today=TODAY) == []
        assert len(_unread(product.id, "expiration")) == 1

    def test_depleted_batch_is_ignored(self, db_session, product):
        batch = expiration_service.create_batch(
            product_id=product.id, quantity=10, expiration_date=TODAY + timedelta(days=3))
        expiration_service.set_current_quantity(batch.id, 0)

        assert alert_service.evaluate_expirations(today=TODAY) == []


# =============================================================================
# READ SIDE
# =============================================================================


class TestReadSide:

    def _seed(self, count):
        for i in range(count):
            alert_service.create_notification(
                notification_type="system", title=f"n{i}", message="m", priority="low")

    def test_pagination(self, db_session):
        self._seed(5)

        page = alert_service.list_notifications(page=2, limit=2)
        assert len(page["notifications"]) == 2
        assert page["pagination"]["total_count"] == 5
        assert page["pagination"]["total_pages"] == 3
        assert page["pagination"]["has_next_page"] is True
        assert page["pagination"]["has_prev_page"] is True

    def test_counts_mark_all_read_and_delete(self, db_session):
        self._seed(3)

        counts = alert_service.notification_counts()
        assert counts["unread_count"] == 3
        assert counts["type_counts"] == {"system": 3}

        assert alert_service.mark_read() == 3
        assert alert_service.notification_counts()["unread_count"] == 0
        assert alert_service.list_notifications(is_read=True)["pagination"]["total_count"] == 3

        assert alert_service.delete_notifications() == 3
        assert alert_service.notification_counts()["total_count"] == 0

    def test_invalid_priority_rejected(self, db_session):
        with pytest.raises(ValueError):
            alert_service.create_notification(
                notification_type="system", title="x", message="x", priority="urgent")
