"""
Transaction helper tests.

Verifies:
- Transient storage failures are retried, then surface as StorageUnavailable
- Business errors roll back immediately and are never retried
- Optimistic version conflicts on products are detected
- Threads writing through a file-backed database keep the ledger consistent
  and never hold two open drawers
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import CashSession, Product
from stockledger.services import cash_session_service, inventory_service
from stockledger.services.concurrency import run_with_retry
from stockledger.services.errors import (
    InsufficientStockError,
    SessionAlreadyOpenError,
    StorageUnavailableError,
)


def _locked_error():
    return OperationalError("UPDATE products ...", {}, Exception("database is locked"))


class TestRunWithRetry:

    def test_transient_failure_then_success(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 3:
                raise _locked_error()
            return "done"

        assert run_with_retry(op, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_exhausted_retries_raise_storage_unavailable(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(StorageUnavailableError) as exc_info:
            run_with_retry(op, attempts=4, backoff_base=0)

        assert len(calls) == 4
        assert exc_info.value.status_code == 503
        assert exc_info.value.details["attempts"] == 4

    def test_business_errors_are_not_retried(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise InsufficientStockError("no stock")

        with pytest.raises(InsufficientStockError):
            run_with_retry(op, attempts=3, backoff_base=0)
        assert len(calls) == 1

    def test_failed_attempt_leaves_no_partial_write(self, db_session, product):
        calls = []

        def op():
            calls.append(1)
            row = db.session.get(Product, product.id)
            row.name = f"attempt {len(calls)}"
            db.session.flush()
            if len(calls) == 1:
                raise _locked_error()
            db.session.commit()

        run_with_retry(op, attempts=2, backoff_base=0)
        assert db.session.get(Product, product.id).name == "attempt 2"

    def test_default_policy_comes_from_config(self, app, db_session):
        calls = []

        def op():
            calls.append(1)
            raise _locked_error()

        with pytest.raises(StorageUnavailableError):
            run_with_retry(op)
        assert len(calls) == app.config["LEDGER_RETRY_ATTEMPTS"]


class TestOptimisticVersion:

    def test_concurrent_writer_is_detected(self, db_session, product):
        stale = db.session.get(Product, product.id)
        version = stale.version_id

        # Another writer commits behind this session's back
        db.session.execute(
            Product.__table__.update()
            .where(Product.__table__.c.id == product.id)
            .values(version_id=version + 1, stock=19)
        )

        stale.stock = 10
        with pytest.raises(StaleDataError):
            db.session.flush()
        db.session.rollback()

    def test_ledger_write_surfaces_storage_unavailable(self, db_session, product, monkeypatch):
        def always_stale(**kwargs):
            raise StaleDataError("version mismatch")

        monkeypatch.setattr(inventory_service, "_append_movement_inner", always_stale)

        with pytest.raises(StorageUnavailableError):
            inventory_service.append_movement(
                product_id=product.id, movement_type="sale", quantity_delta=-1, reason="x")
        assert db.session.get(Product, product.id).stock == 20


# =============================================================================
# THREADED WRITERS
# =============================================================================


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database so threads get their own connections."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'LEDGER_RETRY_ATTEMPTS': 50,
        'LEDGER_RETRY_BACKOFF': 0.01,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


def _run_workers(app, count, target):
    results = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                outcome = target()
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestThreadedWriters:

    def test_concurrent_sales_never_oversell(self, file_app):
        with file_app.app_context():
            product = inventory_service.create_product(
                sku="CONCUR-1", name="Concurrent Product", initial_stock=15, price_cents=100)
            product_id = product.id

        def sell_one():
            return inventory_service.append_movement(
                product_id=product_id, movement_type="sale", quantity_delta=-1, reason="Sale")

        results = _run_workers(file_app, 20, sell_one)

        sold = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(sold) + len(refused) == 20

        with file_app.app_context():
            stock = db.session.get(Product, product_id).stock
            assert stock == 15 - len(sold)
            assert stock >= 0
            assert inventory_service.verify_stock_ledger() == []
        assert len(sold) == 15

    def test_concurrent_opens_leave_one_open_session(self, file_app):
        def open_drawer():
            return cash_session_service.open_session(opening_amount_cents=1000)

        results = _run_workers(file_app, 10, open_drawer)

        opened = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, SessionAlreadyOpenError)]
        assert len(opened) == 1
        assert len(refused) == 9

        with file_app.app_context():
            assert db.session.query(CashSession).filter_by(status="open").count() == 1
