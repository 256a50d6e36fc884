"""
Concurrency tests.

Threads share a file-backed SQLite database (in-memory SQLite is a single
connection) and each worker runs in its own app context, so each gets its
own session and connection, as request workers would.
"""

import sqlite3
import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from billing import create_app
from billing.errors import AlreadyFinalized, Contention, InvalidPayment, Overpayment
from billing.extensions import db
from billing.models import CompanyProfile, InventoryMovement, Invoice, InvoicePayment, MenuItem, MenuItemIngredient, Product
from billing.references import Reference
from billing.services import company_service, inventory_service, kot_service, payment_service
from billing.services.concurrency import retry_on_contention, run_in_transaction

from conftest import stock_up


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'billing.sqlite3'}",
        'SELLER_STATE': 'Karnataka',
        'LOCK_TIMEOUT_SECONDS': 15,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """One pending KOT for 2 x Dal Makhani (300 g dal each) with stock on hand."""
    with file_app.app_context():
        company_service.seed_payment_methods()
        db.session.add(CompanyProfile(company_name="Spice Route", state="Karnataka", default_tax_rate_bps=500))
        dal = Product(sku="RM-DAL", name="Black Dal", unit="g", type="raw_material", tax_rate_bps=500)
        db.session.add(dal)
        db.session.flush()
        dish = MenuItem(name="Dal Makhani", price_cents=5000, tax_rate_bps=0)
        dish.ingredients.append(MenuItemIngredient(product_id=dal.id, quantity_required=300))
        db.session.add(dish)
        db.session.commit()

        stock_up(dal.id, 3000)
        kot = kot_service.create_kot(items=[{"menu_item_id": dish.id, "quantity": 2}])
        return {"kot_id": kot.id, "product_id": dal.id}


def _run_concurrently(app, target, workers=2):
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                result = target()
            except Exception as exc:
                with lock:
                    outcomes.append(exc)
            else:
                with lock:
                    outcomes.append(result)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_concurrent_finalization_bills_once(file_app, seeded):
    outcomes = _run_concurrently(file_app, lambda: kot_service.finalize_kot(seeded["kot_id"]))

    errors = [o for o in outcomes if isinstance(o, Exception)]
    successes = [o for o in outcomes if not isinstance(o, Exception)]
    assert len(successes) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], AlreadyFinalized)

    with file_app.app_context():
        assert db.session.query(Invoice).count() == 1
        assert db.session.query(InventoryMovement).filter_by(reference_type="kot").count() == 1
        assert inventory_service.verify_stock(seeded["product_id"]) == 3000 - 600


def test_concurrent_payments_never_overpay(file_app, seeded):
    with file_app.app_context():
        invoice = kot_service.finalize_kot(seeded["kot_id"]).invoice
        ref = Reference.invoice(invoice.id)
        assert invoice.total_cents == 10000

    outcomes = _run_concurrently(file_app, lambda: payment_service.apply_payment(ref, 6000, "Cash").id)

    errors = [o for o in outcomes if isinstance(o, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], Overpayment)

    with file_app.app_context():
        invoice = db.session.get(Invoice, ref.id)
        assert invoice.amount_paid_cents == 6000
        assert invoice.payment_status == "partial"
        assert db.session.query(InvoicePayment).count() == 1


class TestRunInTransaction:
    def test_lock_timeout_becomes_contention(self, db_session):
        def _op():
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))

        with pytest.raises(Contention) as exc:
            run_in_transaction(_op)
        assert exc.value.retryable is True
        assert exc.value.status_code == 503
        assert exc.value.details == {"cause": "OperationalError"}

    def test_stale_version_becomes_contention(self, db_session):
        def _op():
            raise StaleDataError("version mismatch")

        with pytest.raises(Contention):
            run_in_transaction(_op)

    def test_domain_errors_propagate(self, db_session):
        def _op():
            raise InvalidPayment("nope")

        with pytest.raises(InvalidPayment):
            run_in_transaction(_op)

    def test_failure_rolls_back_whole_unit(self, db_session, paneer):
        def _op():
            inventory_service.record_movement(paneer.id, "purchase", 500)
            raise InvalidPayment("late failure")

        with pytest.raises(InvalidPayment):
            run_in_transaction(_op)
        assert db_session.query(InventoryMovement).count() == 0
        assert inventory_service.current_stock(paneer.id) == 0


class TestRetryOnContention:
    def test_retries_until_success(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise Contention("busy")
            return "ok"

        assert retry_on_contention(flaky, attempts=3, backoff_base=0) == "ok"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self):
        def always_busy():
            raise Contention("busy")

        with pytest.raises(Contention):
            retry_on_contention(always_busy, attempts=2, backoff_base=0)

    def test_other_errors_not_retried(self):
        calls = []

        def broken():
            calls.append(1)
            raise InvalidPayment("bad")

        with pytest.raises(InvalidPayment):
            retry_on_contention(broken, attempts=3, backoff_base=0)
        assert len(calls) == 1


@pytest.fixture
def short_wait_app(tmp_path):
    """File SQLite with a half-second busy timeout and one unpaid 100.00 invoice."""
    path = tmp_path / "short_wait.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{path}",
        'SELLER_STATE': 'Karnataka',
        'LOCK_TIMEOUT_SECONDS': 0.5,
    })
    with app.app_context():
        db.create_all()
        company_service.seed_payment_methods()
        db.session.add(CompanyProfile(company_name="Spice Route", state="Karnataka", default_tax_rate_bps=500))
        voucher = Product(sku="GIFT-100", name="Gift Voucher", unit_price_cents=10000, tax_rate_bps=0)
        db.session.add(voucher)
        db.session.commit()
        kot = kot_service.create_kot(items=[{"product_id": voucher.id}])
        invoice_id = kot_service.finalize_kot(kot.id).invoice.id
    yield app, path, Reference.invoice(invoice_id)
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def test_held_write_lock_surfaces_contention(short_wait_app):
    app, path, ref = short_wait_app

    # Another process holds the database write lock
    blocker = sqlite3.connect(str(path), isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        with app.app_context():
            with pytest.raises(Contention) as exc:
                payment_service.apply_payment(ref, 3000, "Cash")
            assert exc.value.retryable is True
            assert exc.value.details == {"cause": "OperationalError"}
            assert db.session.query(InvoicePayment).count() == 0
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()

    with app.app_context():
        retry_on_contention(lambda: payment_service.apply_payment(ref, 3000, "Cash"), backoff_base=0)
        invoice = db.session.get(Invoice, ref.id)
        assert invoice.amount_paid_cents == 3000
        assert invoice.payment_status == "partial"
