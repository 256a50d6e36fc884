from datetime import timedelta

import pytest

from billing.errors import AlreadyFinalized, InvalidPayment, NotFound, Overpayment, SplitMismatch
from billing.models import Invoice, InvoicePayment, PaymentMethod, Product, Transaction
from billing.models.invoices import (
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_SENT,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_UNPAID,
)
from billing.references import Reference
from billing.services import invoice_service, kot_service, payment_service, purchase_service
from billing.services.payment_service import derive_payment_status, validate_split
from billing.time_utils import utcnow


@pytest.fixture
def voucher(db_session, company):
    """Untaxed 100.00 product, so invoice totals are round numbers."""
    product = Product(sku="GIFT-100", name="Gift Voucher", unit_price_cents=10000, tax_rate_bps=0)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def invoice(db_session, voucher):
    """Unpaid invoice with total 100.00."""
    kot = kot_service.create_kot(items=[{"product_id": voucher.id, "quantity": 1}], user_id=1)
    result = kot_service.finalize_kot(kot.id, user_id=1)
    assert result.invoice.total_cents == 10000
    return result.invoice


class TestDerivePaymentStatus:
    def test_unpaid(self):
        assert derive_payment_status(10000, 0) == PAYMENT_STATUS_UNPAID

    def test_partial(self):
        assert derive_payment_status(10000, 3000) == PAYMENT_STATUS_PARTIAL

    def test_paid_exact(self):
        assert derive_payment_status(10000, 10000) == PAYMENT_STATUS_PAID

    def test_paid_within_tolerance(self):
        assert derive_payment_status(10000, 9999, tolerance_cents=1) == PAYMENT_STATUS_PAID
        assert derive_payment_status(10000, 9998, tolerance_cents=1) == PAYMENT_STATUS_PARTIAL

    def test_zero_total_is_paid(self):
        assert derive_payment_status(0, 0) == PAYMENT_STATUS_PAID


class TestValidateSplit:
    def test_matching_split(self):
        validate_split("split", 4000, 3000, 3000, 10000, tolerance_cents=1)

    def test_within_tolerance(self):
        validate_split("split", 4000, 3000, 2999, 10000, tolerance_cents=1)

    def test_mismatch(self):
        with pytest.raises(SplitMismatch) as exc:
            validate_split("split", 4000, 3000, 2000, 10000, tolerance_cents=1)
        assert exc.value.details["tendered_cents"] == 9000

    def test_negative_amount(self):
        with pytest.raises(SplitMismatch):
            validate_split("split", 11000, -1000, 0, 10000, tolerance_cents=1)

    def test_single_method_ignores_amounts(self):
        validate_split("cash", 0, 0, 0, 10000, tolerance_cents=1)


class TestApplyPayment:
    def test_partial_then_full(self, db_session, invoice):
        ref = Reference.invoice(invoice.id)

        payment_service.apply_payment(ref, 3000, "Cash", user_id=1)
        summary = payment_service.get_payment_summary(ref)
        assert summary["payment_status"] == PAYMENT_STATUS_PARTIAL
        assert summary["remaining_cents"] == 7000

        payment_service.apply_payment(ref, 7000, "UPI", reference_number="UTR-1", user_id=1)

        invoice = db_session.get(Invoice, ref.id)
        assert invoice.amount_paid_cents == 10000
        assert invoice.payment_status == PAYMENT_STATUS_PAID
        assert invoice.status == INVOICE_STATUS_PAID

        txns = db_session.query(Transaction).filter_by(reference_type="invoice", reference_id=ref.id).all()
        assert sorted(t.amount_cents for t in txns) == [3000, 7000]
        assert {(t.type, t.category) for t in txns} == {("income", "sales")}

    def test_overpayment_leaves_state_unchanged(self, db_session, invoice):
        ref = Reference.invoice(invoice.id)

        with pytest.raises(Overpayment) as exc:
            payment_service.apply_payment(ref, 15000, "Cash")
        assert exc.value.details["remaining_cents"] == 10000

        invoice = db_session.get(Invoice, ref.id)
        assert invoice.amount_paid_cents == 0
        assert invoice.payment_status == PAYMENT_STATUS_UNPAID
        assert db_session.query(InvoicePayment).count() == 0
        assert db_session.query(Transaction).count() == 0

    def test_overpayment_after_partial(self, db_session, invoice):
        ref = Reference.invoice(invoice.id)
        payment_service.apply_payment(ref, 6000, "Cash")

        with pytest.raises(Overpayment):
            payment_service.apply_payment(ref, 4002, "Cash")

        assert db_session.get(Invoice, ref.id).amount_paid_cents == 6000

    def test_rounding_tolerance_accepted(self, db_session, invoice):
        ref = Reference.invoice(invoice.id)
        payment_service.apply_payment(ref, 10001, "Cash")
        assert db_session.get(Invoice, ref.id).payment_status == PAYMENT_STATUS_PAID

    @pytest.mark.parametrize("amount", [0, -500, True])
    def test_non_positive_amount_rejected(self, db_session, invoice, amount):
        with pytest.raises(InvalidPayment):
            payment_service.apply_payment(Reference.invoice(invoice.id), amount, "Cash")

    def test_unknown_method_rejected(self, db_session, invoice):
        with pytest.raises(InvalidPayment):
            payment_service.apply_payment(Reference.invoice(invoice.id), 1000, "Bitcoin")
        assert db_session.query(InvoicePayment).count() == 0

    def test_method_by_id(self, db_session, invoice):
        cheque = db_session.query(PaymentMethod).filter_by(name="Cheque").one()
        payment = payment_service.apply_payment(Reference.invoice(invoice.id), 1000, cheque.id)
        assert payment.payment_method_id == cheque.id

    def test_unknown_invoice(self, db_session, company):
        with pytest.raises(NotFound):
            payment_service.apply_payment(Reference.invoice(4242), 1000, "Cash")

    def test_kot_reference_rejected(self, db_session, invoice):
        with pytest.raises(InvalidPayment):
            payment_service.apply_payment(Reference.kot(invoice.kot_id), 1000, "Cash")


class TestVoidPayment:
    def test_void_reopens_invoice(self, db_session, invoice):
        ref = Reference.invoice(invoice.id)
        payment = payment_service.apply_payment(ref, 10000, "Card")

        voided = payment_service.void_payment(ref, payment.id, reason="card declined", user_id=2)

        assert voided.status == "voided"
        assert voided.voided_by_user_id == 2
        invoice = db_session.get(Invoice, ref.id)
        assert invoice.amount_paid_cents == 0
        assert invoice.payment_status == PAYMENT_STATUS_UNPAID
        assert invoice.status == INVOICE_STATUS_SENT

        void_txn = db_session.query(Transaction).filter_by(category="payment_void").one()
        assert void_txn.type == "expense"
        assert void_txn.amount_cents == 10000

    def test_void_reopens_past_due_invoice_as_overdue(self, db_session, voucher):
        kot = kot_service.create_kot(items=[{"product_id": voucher.id}])
        due = utcnow().date() - timedelta(days=3)
        ref = Reference.invoice(kot_service.finalize_kot(kot.id, due_date=due).invoice.id)
        assert invoice_service.refresh_overdue() == 1

        payment = payment_service.apply_payment(ref, 10000, "Cash")
        assert db_session.get(Invoice, ref.id).status == INVOICE_STATUS_PAID

        payment_service.void_payment(ref, payment.id, reason="counterfeit note")

        invoice = db_session.get(Invoice, ref.id)
        assert invoice.payment_status == PAYMENT_STATUS_UNPAID
        assert invoice.status == INVOICE_STATUS_OVERDUE
        assert invoice_service.list_receivables()["total_overdue_cents"] == 10000

    def test_void_twice_rejected(self, db_session, invoice):
        ref = Reference.invoice(invoice.id)
        payment = payment_service.apply_payment(ref, 5000, "Cash")
        payment_service.void_payment(ref, payment.id)

        with pytest.raises(InvalidPayment):
            payment_service.void_payment(ref, payment.id)

    def test_void_unknown_payment(self, db_session, invoice):
        with pytest.raises(NotFound):
            payment_service.void_payment(Reference.invoice(invoice.id), 4242)


class TestPurchasePayments:
    def test_supplier_payment_is_expense(self, db_session, company, supplier, paneer):
        purchase = purchase_service.create_purchase(
            supplier.id, [{"product_id": paneer.id, "quantity": 1000, "unit_price_cents": 40, "tax_rate_bps": 0}]
        )
        ref = Reference.purchase(purchase.id)

        payment_service.apply_payment(ref, 40000, "Bank Transfer")

        summary = payment_service.get_payment_summary(ref)
        assert summary["payment_status"] == PAYMENT_STATUS_PAID
        txn = db_session.query(Transaction).filter_by(reference_type="purchase").one()
        assert (txn.type, txn.category) == ("expense", "purchases")


class TestCaptureKotPayment:
    def test_records_split_tender(self, db_session, voucher):
        kot = kot_service.create_kot(items=[{"product_id": voucher.id}])
        kot = payment_service.capture_kot_payment(kot.id, "split", cash_cents=4000, upi_cents=6000)
        assert kot.payment_method == "split"
        assert (kot.cash_amount_cents, kot.upi_amount_cents, kot.card_amount_cents) == (4000, 6000, 0)

    def test_unknown_method(self, db_session, voucher):
        kot = kot_service.create_kot(items=[{"product_id": voucher.id}])
        with pytest.raises(InvalidPayment):
            payment_service.capture_kot_payment(kot.id, "cheque")

    def test_negative_amount(self, db_session, voucher):
        kot = kot_service.create_kot(items=[{"product_id": voucher.id}])
        with pytest.raises(InvalidPayment):
            payment_service.capture_kot_payment(kot.id, "split", cash_cents=-1)

    def test_served_kot_rejected(self, db_session, invoice):
        with pytest.raises(AlreadyFinalized):
            payment_service.capture_kot_payment(invoice.kot_id, "cash")
