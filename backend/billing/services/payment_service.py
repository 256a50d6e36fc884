# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Reconciler

DESIGN PRINCIPLES:
- Payments are separate rows (many-to-one with the invoice or purchase)
- Partial payments: a document can be settled over several payments
- Append-only: a payment is never edited; a void flips its status and
  appends a compensating cash-book row
- amount_paid_cents / payment_status on the parent are projections of the
  completed payment rows, recomputed in the same transaction

TOLERANCE:
Paid totals are compared with an absolute tolerance of
PAYMENT_TOLERANCE_CENTS (default 1 cent) to absorb rounding between
split tenders and the invoice total.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import InvalidPayment, Overpayment, SplitMismatch, AlreadyFinalized, NotFound
from ..extensions import db
from ..models import Invoice, InvoicePayment, Purchase, PurchasePayment, PaymentMethod, Transaction, Kot
from ..models.invoices import (
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_CANCELLED,
    PAYMENT_STATUS_UNPAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PAID,
    PAYMENT_ROW_COMPLETED,
    PAYMENT_ROW_VOIDED,
)
from ..models.ledger import TXN_INCOME, TXN_EXPENSE
from ..models.orders import KOT_PAYMENT_METHODS, KOT_PAYMENT_SPLIT
from ..models.purchases import PURCHASE_STATUS_CANCELLED
from ..references import Reference, REF_INVOICE, REF_PURCHASE, resolve_reference
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction


# =============================================================================
# PAYMENT METHODS
# =============================================================================

# KOT tender codes -> payment_methods.name
KOT_TENDER_NAMES = {
    "cash": "Cash",
    "upi": "UPI",
    "card": "Card",
}


def payment_tolerance() -> int:
    return int(current_app.config.get("PAYMENT_TOLERANCE_CENTS", 1))


def get_or_create_payment_method(name: str) -> PaymentMethod:
    method = (
        db.session.query(PaymentMethod)
        .filter(func.lower(PaymentMethod.name) == name.lower())
        .first()
    )
    if method is None:
        method = PaymentMethod(name=name, is_active=True)
        db.session.add(method)
        db.session.flush()
    return method


def resolve_payment_method(method) -> PaymentMethod:
    """
    Accept a payment_methods id, a configured method name, or a KOT tender
    code (cash/upi/card; created on first use).
    """
    if isinstance(method, bool):
        raise InvalidPayment("Invalid payment method", details={"method": method})

    if isinstance(method, int):
        row = db.session.get(PaymentMethod, method)
        if row is None or not row.is_active:
            raise InvalidPayment(f"Unknown payment method {method}", details={"method": method})
        return row

    if isinstance(method, str) and method.strip():
        name = method.strip()
        if name.lower() in KOT_TENDER_NAMES:
            return get_or_create_payment_method(KOT_TENDER_NAMES[name.lower()])
        row = (
            db.session.query(PaymentMethod)
            .filter(func.lower(PaymentMethod.name) == name.lower())
            .first()
        )
        if row is None or not row.is_active:
            raise InvalidPayment(f"Unknown payment method {name}", details={"method": name})
        return row

    raise InvalidPayment("Payment method is required", details={"method": method})


# =============================================================================
# STATUS DERIVATION
# =============================================================================

def derive_payment_status(total_cents: int, paid_cents: int, tolerance_cents: int = 1) -> str:
    """
    unpaid  - nothing paid (a zero-total document counts as paid)
    partial - something paid, still short of total - tolerance
    paid    - paid >= total - tolerance
    """
    if paid_cents <= 0:
        return PAYMENT_STATUS_PAID if total_cents <= 0 else PAYMENT_STATUS_UNPAID
    if paid_cents >= total_cents - tolerance_cents:
        return PAYMENT_STATUS_PAID
    return PAYMENT_STATUS_PARTIAL


def validate_split(
    payment_method: str | None,
    cash_cents: int,
    upi_cents: int,
    card_cents: int,
    total_cents: int,
    tolerance_cents: int | None = None,
) -> None:
    """Split tenders must be non-negative and add up to the total within tolerance."""
    if payment_method != KOT_PAYMENT_SPLIT:
        return
    if tolerance_cents is None:
        tolerance_cents = payment_tolerance()

    amounts = {"cash_cents": cash_cents, "upi_cents": upi_cents, "card_cents": card_cents}
    negative = {k: v for k, v in amounts.items() if v < 0}
    if negative:
        raise SplitMismatch("Split amounts cannot be negative", details=negative)

    tendered = cash_cents + upi_cents + card_cents
    if abs(tendered - total_cents) > tolerance_cents:
        raise SplitMismatch(
            "Split amounts do not add up to the order total",
            details={**amounts, "tendered_cents": tendered, "total_cents": total_cents},
        )


# =============================================================================
# PARENT DOCUMENTS
# =============================================================================

def _payment_model(reference: Reference):
    if reference.kind == REF_INVOICE:
        return InvoicePayment, InvoicePayment.invoice_id
    if reference.kind == REF_PURCHASE:
        return PurchasePayment, PurchasePayment.purchase_id
    raise InvalidPayment(
        f"Payments cannot be applied to a {reference.kind}",
        details={"reference": reference.to_dict()},
    )


def _load_parent(reference: Reference, *, lock: bool):
    model = Invoice if reference.kind == REF_INVOICE else Purchase
    query = db.session.query(model)
    if lock:
        query = lock_for_update(query)
    return resolve_reference(reference, reference.kind, query=query)


def _completed_sum(reference: Reference) -> int:
    payment_model, parent_col = _payment_model(reference)
    total = (
        db.session.query(func.coalesce(func.sum(payment_model.amount_cents), 0))
        .filter(parent_col == reference.id, payment_model.status == PAYMENT_ROW_COMPLETED)
        .scalar()
    )
    return int(total or 0)


def _sync_invoice_status(invoice: Invoice) -> None:
    if invoice.status == INVOICE_STATUS_CANCELLED:
        return
    if invoice.payment_status == PAYMENT_STATUS_PAID:
        invoice.status = INVOICE_STATUS_PAID
    elif invoice.status == INVOICE_STATUS_PAID:
        past_due = invoice.due_date is not None and invoice.due_date < utcnow().date()
        invoice.status = INVOICE_STATUS_OVERDUE if past_due else INVOICE_STATUS_SENT


def recompute_payment_state(parent, reference: Reference) -> None:
    """Re-project amount_paid/payment_status from the payment log (does not commit)."""
    db.session.flush()
    paid = _completed_sum(reference)
    parent._amount_paid_cents = paid
    parent._payment_status = derive_payment_status(parent.total_cents, paid, payment_tolerance())
    if reference.kind == REF_INVOICE:
        _sync_invoice_status(parent)
    db.session.flush()


def _document_number(parent) -> str:
    return getattr(parent, "invoice_number", None) or getattr(parent, "purchase_number", "")


def append_cash_book(
    reference: Reference,
    txn_type: str,
    category: str,
    amount_cents: int,
    description: str,
    *,
    transaction_date=None,
    payment_method_id=None,
    reference_number=None,
    user_id=None,
) -> Transaction:
    txn = Transaction(
        type=txn_type,
        category=category,
        amount_cents=amount_cents,
        description=description,
        transaction_date=transaction_date or utcnow().date(),
        payment_method_id=payment_method_id,
        reference_number=reference_number,
        reference_type=reference.kind,
        reference_id=reference.id,
        created_by_user_id=user_id,
    )
    db.session.add(txn)
    return txn


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def record_payment(
    parent: Reference,
    amount_cents: int,
    method,
    reference_number: str | None = None,
    payment_date=None,
    notes: str | None = None,
    user_id: int | None = None,
):
    """
    Apply a payment inside the caller's transaction (does not commit).

    Overpayment is checked against the locked parent before anything is
    written.
    """
    payment_model, _ = _payment_model(parent)

    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise InvalidPayment("Payment amount must be positive", details={"amount_cents": amount_cents})

    doc = _load_parent(parent, lock=True)
    if parent.kind == REF_INVOICE and doc.status == INVOICE_STATUS_CANCELLED:
        raise InvalidPayment("Cannot pay a cancelled invoice", details={"invoice_id": doc.id})
    if parent.kind == REF_PURCHASE and doc.status == PURCHASE_STATUS_CANCELLED:
        raise InvalidPayment("Cannot pay a cancelled purchase", details={"purchase_id": doc.id})

    tolerance = payment_tolerance()
    paid_before = _completed_sum(parent)
    if paid_before + amount_cents > doc.total_cents + tolerance:
        raise Overpayment(
            "Payment exceeds the amount due",
            details={
                "total_cents": doc.total_cents,
                "amount_paid_cents": paid_before,
                "amount_cents": amount_cents,
                "remaining_cents": max(doc.total_cents - paid_before, 0),
            },
        )

    payment_method = resolve_payment_method(method)
    if payment_date is None:
        payment_date = utcnow().date()

    fk = {"invoice_id": doc.id} if parent.kind == REF_INVOICE else {"purchase_id": doc.id}
    payment = payment_model(
        amount_cents=amount_cents,
        payment_date=payment_date,
        payment_method_id=payment_method.id,
        reference_number=reference_number,
        notes=notes,
        status=PAYMENT_ROW_COMPLETED,
        created_by_user_id=user_id,
        **fk,
    )
    db.session.add(payment)

    if parent.kind == REF_INVOICE:
        txn_type, category, label = TXN_INCOME, "sales", "Payment received for"
    else:
        txn_type, category, label = TXN_EXPENSE, "purchases", "Payment made for"
    append_cash_book(
        parent,
        txn_type,
        category,
        amount_cents,
        f"{label} {_document_number(doc)}",
        transaction_date=payment_date,
        payment_method_id=payment_method.id,
        reference_number=reference_number,
        user_id=user_id,
    )

    recompute_payment_state(doc, parent)
    return payment


def apply_payment(
    parent: Reference,
    amount_cents: int,
    method,
    reference_number: str | None = None,
    payment_date=None,
    notes: str | None = None,
    user_id: int | None = None,
):
    """Apply one payment as its own transaction."""
    return run_in_transaction(
        lambda: record_payment(
            parent,
            amount_cents,
            method,
            reference_number=reference_number,
            payment_date=payment_date,
            notes=notes,
            user_id=user_id,
        )
    )


def void_payment(parent: Reference, payment_id: int, reason: str | None = None, user_id: int | None = None):
    """Mark a payment voided, re-derive the parent and append a compensating cash-book row."""
    payment_model, parent_col = _payment_model(parent)

    def _op():
        doc = _load_parent(parent, lock=True)
        payment = (
            db.session.query(payment_model)
            .filter(payment_model.id == payment_id, parent_col == doc.id)
            .first()
        )
        if payment is None:
            raise NotFound(
                f"Payment {payment_id} not found",
                details={"payment_id": payment_id, "parent": parent.to_dict()},
            )
        if payment.status == PAYMENT_ROW_VOIDED:
            raise InvalidPayment("Payment is already voided", details={"payment_id": payment_id})

        payment.status = PAYMENT_ROW_VOIDED
        payment.voided_at = utcnow()
        payment.voided_by_user_id = user_id
        payment.void_reason = reason

        # Opposite direction of the original cash-book row
        txn_type = TXN_EXPENSE if parent.kind == REF_INVOICE else TXN_INCOME
        append_cash_book(
            parent,
            txn_type,
            "payment_void",
            payment.amount_cents,
            f"Void of payment {payment.id} for {_document_number(doc)}",
            payment_method_id=payment.payment_method_id,
            reference_number=payment.reference_number,
            user_id=user_id,
        )

        recompute_payment_state(doc, parent)
        return payment

    payment = run_in_transaction(_op)
    current_app.logger.info(
        "Voided payment %s on %s (%s cents): %s", payment.id, parent, payment.amount_cents, reason or "-"
    )
    return payment


# =============================================================================
# QUERIES
# =============================================================================

def get_payment_summary(parent: Reference) -> dict:
    payment_model, parent_col = _payment_model(parent)
    doc = _load_parent(parent, lock=False)
    payments = (
        db.session.query(payment_model)
        .filter(parent_col == doc.id)
        .order_by(payment_model.id.asc())
        .all()
    )
    return {
        "reference": parent.to_dict(),
        "total_cents": doc.total_cents,
        "amount_paid_cents": doc.amount_paid_cents,
        "remaining_cents": max(doc.total_cents - doc.amount_paid_cents, 0),
        "payment_status": doc.payment_status,
        "payments": [p.to_dict() for p in payments],
    }


# =============================================================================
# KOT TENDER CAPTURE
# =============================================================================

def capture_kot_payment(
    kot_id: int,
    payment_method: str,
    cash_cents: int = 0,
    upi_cents: int = 0,
    card_cents: int = 0,
) -> Kot:
    """
    Record the intended tender on an open KOT.

    Split consistency is checked at finalization, once the total is known.
    """
    if payment_method not in KOT_PAYMENT_METHODS:
        raise InvalidPayment(
            f"Unknown payment method {payment_method}",
            details={"payment_method": payment_method, "allowed": list(KOT_PAYMENT_METHODS)},
        )
    amounts = {"cash_cents": cash_cents, "upi_cents": upi_cents, "card_cents": card_cents}
    for name, value in amounts.items():
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidPayment(f"{name} must be a non-negative integer", details={name: value})

    def _op():
        kot = lock_for_update(db.session.query(Kot).filter_by(id=kot_id)).first()
        if kot is None:
            raise NotFound(f"KOT {kot_id} not found", details={"kot_id": kot_id})
        if kot.is_terminal:
            raise AlreadyFinalized(
                f"KOT {kot.kot_number} is already {kot.status}",
                details={"kot_id": kot.id, "status": kot.status},
            )
        kot.payment_method = payment_method
        kot.cash_amount_cents = cash_cents
        kot.upi_amount_cents = upi_cents
        kot.card_amount_cents = card_cents
        db.session.flush()
        return kot

    return run_in_transaction(_op)
