# Overview: Invoice reads and receivables lifecycle (sent / overdue).

from __future__ import annotations

from datetime import date

from ..errors import InvalidTransition, NotFound
from ..extensions import db
from ..models import Invoice
from ..models.invoices import (
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_CANCELLED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_UNPAID,
    PAYMENT_STATUS_PARTIAL,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    customer_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Invoice], int]:
    query = db.session.query(Invoice)
    if status:
        query = query.filter(Invoice.status == status)
    if payment_status:
        query = query.filter(Invoice.payment_status == payment_status)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)

    total = query.count()
    rows = query.order_by(Invoice.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def mark_invoice_sent(invoice_id: int) -> Invoice:
    """draft -> sent. Paid/overdue invoices keep their status."""
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFound(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
        if invoice.status == INVOICE_STATUS_CANCELLED:
            raise InvalidTransition(
                "Cannot send a cancelled invoice",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )
        if invoice.status == INVOICE_STATUS_DRAFT:
            invoice.status = INVOICE_STATUS_SENT
            db.session.flush()
        return invoice

    return run_in_transaction(_op)


def refresh_overdue(as_of: date | None = None) -> int:
    """Mark unpaid/partial invoices past their due date as overdue. Returns the count."""
    if as_of is None:
        as_of = utcnow().date()

    def _op():
        invoices = (
            lock_for_update(db.session.query(Invoice))
            .filter(
                Invoice.status.in_((INVOICE_STATUS_DRAFT, INVOICE_STATUS_SENT)),
                Invoice.payment_status.in_((PAYMENT_STATUS_UNPAID, PAYMENT_STATUS_PARTIAL)),
                Invoice.due_date.isnot(None),
                Invoice.due_date < as_of,
            )
            .all()
        )
        for invoice in invoices:
            invoice.status = INVOICE_STATUS_OVERDUE
        db.session.flush()
        return len(invoices)

    return run_in_transaction(_op)


def list_receivables(as_of: date | None = None) -> dict:
    """Open balances with ageing relative to as_of."""
    if as_of is None:
        as_of = utcnow().date()

    invoices = (
        db.session.query(Invoice)
        .filter(
            Invoice.status != INVOICE_STATUS_CANCELLED,
            Invoice.payment_status != PAYMENT_STATUS_PAID,
        )
        .order_by(Invoice.due_date.asc(), Invoice.id.asc())
        .all()
    )

    rows = []
    total_outstanding = 0
    total_overdue = 0
    for invoice in invoices:
        balance = invoice.balance_due_cents
        days_overdue = 0
        if invoice.due_date is not None and invoice.due_date < as_of:
            days_overdue = (as_of - invoice.due_date).days
            total_overdue += balance
        total_outstanding += balance
        rows.append(
            {
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "customer_id": invoice.customer_id,
                "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
                "total_cents": invoice.total_cents,
                "amount_paid_cents": invoice.amount_paid_cents,
                "balance_due_cents": balance,
                "payment_status": invoice.payment_status,
                "days_overdue": days_overdue,
            }
        )

    return {
        "as_of": as_of.isoformat(),
        "total_outstanding_cents": total_outstanding,
        "total_overdue_cents": total_overdue,
        "invoices": rows,
    }
