# Overview: Service-layer operations for KOTs; order lifecycle and finalization into invoices.

"""
KOT lifecycle

    pending -> preparing -> ready -> served
       |           |          |
       +-----------+----------+----> cancelled

- Transitions only move forward; skipping ahead is allowed.
- served and cancelled are terminal: nothing leaves them.
- served is reached only through finalize_kot, which produces the invoice,
  the stock movements and the captured payments in one transaction.
- A served KOT can be reversed (reverse_kot): the invoice is removed,
  stock is compensated and money taken is refunded in the cash book. The
  KOT itself stays served with reversed_at stamped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import AlreadyFinalized, InvalidLineItem, InvalidTransition, NotFound, PermissionDenied
from ..extensions import db
from ..identity import ROLE_ADMIN, ROLE_MANAGER
from ..models import Kot, KotItem, MenuItem, Product, Customer, Invoice, InvoiceItem
from ..models.invoices import INVOICE_STATUS_DRAFT
from ..models.ledger import TXN_EXPENSE
from ..models.orders import (
    KOT_STATUS_PENDING,
    KOT_STATUS_PREPARING,
    KOT_STATUS_READY,
    KOT_STATUS_SERVED,
    KOT_STATUS_CANCELLED,
    KOT_STATUSES,
    ORDER_TYPES,
    DELIVERY_PLATFORMS,
    KOT_PAYMENT_SPLIT,
)
from ..references import Reference
from ..time_utils import utcnow
from .company_service import get_tax_config
from .concurrency import lock_for_update, run_in_transaction
from .document_service import DOC_KOT, DOC_INVOICE, next_document_number
from .inventory_service import consume_for_kot, reverse_movements
from .payment_service import append_cash_book, record_payment, recompute_payment_state, validate_split
from .pricing_service import LineInput, calculate_totals

# Forward order of the working states
_STATUS_ORDER = {
    KOT_STATUS_PENDING: 0,
    KOT_STATUS_PREPARING: 1,
    KOT_STATUS_READY: 2,
    KOT_STATUS_SERVED: 3,
}


@dataclass
class FinalizationResult:
    invoice: Invoice
    kot: Kot
    warnings: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "invoice": self.invoice.to_dict(include_lines=True),
            "kot": self.kot.to_dict(),
            "warnings": list(self.warnings),
        }


@dataclass
class ReversalResult:
    kot: Kot
    refunded_cents: int
    movements: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kot": self.kot.to_dict(),
            "refunded_cents": self.refunded_cents,
            "reversed_movements": [m.to_dict() for m in self.movements],
        }


# =============================================================================
# LOOKUPS
# =============================================================================

def _lock_kot(kot_id: int) -> Kot:
    kot = lock_for_update(db.session.query(Kot).filter_by(id=kot_id)).first()
    if kot is None:
        raise NotFound(f"KOT {kot_id} not found", details={"kot_id": kot_id})
    return kot


def _require_open(kot: Kot) -> None:
    if kot.is_terminal:
        raise AlreadyFinalized(
            f"KOT {kot.kot_number} is already {kot.status}",
            details={"kot_id": kot.id, "status": kot.status},
        )


def get_kot(kot_id: int) -> Kot:
    kot = db.session.get(Kot, kot_id)
    if kot is None:
        raise NotFound(f"KOT {kot_id} not found", details={"kot_id": kot_id})
    return kot


def list_kots(*, status: str | None = None, limit: int = 100, offset: int = 0) -> tuple[list[Kot], int]:
    query = db.session.query(Kot)
    if status:
        query = query.filter(Kot.status == status)
    total = query.count()
    rows = query.order_by(Kot.id.desc()).offset(offset).limit(limit).all()
    return rows, total


# =============================================================================
# ITEMS
# =============================================================================

def _build_item(
    menu_item_id: int | None,
    product_id: int | None,
    quantity: int,
    notes: str | None,
    default_tax_rate_bps: int,
) -> KotItem:
    """Snapshot price and tax rate from the catalog into a new line."""
    if (menu_item_id is None) == (product_id is None):
        raise InvalidLineItem(
            "Exactly one of menu_item_id or product_id is required",
            details={"menu_item_id": menu_item_id, "product_id": product_id},
        )
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidLineItem("Quantity must be a positive integer", details={"quantity": quantity})

    if menu_item_id is not None:
        menu_item = db.session.get(MenuItem, menu_item_id)
        if menu_item is None:
            raise NotFound(f"Menu item {menu_item_id} not found", details={"menu_item_id": menu_item_id})
        if not menu_item.is_available:
            raise InvalidLineItem(
                f"{menu_item.name} is not available", details={"menu_item_id": menu_item_id}
            )
        rate = menu_item.tax_rate_bps if menu_item.tax_rate_bps is not None else default_tax_rate_bps
        return KotItem(
            menu_item_id=menu_item.id,
            item_name=menu_item.name,
            quantity=quantity,
            unit_price_cents=menu_item.price_cents,
            tax_rate_bps=rate,
            notes=notes,
        )

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    if not product.is_active:
        raise InvalidLineItem(f"{product.name} is inactive", details={"product_id": product_id})
    return KotItem(
        product_id=product.id,
        item_name=product.name,
        quantity=quantity,
        unit_price_cents=product.unit_price_cents,
        tax_rate_bps=product.tax_rate_bps,
        notes=notes,
    )


def create_kot(
    *,
    order_type: str = "dine_in",
    table_number: str | None = None,
    delivery_platform: str | None = None,
    delivery_partner_name: str | None = None,
    customer_id: int | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    notes: str | None = None,
    items=None,
    user_id: int | None = None,
) -> Kot:
    """
    Open a new KOT in pending state.

    items: iterable of dicts with menu_item_id or product_id, quantity and
    optional notes.
    """
    if order_type not in ORDER_TYPES:
        raise ValueError(f"order_type must be one of: {', '.join(ORDER_TYPES)}")
    if delivery_platform is not None:
        if order_type != "delivery":
            raise ValueError("delivery_platform is only valid for delivery orders")
        if delivery_platform not in DELIVERY_PLATFORMS:
            raise ValueError(f"delivery_platform must be one of: {', '.join(DELIVERY_PLATFORMS)}")

    def _op():
        if customer_id is not None and db.session.get(Customer, customer_id) is None:
            raise NotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})

        default_rate = get_tax_config().default_tax_rate_bps
        kot = Kot(
            kot_number=next_document_number(DOC_KOT),
            order_type=order_type,
            table_number=table_number,
            delivery_platform=delivery_platform,
            delivery_partner_name=delivery_partner_name,
            customer_id=customer_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            notes=notes,
            status=KOT_STATUS_PENDING,
            created_by_user_id=user_id,
        )
        for entry in items or []:
            kot.items.append(
                _build_item(
                    entry.get("menu_item_id"),
                    entry.get("product_id"),
                    entry.get("quantity", 1),
                    entry.get("notes"),
                    default_rate,
                )
            )
        db.session.add(kot)
        db.session.flush()
        return kot

    return run_in_transaction(_op)


def add_item(
    kot_id: int,
    *,
    menu_item_id: int | None = None,
    product_id: int | None = None,
    quantity: int = 1,
    notes: str | None = None,
) -> KotItem:
    def _op():
        kot = _lock_kot(kot_id)
        _require_open(kot)
        item = _build_item(menu_item_id, product_id, quantity, notes, get_tax_config().default_tax_rate_bps)
        kot.items.append(item)
        db.session.flush()
        return item

    return run_in_transaction(_op)


def remove_item(kot_id: int, item_id: int) -> None:
    def _op():
        kot = _lock_kot(kot_id)
        _require_open(kot)
        item = next((i for i in kot.items if i.id == item_id), None)
        if item is None:
            raise NotFound(
                f"Item {item_id} not found on KOT {kot.kot_number}",
                details={"kot_id": kot.id, "item_id": item_id},
            )
        kot.items.remove(item)
        db.session.flush()

    run_in_transaction(_op)


# =============================================================================
# STATE MACHINE
# =============================================================================

def check_transition(current: str, new: str) -> None:
    """Raise unless current -> new is a legal KOT transition."""
    if new not in KOT_STATUSES:
        raise InvalidTransition(f"Unknown KOT status: {new}", details={"status": new})
    if current in (KOT_STATUS_SERVED, KOT_STATUS_CANCELLED):
        raise AlreadyFinalized(
            f"KOT is already {current}", details={"status": current, "requested": new}
        )
    if new == KOT_STATUS_CANCELLED:
        return
    if _STATUS_ORDER[new] <= _STATUS_ORDER[current]:
        raise InvalidTransition(
            f"Cannot move a KOT from {current} to {new}",
            details={"status": current, "requested": new},
        )


def transition(kot_id: int, new_status: str, *, reason: str | None = None, user_id: int | None = None, **finalize_kwargs):
    """
    Move a KOT to new_status.

    served delegates to finalize_kot and returns its FinalizationResult;
    cancelled delegates to cancel_kot. Other moves return the KOT.
    """
    if new_status == KOT_STATUS_SERVED:
        return finalize_kot(kot_id, user_id=user_id, **finalize_kwargs)
    if new_status == KOT_STATUS_CANCELLED:
        return cancel_kot(kot_id, reason=reason, user_id=user_id)

    def _op():
        kot = _lock_kot(kot_id)
        check_transition(kot.status, new_status)
        kot.status = new_status
        db.session.flush()
        return kot

    return run_in_transaction(_op)


# =============================================================================
# FINALIZATION
# =============================================================================

def _tenders_for(kot: Kot, total_cents: int) -> list[tuple[str, int]]:
    """Captured tender on the KOT as (method code, amount) pairs."""
    if not kot.payment_method:
        return []
    if kot.payment_method == KOT_PAYMENT_SPLIT:
        return [
            (code, amount)
            for code, amount in (
                ("cash", kot.cash_amount_cents),
                ("upi", kot.upi_amount_cents),
                ("card", kot.card_amount_cents),
            )
            if amount > 0
        ]
    if total_cents <= 0:
        return []
    return [(kot.payment_method, total_cents)]


def finalize_kot(
    kot_id: int,
    discount_cents: int = 0,
    discount_reason: str | None = None,
    customer_id: int | None = None,
    due_date: date | None = None,
    user_id: int | None = None,
) -> FinalizationResult:
    """
    Serve a KOT and bill it.

    One transaction: lock the KOT, price the current items, validate the
    split tender, create the invoice and its lines, emit consumption/sale
    movements, record captured payments and mark the KOT served. Any failure
    leaves the KOT exactly as it was.
    """
    def _op():
        kot = _lock_kot(kot_id)
        _require_open(kot)

        items = list(kot.items)
        if not items:
            raise InvalidLineItem(
                f"KOT {kot.kot_number} has no items", details={"kot_id": kot.id}
            )

        existing = db.session.query(Invoice.id).filter(Invoice.kot_id == kot.id).first()
        if existing is not None:
            raise AlreadyFinalized(
                f"KOT {kot.kot_number} already has an invoice",
                details={"kot_id": kot.id, "invoice_id": existing[0]},
            )

        billed_customer_id = customer_id if customer_id is not None else kot.customer_id
        customer = None
        if billed_customer_id is not None:
            customer = db.session.get(Customer, billed_customer_id)
            if customer is None:
                raise NotFound(
                    f"Customer {billed_customer_id} not found",
                    details={"customer_id": billed_customer_id},
                )

        tax = get_tax_config()
        totals = calculate_totals(
            [LineInput(i.quantity, i.unit_price_cents, i.tax_rate_bps) for i in items],
            discount_cents=discount_cents,
            discount_reason=discount_reason,
            seller_state=tax.seller_state,
            buyer_state=customer.state if customer else None,
            enable_tax=tax.enable_tax,
        )

        validate_split(
            kot.payment_method,
            kot.cash_amount_cents,
            kot.upi_amount_cents,
            kot.card_amount_cents,
            totals.total_cents,
        )

        invoice_date = utcnow().date()
        invoice = Invoice(
            invoice_number=next_document_number(DOC_INVOICE),
            customer_id=billed_customer_id,
            invoice_date=invoice_date,
            due_date=due_date or invoice_date + timedelta(days=current_app.config.get("INVOICE_DUE_DAYS", 0)),
            status=INVOICE_STATUS_DRAFT,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            discount_reason=discount_reason,
            cgst_cents=totals.cgst_cents,
            sgst_cents=totals.sgst_cents,
            igst_cents=totals.igst_cents,
            total_cents=totals.total_cents,
            tax_label=tax.tax_name,
            created_by_user_id=user_id,
        )
        db.session.add(invoice)
        with db.session.no_autoflush:
            invoice.kot = kot
            for item, line in zip(items, totals.lines):
                product = item.product or (item.menu_item.product if item.menu_item else None)
                invoice.items.append(
                    InvoiceItem(
                        kot_item_id=item.id,
                        product_name=item.item_name,
                        description=item.notes,
                        hsn_code=product.hsn_code if product else None,
                        quantity=line.quantity,
                        unit_price_cents=line.unit_price_cents,
                        tax_rate_bps=line.tax_rate_bps,
                        line_total_cents=line.line_total_cents,
                        discount_cents=line.discount_cents,
                        taxable_cents=line.taxable_cents,
                        cgst_cents=line.cgst_cents,
                        sgst_cents=line.sgst_cents,
                        igst_cents=line.igst_cents,
                    )
                )
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise AlreadyFinalized(
                f"KOT {kot.kot_number} was finalized concurrently",
                details={"kot_id": kot.id},
            ) from exc

        _, warnings = consume_for_kot(kot, items, user_id=user_id)

        invoice_ref = Reference.invoice(invoice.id)
        for code, amount in _tenders_for(kot, totals.total_cents):
            record_payment(invoice_ref, amount, code, reference_number=kot.kot_number, user_id=user_id)
        recompute_payment_state(invoice, invoice_ref)

        if customer_id is not None:
            kot.customer_id = customer_id
        kot.status = KOT_STATUS_SERVED
        kot.completed_at = utcnow()
        db.session.flush()
        return FinalizationResult(invoice=invoice, kot=kot, warnings=warnings)

    result = run_in_transaction(_op)
    current_app.logger.info(
        "Finalized KOT %s into invoice %s (total=%s cents, paid=%s)",
        result.kot.kot_number,
        result.invoice.invoice_number,
        result.invoice.total_cents,
        result.invoice.payment_status,
    )
    return result


# =============================================================================
# CANCELLATION / REVERSAL / DELETION
# =============================================================================

def cancel_kot(
    kot_id: int,
    reason: str | None = None,
    user_id: int | None = None,
    *,
    pending_only: bool = False,
) -> Kot:
    """
    Cancel an unserved KOT. No invoice and no stock movement is produced.

    pending_only restricts cancellation to KOTs the kitchen has not started;
    it is checked against the locked row.
    """
    def _op():
        kot = _lock_kot(kot_id)
        _require_open(kot)
        if pending_only and kot.status != KOT_STATUS_PENDING:
            raise PermissionDenied(
                f"KOT {kot.kot_number} is already {kot.status}; cancelling it needs a manager",
                details={"kot_id": kot.id, "status": kot.status, "required_roles": [ROLE_ADMIN, ROLE_MANAGER]},
            )
        kot.status = KOT_STATUS_CANCELLED
        kot.cancelled_at = utcnow()
        kot.cancel_reason = reason
        db.session.flush()
        return kot

    kot = run_in_transaction(_op)
    current_app.logger.info("Cancelled KOT %s: %s", kot.kot_number, reason or "-")
    return kot


def _refund_taken_money(kot: Kot, invoice: Invoice | None, reason: str | None, user_id: int | None) -> int:
    if invoice is None or invoice.amount_paid_cents <= 0:
        return 0
    append_cash_book(
        Reference.kot(kot.id),
        TXN_EXPENSE,
        "refund",
        invoice.amount_paid_cents,
        f"Refund for {invoice.invoice_number} ({kot.kot_number}): {reason or 'reversed'}",
        reference_number=invoice.invoice_number,
        user_id=user_id,
    )
    return invoice.amount_paid_cents


def reverse_kot(kot_id: int, reason: str | None = None, user_id: int | None = None) -> ReversalResult:
    """
    Undo the billing of a served KOT.

    Removes the invoice (items and payments cascade), refunds money taken in
    the cash book and compensates every stock movement. The KOT stays served.
    """
    def _op():
        kot = _lock_kot(kot_id)
        if kot.status != KOT_STATUS_SERVED:
            raise InvalidTransition(
                f"Only served KOTs can be reversed (KOT {kot.kot_number} is {kot.status})",
                details={"kot_id": kot.id, "status": kot.status},
            )
        if kot.reversed_at is not None:
            raise InvalidTransition(
                f"KOT {kot.kot_number} is already reversed",
                details={"kot_id": kot.id, "reversed_at": kot.reversed_at.isoformat()},
            )

        invoice = kot.invoice
        refunded = _refund_taken_money(kot, invoice, reason, user_id)
        if invoice is not None:
            kot.invoice = None
            db.session.flush()

        movements = reverse_movements(
            Reference.kot(kot.id), note=f"Reversal of {kot.kot_number}", user_id=user_id
        )

        kot.reversed_at = utcnow()
        kot.reversal_reason = reason
        db.session.flush()
        return ReversalResult(kot=kot, refunded_cents=refunded, movements=movements)

    result = run_in_transaction(_op)
    current_app.logger.info(
        "Reversed KOT %s (refunded=%s cents, movements=%s): %s",
        result.kot.kot_number,
        result.refunded_cents,
        len(result.movements),
        reason or "-",
    )
    return result


def delete_kot(kot_id: int, user_id: int | None = None) -> dict:
    """
    Delete a KOT. Outstanding stock movements are compensated first; the
    invoice with its items and payments is removed with the KOT.
    """
    def _op():
        kot = _lock_kot(kot_id)
        kot_number = kot.kot_number
        refunded = _refund_taken_money(kot, kot.invoice, "deleted", user_id)
        movements = reverse_movements(
            Reference.kot(kot.id), note=f"Deletion of {kot_number}", user_id=user_id
        )
        db.session.delete(kot)
        db.session.flush()
        return {
            "kot_id": kot_id,
            "kot_number": kot_number,
            "refunded_cents": refunded,
            "reversed_movements": len(movements),
        }

    result = run_in_transaction(_op)
    current_app.logger.info(
        "Deleted KOT %s (reversed %s movements)", result["kot_number"], result["reversed_movements"]
    )
    return result
