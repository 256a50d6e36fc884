# Overview: Service-layer operations for supplier purchases; receiving drives purchase movements.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func

from ..errors import InvalidTransition, InvalidPayment, InvalidLineItem, NotFound
from ..extensions import db
from ..models import Purchase, PurchaseItem, PurchasePayment, Product, Supplier
from ..models.inventory import MOVEMENT_PURCHASE
from ..models.invoices import PAYMENT_ROW_COMPLETED
from ..models.purchases import (
    PURCHASE_STATUS_ORDERED,
    PURCHASE_STATUS_RECEIVED,
    PURCHASE_STATUS_CANCELLED,
)
from ..references import Reference
from ..time_utils import utcnow
from .company_service import get_tax_config
from .concurrency import lock_for_update, run_in_transaction
from .document_service import DOC_PURCHASE, next_document_number
from .inventory_service import record_movement, reverse_movements
from .payment_service import recompute_payment_state
from .pricing_service import LineInput, calculate_totals


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFound(f"Purchase {purchase_id} not found", details={"purchase_id": purchase_id})
    return purchase


def _lock_purchase(purchase_id: int) -> Purchase:
    purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
    if purchase is None:
        raise NotFound(f"Purchase {purchase_id} not found", details={"purchase_id": purchase_id})
    return purchase


def create_purchase(
    supplier_id: int,
    items,
    order_date: date | None = None,
    expected_date: date | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Purchase:
    """
    Create an ordered purchase.

    items: iterable of dicts with product_id, quantity, unit_price_cents and
    optional tax_rate_bps (defaults to the product's rate). Tax is split by
    supplier state against the seller state. No stock moves until receipt.
    """
    items = list(items or [])
    if not items:
        raise InvalidLineItem("At least one line item is required")

    def _op():
        supplier = db.session.get(Supplier, supplier_id)
        if supplier is None:
            raise NotFound(f"Supplier {supplier_id} not found", details={"supplier_id": supplier_id})

        products = []
        lines = []
        for index, entry in enumerate(items):
            product = db.session.get(Product, entry.get("product_id"))
            if product is None:
                raise NotFound(
                    f"Product {entry.get('product_id')} not found",
                    details={"line": index, "product_id": entry.get("product_id")},
                )
            rate = entry.get("tax_rate_bps")
            if rate is None:
                rate = product.tax_rate_bps
            products.append(product)
            lines.append(LineInput(entry.get("quantity"), entry.get("unit_price_cents"), rate))

        tax = get_tax_config()
        totals = calculate_totals(
            lines,
            seller_state=tax.seller_state,
            buyer_state=supplier.state,
            enable_tax=tax.enable_tax,
        )

        purchase = Purchase(
            purchase_number=next_document_number(DOC_PURCHASE),
            supplier_id=supplier.id,
            order_date=order_date or utcnow().date(),
            expected_date=expected_date,
            status=PURCHASE_STATUS_ORDERED,
            subtotal_cents=totals.subtotal_cents,
            cgst_cents=totals.cgst_cents,
            sgst_cents=totals.sgst_cents,
            igst_cents=totals.igst_cents,
            total_cents=totals.total_cents,
            notes=notes,
            created_by_user_id=user_id,
        )
        for product, line in zip(products, totals.lines):
            purchase.items.append(
                PurchaseItem(
                    product_id=product.id,
                    product_name=product.name,
                    sku=product.sku,
                    unit=product.unit,
                    hsn_code=product.hsn_code,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    tax_rate_bps=line.tax_rate_bps,
                    line_total_cents=line.line_total_cents,
                    cgst_cents=line.cgst_cents,
                    sgst_cents=line.sgst_cents,
                    igst_cents=line.igst_cents,
                )
            )
        db.session.add(purchase)
        db.session.flush()
        recompute_payment_state(purchase, Reference.purchase(purchase.id))
        return purchase

    return run_in_transaction(_op)


def receive_purchase(purchase_id: int, received_date: date | None = None, user_id: int | None = None) -> Purchase:
    """ordered -> received. Posts one +quantity purchase movement per line."""
    def _op():
        purchase = _lock_purchase(purchase_id)
        if purchase.status != PURCHASE_STATUS_ORDERED:
            raise InvalidTransition(
                f"Purchase {purchase.purchase_number} is {purchase.status}",
                details={"purchase_id": purchase.id, "status": purchase.status},
            )

        reference = Reference.purchase(purchase.id)
        for item in sorted(purchase.items, key=lambda i: i.product_id):
            record_movement(
                item.product_id,
                MOVEMENT_PURCHASE,
                item.quantity,
                reference,
                f"Received {purchase.purchase_number}",
                user_id,
            )

        purchase.status = PURCHASE_STATUS_RECEIVED
        purchase.received_date = received_date or utcnow().date()
        db.session.flush()
        return purchase

    return run_in_transaction(_op)


def cancel_purchase(purchase_id: int, reason: str | None = None, user_id: int | None = None) -> Purchase:
    """
    Cancel a purchase. A received purchase gets compensating movements.
    Blocked while completed payments exist (void them first).
    """
    def _op():
        purchase = _lock_purchase(purchase_id)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise InvalidTransition(
                f"Purchase {purchase.purchase_number} is already cancelled",
                details={"purchase_id": purchase.id},
            )

        paid = (
            db.session.query(func.count(PurchasePayment.id))
            .filter(
                PurchasePayment.purchase_id == purchase.id,
                PurchasePayment.status == PAYMENT_ROW_COMPLETED,
            )
            .scalar()
        )
        if paid:
            raise InvalidPayment(
                "Cannot cancel a purchase with payments; void them first",
                details={"purchase_id": purchase.id, "payments": int(paid)},
            )

        if purchase.status == PURCHASE_STATUS_RECEIVED:
            reverse_movements(
                Reference.purchase(purchase.id),
                note=f"Cancelled {purchase.purchase_number}",
                user_id=user_id,
            )

        purchase.status = PURCHASE_STATUS_CANCELLED
        purchase.cancel_reason = reason
        db.session.flush()
        return purchase

    purchase = run_in_transaction(_op)
    current_app.logger.info("Cancelled purchase %s: %s", purchase.purchase_number, reason or "-")
    return purchase
