from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date
from .invoices import PAYMENT_STATUS_UNPAID, PAYMENT_ROW_COMPLETED

PURCHASE_STATUS_ORDERED = "ordered"
PURCHASE_STATUS_RECEIVED = "received"
PURCHASE_STATUS_CANCELLED = "cancelled"

PURCHASE_STATUSES = (PURCHASE_STATUS_ORDERED, PURCHASE_STATUS_RECEIVED, PURCHASE_STATUS_CANCELLED)


class Purchase(db.Model):
    """
    Supplier purchase order. Mirrors Invoice on the buying side.

    Receiving a purchase posts `purchase` inventory movements; the payment
    projection (payment_status, amount_paid_cents) is read-only.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.CheckConstraint("status IN ('ordered', 'received', 'cancelled')", name="ck_purchases_status"),
        db.CheckConstraint(
            "payment_status IN ('unpaid', 'partial', 'paid')",
            name="ck_purchases_payment_status",
        ),
        db.CheckConstraint(
            "cgst_cents >= 0 AND sgst_cents >= 0 AND igst_cents >= 0",
            name="ck_purchases_tax_non_negative",
        ),
        db.CheckConstraint(
            "total_cents = subtotal_cents + cgst_cents + sgst_cents + igst_cents",
            name="ck_purchases_total",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_number = db.Column(db.String(64), nullable=False, unique=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    order_date = db.Column(db.Date, nullable=False, index=True)
    expected_date = db.Column(db.Date, nullable=True)
    received_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PURCHASE_STATUS_ORDERED, index=True)
    _payment_status = db.Column(
        "payment_status", db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID, index=True
    )

    subtotal_cents = db.Column(db.Integer, nullable=False)
    cgst_cents = db.Column(db.Integer, nullable=False, default=0)
    sgst_cents = db.Column(db.Integer, nullable=False, default=0)
    igst_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    _amount_paid_cents = db.Column("amount_paid_cents", db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    items = db.relationship(
        "PurchaseItem",
        backref="purchase",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchaseItem.id",
    )
    payments = db.relationship(
        "PurchasePayment",
        backref="purchase",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchasePayment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def payment_status(self):
        return self._payment_status

    @hybrid_property
    def amount_paid_cents(self):
        return self._amount_paid_cents

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "purchase_number": self.purchase_number,
            "supplier_id": self.supplier_id,
            "order_date": to_iso_date(self.order_date),
            "expected_date": to_iso_date(self.expected_date),
            "received_date": to_iso_date(self.received_date),
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "cgst_cents": self.cgst_cents,
            "sgst_cents": self.sgst_cents,
            "igst_cents": self.igst_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "notes": self.notes,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(
        db.Integer, db.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    unit = db.Column(db.String(32), nullable=False)
    hsn_code = db.Column(db.String(32), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    cgst_cents = db.Column(db.Integer, nullable=False, default=0)
    sgst_cents = db.Column(db.Integer, nullable=False, default=0)
    igst_cents = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "line_total_cents": self.line_total_cents,
            "cgst_cents": self.cgst_cents,
            "sgst_cents": self.sgst_cents,
            "igst_cents": self.igst_cents,
        }


class PurchasePayment(db.Model):
    """Payment made to a supplier. Append-only except for the void flag."""
    __tablename__ = "purchase_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_purchase_payments_amount"),
        db.CheckConstraint("status IN ('completed', 'voided')", name="ck_purchase_payments_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(
        db.Integer, db.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PAYMENT_ROW_COMPLETED, index=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "amount_cents": self.amount_cents,
            "payment_date": to_iso_date(self.payment_date),
            "payment_method_id": self.payment_method_id,
            "payment_method": self.payment_method.name if self.payment_method else None,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "status": self.status,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
        }
