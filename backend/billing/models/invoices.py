from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date

INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_SENT = "sent"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_OVERDUE = "overdue"
INVOICE_STATUS_CANCELLED = "cancelled"

INVOICE_STATUSES = (
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_CANCELLED,
)

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"

PAYMENT_ROW_COMPLETED = "completed"
PAYMENT_ROW_VOIDED = "voided"


class Invoice(db.Model):
    """
    Immutable billing snapshot of a served KOT.

    INVARIANT: total = subtotal - discount + cgst + sgst + igst, each tax
    component non-negative. Amounts are fixed at finalization.

    payment_status and amount_paid_cents are projections of invoice_payments
    and are read-only here; payment_service recomputes them.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('draft', 'sent', 'paid', 'overdue', 'cancelled')",
            name="ck_invoices_status",
        ),
        db.CheckConstraint(
            "payment_status IN ('unpaid', 'partial', 'paid')",
            name="ck_invoices_payment_status",
        ),
        db.CheckConstraint(
            "cgst_cents >= 0 AND sgst_cents >= 0 AND igst_cents >= 0",
            name="ck_invoices_tax_non_negative",
        ),
        db.CheckConstraint(
            "discount_cents >= 0 AND discount_cents <= subtotal_cents",
            name="ck_invoices_discount",
        ),
        db.CheckConstraint(
            "total_cents = subtotal_cents - discount_cents + cgst_cents + sgst_cents + igst_cents",
            name="ck_invoices_total",
        ),
        db.Index("ix_invoices_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)

    # One invoice per KOT; deleting the KOT deletes the invoice.
    kot_id = db.Column(
        db.Integer, db.ForeignKey("kots.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    invoice_date = db.Column(db.Date, nullable=False, index=True)
    due_date = db.Column(db.Date, nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_DRAFT, index=True)
    _payment_status = db.Column(
        "payment_status", db.String(16), nullable=False, default=PAYMENT_STATUS_UNPAID, index=True
    )

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_reason = db.Column(db.String(255), nullable=True)
    cgst_cents = db.Column(db.Integer, nullable=False, default=0)
    sgst_cents = db.Column(db.Integer, nullable=False, default=0)
    igst_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    _amount_paid_cents = db.Column("amount_paid_cents", db.Integer, nullable=False, default=0)

    tax_label = db.Column(db.String(32), nullable=False, default="GST")
    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    kot = db.relationship(
        "Kot",
        backref=db.backref("invoice", uselist=False, cascade="all, delete-orphan"),
    )
    customer = db.relationship("Customer")
    items = db.relationship(
        "InvoiceItem",
        backref="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )
    payments = db.relationship(
        "InvoicePayment",
        backref="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoicePayment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def payment_status(self):
        return self._payment_status

    @hybrid_property
    def amount_paid_cents(self):
        return self._amount_paid_cents

    @property
    def tax_cents(self) -> int:
        return self.cgst_cents + self.sgst_cents + self.igst_cents

    @property
    def balance_due_cents(self) -> int:
        return self.total_cents - self.amount_paid_cents

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "kot_id": self.kot_id,
            "customer_id": self.customer_id,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "discount_reason": self.discount_reason,
            "cgst_cents": self.cgst_cents,
            "sgst_cents": self.sgst_cents,
            "igst_cents": self.igst_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "tax_label": self.tax_label,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InvoiceItem(db.Model):
    """Invoice line with its pro-rated discount share and tax split."""
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint(
            "cgst_cents >= 0 AND sgst_cents >= 0 AND igst_cents >= 0",
            name="ck_invoice_items_tax_non_negative",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kot_item_id = db.Column(db.Integer, db.ForeignKey("kot_items.id", ondelete="SET NULL"), nullable=True)

    product_name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    hsn_code = db.Column(db.String(32), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)

    line_total_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    taxable_cents = db.Column(db.Integer, nullable=False)
    cgst_cents = db.Column(db.Integer, nullable=False, default=0)
    sgst_cents = db.Column(db.Integer, nullable=False, default=0)
    igst_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "kot_item_id": self.kot_item_id,
            "product_name": self.product_name,
            "hsn_code": self.hsn_code,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "line_total_cents": self.line_total_cents,
            "discount_cents": self.discount_cents,
            "taxable_cents": self.taxable_cents,
            "cgst_cents": self.cgst_cents,
            "sgst_cents": self.sgst_cents,
            "igst_cents": self.igst_cents,
        }


class InvoicePayment(db.Model):
    """
    Payment received against an invoice.

    Append-only: the only permitted change is marking the row voided.
    """
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_invoice_payments_amount"),
        db.CheckConstraint("status IN ('completed', 'voided')", name="ck_invoice_payments_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
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
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "payment_date": to_iso_date(self.payment_date),
            "payment_method_id": self.payment_method_id,
            "payment_method": self.payment_method.name if self.payment_method else None,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "status": self.status,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
