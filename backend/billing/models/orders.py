from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

KOT_STATUS_PENDING = "pending"
KOT_STATUS_PREPARING = "preparing"
KOT_STATUS_READY = "ready"
KOT_STATUS_SERVED = "served"
KOT_STATUS_CANCELLED = "cancelled"

KOT_STATUSES = (
    KOT_STATUS_PENDING,
    KOT_STATUS_PREPARING,
    KOT_STATUS_READY,
    KOT_STATUS_SERVED,
    KOT_STATUS_CANCELLED,
)
KOT_TERMINAL_STATUSES = (KOT_STATUS_SERVED, KOT_STATUS_CANCELLED)

ORDER_TYPES = ("dine_in", "take_away", "delivery")
DELIVERY_PLATFORMS = ("swiggy", "zomato", "uber_eats", "manual")

KOT_PAYMENT_CASH = "cash"
KOT_PAYMENT_UPI = "upi"
KOT_PAYMENT_CARD = "card"
KOT_PAYMENT_SPLIT = "split"
KOT_PAYMENT_METHODS = (KOT_PAYMENT_CASH, KOT_PAYMENT_UPI, KOT_PAYMENT_CARD, KOT_PAYMENT_SPLIT)


class Kot(db.Model):
    """
    Kitchen order ticket.

    LIFECYCLE: pending -> preparing -> ready -> served | cancelled.
    served and cancelled are terminal. Only kot_service changes status.

    Payment capture stores the intended tender; per-method amounts only
    matter when payment_method='split' and must then add up to the total.
    """
    __tablename__ = "kots"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'preparing', 'ready', 'served', 'cancelled')",
            name="ck_kots_status",
        ),
        db.CheckConstraint("order_type IN ('dine_in', 'take_away', 'delivery')", name="ck_kots_order_type"),
        db.CheckConstraint(
            "payment_method IS NULL OR payment_method IN ('cash', 'upi', 'card', 'split')",
            name="ck_kots_payment_method",
        ),
        db.CheckConstraint(
            "cash_amount_cents >= 0 AND upi_amount_cents >= 0 AND card_amount_cents >= 0",
            name="ck_kots_tender_amounts",
        ),
        db.Index("ix_kots_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kot_number = db.Column(db.String(64), nullable=False, unique=True)
    table_number = db.Column(db.String(32), nullable=True)
    order_type = db.Column(db.String(16), nullable=False, default="dine_in")
    delivery_platform = db.Column(db.String(16), nullable=True)
    delivery_partner_name = db.Column(db.String(128), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=KOT_STATUS_PENDING, index=True)

    payment_method = db.Column(db.String(16), nullable=True)
    cash_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    upi_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    card_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    # Served orders are never re-opened; a reversal is recorded alongside.
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversal_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    items = db.relationship(
        "KotItem",
        backref="kot",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="KotItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in KOT_TERMINAL_STATUSES

    def to_dict(self, include_items: bool = False) -> dict:
        invoice = self.invoice
        data = {
            "id": self.id,
            "kot_number": self.kot_number,
            "table_number": self.table_number,
            "order_type": self.order_type,
            "delivery_platform": self.delivery_platform,
            "delivery_partner_name": self.delivery_partner_name,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "status": self.status,
            "payment_method": self.payment_method,
            "cash_amount_cents": self.cash_amount_cents,
            "upi_amount_cents": self.upi_amount_cents,
            "card_amount_cents": self.card_amount_cents,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "reversed_at": to_utc_z(self.reversed_at),
            "reversal_reason": self.reversal_reason,
            "invoice_id": invoice.id if invoice else None,
            "payment_status": invoice.payment_status if invoice else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class KotItem(db.Model):
    """
    Line on a KOT. unit_price_cents and tax_rate_bps are snapshots taken when
    the line was added; later catalog price changes do not touch them.
    """
    __tablename__ = "kot_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_kot_items_quantity"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_kot_items_unit_price"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kot_id = db.Column(db.Integer, db.ForeignKey("kots.id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id", ondelete="SET NULL"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    item_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    menu_item = db.relationship("MenuItem")
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kot_id": self.kot_id,
            "menu_item_id": self.menu_item_id,
            "product_id": self.product_id,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
