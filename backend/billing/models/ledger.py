from __future__ import annotations

from ..extensions import db
from ..references import Reference
from ..time_utils import to_utc_z, to_iso_date

TXN_INCOME = "income"
TXN_EXPENSE = "expense"


class Transaction(db.Model):
    """
    Cash-book row.

    IMMUTABLE: every payment appends one row; a void or refund appends a
    row of the opposite type instead of editing the original.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("type IN ('income', 'expense')", name="ck_transactions_type"),
        db.CheckConstraint("amount_cents > 0", name="ck_transactions_amount"),
        db.Index("ix_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    category = db.Column(db.String(64), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    transaction_date = db.Column(db.Date, nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)
    reference_number = db.Column(db.String(128), nullable=True)

    reference_type = db.Column(db.String(16), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def reference(self) -> Reference | None:
        return Reference.from_columns(self.reference_type, self.reference_id)

    def to_dict(self) -> dict:
        ref = self.reference
        return {
            "id": self.id,
            "type": self.type,
            "category": self.category,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "transaction_date": to_iso_date(self.transaction_date),
            "payment_method_id": self.payment_method_id,
            "reference_number": self.reference_number,
            "reference": ref.to_dict() if ref else None,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating KOT, invoice and purchase
    numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
