from __future__ import annotations

from ..extensions import db
from ..references import Reference
from ..time_utils import to_utc_z

MOVEMENT_PURCHASE = "purchase"
MOVEMENT_SALE = "sale"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_CONSUMPTION = "consumption"

MOVEMENT_TYPES = (MOVEMENT_PURCHASE, MOVEMENT_SALE, MOVEMENT_ADJUSTMENT, MOVEMENT_CONSUMPTION)


class InventoryMovement(db.Model):
    """
    Append-only log of signed stock changes.

    IMMUTABLE: rows are never updated or deleted. A reversal is a new row
    with the opposite sign, the same reference, and reverses_movement_id
    pointing at the original (unique, so each movement reverses at most once).
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint(
            "movement_type IN ('purchase', 'sale', 'adjustment', 'consumption')",
            name="ck_inventory_movements_type",
        ),
        db.CheckConstraint("quantity <> 0", name="ck_inventory_movements_nonzero"),
        db.UniqueConstraint("reverses_movement_id", name="uq_inventory_movements_reverses"),
        db.Index("ix_inventory_movements_reference", "reference_type", "reference_id"),
        db.Index("ix_inventory_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False, index=True)

    # Signed: purchases positive, sales/consumption negative
    quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(16), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    reverses_movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    @property
    def reference(self) -> Reference | None:
        return Reference.from_columns(self.reference_type, self.reference_id)

    def to_dict(self) -> dict:
        ref = self.reference
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reference": ref.to_dict() if ref else None,
            "reverses_movement_id": self.reverses_movement_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
