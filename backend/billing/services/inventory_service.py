# Overview: Service-layer operations for inventory; the only writer of product stock.

"""
Inventory Ledger Invariants (authoritative)

Inventory model:
- Stock is ledger-derived from InventoryMovement rows (signed quantities).
- Product.stock_quantity is a cached running sum, updated in the same
  transaction that appends a movement, with the product row locked.
- For every product: stock_quantity == SUM(inventory_movements.quantity).

Movement signs:
- purchase: positive
- sale, consumption: negative
- adjustment: any non-zero
- Compensating movements (reverses_movement_id set) carry the opposite sign
  of the movement they reverse, whatever its type.

Reversal:
- Movements are never updated or deleted. A reversal appends one
  compensating row per original; reverses_movement_id is unique, so a
  movement is reversed at most once.

Oversell:
- Stock is allowed to go negative (the kitchen already used the goods).
  The resulting negative balance is reported as a warning, never rejected.

Corruption:
- A cache/ledger mismatch is never auto-corrected. verify_stock raises
  CorruptionDetected; rebuild_stock is the operator's manual repair.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import aliased

from ..errors import InvalidMovement, NotFound, CorruptionDetected
from ..extensions import db
from ..models import Product, InventoryMovement, MenuItem
from ..models.inventory import (
    MOVEMENT_PURCHASE,
    MOVEMENT_SALE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_CONSUMPTION,
    MOVEMENT_TYPES,
)
from ..references import Reference
from .concurrency import lock_for_update, run_in_transaction


def _validate_sign(movement_type: str, quantity: int) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise InvalidMovement(
            f"Unknown movement type: {movement_type}",
            details={"movement_type": movement_type},
        )
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidMovement("Movement quantity must be an integer", details={"quantity": quantity})
    if quantity == 0:
        raise InvalidMovement("Movement quantity cannot be zero", details={"quantity": quantity})
    if movement_type == MOVEMENT_PURCHASE and quantity < 0:
        raise InvalidMovement(
            "Purchase movements must be positive",
            details={"movement_type": movement_type, "quantity": quantity},
        )
    if movement_type in (MOVEMENT_SALE, MOVEMENT_CONSUMPTION) and quantity > 0:
        raise InvalidMovement(
            f"{movement_type.capitalize()} movements must be negative",
            details={"movement_type": movement_type, "quantity": quantity},
        )


def _lock_product(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def oversell_warning(product: Product) -> dict | None:
    if product.stock_quantity >= 0:
        return None
    return {
        "type": "negative_stock",
        "product_id": product.id,
        "product_name": product.name,
        "stock_quantity": product.stock_quantity,
        "unit": product.unit,
    }


def record_movement(
    product_id: int,
    movement_type: str,
    quantity: int,
    reference: Reference | None = None,
    note: str | None = None,
    user_id: int | None = None,
    *,
    reverses_movement_id: int | None = None,
) -> InventoryMovement:
    """
    Append a movement and update the cached stock (does not commit).

    Must run inside the caller's transaction. The product row is locked
    until that transaction ends.
    """
    if reverses_movement_id is None:
        _validate_sign(movement_type, quantity)
    elif quantity == 0:
        raise InvalidMovement("Movement quantity cannot be zero", details={"quantity": quantity})

    product = _lock_product(product_id)

    movement = InventoryMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity=quantity,
        reference_type=reference.kind if reference else None,
        reference_id=reference.id if reference else None,
        reverses_movement_id=reverses_movement_id,
        note=note,
        created_by_user_id=user_id,
    )
    db.session.add(movement)
    product._stock_quantity = product._stock_quantity + quantity
    db.session.flush()

    warning = oversell_warning(product)
    if warning is not None:
        current_app.logger.warning(
            "Stock for product %s (%s) is negative: %s %s",
            product.id, product.name, product.stock_quantity, product.unit,
        )
    return movement


def current_stock(product_id: int) -> int:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product.stock_quantity


def ledger_stock(product_id: int) -> int:
    """Audit read: SUM over the movement log."""
    total = (
        db.session.query(func.coalesce(func.sum(InventoryMovement.quantity), 0))
        .filter(InventoryMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def verify_stock(product_id: int) -> int:
    """Return the stock if cache and ledger agree, else raise CorruptionDetected."""
    cached = current_stock(product_id)
    ledger = ledger_stock(product_id)
    if cached != ledger:
        current_app.logger.error(
            "Stock corruption for product %s: cached=%s ledger=%s", product_id, cached, ledger
        )
        raise CorruptionDetected(
            f"Stock cache for product {product_id} disagrees with the movement log",
            details={"product_id": product_id, "cached": cached, "ledger": ledger},
        )
    return cached


def verify_all_stock() -> list[dict]:
    """Return every product whose cached stock differs from its ledger sum."""
    sums = (
        db.session.query(
            InventoryMovement.product_id.label("product_id"),
            func.sum(InventoryMovement.quantity).label("ledger"),
        )
        .group_by(InventoryMovement.product_id)
        .subquery()
    )
    rows = (
        db.session.query(Product.id, Product.name, Product.stock_quantity, sums.c.ledger)
        .outerjoin(sums, sums.c.product_id == Product.id)
        .order_by(Product.id.asc())
        .all()
    )

    mismatches = []
    for product_id, name, cached, ledger in rows:
        ledger = int(ledger or 0)
        if cached != ledger:
            current_app.logger.error(
                "Stock corruption for product %s: cached=%s ledger=%s", product_id, cached, ledger
            )
            mismatches.append(
                {"product_id": product_id, "name": name, "cached": cached, "ledger": ledger}
            )
    return mismatches


def rebuild_stock(product_id: int) -> dict:
    """
    Manual repair: re-project the cached stock from the movement log.

    Never called by any automatic path.
    """
    def _op():
        product = _lock_product(product_id)
        before = product.stock_quantity
        after = ledger_stock(product_id)
        product._stock_quantity = after
        db.session.flush()
        return {"product_id": product_id, "before": before, "after": after}

    result = run_in_transaction(_op)
    if result["before"] != result["after"]:
        current_app.logger.warning(
            "Rebuilt stock for product %s: %s -> %s", product_id, result["before"], result["after"]
        )
    return result


def _planned_consumption(items) -> list[tuple[int, str, int, str]]:
    """(product_id, movement_type, quantity, note) for every stock effect of the items."""
    planned = []
    for item in items:
        menu_item = db.session.get(MenuItem, item.menu_item_id) if item.menu_item_id else None

        if menu_item is not None and menu_item.ingredients:
            for ingredient in menu_item.ingredients:
                planned.append(
                    (
                        ingredient.product_id,
                        MOVEMENT_CONSUMPTION,
                        -(ingredient.quantity_required * item.quantity),
                        f"{item.quantity} x {item.item_name}",
                    )
                )
            continue

        product_id = item.product_id
        if product_id is None and menu_item is not None:
            product_id = menu_item.product_id
        if product_id is not None:
            planned.append((product_id, MOVEMENT_SALE, -item.quantity, item.item_name))
    return planned


def consume_for_kot(kot, items=None, user_id: int | None = None):
    """
    Emit the stock effect of serving a KOT (does not commit).

    Recipe items consume every ingredient; direct products and menu items
    mapped to a product are sold. Products are locked in id order.

    Returns (movements, warnings).
    """
    if items is None:
        items = kot.items
    reference = Reference.kot(kot.id)

    planned = sorted(_planned_consumption(items), key=lambda p: p[0])

    movements = []
    for product_id, movement_type, quantity, note in planned:
        movements.append(
            record_movement(product_id, movement_type, quantity, reference, note, user_id)
        )

    warnings = []
    seen = set()
    for movement in movements:
        if movement.product_id in seen:
            continue
        seen.add(movement.product_id)
        warning = oversell_warning(movement.product)
        if warning is not None:
            warnings.append(warning)
    return movements, warnings


def reverse_movements(reference: Reference, note: str | None = None, user_id: int | None = None):
    """
    Compensate every not-yet-reversed movement of a reference (does not commit).

    Compensating rows reference the same aggregate and are themselves never
    reversed again.
    """
    compensation = aliased(InventoryMovement)
    originals = (
        db.session.query(InventoryMovement)
        .outerjoin(compensation, compensation.reverses_movement_id == InventoryMovement.id)
        .filter(
            InventoryMovement.reference_type == reference.kind,
            InventoryMovement.reference_id == reference.id,
            InventoryMovement.reverses_movement_id.is_(None),
            compensation.id.is_(None),
        )
        .order_by(InventoryMovement.product_id.asc(), InventoryMovement.id.asc())
        .all()
    )

    reversed_rows = []
    for original in originals:
        reversed_rows.append(
            record_movement(
                original.product_id,
                original.movement_type,
                -original.quantity,
                reference,
                note or f"Reversal of movement {original.id}",
                user_id,
                reverses_movement_id=original.id,
            )
        )
    return reversed_rows


def adjust_stock(product_id: int, quantity_delta: int, note: str | None = None, user_id: int | None = None):
    """Manual stock adjustment as its own transaction. Returns (movement, warnings)."""
    def _op():
        movement = record_movement(product_id, MOVEMENT_ADJUSTMENT, quantity_delta, None, note, user_id)
        warning = oversell_warning(movement.product)
        return movement, [warning] if warning else []

    return run_in_transaction(_op)


def list_movements(product_id: int, limit: int = 100) -> list[InventoryMovement]:
    if db.session.get(Product, product_id) is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return (
        db.session.query(InventoryMovement)
        .filter(InventoryMovement.product_id == product_id)
        .order_by(InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )


def list_low_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock_quantity <= Product.reorder_level)
        .order_by(Product.name.asc())
        .all()
    )
