import pytest
from sqlalchemy import text

from billing.errors import CorruptionDetected, InvalidMovement, NotFound
from billing.models import InventoryMovement
from billing.models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_CONSUMPTION,
    MOVEMENT_PURCHASE,
    MOVEMENT_SALE,
)
from billing.references import Reference
from billing.services import inventory_service
from billing.services.concurrency import run_in_transaction

from conftest import stock_up


def _record(product_id, movement_type, quantity, reference=None):
    return run_in_transaction(
        lambda: inventory_service.record_movement(product_id, movement_type, quantity, reference)
    )


class TestRecordMovement:
    def test_purchase_increases_cached_stock(self, db_session, paneer):
        movement = _record(paneer.id, MOVEMENT_PURCHASE, 5000)

        assert movement.quantity == 5000
        assert inventory_service.current_stock(paneer.id) == 5000
        assert inventory_service.ledger_stock(paneer.id) == 5000

    def test_cache_tracks_ledger_over_sequence(self, db_session, paneer):
        _record(paneer.id, MOVEMENT_PURCHASE, 5000)
        _record(paneer.id, MOVEMENT_CONSUMPTION, -400)
        _record(paneer.id, MOVEMENT_ADJUSTMENT, -100)
        _record(paneer.id, MOVEMENT_ADJUSTMENT, 25)

        assert inventory_service.current_stock(paneer.id) == 4525
        assert inventory_service.verify_stock(paneer.id) == 4525

    @pytest.mark.parametrize("movement_type,quantity", [
        (MOVEMENT_PURCHASE, -10),
        (MOVEMENT_SALE, 1),
        (MOVEMENT_CONSUMPTION, 200),
        (MOVEMENT_ADJUSTMENT, 0),
        ("theft", -1),
    ])
    def test_invalid_sign_or_type_rejected(self, db_session, paneer, movement_type, quantity):
        with pytest.raises(InvalidMovement):
            _record(paneer.id, movement_type, quantity)

        assert inventory_service.current_stock(paneer.id) == 0
        assert db_session.query(InventoryMovement).count() == 0

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFound):
            _record(4242, MOVEMENT_PURCHASE, 1)


class TestOversell:
    def test_negative_stock_is_warning_not_error(self, db_session, paneer):
        stock_up(paneer.id, 100)

        movement, warnings = inventory_service.adjust_stock(paneer.id, -300, note="spillage", user_id=7)

        assert movement.movement_type == MOVEMENT_ADJUSTMENT
        assert movement.created_by_user_id == 7
        assert inventory_service.current_stock(paneer.id) == -200
        assert warnings == [{
            "type": "negative_stock",
            "product_id": paneer.id,
            "product_name": "Paneer",
            "stock_quantity": -200,
            "unit": "g",
        }]

    def test_no_warning_when_stock_stays_positive(self, db_session, paneer):
        stock_up(paneer.id, 1000)
        _, warnings = inventory_service.adjust_stock(paneer.id, -300)
        assert warnings == []

    def test_zero_adjustment_rejected(self, db_session, paneer):
        with pytest.raises(InvalidMovement):
            inventory_service.adjust_stock(paneer.id, 0)


class TestVerifyAndRebuild:
    def _corrupt(self, db_session, product_id, value):
        db_session.execute(
            text("UPDATE products SET stock_quantity = :value WHERE id = :id"),
            {"value": value, "id": product_id},
        )
        db_session.commit()

    def test_verify_detects_corruption(self, db_session, paneer, capsicum):
        stock_up(paneer.id, 1000)
        stock_up(capsicum.id, 300)
        self._corrupt(db_session, paneer.id, 999)

        with pytest.raises(CorruptionDetected) as exc:
            inventory_service.verify_stock(paneer.id)
        assert exc.value.details == {"product_id": paneer.id, "cached": 999, "ledger": 1000}
        assert exc.value.status_code == 500

        mismatches = inventory_service.verify_all_stock()
        assert mismatches == [{"product_id": paneer.id, "name": "Paneer", "cached": 999, "ledger": 1000}]

    def test_verify_is_never_auto_corrected(self, db_session, paneer):
        stock_up(paneer.id, 1000)
        self._corrupt(db_session, paneer.id, 1)

        with pytest.raises(CorruptionDetected):
            inventory_service.verify_stock(paneer.id)
        assert inventory_service.current_stock(paneer.id) == 1

    def test_rebuild_reprojects_from_ledger(self, db_session, paneer):
        stock_up(paneer.id, 1000)
        self._corrupt(db_session, paneer.id, 1)

        result = inventory_service.rebuild_stock(paneer.id)

        assert result == {"product_id": paneer.id, "before": 1, "after": 1000}
        assert inventory_service.verify_stock(paneer.id) == 1000
        assert inventory_service.verify_all_stock() == []


class TestReverseMovements:
    def test_compensates_each_movement_once(self, db_session, paneer, capsicum):
        stock_up(paneer.id, 1000)
        stock_up(capsicum.id, 1000)
        ref = Reference.kot(1)
        _record(paneer.id, MOVEMENT_CONSUMPTION, -400, ref)
        _record(capsicum.id, MOVEMENT_CONSUMPTION, -100, ref)

        reversed_rows = run_in_transaction(lambda: inventory_service.reverse_movements(ref))

        assert len(reversed_rows) == 2
        assert {(m.product_id, m.quantity) for m in reversed_rows} == {(paneer.id, 400), (capsicum.id, 100)}
        assert all(m.reference == ref for m in reversed_rows)
        assert all(m.reverses_movement_id is not None for m in reversed_rows)
        assert inventory_service.current_stock(paneer.id) == 1000
        assert inventory_service.current_stock(capsicum.id) == 1000

        # Already compensated: nothing left to reverse
        again = run_in_transaction(lambda: inventory_service.reverse_movements(ref))
        assert again == []
        assert inventory_service.verify_stock(paneer.id) == 1000

    def test_originals_are_kept(self, db_session, paneer):
        ref = Reference.purchase(3)
        original = _record(paneer.id, MOVEMENT_PURCHASE, 700, ref)

        run_in_transaction(lambda: inventory_service.reverse_movements(ref))

        rows = db_session.query(InventoryMovement).order_by(InventoryMovement.id).all()
        assert [(r.id, r.quantity) for r in rows] == [(original.id, 700), (rows[1].id, -700)]
        assert rows[1].movement_type == MOVEMENT_PURCHASE
        assert rows[1].reverses_movement_id == original.id

    def test_other_references_untouched(self, db_session, paneer):
        stock_up(paneer.id, 1000)
        _record(paneer.id, MOVEMENT_CONSUMPTION, -200, Reference.kot(1))
        _record(paneer.id, MOVEMENT_CONSUMPTION, -300, Reference.kot(2))

        run_in_transaction(lambda: inventory_service.reverse_movements(Reference.kot(1)))

        assert inventory_service.current_stock(paneer.id) == 700


class TestQueries:
    def test_list_movements_newest_first(self, db_session, paneer):
        stock_up(paneer.id, 1000)
        inventory_service.adjust_stock(paneer.id, -10)
        movements = inventory_service.list_movements(paneer.id, limit=1)
        assert len(movements) == 1
        assert movements[0].quantity == -10

    def test_list_movements_unknown_product(self, db_session):
        with pytest.raises(NotFound):
            inventory_service.list_movements(4242)

    def test_low_stock(self, db_session, paneer, capsicum):
        stock_up(paneer.id, 400)  # reorder level 500
        stock_up(capsicum.id, 50)  # reorder level 0

        low = inventory_service.list_low_stock()
        assert [p.id for p in low] == [paneer.id]
