"""
InventoryLedger: record creation, versioned stock movements, bulk updates
and reservations.
"""

from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from inventory_kernel.domain.dtos import (
    BulkUpdateItem,
    InventoryStatus,
    MovementType,
    StockMovementRequest,
)
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InventoryRecordExistsError,
    InventoryRecordNotFoundError,
    ValidationError,
)
from inventory_kernel.services.inventory_ledger import InventoryLedger, next_status


def _move(kind: MovementType, qty: int, actor=None) -> StockMovementRequest:
    return StockMovementRequest(movement_type=kind, quantity=qty, reason="test", performed_by=actor)


class TestStockMovementRequest:

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            StockMovementRequest(movement_type=MovementType.OUT, quantity=-1)
        assert exc_info.value.field == "quantity"

    @pytest.mark.parametrize("quantity", [1.5, "3", True])
    def test_non_integer_quantity_rejected(self, quantity):
        with pytest.raises(ValidationError) as exc_info:
            StockMovementRequest(movement_type=MovementType.OUT, quantity=quantity)
        assert exc_info.value.field == "quantity"

    def test_movement_type_coerced_from_text(self):
        request = StockMovementRequest(movement_type="damage", quantity=1)
        assert request.movement_type is MovementType.DAMAGE

    def test_unknown_movement_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            StockMovementRequest(movement_type="shrinkage", quantity=1)
        assert exc_info.value.field == "movement_type"

    def test_movement_type_directions(self):
        assert MovementType.IN.is_increase and MovementType.RETURN.is_increase
        for kind in (MovementType.OUT, MovementType.DAMAGE, MovementType.THEFT, MovementType.TRANSFER):
            assert kind.is_decrease
        assert not MovementType.ADJUSTMENT.is_increase
        assert not MovementType.ADJUSTMENT.is_decrease


class TestNextStatus:

    def test_zero_stock_is_out_of_stock(self):
        assert next_status("active", 0) == "out_of_stock"

    def test_restock_reactivates(self):
        assert next_status("out_of_stock", 3) == "active"

    def test_administrative_statuses_untouched(self):
        assert next_status("discontinued", 0) == "discontinued"
        assert next_status("inactive", 10) == "inactive"


class TestCreateRecord:

    def test_create_with_initial_stock(self, ledger, create_product, test_actor_id, inventory_selector):
        product = create_product()
        snapshot = ledger.create_record(product.id, test_actor_id, initial_stock=25)

        assert snapshot.current_stock == 25
        assert snapshot.available_stock == 25
        assert snapshot.reserved_stock == 0
        assert snapshot.status == InventoryStatus.ACTIVE
        assert snapshot.version == 1

        history = inventory_selector.get_history(product.id)
        assert history.total == 1
        assert history.movements[0].movement_type == MovementType.IN
        assert history.movements[0].reason == "Initial stock"

    def test_empty_record_is_out_of_stock(self, ledger, create_product, test_actor_id):
        snapshot = ledger.create_record(create_product().id, test_actor_id)
        assert snapshot.status == InventoryStatus.OUT_OF_STOCK

    def test_duplicate_record_rejected(self, ledger, create_product, test_actor_id):
        product = create_product()
        ledger.create_record(product.id, test_actor_id)
        with pytest.raises(InventoryRecordExistsError):
            ledger.create_record(product.id, test_actor_id)

    def test_get_or_create_is_idempotent(self, ledger, create_product, test_actor_id):
        product = create_product()
        first = ledger.get_or_create_record(product.id, test_actor_id)
        second = ledger.get_or_create_record(product.id, test_actor_id)
        assert first.product_id == second.product_id
        assert second.version == 1

    def test_negative_initial_stock_rejected(self, ledger, create_product, test_actor_id):
        with pytest.raises(ValidationError):
            ledger.create_record(create_product().id, test_actor_id, initial_stock=-1)


class TestUpdateStock:

    def test_stock_in(self, ledger, stocked_product, test_actor_id):
        product = stocked_product(stock=10)
        result = ledger.update_stock(product.id, _move(MovementType.IN, 5, test_actor_id))

        assert result.snapshot.current_stock == 15
        assert result.snapshot.version == 2
        assert result.movement.previous_stock == 10
        assert result.movement.new_stock == 15
        assert result.attempts == 1

    @pytest.mark.parametrize(
        "kind", [MovementType.OUT, MovementType.DAMAGE, MovementType.THEFT, MovementType.TRANSFER]
    )
    def test_decreases(self, ledger, stocked_product, kind):
        product = stocked_product(stock=10)
        result = ledger.update_stock(product.id, _move(kind, 4))
        assert result.snapshot.current_stock == 6

    def test_return_increases(self, ledger, stocked_product):
        product = stocked_product(stock=1)
        assert ledger.update_stock(product.id, _move(MovementType.RETURN, 2)).snapshot.current_stock == 3

    def test_insufficient_stock(self, ledger, stocked_product, inventory_selector):
        product = stocked_product(stock=3)
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.update_stock(product.id, _move(MovementType.OUT, 4))
        assert exc_info.value.requested == 4
        assert exc_info.value.available == 3
        assert inventory_selector.get_status(product.id).current_stock == 3

    def test_zero_quantity_rejected_for_relative_movements(self, ledger, stocked_product):
        product = stocked_product(stock=3)
        with pytest.raises(ValidationError):
            ledger.update_stock(product.id, _move(MovementType.OUT, 0))

    def test_adjustment_sets_absolute_level(self, ledger, stocked_product):
        product = stocked_product(stock=30)
        result = ledger.adjust_stock(product.id, 12, "Stocktake")
        assert result.snapshot.current_stock == 12
        assert result.movement.movement_type == MovementType.ADJUSTMENT

    def test_adjustment_to_zero_marks_out_of_stock(self, ledger, stocked_product):
        product = stocked_product(stock=30)
        assert ledger.adjust_stock(product.id, 0, "Write-off").snapshot.status == InventoryStatus.OUT_OF_STOCK

    def test_unknown_product(self, ledger):
        with pytest.raises(InventoryRecordNotFoundError):
            ledger.update_stock(uuid4(), _move(MovementType.IN, 1))

    def test_stock_updated_logged(self, ledger, stocked_product, captured_logs):
        product = stocked_product(stock=1)
        ledger.update_stock(product.id, _move(MovementType.OUT, 1))

        logs = captured_logs()
        updated = [r for r in logs if r["message"] == "stock_updated"]
        assert updated and updated[-1]["product_id"] == str(product.id)
        assert any(r["message"] == "inventory_status_changed" for r in logs)


class TestReservations:

    def test_reserve_and_release(self, ledger, stocked_product):
        product = stocked_product(stock=10)
        snapshot = ledger.reserve_stock(product.id, 4)
        assert snapshot.reserved_stock == 4
        assert snapshot.available_stock == 6

        snapshot = ledger.release_stock(product.id, 3)
        assert snapshot.reserved_stock == 1
        assert snapshot.available_stock == 9

    def test_reserve_more_than_available(self, ledger, stocked_product):
        product = stocked_product(stock=5)
        ledger.reserve_stock(product.id, 4)
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.reserve_stock(product.id, 2)
        assert exc_info.value.available == 1

    def test_release_floors_at_zero(self, ledger, stocked_product):
        product = stocked_product(stock=5)
        ledger.reserve_stock(product.id, 2)
        assert ledger.release_stock(product.id, 10).reserved_stock == 0

    def test_sale_cannot_eat_reserved_stock(self, ledger, stocked_product):
        product = stocked_product(stock=5)
        ledger.reserve_stock(product.id, 4)
        with pytest.raises(InsufficientStockError):
            ledger.update_stock(product.id, _move(MovementType.OUT, 2))

    def test_sale_fulfilling_reservation(self, ledger, stocked_product):
        product = stocked_product(stock=5)
        ledger.reserve_stock(product.id, 4)
        result = ledger.update_stock(
            product.id, _move(MovementType.OUT, 4), consume_reserved=True
        )
        assert result.snapshot.current_stock == 1
        assert result.snapshot.reserved_stock == 0

    def test_adjustment_clamps_reserved(self, ledger, stocked_product):
        product = stocked_product(stock=10)
        ledger.reserve_stock(product.id, 8)
        snapshot = ledger.adjust_stock(product.id, 3, "Stocktake").snapshot
        assert snapshot.reserved_stock == 3
        assert snapshot.available_stock == 0

    def test_non_positive_reservation_rejected(self, ledger, stocked_product):
        product = stocked_product(stock=10)
        with pytest.raises(ValidationError):
            ledger.reserve_stock(product.id, 0)

    @settings(
        max_examples=30,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        ops=st.lists(
            st.tuples(st.sampled_from(["reserve", "release"]), st.integers(min_value=1, max_value=15)),
            max_size=12,
        )
    )
    def test_reserved_stays_within_bounds(self, session, deterministic_clock, create_product, test_actor_id, ops):
        ledger = InventoryLedger(session, deterministic_clock)
        product = create_product()
        ledger.create_record(product.id, test_actor_id, initial_stock=20)

        for op, qty in ops:
            try:
                if op == "reserve":
                    snapshot = ledger.reserve_stock(product.id, qty)
                else:
                    snapshot = ledger.release_stock(product.id, qty)
            except InsufficientStockError:
                continue
            assert 0 <= snapshot.reserved_stock <= snapshot.current_stock
            assert snapshot.available_stock == snapshot.current_stock - snapshot.reserved_stock


class TestBulkUpdate:

    def test_failures_are_isolated(self, ledger, stocked_product, inventory_selector):
        ok = stocked_product(stock=10)
        short = stocked_product(stock=1)

        results = ledger.bulk_update_stock(
            [
                BulkUpdateItem(ok.id, _move(MovementType.OUT, 3)),
                BulkUpdateItem(short.id, _move(MovementType.OUT, 5)),
                BulkUpdateItem(uuid4(), _move(MovementType.IN, 1)),
            ]
        )

        assert [r.success for r in results] == [True, False, False]
        assert results[0].snapshot.current_stock == 7
        assert results[1].error_code == "INSUFFICIENT_STOCK"
        assert results[2].error_code == "INVENTORY_RECORD_NOT_FOUND"
        assert inventory_selector.get_status(short.id).current_stock == 1
