"""
Optimistic concurrency under forced version bumps.

A competing writer is simulated by bumping the row version between a
service's read and its conditional UPDATE.  The service must lose that
attempt, back off, re-read and succeed, without double-applying.
"""

from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.costing import ConsumptionOrder
from inventory_kernel.domain.dtos import MovementType, StockMovementRequest
from inventory_kernel.domain.override import OverrideStatus
from inventory_kernel.exceptions import ConcurrencyConflictError, InsufficientStockError
from inventory_kernel.models.cost_batch import ProductCostState
from inventory_kernel.models.inventory import InventoryRecord
from inventory_kernel.models.period_override import OverrideApprovalModel, PeriodOverrideModel
from inventory_kernel.models.product import Product
from inventory_kernel.services.cost_batch_store import CostBatchStore
from inventory_kernel.services.inventory_ledger import InventoryLedger
from inventory_kernel.services.retry import ConflictRetrier, RetryPolicy


def _bump_inventory_version(session, product_id, stock_delta=0):
    session.execute(
        update(InventoryRecord)
        .where(InventoryRecord.product_id == product_id)
        .values(
            version=InventoryRecord.version + 1,
            current_stock=InventoryRecord.current_stock + stock_delta,
            available_stock=InventoryRecord.available_stock + stock_delta,
        )
        .execution_options(synchronize_session=False)
    )


class TestInventoryLedgerConflicts:

    def test_conflict_retried_and_applied_once(
        self, session, ledger, stocked_product, sleeps, inventory_selector, monkeypatch
    ):
        product = stocked_product(stock=10)
        real_read = ledger._read_state
        reads = []

        def racing_read(product_id):
            state = real_read(product_id)
            reads.append(state.version)
            if len(reads) == 1:
                # Another writer lands 3 units after our read
                _bump_inventory_version(session, product_id, stock_delta=3)
            return state

        monkeypatch.setattr(ledger, "_read_state", racing_read)
        result = ledger.update_stock(
            product.id, StockMovementRequest(movement_type=MovementType.OUT, quantity=4)
        )

        assert result.attempts == 2
        assert sleeps == [0.05]
        assert reads == [1, 2]
        assert result.movement.previous_stock == 13
        assert inventory_selector.get_status(product.id).current_stock == 9

    def test_retry_sees_fresh_stock(self, session, ledger, stocked_product, monkeypatch):
        product = stocked_product(stock=5)
        real_read = ledger._read_state
        reads = []

        def racing_read(product_id):
            state = real_read(product_id)
            reads.append(state)
            if len(reads) == 1:
                # The competing writer takes 4 units
                _bump_inventory_version(session, product_id, stock_delta=-4)
            return state

        monkeypatch.setattr(ledger, "_read_state", racing_read)
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.update_stock(
                product.id, StockMovementRequest(movement_type=MovementType.OUT, quantity=3)
            )
        assert exc_info.value.available == 1

    def test_exhaustion_surfaces_conflict(
        self, session, deterministic_clock, stocked_product, monkeypatch
    ):
        product = stocked_product(stock=5)
        sleeps = []
        ledger = InventoryLedger(
            session,
            deterministic_clock,
            retrier=ConflictRetrier(RetryPolicy(max_attempts=3), sleep=sleeps.append),
        )
        real_read = ledger._read_state

        def always_racing(product_id):
            state = real_read(product_id)
            _bump_inventory_version(session, product_id)
            return state

        monkeypatch.setattr(ledger, "_read_state", always_racing)
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            ledger.update_stock(
                product.id, StockMovementRequest(movement_type=MovementType.IN, quantity=1)
            )
        assert exc_info.value.attempts == 3
        assert len(sleeps) == 2


class TestCostStateConflicts:

    def test_add_batch_retried(self, session, cost_store, create_product, sleeps, monkeypatch):
        product = create_product()
        cost_store.add_batch(product.id, 4, "10")
        real_read = cost_store._read_or_create_state
        calls = []

        def racing_read(product_id, actor_id):
            row = real_read(product_id, actor_id)
            calls.append(row.version)
            if len(calls) == 1:
                session.execute(
                    update(ProductCostState)
                    .where(ProductCostState.product_id == product_id)
                    .values(version=ProductCostState.version + 1)
                    .execution_options(synchronize_session=False)
                )
            return row

        monkeypatch.setattr(cost_store, "_read_or_create_state", racing_read)
        batch = cost_store.add_batch(product.id, 4, "20")

        assert calls == [2, 3]
        assert sleeps == [0.05]
        assert batch.sequence == 2
        assert len(cost_store.get_batches(product.id)) == 2

    def test_consume_retried_without_double_issue(self, session, cost_store, create_product, monkeypatch):
        product = create_product()
        cost_store.add_batch(product.id, 10, "10")
        real_read = cost_store._read_or_create_state
        calls = []

        def racing_read(product_id, actor_id):
            row = real_read(product_id, actor_id)
            calls.append(row.version)
            if len(calls) == 1:
                session.execute(
                    update(ProductCostState)
                    .where(ProductCostState.product_id == product_id)
                    .values(version=ProductCostState.version + 1)
                    .execution_options(synchronize_session=False)
                )
            return row

        monkeypatch.setattr(cost_store, "_read_or_create_state", racing_read)
        result = cost_store.consume(product.id, 3, ConsumptionOrder.OLDEST_FIRST)

        assert len(calls) == 2
        assert result.batch_quantity == 3
        assert cost_store.get_cost_state(product.id).total_quantity == 7
        assert cost_store.get_batches(product.id)[0].quantity_remaining == 7


def _approval_rows(session, override_id):
    return session.execute(
        select(func.count(OverrideApprovalModel.id)).where(
            OverrideApprovalModel.override_id == override_id
        )
    ).scalar_one()


class TestOverrideApprovalConflicts:

    @staticmethod
    def _race_first_read(session, workflow, monkeypatch):
        real_read = workflow._read_row
        reads = []

        def racing_read(override_id):
            row = real_read(override_id)
            reads.append(row.version)
            if len(reads) == 1:
                # Another approver's write lands between our read and UPDATE
                session.execute(
                    update(PeriodOverrideModel)
                    .where(PeriodOverrideModel.id == override_id)
                    .values(version=PeriodOverrideModel.version + 1)
                    .execution_options(synchronize_session=False)
                )
            return row

        monkeypatch.setattr(workflow, "_read_row", racing_read)
        return reads

    def test_final_approval_retried_once(
        self, session, override_workflow, closed_period, test_actor_id, sleeps, monkeypatch, captured_logs
    ):
        pending = override_workflow.request(closed_period.id, test_actor_id, "Late credit note")
        reads = self._race_first_read(session, override_workflow, monkeypatch)

        info = override_workflow.approve(pending.id, uuid4())

        assert len(reads) == 2
        assert sleeps == [0.05]
        assert info.status == OverrideStatus.APPROVED
        assert _approval_rows(session, pending.id) == 1
        approved = [r for r in captured_logs() if r["message"] == "period_override_approved"]
        assert len(approved) == 1
        assert approved[0]["approvals"] == 1
        assert approved[0]["attempt"] == 2

    def test_partial_approval_counted_once(
        self, session, override_workflow, locked_period, test_actor_id, sleeps, monkeypatch, captured_logs
    ):
        pending = override_workflow.request(locked_period.id, test_actor_id, "Audit adjustment")
        reads = self._race_first_read(session, override_workflow, monkeypatch)

        first = override_workflow.approve(pending.id, uuid4())
        assert first.status == OverrideStatus.PENDING_APPROVAL
        assert _approval_rows(session, pending.id) == 1
        assert sleeps == [0.05]

        second = override_workflow.approve(pending.id, uuid4())
        assert len(reads) == 3
        assert second.status == OverrideStatus.APPROVED
        assert _approval_rows(session, pending.id) == 2
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("period_override_approval_recorded") == 1
        assert messages.count("period_override_approved") == 1


@pytest.mark.postgres
@pytest.mark.slow
class TestRealConcurrency:
    """Threads with their own sessions against PostgreSQL."""

    def test_parallel_decrements_never_oversell(self, pg_session_factory):
        actor = uuid4()
        setup = pg_session_factory()
        product = Product(sku=f"SKU-{uuid4().hex[:8]}", name="Contended", created_by_id=actor)
        setup.add(product)
        setup.flush()
        InventoryLedger(setup).create_record(product.id, actor, initial_stock=20)
        setup.commit()
        product_id = product.id

        def sell_one(_):
            sess = pg_session_factory()
            ledger = InventoryLedger(
                sess,
                DeterministicClock(),
                retrier=ConflictRetrier(RetryPolicy(initial_delay=0.001, max_attempts=50)),
            )
            try:
                ledger.update_stock(
                    product_id,
                    StockMovementRequest(movement_type=MovementType.OUT, quantity=1, performed_by=actor),
                )
                sess.commit()
                return True
            except InsufficientStockError:
                sess.rollback()
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(sell_one, range(30)))

        check = pg_session_factory()
        stock = check.execute(
            select(InventoryRecord).where(InventoryRecord.product_id == product_id)
        ).scalar_one()
        assert sum(outcomes) == 20
        assert stock.current_stock == 0
        assert stock.version == 21

    def test_parallel_batch_consumption(self, pg_session_factory):
        actor = uuid4()
        setup = pg_session_factory()
        product = Product(sku=f"SKU-{uuid4().hex[:8]}", name="Batches", created_by_id=actor)
        setup.add(product)
        setup.flush()
        CostBatchStore(setup).add_batch(product.id, 40, "2", actor_id=actor)
        setup.commit()
        product_id = product.id

        def consume_two(_):
            sess = pg_session_factory()
            store = CostBatchStore(
                sess,
                retrier=ConflictRetrier(RetryPolicy(initial_delay=0.001, max_attempts=50)),
            )
            store.consume(product_id, 2, ConsumptionOrder.OLDEST_FIRST, actor_id=actor)
            sess.commit()

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(consume_two, range(10)))

        state = CostBatchStore(pg_session_factory()).get_cost_state(product_id)
        assert state.total_quantity == 20
