"""
CostBatchStore -- persisted cost batches and running average per product.

Responsibility:
    Record a batch on every stock receipt and advance the weighted
    average; consume batches on every stock issue.  The arithmetic lives in
    ``inventory_kernel.domain.costing``; this service loads, applies and
    writes.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - ProductCostState is only written through a version-checked UPDATE;
      a lost race re-reads batches and state and tries again.
    - Batches that reach zero are deleted; remaining quantities never go
      negative.
    - Equal acquired_at timestamps are consumed in insertion order.
    - A dated consume that falls short draws the shortfall from later
      batches oldest first, so batch quantities never exceed stock.

Failure modes:
    - ValidationError for non-positive quantity or negative unit cost.
    - ConcurrencyConflictError when every retry loses the race.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.db.types import round_money, to_decimal
from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.costing import (
    AverageCostState,
    ConsumptionOrder,
    ConsumptionResult,
    CostBatchView,
    consume_batches,
)
from inventory_kernel.exceptions import OptimisticLockError, ValidationError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.cost_batch import CostBatchModel, ProductCostState
from inventory_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from inventory_kernel.services.retry import ConflictRetrier

logger = get_logger("services.cost_batch_store")


class CostBatchStore(BaseService[CostBatchModel]):
    """Per-product cost batches plus the running average."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        retrier: ConflictRetrier | None = None,
    ):
        super().__init__(session, clock)
        self._retrier = retrier or ConflictRetrier()

    # =====================================================================
    # Reads
    # =====================================================================

    def get_batches(self, product_id: UUID) -> list[CostBatchView]:
        """Live batches in insertion order."""
        rows = self.session.execute(
            select(CostBatchModel)
            .where(
                CostBatchModel.product_id == product_id,
                CostBatchModel.quantity_remaining > 0,
            )
            .order_by(CostBatchModel.sequence)
            .execution_options(populate_existing=True)
        ).scalars()
        return [
            CostBatchView(
                batch_id=row.id,
                quantity_remaining=row.quantity_remaining,
                unit_cost=row.unit_cost,
                acquired_at=row.acquired_at,
                sequence=row.sequence,
                source_reference=row.source_reference,
            )
            for row in rows
        ]

    def get_cost_state(self, product_id: UUID) -> AverageCostState:
        row = self._read_state(product_id)
        if row is None:
            return AverageCostState()
        return AverageCostState(
            total_quantity=row.total_quantity,
            total_value=row.total_value,
            last_average=row.average_cost,
        )

    def get_average_cost(self, product_id: UUID) -> Decimal:
        return self.get_cost_state(product_id).average_cost

    # =====================================================================
    # Writes
    # =====================================================================

    def add_batch(
        self,
        product_id: UUID,
        quantity: int,
        unit_cost: Decimal | int | str,
        acquired_at: datetime | None = None,
        source_reference: str | None = None,
        actor_id: UUID | None = None,
    ) -> CostBatchView:
        """
        Append a batch and recompute the average.

        average = (prior_value + qty * unit_cost) / (prior_qty + qty)
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity", f"batch quantity must be a positive integer, got {quantity!r}")
        cost = to_decimal(unit_cost, field="unit_cost")
        if cost < 0:
            raise ValidationError("unit_cost", f"must be >= 0, got {cost}")
        acquired = acquired_at or self._clock.now()

        def attempt(attempt_number: int) -> CostBatchView:
            row = self._read_or_create_state(product_id, actor_id)
            prior = AverageCostState(row.total_quantity, row.total_value, row.average_cost)
            after = prior.receive(quantity, cost)
            sequence = row.last_batch_sequence + 1

            self._write_state(product_id, row.version, after, actor_id, last_batch_sequence=sequence)

            batch = CostBatchModel(
                product_id=product_id,
                quantity_received=quantity,
                quantity_remaining=quantity,
                unit_cost=cost,
                acquired_at=acquired,
                sequence=sequence,
                source_reference=source_reference,
            )
            self.session.add(batch)
            self.session.flush()

            logger.info(
                "cost_batch_added",
                extra={
                    "product_id": str(product_id),
                    "batch_id": str(batch.id),
                    "quantity": quantity,
                    "unit_cost": str(cost),
                    "sequence": sequence,
                    "prior_average": str(prior.average_cost),
                    "new_average": str(after.average_cost),
                    "attempt": attempt_number,
                },
            )
            return CostBatchView(
                batch_id=batch.id,
                quantity_remaining=quantity,
                unit_cost=cost,
                acquired_at=acquired,
                sequence=sequence,
                source_reference=source_reference,
            )

        return self._retrier.run("add_batch", attempt)

    def preview(
        self,
        product_id: UUID,
        quantity: int,
        order: ConsumptionOrder,
        as_of: datetime | None = None,
    ) -> ConsumptionResult:
        """What consume() would take, without writing anything."""
        return consume_batches(
            self.get_batches(product_id),
            quantity,
            order,
            self.get_average_cost(product_id),
            as_of=as_of,
        )

    def consume(
        self,
        product_id: UUID,
        quantity: int,
        order: ConsumptionOrder,
        as_of: datetime | None = None,
        actor_id: UUID | None = None,
    ) -> ConsumptionResult:
        """
        Take ``quantity`` units from batches in ``order``.

        Any shortfall is costed at the running average and noted on the
        result.  Touched batches are reduced (deleted at zero) and the
        cost state is issued at average.

        With ``as_of`` only batches acquired by then price the issue.  The
        shortfall units still leave stock, so they are drawn from the
        later batches oldest first without changing the returned cost.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity", f"must be a positive integer, got {quantity!r}")

        def attempt(attempt_number: int) -> ConsumptionResult:
            row = self._read_or_create_state(product_id, actor_id)
            state = AverageCostState(row.total_quantity, row.total_value, row.average_cost)
            batches = self.get_batches(product_id)
            result = consume_batches(batches, quantity, order, state.average_cost, as_of=as_of)

            # Claim the state version first so a concurrent consumer retries
            self._write_state(product_id, row.version, state.issue(quantity), actor_id)
            self._apply_to_batches(product_id, result, batches)
            if as_of is not None and result.shortfall_quantity:
                self._draw_down_later_batches(product_id, result, batches, state.average_cost)

            logger.info(
                "cost_batches_consumed",
                extra={
                    "product_id": str(product_id),
                    "quantity": quantity,
                    "order": order.value,
                    "batches_touched": len(result.consumptions) - (1 if result.shortfall_quantity else 0),
                    "shortfall": result.shortfall_quantity,
                    "total_cost": str(result.total_cost),
                    "attempt": attempt_number,
                },
            )
            return result

        return self._retrier.run("consume_batches", attempt)

    # =====================================================================
    # Internals
    # =====================================================================

    def _read_state(self, product_id: UUID):
        return self.session.execute(
            select(
                ProductCostState.total_quantity,
                ProductCostState.total_value,
                ProductCostState.average_cost,
                ProductCostState.last_batch_sequence,
                ProductCostState.version,
            ).where(ProductCostState.product_id == product_id)
        ).first()

    def _read_or_create_state(self, product_id: UUID, actor_id: UUID | None):
        row = self._read_state(product_id)
        if row is not None:
            return row
        try:
            with self.session.begin_nested():
                self.session.add(
                    ProductCostState(
                        product_id=product_id,
                        total_quantity=0,
                        total_value=Decimal("0"),
                        average_cost=Decimal("0"),
                        last_batch_sequence=0,
                        version=1,
                        created_by_id=actor_id or SYSTEM_ACTOR_ID,
                    )
                )
                self.session.flush()
        except IntegrityError:
            # Another writer created it first
            pass
        return self._read_state(product_id)

    def _write_state(
        self,
        product_id: UUID,
        expected_version: int,
        state: AverageCostState,
        actor_id: UUID | None,
        **extra_values,
    ) -> None:
        result = self.session.execute(
            update(ProductCostState)
            .where(
                ProductCostState.product_id == product_id,
                ProductCostState.version == expected_version,
            )
            .values(
                total_quantity=state.total_quantity,
                total_value=round_money(state.total_value),
                average_cost=state.average_cost,
                version=expected_version + 1,
                updated_by_id=actor_id,
                **extra_values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise OptimisticLockError("ProductCostState", str(product_id), expected_version)

    def _draw_down_later_batches(
        self,
        product_id: UUID,
        result: ConsumptionResult,
        batches: list[CostBatchView],
        average_cost: Decimal,
    ) -> None:
        left = result.remaining_after(batches)
        current = [
            replace(b, quantity_remaining=left.get(b.batch_id, b.quantity_remaining))
            for b in batches
        ]
        if not any(b.quantity_remaining for b in current):
            return
        drawn = consume_batches(
            current, result.shortfall_quantity, ConsumptionOrder.OLDEST_FIRST, average_cost
        )
        self._apply_to_batches(product_id, drawn, current)
        logger.info(
            "later_cost_batches_drawn_down",
            extra={
                "product_id": str(product_id),
                "quantity": drawn.batch_quantity,
                "batches_touched": len(drawn.consumptions) - (1 if drawn.shortfall_quantity else 0),
            },
        )

    def _apply_to_batches(
        self,
        product_id: UUID,
        result: ConsumptionResult,
        batches: list[CostBatchView],
    ) -> None:
        for batch_id, remaining in result.remaining_after(batches).items():
            if remaining == 0:
                self.session.execute(
                    delete(CostBatchModel)
                    .where(CostBatchModel.id == batch_id)
                    .execution_options(synchronize_session=False)
                )
            else:
                self.session.execute(
                    update(CostBatchModel)
                    .where(CostBatchModel.id == batch_id)
                    .values(quantity_remaining=remaining)
                    .execution_options(synchronize_session=False)
                )
        self.session.flush()
