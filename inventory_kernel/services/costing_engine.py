"""
CostingEngine -- cost of goods sold for a sale, computed once.

Responsibility:
    Resolve a product's costing method and turn (product, quantity, sale
    date) into a FrozenCOGS snapshot.  FIFO and LIFO consume cost batches
    through CostBatchStore; AVERAGE and STANDARD read a single unit cost.

Architecture position:
    Kernel > Services -- imperative shell.  Returns the snapshot; attaching
    it to a sale line is an explicit second step (``freeze_onto_line``).

Invariants enforced:
    - FIFO/LIFO only consider batches acquired on or before the end of the
      sale date.
    - A SaleLine's cogs_* columns are written at most once.

Failure modes:
    - ProductNotFoundError, CostingMethodNotSetError.
    - StandardCostNotSetError: STANDARD method with no standard_cost.
    - ValidationError: non-positive quantity.
    - ImmutabilityViolationError: freezing onto an already-frozen line.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.db.types import round_money
from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.costing import ConsumptionOrder, CostingMethod
from inventory_kernel.domain.dtos import FrozenCOGS
from inventory_kernel.exceptions import (
    CostingMethodNotSetError,
    ImmutabilityViolationError,
    ProductNotFoundError,
    StandardCostNotSetError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.product import Product
from inventory_kernel.models.sale import SaleLine
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.cost_batch_store import CostBatchStore

logger = get_logger("services.costing_engine")


def end_of_day(d: date) -> datetime:
    """Last representable instant of ``d`` in UTC."""
    return datetime.combine(d, time.max, tzinfo=UTC)


class CostingEngine(BaseService[SaleLine]):
    """Computes and freezes COGS using the product's costing method."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cost_store: CostBatchStore | None = None,
    ):
        super().__init__(session, clock)
        self._cost_store = cost_store or CostBatchStore(session, self._clock)

    def calculate_and_freeze(
        self,
        product_id: UUID,
        quantity: int,
        sale_date: date | None = None,
        actor_id: UUID | None = None,
    ) -> FrozenCOGS:
        """
        Compute COGS for ``quantity`` units sold on ``sale_date``.

        For FIFO/LIFO the consumed batches are reduced as a side effect;
        AVERAGE and STANDARD leave batches alone.

        Args:
            product_id: Product being sold.
            quantity: Units sold, positive.
            sale_date: Transaction date; defaults to today.
            actor_id: Recorded on the cost state write.

        Returns:
            FrozenCOGS snapshot, not yet attached to anything.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity", f"must be a positive integer, got {quantity!r}")

        product = self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(str(product_id))
        method = product.method
        if method is None:
            raise CostingMethodNotSetError(str(product_id))

        sale_date = sale_date or self._clock.today()
        now = self._clock.now()
        average_at_sale = self._cost_store.get_average_cost(product_id)

        with LogContext.bind(product_id=product_id):
            if method in (CostingMethod.FIFO, CostingMethod.LIFO):
                result = self._cost_store.consume(
                    product_id,
                    quantity,
                    ConsumptionOrder.for_method(method),
                    as_of=end_of_day(sale_date),
                    actor_id=actor_id,
                )
                cogs = FrozenCOGS(
                    product_id=product_id,
                    quantity=quantity,
                    unit_cost=result.unit_cost,
                    total_cost=result.total_cost,
                    costing_method=method,
                    calculated_at=now,
                    batches_consumed=result.consumptions,
                    average_cost_at_sale=average_at_sale,
                    note=result.note,
                )
            elif method == CostingMethod.AVERAGE:
                cogs = self._flat(product_id, quantity, average_at_sale, method, now, average_at_sale)
            else:
                if product.standard_cost is None:
                    raise StandardCostNotSetError(str(product_id))
                cogs = self._flat(
                    product_id, quantity, round_money(product.standard_cost), method, now, average_at_sale
                )

            logger.info(
                "cogs_calculated",
                extra={
                    "method": method.value,
                    "quantity": quantity,
                    "unit_cost": str(cogs.unit_cost),
                    "total_cost": str(cogs.total_cost),
                    "sale_date": sale_date,
                    "batches": len(cogs.batches_consumed),
                    "note": cogs.note,
                },
            )
        return cogs

    @staticmethod
    def _flat(
        product_id: UUID,
        quantity: int,
        unit_cost: Decimal,
        method: CostingMethod,
        now: datetime,
        average_at_sale: Decimal,
    ) -> FrozenCOGS:
        return FrozenCOGS(
            product_id=product_id,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=unit_cost * quantity,
            costing_method=method,
            calculated_at=now,
            average_cost_at_sale=average_at_sale,
        )

    def freeze_onto_line(self, sale_line: SaleLine, cogs: FrozenCOGS) -> SaleLine:
        """Attach ``cogs`` to ``sale_line``.  A line is frozen at most once."""
        stored = None
        if sale_line.id is not None:
            stored = self.session.execute(
                select(SaleLine.cogs_calculated_at).where(SaleLine.id == sale_line.id)
            ).scalar_one_or_none()
        if stored is not None or sale_line.is_cogs_frozen:
            raise ImmutabilityViolationError(
                entity_type="SaleLine",
                entity_id=str(sale_line.id),
                reason="Frozen COGS is write-once and cannot be recalculated",
            )

        sale_line.cogs_unit_cost = cogs.unit_cost
        sale_line.cogs_total_cost = round_money(cogs.total_cost)
        sale_line.cogs_method = cogs.costing_method.value
        sale_line.cogs_calculated_at = cogs.calculated_at
        sale_line.cogs_batches = cogs.batches_as_dicts()
        sale_line.cogs_average_at_sale = cogs.average_cost_at_sale
        sale_line.cogs_note = cogs.note
        self.session.flush()

        logger.info(
            "cogs_frozen",
            extra={
                "sale_line_id": str(sale_line.id),
                "sale_reference": sale_line.sale_reference,
                "method": cogs.costing_method.value,
                "total_cost": str(cogs.total_cost),
            },
        )
        return sale_line
