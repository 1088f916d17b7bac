"""
Costing -- pure cost-batch consumption and weighted-average arithmetic.

Responsibility:
    Walk a product's cost batches in FIFO or LIFO order, take what each
    batch can give, and cost any shortfall at the running average.  Keep
    the running weighted-average state as receipts and issues arrive.

Architecture position:
    Kernel > Domain -- pure functions over frozen values.  No session, no
    clock.  CostBatchStore persists what these functions compute.

Invariants enforced:
    - total_cost == sum(quantity * unit_cost) over batches taken, plus the
      shortfall at average.  No rounding happens until unit_cost is read.
    - Batches with equal acquired_at are consumed in insertion order
      (``sequence``) for both orders.
    - A batch never gives more than its quantity_remaining.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from inventory_kernel.db.types import round_money
from inventory_kernel.exceptions import InvalidCostingMethodError
from inventory_kernel.logging_config import get_logger

logger = get_logger("domain.costing")

ZERO = Decimal("0")


class CostingMethod(str, Enum):
    FIFO = "fifo"
    LIFO = "lifo"
    AVERAGE = "average"
    STANDARD = "standard"

    @classmethod
    def parse(cls, value: CostingMethod | str) -> CostingMethod:
        """Accept enum members or case-insensitive names."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidCostingMethodError(str(value)) from None


class ConsumptionOrder(str, Enum):
    OLDEST_FIRST = "oldest_first"
    NEWEST_FIRST = "newest_first"

    @classmethod
    def for_method(cls, method: CostingMethod) -> ConsumptionOrder:
        if method == CostingMethod.FIFO:
            return cls.OLDEST_FIRST
        if method == CostingMethod.LIFO:
            return cls.NEWEST_FIRST
        raise ValueError(f"{method.value} costing does not consume batches")


@dataclass(frozen=True, slots=True)
class CostBatchView:
    """One cost batch as seen by the consumption algorithm."""

    batch_id: Any
    quantity_remaining: int
    unit_cost: Decimal
    acquired_at: datetime
    sequence: int
    source_reference: str | None = None

    def __post_init__(self) -> None:
        if self.quantity_remaining < 0:
            raise ValueError(
                f"quantity_remaining must be >= 0, got {self.quantity_remaining}"
            )
        if self.unit_cost < ZERO:
            raise ValueError(f"unit_cost must be >= 0, got {self.unit_cost}")


@dataclass(frozen=True, slots=True)
class BatchConsumption:
    """Quantity taken from a single batch (batch_id None means shortfall)."""

    batch_id: Any
    quantity: int
    unit_cost: Decimal
    acquired_at: datetime | None = None
    note: str | None = None

    @property
    def total_cost(self) -> Decimal:
        return self.unit_cost * self.quantity

    @property
    def is_shortfall(self) -> bool:
        return self.batch_id is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "batch_id": str(self.batch_id) if self.batch_id is not None else None,
            "quantity": self.quantity,
            "unit_cost": str(self.unit_cost),
            "total_cost": str(self.total_cost),
        }
        if self.acquired_at is not None:
            data["acquired_at"] = self.acquired_at.isoformat()
        if self.note:
            data["note"] = self.note
        return data


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    """Outcome of consuming ``requested_quantity`` units."""

    requested_quantity: int
    consumptions: tuple[BatchConsumption, ...]
    order: ConsumptionOrder
    average_cost: Decimal = ZERO

    @property
    def total_cost(self) -> Decimal:
        return sum((c.total_cost for c in self.consumptions), ZERO)

    @property
    def unit_cost(self) -> Decimal:
        if self.requested_quantity == 0:
            return ZERO
        return round_money(self.total_cost / self.requested_quantity)

    @property
    def shortfall_quantity(self) -> int:
        return sum(c.quantity for c in self.consumptions if c.is_shortfall)

    @property
    def batch_quantity(self) -> int:
        return self.requested_quantity - self.shortfall_quantity

    @property
    def note(self) -> str | None:
        for c in self.consumptions:
            if c.note:
                return c.note
        return None

    def remaining_after(self, batches: Iterable[CostBatchView]) -> dict[Any, int]:
        """Map batch_id -> quantity_remaining once this result is applied."""
        taken: dict[Any, int] = {}
        for c in self.consumptions:
            if not c.is_shortfall:
                taken[c.batch_id] = taken.get(c.batch_id, 0) + c.quantity
        return {
            b.batch_id: b.quantity_remaining - taken.get(b.batch_id, 0)
            for b in batches
            if b.batch_id in taken
        }


def shortfall_note(order: ConsumptionOrder) -> str:
    label = "FIFO" if order == ConsumptionOrder.OLDEST_FIRST else "LIFO"
    return f"Insufficient {label} batches, used average cost"


def order_batches(
    batches: Iterable[CostBatchView],
    order: ConsumptionOrder,
) -> list[CostBatchView]:
    """
    Sort batches for consumption.

    Dates decide first.  Equal dates fall back to insertion order in both
    directions, so the earliest-created batch wins a tie.
    """
    live = [b for b in batches if b.quantity_remaining > 0]
    if order == ConsumptionOrder.OLDEST_FIRST:
        return sorted(live, key=lambda b: (b.acquired_at, b.sequence))
    # Newest date first, earliest sequence first within a date
    by_sequence = sorted(live, key=lambda b: b.sequence)
    return sorted(by_sequence, key=lambda b: b.acquired_at, reverse=True)


def consume_batches(
    batches: Sequence[CostBatchView],
    quantity: int,
    order: ConsumptionOrder,
    average_cost: Decimal,
    as_of: datetime | None = None,
) -> ConsumptionResult:
    """
    Take ``quantity`` units from ``batches`` in ``order``.

    Args:
        batches: Current batches for one product.
        quantity: Units to consume, must be positive.
        order: OLDEST_FIRST (FIFO) or NEWEST_FIRST (LIFO).
        average_cost: Running average used to cost any shortfall.
        as_of: When set, only batches acquired on or before this instant
            are eligible.

    Returns:
        ConsumptionResult whose consumptions list batch takes in order,
        followed by at most one shortfall entry.
    """
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")

    eligible = batches
    if as_of is not None:
        eligible = [b for b in batches if b.acquired_at <= as_of]

    remaining = quantity
    taken: list[BatchConsumption] = []

    for batch in order_batches(eligible, order):
        if remaining <= 0:
            break
        qty_to_consume = min(remaining, batch.quantity_remaining)
        taken.append(
            BatchConsumption(
                batch_id=batch.batch_id,
                quantity=qty_to_consume,
                unit_cost=batch.unit_cost,
                acquired_at=batch.acquired_at,
            )
        )
        remaining -= qty_to_consume

    if remaining > 0:
        note = shortfall_note(order)
        logger.warning(
            "cost_batches_insufficient",
            extra={
                "requested": quantity,
                "shortfall": remaining,
                "order": order.value,
                "average_cost": str(average_cost),
            },
        )
        taken.append(
            BatchConsumption(
                batch_id=None,
                quantity=remaining,
                unit_cost=average_cost,
                note=note,
            )
        )

    return ConsumptionResult(
        requested_quantity=quantity,
        consumptions=tuple(taken),
        order=order,
        average_cost=average_cost,
    )


@dataclass(frozen=True, slots=True)
class AverageCostState:
    """
    Running weighted-average cost for one product.

    ``total_value`` is kept unrounded; ``average_cost`` rounds on read.
    ``last_average`` remembers the average once stock runs out so a later
    shortfall still has a cost basis.
    """

    total_quantity: int = 0
    total_value: Decimal = field(default=ZERO)
    last_average: Decimal = field(default=ZERO)

    @property
    def average_cost(self) -> Decimal:
        if self.total_quantity <= 0:
            return self.last_average
        return round_money(self.total_value / self.total_quantity)

    def receive(self, quantity: int, unit_cost: Decimal) -> AverageCostState:
        """(prior_value + qty * unit_cost) / (prior_qty + qty)."""
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        if self.total_quantity <= 0:
            # Nothing on hand: the new batch defines the average
            value = unit_cost * quantity
            return AverageCostState(quantity, value, round_money(unit_cost))
        qty = self.total_quantity + quantity
        value = self.total_value + unit_cost * quantity
        return AverageCostState(qty, value, round_money(value / qty))

    def issue(self, quantity: int) -> AverageCostState:
        """Remove units at the current average; the average itself is unchanged."""
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        current = self.average_cost
        if quantity >= self.total_quantity:
            return AverageCostState(0, ZERO, current)
        per_unit = self.total_value / self.total_quantity
        return AverageCostState(
            self.total_quantity - quantity,
            self.total_value - per_unit * quantity,
            current,
        )
