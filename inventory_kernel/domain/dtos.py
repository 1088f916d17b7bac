"""
DTOs -- immutable values that cross the service boundary.

Responsibility:
    Snapshots returned by InventoryLedger, CostingEngine, PeriodLockGate
    and friends, plus the input value for a stock movement.  Services
    convert ORM rows into these before returning so callers never hold a
    live, mutable entity.

Architecture position:
    Kernel > Domain -- zero I/O.  ``from_model`` converters exist for the
    service layer only.

Invariants enforced:
    - InventorySnapshot.available_stock == current_stock - reserved_stock.
    - FrozenCOGS.total_cost == sum of its batch totals.
    - StockMovementRequest.quantity is non-negative.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from inventory_kernel.domain.costing import BatchConsumption, CostingMethod
from inventory_kernel.exceptions import ValidationError

if TYPE_CHECKING:
    from inventory_kernel.models.fiscal_period import FiscalPeriod as FiscalPeriodModel
    from inventory_kernel.models.inventory import (
        InventoryRecord as InventoryRecordModel,
        StockMovement as StockMovementModel,
    )


# =========================================================================
# Inventory
# =========================================================================


class InventoryStatus(str, Enum):
    ACTIVE = "active"
    OUT_OF_STOCK = "out_of_stock"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"


class MovementType(str, Enum):
    """Kind of stock movement.  The sign of the delta depends on the kind."""

    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    RETURN = "return"
    DAMAGE = "damage"
    THEFT = "theft"

    @property
    def is_increase(self) -> bool:
        return self in (MovementType.IN, MovementType.RETURN)

    @property
    def is_decrease(self) -> bool:
        return self in (
            MovementType.OUT,
            MovementType.DAMAGE,
            MovementType.THEFT,
            MovementType.TRANSFER,
        )


@dataclass(frozen=True)
class StockMovementRequest:
    """
    Caller's description of one movement.

    For ADJUSTMENT, ``quantity`` is the absolute target level.  For all
    other kinds it is the magnitude of the change.
    """

    movement_type: MovementType
    quantity: int
    reason: str | None = None
    reference: str | None = None
    performed_by: UUID | None = None
    occurred_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.movement_type, MovementType):
            try:
                kind = MovementType(self.movement_type)
            except ValueError as exc:
                raise ValidationError(
                    "movement_type", f"unknown movement type {self.movement_type!r}"
                ) from exc
            object.__setattr__(self, "movement_type", kind)
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValidationError("quantity", f"must be an integer, got {self.quantity!r}")
        if self.quantity < 0:
            raise ValidationError("quantity", f"must be >= 0, got {self.quantity}")


@dataclass(frozen=True)
class InventorySnapshot:
    product_id: UUID
    current_stock: int
    reserved_stock: int
    available_stock: int
    reorder_point: int
    reorder_quantity: int
    status: InventoryStatus
    version: int
    last_updated: datetime | None = None

    @property
    def needs_reorder(self) -> bool:
        return self.current_stock <= self.reorder_point

    @classmethod
    def from_model(cls, model: InventoryRecordModel) -> InventorySnapshot:
        return cls(
            product_id=model.product_id,
            current_stock=model.current_stock,
            reserved_stock=model.reserved_stock,
            available_stock=model.available_stock,
            reorder_point=model.reorder_point,
            reorder_quantity=model.reorder_quantity,
            status=InventoryStatus(model.status),
            version=model.version,
            last_updated=model.last_movement_at,
        )


@dataclass(frozen=True)
class MovementRecord:
    id: UUID
    product_id: UUID
    movement_type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str | None
    reference: str | None
    performed_by: UUID | None
    occurred_at: datetime

    @classmethod
    def from_model(cls, model: StockMovementModel) -> MovementRecord:
        return cls(
            id=model.id,
            product_id=model.product_id,
            movement_type=MovementType(model.movement_type),
            quantity=model.quantity,
            previous_stock=model.previous_stock,
            new_stock=model.new_stock,
            reason=model.reason,
            reference=model.reference,
            performed_by=model.performed_by,
            occurred_at=model.occurred_at,
        )


@dataclass(frozen=True)
class StockUpdateResult:
    snapshot: InventorySnapshot
    movement: MovementRecord
    attempts: int = 1


@dataclass(frozen=True)
class BulkUpdateItem:
    product_id: UUID
    movement: StockMovementRequest


@dataclass(frozen=True)
class BulkUpdateResult:
    """Per-item outcome of a bulk stock update."""

    product_id: UUID
    success: bool
    snapshot: InventorySnapshot | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class InventoryHistoryPage:
    product_id: UUID
    movements: tuple[MovementRecord, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.movements) < self.total


@dataclass(frozen=True)
class InventorySummary:
    total_products: int
    total_stock: int
    total_reserved: int
    low_stock_count: int
    out_of_stock_count: int

    @property
    def total_available(self) -> int:
        return self.total_stock - self.total_reserved


# =========================================================================
# Costing
# =========================================================================


@dataclass(frozen=True)
class FrozenCOGS:
    """
    Cost of goods sold, computed once for a sale line and never recomputed.

    ``average_cost_at_sale`` records the running average observed at
    calculation time, whatever the method, so later reports can compare.
    """

    product_id: UUID
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    costing_method: CostingMethod
    calculated_at: datetime
    batches_consumed: tuple[BatchConsumption, ...] = ()
    average_cost_at_sale: Decimal | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        if self.batches_consumed:
            batch_total = sum((b.total_cost for b in self.batches_consumed), Decimal("0"))
            if batch_total != self.total_cost:
                raise ValueError(
                    f"total_cost {self.total_cost} != sum of batches {batch_total}"
                )

    def batches_as_dicts(self) -> list[dict[str, Any]]:
        return [b.to_dict() for b in self.batches_consumed]


@dataclass(frozen=True)
class CostingMethodCheck:
    """Result of asking whether a product may take a given costing method."""

    product_id: UUID
    current_method: CostingMethod | None
    requested_method: CostingMethod
    is_locked: bool
    allowed: bool
    reason: str


@dataclass(frozen=True)
class CostingPolicyInfo:
    product_id: UUID
    method: CostingMethod | None
    is_locked: bool
    locked_at: datetime | None
    locked_by: UUID | None
    locked_on_purchase_ref: str | None


# =========================================================================
# Fiscal Periods
# =========================================================================


class PeriodStatus(str, Enum):
    """Fiscal period status.  Only moves forward: OPEN -> CLOSED -> LOCKED."""

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


PERIOD_STATUS_ORDER: dict[PeriodStatus, int] = {
    PeriodStatus.OPEN: 0,
    PeriodStatus.CLOSED: 1,
    PeriodStatus.LOCKED: 2,
}


@dataclass(frozen=True)
class FiscalPeriodInfo:
    id: UUID
    period_code: str
    start_date: date
    end_date: date
    status: PeriodStatus
    is_critical: bool = False
    override_count: int = 0
    last_override_at: datetime | None = None
    last_override_by: UUID | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    def contains(self, d: date) -> bool:
        return self.start_date <= d <= self.end_date

    @classmethod
    def from_model(cls, model: FiscalPeriodModel) -> FiscalPeriodInfo:
        return cls(
            id=model.id,
            period_code=model.period_code,
            start_date=model.start_date,
            end_date=model.end_date,
            status=PeriodStatus(model.status),
            is_critical=model.is_critical,
            override_count=model.override_count,
            last_override_at=model.last_override_at,
            last_override_by=model.last_override_by,
        )


@dataclass(frozen=True)
class GateDecision:
    """
    An allowed gate outcome.  Rejections are raised, never returned.

    ``reason`` is one of: no_period_check_required, no_period_found,
    period_open, allowed_in_closed, allowed_in_locked, override_valid,
    period_lookup_failed_open.  The request guard adds read_request and
    period_admin_route for requests it never hands to the gate.
    """

    allowed: bool
    reason: str
    transaction_date: date | None = None
    period: FiscalPeriodInfo | None = None
    override_id: UUID | None = None
    job_name: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def requires_override_use(self) -> bool:
        """True when the caller must consume ``override_id`` after writing."""
        return self.override_id is not None and self.reason == "override_valid"
