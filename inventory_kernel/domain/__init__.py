"""
Pure domain layer.

Frozen values and pure functions with no session and no I/O:
costing arithmetic, DTOs, the override state machine and the
background-job policy table.  Time comes in through ``Clock``.
"""

from inventory_kernel.domain.clock import Clock, DeterministicClock, SequentialClock, SystemClock
from inventory_kernel.domain.costing import (
    AverageCostState,
    BatchConsumption,
    ConsumptionOrder,
    ConsumptionResult,
    CostBatchView,
    CostingMethod,
    consume_batches,
    order_batches,
)
from inventory_kernel.domain.dtos import (
    FiscalPeriodInfo,
    FrozenCOGS,
    GateDecision,
    InventorySnapshot,
    InventoryStatus,
    MovementRecord,
    MovementType,
    PeriodStatus,
    StockMovementRequest,
    StockUpdateResult,
)
from inventory_kernel.domain.job_policy import (
    DEFAULT_JOB_POLICIES,
    JobPeriodPolicy,
    JobPolicyRegistry,
)
from inventory_kernel.domain.override import (
    OverrideOperation,
    OverrideStatus,
    PeriodOverrideInfo,
    required_approvals,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "SequentialClock",
    "CostingMethod",
    "ConsumptionOrder",
    "CostBatchView",
    "BatchConsumption",
    "ConsumptionResult",
    "AverageCostState",
    "consume_batches",
    "order_batches",
    "InventoryStatus",
    "MovementType",
    "StockMovementRequest",
    "InventorySnapshot",
    "MovementRecord",
    "StockUpdateResult",
    "FrozenCOGS",
    "PeriodStatus",
    "FiscalPeriodInfo",
    "GateDecision",
    "JobPeriodPolicy",
    "JobPolicyRegistry",
    "DEFAULT_JOB_POLICIES",
    "OverrideStatus",
    "OverrideOperation",
    "PeriodOverrideInfo",
    "required_approvals",
]
