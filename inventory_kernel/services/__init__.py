"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.cost_batch_store import CostBatchStore
from inventory_kernel.services.costing_engine import CostingEngine
from inventory_kernel.services.costing_guard import ImmutableCostingGuard
from inventory_kernel.services.inventory_ledger import InventoryLedger
from inventory_kernel.services.override_workflow import OverrideWorkflow
from inventory_kernel.services.period_gate import PeriodLockGate
from inventory_kernel.services.period_service import FiscalPeriodService
from inventory_kernel.services.retry import ConflictRetrier, RetryPolicy

__all__ = [
    "ConflictRetrier",
    "CostBatchStore",
    "CostingEngine",
    "FiscalPeriodService",
    "ImmutableCostingGuard",
    "InventoryLedger",
    "OverrideWorkflow",
    "PeriodLockGate",
    "RetryPolicy",
]
