"""ORM models for the inventory kernel."""

from inventory_kernel.models.cost_batch import CostBatchModel, ProductCostState
from inventory_kernel.models.fiscal_period import FiscalPeriod
from inventory_kernel.models.inventory import InventoryRecord, StockMovement
from inventory_kernel.models.period_override import (
    OverrideApprovalModel,
    PeriodOverrideModel,
)
from inventory_kernel.models.product import Product
from inventory_kernel.models.sale import FROZEN_COGS_COLUMNS, SaleLine

__all__ = [
    "Product",
    "InventoryRecord",
    "StockMovement",
    "CostBatchModel",
    "ProductCostState",
    "FiscalPeriod",
    "PeriodOverrideModel",
    "OverrideApprovalModel",
    "SaleLine",
    "FROZEN_COGS_COLUMNS",
]
