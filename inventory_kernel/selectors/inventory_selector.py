"""
Module: inventory_kernel.selectors.inventory_selector
Responsibility: Read-only stock queries -- a product's current status,
    low-stock lists, movement history and a whole-catalogue summary.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain DTOs.  Never gated by PeriodLockGate.

Invariants enforced:
    - Returns InventorySnapshot / MovementRecord / InventorySummary DTOs.
    - History is newest first, tie-broken by record_version.

Failure modes:
    - InventoryRecordNotFoundError from get_status on an unknown product.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, func, select

from inventory_kernel.domain.dtos import (
    InventoryHistoryPage,
    InventorySnapshot,
    InventoryStatus,
    InventorySummary,
    MovementRecord,
    MovementType,
)
from inventory_kernel.exceptions import InventoryRecordNotFoundError
from inventory_kernel.models.inventory import InventoryRecord, StockMovement
from inventory_kernel.selectors.base import BaseSelector

DEFAULT_HISTORY_LIMIT = 50


class InventorySelector(BaseSelector[InventoryRecord]):
    """
    Selector for stock reads.

    Non-goals:
        - No valuation; cost lives with CostBatchStore.
    """

    def get_status(self, product_id: UUID) -> InventorySnapshot:
        record = self.session.execute(
            select(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            raise InventoryRecordNotFoundError(str(product_id))
        return InventorySnapshot.from_model(record)

    def get_low_stock(self, limit: int | None = None) -> list[InventorySnapshot]:
        """Active records at or below their reorder point, lowest stock first."""
        stmt = (
            select(InventoryRecord)
            .where(
                InventoryRecord.status == InventoryStatus.ACTIVE.value,
                InventoryRecord.current_stock <= InventoryRecord.reorder_point,
            )
            .order_by(InventoryRecord.current_stock.asc(), InventoryRecord.product_id)
            .execution_options(populate_existing=True)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [InventorySnapshot.from_model(r) for r in self.session.execute(stmt).scalars()]

    def get_history(
        self,
        product_id: UUID,
        movement_type: MovementType | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
        offset: int = 0,
    ) -> InventoryHistoryPage:
        """
        One page of a product's movement history, newest first.

        Args:
            product_id: Product whose movements to read.
            movement_type: Only movements of this kind.
            start: Inclusive lower bound on occurred_at.
            end: Inclusive upper bound on occurred_at.
            limit: Page size.
            offset: Rows to skip.
        """
        filters = [StockMovement.product_id == product_id]
        if movement_type is not None:
            filters.append(StockMovement.movement_type == MovementType(movement_type).value)
        if start is not None:
            filters.append(StockMovement.occurred_at >= start)
        if end is not None:
            filters.append(StockMovement.occurred_at <= end)

        total = self.session.execute(
            select(func.count(StockMovement.id)).where(*filters)
        ).scalar_one()

        rows = self.session.execute(
            select(StockMovement)
            .where(*filters)
            .order_by(StockMovement.occurred_at.desc(), StockMovement.record_version.desc())
            .limit(limit)
            .offset(offset)
        ).scalars()

        return InventoryHistoryPage(
            product_id=product_id,
            movements=tuple(MovementRecord.from_model(r) for r in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def get_summary(self) -> InventorySummary:
        row = self.session.execute(
            select(
                func.count(InventoryRecord.id),
                func.coalesce(func.sum(InventoryRecord.current_stock), 0),
                func.coalesce(func.sum(InventoryRecord.reserved_stock), 0),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                (InventoryRecord.status == InventoryStatus.ACTIVE.value)
                                & (InventoryRecord.current_stock <= InventoryRecord.reorder_point),
                                1,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.coalesce(
                    func.sum(
                        case(
                            (InventoryRecord.status == InventoryStatus.OUT_OF_STOCK.value, 1),
                            else_=0,
                        )
                    ),
                    0,
                ),
            )
        ).one()
        return InventorySummary(
            total_products=row[0],
            total_stock=int(row[1]),
            total_reserved=int(row[2]),
            low_stock_count=int(row[3]),
            out_of_stock_count=int(row[4]),
        )
