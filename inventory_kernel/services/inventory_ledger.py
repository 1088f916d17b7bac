"""
InventoryLedger -- authoritative stock per product.

Responsibility:
    Apply stock movements, reservations and releases to the one
    InventoryRecord per product, and append a StockMovement for every
    change to on-hand stock.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Every write is a single conditional UPDATE.  update_stock compares
      ``version``; reserve_stock compares available stock in the WHERE
      clause; release_stock clamps in SQL.  There is no read-then-write
      without a compare.
    - 0 <= reserved_stock <= current_stock and
      available_stock = current_stock - reserved_stock after every write.
    - status is out_of_stock iff current_stock == 0 (for active records).

Failure modes:
    - InsufficientStockError: decrement below zero or below reserved
      stock, or reserve beyond available.  Not retried.
    - InventoryRecordNotFoundError: no record for the product.  Not retried.
    - ConcurrencyConflictError: version race lost on every attempt.
    - ValidationError: zero quantity on a relative movement.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import (
    BulkUpdateItem,
    BulkUpdateResult,
    InventorySnapshot,
    InventoryStatus,
    MovementRecord,
    MovementType,
    StockMovementRequest,
    StockUpdateResult,
)
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InventoryKernelError,
    InventoryRecordExistsError,
    InventoryRecordNotFoundError,
    OptimisticLockError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.inventory import InventoryRecord, StockMovement
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.retry import ConflictRetrier

logger = get_logger("services.inventory_ledger")

DEFAULT_REORDER_POINT = 10
DEFAULT_REORDER_QUANTITY = 50


@dataclass(frozen=True)
class _RecordState:
    current_stock: int
    reserved_stock: int
    status: str
    version: int


@dataclass(frozen=True)
class _PlannedChange:
    new_stock: int
    new_reserved: int
    new_status: str


def next_status(current_status: str, new_stock: int) -> str:
    """
    Status after stock changes.

    Only active/out_of_stock flip automatically; inactive and discontinued
    are administrative and left alone.
    """
    if current_status not in (InventoryStatus.ACTIVE.value, InventoryStatus.OUT_OF_STOCK.value):
        return current_status
    if new_stock == 0:
        return InventoryStatus.OUT_OF_STOCK.value
    return InventoryStatus.ACTIVE.value


def plan_movement(
    product_id,
    state: _RecordState,
    movement: StockMovementRequest,
    consume_reserved: bool = False,
) -> _PlannedChange:
    """Pure computation of the post-movement stock levels."""
    qty = movement.quantity
    kind = movement.movement_type

    if kind == MovementType.ADJUSTMENT:
        new_stock = qty
        new_reserved = min(state.reserved_stock, new_stock)
    else:
        if qty == 0:
            raise ValidationError("quantity", f"{kind.value} movement must be positive")
        if kind.is_increase:
            new_stock = state.current_stock + qty
            new_reserved = state.reserved_stock
        else:
            new_stock = state.current_stock - qty
            new_reserved = state.reserved_stock
            if consume_reserved:
                new_reserved = max(0, state.reserved_stock - qty)
            if new_stock < 0:
                raise InsufficientStockError(str(product_id), qty, state.current_stock)
            if new_stock < new_reserved:
                available = state.current_stock - state.reserved_stock
                if consume_reserved:
                    available = state.current_stock
                raise InsufficientStockError(str(product_id), qty, available)

    return _PlannedChange(
        new_stock=new_stock,
        new_reserved=new_reserved,
        new_status=next_status(state.status, new_stock),
    )


class InventoryLedger(BaseService[InventoryRecord]):
    """
    Stock mutations for InventoryRecord.

    Contract:
        Reads for display belong in InventorySelector; this service only
        mutates, returning a fresh InventorySnapshot after every write.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        retrier: ConflictRetrier | None = None,
    ):
        super().__init__(session, clock)
        self._retrier = retrier or ConflictRetrier()

    # =====================================================================
    # Record lifecycle
    # =====================================================================

    def create_record(
        self,
        product_id: UUID,
        actor_id: UUID,
        initial_stock: int = 0,
        reorder_point: int = DEFAULT_REORDER_POINT,
        reorder_quantity: int = DEFAULT_REORDER_QUANTITY,
    ) -> InventorySnapshot:
        if initial_stock < 0:
            raise ValidationError("initial_stock", "must be >= 0")
        if reorder_point < 0 or reorder_quantity < 0:
            raise ValidationError("reorder", "reorder point and quantity must be >= 0")
        if self._read_state(product_id) is not None:
            raise InventoryRecordExistsError(str(product_id))

        now = self._clock.now()
        record = InventoryRecord(
            product_id=product_id,
            current_stock=initial_stock,
            reserved_stock=0,
            available_stock=initial_stock,
            reorder_point=reorder_point,
            reorder_quantity=reorder_quantity,
            status=next_status(InventoryStatus.ACTIVE.value, initial_stock),
            version=1,
            last_movement_at=now if initial_stock else None,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(record)
                self.session.flush()
        except IntegrityError:
            raise InventoryRecordExistsError(str(product_id)) from None

        if initial_stock:
            self._append_movement(
                product_id,
                StockMovementRequest(
                    movement_type=MovementType.IN,
                    quantity=initial_stock,
                    reason="Initial stock",
                    performed_by=actor_id,
                    occurred_at=now,
                ),
                previous_stock=0,
                new_stock=initial_stock,
                record_version=1,
            )

        logger.info(
            "inventory_record_created",
            extra={
                "product_id": str(product_id),
                "initial_stock": initial_stock,
                "reorder_point": reorder_point,
            },
        )
        return InventorySnapshot.from_model(record)

    def get_or_create_record(self, product_id: UUID, actor_id: UUID) -> InventorySnapshot:
        if self._read_state(product_id) is None:
            return self.create_record(product_id, actor_id)
        return self._snapshot(product_id)

    # =====================================================================
    # Stock movements
    # =====================================================================

    def update_stock(
        self,
        product_id: UUID,
        movement: StockMovementRequest,
        *,
        consume_reserved: bool = False,
    ) -> StockUpdateResult:
        """
        Apply one movement with version-checked compare-and-apply.

        ``in``/``return`` add, ``out``/``damage``/``theft``/``transfer``
        subtract, ``adjustment`` sets an absolute level.  With
        ``consume_reserved`` an outbound movement also draws down the
        reservation it fulfils.
        """
        with LogContext.bind(product_id=product_id, actor_id=movement.performed_by):

            def attempt(attempt_number: int) -> StockUpdateResult:
                state = self._read_state(product_id)
                if state is None:
                    raise InventoryRecordNotFoundError(str(product_id))

                plan = plan_movement(product_id, state, movement, consume_reserved)
                now = self._clock.now()
                new_version = state.version + 1

                result = self.session.execute(
                    update(InventoryRecord)
                    .where(
                        InventoryRecord.product_id == product_id,
                        InventoryRecord.version == state.version,
                    )
                    .values(
                        current_stock=plan.new_stock,
                        reserved_stock=plan.new_reserved,
                        available_stock=plan.new_stock - plan.new_reserved,
                        status=plan.new_status,
                        version=new_version,
                        last_movement_at=now,
                        updated_by_id=movement.performed_by,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise OptimisticLockError(
                        "InventoryRecord", str(product_id), state.version
                    )

                row = self._append_movement(
                    product_id,
                    movement,
                    previous_stock=state.current_stock,
                    new_stock=plan.new_stock,
                    record_version=new_version,
                    occurred_at=movement.occurred_at or now,
                )
                snapshot = self._snapshot(product_id)

                logger.info(
                    "stock_updated",
                    extra={
                        "movement_type": movement.movement_type.value,
                        "quantity": movement.quantity,
                        "previous_stock": state.current_stock,
                        "new_stock": plan.new_stock,
                        "status": plan.new_status,
                        "version": new_version,
                        "attempt": attempt_number,
                    },
                )
                if plan.new_status != state.status:
                    logger.info(
                        "inventory_status_changed",
                        extra={"from_status": state.status, "to_status": plan.new_status},
                    )
                return StockUpdateResult(
                    snapshot=snapshot,
                    movement=MovementRecord.from_model(row),
                    attempts=attempt_number,
                )

            return self._retrier.run("update_stock", attempt)

    def adjust_stock(
        self,
        product_id: UUID,
        new_quantity: int,
        reason: str,
        actor_id: UUID | None = None,
        reference: str | None = None,
    ) -> StockUpdateResult:
        """Set on-hand stock to an absolute count (e.g. after a stocktake)."""
        return self.update_stock(
            product_id,
            StockMovementRequest(
                movement_type=MovementType.ADJUSTMENT,
                quantity=new_quantity,
                reason=reason,
                reference=reference,
                performed_by=actor_id,
            ),
        )

    def bulk_update_stock(self, items: Iterable[BulkUpdateItem]) -> list[BulkUpdateResult]:
        """
        Apply each item in its own SAVEPOINT.

        A failing item is rolled back alone and reported; the rest still apply.
        """
        results: list[BulkUpdateResult] = []
        for item in items:
            try:
                with self.session.begin_nested():
                    outcome = self.update_stock(item.product_id, item.movement)
            except InventoryKernelError as exc:
                logger.warning(
                    "bulk_stock_item_failed",
                    extra={
                        "product_id": str(item.product_id),
                        "error_code": exc.code,
                    },
                )
                results.append(
                    BulkUpdateResult(
                        product_id=item.product_id,
                        success=False,
                        error_code=exc.code,
                        error_message=str(exc),
                    )
                )
            else:
                results.append(
                    BulkUpdateResult(
                        product_id=item.product_id,
                        success=True,
                        snapshot=outcome.snapshot,
                    )
                )

        logger.info(
            "bulk_stock_update_completed",
            extra={
                "items": len(results),
                "succeeded": sum(1 for r in results if r.success),
                "failed": sum(1 for r in results if not r.success),
            },
        )
        return results

    # =====================================================================
    # Reservations
    # =====================================================================

    def reserve_stock(
        self,
        product_id: UUID,
        quantity: int,
        actor_id: UUID | None = None,
    ) -> InventorySnapshot:
        """
        Reserve ``quantity`` units in one conditional UPDATE.

        The availability check lives in the WHERE clause, so two concurrent
        reservations cannot both pass it.
        """
        if quantity <= 0:
            raise ValidationError("quantity", "reservation must be positive")

        result = self.session.execute(
            update(InventoryRecord)
            .where(
                InventoryRecord.product_id == product_id,
                InventoryRecord.current_stock - InventoryRecord.reserved_stock >= quantity,
            )
            .values(
                reserved_stock=InventoryRecord.reserved_stock + quantity,
                available_stock=InventoryRecord.current_stock
                - InventoryRecord.reserved_stock
                - quantity,
                version=InventoryRecord.version + 1,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            state = self._read_state(product_id)
            if state is None:
                raise InventoryRecordNotFoundError(str(product_id))
            available = state.current_stock - state.reserved_stock
            logger.info(
                "stock_reservation_rejected",
                extra={
                    "product_id": str(product_id),
                    "requested": quantity,
                    "available": available,
                },
            )
            raise InsufficientStockError(str(product_id), quantity, available)

        snapshot = self._snapshot(product_id)
        logger.info(
            "stock_reserved",
            extra={
                "product_id": str(product_id),
                "quantity": quantity,
                "reserved_stock": snapshot.reserved_stock,
                "available_stock": snapshot.available_stock,
            },
        )
        return snapshot

    def release_stock(
        self,
        product_id: UUID,
        quantity: int,
        actor_id: UUID | None = None,
    ) -> InventorySnapshot:
        """Release up to ``quantity`` reserved units; reserved stock floors at 0."""
        if quantity <= 0:
            raise ValidationError("quantity", "release must be positive")

        new_reserved = case(
            (InventoryRecord.reserved_stock >= quantity, InventoryRecord.reserved_stock - quantity),
            else_=0,
        )
        result = self.session.execute(
            update(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .values(
                reserved_stock=new_reserved,
                available_stock=InventoryRecord.current_stock - new_reserved,
                version=InventoryRecord.version + 1,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InventoryRecordNotFoundError(str(product_id))

        snapshot = self._snapshot(product_id)
        logger.info(
            "stock_released",
            extra={
                "product_id": str(product_id),
                "quantity": quantity,
                "reserved_stock": snapshot.reserved_stock,
                "available_stock": snapshot.available_stock,
            },
        )
        return snapshot

    # =====================================================================
    # Internals
    # =====================================================================

    def _read_state(self, product_id: UUID) -> _RecordState | None:
        """Current persisted values, bypassing the identity map."""
        row = self.session.execute(
            select(
                InventoryRecord.current_stock,
                InventoryRecord.reserved_stock,
                InventoryRecord.status,
                InventoryRecord.version,
            ).where(InventoryRecord.product_id == product_id)
        ).first()
        if row is None:
            return None
        return _RecordState(
            current_stock=row.current_stock,
            reserved_stock=row.reserved_stock,
            status=row.status,
            version=row.version,
        )

    def _snapshot(self, product_id: UUID) -> InventorySnapshot:
        record = self.session.execute(
            select(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            raise InventoryRecordNotFoundError(str(product_id))
        return InventorySnapshot.from_model(record)

    def _append_movement(
        self,
        product_id: UUID,
        movement: StockMovementRequest,
        previous_stock: int,
        new_stock: int,
        record_version: int,
        occurred_at=None,
    ) -> StockMovement:
        row = StockMovement(
            product_id=product_id,
            movement_type=movement.movement_type.value,
            quantity=movement.quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=movement.reason,
            reference=movement.reference,
            performed_by=movement.performed_by,
            occurred_at=occurred_at or movement.occurred_at or self._clock.now(),
            record_version=record_version,
        )
        self.session.add(row)
        self.session.flush()
        return row
