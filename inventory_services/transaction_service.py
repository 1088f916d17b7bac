"""
inventory_services.transaction_service -- dated purchases, sales and movements.

Responsibility:
    The one place where a dated inventory write is composed from kernel
    services: the period gate decides, the costing guard locks the method
    on the first purchase, the ledger moves stock, the cost store keeps
    batches in step, the costing engine freezes COGS onto the sale line,
    and an override that authorized the write is consumed.

Architecture position:
    Services -- stateful orchestration over the kernel.  Flush-only like
    every kernel service; the caller owns commit/rollback.

Invariants enforced:
    - Stock, cost batches, the sale line and override consumption change
      together inside one SAVEPOINT.  Any failure rolls back all of them.
    - The gate runs before anything is written.
    - Batch quantities track on-hand stock: every decrease consumes
      batches and every non-purchase increase adds a batch at the running
      average.

Failure modes:
    - PeriodLockedError / override errors from the gate.
    - InsufficientStockError from the ledger.
    - CostingMethodNotSetError / CostingMethodImmutableError from costing.

Usage:
    service = TransactionService(session, config=get_active_config())
    purchase = service.record_purchase(
        product_id, quantity=10, unit_cost=Decimal("5.00"),
        transaction_date=date(2024, 1, 10), actor_id=user_id,
        purchase_reference="PO-1001",
    )
    sale = service.record_sale(
        product_id, quantity=3, transaction_date=date(2024, 1, 12),
        actor_id=user_id, sale_reference="SO-2001",
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_config.schema import LedgerConfiguration
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.costing import ConsumptionOrder, CostBatchView, CostingMethod
from inventory_kernel.domain.dtos import (
    FrozenCOGS,
    GateDecision,
    MovementType,
    StockMovementRequest,
    StockUpdateResult,
)
from inventory_kernel.exceptions import ValidationError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.sale import SaleLine
from inventory_kernel.services.cost_batch_store import CostBatchStore
from inventory_kernel.services.costing_engine import CostingEngine
from inventory_kernel.services.costing_guard import ImmutableCostingGuard
from inventory_kernel.services.inventory_ledger import InventoryLedger
from inventory_kernel.services.override_workflow import OverrideWorkflow
from inventory_kernel.services.period_gate import PeriodLockGate
from inventory_kernel.services.retry import ConflictRetrier

logger = get_logger("services.transactions")

_ISSUE_ORDER = ConsumptionOrder.OLDEST_FIRST


@dataclass(frozen=True)
class PurchaseResult:
    gate: GateDecision
    stock: StockUpdateResult
    batch: CostBatchView
    costing_method: CostingMethod


@dataclass(frozen=True)
class SaleResult:
    gate: GateDecision
    stock: StockUpdateResult
    cogs: FrozenCOGS
    sale_line_id: UUID


@dataclass(frozen=True)
class MovementResult:
    gate: GateDecision
    stock: StockUpdateResult
    batch_delta: int


class TransactionService:
    """
    Dated inventory writes behind the period gate.

    Contract:
        Each ``record_*`` method returns a frozen result or raises; nothing
        it wrote survives a raise.

    Non-goals:
        - Does NOT commit.
        - Does NOT reserve stock (InventoryLedger.reserve_stock does).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfiguration | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        config = config or LedgerConfiguration()

        retrier = ConflictRetrier(config.retry_policy())
        self.workflow = OverrideWorkflow(
            session,
            self._clock,
            retrier=retrier,
            expiry_hours=config.overrides.expiry_hours,
        )
        self.gate = PeriodLockGate(
            session,
            self._clock,
            workflow=self.workflow,
            job_registry=config.job_registry(),
            fail_open=config.gate.fail_open,
        )
        self.ledger = InventoryLedger(session, self._clock, retrier=retrier)
        self.cost_store = CostBatchStore(session, self._clock, retrier=retrier)
        self.costing = CostingEngine(session, self._clock, cost_store=self.cost_store)
        self.guard = ImmutableCostingGuard(session, self._clock)

    # =====================================================================
    # Purchases
    # =====================================================================

    def record_purchase(
        self,
        product_id: UUID,
        quantity: int,
        unit_cost: Decimal | int | str,
        transaction_date: date,
        actor_id: UUID,
        purchase_reference: str,
        override_id: UUID | None = None,
        costing_method: CostingMethod | str | None = None,
    ) -> PurchaseResult:
        """
        Receive stock: gate -> lock costing method -> stock in -> cost batch.

        ``costing_method`` is only needed when the product has none yet;
        passing a different method for a locked product raises
        CostingMethodImmutableError.
        """
        _require_positive(quantity)
        with LogContext.bind(product_id=product_id, actor_id=actor_id, override_id=override_id):
            decision = self.gate.validate(transaction_date, override_id)

            with self.session.begin_nested():
                policy = self.guard.lock_on_first_purchase(
                    product_id, purchase_reference, actor_id, method=costing_method
                )
                self.ledger.get_or_create_record(product_id, actor_id)
                stock = self.ledger.update_stock(
                    product_id,
                    StockMovementRequest(
                        movement_type=MovementType.IN,
                        quantity=quantity,
                        reason="Purchase",
                        reference=purchase_reference,
                        performed_by=actor_id,
                    ),
                )
                batch = self.cost_store.add_batch(
                    product_id,
                    quantity,
                    unit_cost,
                    acquired_at=self._acquired_at(transaction_date),
                    source_reference=purchase_reference,
                    actor_id=actor_id,
                )
                self._consume_override(decision, actor_id)

            logger.info(
                "purchase_recorded",
                extra={
                    "purchase_reference": purchase_reference,
                    "quantity": quantity,
                    "unit_cost": str(batch.unit_cost),
                    "transaction_date": transaction_date,
                    "costing_method": policy.method,
                    "gate_reason": decision.reason,
                },
            )
            return PurchaseResult(
                gate=decision,
                stock=stock,
                batch=batch,
                costing_method=policy.method,
            )

    # =====================================================================
    # Sales
    # =====================================================================

    def record_sale(
        self,
        product_id: UUID,
        quantity: int,
        transaction_date: date,
        actor_id: UUID,
        sale_reference: str,
        override_id: UUID | None = None,
        consume_reserved: bool = False,
    ) -> SaleResult:
        """
        Issue stock: gate -> COGS -> stock out -> frozen COGS on a new line.

        With ``consume_reserved`` the sale fulfils an earlier reservation
        and draws it down.
        """
        _require_positive(quantity)
        with LogContext.bind(product_id=product_id, actor_id=actor_id, override_id=override_id):
            decision = self.gate.validate(transaction_date, override_id)

            with self.session.begin_nested():
                cogs = self.costing.calculate_and_freeze(
                    product_id, quantity, sale_date=transaction_date, actor_id=actor_id
                )
                if cogs.costing_method not in (CostingMethod.FIFO, CostingMethod.LIFO):
                    # AVERAGE and STANDARD price the sale without touching batches
                    self.cost_store.consume(
                        product_id,
                        quantity,
                        _ISSUE_ORDER,
                        actor_id=actor_id,
                    )
                stock = self.ledger.update_stock(
                    product_id,
                    StockMovementRequest(
                        movement_type=MovementType.OUT,
                        quantity=quantity,
                        reason="Sale",
                        reference=sale_reference,
                        performed_by=actor_id,
                    ),
                    consume_reserved=consume_reserved,
                )
                line = SaleLine(
                    sale_reference=sale_reference,
                    product_id=product_id,
                    quantity=quantity,
                    transaction_date=transaction_date,
                    override_id=override_id if decision.requires_override_use else None,
                    created_by_id=actor_id,
                )
                self.session.add(line)
                self.session.flush()
                self.costing.freeze_onto_line(line, cogs)
                self._consume_override(decision, actor_id)

            logger.info(
                "sale_recorded",
                extra={
                    "sale_reference": sale_reference,
                    "sale_line_id": str(line.id),
                    "quantity": quantity,
                    "total_cost": str(cogs.total_cost),
                    "transaction_date": transaction_date,
                    "gate_reason": decision.reason,
                },
            )
            return SaleResult(gate=decision, stock=stock, cogs=cogs, sale_line_id=line.id)

    # =====================================================================
    # Other movements
    # =====================================================================

    def record_movement(
        self,
        product_id: UUID,
        movement: StockMovementRequest,
        transaction_date: date | None = None,
        override_id: UUID | None = None,
    ) -> MovementResult:
        """
        Damage, theft, returns, transfers and stocktake adjustments.

        Cost batches follow the stock delta: decreases consume oldest
        batches first, increases add a batch at the running average.
        """
        if movement.movement_type == MovementType.IN:
            raise ValidationError(
                "movement_type", "purchases go through record_purchase with a unit cost"
            )
        tx_date = transaction_date or self._clock.today()
        actor_id = movement.performed_by

        with LogContext.bind(product_id=product_id, actor_id=actor_id, override_id=override_id):
            decision = self.gate.validate(tx_date, override_id)

            with self.session.begin_nested():
                stock = self.ledger.update_stock(product_id, movement)
                delta = stock.movement.new_stock - stock.movement.previous_stock
                if delta < 0:
                    self.cost_store.consume(
                        product_id,
                        -delta,
                        _ISSUE_ORDER,
                        actor_id=actor_id,
                    )
                elif delta > 0:
                    self.cost_store.add_batch(
                        product_id,
                        delta,
                        self.cost_store.get_average_cost(product_id),
                        acquired_at=self._acquired_at(tx_date),
                        source_reference=movement.reference,
                        actor_id=actor_id,
                    )
                self._consume_override(decision, actor_id)

            logger.info(
                "movement_recorded",
                extra={
                    "movement_type": movement.movement_type.value,
                    "quantity": movement.quantity,
                    "batch_delta": delta,
                    "transaction_date": tx_date,
                    "gate_reason": decision.reason,
                },
            )
            return MovementResult(gate=decision, stock=stock, batch_delta=delta)

    # =====================================================================
    # Internals
    # =====================================================================

    def _consume_override(self, decision: GateDecision, actor_id: UUID) -> None:
        if decision.requires_override_use:
            self.workflow.use(decision.override_id, actor_id, decision.period.id)

    def _acquired_at(self, transaction_date: date) -> datetime:
        """Now for today's receipts; start of day for backdated ones."""
        now = self._clock.now()
        if transaction_date == now.date():
            return now
        return datetime.combine(transaction_date, time.min, tzinfo=UTC)


def _require_positive(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity", f"must be a positive integer, got {quantity!r}")
