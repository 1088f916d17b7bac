"""
FiscalPeriodService -- administrative fiscal period lifecycle.

Responsibility:
    Create periods and move them OPEN -> CLOSED -> LOCKED.  Answers the
    "which period covers this date" question for PeriodLockGate.

Architecture position:
    Kernel > Services -- imperative shell.
    Status changes made here bypass PeriodLockGate: they are selected by
    operation, not by transaction date.

Invariants enforced:
    - Period date ranges never overlap.
    - Status is monotonic; there is no reopen.
    - Returns frozen ``FiscalPeriodInfo`` DTOs, never ORM entities.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - PeriodNotFoundError: unknown period code or id.
    - PeriodOverlapError: new range overlaps an existing one.
    - InvalidPeriodTransitionError: close of a non-open period, lock of a
      non-closed period, or any reopen.
    - ValidationError: start_date after end_date.

Audit relevance:
    Creation, close and lock are logged with period_code and actor_id.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.dtos import FiscalPeriodInfo, PeriodStatus
from inventory_kernel.exceptions import (
    InvalidPeriodTransitionError,
    PeriodNotFoundError,
    PeriodOverlapError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.fiscal_period import FiscalPeriod
from inventory_kernel.services.base import BaseService

logger = get_logger("services.period")


class FiscalPeriodService(BaseService[FiscalPeriod]):
    """
    Service for the fiscal period lifecycle.

    Contract:
        Accepts period codes or dates and returns ``FiscalPeriodInfo``.
        Lifecycle methods flush within the caller's transaction and take a
        row lock on the period they change.

    Non-goals:
        - Does NOT gate dated writes (PeriodLockGate does).
        - Does NOT reopen periods.
    """

    def create_period(
        self,
        period_code: str,
        start_date: date,
        end_date: date,
        actor_id: UUID,
        is_critical: bool = False,
        name: str | None = None,
    ) -> FiscalPeriodInfo:
        """
        Create a new OPEN fiscal period.

        Args:
            period_code: Unique period identifier (e.g., "2024-01").
            start_date: First day of the period (inclusive).
            end_date: Last day of the period (inclusive).
            actor_id: Who is creating the period.
            is_critical: Year-end or audit period; overrides need one
                more approval.
            name: Human-readable name, defaults to the code.

        Raises:
            ValidationError: If start_date > end_date.
            PeriodOverlapError: If the range overlaps an existing period.
        """
        if start_date > end_date:
            raise ValidationError(
                "start_date",
                f"{start_date} cannot be after end_date {end_date}",
            )

        self._validate_no_overlap(period_code, start_date, end_date)

        period = FiscalPeriod(
            period_code=period_code,
            name=name or period_code,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.OPEN.value,
            is_critical=is_critical,
            override_count=0,
            created_by_id=actor_id,
        )
        self.session.add(period)
        self.session.flush()

        logger.info(
            "period_created",
            extra={
                "period_code": period_code,
                "start_date": str(start_date),
                "end_date": str(end_date),
                "is_critical": is_critical,
                "actor_id": str(actor_id),
            },
        )
        return FiscalPeriodInfo.from_model(period)

    def _validate_no_overlap(self, period_code: str, start_date: date, end_date: date) -> None:
        # Two ranges overlap if: start1 <= end2 AND start2 <= end1
        overlapping = self.session.execute(
            select(FiscalPeriod.period_code)
            .where(
                FiscalPeriod.start_date <= end_date,
                FiscalPeriod.end_date >= start_date,
            )
            .limit(1)
        ).scalar_one_or_none()
        if overlapping is not None:
            raise PeriodOverlapError(period_code, overlapping)

    def close_period(self, period_code: str, actor_id: UUID) -> FiscalPeriodInfo:
        """OPEN -> CLOSED.  Dated writes now need an approved override."""
        period = self._get_period_for_update(period_code)
        current = PeriodStatus(period.status)
        if current != PeriodStatus.OPEN:
            raise InvalidPeriodTransitionError(
                period_code, current.value, PeriodStatus.CLOSED.value
            )

        period.status = PeriodStatus.CLOSED.value
        period.closed_at = self._clock.now()
        period.closed_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_closed",
            extra={"period_code": period_code, "actor_id": str(actor_id)},
        )
        return FiscalPeriodInfo.from_model(period)

    def lock_period(self, period_code: str, actor_id: UUID) -> FiscalPeriodInfo:
        """CLOSED -> LOCKED.  No reopening possible."""
        period = self._get_period_for_update(period_code)
        current = PeriodStatus(period.status)
        if current != PeriodStatus.CLOSED:
            raise InvalidPeriodTransitionError(
                period_code, current.value, PeriodStatus.LOCKED.value
            )

        period.status = PeriodStatus.LOCKED.value
        period.locked_at = self._clock.now()
        period.locked_by_id = actor_id
        period.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "period_locked",
            extra={"period_code": period_code, "actor_id": str(actor_id)},
        )
        return FiscalPeriodInfo.from_model(period)

    def reopen_period(self, period_code: str, actor_id: UUID) -> None:
        """
        Always fails for a closed or locked period; a no-op when open.

        Raises:
            PeriodNotFoundError: If the period doesn't exist.
            InvalidPeriodTransitionError: If the period is not open.
        """
        period = self._get_period_orm(period_code)
        if period is None:
            raise PeriodNotFoundError(period_code)
        if period.status != PeriodStatus.OPEN.value:
            logger.warning(
                "period_reopen_rejected",
                extra={"period_code": period_code, "actor_id": str(actor_id)},
            )
            raise InvalidPeriodTransitionError(
                period_code, period.status, PeriodStatus.OPEN.value
            )

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_period(self, period_id: UUID) -> FiscalPeriodInfo:
        period = self.session.get(FiscalPeriod, period_id, populate_existing=True)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return FiscalPeriodInfo.from_model(period)

    def get_period_by_code(self, period_code: str) -> FiscalPeriodInfo | None:
        period = self._get_period_orm(period_code)
        return FiscalPeriodInfo.from_model(period) if period else None

    def get_period_for_date(self, check_date: date) -> FiscalPeriodInfo | None:
        """The period whose inclusive range covers ``check_date``, if any."""
        period = self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.start_date <= check_date,
                FiscalPeriod.end_date >= check_date,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return FiscalPeriodInfo.from_model(period) if period else None

    def get_open_periods(self) -> list[FiscalPeriodInfo]:
        result = self.session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.status == PeriodStatus.OPEN.value)
            .order_by(FiscalPeriod.start_date)
        )
        return [FiscalPeriodInfo.from_model(p) for p in result.scalars().all()]

    def get_current_period(self, as_of: date | None = None) -> FiscalPeriodInfo | None:
        return self.get_period_for_date(as_of or self._clock.today())

    def _get_period_orm(self, period_code: str) -> FiscalPeriod | None:
        return self.session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.period_code == period_code)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _get_period_for_update(self, period_code: str) -> FiscalPeriod:
        period = self.session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.period_code == period_code)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_code)
        return period
