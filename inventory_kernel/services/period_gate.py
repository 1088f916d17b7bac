"""
PeriodLockGate -- may a financial write dated D happen now?

Responsibility:
    Find the fiscal period covering a transaction date and decide: open
    periods pass, closed and locked periods need a valid override.
    Background jobs are judged by their JobPeriodPolicy instead of the
    interactive rule.

Architecture position:
    Kernel > Services -- validation only.  The gate never consumes an
    override; a decision with ``requires_override_use`` tells the caller
    to call ``OverrideWorkflow.use`` after its own write succeeds.
    Reads and administrative period-status changes never pass through
    here.

Invariants enforced:
    - Rejections are raised (PeriodLockedError); allowed outcomes are
      returned as GateDecision.
    - A failed period *lookup* (database error, not a rejection) follows
      ``fail_open``: allow with a logged warning, or raise
      PeriodLookupError.
    - Unknown job names get the strict policy.

Failure modes:
    - PeriodLockedError.
    - Override errors from OverrideWorkflow.validate_for_use.
    - PeriodLookupError when ``fail_open`` is False.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import FiscalPeriodInfo, GateDecision, PeriodStatus
from inventory_kernel.domain.job_policy import JobPeriodPolicy, JobPolicyRegistry
from inventory_kernel.exceptions import PeriodLockedError, PeriodLookupError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.fiscal_period import FiscalPeriod
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.override_workflow import OverrideWorkflow

logger = get_logger("services.period_gate")

_LOOKUP_FAILED = object()


class PeriodLockGate(BaseService[FiscalPeriod]):
    """Validates transaction dates against fiscal period status."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        workflow: OverrideWorkflow | None = None,
        job_registry: JobPolicyRegistry | None = None,
        fail_open: bool = True,
    ):
        super().__init__(session, clock)
        self._workflow = workflow or OverrideWorkflow(session, self._clock)
        self._jobs = job_registry or JobPolicyRegistry()
        self._fail_open = fail_open

    @property
    def job_registry(self) -> JobPolicyRegistry:
        return self._jobs

    @property
    def workflow(self) -> OverrideWorkflow:
        return self._workflow

    def validate(
        self,
        transaction_date: date | datetime,
        override_id: UUID | None = None,
    ) -> GateDecision:
        """
        Interactive rule: open passes, closed/locked need an override.

        Raises:
            PeriodLockedError: closed or locked period, no override.
            OverrideError subclasses: the override cannot be used here.
        """
        tx_date = _as_date(transaction_date)
        with LogContext.bind(override_id=override_id):
            period = self._lookup(tx_date)
            if period is _LOOKUP_FAILED:
                return self._lookup_failed_decision(tx_date)
            if period is None:
                return GateDecision(True, "no_period_found", transaction_date=tx_date)
            if period.is_open:
                return GateDecision(True, "period_open", transaction_date=tx_date, period=period)

            if override_id is None:
                self._reject(period, tx_date)
            return self._allow_with_override(period, tx_date, override_id)

    def validate_for_job(
        self,
        job_name: str,
        transaction_date: date | datetime,
        override_id: UUID | None = None,
    ) -> GateDecision:
        """
        Job rule: consult the job's policy, then fall back to an override.

        Raises:
            PeriodLockedError: the policy blocks this period state and no
                usable override was given (or the policy forbids one).
        """
        tx_date = _as_date(transaction_date)
        policy = self._jobs.get(job_name)
        if not self._jobs.is_registered(job_name):
            logger.warning("job_policy_unknown", extra={"job_name": job_name})

        with LogContext.bind(job_name=job_name, override_id=override_id):
            if not policy.check_period:
                return GateDecision(
                    True, "no_period_check_required", transaction_date=tx_date, job_name=job_name
                )

            period = self._lookup(tx_date)
            if period is _LOOKUP_FAILED:
                return self._lookup_failed_decision(tx_date, job_name=job_name)
            if period is None:
                return GateDecision(True, "no_period_found", transaction_date=tx_date, job_name=job_name)
            if period.is_open:
                return GateDecision(
                    True, "period_open", transaction_date=tx_date, period=period, job_name=job_name
                )

            relaxed = self._policy_allows(policy, period.status)
            if relaxed is not None:
                return GateDecision(
                    True, relaxed, transaction_date=tx_date, period=period, job_name=job_name
                )

            if override_id is not None and policy.allow_period_override:
                decision = self._allow_with_override(period, tx_date, override_id)
                return replace(decision, job_name=job_name)

            logger.warning(
                "job_blocked_by_period_lock",
                extra={
                    "period_code": period.period_code,
                    "status": period.status.value,
                    "transaction_date": tx_date,
                    "override_allowed": policy.allow_period_override,
                },
            )
            raise PeriodLockedError(
                str(period.id), period.period_code, period.status.value, tx_date.isoformat()
            )

    # =====================================================================
    # Internals
    # =====================================================================

    @staticmethod
    def _policy_allows(policy: JobPeriodPolicy, status: PeriodStatus) -> str | None:
        if status == PeriodStatus.CLOSED and policy.allowed_in_closed:
            return "allowed_in_closed"
        if status == PeriodStatus.LOCKED and policy.allowed_in_locked:
            return "allowed_in_locked"
        return None

    def _lookup(self, tx_date: date):
        """Covering period, None, or _LOOKUP_FAILED on a database error."""
        try:
            with self.session.begin_nested():
                return self._find_period(tx_date)
        except SQLAlchemyError as exc:
            if not self._fail_open:
                logger.error(
                    "period_lookup_failed_closed",
                    extra={"transaction_date": tx_date, "error": str(exc)},
                )
                raise PeriodLookupError(tx_date.isoformat(), str(exc)) from exc
            logger.warning(
                "period_lookup_failed_open",
                extra={"transaction_date": tx_date, "error": str(exc)},
            )
            return _LOOKUP_FAILED

    def _find_period(self, tx_date: date) -> FiscalPeriodInfo | None:
        period = self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.start_date <= tx_date,
                FiscalPeriod.end_date >= tx_date,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return FiscalPeriodInfo.from_model(period) if period else None

    @staticmethod
    def _lookup_failed_decision(tx_date: date, job_name: str | None = None) -> GateDecision:
        return GateDecision(
            True,
            "period_lookup_failed_open",
            transaction_date=tx_date,
            job_name=job_name,
            warnings=("period lookup failed; write allowed without period check",),
        )

    def _reject(self, period: FiscalPeriodInfo, tx_date: date) -> None:
        logger.warning(
            "period_lock_violation_attempted",
            extra={
                "period_id": str(period.id),
                "period_code": period.period_code,
                "status": period.status.value,
                "is_critical": period.is_critical,
                "transaction_date": tx_date,
            },
        )
        raise PeriodLockedError(
            str(period.id), period.period_code, period.status.value, tx_date.isoformat()
        )

    def _allow_with_override(
        self,
        period: FiscalPeriodInfo,
        tx_date: date,
        override_id: UUID,
    ) -> GateDecision:
        self._workflow.validate_for_use(override_id, period.id)
        logger.info(
            "period_override_accepted",
            extra={
                "period_code": period.period_code,
                "status": period.status.value,
                "transaction_date": tx_date,
            },
        )
        return GateDecision(
            True,
            "override_valid",
            transaction_date=tx_date,
            period=period,
            override_id=override_id,
        )


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
