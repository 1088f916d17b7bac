"""
inventory_services.job_guard -- period protection for background jobs.

Responsibility:
    Run a scheduled job only when its JobPeriodPolicy allows the period
    covering the job's transaction date.  A blocked job is reported, not
    raised, so schedulers can record it and move on.

Architecture position:
    Services -- thin wrapper over ``PeriodLockGate.validate_for_job``.

Invariants enforced:
    - The job function is never called when the gate blocks.
    - An override that let the job through is consumed after the job
      succeeds, by the override's requester.
    - Job failures are logged and re-raised unchanged.

Failure modes:
    - Override errors from the gate propagate.
    - ValidationError: an override would be needed but no actor_id was
      given to consume it.
    - Whatever the job function raises.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from inventory_kernel.domain.dtos import GateDecision
from inventory_kernel.exceptions import PeriodLockedError, ValidationError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.period_gate import PeriodLockGate

logger = get_logger("services.job_guard")


@dataclass(frozen=True)
class JobRunResult:
    job_name: str
    executed: bool
    blocked: bool = False
    result: Any = None
    decision: GateDecision | None = None
    blocked_by: PeriodLockedError | None = None

    @property
    def override_used(self) -> bool:
        return self.decision is not None and self.decision.requires_override_use


def execute_job_with_protection(
    gate: PeriodLockGate,
    job_name: str,
    fn: Callable[[], Any],
    transaction_date: date | datetime | None = None,
    override_id: UUID | None = None,
    actor_id: UUID | None = None,
) -> JobRunResult:
    """
    Validate ``job_name`` for ``transaction_date`` (default today), then run ``fn``.

    Returns:
        JobRunResult with ``executed=False, blocked=True`` when the period
        lock stops the job; otherwise the job's return value.
    """
    tx_date = transaction_date or gate.clock.today()

    with LogContext.bind(job_name=job_name, actor_id=actor_id, override_id=override_id):
        try:
            decision = gate.validate_for_job(job_name, tx_date, override_id)
        except PeriodLockedError as exc:
            logger.warning(
                "job_blocked",
                extra={
                    "period_code": exc.period_code,
                    "status": exc.status,
                    "transaction_date": exc.transaction_date,
                },
            )
            return JobRunResult(job_name=job_name, executed=False, blocked=True, blocked_by=exc)

        if decision.requires_override_use and actor_id is None:
            raise ValidationError("actor_id", "required to consume the period override")

        logger.info("job_started", extra={"transaction_date": tx_date, "reason": decision.reason})
        try:
            result = fn()
        except Exception:
            logger.exception("job_failed", extra={"transaction_date": tx_date})
            raise

        if decision.requires_override_use:
            gate.workflow.use(decision.override_id, actor_id, decision.period.id)

        logger.info(
            "job_completed",
            extra={
                "transaction_date": tx_date,
                "override_used": decision.requires_override_use,
            },
        )
        return JobRunResult(job_name=job_name, executed=True, result=result, decision=decision)
