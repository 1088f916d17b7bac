"""
OverrideWorkflow -- approval-gated, single-use period overrides.

Responsibility:
    Request, approve, reject, cancel and consume overrides that let one
    dated write land in a closed or locked fiscal period.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  PeriodLockGate
    calls ``validate_for_use``; the write path calls ``use`` once its own
    write has succeeded.

Invariants enforced:
    - Status moves only along OVERRIDE_TRANSITIONS; every status write is
      a conditional UPDATE on the expected status (and version).
    - An approver counts once (UNIQUE(override_id, approver_id)).
    - Recording an approval and deciding whether the workflow is finished
      happen in one savepoint guarded by ``version``; a concurrent approval
      forces a re-read, so the workflow cannot finish twice.
    - Expiry is lazy: an approved override past ``expires_at`` is marked
      expired the first time someone tries to validate or use it.
    - ``use`` succeeds at most once and only for the requesting user.

Failure modes:
    - OverrideNotFoundError, OverrideNotRequiredError (period is open).
    - DuplicateOverrideApprovalError, InvalidOverrideTransitionError.
    - OverrideInvalidError / OverrideExpiredError / OverrideAlreadyUsedError.
    - OverridePeriodMismatchError, OverrideUserMismatchError.
    - ConcurrencyConflictError after retry exhaustion.

Audit relevance:
    Every transition is logged with override_id and the acting user;
    ``period_override_used`` is logged at WARNING.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import PeriodStatus
from inventory_kernel.domain.override import (
    OverrideOperation,
    OverrideStatus,
    PeriodOverrideInfo,
    can_transition,
    required_approvals,
)
from inventory_kernel.exceptions import (
    DuplicateOverrideApprovalError,
    InvalidOverrideTransitionError,
    OptimisticLockError,
    OverrideAlreadyUsedError,
    OverrideExpiredError,
    OverrideInvalidError,
    OverrideNotFoundError,
    OverrideNotRequiredError,
    OverridePeriodMismatchError,
    OverrideUserMismatchError,
    PeriodNotFoundError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.fiscal_period import FiscalPeriod
from inventory_kernel.models.period_override import (
    OverrideApprovalModel,
    PeriodOverrideModel,
)
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.retry import ConflictRetrier

logger = get_logger("services.override_workflow")

DEFAULT_EXPIRY_HOURS = 24

class OverrideWorkflow(BaseService[PeriodOverrideModel]):
    """State machine for period overrides."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        retrier: ConflictRetrier | None = None,
        expiry_hours: int = DEFAULT_EXPIRY_HOURS,
    ):
        super().__init__(session, clock)
        self._retrier = retrier or ConflictRetrier()
        if expiry_hours <= 0:
            raise ValueError(f"expiry_hours must be positive, got {expiry_hours}")
        self._expiry = timedelta(hours=expiry_hours)

    # =====================================================================
    # Request
    # =====================================================================

    def request(
        self,
        period_id: UUID,
        requested_by: UUID,
        reason: str,
        operation: OverrideOperation | str = OverrideOperation.CREATE,
    ) -> PeriodOverrideInfo:
        """
        Ask for permission to write into a closed or locked period.

        An existing active request from the same user for the same period
        and operation is returned instead of creating a duplicate.

        Raises:
            PeriodNotFoundError: unknown period.
            OverrideNotRequiredError: the period is open.
            ValidationError: empty reason.
        """
        if not reason or not reason.strip():
            raise ValidationError("reason", "an override needs a reason")
        try:
            operation = OverrideOperation(operation)
        except ValueError:
            raise ValidationError("operation", f"unknown override operation {operation!r}") from None

        period = self.session.get(FiscalPeriod, period_id, populate_existing=True)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        status = PeriodStatus(period.status)
        if status == PeriodStatus.OPEN:
            raise OverrideNotRequiredError(period.period_code)

        now = self._clock.now()
        existing = self.session.execute(
            select(PeriodOverrideModel)
            .where(
                PeriodOverrideModel.period_id == period_id,
                PeriodOverrideModel.requested_by == requested_by,
                PeriodOverrideModel.operation == operation.value,
                or_(
                    PeriodOverrideModel.status == OverrideStatus.PENDING_APPROVAL.value,
                    and_(
                        PeriodOverrideModel.status == OverrideStatus.APPROVED.value,
                        PeriodOverrideModel.expires_at > now,
                    ),
                ),
            )
            .order_by(PeriodOverrideModel.requested_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if existing is not None:
            logger.info(
                "period_override_request_reused",
                extra={"override_id": str(existing.id), "period_code": period.period_code},
            )
            return PeriodOverrideInfo.from_model(existing)

        needed = required_approvals(status, period.is_critical)
        override = PeriodOverrideModel(
            period_id=period_id,
            requested_by=requested_by,
            operation=operation.value,
            reason=reason,
            status=OverrideStatus.PENDING_APPROVAL.value,
            approval_required=needed,
            requested_at=now,
            version=1,
            created_by_id=requested_by,
        )
        if needed == 0:
            override.status = OverrideStatus.APPROVED.value
            override.approved_at = now
            override.expires_at = now + self._expiry
        self.session.add(override)
        self.session.flush()

        logger.info(
            "period_override_requested",
            extra={
                "override_id": str(override.id),
                "period_code": period.period_code,
                "period_status": status.value,
                "is_critical": period.is_critical,
                "requested_by": str(requested_by),
                "operation": operation.value,
                "approval_required": needed,
            },
        )
        return PeriodOverrideInfo.from_model(override)

    # =====================================================================
    # Approval
    # =====================================================================

    def approve(
        self,
        override_id: UUID,
        approver_id: UUID,
        notes: str | None = None,
    ) -> PeriodOverrideInfo:
        """
        Record one distinct approval.

        When the count reaches ``approval_required`` the override becomes
        APPROVED and expires ``expiry_hours`` later.

        Raises:
            DuplicateOverrideApprovalError: approver already signed.
            InvalidOverrideTransitionError: not pending approval.
        """

        def attempt(attempt_number: int) -> PeriodOverrideInfo:
            with self.session.begin_nested():
                row = self._read_row(override_id)
                current = OverrideStatus(row.status)
                if current != OverrideStatus.PENDING_APPROVAL:
                    raise InvalidOverrideTransitionError(
                        str(override_id), current.value, OverrideStatus.APPROVED.value
                    )

                already = self.session.execute(
                    select(OverrideApprovalModel.id).where(
                        OverrideApprovalModel.override_id == override_id,
                        OverrideApprovalModel.approver_id == approver_id,
                    )
                ).first()
                if already is not None:
                    raise DuplicateOverrideApprovalError(str(override_id), str(approver_id))

                now = self._clock.now()
                try:
                    with self.session.begin_nested():
                        self.session.add(
                            OverrideApprovalModel(
                                override_id=override_id,
                                approver_id=approver_id,
                                approved_at=now,
                                notes=notes,
                            )
                        )
                        self.session.flush()
                except IntegrityError:
                    raise DuplicateOverrideApprovalError(
                        str(override_id), str(approver_id)
                    ) from None

                count = self.session.execute(
                    select(func.count(OverrideApprovalModel.id)).where(
                        OverrideApprovalModel.override_id == override_id
                    )
                ).scalar_one()

                values: dict = {"version": row.version + 1, "updated_by_id": approver_id}
                finished = count >= row.approval_required
                if finished:
                    values.update(
                        status=OverrideStatus.APPROVED.value,
                        approved_at=now,
                        expires_at=now + self._expiry,
                    )
                result = self.session.execute(
                    update(PeriodOverrideModel)
                    .where(
                        PeriodOverrideModel.id == override_id,
                        PeriodOverrideModel.version == row.version,
                        PeriodOverrideModel.status == OverrideStatus.PENDING_APPROVAL.value,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise OptimisticLockError("PeriodOverride", str(override_id), row.version)

            logger.info(
                "period_override_approved" if finished else "period_override_approval_recorded",
                extra={
                    "override_id": str(override_id),
                    "approver_id": str(approver_id),
                    "approvals": count,
                    "required": row.approval_required,
                    "attempt": attempt_number,
                },
            )
            return self.get(override_id)

        with LogContext.bind(override_id=override_id, actor_id=approver_id):
            return self._retrier.run("approve_override", attempt)

    def reject(self, override_id: UUID, rejector_id: UUID, reason: str) -> PeriodOverrideInfo:
        """PENDING_APPROVAL -> REJECTED.  Terminal."""
        now = self._clock.now()
        self._transition(
            override_id,
            OverrideStatus.PENDING_APPROVAL,
            OverrideStatus.REJECTED,
            rejected_at=now,
            rejected_by=rejector_id,
            rejection_reason=reason,
            updated_by_id=rejector_id,
        )
        logger.info(
            "period_override_rejected",
            extra={
                "override_id": str(override_id),
                "rejector_id": str(rejector_id),
                "reason": reason,
            },
        )
        return self.get(override_id)

    def cancel(
        self,
        override_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> PeriodOverrideInfo:
        """PENDING_APPROVAL or APPROVED -> CANCELLED.  Requester only."""
        info = self.get(override_id)
        if info.requested_by != actor_id:
            raise OverrideUserMismatchError(
                str(override_id), str(info.requested_by), str(actor_id)
            )
        self._transition(
            override_id,
            info.status,
            OverrideStatus.CANCELLED,
            cancelled_at=self._clock.now(),
            cancelled_by=actor_id,
            cancellation_reason=reason,
            updated_by_id=actor_id,
        )
        logger.info(
            "period_override_cancelled",
            extra={
                "override_id": str(override_id),
                "actor_id": str(actor_id),
                "reason": reason,
            },
        )
        return self.get(override_id)

    # =====================================================================
    # Use
    # =====================================================================

    def validate_for_use(self, override_id: UUID, period_id: UUID) -> PeriodOverrideInfo:
        """
        Check that the override may authorize a write into ``period_id``.

        Succeeds only if approved, unexpired, unused and issued for the
        same period.  An approved override found past its expiry is marked
        EXPIRED here.
        """
        info = self.get(override_id)
        now = self._clock.now()

        if info.status == OverrideStatus.USED or info.used_at is not None:
            raise OverrideAlreadyUsedError(str(override_id), _iso(info.used_at))
        if info.status == OverrideStatus.APPROVED and info.expires_at is not None and now >= info.expires_at:
            self._mark_expired(override_id)
            raise OverrideExpiredError(str(override_id), _iso(info.expires_at))
        if info.status == OverrideStatus.EXPIRED:
            raise OverrideExpiredError(str(override_id), _iso(info.expires_at))
        if info.status != OverrideStatus.APPROVED:
            raise OverrideInvalidError(str(override_id), info.status.value)
        if info.period_id != period_id:
            raise OverridePeriodMismatchError(
                str(override_id), str(info.period_id), str(period_id)
            )
        return info

    def use(
        self,
        override_id: UUID,
        actor_id: UUID,
        period_id: UUID | None = None,
    ) -> PeriodOverrideInfo:
        """
        Consume the override.  Single use, requester only.

        Marks it USED and bumps the period's override_count and
        last_override_at/by.
        """
        with LogContext.bind(override_id=override_id, actor_id=actor_id):
            if period_id is None:
                period_id = self.get(override_id).period_id
            info = self.validate_for_use(override_id, period_id)
            if info.requested_by != actor_id:
                raise OverrideUserMismatchError(
                    str(override_id), str(info.requested_by), str(actor_id)
                )

            now = self._clock.now()
            result = self.session.execute(
                update(PeriodOverrideModel)
                .where(
                    PeriodOverrideModel.id == override_id,
                    PeriodOverrideModel.status == OverrideStatus.APPROVED.value,
                    PeriodOverrideModel.used_at.is_(None),
                )
                .values(
                    status=OverrideStatus.USED.value,
                    used_at=now,
                    used_by=actor_id,
                    version=PeriodOverrideModel.version + 1,
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Lost to a concurrent use; report it as already used
                latest = self.get(override_id)
                raise OverrideAlreadyUsedError(str(override_id), _iso(latest.used_at))

            self.session.execute(
                update(FiscalPeriod)
                .where(FiscalPeriod.id == info.period_id)
                .values(
                    override_count=FiscalPeriod.override_count + 1,
                    last_override_at=now,
                    last_override_by=actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            self.session.flush()

            used = self.get(override_id)
            logger.warning(
                "period_override_used",
                extra={
                    "override_id": str(override_id),
                    "period_id": str(info.period_id),
                    "operation": used.operation,
                    "reason": used.reason,
                },
            )
            return used

    # =====================================================================
    # Queries
    # =====================================================================

    def get(self, override_id: UUID) -> PeriodOverrideInfo:
        model = self.session.execute(
            select(PeriodOverrideModel)
            .where(PeriodOverrideModel.id == override_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise OverrideNotFoundError(str(override_id))
        return PeriodOverrideInfo.from_model(model)

    def get_active_overrides(
        self,
        period_id: UUID | None = None,
        requested_by: UUID | None = None,
    ) -> list[PeriodOverrideInfo]:
        """Approved, unused and unexpired overrides, newest first."""
        stmt = select(PeriodOverrideModel).where(
            PeriodOverrideModel.status == OverrideStatus.APPROVED.value,
            PeriodOverrideModel.used_at.is_(None),
            PeriodOverrideModel.expires_at > self._clock.now(),
        )
        if period_id is not None:
            stmt = stmt.where(PeriodOverrideModel.period_id == period_id)
        if requested_by is not None:
            stmt = stmt.where(PeriodOverrideModel.requested_by == requested_by)
        models = self.session.execute(
            stmt.order_by(PeriodOverrideModel.requested_at.desc()).execution_options(
                populate_existing=True
            )
        ).scalars()
        return [PeriodOverrideInfo.from_model(m) for m in models]

    def get_pending_approvals(self, approver_id: UUID | None = None) -> list[PeriodOverrideInfo]:
        """Pending overrides, minus those ``approver_id`` already signed."""
        stmt = select(PeriodOverrideModel).where(
            PeriodOverrideModel.status == OverrideStatus.PENDING_APPROVAL.value,
        )
        if approver_id is not None:
            signed = select(OverrideApprovalModel.override_id).where(
                OverrideApprovalModel.approver_id == approver_id
            )
            stmt = stmt.where(PeriodOverrideModel.id.not_in(signed))
        models = self.session.execute(
            stmt.order_by(PeriodOverrideModel.requested_at.desc()).execution_options(
                populate_existing=True
            )
        ).scalars()
        return [PeriodOverrideInfo.from_model(m) for m in models]

    # =====================================================================
    # Internals
    # =====================================================================

    def _read_row(self, override_id: UUID):
        row = self.session.execute(
            select(
                PeriodOverrideModel.status,
                PeriodOverrideModel.version,
                PeriodOverrideModel.approval_required,
            ).where(PeriodOverrideModel.id == override_id)
        ).first()
        if row is None:
            raise OverrideNotFoundError(str(override_id))
        return row

    def _transition(
        self,
        override_id: UUID,
        expected: OverrideStatus,
        target: OverrideStatus,
        **values,
    ) -> None:
        if not can_transition(expected, target):
            raise InvalidOverrideTransitionError(str(override_id), expected.value, target.value)
        result = self.session.execute(
            update(PeriodOverrideModel)
            .where(
                PeriodOverrideModel.id == override_id,
                PeriodOverrideModel.status == expected.value,
            )
            .values(
                status=target.value,
                version=PeriodOverrideModel.version + 1,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            row = self._read_row(override_id)
            raise InvalidOverrideTransitionError(str(override_id), row.status, target.value)

    def _mark_expired(self, override_id: UUID) -> None:
        self.session.execute(
            update(PeriodOverrideModel)
            .where(
                PeriodOverrideModel.id == override_id,
                PeriodOverrideModel.status == OverrideStatus.APPROVED.value,
            )
            .values(
                status=OverrideStatus.EXPIRED.value,
                version=PeriodOverrideModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        logger.info("period_override_expired", extra={"override_id": str(override_id)})


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
