"""
Period override domain types.

Responsibility
--------------
Status lifecycle, approval-count rule and the frozen view of an override
request.  The workflow service persists; this module decides.

Architecture position
---------------------
**Kernel domain layer** -- zero I/O.

Invariants enforced
-------------------
* ``OVERRIDE_TRANSITIONS`` lists every legal status move.  Terminal states
  (used, rejected, expired, cancelled) have no outgoing edges.
* ``required_approvals`` depends only on period status and criticality.
* An override is usable only while approved, unexpired and unused.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from inventory_kernel.domain.dtos import PeriodStatus

if TYPE_CHECKING:
    from inventory_kernel.models.period_override import PeriodOverrideModel


class OverrideStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


OVERRIDE_TRANSITIONS: dict[OverrideStatus, frozenset[OverrideStatus]] = {
    OverrideStatus.PENDING_APPROVAL: frozenset({
        OverrideStatus.APPROVED,
        OverrideStatus.REJECTED,
        OverrideStatus.CANCELLED,
    }),
    OverrideStatus.APPROVED: frozenset({
        OverrideStatus.USED,
        OverrideStatus.EXPIRED,
        OverrideStatus.CANCELLED,
    }),
    OverrideStatus.REJECTED: frozenset(),
    OverrideStatus.USED: frozenset(),
    OverrideStatus.EXPIRED: frozenset(),
    OverrideStatus.CANCELLED: frozenset(),
}

TERMINAL_OVERRIDE_STATUSES: frozenset[OverrideStatus] = frozenset(
    status for status, targets in OVERRIDE_TRANSITIONS.items() if not targets
)


def can_transition(current: OverrideStatus, target: OverrideStatus) -> bool:
    return target in OVERRIDE_TRANSITIONS.get(current, frozenset())


def required_approvals(status: PeriodStatus, is_critical: bool) -> int:
    """
    Approvals needed to override a period.

    closed: 1, or 2 when critical.  locked: 2, or 3 when critical.
    An open period needs none.
    """
    status = PeriodStatus(status)
    if status == PeriodStatus.CLOSED:
        return 2 if is_critical else 1
    if status == PeriodStatus.LOCKED:
        return 3 if is_critical else 2
    return 0


class OverrideOperation(str, Enum):
    """What the override authorizes.  Informational; the gate does not branch on it."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADJUST = "adjust"
    RECONCILE = "reconcile"


@dataclass(frozen=True)
class OverrideApprovalInfo:
    approver_id: UUID
    approved_at: datetime
    notes: str | None = None


@dataclass(frozen=True)
class PeriodOverrideInfo:
    id: UUID
    period_id: UUID
    requested_by: UUID
    operation: str
    reason: str
    status: OverrideStatus
    approval_required: int
    approvals: tuple[OverrideApprovalInfo, ...]
    requested_at: datetime
    expires_at: datetime | None = None
    used_at: datetime | None = None
    used_by: UUID | None = None
    rejected_by: UUID | None = None
    rejection_reason: str | None = None

    @property
    def approval_count(self) -> int:
        return len(self.approvals)

    def is_usable_at(self, now: datetime) -> bool:
        return (
            self.status == OverrideStatus.APPROVED
            and self.used_at is None
            and self.expires_at is not None
            and now < self.expires_at
        )

    @classmethod
    def from_model(cls, model: PeriodOverrideModel) -> PeriodOverrideInfo:
        approvals = tuple(
            OverrideApprovalInfo(
                approver_id=a.approver_id,
                approved_at=a.approved_at,
                notes=a.notes,
            )
            for a in sorted(model.approvals, key=lambda a: a.approved_at)
        )
        return cls(
            id=model.id,
            period_id=model.period_id,
            requested_by=model.requested_by,
            operation=model.operation,
            reason=model.reason,
            status=OverrideStatus(model.status),
            approval_required=model.approval_required,
            approvals=approvals,
            requested_at=model.requested_at,
            expires_at=model.expires_at,
            used_at=model.used_at,
            used_by=model.used_by,
            rejected_by=model.rejected_by,
            rejection_reason=model.rejection_reason,
        )
