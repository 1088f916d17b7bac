"""
Module: inventory_kernel.models.period_override
Responsibility: ORM persistence for period override requests and their
    approvals.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - UNIQUE(override_id, approver_id): an approver counts once.
    - ``version`` guards status changes; OverrideWorkflow writes status
      with a conditional UPDATE so two simultaneous approvals cannot both
      finish the workflow.
    - Approvals are append-only.

Failure modes:
    - IntegrityError on a duplicate approver (surfaced as
      DuplicateOverrideApprovalError by the workflow).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase, UUIDString
from inventory_kernel.domain.override import OverrideStatus


class PeriodOverrideModel(TrackedBase):
    """One request to write into a closed or locked period."""

    __tablename__ = "period_overrides"

    __table_args__ = (
        Index("idx_override_period_status", "period_id", "status"),
        Index("idx_override_requested_by", "requested_by"),
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )

    requested_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    operation: Mapped[str] = mapped_column(String(50), nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=OverrideStatus.PENDING_APPROVAL.value,
        nullable=False,
    )

    approval_required: Mapped[int] = mapped_column(Integer, nullable=False)

    requested_at: Mapped[datetime] = mapped_column(nullable=False)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    used_at: Mapped[datetime | None] = mapped_column(nullable=True)

    used_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)

    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancelled_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    approvals: Mapped[list[OverrideApprovalModel]] = relationship(
        back_populates="override",
        order_by="OverrideApprovalModel.approved_at",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<PeriodOverride {self.id}: {self.status}>"


class OverrideApprovalModel(Base):
    """A single approver's sign-off.  Append-only."""

    __tablename__ = "period_override_approvals"

    __table_args__ = (
        UniqueConstraint("override_id", "approver_id", name="uq_override_approver"),
    )

    override_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("period_overrides.id"),
        nullable=False,
    )

    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    approved_at: Mapped[datetime] = mapped_column(nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    override: Mapped[PeriodOverrideModel] = relationship(back_populates="approvals")
