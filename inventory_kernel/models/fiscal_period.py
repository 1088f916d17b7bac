"""
Module: inventory_kernel.models.fiscal_period
Responsibility: ORM persistence for fiscal periods -- the date ranges whose
    status decides whether a dated inventory write may proceed.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - period_code is unique.
    - start_date <= end_date (check constraint).
    - status only moves open -> closed -> locked (db/immutability.py).
    - idx_period_dates supports the start_date <= d <= end_date lookup.

Failure modes:
    - InvalidPeriodTransitionError on a backwards status change.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UUIDString
from inventory_kernel.domain.dtos import PeriodStatus


class FiscalPeriod(TrackedBase):
    """
    Fiscal period.

    Created administratively.  Closing and locking go through
    FiscalPeriodService, which bypasses the period gate.
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        UniqueConstraint("period_code", name="uq_period_code"),
        CheckConstraint("start_date <= end_date", name="ck_period_range"),
        Index("idx_period_dates", "start_date", "end_date"),
        Index("idx_period_status", "status"),
    )

    # e.g. "2024-01", "2024-Q1"
    period_code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Inclusive bounds
    start_date: Mapped[date] = mapped_column(nullable=False)

    end_date: Mapped[date] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN.value,
        nullable=False,
    )

    # Critical periods (year end, audit) need one more approval to override
    is_critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    override_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_override_at: Mapped[datetime | None] = mapped_column(nullable=True)

    last_override_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.period_code}: {self.status}>"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN.value

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date
