"""
Module: inventory_kernel.models.sale
Responsibility: ORM persistence for sale lines and the COGS snapshot frozen
    onto each of them.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - cogs_* columns are write-once: NULL until frozen, then never changed
      (db/immutability.py).  Later purchases move the running average but
      never touch a frozen line.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UUIDString

FROZEN_COGS_COLUMNS: tuple[str, ...] = (
    "cogs_unit_cost",
    "cogs_total_cost",
    "cogs_method",
    "cogs_calculated_at",
    "cogs_batches",
    "cogs_average_at_sale",
    "cogs_note",
)


class SaleLine(TrackedBase):
    """One product line of a sale."""

    __tablename__ = "sale_lines"

    __table_args__ = (
        Index("idx_sale_line_product", "product_id"),
        Index("idx_sale_line_reference", "sale_reference"),
    )

    sale_reference: Mapped[str] = mapped_column(String(100), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction_date: Mapped[date] = mapped_column(nullable=False)

    override_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Frozen COGS snapshot
    cogs_unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    cogs_total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    cogs_method: Mapped[str | None] = mapped_column(String(20), nullable=True)

    cogs_calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cogs_batches: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    cogs_average_at_sale: Mapped[Decimal | None] = mapped_column(nullable=True)

    cogs_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_cogs_frozen(self) -> bool:
        return self.cogs_calculated_at is not None
