"""
Module: inventory_kernel.models.cost_batch
Responsibility: ORM persistence for FIFO/LIFO cost batches and the running
    weighted-average cost per product.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - 0 <= quantity_remaining <= quantity_received.
    - ``sequence`` is unique per product and increases with insertion, so
      batches sharing an acquired_at are consumed in creation order.
    - ProductCostState.version guards concurrent receipts and issues.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, TrackedBase, UUIDString


class CostBatchModel(Base):
    """A receipt of stock at one unit cost."""

    __tablename__ = "cost_batches"

    __table_args__ = (
        UniqueConstraint("product_id", "sequence", name="uq_cost_batch_sequence"),
        CheckConstraint(
            "quantity_remaining >= 0 AND quantity_remaining <= quantity_received",
            name="ck_cost_batch_remaining",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_cost_batch_unit_cost"),
        Index("idx_cost_batch_product_acquired", "product_id", "acquired_at"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity_received: Mapped[int] = mapped_column(Integer, nullable=False)

    quantity_remaining: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    acquired_at: Mapped[datetime] = mapped_column(nullable=False)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    source_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<CostBatch #{self.sequence} {self.quantity_remaining}/"
            f"{self.quantity_received} @ {self.unit_cost}>"
        )


class ProductCostState(TrackedBase):
    """Running average and batch counter for one product."""

    __tablename__ = "product_cost_states"

    __table_args__ = (
        UniqueConstraint("product_id", name="uq_cost_state_product"),
        CheckConstraint("total_quantity >= 0", name="ck_cost_state_quantity"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    total_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_value: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    average_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    last_batch_sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
