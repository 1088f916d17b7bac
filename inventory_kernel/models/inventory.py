"""
Module: inventory_kernel.models.inventory
Responsibility: ORM persistence for the per-product stock aggregate and its
    append-only movement history.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - One InventoryRecord per product (uq_inventory_product).
    - 0 <= reserved_stock <= current_stock and
      available_stock = current_stock - reserved_stock (check constraints).
    - ``version`` increases by exactly one on every mutation.  All writes
      go through conditional UPDATEs in InventoryLedger that compare it.
    - StockMovement rows are never updated or deleted
      (db/immutability.py).

Failure modes:
    - IntegrityError if a write would break a check constraint.
    - ImmutabilityViolationError on StockMovement UPDATE/DELETE.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, TrackedBase, UUIDString
from inventory_kernel.domain.dtos import InventoryStatus


class InventoryRecord(TrackedBase):
    """Authoritative stock aggregate for one product."""

    __tablename__ = "inventory_records"

    __table_args__ = (
        UniqueConstraint("product_id", name="uq_inventory_product"),
        CheckConstraint("current_stock >= 0", name="ck_inventory_current_non_negative"),
        CheckConstraint("reserved_stock >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint(
            "reserved_stock <= current_stock",
            name="ck_inventory_reserved_within_current",
        ),
        CheckConstraint(
            "available_stock = current_stock - reserved_stock",
            name="ck_inventory_available_derived",
        ),
        Index("idx_inventory_status_stock", "status", "current_stock"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    current_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    reserved_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Denormalized for fast reads
    available_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    reorder_point: Mapped[int] = mapped_column(Integer, default=10, nullable=False)

    reorder_quantity: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=InventoryStatus.ACTIVE.value,
        nullable=False,
    )

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    last_movement_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord {self.product_id}: "
            f"{self.current_stock} on hand, {self.reserved_stock} reserved>"
        )


class StockMovement(Base):
    """
    One stock movement.  Append-only.

    ``quantity`` is the magnitude the caller asked for (for adjustments,
    the target level); ``previous_stock``/``new_stock`` record the effect.
    ``record_version`` is the InventoryRecord version this movement
    produced, which orders history within a product.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint(
            "product_id",
            "record_version",
            name="uq_stock_movement_product_version",
        ),
        Index("idx_stock_movement_product_time", "product_id", "occurred_at"),
        Index("idx_stock_movement_type", "movement_type"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    performed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    record_version: Mapped[int] = mapped_column(Integer, nullable=False)

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock
