"""
Module: inventory_kernel.models.product
Responsibility: The slice of a product this subsystem owns -- identity,
    standard cost, and the embedded costing policy.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Once costing_locked is True, costing_method never changes.  Enforced
      twice in db/immutability.py (unit-of-work and bulk UPDATE paths) and
      once more in ImmutableCostingGuard's conditional UPDATE.
    - costing_locked implies costing_method is set (check constraint).

Failure modes:
    - CostingMethodImmutableError when a locked method is changed.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UUIDString
from inventory_kernel.domain.costing import CostingMethod


class Product(TrackedBase):
    """
    Product with embedded costing policy.

    Generic catalogue fields (pricing, categories, suppliers) live
    elsewhere; only what costing needs is modelled here.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("sku", name="uq_product_sku"),
        CheckConstraint(
            "NOT costing_locked OR costing_method IS NOT NULL",
            name="ck_product_locked_method_set",
        ),
        CheckConstraint(
            "standard_cost IS NULL OR standard_cost >= 0",
            name="ck_product_standard_cost_non_negative",
        ),
    )

    sku: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    standard_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Costing policy
    costing_method: Mapped[str | None] = mapped_column(String(20), nullable=True)

    costing_locked: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    costing_method_set_at: Mapped[datetime | None] = mapped_column(nullable=True)

    costing_locked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    costing_locked_by: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    costing_locked_on_purchase_ref: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku}: {self.costing_method or 'unset'}>"

    @property
    def method(self) -> CostingMethod | None:
        if self.costing_method is None:
            return None
        return CostingMethod(self.costing_method)
