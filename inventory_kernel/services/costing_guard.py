"""
ImmutableCostingGuard -- a product's costing method is chosen once.

Responsibility:
    Set and lock the costing method (explicitly, or on a product's first
    purchase), answer "may this product use method X?", and carry partial
    product updates through a conditional UPDATE that cannot change a
    locked method.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Works alongside
    the listeners in ``db/immutability.py``, which cover writes that never
    pass through this service.

Invariants enforced:
    - unset -> locked(method) is the only transition.  Re-asserting the
      locked method is a no-op.
    - Every write here re-checks the locked state in its WHERE clause, so
      a concurrent lock between our read and our write is detected.

Failure modes:
    - CostingMethodImmutableError: a different method on a locked product.
    - CostingMethodNotSetError: first purchase with no method anywhere.
    - InvalidCostingMethodError: unknown method name.
    - ProductNotFoundError.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select, update

from inventory_kernel.db.types import to_decimal
from inventory_kernel.domain.costing import CostingMethod
from inventory_kernel.domain.dtos import CostingMethodCheck, CostingPolicyInfo
from inventory_kernel.exceptions import (
    CostingMethodImmutableError,
    CostingMethodNotSetError,
    ProductNotFoundError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.product import Product
from inventory_kernel.services.base import BaseService

logger = get_logger("services.costing_guard")

# Fields a partial product update may touch
UPDATABLE_PRODUCT_FIELDS = frozenset({"name", "sku", "standard_cost", "costing_method"})


def _policy(product: Product) -> CostingPolicyInfo:
    return CostingPolicyInfo(
        product_id=product.id,
        method=product.method,
        is_locked=product.costing_locked,
        locked_at=product.costing_locked_at,
        locked_by=product.costing_locked_by,
        locked_on_purchase_ref=product.costing_locked_on_purchase_ref,
    )


class ImmutableCostingGuard(BaseService[Product]):
    """Owns the unset -> locked transition of Product.costing_method."""

    # =====================================================================
    # Reads
    # =====================================================================

    def get_policy(self, product_id: UUID) -> CostingPolicyInfo:
        return _policy(self._load(product_id))

    def validate_method_change(
        self,
        product_id: UUID,
        requested: CostingMethod | str,
    ) -> CostingMethodCheck:
        """Non-mutating check of whether ``requested`` would be accepted."""
        method = CostingMethod.parse(requested)
        product = self._load(product_id)
        current = product.method

        if not product.costing_locked:
            allowed, reason = True, "Costing method not locked"
        elif current == method:
            allowed, reason = True, "Costing method unchanged"
        else:
            allowed = False
            reason = (
                f"Costing method is locked to {current.value} and cannot be changed"
            )
        return CostingMethodCheck(
            product_id=product.id,
            current_method=current,
            requested_method=method,
            is_locked=product.costing_locked,
            allowed=allowed,
            reason=reason,
        )

    # =====================================================================
    # Locking
    # =====================================================================

    def set_costing_method(
        self,
        product_id: UUID,
        method: CostingMethod | str,
        actor_id: UUID,
    ) -> CostingPolicyInfo:
        """Explicitly choose and lock the costing method."""
        return self._lock(product_id, CostingMethod.parse(method), actor_id, purchase_ref=None)

    def lock_on_first_purchase(
        self,
        product_id: UUID,
        purchase_ref: str,
        actor_id: UUID,
        method: CostingMethod | str | None = None,
    ) -> CostingPolicyInfo:
        """
        Lock the method when the product's first purchase is recorded.

        ``method`` defaults to whatever is already configured on the
        product.  Later purchases re-assert the locked method, which is a
        no-op unless they ask for a different one.
        """
        product = self._load(product_id)
        requested = CostingMethod.parse(method) if method is not None else product.method
        if requested is None:
            raise CostingMethodNotSetError(str(product_id))
        return self._lock(product_id, requested, actor_id, purchase_ref=purchase_ref)

    def _lock(
        self,
        product_id: UUID,
        method: CostingMethod,
        actor_id: UUID,
        purchase_ref: str | None,
    ) -> CostingPolicyInfo:
        with LogContext.bind(product_id=product_id, actor_id=actor_id):
            product = self._load(product_id)
            if product.costing_locked:
                self._assert_same(product, method)
                logger.debug(
                    "costing_method_reasserted",
                    extra={"method": method.value},
                )
                return _policy(product)

            now = self._clock.now()
            result = self.session.execute(
                update(Product)
                .where(Product.id == product_id, Product.costing_locked.is_(False))
                .values(
                    costing_method=method.value,
                    costing_locked=True,
                    costing_method_set_at=now,
                    costing_locked_at=now,
                    costing_locked_by=actor_id,
                    costing_locked_on_purchase_ref=purchase_ref,
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            product = self._load(product_id)
            if result.rowcount == 0:
                # Someone else locked it between our read and write
                self._assert_same(product, method)
                return _policy(product)

            logger.info(
                "costing_method_locked",
                extra={
                    "method": method.value,
                    "purchase_ref": purchase_ref,
                    "locked_at": now,
                },
            )
            return _policy(product)

    # =====================================================================
    # Partial updates
    # =====================================================================

    def update_product_fields(
        self,
        product_id: UUID,
        changes: Mapping[str, Any],
        actor_id: UUID,
    ) -> CostingPolicyInfo:
        """
        Apply a partial update to a product.

        The costing method is checked here against the stored lock, and
        the UPDATE itself only matches when the product is unlocked or the
        method is unchanged.
        """
        unknown = set(changes) - UPDATABLE_PRODUCT_FIELDS
        if unknown:
            raise ValidationError("fields", f"cannot update {sorted(unknown)}")
        if not changes:
            return self.get_policy(product_id)

        values: dict[str, Any] = dict(changes)
        product = self._load(product_id)

        method: CostingMethod | None = None
        if "costing_method" in values:
            if values["costing_method"] is None:
                if product.costing_locked:
                    raise CostingMethodImmutableError(
                        str(product_id), product.method.value, None,
                        self._iso(product.costing_locked_at),
                    )
            else:
                method = CostingMethod.parse(values["costing_method"])
                values["costing_method"] = method.value
                if product.costing_locked:
                    self._assert_same(product, method)
                elif product.method != method:
                    values["costing_method_set_at"] = self._clock.now()

        if "standard_cost" in values and values["standard_cost"] is not None:
            cost = to_decimal(values["standard_cost"], field="standard_cost")
            if cost < 0:
                raise ValidationError("standard_cost", f"must be >= 0, got {cost}")
            values["standard_cost"] = cost

        stmt = update(Product).where(Product.id == product_id)
        if "costing_method" in values:
            stmt = stmt.where(
                or_(
                    Product.costing_locked.is_(False),
                    Product.costing_method == values["costing_method"],
                )
            )
        values["updated_by_id"] = actor_id
        result = self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )

        product = self._load(product_id)
        if result.rowcount == 0:
            # Locked by a concurrent writer after our check
            self._assert_same(product, method)

        logger.info(
            "product_fields_updated",
            extra={
                "product_id": str(product_id),
                "fields": sorted(changes),
            },
        )
        return _policy(product)

    # =====================================================================
    # Internals
    # =====================================================================

    def _load(self, product_id: UUID) -> Product:
        product = self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    @staticmethod
    def _iso(value):
        return value.isoformat() if value is not None else None

    def _assert_same(self, product: Product, method: CostingMethod | None) -> None:
        if product.method == method:
            return
        logger.warning(
            "costing_method_change_rejected",
            extra={
                "product_id": str(product.id),
                "current_method": product.costing_method,
                "requested_method": method.value if method else None,
            },
        )
        raise CostingMethodImmutableError(
            str(product.id),
            product.costing_method,
            method.value if method else None,
            self._iso(product.costing_locked_at),
        )
