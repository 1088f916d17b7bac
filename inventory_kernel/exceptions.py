"""
Typed exception hierarchy for the inventory kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from InventoryKernelError:

    InventoryKernelError (base)
    |
    +-- ValidationError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- ConcurrencyConflictError
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |   +-- InventoryRecordNotFoundError
    |   +-- InventoryRecordExistsError
    |
    +-- CostingError
    |   +-- ProductNotFoundError
    |   +-- CostingMethodNotSetError
    |   +-- CostingMethodImmutableError
    |   +-- InvalidCostingMethodError
    |   +-- StandardCostNotSetError
    |
    +-- PeriodError
    |   +-- PeriodLockedError
    |   +-- PeriodNotFoundError
    |   +-- PeriodOverlapError
    |   +-- InvalidPeriodTransitionError
    |   +-- PeriodLookupError
    |
    +-- OverrideError
    |   +-- OverrideNotFoundError
    |   +-- OverrideInvalidError
    |   |   +-- OverrideExpiredError
    |   |   +-- OverrideAlreadyUsedError
    |   +-- OverridePeriodMismatchError
    |   +-- OverrideNotRequiredError
    |   +-- OverrideUserMismatchError
    |   +-- DuplicateOverrideApprovalError
    |   +-- InvalidOverrideTransitionError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------------
Validation   | VALIDATION_ERROR            | Malformed input (bad qty, bad type)
-------------|-----------------------------|-----------------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT    | One versioned write lost a race (retried)
             | CONCURRENCY_CONFLICT        | Version conflict survived every retry
-------------|-----------------------------|-----------------------------------------
Inventory    | INSUFFICIENT_STOCK          | Decrement or reserve beyond stock
             | INVENTORY_RECORD_NOT_FOUND  | No inventory record for product
             | INVENTORY_RECORD_EXISTS     | Second record for the same product
-------------|-----------------------------|-----------------------------------------
Costing      | PRODUCT_NOT_FOUND           | Product ID doesn't exist
             | COSTING_METHOD_NOT_SET      | Sale before a method was chosen
             | COSTING_METHOD_IMMUTABLE    | Changing a locked costing method
             | INVALID_COSTING_METHOD      | Unknown method name
             | STANDARD_COST_NOT_SET       | Standard costing without a cost
-------------|-----------------------------|-----------------------------------------
Period       | PERIOD_LOCKED               | Write dated in a closed/locked period
             | PERIOD_NOT_FOUND            | Period ID doesn't exist
             | PERIOD_OVERLAP              | Date range conflicts with another
             | INVALID_PERIOD_TRANSITION   | Status move other than forward
             | PERIOD_LOOKUP_FAILED        | Lookup errored and gate fails closed
-------------|-----------------------------|-----------------------------------------
Override     | OVERRIDE_NOT_FOUND          | Override ID doesn't exist
             | OVERRIDE_INVALID            | Not approved / unusable
             | OVERRIDE_EXPIRED            | Past expires_at
             | OVERRIDE_ALREADY_USED       | Single-use token already consumed
             | OVERRIDE_PERIOD_MISMATCH    | Override granted for another period
             | OVERRIDE_NOT_REQUIRED       | Requested for an open period
             | OVERRIDE_USER_MISMATCH      | Used/cancelled by a non-requester
             | DUPLICATE_OVERRIDE_APPROVAL | Same approver approving twice
             | INVALID_OVERRIDE_TRANSITION | Illegal state machine move
-------------|-----------------------------|-----------------------------------------
Immutability | IMMUTABILITY_VIOLATION      | Editing append-only/write-once data

Only the ConcurrencyError family is retryable. Every other error is terminal
for the call that raised it; PeriodLockedError may be retried by the caller
with a valid override attached.
"""


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"
    retryable: bool = False


class ValidationError(InventoryKernelError):
    """Malformed input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid {field}: {message}")


# Concurrency-related exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """A single versioned UPDATE matched no row.  Retried internally."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"
    retryable: bool = True

    def __init__(self, entity_type: str, entity_id: str, expected_version: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class ConcurrencyConflictError(ConcurrencyError):
    """Optimistic version check kept failing after the retry bound."""

    code: str = "CONCURRENCY_CONFLICT"
    retryable: bool = True

    def __init__(self, entity_type: str, entity_id: str, attempts: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id} "
            f"not resolved after {attempts} attempts"
        )


# Inventory-related exceptions


class InventoryError(InventoryKernelError):
    """Base exception for inventory errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """Requested quantity exceeds what the record can give up."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class InventoryRecordNotFoundError(InventoryError):
    code: str = "INVENTORY_RECORD_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Inventory record not found for product {product_id}")


class InventoryRecordExistsError(InventoryError):
    code: str = "INVENTORY_RECORD_EXISTS"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Inventory record already exists for product {product_id}")


# Costing-related exceptions


class CostingError(InventoryKernelError):
    """Base exception for costing errors."""

    code: str = "COSTING_ERROR"


class ProductNotFoundError(CostingError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class CostingMethodNotSetError(CostingError):
    """Product has no costing method; COGS cannot be computed."""

    code: str = "COSTING_METHOD_NOT_SET"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Costing method not set for product {product_id}")


class CostingMethodImmutableError(CostingError):
    """
    Attempt to change a locked costing method.

    Raised by both the unit-of-work path and the bulk-update path.
    """

    code: str = "COSTING_METHOD_IMMUTABLE"

    def __init__(
        self,
        product_id: str,
        current_method: str,
        requested_method: str | None,
        locked_at: str | None = None,
    ):
        self.product_id = product_id
        self.current_method = current_method
        self.requested_method = requested_method
        self.locked_at = locked_at
        super().__init__(
            f"Costing method for product {product_id} is locked to "
            f"'{current_method}' and cannot be changed to '{requested_method}'"
        )


class InvalidCostingMethodError(CostingError):
    code: str = "INVALID_COSTING_METHOD"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Invalid costing method: {method}")


class StandardCostNotSetError(CostingError):
    code: str = "STANDARD_COST_NOT_SET"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} uses standard costing but has no standard cost"
        )


# Period-related exceptions


class PeriodError(InventoryKernelError):
    """Base exception for fiscal period errors."""

    code: str = "PERIOD_ERROR"


class PeriodLockedError(PeriodError):
    """Financial write dated in a closed or locked period."""

    code: str = "PERIOD_LOCKED"

    def __init__(
        self,
        period_id: str,
        period_code: str,
        status: str,
        transaction_date: str,
    ):
        self.period_id = period_id
        self.period_code = period_code
        self.status = status
        self.transaction_date = transaction_date
        super().__init__(
            f"Period {period_code} is {status}; transactions dated "
            f"{transaction_date} require an approved override"
        )


class PeriodNotFoundError(PeriodError):
    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_ref: str):
        self.period_ref = period_ref
        super().__init__(f"Fiscal period not found: {period_ref}")


class PeriodOverlapError(PeriodError):
    code: str = "PERIOD_OVERLAP"

    def __init__(self, new_period: str, existing_period: str):
        self.new_period = new_period
        self.existing_period = existing_period
        super().__init__(
            f"Period {new_period} overlaps with existing period {existing_period}"
        )


class InvalidPeriodTransitionError(PeriodError):
    """Period status may only move open -> closed -> locked."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, period_code: str, from_status: str, to_status: str):
        self.period_code = period_code
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Period {period_code} cannot move from {from_status} to {to_status}"
        )


class PeriodLookupError(PeriodError):
    """Period lookup failed and the gate is configured to fail closed."""

    code: str = "PERIOD_LOOKUP_FAILED"

    def __init__(self, transaction_date: str, reason: str):
        self.transaction_date = transaction_date
        self.reason = reason
        super().__init__(
            f"Could not resolve fiscal period for {transaction_date}: {reason}"
        )


# Override-related exceptions


class OverrideError(InventoryKernelError):
    """Base exception for period override errors."""

    code: str = "OVERRIDE_ERROR"


class OverrideNotFoundError(OverrideError):
    code: str = "OVERRIDE_NOT_FOUND"

    def __init__(self, override_id: str):
        self.override_id = override_id
        super().__init__(f"Period override not found: {override_id}")


class OverrideInvalidError(OverrideError):
    """Override exists but cannot authorize a write."""

    code: str = "OVERRIDE_INVALID"

    def __init__(self, override_id: str, status: str, reason: str | None = None):
        self.override_id = override_id
        self.status = status
        self.reason = reason or f"override status is {status}"
        super().__init__(f"Override {override_id} cannot be used: {self.reason}")


class OverrideExpiredError(OverrideInvalidError):
    code: str = "OVERRIDE_EXPIRED"

    def __init__(self, override_id: str, expires_at: str):
        self.expires_at = expires_at
        super().__init__(override_id, "expired", f"override expired at {expires_at}")


class OverrideAlreadyUsedError(OverrideInvalidError):
    code: str = "OVERRIDE_ALREADY_USED"

    def __init__(self, override_id: str, used_at: str | None):
        self.used_at = used_at
        super().__init__(override_id, "used", f"override already used at {used_at}")


class OverridePeriodMismatchError(OverrideError):
    code: str = "OVERRIDE_PERIOD_MISMATCH"

    def __init__(self, override_id: str, override_period_id: str, period_id: str):
        self.override_id = override_id
        self.override_period_id = override_period_id
        self.period_id = period_id
        super().__init__(
            f"Override {override_id} was granted for period {override_period_id}, "
            f"not {period_id}"
        )


class OverrideNotRequiredError(OverrideError):
    code: str = "OVERRIDE_NOT_REQUIRED"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(f"Period {period_code} is open; no override needed")


class OverrideUserMismatchError(OverrideError):
    code: str = "OVERRIDE_USER_MISMATCH"

    def __init__(self, override_id: str, requested_by: str, actor_id: str):
        self.override_id = override_id
        self.requested_by = requested_by
        self.actor_id = actor_id
        super().__init__(
            f"Override {override_id} belongs to {requested_by}, not {actor_id}"
        )


class DuplicateOverrideApprovalError(OverrideError):
    code: str = "DUPLICATE_OVERRIDE_APPROVAL"

    def __init__(self, override_id: str, approver_id: str):
        self.override_id = override_id
        self.approver_id = approver_id
        super().__init__(f"Approver {approver_id} already approved override {override_id}")


class InvalidOverrideTransitionError(OverrideError):
    code: str = "INVALID_OVERRIDE_TRANSITION"

    def __init__(self, override_id: str, from_status: str, to_status: str):
        self.override_id = override_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Override {override_id} cannot move from {from_status} to {to_status}"
        )


# Immutability-related exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Stock movements are append-only; frozen COGS on a sale line is
    write-once.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
