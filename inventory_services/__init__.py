"""
inventory_services -- Package init and public API.

Responsibility:
    Orchestration at the edge of the kernel: dated purchases, sales and
    movements behind the period gate, request-level period checks with the
    public error envelope, and period protection for background jobs.

Architecture position:
    Services -- stateful orchestration over the kernel and configuration.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        inventory_services/ -> inventory_kernel/  (allowed)
        inventory_services/ -> inventory_config/  (allowed)
        inventory_kernel/   -> inventory_services/ (FORBIDDEN)
        inventory_kernel/   -> inventory_config/   (FORBIDDEN)

Invariants enforced:
    - Layer isolation: inventory_kernel must never import from this package.
    - Configuration reaches the kernel only through TransactionService
      wiring (retry policy, override expiry, gate behaviour, job table).
"""

from inventory_services.job_guard import JobRunResult, execute_job_with_protection
from inventory_services.request_guard import (
    RequestGuard,
    error_envelope,
    extract_override_id,
    extract_transaction_date,
)
from inventory_services.transaction_service import (
    MovementResult,
    PurchaseResult,
    SaleResult,
    TransactionService,
)

__all__ = [
    "JobRunResult",
    "MovementResult",
    "PurchaseResult",
    "RequestGuard",
    "SaleResult",
    "TransactionService",
    "error_envelope",
    "execute_job_with_protection",
    "extract_override_id",
    "extract_transaction_date",
]
