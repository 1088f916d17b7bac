"""
inventory_services.request_guard -- period checks at the request boundary.

Responsibility:
    Framework-agnostic helpers for whatever HTTP layer fronts the ledger:
    pull a transaction date and an override id out of a request, run the
    period gate for write requests, and turn typed kernel errors into the
    fixed public error envelope.

Architecture position:
    Services -- edge adapter.  Holds no state beyond the injected gate and
    clock.  The override is validated here but consumed later by the write
    itself (TransactionService).

Invariants enforced:
    - GET, HEAD and OPTIONS are never gated.
    - Period administration routes (close, lock) bypass the gate by path.
    - A write without a recognisable date is checked against today.

Failure modes:
    - ValidationError: unparseable date or override id.
    - Everything PeriodLockGate.validate raises.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any
from uuid import UUID

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import GateDecision
from inventory_kernel.exceptions import (
    ConcurrencyConflictError,
    CostingMethodImmutableError,
    InsufficientStockError,
    InventoryKernelError,
    OverrideInvalidError,
    OverrideNotFoundError,
    OverridePeriodMismatchError,
    PeriodLockedError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.period_gate import PeriodLockGate

logger = get_logger("services.request_guard")

DATE_FIELDS: tuple[str, ...] = (
    "transactionDate",
    "date",
    "orderDate",
    "invoiceDate",
    "paymentDate",
    "createdAt",
)
NESTED_DATE_FIELDS: tuple[tuple[str, str], ...] = (
    ("transaction", "date"),
    ("payment", "date"),
)

OVERRIDE_HEADER = "X-Period-Override-Id"
OVERRIDE_FIELD = "__periodOverrideId"

READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
PERIOD_ADMIN_PREFIXES: tuple[str, ...] = ("/fiscal-periods", "/accounting-periods")
PERIOD_ADMIN_ACTIONS: tuple[str, ...] = ("/close", "/lock")


# =========================================================================
# Extraction
# =========================================================================


def _parse_date(field: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                return date.fromisoformat(text)
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            raise ValidationError(field, f"not an ISO date: {value!r}") from None
    raise ValidationError(field, f"expected a date, got {type(value).__name__}")


def extract_transaction_date(payload: Mapping[str, Any] | None) -> date | None:
    """
    First date found in the known payload fields, or None.

    Top-level fields are checked before ``transaction.date`` and
    ``payment.date``.  Empty values are skipped.
    """
    if not payload:
        return None
    for field in DATE_FIELDS:
        if payload.get(field):
            return _parse_date(field, payload[field])
    for parent, child in NESTED_DATE_FIELDS:
        nested = payload.get(parent)
        if isinstance(nested, Mapping) and nested.get(child):
            return _parse_date(f"{parent}.{child}", nested[child])
    return None


def extract_override_id(
    headers: Mapping[str, str] | None = None,
    body: Mapping[str, Any] | None = None,
    query: Mapping[str, Any] | None = None,
) -> UUID | None:
    """Override id from the header, then the body, then the query string."""
    raw = None
    if headers:
        wanted = OVERRIDE_HEADER.lower()
        raw = next((v for k, v in headers.items() if k.lower() == wanted and v), None)
    if raw is None and body:
        raw = body.get(OVERRIDE_FIELD) or None
    if raw is None and query:
        raw = query.get(OVERRIDE_FIELD) or None
    if raw is None:
        return None
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw))
    except ValueError:
        raise ValidationError("override_id", f"not a UUID: {raw!r}") from None


def is_period_admin_path(path: str) -> bool:
    return any(p in path for p in PERIOD_ADMIN_PREFIXES) and any(
        a in path for a in PERIOD_ADMIN_ACTIONS
    )


# =========================================================================
# Guard
# =========================================================================


class RequestGuard:
    """Runs PeriodLockGate for write requests."""

    def __init__(self, gate: PeriodLockGate, clock: Clock | None = None):
        self._gate = gate
        self._clock = clock or SystemClock()

    def validate_request(
        self,
        method: str,
        path: str,
        payload: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, Any] | None = None,
    ) -> GateDecision:
        """
        Allow or raise for one request.

        Returns a GateDecision whose reason is ``read_request`` or
        ``period_admin_route`` for requests the gate never sees.
        """
        if method.upper() in READ_METHODS:
            return GateDecision(True, "read_request")
        if is_period_admin_path(path):
            return GateDecision(True, "period_admin_route")

        tx_date = extract_transaction_date(payload) or self._clock.today()
        override_id = extract_override_id(headers, payload, query)
        decision = self._gate.validate(tx_date, override_id)

        logger.debug(
            "request_period_check_passed",
            extra={
                "method": method.upper(),
                "path": path,
                "transaction_date": tx_date,
                "reason": decision.reason,
            },
        )
        return decision


# =========================================================================
# Error envelope
# =========================================================================


def error_envelope(exc: Exception) -> tuple[int, dict[str, Any]]:
    """
    HTTP status and JSON body for an error raised behind the guard.

    Override failures other than a period mismatch share the public
    ``OVERRIDE_INVALID`` code; the specific kernel code is kept under
    ``detail_code``.
    """
    if isinstance(exc, PeriodLockedError):
        return 403, {
            "code": "PERIOD_LOCKED",
            "message": f"Cannot perform operation in {exc.status} period",
            "period": {
                "id": exc.period_id,
                "code": exc.period_code,
                "status": exc.status,
            },
            "transaction_date": exc.transaction_date,
            "override_required": True,
        }
    if isinstance(exc, OverridePeriodMismatchError):
        return 403, {
            "code": "OVERRIDE_PERIOD_MISMATCH",
            "message": "Override is for a different period",
            "override_id": exc.override_id,
            "override_period_id": exc.override_period_id,
            "transaction_period_id": exc.period_id,
        }
    if isinstance(exc, OverrideInvalidError):
        return 403, {
            "code": "OVERRIDE_INVALID",
            "message": exc.reason,
            "override_id": exc.override_id,
            "detail_code": exc.code,
        }
    if isinstance(exc, OverrideNotFoundError):
        return 400, {
            "code": "OVERRIDE_INVALID",
            "message": "Period override not found",
            "override_id": exc.override_id,
            "detail_code": exc.code,
        }
    if isinstance(exc, CostingMethodImmutableError):
        return 409, {
            "code": "COSTING_METHOD_IMMUTABLE",
            "message": str(exc),
            "product_id": exc.product_id,
            "current_method": exc.current_method,
            "requested_method": exc.requested_method,
            "locked_at": exc.locked_at,
        }
    if isinstance(exc, InsufficientStockError):
        return 409, {
            "code": "INSUFFICIENT_STOCK",
            "message": str(exc),
            "product_id": exc.product_id,
            "requested": exc.requested,
            "available": exc.available,
        }
    if isinstance(exc, ConcurrencyConflictError):
        return 409, {
            "code": exc.code,
            "message": str(exc),
            "retryable": True,
        }
    if isinstance(exc, ValidationError):
        return 400, {"code": exc.code, "message": str(exc), "field": exc.field}
    if isinstance(exc, InventoryKernelError):
        return 400, {"code": exc.code, "message": str(exc)}

    logger.error(
        "unhandled_request_error",
        extra={"error": str(exc)},
        exc_info=exc,
    )
    return 500, {"code": "INTERNAL_ERROR", "message": "Internal server error"}
