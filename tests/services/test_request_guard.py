"""
Request-boundary period checks and the public error envelope.
"""

from datetime import date
from uuid import uuid4

import pytest

from inventory_kernel.db.types import to_decimal
from inventory_kernel.domain.dtos import StockMovementRequest
from inventory_kernel.exceptions import (
    ConcurrencyConflictError,
    CostingMethodImmutableError,
    InsufficientStockError,
    OverrideAlreadyUsedError,
    OverrideExpiredError,
    OverrideNotFoundError,
    OverridePeriodMismatchError,
    PeriodLockedError,
    PeriodNotFoundError,
    ValidationError,
)
from inventory_services.request_guard import (
    RequestGuard,
    error_envelope,
    extract_override_id,
    extract_transaction_date,
    is_period_admin_path,
)


@pytest.fixture
def request_guard(period_gate, deterministic_clock):
    return RequestGuard(period_gate, deterministic_clock)


class TestExtractTransactionDate:

    def test_plain_date(self):
        assert extract_transaction_date({"transactionDate": "2023-12-15"}) == date(2023, 12, 15)

    def test_zulu_timestamp(self):
        assert extract_transaction_date({"invoiceDate": "2023-12-31T23:30:00Z"}) == date(2023, 12, 31)

    def test_field_precedence(self):
        payload = {"createdAt": "2024-01-20", "orderDate": "2023-12-02"}
        assert extract_transaction_date(payload) == date(2023, 12, 2)

    def test_nested_fields(self):
        assert extract_transaction_date({"payment": {"date": "2023-11-05"}}) == date(2023, 11, 5)
        assert extract_transaction_date({"transaction": {"date": "2023-10-01"}}) == date(2023, 10, 1)

    def test_empty_values_skipped(self):
        assert extract_transaction_date({"date": "", "paymentDate": "2024-01-02"}) == date(2024, 1, 2)

    def test_absent(self):
        assert extract_transaction_date({"amount": 10}) is None
        assert extract_transaction_date(None) is None

    def test_bad_date(self):
        with pytest.raises(ValidationError) as exc_info:
            extract_transaction_date({"date": "15/12/2023"})
        assert exc_info.value.field == "date"


class TestExtractOverrideId:

    def test_header_case_insensitive(self):
        oid = uuid4()
        assert extract_override_id(headers={"x-period-override-id": str(oid)}) == oid

    def test_header_wins_over_body(self):
        header_id, body_id = uuid4(), uuid4()
        found = extract_override_id(
            headers={"X-Period-Override-Id": str(header_id)},
            body={"__periodOverrideId": str(body_id)},
        )
        assert found == header_id

    def test_body_then_query(self):
        body_id, query_id = uuid4(), uuid4()
        assert extract_override_id(body={"__periodOverrideId": str(body_id)}) == body_id
        assert extract_override_id(query={"__periodOverrideId": str(query_id)}) == query_id

    def test_none(self):
        assert extract_override_id({}, {}, {}) is None

    def test_not_a_uuid(self):
        with pytest.raises(ValidationError):
            extract_override_id(headers={"X-Period-Override-Id": "yesterday"})


class TestRequestGuard:

    @pytest.mark.parametrize("method", ["GET", "head", "OPTIONS"])
    def test_reads_never_gated(self, request_guard, locked_period, method):
        decision = request_guard.validate_request(method, "/invoices", {"date": "2023-11-15"})
        assert decision.reason == "read_request"

    @pytest.mark.parametrize(
        "path", ["/api/fiscal-periods/2023-12/close", "/accounting-periods/abc/lock"]
    )
    def test_period_admin_bypass(self, request_guard, closed_period, path):
        assert is_period_admin_path(path)
        decision = request_guard.validate_request("POST", path, {"date": "2023-12-15"})
        assert decision.reason == "period_admin_route"

    def test_other_period_routes_gated(self, request_guard, closed_period):
        assert not is_period_admin_path("/fiscal-periods/2023-12")
        with pytest.raises(PeriodLockedError):
            request_guard.validate_request("PATCH", "/fiscal-periods/2023-12", {"date": "2023-12-15"})

    def test_write_in_open_period(self, request_guard, january_period):
        decision = request_guard.validate_request("POST", "/sales", {"orderDate": "2024-01-10"})
        assert decision.reason == "period_open"

    def test_write_in_closed_period(self, request_guard, closed_period):
        with pytest.raises(PeriodLockedError):
            request_guard.validate_request("POST", "/sales", {"orderDate": "2023-12-10"})

    def test_write_with_header_override(self, request_guard, approved_override):
        decision = request_guard.validate_request(
            "PUT",
            "/sales/1",
            {"orderDate": "2023-12-10"},
            headers={"X-Period-Override-Id": str(approved_override.id)},
        )
        assert decision.reason == "override_valid"
        assert decision.override_id == approved_override.id

    def test_undated_write_uses_today(self, request_guard, january_period):
        assert request_guard.validate_request("DELETE", "/sales/1").period.period_code == "2024-01"


class TestErrorEnvelope:

    def test_period_locked(self):
        status, body = error_envelope(PeriodLockedError("p-1", "2023-12", "locked", "2023-12-15"))
        assert status == 403
        assert body["code"] == "PERIOD_LOCKED"
        assert body["message"] == "Cannot perform operation in locked period"
        assert body["period"] == {"id": "p-1", "code": "2023-12", "status": "locked"}
        assert body["transaction_date"] == "2023-12-15"
        assert body["override_required"] is True

    def test_period_mismatch(self):
        status, body = error_envelope(OverridePeriodMismatchError("o-1", "p-1", "p-2"))
        assert status == 403
        assert body["code"] == "OVERRIDE_PERIOD_MISMATCH"
        assert body["transaction_period_id"] == "p-2"

    @pytest.mark.parametrize(
        ("exc", "detail"),
        [
            (OverrideExpiredError("o-1", "2024-01-01T00:00:00+00:00"), "OVERRIDE_EXPIRED"),
            (OverrideAlreadyUsedError("o-1", None), "OVERRIDE_ALREADY_USED"),
        ],
    )
    def test_unusable_override(self, exc, detail):
        status, body = error_envelope(exc)
        assert status == 403
        assert body["code"] == "OVERRIDE_INVALID"
        assert body["detail_code"] == detail

    def test_override_not_found(self):
        status, body = error_envelope(OverrideNotFoundError("o-9"))
        assert status == 400
        assert body["code"] == "OVERRIDE_INVALID"
        assert body["detail_code"] == "OVERRIDE_NOT_FOUND"

    def test_costing_method_immutable(self):
        status, body = error_envelope(CostingMethodImmutableError("prod-1", "fifo", "lifo"))
        assert status == 409
        assert body["current_method"] == "fifo"
        assert body["requested_method"] == "lifo"

    def test_insufficient_stock(self):
        status, body = error_envelope(InsufficientStockError("prod-1", 5, 2))
        assert status == 409
        assert (body["requested"], body["available"]) == (5, 2)

    def test_concurrency_conflict_retryable(self):
        status, body = error_envelope(ConcurrencyConflictError("InventoryRecord", "prod-1", 5))
        assert status == 409
        assert body["code"] == "CONCURRENCY_CONFLICT"
        assert body["retryable"] is True

    def test_validation(self):
        status, body = error_envelope(ValidationError("quantity", "must be positive"))
        assert status == 400
        assert body["field"] == "quantity"

    def test_malformed_movement_maps_to_validation(self):
        with pytest.raises(ValidationError) as exc_info:
            StockMovementRequest(movement_type="out", quantity=-3)
        status, body = error_envelope(exc_info.value)
        assert status == 400
        assert body["code"] == "VALIDATION_ERROR"
        assert body["field"] == "quantity"

    def test_unparseable_amount_maps_to_validation(self):
        with pytest.raises(ValidationError) as exc_info:
            to_decimal("abc", field="unit_cost")
        status, body = error_envelope(exc_info.value)
        assert status == 400
        assert body["field"] == "unit_cost"

    def test_other_kernel_error(self):
        status, body = error_envelope(PeriodNotFoundError("2099-01"))
        assert status == 400
        assert body["code"] == "PERIOD_NOT_FOUND"

    def test_unexpected_error_hidden(self, captured_logs):
        status, body = error_envelope(RuntimeError("secret connection string"))
        assert status == 500
        assert body == {"code": "INTERNAL_ERROR", "message": "Internal server error"}
        assert any(r["message"] == "unhandled_request_error" for r in captured_logs())
