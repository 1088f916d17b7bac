"""Override status machine and approval-count rule."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from inventory_kernel.domain.dtos import PeriodStatus
from inventory_kernel.domain.override import (
    OVERRIDE_TRANSITIONS,
    TERMINAL_OVERRIDE_STATUSES,
    OverrideStatus,
    PeriodOverrideInfo,
    can_transition,
    required_approvals,
)


class TestRequiredApprovals:

    @pytest.mark.parametrize(
        "status, critical, expected",
        [
            (PeriodStatus.CLOSED, False, 1),
            (PeriodStatus.CLOSED, True, 2),
            (PeriodStatus.LOCKED, False, 2),
            (PeriodStatus.LOCKED, True, 3),
            (PeriodStatus.OPEN, False, 0),
            (PeriodStatus.OPEN, True, 0),
        ],
    )
    def test_table(self, status, critical, expected):
        assert required_approvals(status, critical) == expected

    def test_accepts_raw_status_string(self):
        assert required_approvals("locked", False) == 2


class TestTransitions:

    def test_terminal_statuses(self):
        assert TERMINAL_OVERRIDE_STATUSES == {
            OverrideStatus.USED,
            OverrideStatus.REJECTED,
            OverrideStatus.EXPIRED,
            OverrideStatus.CANCELLED,
        }

    def test_every_status_has_an_entry(self):
        assert set(OVERRIDE_TRANSITIONS) == set(OverrideStatus)

    @pytest.mark.parametrize(
        "current, target",
        [
            (OverrideStatus.PENDING_APPROVAL, OverrideStatus.APPROVED),
            (OverrideStatus.PENDING_APPROVAL, OverrideStatus.REJECTED),
            (OverrideStatus.PENDING_APPROVAL, OverrideStatus.CANCELLED),
            (OverrideStatus.APPROVED, OverrideStatus.USED),
            (OverrideStatus.APPROVED, OverrideStatus.EXPIRED),
            (OverrideStatus.APPROVED, OverrideStatus.CANCELLED),
        ],
    )
    def test_legal_moves(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (OverrideStatus.PENDING_APPROVAL, OverrideStatus.USED),
            (OverrideStatus.APPROVED, OverrideStatus.PENDING_APPROVAL),
            (OverrideStatus.USED, OverrideStatus.APPROVED),
            (OverrideStatus.REJECTED, OverrideStatus.APPROVED),
            (OverrideStatus.EXPIRED, OverrideStatus.APPROVED),
            (OverrideStatus.CANCELLED, OverrideStatus.PENDING_APPROVAL),
        ],
    )
    def test_illegal_moves(self, current, target):
        assert not can_transition(current, target)


class TestUsability:

    def _info(self, **overrides):
        now = datetime(2024, 1, 15, tzinfo=UTC)
        values = dict(
            id=uuid4(),
            period_id=uuid4(),
            requested_by=uuid4(),
            operation="create",
            reason="late invoice",
            status=OverrideStatus.APPROVED,
            approval_required=1,
            approvals=(),
            requested_at=now,
            expires_at=now + timedelta(hours=24),
        )
        values.update(overrides)
        return PeriodOverrideInfo(**values)

    def test_usable_while_approved_and_unexpired(self):
        info = self._info()
        assert info.is_usable_at(info.requested_at + timedelta(hours=23))

    def test_not_usable_at_expiry(self):
        info = self._info()
        assert not info.is_usable_at(info.expires_at)

    def test_not_usable_once_used(self):
        info = self._info(used_at=datetime(2024, 1, 15, 1, tzinfo=UTC))
        assert not info.is_usable_at(info.requested_at)

    def test_not_usable_while_pending(self):
        info = self._info(status=OverrideStatus.PENDING_APPROVAL, expires_at=None)
        assert not info.is_usable_at(info.requested_at)
