"""Background-job period policy table and registry."""

import pytest

from inventory_kernel.domain.job_policy import (
    DEFAULT_JOB_POLICIES,
    JobPeriodPolicy,
    JobPolicyRegistry,
    strict_policy,
)


class TestDefaultPolicyTable:
    """The six built-in jobs and what each may touch."""

    @pytest.mark.parametrize(
        "job_name, check_period, in_closed, in_locked, override",
        [
            ("reconciliation", True, False, False, False),
            ("data_integrity_check", True, True, False, True),
            ("backup", False, True, True, True),
            ("report_generation", False, True, True, True),
            ("inventory_sync", True, False, False, False),
            ("customer_balance_reconciliation", True, False, False, False),
        ],
    )
    def test_policy_flags(self, job_name, check_period, in_closed, in_locked, override):
        policy = JobPolicyRegistry().get(job_name)
        assert policy.check_period is check_period
        assert policy.allowed_in_closed is in_closed
        assert policy.allowed_in_locked is in_locked
        assert policy.allow_period_override is override

    def test_six_jobs_registered(self):
        assert len(DEFAULT_JOB_POLICIES) == 6
        assert len(JobPolicyRegistry()) == 6


class TestJobPolicyRegistry:

    def test_unknown_job_gets_strict_policy(self):
        registry = JobPolicyRegistry()
        policy = registry.get("nightly_export")
        assert not registry.is_registered("nightly_export")
        assert "nightly_export" not in registry
        assert policy == strict_policy("nightly_export")
        assert policy.check_period
        assert not policy.allowed_in_closed
        assert not policy.allowed_in_locked
        assert policy.allow_period_override

    def test_custom_table(self):
        registry = JobPolicyRegistry([JobPeriodPolicy("archive", allowed_in_closed=True)])
        assert "archive" in registry
        assert "backup" not in registry
        assert registry.get("archive").allowed_in_closed

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            JobPolicyRegistry([JobPeriodPolicy("a"), JobPeriodPolicy("a")])

    def test_policies_mapping_is_read_only(self):
        registry = JobPolicyRegistry()
        with pytest.raises(TypeError):
            registry.policies["backup"] = JobPeriodPolicy("backup")
