"""
Background-job period policy.

Each job name maps to a frozen JobPeriodPolicy.  The registry is built once
(usually from inventory_config) and injected into PeriodLockGate; it cannot
be mutated afterwards, so tests substitute policies by building their own
registry.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True, slots=True)
class JobPeriodPolicy:
    job_name: str
    check_period: bool = True
    allowed_in_closed: bool = False
    allowed_in_locked: bool = False
    allow_period_override: bool = False


def strict_policy(job_name: str) -> JobPeriodPolicy:
    """
    Policy for jobs nobody registered.

    Same rule as an interactive write: closed and locked periods block,
    and only a valid override lets the job through.
    """
    return JobPeriodPolicy(job_name=job_name, allow_period_override=True)


DEFAULT_JOB_POLICIES: tuple[JobPeriodPolicy, ...] = (
    JobPeriodPolicy("reconciliation"),
    JobPeriodPolicy(
        "data_integrity_check",
        allowed_in_closed=True,
        allow_period_override=True,
    ),
    JobPeriodPolicy(
        "backup",
        check_period=False,
        allowed_in_closed=True,
        allowed_in_locked=True,
        allow_period_override=True,
    ),
    JobPeriodPolicy(
        "report_generation",
        check_period=False,
        allowed_in_closed=True,
        allowed_in_locked=True,
        allow_period_override=True,
    ),
    JobPeriodPolicy("inventory_sync"),
    JobPeriodPolicy("customer_balance_reconciliation"),
)


class JobPolicyRegistry:
    """Read-only lookup of job policies by name."""

    def __init__(self, policies: Iterable[JobPeriodPolicy] = DEFAULT_JOB_POLICIES):
        table: dict[str, JobPeriodPolicy] = {}
        for policy in policies:
            if policy.job_name in table:
                raise ValueError(f"Duplicate job policy: {policy.job_name}")
            table[policy.job_name] = policy
        self._policies: Mapping[str, JobPeriodPolicy] = MappingProxyType(table)

    def get(self, job_name: str) -> JobPeriodPolicy:
        return self._policies.get(job_name) or strict_policy(job_name)

    def is_registered(self, job_name: str) -> bool:
        return job_name in self._policies

    @property
    def policies(self) -> Mapping[str, JobPeriodPolicy]:
        return self._policies

    def __len__(self) -> int:
        return len(self._policies)

    def __contains__(self, job_name: object) -> bool:
        return job_name in self._policies
