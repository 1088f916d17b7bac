"""
LedgerConfiguration schema.

The human-authored YAML file is parsed by the loader into these frozen
dataclasses.  Bridges on ``LedgerConfiguration`` turn them into the
kernel's runtime objects (RetryPolicy, JobPolicyRegistry), so the kernel
never has to read configuration itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from inventory_kernel.domain.job_policy import JobPeriodPolicy, JobPolicyRegistry
from inventory_kernel.exceptions import InventoryKernelError
from inventory_kernel.services.retry import RetryPolicy


class ConfigError(InventoryKernelError):
    """A configuration file is missing a section or holds a bad value."""

    code: str = "CONFIG_ERROR"

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Invalid ledger configuration at {path}: {message}")


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicyDef:
    """Backoff for optimistic-concurrency conflicts, in milliseconds."""

    initial_delay_ms: int = 50
    multiplier: float = 2.0
    max_delay_ms: int = 2000
    max_attempts: int = 5

    def to_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_delay=self.initial_delay_ms / 1000,
            multiplier=self.multiplier,
            max_delay=self.max_delay_ms / 1000,
            max_attempts=self.max_attempts,
        )


@dataclass(frozen=True)
class OverridePolicyDef:
    expiry_hours: int = 24


@dataclass(frozen=True)
class GatePolicyDef:
    fail_open: bool = True


@dataclass(frozen=True)
class JobPolicyDef:
    """One background job's period rule."""

    job_name: str
    check_period: bool = True
    allowed_in_closed: bool = False
    allowed_in_locked: bool = False
    allow_period_override: bool = False

    def to_job_policy(self) -> JobPeriodPolicy:
        return JobPeriodPolicy(
            job_name=self.job_name,
            check_period=self.check_period,
            allowed_in_closed=self.allowed_in_closed,
            allowed_in_locked=self.allowed_in_locked,
            allow_period_override=self.allow_period_override,
        )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfiguration:
    """The complete, validated ledger configuration."""

    version: int = 1
    retry: RetryPolicyDef = field(default_factory=RetryPolicyDef)
    overrides: OverridePolicyDef = field(default_factory=OverridePolicyDef)
    gate: GatePolicyDef = field(default_factory=GatePolicyDef)
    jobs: tuple[JobPolicyDef, ...] = ()
    source: str | None = None
    checksum: str | None = None

    def retry_policy(self) -> RetryPolicy:
        return self.retry.to_retry_policy()

    def job_registry(self) -> JobPolicyRegistry:
        if not self.jobs:
            return JobPolicyRegistry()
        return JobPolicyRegistry(job.to_job_policy() for job in self.jobs)
