"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Reads the ledger YAML file and parses it into the frozen dataclasses of
``inventory_config.schema``.  Runtime callers go through
``inventory_config.get_active_config()`` instead of calling this module.

Invariants enforced
-------------------
* Unknown keys and wrongly-typed values raise ``ConfigError`` naming the
  offending path; nothing is silently ignored.
* Missing sections fall back to the dataclass defaults.
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``ConfigError`` wrapping the ``yaml.YAMLError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    ConfigError,
    GatePolicyDef,
    JobPolicyDef,
    LedgerConfiguration,
    OverridePolicyDef,
    RetryPolicyDef,
)

_ROOT_KEYS = frozenset({"version", "retry", "overrides", "gate", "jobs"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigError: if the file is not valid YAML or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(str(path), f"malformed YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top level must be a mapping")
    return data


def _check_keys(where: str, data: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ConfigError(where, f"unknown keys {sorted(unknown)}")


def _section(where: str, data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(where, "must be a mapping")
    return data


def _bool(where: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(where, f"expected true/false, got {value!r}")
    return value


def _number(where: str, value: Any, minimum: float) -> float:
    # bool is an int subclass; "true" is never a delay
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(where, f"expected a number, got {value!r}")
    if value < minimum:
        raise ConfigError(where, f"must be >= {minimum}, got {value}")
    return value


def _int(where: str, value: Any, minimum: int) -> int:
    number = _number(where, value, minimum)
    if not isinstance(number, int):
        raise ConfigError(where, f"expected an integer, got {value!r}")
    return number


def parse_retry(data: Any) -> RetryPolicyDef:
    section = _section("retry", data)
    _check_keys("retry", section, frozenset(f.name for f in fields(RetryPolicyDef)))
    default = RetryPolicyDef()
    retry = RetryPolicyDef(
        initial_delay_ms=_int(
            "retry.initial_delay_ms", section.get("initial_delay_ms", default.initial_delay_ms), 0
        ),
        multiplier=_number("retry.multiplier", section.get("multiplier", default.multiplier), 1),
        max_delay_ms=_int(
            "retry.max_delay_ms", section.get("max_delay_ms", default.max_delay_ms), 0
        ),
        max_attempts=_int(
            "retry.max_attempts", section.get("max_attempts", default.max_attempts), 1
        ),
    )
    if retry.max_delay_ms < retry.initial_delay_ms:
        raise ConfigError("retry.max_delay_ms", "cannot be below initial_delay_ms")
    return retry


def parse_overrides(data: Any) -> OverridePolicyDef:
    section = _section("overrides", data)
    _check_keys("overrides", section, frozenset({"expiry_hours"}))
    return OverridePolicyDef(
        expiry_hours=_int(
            "overrides.expiry_hours",
            section.get("expiry_hours", OverridePolicyDef.expiry_hours),
            1,
        ),
    )


def parse_gate(data: Any) -> GatePolicyDef:
    section = _section("gate", data)
    _check_keys("gate", section, frozenset({"fail_open"}))
    return GatePolicyDef(
        fail_open=_bool("gate.fail_open", section.get("fail_open", GatePolicyDef.fail_open)),
    )


def parse_job(job_name: str, data: Any) -> JobPolicyDef:
    """Parse one entry of the ``jobs`` mapping, keyed by job name."""
    where = f"jobs.{job_name}"
    section = _section(where, data)
    flags = ("check_period", "allowed_in_closed", "allowed_in_locked", "allow_period_override")
    _check_keys(where, section, frozenset(flags))
    values = {flag: _bool(f"{where}.{flag}", section[flag]) for flag in flags if flag in section}
    return JobPolicyDef(job_name=job_name, **values)


def parse_jobs(data: Any) -> tuple[JobPolicyDef, ...]:
    section = _section("jobs", data)
    return tuple(parse_job(str(name), body) for name, body in section.items())


def parse_configuration(data: dict[str, Any], source: str | None = None) -> LedgerConfiguration:
    """
    Build a ``LedgerConfiguration`` from the parsed YAML mapping.

    Raises:
        ConfigError: unknown keys or invalid values anywhere in the tree.
    """
    _check_keys("<root>", data, _ROOT_KEYS)
    return LedgerConfiguration(
        version=_int("version", data.get("version", 1), 1),
        retry=parse_retry(data.get("retry")),
        overrides=parse_overrides(data.get("overrides")),
        gate=parse_gate(data.get("gate")),
        jobs=parse_jobs(data.get("jobs")),
        source=source,
    )


def load_configuration(path: Path) -> LedgerConfiguration:
    data = load_yaml_file(path)
    config = parse_configuration(data, source=str(path))
    return replace(config, checksum=compute_checksum(data))


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 over the parsed YAML content."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
