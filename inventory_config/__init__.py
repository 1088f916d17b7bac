"""
inventory_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``LedgerConfiguration`` with
    the retry policy, override expiry, gate behaviour and background-job
    policy table.  No other component reads the YAML or the environment.

Architecture position:
    Configuration -- sits above ``inventory_kernel`` and below
    ``inventory_services``.  The kernel MUST NEVER import from
    ``inventory_config``; ``LedgerConfiguration.retry_policy()`` and
    ``job_registry()`` translate the configuration into kernel objects.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ConfigError`` -- malformed YAML, unknown keys or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call logs
    ``ledger_config_loaded`` with the source path and content checksum.
"""

from __future__ import annotations

import os
from pathlib import Path

from inventory_config.loader import load_configuration
from inventory_config.schema import (
    ConfigError,
    GatePolicyDef,
    JobPolicyDef,
    LedgerConfiguration,
    OverridePolicyDef,
    RetryPolicyDef,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_ENV_VAR = "INVENTORY_LEDGER_CONFIG"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"


def resolve_config_path(path: Path | str | None = None) -> Path:
    """Explicit path, then ``INVENTORY_LEDGER_CONFIG``, then the packaged defaults."""
    if path is not None:
        return Path(path)
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)
    return _DEFAULT_CONFIG_PATH


def get_active_config(path: Path | str | None = None) -> LedgerConfiguration:
    """
    The ONLY public configuration entrypoint.

    Args:
        path: Explicit YAML file.  Defaults to ``$INVENTORY_LEDGER_CONFIG``
            or ``inventory_config/defaults/ledger.yaml``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ConfigError: If the file fails validation.
    """
    config_path = resolve_config_path(path)
    config = load_configuration(config_path)

    logger.info(
        "ledger_config_loaded",
        extra={
            "source": str(config_path),
            "version": config.version,
            "checksum": config.checksum,
            "job_count": len(config.jobs),
            "fail_open": config.gate.fail_open,
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigError",
    "GatePolicyDef",
    "JobPolicyDef",
    "LedgerConfiguration",
    "OverridePolicyDef",
    "RetryPolicyDef",
    "get_active_config",
    "resolve_config_path",
]
