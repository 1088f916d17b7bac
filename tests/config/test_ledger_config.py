"""
Ledger configuration: YAML loading, validation and the bridges into
kernel runtime objects.
"""

from pathlib import Path

import pytest

from inventory_config import CONFIG_ENV_VAR, get_active_config, resolve_config_path
from inventory_config.loader import compute_checksum, load_configuration, parse_configuration
from inventory_config.schema import ConfigError, LedgerConfiguration
from inventory_kernel.domain.job_policy import DEFAULT_JOB_POLICIES


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "ledger.yaml"
    path.write_text(text)
    return path


class TestDefaults:

    def test_packaged_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        config = get_active_config()

        assert config.version == 1
        assert config.overrides.expiry_hours == 24
        assert config.gate.fail_open is True
        assert config.checksum
        assert config.source.endswith("ledger.yaml")

    def test_defaults_match_builtin_job_table(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        registry = get_active_config().job_registry()
        for policy in DEFAULT_JOB_POLICIES:
            assert registry.get(policy.job_name) == policy

    def test_retry_policy_in_seconds(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        policy = get_active_config().retry_policy()
        assert policy.initial_delay == 0.05
        assert policy.max_delay == 2.0
        assert policy.max_attempts == 5

    def test_loaded_logged(self, monkeypatch, captured_logs):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        get_active_config()
        loaded = [r for r in captured_logs() if r["message"] == "ledger_config_loaded"]
        assert loaded
        assert loaded[0]["job_count"] == 6


class TestResolution:

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, "/nowhere/ledger.yaml")
        path = _write(tmp_path, "gate:\n  fail_open: false\n")
        assert resolve_config_path(path) == path
        assert get_active_config(path).gate.fail_open is False

    def test_env_var(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "overrides:\n  expiry_hours: 4\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert get_active_config().overrides.expiry_hours == 4

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestValidation:

    def test_empty_file_is_all_defaults(self, tmp_path):
        config = load_configuration(_write(tmp_path, ""))
        assert config.retry.max_attempts == 5
        assert config.jobs == ()
        assert "backup" in config.job_registry()

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(ConfigError):
            load_configuration(_write(tmp_path, "retry: [unclosed\n"))

    def test_non_mapping_root(self, tmp_path):
        with pytest.raises(ConfigError):
            load_configuration(_write(tmp_path, "- a\n- b\n"))

    @pytest.mark.parametrize(
        ("data", "where"),
        [
            ({"tenants": {}}, "<root>"),
            ({"retry": {"jitter": True}}, "retry"),
            ({"retry": {"max_attempts": True}}, "retry.max_attempts"),
            ({"retry": {"max_attempts": 0}}, "retry.max_attempts"),
            ({"retry": {"multiplier": 0.5}}, "retry.multiplier"),
            ({"retry": {"initial_delay_ms": 500, "max_delay_ms": 100}}, "retry.max_delay_ms"),
            ({"overrides": {"expiry_hours": 0}}, "overrides.expiry_hours"),
            ({"gate": {"fail_open": "yes"}}, "gate.fail_open"),
            ({"gate": ["fail_open"]}, "gate"),
            ({"jobs": {"backup": {"check_period": 1}}}, "jobs.backup.check_period"),
            ({"jobs": {"backup": {"skip": True}}}, "jobs.backup"),
        ],
    )
    def test_invalid_values(self, data, where):
        with pytest.raises(ConfigError) as exc_info:
            parse_configuration(data)
        assert exc_info.value.path == where
        assert exc_info.value.code == "CONFIG_ERROR"

    def test_custom_jobs_replace_table(self):
        config = parse_configuration(
            {"jobs": {"archive": {"check_period": True, "allowed_in_locked": True}}}
        )
        registry = config.job_registry()
        assert registry.get("archive").allowed_in_locked
        assert "backup" not in registry


class TestChecksum:

    def test_key_order_irrelevant(self):
        a = {"gate": {"fail_open": True}, "version": 1}
        b = {"version": 1, "gate": {"fail_open": True}}
        assert compute_checksum(a) == compute_checksum(b)

    def test_content_sensitive(self):
        assert compute_checksum({"version": 1}) != compute_checksum({"version": 2})

    def test_default_configuration_object(self):
        config = LedgerConfiguration()
        assert config.checksum is None
        assert config.retry_policy().max_attempts == 5
