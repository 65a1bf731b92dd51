"""
Property-based tests for compiler configuration parsing.

This module tests that configuration values given in YAML files,
environment variables and CLI arguments are merged with the documented
precedence (CLI over environment over file over defaults).
"""

import pytest
import yaml
from hypothesis import given, settings
from hypothesis import strategies as st

from scrape_compiler.config import (
    CompilerConfig,
    expand_env_vars,
    load_config,
    validate_config,
)
from scrape_compiler.credentials import DEFAULT_TLS_MOUNT_ROOT
from scrape_compiler.errors import ValidationError


# Strategies for generating valid configuration values
valid_intervals = st.sampled_from(["10s", "30s", "1m", "5m", "500ms", "1h"])
valid_label_names = st.sampled_from(["prometheus", "vmagent", "agent", "cluster"])
valid_mount_roots = st.sampled_from(["/etc/vmagent-tls/certs", "/mnt/tls", "/var/lib/certs"])
valid_workers = st.integers(min_value=1, max_value=32)


@st.composite
def valid_config_dict(draw):
    """Generate a valid configuration dictionary."""
    return {
        "scrape_interval": draw(valid_intervals),
        "external_label_name": draw(valid_label_names),
        "tls_mount_root": draw(valid_mount_roots),
        "workers": draw(valid_workers),
    }


@pytest.fixture
def clean_env(monkeypatch):
    for key in ("SCRAPE_INTERVAL", "EXTERNAL_LABEL_NAME", "TLS_MOUNT_ROOT", "WORKERS"):
        monkeypatch.delenv(f"SCRAPE_COMPILER_{key}", raising=False)
    return monkeypatch


@pytest.mark.property
class TestConfigParsing:
    """Property-based tests for configuration parsing."""

    @given(config_dict=valid_config_dict())
    @settings(max_examples=100)
    def test_from_dict_preserves_all_values(self, config_dict: dict):
        """
        Property: For any valid configuration dictionary, parsing should
        produce a CompilerConfig with all specified values preserved.
        """
        config = CompilerConfig.from_dict(config_dict)
        assert config.to_dict() == config_dict

    @given(config_dict=valid_config_dict(), interval=valid_intervals, workers=valid_workers)
    @settings(max_examples=100)
    def test_cli_args_override(self, config_dict: dict, interval: str, workers: int):
        """
        Property: CLI arguments always take precedence over loaded values,
        and unset arguments leave loaded values untouched.
        """
        config = CompilerConfig.from_dict(config_dict)
        merged = config.merge_cli_args(scrape_interval=interval, workers=workers)

        assert merged.scrape_interval == interval
        assert merged.workers == workers
        assert merged.external_label_name == config.external_label_name
        assert merged.tls_mount_root == config.tls_mount_root


class TestConfigValidation:
    """Schema validation of configuration values."""

    def test_defaults(self):
        config = CompilerConfig()
        assert config.scrape_interval == "30s"
        assert config.external_label_name == "prometheus"
        assert config.tls_mount_root == DEFAULT_TLS_MOUNT_ROOT
        assert config.workers == 1

    @pytest.mark.parametrize("data", [
        {"scrape_interval": "thirty seconds"},
        {"external_label_name": ""},
        {"workers": 0},
        {"unknown": True},
    ])
    def test_invalid_values_are_reported(self, data: dict):
        assert validate_config(data) != []

    def test_invalid_dataclass_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            CompilerConfig(workers=0)
        assert exc_info.value.errors

    def test_from_yaml_rejects_unknown_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"scrape_interval": "30s", "retention": "1d"}))
        with pytest.raises(ValidationError) as exc_info:
            CompilerConfig.from_yaml(path)
        assert any("retention" in error for error in exc_info.value.errors)

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CompilerConfig.from_yaml(tmp_path / "absent.yaml")

    def test_from_yaml_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert CompilerConfig.from_yaml(path) == CompilerConfig()


class TestEnvironment:
    """Environment variable expansion and overrides."""

    def test_expand_env_vars(self, monkeypatch):
        monkeypatch.setenv("CERT_ROOT", "/srv/certs")
        assert expand_env_vars("${CERT_ROOT}/agent") == "/srv/certs/agent"
        assert expand_env_vars("${SCRAPE_COMPILER_TEST_UNSET_VAR}x") == "x"
        assert expand_env_vars(4) == 4

    def test_yaml_values_expand_env_vars(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CERT_ROOT", "/srv/certs")
        path = tmp_path / "config.yaml"
        path.write_text("tls_mount_root: ${CERT_ROOT}/agent\n")
        assert CompilerConfig.from_yaml(path).tls_mount_root == "/srv/certs/agent"

    def test_env_overrides_file(self, tmp_path, clean_env):
        path = tmp_path / "config.yaml"
        path.write_text("scrape_interval: 1m\nworkers: 2\n")
        clean_env.setenv("SCRAPE_COMPILER_WORKERS", "8")

        config = load_config(config_path=path)

        assert config.scrape_interval == "1m"
        assert config.workers == 8

    def test_cli_overrides_env(self, clean_env):
        clean_env.setenv("SCRAPE_COMPILER_SCRAPE_INTERVAL", "1m")
        config = load_config(scrape_interval="15s")
        assert config.scrape_interval == "15s"

    def test_invalid_env_value_raises(self, clean_env):
        clean_env.setenv("SCRAPE_COMPILER_SCRAPE_INTERVAL", "soon")
        with pytest.raises(ValidationError):
            load_config()

    def test_non_numeric_workers_env_is_validation_error(self, clean_env):
        clean_env.setenv("SCRAPE_COMPILER_WORKERS", "abc")
        with pytest.raises(ValidationError) as exc_info:
            load_config()
        assert any("workers" in error for error in exc_info.value.errors)

    def test_invalid_yaml_is_validation_error(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("workers: [1\n")
        with pytest.raises(ValidationError):
            CompilerConfig.from_yaml(path)

