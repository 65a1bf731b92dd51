"""
Configuration management for the scrape configuration compiler.

This module handles loading, parsing, and validating compiler settings
from YAML files, environment variables and command-line arguments.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from jsonschema import Draft7Validator

from .credentials import DEFAULT_TLS_MOUNT_ROOT
from .errors import ValidationError

ENV_PREFIX = "SCRAPE_COMPILER_"

DURATION_PATTERN = "^[0-9]+(ms|[smhdwy])$"

# JSON Schema for configuration validation
CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "scrape_interval": {"type": "string", "pattern": DURATION_PATTERN},
        "external_label_name": {"type": "string", "minLength": 1},
        "tls_mount_root": {"type": "string", "minLength": 1},
        "workers": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}


def validate_config(data: dict[str, Any]) -> list[str]:
    """
    Validate configuration data against the schema.

    Args:
        data: Configuration dictionary to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = Draft7Validator(CONFIG_SCHEMA)
    errors = []
    for error in validator.iter_errors(data):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def expand_env_vars(value: Any) -> Any:
    """
    Expand ${VAR_NAME} references in a string from the environment.

    Unset variables expand to an empty string. Non-string values are
    returned unchanged.
    """
    if not isinstance(value, str):
        return value

    def replace_env(match):
        return os.environ.get(match.group(1), "")

    return re.sub(r"\$\{([^}]+)\}", replace_env, value)


def _workers(value: Any) -> Any:
    # environment values arrive as strings; anything else is left for
    # schema validation to reject
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


@dataclass
class CompilerConfig:
    """
    Settings of a compilation pass.

    Attributes:
        scrape_interval: Global scrape interval written to the document
        external_label_name: Key of the single external label identifying the agent
        tls_mount_root: Directory the agent finds TLS material in
        workers: Number of threads synthesizing resources in parallel
    """

    scrape_interval: str = "30s"
    external_label_name: str = "prometheus"
    tls_mount_root: str = DEFAULT_TLS_MOUNT_ROOT
    workers: int = 1

    def __post_init__(self):
        errors = validate_config(self.to_dict())
        if errors:
            raise ValidationError(
                f"Configuration validation failed with {len(errors)} error(s)",
                errors=errors,
            )

    @classmethod
    def from_yaml(cls, path: Path | str, validate: bool = True) -> "CompilerConfig":
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If the config file doesn't exist
            ValidationError: If the YAML is invalid or fails validation
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValidationError(f"Invalid YAML in {path}", errors=[str(e)]) from e

        if validate:
            errors = validate_config(data)
            if errors:
                raise ValidationError(
                    f"Configuration validation failed with {len(errors)} error(s)",
                    errors=errors,
                )

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompilerConfig":
        data = {key: expand_env_vars(value) for key, value in data.items()}
        return cls(
            scrape_interval=data.get("scrape_interval", "30s"),
            external_label_name=data.get("external_label_name", "prometheus"),
            tls_mount_root=data.get("tls_mount_root", DEFAULT_TLS_MOUNT_ROOT),
            workers=_workers(data.get("workers", 1)),
        )

    @classmethod
    def from_env(cls, base: Optional["CompilerConfig"] = None) -> "CompilerConfig":
        """Apply SCRAPE_COMPILER_* environment overrides on top of base."""
        data = (base or cls()).to_dict()
        for key in data:
            value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
            if value:
                data[key] = value
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scrape_interval": self.scrape_interval,
            "external_label_name": self.external_label_name,
            "tls_mount_root": self.tls_mount_root,
            "workers": self.workers,
        }

    def merge_cli_args(
        self,
        scrape_interval: Optional[str] = None,
        external_label_name: Optional[str] = None,
        tls_mount_root: Optional[str] = None,
        workers: Optional[int] = None,
    ) -> "CompilerConfig":
        """
        Merge command-line arguments into the configuration.

        CLI arguments take precedence over file and environment values.

        Returns:
            New CompilerConfig with merged values
        """
        data = self.to_dict()
        if scrape_interval:
            data["scrape_interval"] = scrape_interval
        if external_label_name:
            data["external_label_name"] = external_label_name
        if tls_mount_root:
            data["tls_mount_root"] = tls_mount_root
        if workers:
            data["workers"] = workers
        return CompilerConfig.from_dict(data)


def load_config(
    config_path: Optional[Path | str] = None,
    scrape_interval: Optional[str] = None,
    external_label_name: Optional[str] = None,
    tls_mount_root: Optional[str] = None,
    workers: Optional[int] = None,
    validate: bool = True,
) -> CompilerConfig:
    """
    Load and merge configuration from file, environment and CLI arguments.

    This is the main entry point for loading configuration.
    """
    if config_path:
        config = CompilerConfig.from_yaml(config_path, validate=validate)
    else:
        config = CompilerConfig()

    config = CompilerConfig.from_env(config)

    return config.merge_cli_args(
        scrape_interval=scrape_interval,
        external_label_name=external_label_name,
        tls_mount_root=tls_mount_root,
        workers=workers,
    )
