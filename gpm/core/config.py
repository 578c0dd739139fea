"""Project configuration management for gpm.

Configuration lives in ``.gpm.yml`` at the project root. Values found there
are deep-merged over the built-in defaults, so every key can be looked up
whether or not the file sets it.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".gpm.yml"
TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")

DEFAULT_CONFIG: dict[str, Any] = {
    "ci": {
        "wait_for_checks": True,
        "fail_fast": True,
        "timeout": 30,
        "grace_period": 20,
        "max_fetch_retries": 3,
        "retry_flaky": False,
        "max_flaky_retries": 3,
        "poll": {
            "strategy": "exponential",
            "initial_interval": 5,
            "max_interval": 30,
            "multiplier": 1.5,
        },
    },
    "ship": {
        "delete_branch": True,
        "merge_method": "merge",
    },
    "verify": {
        "command": None,
    },
    "security": {
        "enabled": True,
    },
    "pr": {
        "template_path": None,
    },
}

MERGE_METHODS = ("merge", "squash", "rebase")


class ConfigError(Exception):
    """Exception raised when the configuration file is unreadable or invalid."""

    pass


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_token() -> Optional[str]:
    """Return the GitHub token from GITHUB_TOKEN or GH_TOKEN, if set."""
    for name in TOKEN_ENV_VARS:
        token = os.getenv(name)
        if token:
            return token
    return None


class Config:
    """Manages gpm configuration for one project.

    Attributes:
        project_root: Directory holding the configuration file
        config_file: Path to <project_root>/.gpm.yml
    """

    def __init__(self, project_root: Optional[Path] = None):
        """Initialize config and load .gpm.yml if it exists.

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        self.project_root = project_root or Path.cwd()
        self.config_file = self.project_root / CONFIG_FILENAME
        self._config = _deep_merge(DEFAULT_CONFIG, self._load() if self.exists() else {})
        self._validate()

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_file.exists()

    def _load(self) -> dict:
        """Load configuration from the YAML file."""
        try:
            with open(self.config_file, "r") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config {self.config_file}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config {self.config_file} must be a mapping at the top level")
        logger.debug(f"Loaded config from {self.config_file}")
        return data

    def _validate(self) -> None:
        method = self.get("ship.merge_method")
        if method not in MERGE_METHODS:
            raise ConfigError(
                f"Invalid ship.merge_method '{method}'. Use one of: {', '.join(MERGE_METHODS)}"
            )
        for key in ("ci.timeout", "ci.grace_period"):
            value = self.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"Invalid {key} '{value}': expected a non-negative number")

    def get(self, key: str, default=None):
        """Get configuration value by key (supports dot notation).

        Args:
            key: Configuration key (e.g., 'ci.poll.initial_interval')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    @staticmethod
    def get_default_config() -> str:
        """Return default configuration YAML template."""
        return """# gpm configuration
# Location: <project root>/.gpm.yml

ci:
  # Wait for CI checks before merging
  wait_for_checks: true

  # Stop waiting as soon as one check fails
  fail_fast: true

  # Give up waiting after this many minutes
  timeout: 30

  # Seconds to wait for checks to register before assuming there are none
  grace_period: 20

  # Retries for transient network errors while querying check status
  max_fetch_retries: 3

  # Poll again when failing checks look flaky (timeouts, network errors)
  retry_flaky: false
  max_flaky_retries: 3

  poll:
    # exponential or fixed
    strategy: exponential
    initial_interval: 5
    max_interval: 30
    multiplier: 1.5

ship:
  # Delete the remote and local branch after merging
  delete_branch: true

  # merge, squash or rebase
  merge_method: merge

verify:
  # Command to run before shipping (auto-detected when unset)
  # command: make verify

security:
  # Scan for secrets and vulnerable dependencies before shipping
  enabled: true

pr:
  # PR body template (auto-detected from .github/ when unset)
  # template_path: .github/pull_request_template.md
"""

    def create_default(self) -> Path:
        """Create default configuration file.

        Returns:
            Path to created config file

        Raises:
            FileExistsError: If config already exists
        """
        if self.config_file.exists():
            raise FileExistsError(
                f"Configuration already exists: {self.config_file}\n"
                "Remove it first or use --force to overwrite"
            )

        self.config_file.write_text(self.get_default_config())
        return self.config_file
