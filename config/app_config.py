# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 Dashsync Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Configuration management for dashsync.

Handles loading, validation, and saving of application configuration.
"""

import copy
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Optional


APP_DIR_NAME = ".dashsync"

# Environment variables that override individual config keys
ENV_OVERRIDES = {
    "DASHSYNC_GOOGLE_CLIENT_ID": "oauth.google.client_id",
    "DASHSYNC_GOOGLE_CLIENT_SECRET": "oauth.google.client_secret",
    "DASHSYNC_DATABASE_PATH": "database.path",
}


def get_app_dir() -> Path:
    """Return the root directory for dashsync user data."""
    return Path.home() / APP_DIR_NAME


logger = logging.getLogger("dashsync.config")


class ConfigManager:
    """Manages application configuration with validation and persistence."""

    def __init__(self, user_config_dir: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            user_config_dir: Directory holding ``app_config.json``.
                             Defaults to ~/.dashsync
        """
        self.default_config_path = Path(__file__).parent / "default_config.json"
        if user_config_dir is None:
            self.user_config_dir = get_app_dir()
        else:
            self.user_config_dir = Path(user_config_dir).expanduser()
        self.user_config_path = self.user_config_dir / "app_config.json"
        self._config: Dict[str, Any] = {}
        self._default_config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from user config or default config."""
        try:
            logger.info(f"Loading default configuration from {self.default_config_path}")
            with open(self.default_config_path, "r", encoding="utf-8") as f:
                self._default_config = json.load(f)

            user_config: Dict[str, Any] = {}
            if self.user_config_path.exists():
                logger.info(f"Loading user configuration from {self.user_config_path}")
                with open(self.user_config_path, "r", encoding="utf-8") as f:
                    user_config = json.load(f)

            self._config = self._deep_merge(self._default_config, user_config)
            self._apply_env_overrides()

            self._validate_config()
            logger.info("Configuration loaded and validated successfully")

        except FileNotFoundError as e:
            logger.error(f"Configuration file not found: {e}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in configuration file: {e}")
            raise

    def _apply_env_overrides(self) -> None:
        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self.set(key, value)
                logger.debug("Configuration key %s overridden from environment", key)

    def _validate_config(self) -> None:
        """Validate required configuration fields and types."""
        required_fields = {
            "version": str,
            "database": dict,
            "sync": dict,
            "oauth": dict,
            "http": dict,
        }

        for field, expected_type in required_fields.items():
            if field not in self._config:
                raise ValueError(f"Missing required configuration field: {field}")
            if not isinstance(self._config[field], expected_type):
                raise TypeError(
                    f"Configuration field '{field}' must be of type "
                    f"{expected_type.__name__}, got "
                    f"{type(self._config[field]).__name__}"
                )

        self._validate_database_config()
        self._validate_sync_config()
        self._validate_http_config()

    def _validate_database_config(self) -> None:
        """Validate database configuration."""
        db_config = self._config["database"]
        if "path" not in db_config:
            raise ValueError("Missing required field: database.path")
        if "encryption_enabled" not in db_config:
            raise ValueError("Missing required field: database.encryption_enabled")

    def _validate_sync_config(self) -> None:
        """Validate synchronization configuration."""
        sync_config = self._config["sync"]

        positive_ints = [
            "worker_count",
            "queue_capacity",
            "checkpoint_interval",
            "page_size",
            "interval_minutes",
        ]
        for field in positive_ints:
            if field not in sync_config:
                raise ValueError(f"Missing required field: sync.{field}")
            value = sync_config[field]
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"sync.{field} must be a positive integer")

        for field in ("past_window_months", "future_window_months"):
            value = sync_config.get(field)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"sync.{field} must be a non-negative integer")

        timeout = sync_config.get("run_timeout_seconds")
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("sync.run_timeout_seconds must be a positive number")

        if sync_config["page_size"] > 2500:
            raise ValueError("sync.page_size must not exceed 2500")

    def _validate_http_config(self) -> None:
        """Validate HTTP client configuration."""
        http_config = self._config["http"]

        max_retries = http_config.get("max_retries", 0)
        if not isinstance(max_retries, int) or max_retries < 0:
            raise ValueError("http.max_retries must be a non-negative integer")

        for field in ("timeout_seconds", "base_delay_seconds"):
            if field in http_config:
                value = http_config[field]
                if not isinstance(value, (int, float)) or value < 0:
                    raise ValueError(f"http.{field} must be a non-negative number")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key.

        Supports nested keys using dot notation (e.g., "sync.worker_count").

        Args:
            key: Configuration key (supports dot notation)
            default: Default value if key is not found

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

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value by key.

        Supports nested keys using dot notation (e.g., "sync.worker_count").
        """
        keys = key.split(".")
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self) -> None:
        """Save the current configuration to the user config file."""
        try:
            self.user_config_dir.mkdir(parents=True, exist_ok=True)

            self._validate_config()

            with open(self.user_config_path, "w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=2, ensure_ascii=False)

            from config.constants import FILE_PERMISSION_OWNER_RW

            try:
                os.chmod(self.user_config_path, FILE_PERMISSION_OWNER_RW)
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")

            logger.info(f"Configuration saved to {self.user_config_path}")

        except Exception as e:
            logger.error(f"Error saving configuration: {e}")
            raise

    def get_defaults(self) -> Mapping[str, Any]:
        """Return an immutable view of the default configuration."""
        return self._deep_freeze(self._default_config)

    @classmethod
    def _deep_merge(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two dictionaries without mutating inputs."""
        result: Dict[str, Any] = {}

        for key, base_value in base.items():
            if key in override:
                override_value = override[key]
                if isinstance(base_value, dict) and isinstance(override_value, dict):
                    result[key] = cls._deep_merge(base_value, override_value)
                else:
                    result[key] = cls._clone_value(override_value)
            else:
                result[key] = cls._clone_value(base_value)

        for key, override_value in override.items():
            if key not in base:
                result[key] = cls._clone_value(override_value)

        return result

    @classmethod
    def _clone_value(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: cls._clone_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [cls._clone_value(v) for v in value]
        return copy.deepcopy(value)

    @classmethod
    def _deep_freeze(cls, value: Any) -> Any:
        if isinstance(value, dict):
            frozen = {k: cls._deep_freeze(v) for k, v in value.items()}
            return MappingProxyType(frozen)
        if isinstance(value, list):
            return tuple(cls._deep_freeze(v) for v in value)
        return value
