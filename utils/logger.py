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
Logging setup.

Centralized configuration with a rotating log file and console output.
"""

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.app_config import get_app_dir

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

ROOT_LOGGER_NAME = "dashsync"


class SensitiveDataFilter(logging.Filter):
    """
    Masks OAuth tokens, secrets and similar values in log records.

    Sync runs log around credential refreshes, so anything that looks like
    ``token=...`` or ``Bearer ...`` is replaced with ``***`` before a handler
    writes it.
    """

    SENSITIVE_KEYWORDS = [
        "api_key",
        "token",
        "password",
        "secret",
        "authorization",
        "bearer",
    ]

    PATTERNS = [
        (re.compile(r"(api[_-]?key\s*[=:]\s*)[^\s,\)]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(token\s*[=:]\s*)[^\s,\)]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(password\s*[=:]\s*)[^\s,\)]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(secret\s*[=:]\s*)[^\s,\)]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(bearer\s+)[^\s,\)]+", re.IGNORECASE), r"\1***"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        lowered = message.lower()

        if any(keyword in lowered for keyword in self.SENSITIVE_KEYWORDS):
            # Collapse args into the message so masking sees the final text
            record.msg = self._mask_sensitive_data(message)
            record.args = None

        return True

    def _mask_sensitive_data(self, message: str) -> str:
        masked = message
        for pattern, replacement in self.PATTERNS:
            masked = pattern.sub(replacement, masked)
        return masked


def setup_logging(
    log_dir: Optional[str] = None, level: Optional[str] = None, console_output: bool = True
) -> logging.Logger:
    """
    Configure application logging.

    Args:
        log_dir: Log directory, defaults to ~/.dashsync/logs
        level: Log level; defaults from DASHSYNC_ENV
               (development: DEBUG, production: INFO)
        console_output: Whether to also log to stdout

    Returns:
        The configured application root logger
    """
    if log_dir is None:
        log_path = get_app_dir() / "logs"
    else:
        log_path = Path(log_dir)

    log_path.mkdir(parents=True, exist_ok=True)

    if level is None:
        env = os.environ.get("DASHSYNC_ENV", "production").lower()
        level = "DEBUG" if env == "development" else "INFO"

    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # handlers decide what gets through

    logger.handlers.clear()

    sensitive_filter = SensitiveDataFilter()

    from config.constants import LOG_FILE_BACKUP_COUNT, LOG_FILE_MAX_BYTES

    log_file = log_path / "dashsync.log"
    file_handler = RotatingFileHandler(
        log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    file_handler.addFilter(sensitive_filter)
    logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        console_handler.addFilter(sensitive_filter)
        logger.addHandler(console_handler)

    logger.info("Logging initialized")
    logger.debug(f"Log file: {log_file}")
    logger.debug(f"Log level: {level}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger namespaced under the application root logger.

    Example:
        logger = get_logger("sync.orchestrator")
    """
    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

