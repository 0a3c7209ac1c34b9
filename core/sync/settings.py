# SPDX-License-Identifier: Apache-2.0
"""Typed view of the ``sync`` and ``http`` configuration sections."""

from dataclasses import dataclass
from typing import Any, Dict

from config.constants import (
    GOOGLE_CALENDAR_MAX_RESULTS,
    HTTP_BASE_DELAY_SECONDS,
    HTTP_MAX_RETRIES,
    HTTP_MAX_RETRY_AFTER_SECONDS,
    CALENDAR_API_TIMEOUT_SECONDS,
    SYNC_CHECKPOINT_INTERVAL,
    SYNC_ERROR_DETAIL_LIMIT,
    SYNC_FUTURE_WINDOW_MONTHS,
    SYNC_PAST_WINDOW_MONTHS,
    SYNC_QUEUE_CAPACITY,
    SYNC_QUEUE_POLL_SECONDS,
    SYNC_RUN_TIMEOUT_SECONDS,
    SYNC_WORKER_COUNT,
)


@dataclass(frozen=True)
class SyncSettings:
    """Tunables of a sync run."""

    past_window_months: int = SYNC_PAST_WINDOW_MONTHS
    future_window_months: int = SYNC_FUTURE_WINDOW_MONTHS
    worker_count: int = SYNC_WORKER_COUNT
    queue_capacity: int = SYNC_QUEUE_CAPACITY
    checkpoint_interval: int = SYNC_CHECKPOINT_INTERVAL
    run_timeout_seconds: float = SYNC_RUN_TIMEOUT_SECONDS
    page_size: int = GOOGLE_CALENDAR_MAX_RESULTS
    queue_poll_seconds: float = SYNC_QUEUE_POLL_SECONDS
    error_detail_limit: int = SYNC_ERROR_DETAIL_LIMIT

    @classmethod
    def from_config(cls, config) -> "SyncSettings":
        """Build settings from a ``ConfigManager``; missing keys keep their defaults."""
        defaults = cls()
        return cls(
            past_window_months=int(config.get("sync.past_window_months", defaults.past_window_months)),
            future_window_months=int(
                config.get("sync.future_window_months", defaults.future_window_months)
            ),
            worker_count=int(config.get("sync.worker_count", defaults.worker_count)),
            queue_capacity=int(config.get("sync.queue_capacity", defaults.queue_capacity)),
            checkpoint_interval=int(
                config.get("sync.checkpoint_interval", defaults.checkpoint_interval)
            ),
            run_timeout_seconds=float(
                config.get("sync.run_timeout_seconds", defaults.run_timeout_seconds)
            ),
            page_size=int(config.get("sync.page_size", defaults.page_size)),
        )


def http_client_kwargs(config) -> Dict[str, Any]:
    """Keyword arguments for ``RetryableHttpClient`` from the ``http`` section."""
    return {
        "max_retries": int(config.get("http.max_retries", HTTP_MAX_RETRIES)),
        "timeout": float(config.get("http.timeout_seconds", CALENDAR_API_TIMEOUT_SECONDS)),
        "base_delay": float(config.get("http.base_delay_seconds", HTTP_BASE_DELAY_SECONDS)),
        "max_retry_after": float(
            config.get("http.max_retry_after_seconds", HTTP_MAX_RETRY_AFTER_SECONDS)
        ),
    }
