# SPDX-License-Identifier: Apache-2.0
"""Tests for typed sync settings."""

from core.sync.settings import SyncSettings, http_client_kwargs


class DictConfig:
    def __init__(self, values):
        self.values = values

    def get(self, key, default=None):
        return self.values.get(key, default)


def test_defaults_fill_missing_keys():
    settings = SyncSettings.from_config(DictConfig({"sync.worker_count": 2, "sync.page_size": "100"}))

    assert settings.worker_count == 2
    assert settings.page_size == 100
    assert settings.checkpoint_interval == SyncSettings().checkpoint_interval


def test_http_client_kwargs():
    kwargs = http_client_kwargs(DictConfig({"http.max_retries": 5, "http.base_delay_seconds": 0.5}))

    assert kwargs["max_retries"] == 5
    assert kwargs["base_delay"] == 0.5
    assert kwargs["timeout"] > 0
