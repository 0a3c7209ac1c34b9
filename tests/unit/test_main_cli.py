# SPDX-License-Identifier: Apache-2.0
"""Tests for the dashsync command line."""

import json
import logging

import pytest

import main
from config import app_config
from utils.logger import ROOT_LOGGER_NAME


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setattr(app_config.Path, "home", lambda: tmp_path)
    monkeypatch.setenv("DASHSYNC_DATABASE_PATH", str(tmp_path / "cli.db"))
    yield tmp_path
    logging.getLogger(ROOT_LOGGER_NAME).handlers.clear()


def run_cli(capsys, *argv):
    exit_code = main.main(["--log-level", "ERROR", *argv])
    return exit_code, capsys.readouterr().out


def test_register_and_status(cli_env, capsys):
    code, out = run_cli(capsys, "import-credential", "--account", "me@example.com", "--refresh-token", "r1")
    assert code == 0
    credential_id = out.strip()

    code, out = run_cli(capsys, "register", "--credential-id", credential_id, "--name", "Personal")
    assert code == 0
    registered = json.loads(out)
    assert registered["status"] == "idle"

    code, out = run_cli(capsys, "status")
    assert code == 0
    [status] = json.loads(out)
    assert status["id"] == registered["id"]
    assert status["name"] == "Personal"


def test_register_unknown_credential_fails(cli_env, capsys):
    code = main.main(["--log-level", "ERROR", "register", "--credential-id", "missing"])

    assert code == 1
    assert "missing" in capsys.readouterr().err


def test_refresh_token_is_stored_encrypted(cli_env, capsys):
    run_cli(capsys, "import-credential", "--refresh-token", "plain-refresh")

    raw = b"".join(path.read_bytes() for path in cli_env.glob("cli.db*"))
    assert b"plain-refresh" not in raw
