#!/usr/bin/env python3
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
dashsync - resumable mirror of remote calendars into a local database.

Main entry point for the command line.
"""

import argparse
import json
import signal
import sys
import threading
import traceback
from dataclasses import dataclass
from typing import List, Optional

from config.__version__ import get_version
from config.app_config import ConfigManager
from utils.logger import get_logger, setup_logging

_logger = None


@dataclass
class Runtime:
    """Wired application components."""

    config: ConfigManager
    db: object
    credential_store: object
    state_store: object
    record_store: object
    targets: object
    orchestrator: object
    scheduler: object

    def close(self):
        self.db.close()


def build_runtime(config: ConfigManager) -> Runtime:
    """Create the database, stores and sync services from configuration."""
    from core.sync.orchestrator import SyncOrchestrator
    from core.sync.registry import RunRegistry
    from core.sync.settings import SyncSettings, http_client_kwargs
    from core.sync.sync_scheduler import SyncScheduler
    from core.sync.targets import SyncTargetService
    from data.database.connection import DatabaseConnection
    from data.database.encryption_helper import DatabaseEncryptionHelper
    from data.database.stores import CredentialStore, RecordStore, SyncStateStore, UsageStore
    from data.security.encryption import SecurityManager
    from engines.sync.google_calendar import GoogleCalendarClient
    from engines.sync.oauth import CredentialRefresher, OAuthClientConfig
    from utils.http_client import RetryableHttpClient

    db = DatabaseConnection(config.get("database.path"))
    db.initialize_schema()

    encryption = None
    if config.get("database.encryption_enabled", True):
        encryption = DatabaseEncryptionHelper(SecurityManager())

    credential_store = CredentialStore(db, encryption)
    state_store = SyncStateStore(db, encryption)
    record_store = RecordStore(db)

    http_kwargs = http_client_kwargs(config)
    refresher = CredentialRefresher(
        credential_store,
        {
            GoogleCalendarClient.provider: OAuthClientConfig(
                client_id=config.get("oauth.google.client_id", ""),
                client_secret=config.get("oauth.google.client_secret", ""),
                token_url=config.get("oauth.google.token_url", GoogleCalendarClient.TOKEN_URL),
            )
        },
        http_client_factory=lambda: RetryableHttpClient(**http_kwargs),
        usage_store=UsageStore(db),
        buffer_seconds=int(config.get("oauth.token_buffer_seconds", 300)),
    )

    settings = SyncSettings.from_config(config)
    orchestrator = SyncOrchestrator(state_store, record_store, refresher, settings=settings)
    scheduler = SyncScheduler(
        orchestrator,
        state_store,
        registry=RunRegistry(),
        interval_minutes=int(config.get("sync.interval_minutes", 15)),
    )

    return Runtime(
        config=config,
        db=db,
        credential_store=credential_store,
        state_store=state_store,
        record_store=record_store,
        targets=SyncTargetService(credential_store, state_store),
        orchestrator=orchestrator,
        scheduler=scheduler,
    )


def _print_json(value) -> None:
    print(json.dumps(value, indent=2, ensure_ascii=False))


def cmd_sync(runtime: Runtime, args) -> int:
    target_ids = [args.target_id] if args.target_id else [
        state.id for state in runtime.state_store.list_active()
    ]
    exit_code = 0
    for target_id in target_ids:
        result = runtime.scheduler.run_target(target_id)
        if result is None:
            print(f"{target_id}: already running", file=sys.stderr)
            continue
        _print_json(result.to_dict())
        if result.requires_attention:
            exit_code = 1
    return exit_code


def cmd_status(runtime: Runtime, args) -> int:
    if args.target_id:
        _print_json(runtime.targets.get_status(args.target_id))
    else:
        _print_json(runtime.targets.list_statuses())
    return 0


def cmd_import_credential(runtime: Runtime, args) -> int:
    from data.database.models import Credential

    credential = Credential(
        provider=args.provider,
        account=args.account,
        refresh_token=args.refresh_token,
    )
    runtime.credential_store.create(credential)
    print(credential.id)
    return 0


def cmd_register(runtime: Runtime, args) -> int:
    state = runtime.targets.register_target(
        args.credential_id,
        resource_id=args.resource_id,
        name=args.name,
        owner=args.owner,
    )
    _print_json(state.to_status_dict())
    return 0


def cmd_serve(runtime: Runtime, args) -> int:
    logger = get_logger("main")
    stop_event = threading.Event()

    def _request_stop(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    resumed = runtime.scheduler.resume_stale_runs()
    if resumed:
        logger.info(f"Resumed {len(resumed)} interrupted sync(s)")

    runtime.scheduler.start()
    if args.run_now:
        runtime.scheduler.sync_now()

    stop_event.wait()
    runtime.scheduler.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dashsync", description="Mirror remote calendars into a local database."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    parser.add_argument("--config-dir", help="Directory holding app_config.json")
    parser.add_argument("--log-level", help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run a sync now")
    sync_parser.add_argument("target_id", nargs="?", help="Target to sync (default: all active)")
    sync_parser.set_defaults(handler=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument("target_id", nargs="?")
    status_parser.set_defaults(handler=cmd_status)

    credential_parser = subparsers.add_parser(
        "import-credential", help="Store an OAuth refresh token"
    )
    credential_parser.add_argument("--provider", default="google")
    credential_parser.add_argument("--account")
    credential_parser.add_argument("--refresh-token", required=True)
    credential_parser.set_defaults(handler=cmd_import_credential)

    register_parser = subparsers.add_parser("register", help="Register a sync target")
    register_parser.add_argument("--credential-id", required=True)
    register_parser.add_argument("--resource-id", default="primary")
    register_parser.add_argument("--name")
    register_parser.add_argument("--owner")
    register_parser.set_defaults(handler=cmd_register)

    serve_parser = subparsers.add_parser("serve", help="Run the periodic scheduler")
    serve_parser.add_argument("--run-now", action="store_true", help="Sync once at startup")
    serve_parser.set_defaults(handler=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Command line entry point."""
    global _logger

    args = build_parser().parse_args(argv)

    try:
        config = ConfigManager(args.config_dir)
        setup_logging(level=args.log_level or config.get("logging.level"))
        _logger = get_logger("main")
        _logger.info(f"dashsync {get_version()} starting: {args.command}")

        runtime = build_runtime(config)
        try:
            return args.handler(runtime, args)
        finally:
            runtime.close()

    except Exception as e:
        if _logger:
            _logger.critical(f"Fatal error: {type(e).__name__}: {e}", exc_info=True)
        else:
            traceback.print_exc()
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
