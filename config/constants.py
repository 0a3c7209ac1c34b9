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
Application-wide constants for dashsync.

This module contains constants used across multiple modules to avoid
hardcoded values throughout the codebase.
"""

# ============================================================================
# Synchronization Defaults
# ============================================================================

# Full sync time window (months relative to "now")
SYNC_PAST_WINDOW_MONTHS = 6
SYNC_FUTURE_WINDOW_MONTHS = 6

# Record processing
SYNC_WORKER_COUNT = 5
SYNC_QUEUE_CAPACITY = 100
SYNC_CHECKPOINT_INTERVAL = 50  # persist checkpoint every N processed records
SYNC_ERROR_DETAIL_LIMIT = 100  # per-record errors kept on a SyncResult

# Whole-run deadline
SYNC_RUN_TIMEOUT_SECONDS = 600.0  # 10 minutes

# Polling granularity for blocking queue operations while watching cancellation
SYNC_QUEUE_POLL_SECONDS = 0.1

# Scheduler
DEFAULT_SYNC_INTERVAL_MINUTES = 15

# ============================================================================
# Remote API
# ============================================================================

GOOGLE_CALENDAR_MAX_RESULTS = 250
CALENDAR_API_TIMEOUT_SECONDS = 30.0
DEFAULT_CALENDAR_RESOURCE_ID = "primary"

# ============================================================================
# OAuth
# ============================================================================

DEFAULT_TOKEN_BUFFER_SECONDS = 300  # 5 minutes buffer for token expiration
DEFAULT_TOKEN_EXPIRES_IN_SECONDS = 3600  # 1 hour

# ============================================================================
# HTTP
# ============================================================================

HTTP_MAX_RETRIES = 3
HTTP_BASE_DELAY_SECONDS = 1.0
HTTP_MAX_RETRY_AFTER_SECONDS = 60.0

# ============================================================================
# Storage, Security and Logging
# ============================================================================

DATABASE_CONNECTION_TIMEOUT_SECONDS = 30.0  # SQLite busy timeout
FILE_PERMISSION_OWNER_RW = 0o600  # Owner read/write only

SALT_SIZE_BYTES = 32  # 256-bit salt for key derivation
ENCRYPTION_KEY_SIZE_BYTES = 32  # 256-bit key for AES-256
ENCRYPTION_NONCE_SIZE_BYTES = 12  # 96-bit GCM nonce
KEY_DERIVATION_ITERATIONS = 100_000

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB log file size
LOG_FILE_BACKUP_COUNT = 5  # Number of backup log files
