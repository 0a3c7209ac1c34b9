# SPDX-License-Identifier: Apache-2.0
"""
Constants for the sync engine.

Status values, sync modes, run outcomes and recovery actions as plain string
classes so they can be stored and compared without conversion.
"""


class SyncStatus:
    """Values of ``sync_states.status``."""

    IDLE = "idle"
    SYNCING = "syncing"
    NO_CHANGE = "no_change"
    ADDED = "added"
    FAILED = "failed"
    INACTIVE = "inactive"

    @classmethod
    def list(cls):
        return [cls.IDLE, cls.SYNCING, cls.NO_CHANGE, cls.ADDED, cls.FAILED, cls.INACTIVE]


class SyncMode:
    """How a run enumerates the remote collection."""

    INCREMENTAL = "incremental"
    FULL = "full"


class SyncOutcome:
    """Terminal result of one run."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RATE_LIMITED = "rate_limited"
    INACTIVE = "inactive"
    FAILED = "failed"

    @classmethod
    def needs_attention(cls):
        """Outcomes an operator should see."""
        return [cls.RATE_LIMITED, cls.INACTIVE, cls.FAILED]


class RecoveryAction:
    """What the orchestrator does after a run-level error."""

    PRESERVE_AND_STOP = "preserve_and_stop"
    RESET_AND_RETRY_FULL = "reset_and_retry_full"
    DISABLE = "disable"
    SUSPEND = "suspend"
    FAIL_AND_PRESERVE = "fail_and_preserve"


class Provider:
    """Supported remote providers."""

    GOOGLE = "google"

    @classmethod
    def list(cls):
        return [cls.GOOGLE]
