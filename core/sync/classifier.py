# SPDX-License-Identifier: Apache-2.0
"""
Error classification for sync runs.

Maps a run-level exception to the recovery action the orchestrator takes
and the outcome reported to the caller.
"""

import logging
from dataclasses import dataclass

from core.sync.constants import RecoveryAction, SyncMode, SyncOutcome
from core.sync.exceptions import (
    CredentialInactiveError,
    CredentialPermanentlyInvalidError,
    CursorInvalidatedError,
    RateLimitedError,
    RemoteCollectionError,
    RemoteErrorCode,
    SyncCancelledError,
    SyncError,
    SyncInternalError,
)


logger = logging.getLogger("dashsync.sync.classifier")


@dataclass(frozen=True)
class Classification:
    action: str
    outcome: str
    error: SyncError


class ErrorClassifier:
    """Chooses a recovery strategy for an exception raised during a run."""

    def classify(self, error: BaseException, mode: str, cursor_reset_used: bool = False) -> Classification:
        """
        Args:
            error: The exception that ended the pass
            mode: Sync mode of the pass that failed
            cursor_reset_used: Whether this run already fell back to a full sync
        """
        normalized = self.normalize(error)

        if isinstance(normalized, SyncCancelledError):
            return Classification(RecoveryAction.SUSPEND, SyncOutcome.CANCELLED, normalized)

        if isinstance(normalized, (CredentialPermanentlyInvalidError, CredentialInactiveError)):
            return Classification(RecoveryAction.DISABLE, SyncOutcome.INACTIVE, normalized)

        if isinstance(normalized, RateLimitedError):
            return Classification(
                RecoveryAction.PRESERVE_AND_STOP, SyncOutcome.RATE_LIMITED, normalized
            )

        if isinstance(normalized, CursorInvalidatedError):
            if mode == SyncMode.INCREMENTAL and not cursor_reset_used:
                return Classification(
                    RecoveryAction.RESET_AND_RETRY_FULL, SyncOutcome.COMPLETED, normalized
                )
            logger.error("Cursor invalidated outside an incremental pass; giving up")
            return Classification(
                RecoveryAction.FAIL_AND_PRESERVE,
                SyncOutcome.FAILED,
                SyncInternalError(f"Unexpected cursor invalidation in {mode} mode: {normalized}"),
            )

        return Classification(RecoveryAction.FAIL_AND_PRESERVE, SyncOutcome.FAILED, normalized)

    @staticmethod
    def normalize(error: BaseException) -> SyncError:
        """Translate remote error codes and foreign exceptions into the sync taxonomy."""
        if isinstance(error, RemoteCollectionError):
            if error.code == RemoteErrorCode.RATE_LIMITED:
                normalized: SyncError = RateLimitedError(str(error))
            elif error.code == RemoteErrorCode.CURSOR_INVALID:
                normalized = CursorInvalidatedError(str(error))
            else:
                normalized = SyncInternalError(str(error))
            normalized.__cause__ = error
            return normalized

        if isinstance(error, SyncError):
            return error

        wrapped = SyncInternalError(f"{type(error).__name__}: {error}")
        wrapped.__cause__ = error
        return wrapped
