# SPDX-License-Identifier: Apache-2.0
"""
Exceptions for the sync engine.

Every failure a run can hit maps to one of these; the error classifier picks
a recovery action from the type.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for sync operations."""

    pass


class CredentialError(SyncError):
    """Base class for credential problems."""

    def __init__(self, message: str, credential_id: Optional[str] = None):
        super().__init__(message)
        self.credential_id = credential_id


class CredentialInactiveError(CredentialError):
    """Raised when a credential was already deactivated."""

    def __init__(self, credential_id: str):
        super().__init__(f"Credential is inactive: {credential_id}", credential_id)


class CredentialPermanentlyInvalidError(CredentialError):
    """Raised when the token endpoint rejects the refresh token for good."""

    def __init__(self, credential_id: Optional[str], reason: str = "invalid_grant"):
        super().__init__(
            f"Credential {credential_id} is permanently invalid: {reason}", credential_id
        )
        self.reason = reason


class RemoteErrorCode:
    """Error codes reported by remote collection clients."""

    RATE_LIMITED = "RATE_LIMITED"
    CURSOR_INVALID = "CURSOR_INVALID"
    OTHER = "OTHER"


class RemoteCollectionError(SyncError):
    """Raised by a remote client when listing fails."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.reason = reason

    def __str__(self):
        base = super().__str__()
        if self.status_code is not None:
            return f"[{self.code} {self.status_code}] {base}"
        return f"[{self.code}] {base}"


class RateLimitedError(SyncError):
    """The remote asked us to back off; retry on a later run."""

    pass


class CursorInvalidatedError(SyncError):
    """The stored cursor expired; a full sync is needed."""

    pass


class SyncCancelledError(SyncError):
    """The run was cancelled or hit its deadline."""

    def __init__(self, message: str = "Sync cancelled", timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class RecordProcessingError(SyncError):
    """Processing of a single record failed. Counted, never fatal to the run."""

    def __init__(self, external_id: Optional[str], message: str):
        super().__init__(f"{external_id}: {message}")
        self.external_id = external_id


class SyncInternalError(SyncError):
    """Any other failure; terminal for the run."""

    pass


class SyncTargetError(SyncError):
    """Raised when registering or looking up a sync target fails."""

    pass


class SyncAlreadyRunningError(SyncError):
    """Raised when a run is triggered for a target that already has one."""

    def __init__(self, target_id: str):
        super().__init__(f"A sync run is already in progress for {target_id}")
        self.target_id = target_id
