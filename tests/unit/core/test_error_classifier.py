# SPDX-License-Identifier: Apache-2.0
"""Tests for run-level error classification."""

import pytest

from core.sync.classifier import ErrorClassifier
from core.sync.constants import RecoveryAction, SyncMode, SyncOutcome
from core.sync.exceptions import (
    CredentialInactiveError,
    CredentialPermanentlyInvalidError,
    CursorInvalidatedError,
    RateLimitedError,
    RemoteCollectionError,
    RemoteErrorCode,
    SyncCancelledError,
    SyncInternalError,
)


@pytest.fixture
def classifier():
    return ErrorClassifier()


@pytest.mark.parametrize(
    "error,action,outcome",
    [
        (SyncCancelledError(), RecoveryAction.SUSPEND, SyncOutcome.CANCELLED),
        (CredentialPermanentlyInvalidError("c1"), RecoveryAction.DISABLE, SyncOutcome.INACTIVE),
        (CredentialInactiveError("c1"), RecoveryAction.DISABLE, SyncOutcome.INACTIVE),
        (
            RemoteCollectionError(RemoteErrorCode.RATE_LIMITED, "slow down", 429),
            RecoveryAction.PRESERVE_AND_STOP,
            SyncOutcome.RATE_LIMITED,
        ),
        (
            RemoteCollectionError(RemoteErrorCode.OTHER, "boom", 500),
            RecoveryAction.FAIL_AND_PRESERVE,
            SyncOutcome.FAILED,
        ),
        (KeyError("missing"), RecoveryAction.FAIL_AND_PRESERVE, SyncOutcome.FAILED),
    ],
)
def test_classification(classifier, error, action, outcome):
    result = classifier.classify(error, SyncMode.FULL)

    assert result.action == action
    assert result.outcome == outcome


def test_cursor_invalidation_in_incremental_mode_resets(classifier):
    error = RemoteCollectionError(RemoteErrorCode.CURSOR_INVALID, "gone", 410)

    result = classifier.classify(error, SyncMode.INCREMENTAL)

    assert result.action == RecoveryAction.RESET_AND_RETRY_FULL
    assert isinstance(result.error, CursorInvalidatedError)


@pytest.mark.parametrize(
    "mode,reset_used", [(SyncMode.FULL, False), (SyncMode.INCREMENTAL, True)]
)
def test_cursor_invalidation_otherwise_fails(classifier, mode, reset_used):
    result = classifier.classify(CursorInvalidatedError("gone"), mode, reset_used)

    assert result.action == RecoveryAction.FAIL_AND_PRESERVE
    assert isinstance(result.error, SyncInternalError)


def test_normalize_keeps_cause():
    original = RemoteCollectionError(RemoteErrorCode.RATE_LIMITED, "slow down", 429)

    normalized = ErrorClassifier.normalize(original)

    assert isinstance(normalized, RateLimitedError)
    assert normalized.__cause__ is original
    assert "429" in str(normalized)
