# SPDX-License-Identifier: Apache-2.0
"""Result of a sync run."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.sync.constants import SyncOutcome
from core.sync.exceptions import SyncError
from core.sync.worker_pool import RecordError


@dataclass
class SyncResult:
    """
    What a run did and how it ended.

    ``requires_attention`` is true for outcomes an operator must see:
    a disabled credential, rate limiting and internal failures. Cancelled
    runs and self-healed cursor resets are not failures.
    """

    target_id: str
    outcome: str = SyncOutcome.COMPLETED
    mode: Optional[str] = None
    status: Optional[str] = None
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    pages: int = 0
    fell_back_to_full: bool = False
    duration_seconds: float = 0.0
    error: Optional[SyncError] = None
    record_errors: List[RecordError] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome == SyncOutcome.COMPLETED

    @property
    def requires_attention(self) -> bool:
        return self.outcome in SyncOutcome.needs_attention()

    def raise_for_outcome(self) -> None:
        """Re-raise the run's error if the outcome needs attention."""
        if self.requires_attention and self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "outcome": self.outcome,
            "mode": self.mode,
            "status": self.status,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "pages": self.pages,
            "fell_back_to_full": self.fell_back_to_full,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": str(self.error) if self.error else None,
            "record_errors": [
                {"external_id": e.external_id, "message": e.message} for e in self.record_errors
            ],
        }
