# eld_integration_hub/models/results.py
"""
Result envelopes returned across the service boundary.

Every public service method returns a ServiceResult instead of raising. The
hosting application checks `error` and either shows `error_message` or reads
`data`; it never needs to know the internal exception hierarchy.

Design Decisions:
-----------------
- ServiceResult serializes `error_message` as `errorMessage` so the envelope
  can be handed straight to a JSON API without a translation layer.

- SyncPassResult is mutable: a pass accumulates counts while it runs and is
  frozen into the run summary only once complete.
"""

import logging
from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

__all__: list[str] = [
    'AutoMatchSummary',
    'MatchOutcome',
    'ServiceResult',
    'SyncPassResult',
    'SyncRunSummary',
]

logger: logging.Logger = logging.getLogger(__name__)


class ServiceResult[DataT](BaseModel):
    """
    Uniform success/failure envelope.

    Attributes:
        error: True when the operation failed.
        error_message: Human-readable failure reason (alias 'errorMessage').
        data: Payload on success; may also carry partial data on failure.
    """

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
        populate_by_name=True,
    )

    error: bool = False
    error_message: str | None = Field(default=None, alias='errorMessage')
    data: DataT | None = None

    @classmethod
    def ok(cls, data: DataT | None = None) -> Self:
        """Build a successful result."""
        return cls(error=False, data=data)

    @classmethod
    def fail(cls, message: str, data: DataT | None = None) -> Self:
        """Build a failed result with a message and optional partial data."""
        return cls(error=True, error_message=message, data=data)

    @property
    def succeeded(self) -> bool:
        """Convenience inverse of `error`."""
        return not self.error

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dict using wire aliases."""
        return self.model_dump(mode='json', by_alias=True)


# =============================================================================
# Sync Results
# =============================================================================


class SyncPassResult(BaseModel):
    """
    Outcome of one domain pass (vehicles, hos, ifta...).

    Attributes:
        domain: Domain name of the pass.
        synced_count: Records written (inserted or updated).
        skipped_count: Records skipped because their entity was unmapped.
        errors: Per-record or pass-level error messages.
        failed: True when the pass as a whole did not complete.
        rate_limited: True when the provider asked us to back off.
        retry_after_seconds: Provider-requested wait when rate limited.
    """

    model_config = ConfigDict(extra='forbid')

    domain: str
    synced_count: int = 0
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)
    failed: bool = False
    rate_limited: bool = False
    retry_after_seconds: float | None = None

    def add_error(self, message: str) -> None:
        """Record a per-record error without failing the pass."""
        self.errors.append(message)

    def mark_failed(self, message: str) -> None:
        """Record a pass-level failure."""
        self.failed = True
        self.errors.append(message)

    def mark_rate_limited(self, retry_after_seconds: float) -> None:
        """Record that the provider throttled this pass."""
        self.failed = True
        self.rate_limited = True
        self.retry_after_seconds = retry_after_seconds
        self.errors.append(f'Rate limited, retry after {retry_after_seconds}s')

    @property
    def completed(self) -> bool:
        """True when the pass ran to the end."""
        return not self.failed


class SyncRunSummary(BaseModel):
    """Aggregate of all passes in one sync_all run."""

    model_config = ConfigDict(extra='forbid')

    connection_id: str
    job_id: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    passes: list[SyncPassResult] = Field(default_factory=list)

    @property
    def total_records(self) -> int:
        """Records written across all passes."""
        return sum(result.synced_count for result in self.passes)

    @property
    def all_completed(self) -> bool:
        """True when every pass completed."""
        return all(result.completed for result in self.passes)

    @property
    def rate_limited(self) -> bool:
        """True when any pass was throttled."""
        return any(result.rate_limited for result in self.passes)

    def error_messages(self) -> list[str]:
        """Pass-prefixed error messages, in pass order."""
        return [
            f'{result.domain}: {message}'
            for result in self.passes
            for message in result.errors
        ]


# =============================================================================
# Mapping Results
# =============================================================================


class MatchOutcome(BaseModel):
    """One external record's auto-match decision."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    external_id: str
    local_id: str | None = None
    match_method: str | None = None
    confidence: float | None = None
    candidate_ids: tuple[str, ...] = ()


class AutoMatchSummary(BaseModel):
    """
    Outcome of auto-matching a batch of external records.

    Attributes:
        matched: Records mapped (newly or already).
        unmatched: Records with no candidate in any tier.
        ambiguous: Records whose best tier had several candidates.
        errors: Records that failed to persist.
    """

    model_config = ConfigDict(extra='forbid')

    matched: list[MatchOutcome] = Field(default_factory=list)
    unmatched: list[MatchOutcome] = Field(default_factory=list)
    ambiguous: list[MatchOutcome] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
