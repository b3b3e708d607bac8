"""
Per-stage result types.

Each pipeline stage reports its outcome as a value instead of raising, so
the orchestrator can aggregate failures across a run without relying on
exception propagation.

Models:
    UpsertOutcome: What the deduplicator did with a candidate
    UpsertResult: Deduplicator output
    ChannelOutcome: One delivery attempt
    DispatchReport: Dispatcher output
    CampaignRunResult: One campaign's evaluation within a run
    BatchSummary: A whole run
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from adwatch.models.alerts import Alert


class UpsertOutcome(str, Enum):
    """Deduplicator decision."""

    CREATED = "created"
    REFRESHED = "refreshed"
    UNCHANGED = "unchanged"


class UpsertResult(BaseModel):
    """Alert returned by the deduplicator and how it got there."""

    model_config = {"frozen": True, "extra": "forbid"}

    alert: Alert
    outcome: UpsertOutcome

    @property
    def is_new(self) -> bool:
        """Check if a new alert was inserted."""
        return self.outcome == UpsertOutcome.CREATED


class ChannelOutcome(BaseModel):
    """Result of one delivery attempt."""

    model_config = {"frozen": True, "extra": "forbid"}

    channel: str
    delivered: bool = False
    skipped: bool = False
    error: Optional[str] = None


class DispatchReport(BaseModel):
    """
    Dispatcher output.

    Attributes:
        alert: The alert with delivery flags as persisted.
        realtime: Realtime push outcome.
        email: Email outcome.
        chat: Chat outcome.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    alert: Alert
    realtime: ChannelOutcome
    email: ChannelOutcome
    chat: ChannelOutcome

    @property
    def delivered_count(self) -> int:
        """Number of channels that confirmed delivery."""
        return sum(1 for o in (self.realtime, self.email, self.chat) if o.delivered)

    @property
    def failures(self) -> List[ChannelOutcome]:
        """Channels that attempted delivery and failed."""
        return [o for o in (self.realtime, self.email, self.chat) if o.error is not None]


class CampaignRunResult(BaseModel):
    """
    Evaluation of one campaign inside a run.

    ``error`` is set when the campaign as a whole failed (metrics fetch,
    unexpected error). ``dropped_alerts`` counts candidates lost to
    per-alert persistence failures on an otherwise successful campaign.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    campaign_id: str
    results: List[UpsertResult] = Field(default_factory=list)
    dispatched: int = 0
    dropped_alerts: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        """Check if the campaign completed without a campaign-level error."""
        return self.error is None

    @property
    def alerts(self) -> List[Alert]:
        """Alerts produced for the campaign."""
        return [r.alert for r in self.results]


class BatchSummary(BaseModel):
    """
    Outcome of a batch run.

    Attributes:
        run_type: "full" or "critical".
        campaigns_analyzed: Campaigns whose evaluation was started.
        alerts_generated: Alerts produced (created, refreshed or unchanged).
        alerts_created: Alerts newly inserted.
        dropped_alerts: Candidates dropped on persistence errors.
        errors: Campaigns that failed.
        failed_campaigns: Ids of the failed campaigns.
        skipped_campaigns: Campaigns not started because the deadline passed.
        partial: Whether the deadline cut the run short.
        duration_ms: Wall-clock duration.
        alerts: The alerts produced.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    run_type: str = "full"
    campaigns_analyzed: int = 0
    alerts_generated: int = 0
    alerts_created: int = 0
    dropped_alerts: int = 0
    errors: int = 0
    failed_campaigns: List[str] = Field(default_factory=list)
    skipped_campaigns: int = 0
    partial: bool = False
    duration_ms: float = 0.0
    alerts: List[Alert] = Field(default_factory=list)

    @classmethod
    def from_results(
        cls,
        results: List[CampaignRunResult],
        run_type: str,
        skipped: int,
        duration_ms: float,
    ) -> "BatchSummary":
        """Aggregate per-campaign results into a summary."""
        alerts: List[Alert] = []
        created = 0
        dropped = 0
        failed: List[str] = []
        for result in results:
            alerts.extend(result.alerts)
            created += sum(1 for r in result.results if r.is_new)
            dropped += result.dropped_alerts
            if not result.ok:
                failed.append(result.campaign_id)

        return cls(
            run_type=run_type,
            campaigns_analyzed=len(results),
            alerts_generated=len(alerts),
            alerts_created=created,
            dropped_alerts=dropped,
            errors=len(failed),
            failed_campaigns=failed,
            skipped_campaigns=skipped,
            partial=skipped > 0,
            duration_ms=round(duration_ms, 2),
            alerts=alerts,
        )
