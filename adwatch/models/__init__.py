"""
Shared Pydantic data models for the alert engine.

All models use Decimal for financial precision.

Modules:
    campaign: Campaigns, metric snapshots and thresholds
    alerts: Alert enums, detail payloads, candidates and instances
    results: Per-stage result types and run summaries

Example:
    >>> from adwatch.models import Alert, AlertPriority, AlertType
    >>> from adwatch.models import Campaign, MetricsSnapshot
"""

# Campaign models
from adwatch.models.campaign import (
    AlertThresholds,
    Campaign,
    MetricsSnapshot,
)

# Alert models
from adwatch.models.alerts import (
    ALERT_DETAIL_ADAPTER,
    Alert,
    AlertCandidate,
    AlertDetail,
    AlertFilters,
    AlertPage,
    AlertPriority,
    AlertStats,
    AlertStatus,
    AlertType,
    BudgetLossDetail,
    BurnRateDetail,
    CpaHighDetail,
    CtrDeclineDetail,
    Pagination,
    RankLossDetail,
    RoasDropDetail,
    WeeklyCtrPoint,
)

# Result models
from adwatch.models.results import (
    BatchSummary,
    CampaignRunResult,
    ChannelOutcome,
    DispatchReport,
    UpsertOutcome,
    UpsertResult,
)

__all__ = [
    # Campaign
    "AlertThresholds",
    "Campaign",
    "MetricsSnapshot",
    # Alerts
    "ALERT_DETAIL_ADAPTER",
    "Alert",
    "AlertCandidate",
    "AlertDetail",
    "AlertFilters",
    "AlertPage",
    "AlertPriority",
    "AlertStats",
    "AlertStatus",
    "AlertType",
    "BudgetLossDetail",
    "BurnRateDetail",
    "CpaHighDetail",
    "CtrDeclineDetail",
    "Pagination",
    "RankLossDetail",
    "RoasDropDetail",
    "WeeklyCtrPoint",
    # Results
    "BatchSummary",
    "CampaignRunResult",
    "ChannelOutcome",
    "DispatchReport",
    "UpsertOutcome",
    "UpsertResult",
]
