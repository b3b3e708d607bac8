"""
Alert data models for the alert engine.

This module defines alert-related structures including classification
enums, the per-detector detail payloads, detector candidates, persisted
alert instances, and the query/aggregate shapes used by the lifecycle
manager.

Models:
    AlertType: The six detector kinds
    AlertPriority: Priority levels (LOW, MEDIUM, HIGH, CRITICAL)
    AlertStatus: Lifecycle status (ACTIVE, ACKNOWLEDGED, RESOLVED, DISMISSED)
    AlertDetail: Tagged union of detector-specific payloads
    AlertCandidate: Output of a detector, input of the deduplicator
    Alert: Persisted alert instance
    AlertFilters / Pagination / AlertPage: List query shapes
    AlertStats: Aggregate counts for dashboards
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from adwatch.models.campaign import to_decimal


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class AlertType(str, Enum):
    """
    Detector kinds.

    Attributes:
        ROAS_DROP: Return on ad spend fell versus the previous period.
        CPA_HIGH: Cost per acquisition is above target.
        BUDGET_LOSS: Impressions lost because the budget ran out.
        RANKING_LOSS: Impressions lost because of low ad rank.
        CTR_DECLINE: Click-through rate fell for consecutive weeks.
        BURN_RATE: Month-to-date spend is ahead of a linear pace.
    """

    ROAS_DROP = "ROAS_DROP"
    CPA_HIGH = "CPA_HIGH"
    BUDGET_LOSS = "BUDGET_LOSS"
    RANKING_LOSS = "RANKING_LOSS"
    CTR_DECLINE = "CTR_DECLINE"
    BURN_RATE = "BURN_RATE"


class AlertPriority(str, Enum):
    """
    Alert priority levels, ordered by rank.

    Attributes:
        LOW: Awareness only.
        MEDIUM: Worth a look this week.
        HIGH: Investigate today.
        CRITICAL: Immediate action required.
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more urgent."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: Dict[AlertPriority, int] = {
    AlertPriority.LOW: 1,
    AlertPriority.MEDIUM: 2,
    AlertPriority.HIGH: 3,
    AlertPriority.CRITICAL: 4,
}


class AlertStatus(str, Enum):
    """
    Alert lifecycle status.

    ACTIVE can move to any of the other three. ACKNOWLEDGED can still be
    resolved or dismissed. RESOLVED and DISMISSED are terminal. Nothing
    moves back to ACTIVE.
    """

    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are allowed."""
        return self in (AlertStatus.RESOLVED, AlertStatus.DISMISSED)

    def can_transition_to(self, target: "AlertStatus") -> bool:
        """Check if moving to ``target`` is a legal transition."""
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: Dict[AlertStatus, FrozenSet[AlertStatus]] = {
    AlertStatus.ACTIVE: frozenset(
        {AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED, AlertStatus.DISMISSED}
    ),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED, AlertStatus.DISMISSED}),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.DISMISSED: frozenset(),
}


# =============================================================================
# DETAIL PAYLOADS
# =============================================================================


class _DetailBase(BaseModel):
    """Common configuration for detail payloads."""

    model_config = {"frozen": True, "extra": "forbid"}


class RoasDropDetail(_DetailBase):
    """Extra context for a ROAS drop."""

    kind: Literal["ROAS_DROP"] = "ROAS_DROP"
    drop_percent: Decimal
    conversion_value: Optional[Decimal] = None
    cost: Optional[Decimal] = None


class CpaHighDetail(_DetailBase):
    """Extra context for a CPA above target."""

    kind: Literal["CPA_HIGH"] = "CPA_HIGH"
    percent_above: Decimal
    target_cpa: Decimal
    conversions: Optional[Decimal] = None
    cost: Optional[Decimal] = None


class BudgetLossDetail(_DetailBase):
    """Extra context for impressions lost to budget."""

    kind: Literal["BUDGET_LOSS"] = "BUDGET_LOSS"
    lost_percent: Decimal
    impressions: Optional[int] = None
    cost: Optional[Decimal] = None
    daily_budget: Optional[Decimal] = None


class RankLossDetail(_DetailBase):
    """Extra context for impressions lost to rank."""

    kind: Literal["RANKING_LOSS"] = "RANKING_LOSS"
    lost_percent: Decimal
    impressions: Optional[int] = None
    clicks: Optional[int] = None
    average_cpc: Optional[Decimal] = None


class WeeklyCtrPoint(_DetailBase):
    """One week of the CTR series, most recent first."""

    ctr_percent: Optional[Decimal] = None
    impressions: Optional[int] = None
    clicks: Optional[int] = None


class CtrDeclineDetail(_DetailBase):
    """Extra context for a multi-week CTR decline."""

    kind: Literal["CTR_DECLINE"] = "CTR_DECLINE"
    consecutive_drops: int
    overall_drop_percent: Decimal
    weekly: List[WeeklyCtrPoint] = Field(default_factory=list)


class BurnRateDetail(_DetailBase):
    """Extra context for a burn rate above pace."""

    kind: Literal["BURN_RATE"] = "BURN_RATE"
    actual_spend: Decimal
    expected_spend: Decimal
    monthly_budget: Decimal
    projected_monthly_spend: Decimal
    projected_overspend: Decimal
    day_of_month: int
    days_in_month: int


AlertDetail = Annotated[
    Union[
        RoasDropDetail,
        CpaHighDetail,
        BudgetLossDetail,
        RankLossDetail,
        CtrDeclineDetail,
        BurnRateDetail,
    ],
    Field(discriminator="kind"),
]

# Used at the storage boundary to (de)serialize the union
ALERT_DETAIL_ADAPTER: TypeAdapter = TypeAdapter(AlertDetail)


# =============================================================================
# CANDIDATES AND ALERTS
# =============================================================================


class AlertCandidate(BaseModel):
    """
    A detector's finding, before deduplication.

    Attributes:
        alert_type: Detector kind that produced the candidate.
        priority: Priority from the classifier.
        title: Short title shown in lists and email subjects.
        message: Human-readable explanation.
        threshold: Threshold value the metric was compared against.
        current_value: Metric value that triggered the candidate.
        previous_value: Reference value (previous period, target, ideal pace).
        magnitude: Deviation fed to the priority classifier.
        detail: Detector-specific payload.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    alert_type: AlertType
    priority: AlertPriority
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    threshold: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    previous_value: Optional[Decimal] = None
    magnitude: Decimal
    detail: AlertDetail

    @field_validator("threshold", "current_value", "previous_value", "magnitude", mode="before")
    @classmethod
    def coerce_decimal(cls, v: Any) -> Any:
        """Convert numeric inputs to Decimal."""
        return to_decimal(v)


class Alert(BaseModel):
    """
    Persisted alert instance.

    Alerts are treated as immutable values: the helper methods return
    updated copies and the caller persists them through the AlertStore.

    Attributes:
        id: Unique identifier.
        campaign_id: Campaign that triggered the alert.
        recipient_id: Operator who owns the alert.
        alert_type: Detector kind.
        priority: Priority level.
        status: Lifecycle status.
        title: Short title.
        message: Human-readable explanation.
        threshold: Threshold used by the detector.
        current_value: Latest metric value.
        previous_value: Reference value.
        detail: Detector-specific payload.
        is_read: Whether the recipient has read the alert.
        read_at: When it was read.
        email_sent: Email delivery confirmed.
        chat_sent: Chat delivery confirmed.
        created_at: Creation time.
        updated_at: Last modification time.
        resolved_at: When it was resolved or dismissed.

    Example:
        >>> alert = Alert.from_candidate(candidate, "cmp-1", "user-7")
        >>> alert.status
        <AlertStatus.ACTIVE: 'ACTIVE'>
    """

    model_config = {"extra": "forbid"}

    # Identification
    id: str = Field(default_factory=lambda: str(uuid4()))
    campaign_id: str = Field(..., min_length=1)
    recipient_id: str = Field(..., min_length=1)

    # Classification
    alert_type: AlertType
    priority: AlertPriority
    status: AlertStatus = AlertStatus.ACTIVE

    # Content
    title: str
    message: str
    threshold: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    previous_value: Optional[Decimal] = None
    detail: Optional[AlertDetail] = None

    # Read tracking
    is_read: bool = False
    read_at: Optional[datetime] = None

    # Delivery tracking
    email_sent: bool = False
    chat_sent: bool = False

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    resolved_at: Optional[datetime] = None

    @field_validator("threshold", "current_value", "previous_value", mode="before")
    @classmethod
    def coerce_decimal(cls, v: Any) -> Any:
        """Convert numeric inputs to Decimal."""
        return to_decimal(v)

    @classmethod
    def from_candidate(
        cls,
        candidate: AlertCandidate,
        campaign_id: str,
        recipient_id: str,
        timestamp: Optional[datetime] = None,
    ) -> "Alert":
        """
        Build a fresh ACTIVE alert from a detector candidate.

        Args:
            candidate: Detector output.
            campaign_id: Campaign identifier.
            recipient_id: Owning operator.
            timestamp: Creation time, defaults to now.

        Returns:
            Alert: Unread, undelivered ACTIVE alert.
        """
        created = timestamp or utc_now()
        return cls(
            campaign_id=campaign_id,
            recipient_id=recipient_id,
            alert_type=candidate.alert_type,
            priority=candidate.priority,
            title=candidate.title,
            message=candidate.message,
            threshold=candidate.threshold,
            current_value=candidate.current_value,
            previous_value=candidate.previous_value,
            detail=candidate.detail,
            created_at=created,
            updated_at=created,
        )

    @property
    def is_deletable(self) -> bool:
        """Check if the alert may be deleted (terminal status)."""
        return self.status.is_terminal

    @staticmethod
    def refresh_fields(
        candidate: AlertCandidate,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Fields written when a re-detection refreshes an alert."""
        return {
            "current_value": candidate.current_value,
            "previous_value": candidate.previous_value,
            "threshold": candidate.threshold,
            "message": candidate.message,
            "detail": candidate.detail,
            "updated_at": timestamp or utc_now(),
        }


def status_fields(status: AlertStatus, timestamp: datetime) -> Dict[str, Any]:
    """
    Fields written alongside a status change.

    Acknowledging also marks the alert read. Resolving and dismissing set
    ``resolved_at``.
    """
    fields: Dict[str, Any] = {"status": status, "updated_at": timestamp}
    if status == AlertStatus.ACKNOWLEDGED:
        fields["is_read"] = True
        fields["read_at"] = timestamp
    if status.is_terminal:
        fields["resolved_at"] = timestamp
    return fields


# =============================================================================
# QUERIES AND AGGREGATES
# =============================================================================


class AlertFilters(BaseModel):
    """Filters for listing a recipient's alerts. None means "any"."""

    model_config = {"frozen": True, "extra": "forbid"}

    status: Optional[AlertStatus] = None
    priority: Optional[AlertPriority] = None
    alert_type: Optional[AlertType] = None
    campaign_id: Optional[str] = None
    is_read: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class Pagination(BaseModel):
    """Page selection for list queries."""

    model_config = {"frozen": True, "extra": "forbid"}

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        """Rows to skip."""
        return (self.page - 1) * self.limit


class AlertPage(BaseModel):
    """One page of alerts with totals."""

    model_config = {"frozen": True, "extra": "forbid"}

    alerts: List[Alert]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)

    @property
    def total_pages(self) -> int:
        """Number of pages for the current limit."""
        return (self.total + self.limit - 1) // self.limit


class AlertStats(BaseModel):
    """
    Aggregate alert counts for a recipient.

    Attributes:
        total_active: Alerts currently ACTIVE.
        unread: Unread alerts in any status.
        in_window: Alerts created within the trailing window.
        window_days: Size of the trailing window.
        by_status: Counts per status within the window.
        by_priority: Counts per priority within the window.
        by_type: Counts per alert type within the window.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    total_active: int = 0
    unread: int = 0
    in_window: int = 0
    window_days: int = 7
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
