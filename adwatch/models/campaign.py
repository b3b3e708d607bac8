"""
Campaign, metric snapshot and threshold models.

These are read-only inputs to the engine: campaigns and their metrics are
owned by the surrounding product, and thresholds come from configuration
merged with per-campaign overrides. All financial values use Decimal.

Models:
    MetricsSnapshot: Aggregated campaign metrics for one period
    Campaign: Campaign attributes the detectors need
    AlertThresholds: Resolved detector thresholds
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# Days per month used to derive a monthly budget from a daily one
DAYS_PER_MONTH = Decimal("30.4")


def to_decimal(value: Any) -> Any:
    """Convert ints and floats to Decimal, leaving other values untouched."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return value


class MetricsSnapshot(BaseModel):
    """
    Aggregated campaign metrics over a period.

    Derived ratios (ctr, cpa, roas) are computed from the base counts when
    they are not supplied explicitly. Every field is optional because
    providers may have gaps; detectors treat None as "not available".

    Attributes:
        impressions: Impressions served.
        clicks: Clicks received.
        cost: Spend in account currency.
        conversions: Conversions attributed.
        conversion_value: Value of the attributed conversions.
        ctr: Click-through rate as a fraction (0.05 = 5%).
        cpa: Cost per acquisition.
        roas: Return on ad spend (conversion value / cost).
        lost_is_budget: Impression share lost to budget (fraction or percent).
        lost_is_rank: Impression share lost to rank (fraction or percent).
        month_to_date_cost: Spend since the first day of the month.
        period_start: First day covered by the snapshot.
        period_end: Last day covered by the snapshot.

    Example:
        >>> snapshot = MetricsSnapshot(clicks=50, impressions=1000, cost=100)
        >>> snapshot.ctr
        Decimal('0.05')
    """

    model_config = {"frozen": True, "extra": "forbid"}

    impressions: Optional[int] = Field(default=None, ge=0, description="Impressions served")
    clicks: Optional[int] = Field(default=None, ge=0, description="Clicks received")
    cost: Optional[Decimal] = Field(default=None, description="Spend in account currency")
    conversions: Optional[Decimal] = Field(default=None, description="Attributed conversions")
    conversion_value: Optional[Decimal] = Field(
        default=None,
        description="Value of attributed conversions",
    )
    ctr: Optional[Decimal] = Field(default=None, description="Click-through rate (fraction)")
    cpa: Optional[Decimal] = Field(default=None, description="Cost per acquisition")
    roas: Optional[Decimal] = Field(default=None, description="Return on ad spend")
    lost_is_budget: Optional[Decimal] = Field(
        default=None,
        description="Impression share lost to budget",
    )
    lost_is_rank: Optional[Decimal] = Field(
        default=None,
        description="Impression share lost to rank",
    )
    month_to_date_cost: Optional[Decimal] = Field(
        default=None,
        description="Spend since the first day of the month",
    )
    period_start: Optional[date] = Field(default=None, description="First day covered")
    period_end: Optional[date] = Field(default=None, description="Last day covered")

    @field_validator(
        "cost",
        "conversions",
        "conversion_value",
        "ctr",
        "cpa",
        "roas",
        "lost_is_budget",
        "lost_is_rank",
        "month_to_date_cost",
        mode="before",
    )
    @classmethod
    def coerce_decimal(cls, v: Any) -> Any:
        """Convert numeric inputs to Decimal."""
        return to_decimal(v)

    @model_validator(mode="before")
    @classmethod
    def derive_ratios(cls, data: Any) -> Any:
        """Fill ctr, cpa and roas from base counts when missing."""
        if not isinstance(data, dict):
            return data

        values = dict(data)
        impressions = to_decimal(values.get("impressions"))
        clicks = to_decimal(values.get("clicks"))
        cost = to_decimal(values.get("cost"))
        conversions = to_decimal(values.get("conversions"))
        conversion_value = to_decimal(values.get("conversion_value"))

        if values.get("ctr") is None and impressions and clicks is not None:
            values["ctr"] = clicks / impressions
        if values.get("cpa") is None and conversions and cost is not None:
            values["cpa"] = cost / conversions
        if values.get("roas") is None and cost and conversion_value is not None:
            values["roas"] = conversion_value / cost

        return values

    @property
    def is_empty(self) -> bool:
        """Check if the snapshot carries no data at all."""
        return all(
            getattr(self, name) is None
            for name in ("impressions", "clicks", "cost", "conversions", "conversion_value")
        )

    @property
    def average_cpc(self) -> Optional[Decimal]:
        """Average cost per click, None without clicks."""
        if not self.clicks or self.cost is None:
            return None
        return self.cost / Decimal(self.clicks)


class Campaign(BaseModel):
    """
    Campaign attributes consumed by the detectors.

    Attributes:
        id: Campaign identifier.
        name: Display name used in alert titles.
        tenant_id: Owning tenant (client account).
        recipient_id: Operator who receives the campaign's alerts.
        daily_budget: Daily budget.
        monthly_budget: Explicit monthly budget, if any.
        target_roas: Target ROAS.
        target_cpa: Target CPA.
        threshold_overrides: Campaign-level threshold overrides.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    id: str = Field(..., min_length=1, description="Campaign identifier")
    name: str = Field(..., description="Display name")
    tenant_id: Optional[str] = Field(default=None, description="Owning tenant")
    recipient_id: str = Field(..., min_length=1, description="Alert recipient")
    daily_budget: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    monthly_budget: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    target_roas: Optional[Decimal] = Field(default=None)
    target_cpa: Optional[Decimal] = Field(default=None)
    threshold_overrides: Dict[str, Decimal] = Field(
        default_factory=dict,
        description="Threshold overrides keyed by threshold name",
    )

    @field_validator("daily_budget", "monthly_budget", "target_roas", "target_cpa", mode="before")
    @classmethod
    def coerce_decimal(cls, v: Any) -> Any:
        """Convert numeric inputs to Decimal."""
        return to_decimal(v)

    @field_validator("threshold_overrides", mode="before")
    @classmethod
    def coerce_overrides(cls, v: Any) -> Any:
        """Normalize override keys to lower case and values to Decimal."""
        if not v:
            return {}
        return {str(key).lower(): to_decimal(value) for key, value in dict(v).items()}

    @property
    def effective_monthly_budget(self) -> Optional[Decimal]:
        """Monthly budget, derived from the daily budget when not explicit."""
        if self.monthly_budget:
            return self.monthly_budget
        if self.daily_budget:
            return self.daily_budget * DAYS_PER_MONTH
        return None


class AlertThresholds(BaseModel):
    """
    Resolved detector thresholds for one campaign.

    Field names match the configuration keys in lower case
    (ROAS_DROP_PERCENT -> roas_drop_percent).

    Example:
        >>> AlertThresholds().burn_rate_threshold
        Decimal('1.3')
    """

    model_config = {"frozen": True, "extra": "forbid"}

    roas_drop_percent: Decimal = Field(default=Decimal("20"), ge=Decimal("0"))
    cpa_above_target_percent: Decimal = Field(default=Decimal("20"), ge=Decimal("0"))
    impression_loss_budget_percent: Decimal = Field(default=Decimal("40"), ge=Decimal("0"))
    impression_loss_rank_percent: Decimal = Field(default=Decimal("50"), ge=Decimal("0"))
    ctr_drop_weeks: int = Field(default=3, ge=2, le=52)
    ctr_drop_min_percent: Decimal = Field(default=Decimal("10"), ge=Decimal("0"))
    burn_rate_threshold: Decimal = Field(default=Decimal("1.3"), gt=Decimal("0"))
    target_cpa: Optional[Decimal] = Field(
        default=None,
        description="Target CPA override, takes precedence over the campaign's",
    )

    @field_validator(
        "roas_drop_percent",
        "cpa_above_target_percent",
        "impression_loss_budget_percent",
        "impression_loss_rank_percent",
        "ctr_drop_min_percent",
        "burn_rate_threshold",
        "target_cpa",
        mode="before",
    )
    @classmethod
    def coerce_decimal(cls, v: Any) -> Any:
        """Convert numeric inputs to Decimal."""
        return to_decimal(v)

    def merged(self, overrides: Optional[Dict[str, Any]]) -> "AlertThresholds":
        """
        Return a copy with the given overrides applied.

        Unknown keys are ignored and keys are matched case-insensitively,
        so both ``ROAS_DROP_PERCENT`` and ``roas_drop_percent`` work.

        Args:
            overrides: Threshold values keyed by name.

        Returns:
            AlertThresholds: Validated thresholds with overrides applied.
        """
        if not overrides:
            return self
        data = self.model_dump()
        for key, value in overrides.items():
            name = str(key).lower()
            if name not in data or value is None:
                continue
            data[name] = int(value) if name == "ctr_drop_weeks" else value
        return AlertThresholds(**data)
