"""
Anomaly detectors.

Each detector is a stateless, pure object implementing the same contract:
``detect(context) -> Optional[AlertCandidate]``. The set is closed: the
orchestrator holds the static lists defined at the bottom of this module.

Key Features:
    - ROAS drop versus the previous period
    - CPA above target
    - Impression share lost to budget and to rank
    - Multi-week CTR decline
    - Month-to-date burn rate against a linear budget pace

Note:
    Uses Decimal for all financial comparisons.

Example:
    >>> context = DetectionContext(
    ...     campaign=campaign,
    ...     current=current,
    ...     previous=previous,
    ...     weekly=weekly,
    ...     thresholds=AlertThresholds(),
    ...     as_of=date(2024, 5, 10),
    ... )
    >>> candidate = RoasDropDetector().detect(context)
"""

import calendar
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field

from adwatch.detection.priority import classify_priority
from adwatch.formatting import format_fraction, format_money, format_ratio
from adwatch.models.alerts import (
    AlertCandidate,
    AlertType,
    BudgetLossDetail,
    BurnRateDetail,
    CpaHighDetail,
    CtrDeclineDetail,
    RankLossDetail,
    RoasDropDetail,
    WeeklyCtrPoint,
)
from adwatch.models.campaign import AlertThresholds, Campaign, MetricsSnapshot

logger = structlog.get_logger(__name__)


_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def pct_change(current: Decimal, previous: Decimal) -> Decimal:
    """
    Percentage change from ``previous`` to ``current``.

    A zero baseline yields 100 when the current value is positive and 0
    otherwise.

    Example:
        >>> pct_change(Decimal("1.8"), Decimal("3.0"))
        Decimal('-40')
    """
    if previous == 0:
        return _HUNDRED if current > 0 else _ZERO
    return (current - previous) / previous * _HUNDRED


def normalize_share(value: Decimal) -> Decimal:
    """Express an impression share as a percent (fractions <= 1 are scaled)."""
    return value * _HUNDRED if value <= 1 else value


class DetectionContext(BaseModel):
    """
    Everything a detector may look at for one campaign.

    Attributes:
        campaign: Campaign under evaluation.
        current: Latest metrics.
        previous: Comparison-period metrics.
        weekly: Weekly series, most recent first.
        thresholds: Resolved thresholds.
        as_of: Evaluation date (drives month pacing).
    """

    model_config = {"frozen": True, "extra": "forbid"}

    campaign: Campaign
    current: MetricsSnapshot = Field(default_factory=MetricsSnapshot)
    previous: MetricsSnapshot = Field(default_factory=MetricsSnapshot)
    weekly: List[MetricsSnapshot] = Field(default_factory=list)
    thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    as_of: date


class Detector(ABC):
    """
    Base class for anomaly detectors.

    Subclasses set ``alert_type`` and implement ``detect``. The helper
    ``_candidate`` classifies priority from the magnitude so every
    detector shares the same scoring.

    ``reads_previous`` and ``reads_weekly`` declare which history the
    detector looks at; the orchestrator fetches only what a detector set
    reads.
    """

    alert_type: AlertType
    reads_previous: bool = False
    reads_weekly: bool = False

    @abstractmethod
    def detect(self, context: DetectionContext) -> Optional[AlertCandidate]:
        """
        Evaluate the campaign.

        Args:
            context: Campaign, snapshots and thresholds.

        Returns:
            Optional[AlertCandidate]: A candidate if the condition is met.
        """
        pass

    def _candidate(self, magnitude: Decimal, **fields) -> AlertCandidate:
        return AlertCandidate(
            alert_type=self.alert_type,
            priority=classify_priority(self.alert_type, magnitude),
            magnitude=magnitude,
            **fields,
        )


class RoasDropDetector(Detector):
    """Fires when ROAS fell by at least the threshold percent."""

    alert_type = AlertType.ROAS_DROP
    reads_previous = True

    def detect(self, context: DetectionContext) -> Optional[AlertCandidate]:
        current = context.current.roas
        previous = context.previous.roas
        if current is None or previous is None:
            return None

        threshold = context.thresholds.roas_drop_percent
        change = pct_change(current, previous)
        if change > -threshold:
            return None

        drop = abs(change)
        return self._candidate(
            drop,
            title=f"ROAS drop: {context.campaign.name}",
            message=(
                f"ROAS fell {drop:.1f}% versus the previous period. "
                f"Current ROAS: {format_ratio(current)}, previous: {format_ratio(previous)}"
            ),
            threshold=threshold,
            current_value=current,
            previous_value=previous,
            detail=RoasDropDetail(
                drop_percent=drop,
                conversion_value=context.current.conversion_value,
                cost=context.current.cost,
            ),
        )


class CpaHighDetector(Detector):
    """Fires when CPA is above target by more than the threshold percent."""

    alert_type = AlertType.CPA_HIGH

    def detect(self, context: DetectionContext) -> Optional[AlertCandidate]:
        target = context.thresholds.target_cpa or context.campaign.target_cpa
        cpa = context.current.cpa
        if target is None or target <= 0 or cpa is None:
            return None

        threshold = context.thresholds.cpa_above_target_percent
        above = pct_change(cpa, target)
        if above <= threshold:
            return None

        return self._candidate(
            above,
            title=f"High CPA: {context.campaign.name}",
            message=(
                f"CPA is {above:.1f}% above target. "
                f"Current CPA: {format_money(cpa)}, target: {format_money(target)}"
            ),
            threshold=target * (1 + threshold / _HUNDRED),
            current_value=cpa,
            previous_value=target,
            detail=CpaHighDetail(
                percent_above=above,
                target_cpa=target,
                conversions=context.current.conversions,
                cost=context.current.cost,
            ),
        )


class BudgetLossDetector(Detector):
    """Fires when the impression share lost to budget reaches the threshold."""

    alert_type = AlertType.BUDGET_LOSS

    def detect(self, context: DetectionContext) -> Optional[AlertCandidate]:
        lost = context.current.lost_is_budget
        if lost is None:
            return None

        threshold = context.thresholds.impression_loss_budget_percent
        lost_percent = normalize_share(lost)
        if lost_percent < threshold:
            return None

        return self._candidate(
            lost_percent,
            title=f"Impressions lost to budget: {context.campaign.name}",
            message=(
                f"The campaign is losing {lost_percent:.1f}% of impressions to a limited budget. "
                f"Consider raising the daily budget to capture more demand."
            ),
            threshold=threshold,
            current_value=lost_percent,
            detail=BudgetLossDetail(
                lost_percent=lost_percent,
                impressions=context.current.impressions,
                cost=context.current.cost,
                daily_budget=context.campaign.daily_budget,
            ),
        )


class RankLossDetector(Detector):
    """Fires when the impression share lost to rank reaches the threshold."""

    alert_type = AlertType.RANKING_LOSS

    def detect(self, context: DetectionContext) -> Optional[AlertCandidate]:
        lost = context.current.lost_is_rank
        if lost is None:
            return None

        threshold = context.thresholds.impression_loss_rank_percent
        lost_percent = normalize_share(lost)
        if lost_percent < threshold:
            return None

        return self._candidate(
            lost_percent,
            title=f"Impressions lost to rank: {context.campaign.name}",
            message=(
                f"The campaign is losing {lost_percent:.1f}% of impressions to low ad rank. "
                f"Review ad quality and consider adjusting bids."
            ),
            threshold=threshold,
            current_value=lost_percent,
            detail=RankLossDetail(
                lost_percent=lost_percent,
                impressions=context.current.impressions,
                clicks=context.current.clicks,
                average_cpc=context.current.average_cpc,
            ),
        )


class CtrDeclineDetector(Detector):
    """
    Fires when CTR dropped for enough consecutive weeks.

    Walks the weekly series from the most recent week backward and counts
    week-over-week drops steeper than the minimum drop percent. The walk
    stops at the first week that does not qualify, at a week without CTR,
    or once ``ctr_drop_weeks - 1`` drops have been counted.
    """

    alert_type = AlertType.CTR_DECLINE
    reads_weekly = True

    def detect(self, context: DetectionContext) -> Optional[AlertCandidate]:
        weekly = context.weekly
        min_weeks = context.thresholds.ctr_drop_weeks
        if len(weekly) < min_weeks:
            return None

        required = min_weeks - 1
        drops = self._consecutive_drops(weekly, required, context.thresholds.ctr_drop_min_percent)
        if drops < required:
            return None

        latest = weekly[0].ctr
        oldest = weekly[drops].ctr
        overall = abs(pct_change(latest, oldest))

        return self._candidate(
            overall,
            title=f"Declining CTR: {context.campaign.name}",
            message=(
                f"CTR has dropped for {drops} consecutive weeks, {overall:.1f}% in total. "
                f"Current CTR: {format_fraction(latest)}, {drops} weeks ago: {format_fraction(oldest)}"
            ),
            threshold=Decimal(min_weeks),
            current_value=latest * _HUNDRED,
            previous_value=oldest * _HUNDRED,
            detail=CtrDeclineDetail(
                consecutive_drops=drops,
                overall_drop_percent=overall,
                weekly=[
                    WeeklyCtrPoint(
                        ctr_percent=week.ctr * _HUNDRED if week.ctr is not None else None,
                        impressions=week.impressions,
                        clicks=week.clicks,
                    )
                    for week in weekly
                ],
            ),
        )

    @staticmethod
    def _consecutive_drops(
        weekly: Sequence[MetricsSnapshot],
        required: int,
        min_drop: Decimal,
    ) -> int:
        drops = 0
        for newer, older in zip(weekly, weekly[1:]):
            if drops >= required:
                break
            if newer.ctr is None or older.ctr is None:
                break
            if pct_change(newer.ctr, older.ctr) < -min_drop:
                drops += 1
            else:
                break
        return drops


class BurnRateDetector(Detector):
    """
    Fires when month-to-date spend runs ahead of a linear budget pace.

    burn_rate = actual_spend / (monthly_budget * day_of_month / days_in_month)
    """

    alert_type = AlertType.BURN_RATE

    def detect(self, context: DetectionContext) -> Optional[AlertCandidate]:
        monthly_budget = context.campaign.effective_monthly_budget
        current = context.current
        actual = current.month_to_date_cost if current.month_to_date_cost is not None else current.cost
        if not monthly_budget or not actual or actual <= 0:
            return None

        day, days_in_month = self._month_position(context.as_of)
        expected = monthly_budget * day / days_in_month
        burn_rate = actual / expected

        threshold = context.thresholds.burn_rate_threshold
        if burn_rate < threshold:
            return None

        projected = actual * days_in_month / day
        overspend = projected - monthly_budget
        excess = (burn_rate - 1) * _HUNDRED

        return self._candidate(
            burn_rate,
            title=f"High burn rate: {context.campaign.name}",
            message=(
                f"Spend is {excess:.0f}% ahead of the ideal pace. "
                f"Spent so far: {format_money(actual)} (expected: {format_money(expected)}). "
                f"At this pace the month closes at {format_money(projected)} "
                f"(budget: {format_money(monthly_budget)})."
            ),
            threshold=threshold,
            current_value=burn_rate,
            previous_value=Decimal("1"),
            detail=BurnRateDetail(
                actual_spend=actual,
                expected_spend=expected,
                monthly_budget=monthly_budget,
                projected_monthly_spend=projected,
                projected_overspend=overspend,
                day_of_month=day,
                days_in_month=days_in_month,
            ),
        )

    @staticmethod
    def _month_position(as_of: date) -> Tuple[int, int]:
        return as_of.day, calendar.monthrange(as_of.year, as_of.month)[1]


# Static detector lists, in evaluation order
ALL_DETECTORS: Tuple[Detector, ...] = (
    RoasDropDetector(),
    CpaHighDetector(),
    BudgetLossDetector(),
    RankLossDetector(),
    CtrDeclineDetector(),
    BurnRateDetector(),
)

CRITICAL_PASS_DETECTORS: Tuple[Detector, ...] = (
    BurnRateDetector(),
    BudgetLossDetector(),
)


def run_detectors(
    detectors: Sequence[Detector],
    context: DetectionContext,
) -> List[AlertCandidate]:
    """
    Run detectors against one context and merge their candidates.

    A detector that raises is logged and skipped; the others still run.

    Args:
        detectors: Detectors to run.
        context: Shared detection context.

    Returns:
        List[AlertCandidate]: Candidates in detector order.
    """
    candidates: List[AlertCandidate] = []

    for detector in detectors:
        try:
            candidate = detector.detect(context)
        except Exception as e:
            logger.error(
                "detector_failed",
                detector=detector.alert_type.value,
                campaign_id=context.campaign.id,
                error=str(e),
            )
            continue

        if candidate is not None:
            logger.info(
                "alert_condition_met",
                alert_type=candidate.alert_type.value,
                campaign_id=context.campaign.id,
                priority=candidate.priority.value,
                magnitude=str(candidate.magnitude),
            )
            candidates.append(candidate)

    return candidates
