"""
Priority classifier shared by all detectors.

Maps a detector type and its deviation magnitude to a priority level.
Magnitudes are absolute deviation percents, except for the burn rate
detector which passes the raw spend ratio.

Tables:
    Impression loss (budget, rank):  >=60 CRITICAL, >=40 HIGH, else MEDIUM
    Burn rate (ratio):               >=1.5 CRITICAL, >=1.3 HIGH, else MEDIUM
    Everything else:                 >=50 CRITICAL, >=30 HIGH, >=20 MEDIUM, else LOW

Example:
    >>> classify_priority(AlertType.ROAS_DROP, Decimal("40"))
    <AlertPriority.HIGH: 'HIGH'>
"""

from decimal import Decimal
from typing import FrozenSet, List, Tuple

from adwatch.models.alerts import AlertPriority, AlertType


# Detectors whose breach is costly even at moderate magnitudes
HIGH_STAKES_TYPES: FrozenSet[AlertType] = frozenset(
    {AlertType.BUDGET_LOSS, AlertType.RANKING_LOSS}
)

# (minimum magnitude, priority), checked top to bottom
HIGH_STAKES_BUCKETS: List[Tuple[Decimal, AlertPriority]] = [
    (Decimal("60"), AlertPriority.CRITICAL),
    (Decimal("40"), AlertPriority.HIGH),
]

BURN_RATE_BUCKETS: List[Tuple[Decimal, AlertPriority]] = [
    (Decimal("1.5"), AlertPriority.CRITICAL),
    (Decimal("1.3"), AlertPriority.HIGH),
]

DEFAULT_BUCKETS: List[Tuple[Decimal, AlertPriority]] = [
    (Decimal("50"), AlertPriority.CRITICAL),
    (Decimal("30"), AlertPriority.HIGH),
    (Decimal("20"), AlertPriority.MEDIUM),
]


def _bucket(
    magnitude: Decimal,
    buckets: List[Tuple[Decimal, AlertPriority]],
    floor: AlertPriority,
) -> AlertPriority:
    for minimum, priority in buckets:
        if magnitude >= minimum:
            return priority
    return floor


def classify_priority(alert_type: AlertType, magnitude: Decimal) -> AlertPriority:
    """
    Classify a deviation into a priority level.

    Args:
        alert_type: Detector that produced the deviation.
        magnitude: Absolute deviation percent, or the burn rate ratio.

    Returns:
        AlertPriority: Priority for the candidate.
    """
    magnitude = abs(magnitude)

    if alert_type == AlertType.BURN_RATE:
        return _bucket(magnitude, BURN_RATE_BUCKETS, AlertPriority.MEDIUM)

    if alert_type in HIGH_STAKES_TYPES:
        return _bucket(magnitude, HIGH_STAKES_BUCKETS, AlertPriority.MEDIUM)

    return _bucket(magnitude, DEFAULT_BUCKETS, AlertPriority.LOW)
