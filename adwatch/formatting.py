"""
Value formatting shared by alert messages and rendered notifications.

Example:
    >>> format_money(Decimal("1234.5"))
    '1,234.50'
    >>> format_value(AlertType.BURN_RATE, Decimal("1.6"))
    '160%'
"""

from decimal import Decimal
from typing import Optional

from adwatch.models.alerts import AlertType


def format_money(value: Optional[Decimal]) -> str:
    """Format an amount with thousands separators and two decimals."""
    return f"{(value or Decimal('0')):,.2f}"


def format_percent(value: Optional[Decimal], places: int = 1) -> str:
    """Format a value that is already a percent."""
    if value is None:
        return "N/A"
    return f"{value:.{places}f}%"


def format_ratio(value: Optional[Decimal]) -> str:
    """Format a ROAS-style multiple (1.80x)."""
    if value is None:
        return "N/A"
    return f"{value:.2f}x"


def format_fraction(value: Optional[Decimal]) -> str:
    """Format a fraction as a percent with two decimals (0.0512 -> 5.12%)."""
    if value is None:
        return "N/A"
    return f"{value * 100:.2f}%"


def format_value(alert_type: AlertType, value: Optional[Decimal]) -> str:
    """
    Format an alert's current, previous or threshold value for display.

    Args:
        alert_type: Alert type the value belongs to.
        value: The value, or None.

    Returns:
        str: Display string, "N/A" when missing.
    """
    if value is None:
        return "N/A"
    if alert_type == AlertType.ROAS_DROP:
        return format_ratio(value)
    if alert_type == AlertType.CPA_HIGH:
        return format_money(value)
    if alert_type in (AlertType.BUDGET_LOSS, AlertType.RANKING_LOSS, AlertType.CTR_DECLINE):
        return format_percent(value)
    if alert_type == AlertType.BURN_RATE:
        return f"{value * 100:.0f}%"
    return f"{value:.2f}"
