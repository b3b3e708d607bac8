"""
Rendering of alert notifications.

Pure functions that turn alerts into email subjects, HTML and plain-text
bodies, digest emails, and chat message text. Every value interpolated
into HTML is escaped.

Example:
    >>> alert_subject(alert)
    '[CRITICAL] ROAS drop: Brand Search'
"""

from html import escape
from typing import Dict, List, Optional

from adwatch.formatting import format_value
from adwatch.models.alerts import Alert, AlertPriority, AlertType
from adwatch.models.campaign import Campaign


PRIORITY_LABELS: Dict[AlertPriority, str] = {
    AlertPriority.CRITICAL: "Critical",
    AlertPriority.HIGH: "High",
    AlertPriority.MEDIUM: "Medium",
    AlertPriority.LOW: "Low",
}

TYPE_LABELS: Dict[AlertType, str] = {
    AlertType.ROAS_DROP: "ROAS drop",
    AlertType.CPA_HIGH: "High CPA",
    AlertType.BUDGET_LOSS: "Impressions lost to budget",
    AlertType.RANKING_LOSS: "Impressions lost to rank",
    AlertType.CTR_DECLINE: "Declining CTR",
    AlertType.BURN_RATE: "High burn rate",
}

# Box colors per priority (background, border)
_PRIORITY_COLORS: Dict[AlertPriority, tuple] = {
    AlertPriority.CRITICAL: ("#fee2e2", "#dc2626"),
    AlertPriority.HIGH: ("#fef3c7", "#f59e0b"),
    AlertPriority.MEDIUM: ("#dbeafe", "#3b82f6"),
    AlertPriority.LOW: ("#f3f4f6", "#6b7280"),
}

_BASE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>{title}</title>
</head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; color: #333; background-color: #f5f5f5; margin: 0; padding: 0;">
<div style="max-width: 600px; margin: 0 auto; background-color: #ffffff;">
<div style="background-color: #4f46e5; color: #ffffff; padding: 24px; text-align: center;">
<h1 style="margin: 0; font-size: 22px;">Campaign Alerts</h1>
</div>
<div style="padding: 24px;">
{content}
</div>
<div style="background-color: #f9fafb; padding: 16px 24px; text-align: center; font-size: 12px; color: #6b7280;">
{footer}<br>
<a href="{dashboard_url}">Open dashboard</a>
</div>
</div>
</body>
</html>
"""


def _base_html(title: str, content: str, footer: str, dashboard_url: str) -> str:
    return _BASE_HTML.format(
        title=escape(title),
        content=content,
        footer=escape(footer),
        dashboard_url=escape(dashboard_url, quote=True),
    )


def _alert_box(alert: Alert, heading: str, body: str) -> str:
    background, border = _PRIORITY_COLORS[alert.priority]
    return (
        f'<div style="background-color: {background}; border-left: 4px solid {border}; '
        f'padding: 16px; margin: 16px 0;">'
        f"<strong>{escape(heading)}</strong>"
        f"<p>{escape(body)}</p>"
        f"</div>"
    )


def _value_rows(alert: Alert) -> List[tuple]:
    """Label and formatted value of the alert's metrics that are present."""
    rows = []
    for label, value in (
        ("Current value", alert.current_value),
        ("Previous value", alert.previous_value),
        ("Threshold", alert.threshold),
    ):
        if value is not None:
            rows.append((label, format_value(alert.alert_type, value)))
    return rows


# =============================================================================
# SINGLE ALERT
# =============================================================================


def alert_subject(alert: Alert) -> str:
    """Email subject for one alert: ``[PRIORITY] title``."""
    return f"[{alert.priority.value}] {alert.title}"


def campaign_url(dashboard_url: str, campaign_id: str) -> str:
    """Dashboard link to a campaign."""
    return f"{dashboard_url.rstrip('/')}/manager/campaigns/{campaign_id}"


def alert_html(alert: Alert, campaign: Optional[Campaign], dashboard_url: str) -> str:
    """
    HTML body for one alert.

    Args:
        alert: Alert to render.
        campaign: Campaign for its display name, if known.
        dashboard_url: Base dashboard URL for the call-to-action link.

    Returns:
        str: Complete HTML document.
    """
    heading = f"{PRIORITY_LABELS[alert.priority]} priority: {alert.title}"
    parts = [
        "<h2>Campaign alert</h2>",
        _alert_box(alert, heading, alert.message),
        f"<p><strong>Campaign:</strong> {escape(campaign.name if campaign else alert.campaign_id)}</p>",
        f"<p><strong>Type:</strong> {escape(TYPE_LABELS[alert.alert_type])}</p>",
    ]

    rows = _value_rows(alert)
    if rows:
        cells = "".join(
            f'<td style="padding: 12px; text-align: center; background-color: #f9fafb;">'
            f'<div style="font-size: 20px; font-weight: bold;">{escape(value)}</div>'
            f'<div style="font-size: 12px; color: #6b7280;">{escape(label)}</div></td>'
            for label, value in rows
        )
        parts.append(f'<table style="width: 100%;"><tr>{cells}</tr></table>')

    link = campaign_url(dashboard_url, alert.campaign_id)
    parts.append(
        f'<p style="text-align: center;"><a href="{escape(link, quote=True)}" '
        f'style="display: inline-block; padding: 12px 24px; background-color: #4f46e5; '
        f'color: #ffffff; text-decoration: none;">View campaign</a></p>'
    )

    return _base_html(
        title=f"Alert: {alert.title}",
        content="\n".join(parts),
        footer="You receive this alert because you manage this campaign.",
        dashboard_url=dashboard_url,
    )


def alert_text(alert: Alert, campaign: Optional[Campaign], dashboard_url: str) -> str:
    """Plain-text body for one alert."""
    lines = [
        f"{PRIORITY_LABELS[alert.priority]} priority: {alert.title}",
        "",
        alert.message,
        "",
        f"Campaign: {campaign.name if campaign else alert.campaign_id}",
        f"Type: {TYPE_LABELS[alert.alert_type]}",
    ]
    lines.extend(f"{label}: {value}" for label, value in _value_rows(alert))
    lines.extend(["", f"View campaign: {campaign_url(dashboard_url, alert.campaign_id)}"])
    return "\n".join(lines)


def chat_message_text(alert: Alert) -> str:
    """Content of the system chat message for an alert."""
    return f"ALERT: {alert.title}\n\n{alert.message}"


# =============================================================================
# DAILY DIGEST
# =============================================================================


def count_by_priority(alerts: List[Alert]) -> Dict[AlertPriority, int]:
    """Alert counts per priority, every priority present."""
    counts = {priority: 0 for priority in AlertPriority}
    for alert in alerts:
        counts[alert.priority] += 1
    return counts


def digest_subject(alerts: List[Alert]) -> str:
    """Email subject for a daily digest."""
    noun = "alert" if len(alerts) == 1 else "alerts"
    return f"Daily summary: {len(alerts)} {noun} on your campaigns"


def digest_html(recipient_name: Optional[str], alerts: List[Alert], dashboard_url: str) -> str:
    """
    HTML body for a daily digest.

    Shows the counts per priority and a box for every CRITICAL and HIGH
    alert, most urgent first.
    """
    counts = count_by_priority(alerts)
    greeting = f"Hello {recipient_name}," if recipient_name else "Hello,"

    cells = "".join(
        f'<td style="padding: 12px; text-align: center; background-color: #f9fafb;">'
        f'<div style="font-size: 20px; font-weight: bold; color: {_PRIORITY_COLORS[priority][1]};">'
        f"{counts[priority]}</div>"
        f'<div style="font-size: 12px; color: #6b7280;">{PRIORITY_LABELS[priority]}</div></td>'
        for priority in sorted(AlertPriority, key=lambda p: p.rank, reverse=True)
    )

    urgent = sorted(
        (a for a in alerts if a.priority.rank >= AlertPriority.HIGH.rank),
        key=lambda a: (-a.priority.rank, -a.created_at.timestamp()),
    )
    boxes = "".join(_alert_box(alert, alert.title, alert.message) for alert in urgent)

    link = f"{dashboard_url.rstrip('/')}/manager/alerts"
    content = "\n".join(
        [
            "<h2>Daily alert summary</h2>",
            f"<p>{escape(greeting)}</p>",
            "<p>Here is the summary of your campaign alerts from the last 24 hours:</p>",
            f'<table style="width: 100%;"><tr>{cells}</tr></table>',
            "<h3>Critical and high priority</h3>" if urgent else "",
            boxes,
            f'<p style="text-align: center;"><a href="{escape(link, quote=True)}">View all alerts</a></p>',
        ]
    )

    return _base_html(
        title="Daily alert summary",
        content=content,
        footer="You can change your notification preferences in the dashboard.",
        dashboard_url=dashboard_url,
    )


def digest_text(recipient_name: Optional[str], alerts: List[Alert], dashboard_url: str) -> str:
    """Plain-text body for a daily digest."""
    counts = count_by_priority(alerts)
    lines = [
        f"Hello {recipient_name}," if recipient_name else "Hello,",
        "",
        f"{len(alerts)} alerts in the last 24 hours:",
    ]
    lines.extend(
        f"  {PRIORITY_LABELS[priority]}: {counts[priority]}"
        for priority in sorted(AlertPriority, key=lambda p: p.rank, reverse=True)
    )
    for alert in alerts:
        if alert.priority.rank >= AlertPriority.HIGH.rank:
            lines.append(f"- [{alert.priority.value}] {alert.title}")
    lines.extend(["", f"View all alerts: {dashboard_url.rstrip('/')}/manager/alerts"])
    return "\n".join(lines)
