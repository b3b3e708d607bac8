"""
Abstract interfaces for the alert engine's external collaborators.

All collaborators are injected explicitly into the components that use
them; the engine keeps no module-level clients.

Example:
    >>> from adwatch.interfaces import MetricsProvider
    >>> class WarehouseMetrics(MetricsProvider):
    ...     async def get_current(self, campaign_id: str) -> MetricsSnapshot:
    ...         ...
    ...     # ... implement other abstract methods

Modules:
    metrics_provider: MetricsProvider and CampaignSource
    alert_store: AlertStore
    notifications: RealtimePublisher, EmailSender and ChatPoster
"""

from adwatch.interfaces.alert_store import AlertStore
from adwatch.interfaces.metrics_provider import CampaignSource, MetricsProvider
from adwatch.interfaces.notifications import ChatPoster, EmailSender, RealtimePublisher

__all__: list[str] = [
    "AlertStore",
    "CampaignSource",
    "ChatPoster",
    "EmailSender",
    "MetricsProvider",
    "RealtimePublisher",
]
