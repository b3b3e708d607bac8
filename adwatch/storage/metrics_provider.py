"""
PostgreSQL-backed MetricsProvider and CampaignSource.

Metrics are read from the daily ``campaign_metrics`` rows collected by
the surrounding product; campaigns from ``campaigns`` joined to their
owning client. Client exceptions become ProviderError.
"""

from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional, TypeVar

from adwatch.errors import ProviderError
from adwatch.interfaces.metrics_provider import CampaignSource, MetricsProvider
from adwatch.models.alerts import utc_now
from adwatch.models.campaign import Campaign, MetricsSnapshot
from adwatch.storage.postgres_client import PostgresClient, PostgresClientError, previous_period

T = TypeVar("T")


async def _provider_call(operation: str, awaitable: Awaitable[T], **details: object) -> T:
    try:
        return await awaitable
    except PostgresClientError as e:
        raise ProviderError(f"{operation} failed: {e}", operation=operation, **details) from e


class PostgresMetricsProvider(MetricsProvider):
    """
    Reads campaign metrics from daily rows.

    Attributes:
        client: Connected PostgresClient.
    """

    def __init__(self, client: PostgresClient, clock: Callable[[], datetime] = utc_now) -> None:
        self.client = client
        self._clock = clock

    def _today(self) -> date:
        return self._clock().date()

    async def get_current(self, campaign_id: str) -> MetricsSnapshot:
        return await _provider_call(
            "get_current",
            self.client.fetch_latest_metrics(campaign_id, self._today()),
            campaign_id=campaign_id,
        )

    async def get_previous(self, campaign_id: str, lookback_days: int) -> MetricsSnapshot:
        start, end = previous_period(self._today(), lookback_days)
        return await _provider_call(
            "get_previous",
            self.client.fetch_aggregated_metrics(campaign_id, start, end),
            campaign_id=campaign_id,
        )

    async def get_weekly(self, campaign_id: str, weeks: int) -> List[MetricsSnapshot]:
        return await _provider_call(
            "get_weekly",
            self.client.fetch_weekly_metrics(campaign_id, weeks, self._today()),
            campaign_id=campaign_id,
        )


class PostgresCampaignSource(CampaignSource):
    """Reads enabled campaigns of active clients."""

    def __init__(self, client: PostgresClient) -> None:
        self.client = client

    async def list_eligible(self) -> List[Campaign]:
        return await _provider_call("list_eligible", self.client.query_eligible_campaigns())

    async def get(self, campaign_id: str) -> Optional[Campaign]:
        return await _provider_call(
            "get_campaign",
            self.client.fetch_campaign(campaign_id),
            campaign_id=campaign_id,
        )
