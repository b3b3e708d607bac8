"""
Abstract base classes for the campaign data collaborators.

The engine never collects metrics from an ads platform itself. It reads
already-collected metric snapshots through a MetricsProvider and the list
of campaigns to evaluate through a CampaignSource.

Example:
    >>> class WarehouseMetrics(MetricsProvider):
    ...     async def get_current(self, campaign_id: str) -> MetricsSnapshot:
    ...         row = await self._query_latest(campaign_id)
    ...         return MetricsSnapshot(**row)
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from adwatch.models.campaign import Campaign, MetricsSnapshot


class MetricsProvider(ABC):
    """
    Supplies point-in-time and historical metric snapshots per campaign.

    Implementations raise ProviderError when the underlying source fails.
    Missing data is not an error: return an empty snapshot or a shorter
    series and the detectors skip what they cannot evaluate.

    Note:
        All financial values in returned snapshots use Decimal.
    """

    @abstractmethod
    async def get_current(self, campaign_id: str) -> MetricsSnapshot:
        """
        Get the most recent metrics for a campaign.

        The snapshot should also carry ``month_to_date_cost`` when the
        source can compute it, for the burn rate detector.

        Args:
            campaign_id: Campaign identifier.

        Returns:
            MetricsSnapshot: Latest metrics, possibly empty.

        Raises:
            ProviderError: If the source cannot be queried.
        """
        pass

    @abstractmethod
    async def get_previous(self, campaign_id: str, lookback_days: int) -> MetricsSnapshot:
        """
        Get metrics for the comparison period.

        The comparison period is the ``lookback_days`` window that ends
        ``lookback_days`` ago, e.g. with 7 the window from 14 to 7 days ago.

        Args:
            campaign_id: Campaign identifier.
            lookback_days: Size of the comparison window in days.

        Returns:
            MetricsSnapshot: Aggregated comparison metrics, possibly empty.

        Raises:
            ProviderError: If the source cannot be queried.
        """
        pass

    @abstractmethod
    async def get_weekly(self, campaign_id: str, weeks: int) -> List[MetricsSnapshot]:
        """
        Get weekly aggregates, most recent week first.

        Gaps are allowed and a series shorter than ``weeks`` is valid.

        Args:
            campaign_id: Campaign identifier.
            weeks: Number of weeks requested.

        Returns:
            List[MetricsSnapshot]: Up to ``weeks`` snapshots.

        Raises:
            ProviderError: If the source cannot be queried.
        """
        pass


class CampaignSource(ABC):
    """
    Read-only access to the campaigns the engine evaluates.
    """

    @abstractmethod
    async def list_eligible(self) -> List[Campaign]:
        """
        List campaigns eligible for analysis.

        A campaign is eligible when its own status is active and its
        tenant is active.

        Returns:
            List[Campaign]: Eligible campaigns.

        Raises:
            ProviderError: If the source cannot be queried.
        """
        pass

    @abstractmethod
    async def get(self, campaign_id: str) -> Optional[Campaign]:
        """
        Get a single campaign regardless of eligibility.

        Args:
            campaign_id: Campaign identifier.

        Returns:
            Optional[Campaign]: The campaign, or None if it does not exist.

        Raises:
            ProviderError: If the source cannot be queried.
        """
        pass
