"""
Abstract base class for alert persistence.

The AlertStore is the only place alerts live. The deduplicator, dispatcher,
lifecycle manager and maintenance jobs all mutate alerts through this
narrow interface.

Concurrency:
    ``locked(campaign_id, alert_type)`` returns a scope in which the
    lookup-then-write of the deduplicator runs as one logical transaction.
    Two concurrent scopes for the same pair never overlap.

Example:
    >>> async with store.locked("cmp-1", AlertType.ROAS_DROP) as tx:
    ...     existing = await tx.find_active_since("cmp-1", AlertType.ROAS_DROP, since)
    ...     if existing is None:
    ...         await tx.create(alert)
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncContextManager, Dict, List, Optional, Sequence, Tuple

from adwatch.models.alerts import (
    Alert,
    AlertFilters,
    AlertStats,
    AlertStatus,
    AlertType,
    Pagination,
)


class AlertStore(ABC):
    """
    Persists Alert entities and answers the engine's queries.

    Every method raises PersistenceError when the backing store fails.
    Status preconditions are enforced by the callers, not by the store.
    """

    @abstractmethod
    async def ping(self) -> bool:
        """
        Check the store is reachable.

        Returns:
            bool: True if the store answers.
        """
        pass

    @abstractmethod
    def locked(self, campaign_id: str, alert_type: AlertType) -> AsyncContextManager["AlertStore"]:
        """
        Open a serialized scope for one (campaign, type) pair.

        The yielded store must be used for every read and write inside the
        scope. Writes commit when the scope exits normally.

        Args:
            campaign_id: Campaign identifier.
            alert_type: Alert type.

        Returns:
            AsyncContextManager[AlertStore]: Scope yielding a bound store.
        """
        pass

    @abstractmethod
    async def find_active_since(
        self,
        campaign_id: str,
        alert_type: AlertType,
        since: datetime,
    ) -> Optional[Alert]:
        """
        Find the newest ACTIVE alert for the pair created at or after ``since``.

        Returns:
            Optional[Alert]: The alert, or None.
        """
        pass

    @abstractmethod
    async def create(self, alert: Alert) -> Alert:
        """
        Insert a new alert.

        Returns:
            Alert: The alert as stored.
        """
        pass

    @abstractmethod
    async def update(self, alert_id: str, fields: Dict[str, Any]) -> Alert:
        """
        Update fields of an alert.

        Args:
            alert_id: Alert identifier.
            fields: Field names (as on Alert) and their new values.

        Returns:
            Alert: The updated alert.

        Raises:
            NotFoundError: If the alert does not exist.
        """
        pass

    @abstractmethod
    async def get(self, alert_id: str) -> Optional[Alert]:
        """Get an alert by id, or None."""
        pass

    @abstractmethod
    async def list(
        self,
        recipient_id: str,
        filters: AlertFilters,
        pagination: Pagination,
    ) -> Tuple[List[Alert], int]:
        """
        List a recipient's alerts.

        Ordering: unread first, then priority descending, then newest first.

        Returns:
            Tuple[List[Alert], int]: The page of alerts and the total count.
        """
        pass

    @abstractmethod
    async def update_status(
        self,
        alert_id: str,
        status: AlertStatus,
        changed_at: datetime,
    ) -> Alert:
        """
        Move an alert to ``status``.

        Also writes the lifecycle fields that go with the status:
        read state for ACKNOWLEDGED, ``resolved_at`` for terminal ones.

        Returns:
            Alert: The updated alert.

        Raises:
            NotFoundError: If the alert does not exist.
        """
        pass

    @abstractmethod
    async def mark_read(
        self,
        recipient_id: str,
        alert_ids: Optional[Sequence[str]],
        read_at: datetime,
    ) -> int:
        """
        Mark a recipient's unread alerts as read.

        Args:
            recipient_id: Owner of the alerts.
            alert_ids: Alerts to mark, or None for all of them.
            read_at: Read timestamp.

        Returns:
            int: Number of alerts changed.
        """
        pass

    @abstractmethod
    async def delete(self, alert_id: str) -> None:
        """Delete an alert. The caller checks the status precondition."""
        pass

    @abstractmethod
    async def stats(self, recipient_id: str, since: datetime) -> AlertStats:
        """
        Aggregate a recipient's alerts.

        Active and unread counts cover all time; the per-status, priority
        and type breakdowns cover alerts created since ``since``.
        """
        pass

    @abstractmethod
    async def purge_terminal(self, before: datetime) -> int:
        """
        Delete RESOLVED and DISMISSED alerts closed before ``before``.

        Returns:
            int: Number of alerts deleted.
        """
        pass

    @abstractmethod
    async def recipients_with_alerts_since(self, since: datetime) -> List[str]:
        """List recipients that have alerts created since ``since``."""
        pass

    @abstractmethod
    async def list_since(self, recipient_id: str, since: datetime) -> List[Alert]:
        """List a recipient's alerts created since ``since``, newest first."""
        pass
