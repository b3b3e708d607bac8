"""
Alert lifecycle management for operator actions.

This module provides the AlertLifecycleManager class which applies the
read, acknowledge, resolve, dismiss and delete actions an operator takes
on their alerts, and answers their list and stats queries.

Every operation is scoped to one recipient: an alert owned by someone
else raises PermissionDeniedError, a missing one NotFoundError.

Status transitions:
    ACTIVE       -> ACKNOWLEDGED | RESOLVED | DISMISSED
    ACKNOWLEDGED -> RESOLVED | DISMISSED
    RESOLVED, DISMISSED: terminal

Example:
    >>> lifecycle = AlertLifecycleManager(store)
    >>> alert = await lifecycle.acknowledge("user-7", alert_id)
    >>> alert.is_read
    True
"""

from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

import structlog

from adwatch.errors import (
    NotFoundError,
    PermissionDeniedError,
    PreconditionError,
    ValidationError,
    validate_identifier,
    validate_identifiers,
)
from adwatch.interfaces.alert_store import AlertStore
from adwatch.models.alerts import (
    Alert,
    AlertFilters,
    AlertPage,
    AlertStats,
    AlertStatus,
    Pagination,
    utc_now,
)

logger = structlog.get_logger(__name__)


DEFAULT_STATS_WINDOW_DAYS = 7


class AlertLifecycleManager:
    """
    Applies operator actions to alerts.

    Attributes:
        store: Alert persistence.
    """

    def __init__(self, store: AlertStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self._clock = clock

    # =========================================================================
    # READ STATE
    # =========================================================================

    async def mark_as_read(self, recipient_id: str, alert_id: str) -> Alert:
        """
        Mark one alert as read.

        Returns:
            Alert: The alert, unchanged if it was already read.
        """
        alert = await self._get_owned(recipient_id, alert_id)
        if alert.is_read:
            return alert

        count = await self.store.mark_read(alert.recipient_id, [alert.id], self._clock())
        logger.debug("alert_marked_read", alert_id=alert.id, changed=count)
        return await self._reload(alert.id)

    async def mark_all_as_read(self, recipient_id: str) -> int:
        """
        Mark every unread alert of the recipient as read.

        Returns:
            int: Number of alerts changed.
        """
        recipient_id = validate_identifier(recipient_id, "recipient_id")
        count = await self.store.mark_read(recipient_id, None, self._clock())
        logger.info("alerts_marked_read", recipient_id=recipient_id, count=count)
        return count

    async def mark_multiple_as_read(self, recipient_id: str, alert_ids: Sequence[str]) -> int:
        """
        Mark the given alerts as read.

        Ids that do not exist or belong to another recipient are not
        touched; the store only updates the recipient's own alerts.

        Returns:
            int: Number of alerts changed.

        Raises:
            ValidationError: If the list is empty or an id is malformed.
        """
        recipient_id = validate_identifier(recipient_id, "recipient_id")
        ids = validate_identifiers(alert_ids, "alert_ids")
        count = await self.store.mark_read(recipient_id, ids, self._clock())
        logger.info("alerts_marked_read", recipient_id=recipient_id, requested=len(ids), count=count)
        return count

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    async def acknowledge(self, recipient_id: str, alert_id: str) -> Alert:
        """Move an alert to ACKNOWLEDGED; it is also marked read."""
        return await self._transition(recipient_id, alert_id, AlertStatus.ACKNOWLEDGED)

    async def resolve(self, recipient_id: str, alert_id: str) -> Alert:
        """Move an alert to RESOLVED and stamp ``resolved_at``."""
        return await self._transition(recipient_id, alert_id, AlertStatus.RESOLVED)

    async def dismiss(self, recipient_id: str, alert_id: str) -> Alert:
        """Move an alert to DISMISSED and stamp ``resolved_at``."""
        return await self._transition(recipient_id, alert_id, AlertStatus.DISMISSED)

    async def _transition(self, recipient_id: str, alert_id: str, target: AlertStatus) -> Alert:
        alert = await self._get_owned(recipient_id, alert_id)

        if alert.status == target:
            return alert
        if not alert.status.can_transition_to(target):
            raise PreconditionError(
                f"Cannot move alert from {alert.status.value} to {target.value}",
                alert_id=alert.id,
                status=alert.status.value,
                target=target.value,
            )

        updated = await self.store.update_status(alert.id, target, self._clock())
        logger.info(
            "alert_status_changed",
            alert_id=alert.id,
            recipient_id=alert.recipient_id,
            from_status=alert.status.value,
            to_status=target.value,
        )
        return updated

    async def delete(self, recipient_id: str, alert_id: str) -> None:
        """
        Delete a resolved or dismissed alert.

        Raises:
            PreconditionError: If the alert is still ACTIVE or ACKNOWLEDGED.
        """
        alert = await self._get_owned(recipient_id, alert_id)
        if not alert.is_deletable:
            raise PreconditionError(
                "Only resolved or dismissed alerts can be deleted",
                alert_id=alert.id,
                status=alert.status.value,
            )

        await self.store.delete(alert.id)
        logger.info("alert_deleted", alert_id=alert.id, recipient_id=alert.recipient_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list(
        self,
        recipient_id: str,
        filters: Optional[AlertFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> AlertPage:
        """
        List the recipient's alerts.

        Ordering is unread first, then priority descending, then newest
        first.

        Args:
            recipient_id: Owner of the alerts.
            filters: Optional filters.
            pagination: Page selection, first page of 20 by default.

        Returns:
            AlertPage: The page with totals.
        """
        recipient_id = validate_identifier(recipient_id, "recipient_id")
        filters = filters or AlertFilters()
        pagination = pagination or Pagination()
        if filters.campaign_id is not None:
            validate_identifier(filters.campaign_id, "campaign_id")
        if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
            raise ValidationError("start_date must not be after end_date", field="start_date")

        alerts, total = await self.store.list(recipient_id, filters, pagination)
        return AlertPage(alerts=alerts, total=total, page=pagination.page, limit=pagination.limit)

    async def stats(self, recipient_id: str, window_days: int = DEFAULT_STATS_WINDOW_DAYS) -> AlertStats:
        """
        Aggregate the recipient's alerts over a trailing window.

        Raises:
            ValidationError: If the window is not positive.
        """
        recipient_id = validate_identifier(recipient_id, "recipient_id")
        if window_days < 1:
            raise ValidationError("window_days must be positive", field="window_days")

        since = self._clock() - timedelta(days=window_days)
        stats = await self.store.stats(recipient_id, since)
        return stats.model_copy(update={"window_days": window_days})

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_owned(self, recipient_id: str, alert_id: str) -> Alert:
        recipient_id = validate_identifier(recipient_id, "recipient_id")
        alert_id = validate_identifier(alert_id, "alert_id")

        alert = await self.store.get(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert not found: {alert_id}", alert_id=alert_id)
        if alert.recipient_id != recipient_id:
            logger.warning(
                "alert_access_denied",
                alert_id=alert_id,
                recipient_id=recipient_id,
            )
            raise PermissionDeniedError(
                "Alert belongs to another recipient",
                alert_id=alert_id,
            )
        return alert

    async def _reload(self, alert_id: str) -> Alert:
        alert = await self.store.get(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert not found: {alert_id}", alert_id=alert_id)
        return alert
