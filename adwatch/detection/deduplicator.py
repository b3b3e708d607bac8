"""
Alert deduplication and upsert.

Turns detector candidates into persisted alerts while guaranteeing that a
(campaign, type) pair has at most one ACTIVE alert inside the dedup window.

Decision:
    - No ACTIVE alert for the pair in the window: create one.
    - One exists and the current value moved by more than the refresh
      delta: refresh its values in place (same id).
    - One exists and the value barely moved: return it unchanged.

The lookup and the write run inside ``store.locked(...)`` so concurrent
upserts for the same pair are serialized.

Example:
    >>> dedup = AlertDeduplicator(store)
    >>> alert = await dedup.upsert(candidate, "cmp-1", "user-7")
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

import structlog

from adwatch.errors import AlertEngineError, PersistenceError, validate_identifier
from adwatch.interfaces.alert_store import AlertStore
from adwatch.models.alerts import Alert, AlertCandidate, utc_now
from adwatch.models.results import UpsertOutcome, UpsertResult

logger = structlog.get_logger(__name__)


DEFAULT_DEDUP_WINDOW_HOURS = 24
DEFAULT_REFRESH_DELTA = Decimal("0.1")


class AlertDeduplicator:
    """
    Upserts detector candidates into the alert store.

    Attributes:
        store: Alert persistence.
        dedup_window: How far back an ACTIVE alert suppresses a new one.
        refresh_delta: Minimum change of current_value that triggers a refresh.
    """

    def __init__(
        self,
        store: AlertStore,
        dedup_window_hours: int = DEFAULT_DEDUP_WINDOW_HOURS,
        refresh_delta: Decimal = DEFAULT_REFRESH_DELTA,
        clock: Callable[[], datetime] = utc_now,
        store_timeout: Optional[float] = 10.0,
    ) -> None:
        """
        Initialize the deduplicator.

        Args:
            store: Alert persistence.
            dedup_window_hours: Dedup window size in hours.
            refresh_delta: Refresh threshold on current_value.
            clock: Time source, injectable for tests.
            store_timeout: Seconds allowed for one upsert, None for no bound.
        """
        self.store = store
        self.dedup_window = timedelta(hours=dedup_window_hours)
        self.refresh_delta = Decimal(str(refresh_delta))
        self._clock = clock
        self._store_timeout = store_timeout

    async def upsert(
        self,
        candidate: AlertCandidate,
        campaign_id: str,
        recipient_id: str,
    ) -> Alert:
        """
        Create or refresh the alert for a candidate.

        Args:
            candidate: Detector output.
            campaign_id: Campaign identifier.
            recipient_id: Owning operator.

        Returns:
            Alert: The created, refreshed or unchanged alert.

        Raises:
            ValidationError: If an identifier is malformed.
            PersistenceError: If the store fails or times out.
        """
        result = await self.upsert_with_outcome(candidate, campaign_id, recipient_id)
        return result.alert

    async def upsert_with_outcome(
        self,
        candidate: AlertCandidate,
        campaign_id: str,
        recipient_id: str,
    ) -> UpsertResult:
        """Same as ``upsert`` but also reports what happened."""
        validate_identifier(campaign_id, "campaign_id")
        validate_identifier(recipient_id, "recipient_id")

        try:
            if self._store_timeout is None:
                result = await self._upsert_locked(candidate, campaign_id, recipient_id)
            else:
                result = await asyncio.wait_for(
                    self._upsert_locked(candidate, campaign_id, recipient_id),
                    timeout=self._store_timeout,
                )
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                "Alert upsert timed out",
                campaign_id=campaign_id,
                alert_type=candidate.alert_type.value,
                timeout_seconds=self._store_timeout,
            ) from e
        except AlertEngineError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Alert upsert failed: {e}",
                campaign_id=campaign_id,
                alert_type=candidate.alert_type.value,
            ) from e

        logger.debug(
            "alert_upserted",
            alert_id=result.alert.id,
            campaign_id=campaign_id,
            alert_type=candidate.alert_type.value,
            outcome=result.outcome.value,
        )
        return result

    async def _upsert_locked(
        self,
        candidate: AlertCandidate,
        campaign_id: str,
        recipient_id: str,
    ) -> UpsertResult:
        now = self._clock()
        since = now - self.dedup_window

        async with self.store.locked(campaign_id, candidate.alert_type) as tx:
            existing = await tx.find_active_since(campaign_id, candidate.alert_type, since)

            if existing is None:
                alert = Alert.from_candidate(candidate, campaign_id, recipient_id, timestamp=now)
                created = await tx.create(alert)
                logger.info(
                    "alert_created",
                    alert_id=created.id,
                    campaign_id=campaign_id,
                    alert_type=candidate.alert_type.value,
                    priority=candidate.priority.value,
                )
                return UpsertResult(alert=created, outcome=UpsertOutcome.CREATED)

            if not self._value_changed(existing, candidate):
                return UpsertResult(alert=existing, outcome=UpsertOutcome.UNCHANGED)

            refreshed = await tx.update(existing.id, Alert.refresh_fields(candidate, now))
            logger.info(
                "alert_refreshed",
                alert_id=refreshed.id,
                campaign_id=campaign_id,
                alert_type=candidate.alert_type.value,
                previous_value=str(existing.current_value),
                current_value=str(candidate.current_value),
            )
            return UpsertResult(alert=refreshed, outcome=UpsertOutcome.REFRESHED)

    def _value_changed(self, existing: Alert, candidate: AlertCandidate) -> bool:
        old = existing.current_value or Decimal("0")
        new = candidate.current_value or Decimal("0")
        return abs(old - new) > self.refresh_delta
