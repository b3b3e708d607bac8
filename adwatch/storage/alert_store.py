"""
PostgreSQL-backed AlertStore.

Adapts PostgresClient to the AlertStore interface and translates client
exceptions into the engine's error taxonomy: a lost connection becomes
StoreUnavailableError, any other failure PersistenceError.

The dedup scope is a database transaction holding a transaction-level
advisory lock keyed on the (campaign, type) pair, so concurrent engine
instances serialize on the same pair as well.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Sequence, Tuple, TypeVar

import structlog
from asyncpg import Connection

from adwatch.errors import NotFoundError, PersistenceError, StoreUnavailableError
from adwatch.interfaces.alert_store import AlertStore
from adwatch.models.alerts import (
    Alert,
    AlertFilters,
    AlertStats,
    AlertStatus,
    AlertType,
    Pagination,
    status_fields,
)
from adwatch.storage.postgres_client import (
    PostgresClient,
    PostgresClientError,
    PostgresConnectionException,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def dedup_lock_key(campaign_id: str, alert_type: AlertType) -> str:
    """Advisory lock key for a (campaign, type) pair."""
    return f"alert:{campaign_id}:{alert_type.value}"


class PostgresAlertStore(AlertStore):
    """
    AlertStore over the ``alerts`` table.

    Attributes:
        client: Connected PostgresClient.
        conn: Connection of the enclosing transaction, None outside a
            locked scope.

    Example:
        >>> store = PostgresAlertStore(postgres_client)
        >>> async with store.locked("cmp-1", AlertType.BURN_RATE) as tx:
        ...     existing = await tx.find_active_since("cmp-1", AlertType.BURN_RATE, since)
    """

    def __init__(self, client: PostgresClient, conn: Optional[Connection] = None) -> None:
        self.client = client
        self.conn = conn

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except PostgresConnectionException as e:
            raise StoreUnavailableError(
                f"Alert store unavailable during {operation}: {e}",
                operation=operation,
            ) from e
        except PostgresClientError as e:
            raise PersistenceError(
                f"Alert store operation {operation} failed: {e}",
                operation=operation,
            ) from e

    async def ping(self) -> bool:
        return await self.client.ping()

    def locked(self, campaign_id: str, alert_type: AlertType) -> Any:
        return self._locked(campaign_id, alert_type)

    @asynccontextmanager
    async def _locked(self, campaign_id: str, alert_type: AlertType) -> AsyncIterator["PostgresAlertStore"]:
        if self.conn is not None:
            # Already inside a transaction
            yield self
            return

        key = dedup_lock_key(campaign_id, alert_type)
        try:
            async with self.client.transaction() as conn:
                await self.client.advisory_xact_lock(conn, key)
                yield PostgresAlertStore(self.client, conn=conn)
        except PostgresConnectionException as e:
            raise StoreUnavailableError(f"Alert store unavailable: {e}", lock_key=key) from e
        except PostgresClientError as e:
            raise PersistenceError(f"Locked alert scope failed: {e}", lock_key=key) from e

    async def find_active_since(
        self,
        campaign_id: str,
        alert_type: AlertType,
        since: datetime,
    ) -> Optional[Alert]:
        return await self._call(
            "find_active_since",
            self.client.fetch_active_alert(campaign_id, alert_type, since, conn=self.conn),
        )

    async def create(self, alert: Alert) -> Alert:
        return await self._call("create", self.client.insert_alert(alert, conn=self.conn))

    async def update(self, alert_id: str, fields: Dict[str, Any]) -> Alert:
        try:
            updated = await self._call(
                "update",
                self.client.update_alert_fields(alert_id, fields, conn=self.conn),
            )
        except ValueError as e:
            raise PersistenceError(str(e), alert_id=alert_id) from e
        if updated is None:
            raise NotFoundError(f"Alert not found: {alert_id}", alert_id=alert_id)
        return updated

    async def get(self, alert_id: str) -> Optional[Alert]:
        return await self._call("get", self.client.fetch_alert(alert_id))

    async def list(
        self,
        recipient_id: str,
        filters: AlertFilters,
        pagination: Pagination,
    ) -> Tuple[List[Alert], int]:
        return await self._call(
            "list",
            self.client.query_alerts(recipient_id, filters, pagination.limit, pagination.offset),
        )

    async def update_status(
        self,
        alert_id: str,
        status: AlertStatus,
        changed_at: datetime,
    ) -> Alert:
        return await self.update(alert_id, status_fields(status, changed_at))

    async def mark_read(
        self,
        recipient_id: str,
        alert_ids: Optional[Sequence[str]],
        read_at: datetime,
    ) -> int:
        return await self._call(
            "mark_read",
            self.client.mark_alerts_read(recipient_id, alert_ids, read_at),
        )

    async def delete(self, alert_id: str) -> None:
        deleted = await self._call("delete", self.client.delete_alert(alert_id))
        if not deleted:
            logger.debug("alert_delete_noop", alert_id=alert_id)

    async def stats(self, recipient_id: str, since: datetime) -> AlertStats:
        return await self._call("stats", self.client.alert_stats(recipient_id, since))

    async def purge_terminal(self, before: datetime) -> int:
        return await self._call("purge_terminal", self.client.purge_terminal_alerts(before))

    async def recipients_with_alerts_since(self, since: datetime) -> List[str]:
        return await self._call(
            "recipients_with_alerts_since",
            self.client.query_recipients_with_alerts(since),
        )

    async def list_since(self, recipient_id: str, since: datetime) -> List[Alert]:
        return await self._call(
            "list_since",
            self.client.query_alerts_since(recipient_id, since),
        )
