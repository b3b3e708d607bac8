"""
Async PostgreSQL client for the alert engine.

This module provides a PostgreSQL client for reading campaigns and their
daily metrics, reading and writing alerts, and posting chat messages.
Only the ``alerts`` table is owned by the engine (see sql/schema.sql);
the other tables belong to the surrounding product and are read as-is.

Key Tables:
    - alerts: Alert instances with lifecycle and delivery tracking
    - campaigns / clients: Campaign attributes, tenant status and owner
    - campaign_metrics: One row of metrics per campaign and day
    - users: Recipient contact details
    - chat_conversations / chat_messages: Operator-client conversations

Note:
    All financial values are stored as NUMERIC and read back as Decimal.

Example:
    >>> from adwatch.config.models import PostgresConnectionConfig
    >>> from adwatch.storage.postgres_client import PostgresClient
    >>>
    >>> client = PostgresClient(PostgresConnectionConfig(url="postgresql://..."))
    >>> await client.connect()
    >>> campaigns = await client.query_eligible_campaigns()
    >>> async with client.transaction() as conn:
    ...     await client.advisory_xact_lock(conn, "cmp-1:ROAS_DROP")
    ...     alert = await client.fetch_active_alert("cmp-1", AlertType.ROAS_DROP, since, conn=conn)
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import asyncpg
from asyncpg import Connection, Pool, Record
from asyncpg.exceptions import (
    ConnectionDoesNotExistError,
    InterfaceError,
    PostgresError,
    TooManyConnectionsError,
)
import structlog

from adwatch.config.models import PostgresConnectionConfig
from adwatch.models.alerts import (
    ALERT_DETAIL_ADAPTER,
    Alert,
    AlertFilters,
    AlertPriority,
    AlertStats,
    AlertStatus,
    AlertType,
    utc_now,
)
from adwatch.models.campaign import Campaign, MetricsSnapshot

logger = structlog.get_logger(__name__)


class PostgresClientError(Exception):
    """Base exception for PostgreSQL client errors."""

    pass


class PostgresConnectionException(PostgresClientError):
    """Raised when PostgreSQL connection fails."""

    pass


class PostgresOperationError(PostgresClientError):
    """Raised when a PostgreSQL operation fails."""

    pass


# Columns of the alerts table, in SELECT order
ALERT_COLUMNS = (
    "id",
    "campaign_id",
    "recipient_id",
    "alert_type",
    "priority",
    "status",
    "title",
    "message",
    "threshold",
    "current_value",
    "previous_value",
    "detail",
    "is_read",
    "read_at",
    "email_sent",
    "chat_sent",
    "created_at",
    "updated_at",
    "resolved_at",
)

# Columns that may be changed after insert
UPDATABLE_ALERT_COLUMNS = frozenset(ALERT_COLUMNS) - {"id", "campaign_id", "recipient_id", "alert_type", "created_at"}

_ALERT_SELECT = ", ".join(ALERT_COLUMNS)

_PRIORITY_RANKS = {priority.value: priority.rank for priority in AlertPriority}


def _column_value(column: str, value: Any) -> Any:
    """Convert a model value to its database representation."""
    if value is None:
        return None
    if column == "detail":
        return ALERT_DETAIL_ADAPTER.dump_python(value, mode="json")
    if isinstance(value, (AlertType, AlertPriority, AlertStatus)):
        return value.value
    return value


def _row_to_alert(row: Record) -> Alert:
    """Build an Alert from an alerts row."""
    detail = row["detail"]
    if isinstance(detail, str):
        detail = json.loads(detail)
    return Alert(
        id=row["id"],
        campaign_id=row["campaign_id"],
        recipient_id=row["recipient_id"],
        alert_type=AlertType(row["alert_type"]),
        priority=AlertPriority(row["priority"]),
        status=AlertStatus(row["status"]),
        title=row["title"],
        message=row["message"],
        threshold=row["threshold"],
        current_value=row["current_value"],
        previous_value=row["previous_value"],
        detail=ALERT_DETAIL_ADAPTER.validate_python(detail) if detail else None,
        is_read=row["is_read"],
        read_at=row["read_at"],
        email_sent=row["email_sent"],
        chat_sent=row["chat_sent"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        resolved_at=row["resolved_at"],
    )


def _row_to_campaign(row: Record) -> Campaign:
    """Build a Campaign from a campaigns/clients join row."""
    overrides = row["alert_thresholds"]
    if isinstance(overrides, str):
        overrides = json.loads(overrides)
    return Campaign(
        id=row["id"],
        name=row["name"],
        tenant_id=row["tenant_id"],
        recipient_id=row["recipient_id"],
        daily_budget=row["daily_budget"],
        monthly_budget=row["monthly_budget"],
        target_roas=row["target_roas"],
        target_cpa=row["target_cpa"],
        threshold_overrides={key: value for key, value in (overrides or {}).items() if value is not None},
    )


def _row_to_snapshot(row: Optional[Record]) -> MetricsSnapshot:
    """Build a MetricsSnapshot from an aggregated metrics row."""
    if row is None or row["period_start"] is None:
        return MetricsSnapshot()
    return MetricsSnapshot(
        impressions=row["impressions"],
        clicks=row["clicks"],
        cost=row["cost"],
        conversions=row["conversions"],
        conversion_value=row["conversion_value"],
        lost_is_budget=row["lost_is_budget"],
        lost_is_rank=row["lost_is_rank"],
        month_to_date_cost=row["month_to_date_cost"] if "month_to_date_cost" in row.keys() else None,
        period_start=row["period_start"],
        period_end=row["period_end"],
    )


def _affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg status string ("UPDATE 3")."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


# Aggregation shared by the metrics queries
_METRICS_AGGREGATE = """
    SUM(impressions)::bigint AS impressions,
    SUM(clicks)::bigint AS clicks,
    SUM(cost) AS cost,
    SUM(conversions) AS conversions,
    SUM(conversion_value) AS conversion_value,
    AVG(search_budget_lost_is) AS lost_is_budget,
    AVG(search_rank_lost_is) AS lost_is_rank,
    MIN(date) AS period_start,
    MAX(date) AS period_end
"""


class PostgresClient:
    """
    asyncpg pool wrapper holding every SQL statement the engine runs.

    Data methods take an optional ``conn``. With one, the statement runs
    inside the caller's transaction and is not retried; without one, a
    pooled connection is borrowed and transient server errors are retried
    with linear backoff. A lost connection is never retried.

    Example:
        >>> client = PostgresClient(config)
        >>> await client.connect()
        >>> try:
        ...     alert = await client.fetch_alert(alert_id)
        ... finally:
        ...     await client.disconnect()
    """

    MAX_ATTEMPTS = 3
    BACKOFF_SECONDS = 0.5

    def __init__(self, config: PostgresConnectionConfig) -> None:
        self.config = config
        self._pool: Optional[Pool] = None

    def _sanitize_url(self, url: str) -> str:
        """Mask the password in a DSN before it reaches the logs."""
        credentials, sep, host = url.rpartition("@")
        if not sep or ":" not in credentials.split("//", 1)[-1]:
            return url
        return f"{credentials.rsplit(':', 1)[0]}:***@{host}"

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """
        Create the pool and check it with one round trip.

        Raises:
            PostgresConnectionException: If the server cannot be reached.
        """
        if self._pool is not None:
            return

        safe_url = self._sanitize_url(self.config.url)
        try:
            pool = await asyncpg.create_pool(
                dsn=self.config.url,
                min_size=self.config.min_pool_size,
                max_size=self.config.max_pool_size,
                command_timeout=self.config.command_timeout,
                init=self._setup_connection,
            )
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except (PostgresError, OSError, asyncio.TimeoutError) as e:
            logger.error("postgres_connect_failed", url=safe_url, error=str(e))
            raise PostgresConnectionException(f"PostgreSQL unreachable at {safe_url}: {e}") from e

        self._pool = pool
        logger.info("postgres_connected", url=safe_url, max_pool_size=self.config.max_pool_size)

    @staticmethod
    async def _setup_connection(conn: Connection) -> None:
        """Per-connection session: UTC timestamps, jsonb as Python objects."""
        await conn.execute("SET timezone = 'UTC'")
        await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")

    async def disconnect(self) -> None:
        """Close the pool. Idempotent."""
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            logger.info("postgres_disconnected")

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except (PostgresError, InterfaceError, OSError) as e:
            logger.warning("postgres_ping_failed", error=str(e))
            return False
        return True

    @asynccontextmanager
    async def _borrow(self) -> AsyncIterator[Connection]:
        """
        Borrow a pooled connection.

        Raises:
            PostgresConnectionException: Not connected, pool exhausted, or
                the connection dropped mid-use.
        """
        if self._pool is None:
            raise PostgresConnectionException("PostgreSQL client is not connected")

        try:
            async with self._pool.acquire() as conn:
                yield conn
        except TooManyConnectionsError as e:
            logger.error("postgres_pool_exhausted", error=str(e))
            raise PostgresConnectionException(f"Connection pool exhausted: {e}") from e
        except (ConnectionDoesNotExistError, InterfaceError) as e:
            logger.error("postgres_connection_lost", error=str(e))
            raise PostgresConnectionException(f"Connection lost: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        """Borrow a connection and hold one transaction open on it."""
        async with self._borrow() as conn:
            try:
                async with conn.transaction():
                    yield conn
            except PostgresError as e:
                raise PostgresOperationError(f"Transaction failed: {e}") from e

    async def advisory_xact_lock(self, conn: Connection, key: str) -> None:
        """Lock ``key`` until the surrounding transaction ends."""
        try:
            await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", key)
        except PostgresError as e:
            raise PostgresOperationError(f"Advisory lock failed for {key}: {e}") from e

    async def _run(
        self,
        operation: str,
        func: Callable[[Connection], Awaitable[Any]],
        conn: Optional[Connection] = None,
    ) -> Any:
        """Run ``func`` on ``conn``, or on a pooled connection with retries."""
        if conn is not None:
            try:
                return await func(conn)
            except PostgresError as e:
                logger.error("postgres_operation_failed", operation=operation, error=str(e))
                raise PostgresOperationError(f"Operation '{operation}' failed: {e}") from e

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                async with self._borrow() as borrowed:
                    return await func(borrowed)
            except PostgresError as e:
                if attempt == self.MAX_ATTEMPTS:
                    logger.error("postgres_operation_failed", operation=operation, attempts=attempt, error=str(e))
                    raise PostgresOperationError(
                        f"Operation '{operation}' failed after {attempt} attempts: {e}"
                    ) from e
                logger.warning("postgres_operation_retry", operation=operation, attempt=attempt, error=str(e))
                await asyncio.sleep(self.BACKOFF_SECONDS * attempt)

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def insert_alert(self, alert: Alert, conn: Optional[Connection] = None) -> Alert:
        """
        Insert a new alert.

        Args:
            alert: The Alert to insert.
            conn: Optional connection of an open transaction.

        Returns:
            Alert: The alert as stored.

        Raises:
            PostgresConnectionException: If not connected.
            PostgresOperationError: If the operation fails.
        """
        columns = ALERT_COLUMNS + ("priority_rank",)
        values = [_column_value(column, getattr(alert, column)) for column in ALERT_COLUMNS]
        values.append(alert.priority.rank)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))

        async def _insert(c: Connection) -> Record:
            return await c.fetchrow(
                f"""
                INSERT INTO alerts ({', '.join(columns)})
                VALUES ({placeholders})
                RETURNING {_ALERT_SELECT}
                """,
                *values,
            )

        row = await self._run("insert_alert", _insert, conn)

        logger.debug(
            "alert_inserted",
            alert_id=alert.id,
            alert_type=alert.alert_type.value,
            priority=alert.priority.value,
        )
        return _row_to_alert(row)

    async def fetch_active_alert(
        self,
        campaign_id: str,
        alert_type: AlertType,
        since: datetime,
        conn: Optional[Connection] = None,
    ) -> Optional[Alert]:
        """
        Fetch the newest ACTIVE alert of a (campaign, type) pair created since ``since``.

        Returns:
            Optional[Alert]: The alert, or None.
        """

        async def _query(c: Connection) -> Optional[Record]:
            return await c.fetchrow(
                f"""
                SELECT {_ALERT_SELECT}
                FROM alerts
                WHERE campaign_id = $1
                  AND alert_type = $2
                  AND status = 'ACTIVE'
                  AND created_at >= $3
                ORDER BY created_at DESC
                LIMIT 1
                """,
                campaign_id,
                alert_type.value,
                since,
            )

        row = await self._run("fetch_active_alert", _query, conn)
        return _row_to_alert(row) if row else None

    async def update_alert_fields(
        self,
        alert_id: str,
        fields: Dict[str, Any],
        conn: Optional[Connection] = None,
    ) -> Optional[Alert]:
        """
        Update columns of one alert.

        Args:
            alert_id: Alert identifier.
            fields: Column names and new values. ``priority`` also updates
                the stored priority rank.
            conn: Optional connection of an open transaction.

        Returns:
            Optional[Alert]: The updated alert, None if it does not exist.

        Raises:
            ValueError: If a column is not updatable.
        """
        unknown = set(fields) - UPDATABLE_ALERT_COLUMNS
        if unknown:
            raise ValueError(f"Columns not updatable: {sorted(unknown)}")

        updates: List[str] = []
        params: List[Any] = []
        param_count = 0

        for column, value in fields.items():
            param_count += 1
            updates.append(f"{column} = ${param_count}")
            params.append(_column_value(column, value))

        if "priority" in fields:
            param_count += 1
            updates.append(f"priority_rank = ${param_count}")
            params.append(_PRIORITY_RANKS[_column_value("priority", fields["priority"])])

        if "updated_at" not in fields:
            updates.append("updated_at = NOW()")

        param_count += 1
        params.append(alert_id)

        query = f"""
            UPDATE alerts
            SET {', '.join(updates)}
            WHERE id = ${param_count}
            RETURNING {_ALERT_SELECT}
        """

        async def _update(c: Connection) -> Optional[Record]:
            return await c.fetchrow(query, *params)

        start_time = time.monotonic()
        row = await self._run("update_alert_fields", _update, conn)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            "alert_updated",
            alert_id=alert_id,
            fields=list(fields),
            elapsed_ms=round(elapsed_ms, 2),
        )
        return _row_to_alert(row) if row else None

    async def fetch_alert(self, alert_id: str) -> Optional[Alert]:
        """Fetch one alert by id."""

        async def _query(c: Connection) -> Optional[Record]:
            return await c.fetchrow(
                f"SELECT {_ALERT_SELECT} FROM alerts WHERE id = $1",
                alert_id,
            )

        row = await self._run("fetch_alert", _query)
        return _row_to_alert(row) if row else None

    async def query_alerts(
        self,
        recipient_id: str,
        filters: AlertFilters,
        limit: int,
        offset: int,
    ) -> Tuple[List[Alert], int]:
        """
        Query a recipient's alerts with filters.

        Ordering: unread first, then priority descending, then newest first.

        Returns:
            Tuple[List[Alert], int]: One page of alerts and the total count.
        """
        conditions = ["recipient_id = $1"]
        params: List[Any] = [recipient_id]
        param_count = 1

        if filters.status is not None:
            param_count += 1
            conditions.append(f"status = ${param_count}")
            params.append(filters.status.value)

        if filters.priority is not None:
            param_count += 1
            conditions.append(f"priority = ${param_count}")
            params.append(filters.priority.value)

        if filters.alert_type is not None:
            param_count += 1
            conditions.append(f"alert_type = ${param_count}")
            params.append(filters.alert_type.value)

        if filters.campaign_id is not None:
            param_count += 1
            conditions.append(f"campaign_id = ${param_count}")
            params.append(filters.campaign_id)

        if filters.is_read is not None:
            param_count += 1
            conditions.append(f"is_read = ${param_count}")
            params.append(filters.is_read)

        if filters.start_date is not None:
            param_count += 1
            conditions.append(f"created_at >= ${param_count}")
            params.append(filters.start_date)

        if filters.end_date is not None:
            param_count += 1
            conditions.append(f"created_at <= ${param_count}")
            params.append(filters.end_date)

        where = " AND ".join(conditions)
        page_query = f"""
            SELECT {_ALERT_SELECT}
            FROM alerts
            WHERE {where}
            ORDER BY is_read ASC, priority_rank DESC, created_at DESC
            LIMIT ${param_count + 1} OFFSET ${param_count + 2}
        """
        count_query = f"SELECT COUNT(*) FROM alerts WHERE {where}"

        async def _query(c: Connection) -> Tuple[List[Record], int]:
            rows = await c.fetch(page_query, *params, limit, offset)
            total = await c.fetchval(count_query, *params)
            return rows, total

        start_time = time.monotonic()
        rows, total = await self._run("query_alerts", _query)

        alerts = []
        for row in rows:
            try:
                alerts.append(_row_to_alert(row))
            except Exception as e:
                logger.warning(
                    "alert_parse_failed",
                    alert_id=row.get("id"),
                    error=str(e),
                )

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            "alerts_queried",
            count=len(alerts),
            total=total,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return alerts, int(total)

    async def mark_alerts_read(
        self,
        recipient_id: str,
        alert_ids: Optional[Sequence[str]],
        read_at: datetime,
    ) -> int:
        """
        Mark a recipient's unread alerts as read.

        Args:
            recipient_id: Owner of the alerts.
            alert_ids: Alerts to mark, None for all.
            read_at: Read timestamp.

        Returns:
            int: Number of alerts changed.
        """
        query = """
            UPDATE alerts
            SET is_read = TRUE, read_at = $2, updated_at = $2
            WHERE recipient_id = $1 AND NOT is_read
        """
        params: List[Any] = [recipient_id, read_at]
        if alert_ids is not None:
            query += " AND id = ANY($3::text[])"
            params.append(list(alert_ids))

        async def _update(c: Connection) -> str:
            return await c.execute(query, *params)

        status = await self._run("mark_alerts_read", _update)
        return _affected_rows(status)

    async def delete_alert(self, alert_id: str) -> int:
        """Delete one alert. Returns the number of rows deleted."""

        async def _delete(c: Connection) -> str:
            return await c.execute("DELETE FROM alerts WHERE id = $1", alert_id)

        return _affected_rows(await self._run("delete_alert", _delete))

    async def alert_stats(self, recipient_id: str, since: datetime) -> AlertStats:
        """
        Aggregate a recipient's alerts.

        Active and unread counts cover all time; the breakdowns cover
        alerts created since ``since``.
        """

        async def _query(c: Connection) -> Tuple[Record, List[Record]]:
            totals = await c.fetchrow(
                """
                SELECT
                    COUNT(*) FILTER (WHERE status = 'ACTIVE') AS total_active,
                    COUNT(*) FILTER (WHERE NOT is_read) AS unread,
                    COUNT(*) FILTER (WHERE created_at >= $2) AS in_window
                FROM alerts
                WHERE recipient_id = $1
                """,
                recipient_id,
                since,
            )
            groups = await c.fetch(
                """
                SELECT status, priority, alert_type, COUNT(*) AS count
                FROM alerts
                WHERE recipient_id = $1 AND created_at >= $2
                GROUP BY status, priority, alert_type
                """,
                recipient_id,
                since,
            )
            return totals, groups

        totals, groups = await self._run("alert_stats", _query)

        by_status: Dict[str, int] = {}
        by_priority: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for row in groups:
            count = int(row["count"])
            by_status[row["status"]] = by_status.get(row["status"], 0) + count
            by_priority[row["priority"]] = by_priority.get(row["priority"], 0) + count
            by_type[row["alert_type"]] = by_type.get(row["alert_type"], 0) + count

        return AlertStats(
            total_active=int(totals["total_active"]),
            unread=int(totals["unread"]),
            in_window=int(totals["in_window"]),
            by_status=by_status,
            by_priority=by_priority,
            by_type=by_type,
        )

    async def purge_terminal_alerts(self, before: datetime) -> int:
        """Delete RESOLVED and DISMISSED alerts closed before ``before``."""

        async def _delete(c: Connection) -> str:
            return await c.execute(
                """
                DELETE FROM alerts
                WHERE status IN ('RESOLVED', 'DISMISSED')
                  AND COALESCE(resolved_at, created_at) < $1
                """,
                before,
            )

        return _affected_rows(await self._run("purge_terminal_alerts", _delete))

    async def query_recipients_with_alerts(self, since: datetime) -> List[str]:
        """List recipients that have alerts created since ``since``."""

        async def _query(c: Connection) -> List[Record]:
            return await c.fetch(
                "SELECT DISTINCT recipient_id FROM alerts WHERE created_at >= $1 ORDER BY recipient_id",
                since,
            )

        rows = await self._run("query_recipients_with_alerts", _query)
        return [row["recipient_id"] for row in rows]

    async def query_alerts_since(self, recipient_id: str, since: datetime) -> List[Alert]:
        """List a recipient's alerts created since ``since``, newest first."""

        async def _query(c: Connection) -> List[Record]:
            return await c.fetch(
                f"""
                SELECT {_ALERT_SELECT}
                FROM alerts
                WHERE recipient_id = $1 AND created_at >= $2
                ORDER BY created_at DESC
                """,
                recipient_id,
                since,
            )

        rows = await self._run("query_alerts_since", _query)
        return [_row_to_alert(row) for row in rows]

    # =========================================================================
    # CAMPAIGNS
    # =========================================================================

    _CAMPAIGN_SELECT = """
        SELECT
            c.id::text AS id,
            c.name,
            c.client_id::text AS tenant_id,
            cl.manager_id::text AS recipient_id,
            c.daily_budget,
            c.monthly_budget,
            c.target_roas,
            c.target_cpa,
            c.alert_thresholds
        FROM campaigns c
        JOIN clients cl ON cl.id = c.client_id
    """

    async def query_eligible_campaigns(self) -> List[Campaign]:
        """
        List campaigns eligible for analysis.

        Eligible means the campaign is enabled, its client is active and
        has an owner to receive alerts.
        """

        async def _query(c: Connection) -> List[Record]:
            return await c.fetch(
                self._CAMPAIGN_SELECT
                + """
                WHERE c.status = 'ENABLED'
                  AND cl.is_active
                  AND cl.manager_id IS NOT NULL
                ORDER BY c.id
                """
            )

        rows = await self._run("query_eligible_campaigns", _query)

        campaigns = []
        for row in rows:
            try:
                campaigns.append(_row_to_campaign(row))
            except Exception as e:
                logger.warning(
                    "campaign_parse_failed",
                    campaign_id=row.get("id"),
                    error=str(e),
                )
        return campaigns

    async def fetch_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Fetch one campaign with an owner, regardless of status."""

        async def _query(c: Connection) -> Optional[Record]:
            return await c.fetchrow(
                self._CAMPAIGN_SELECT
                + """
                WHERE c.id::text = $1
                  AND cl.manager_id IS NOT NULL
                """,
                campaign_id,
            )

        row = await self._run("fetch_campaign", _query)
        return _row_to_campaign(row) if row else None

    # =========================================================================
    # METRICS
    # =========================================================================

    async def fetch_latest_metrics(self, campaign_id: str, as_of: date) -> MetricsSnapshot:
        """
        Fetch the most recent day of metrics plus month-to-date spend.

        Args:
            campaign_id: Campaign identifier.
            as_of: Reference date for the month-to-date sum.

        Returns:
            MetricsSnapshot: Latest metrics, empty when the campaign has none.
        """

        async def _query(c: Connection) -> Optional[Record]:
            return await c.fetchrow(
                """
                SELECT
                    m.impressions::bigint AS impressions,
                    m.clicks::bigint AS clicks,
                    m.cost,
                    m.conversions,
                    m.conversion_value,
                    m.search_budget_lost_is AS lost_is_budget,
                    m.search_rank_lost_is AS lost_is_rank,
                    m.date AS period_start,
                    m.date AS period_end,
                    (
                        SELECT SUM(mtd.cost)
                        FROM campaign_metrics mtd
                        WHERE mtd.campaign_id = m.campaign_id
                          AND mtd.date >= date_trunc('month', $2::date)::date
                          AND mtd.date <= $2::date
                    ) AS month_to_date_cost
                FROM campaign_metrics m
                WHERE m.campaign_id::text = $1
                ORDER BY m.date DESC
                LIMIT 1
                """,
                campaign_id,
                as_of,
            )

        return _row_to_snapshot(await self._run("fetch_latest_metrics", _query))

    async def fetch_aggregated_metrics(
        self,
        campaign_id: str,
        start_date: date,
        end_date: date,
    ) -> MetricsSnapshot:
        """
        Aggregate daily metrics over an inclusive date range.

        Returns:
            MetricsSnapshot: Summed counts with averaged impression-share
            losses, empty when no day has data.
        """

        async def _query(c: Connection) -> Record:
            return await c.fetchrow(
                f"""
                SELECT {_METRICS_AGGREGATE}
                FROM campaign_metrics
                WHERE campaign_id::text = $1
                  AND date >= $2
                  AND date <= $3
                """,
                campaign_id,
                start_date,
                end_date,
            )

        return _row_to_snapshot(await self._run("fetch_aggregated_metrics", _query))

    async def fetch_weekly_metrics(
        self,
        campaign_id: str,
        weeks: int,
        as_of: date,
    ) -> List[MetricsSnapshot]:
        """
        Aggregate daily metrics into 7-day buckets ending at ``as_of``.

        Returns:
            List[MetricsSnapshot]: One entry per week, most recent first.
            Weeks without data are empty snapshots.
        """

        async def _query(c: Connection) -> List[Record]:
            return await c.fetch(
                f"""
                SELECT (($3::date - date) / 7) AS week_index, {_METRICS_AGGREGATE}
                FROM campaign_metrics
                WHERE campaign_id::text = $1
                  AND date > $3::date - ($2::int * 7)
                  AND date <= $3::date
                GROUP BY week_index
                """,
                campaign_id,
                weeks,
                as_of,
            )

        rows = await self._run("fetch_weekly_metrics", _query)
        by_week = {int(row["week_index"]): row for row in rows}
        return [_row_to_snapshot(by_week.get(index)) for index in range(weeks)]

    # =========================================================================
    # RECIPIENTS AND CHAT
    # =========================================================================

    async def fetch_recipient(self, recipient_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a recipient's name and email address."""

        async def _query(c: Connection) -> Optional[Record]:
            return await c.fetchrow(
                "SELECT id::text AS id, name, email FROM users WHERE id::text = $1",
                recipient_id,
            )

        row = await self._run("fetch_recipient", _query)
        return dict(row) if row else None

    async def find_conversation(self, campaign_id: str, recipient_id: str) -> Optional[str]:
        """
        Find the conversation between the recipient and the campaign's client.

        Returns:
            Optional[str]: Conversation id, or None.
        """

        async def _query(c: Connection) -> Optional[Any]:
            return await c.fetchval(
                """
                SELECT conv.id::text
                FROM campaigns c
                JOIN chat_conversations conv ON conv.client_id = c.client_id
                WHERE c.id::text = $1
                  AND conv.manager_id::text = $2
                LIMIT 1
                """,
                campaign_id,
                recipient_id,
            )

        return await self._run("find_conversation", _query)

    async def insert_chat_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: str,
        created_at: Optional[datetime] = None,
    ) -> None:
        """Insert a message and bump the conversation's last activity."""
        sent_at = created_at or utc_now()

        async def _insert(c: Connection) -> None:
            async with c.transaction():
                await c.execute(
                    """
                    INSERT INTO chat_messages (conversation_id, sender_id, content, message_type, created_at)
                    SELECT conv.id, conv.manager_id, $3, $4, $5
                    FROM chat_conversations conv
                    WHERE conv.id::text = $1 AND conv.manager_id::text = $2
                    """,
                    conversation_id,
                    sender_id,
                    content,
                    message_type,
                    sent_at,
                )
                await c.execute(
                    "UPDATE chat_conversations SET last_message_at = $2 WHERE id::text = $1",
                    conversation_id,
                    sent_at,
                )

        await self._run("insert_chat_message", _insert)
        logger.debug("chat_message_inserted", conversation_id=conversation_id, message_type=message_type)


def previous_period(as_of: date, lookback_days: int) -> Tuple[date, date]:
    """
    Date range of the comparison period: the ``lookback_days`` days that
    end ``lookback_days`` days before ``as_of``.
    """
    end = as_of - timedelta(days=lookback_days)
    start = end - timedelta(days=lookback_days)
    return start, end
