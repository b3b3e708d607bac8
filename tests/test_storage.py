"""
Tests for the PostgreSQL adapters.

The asyncpg-backed PostgresClient is replaced by a recording fake, so
these tests cover the adapters' contracts (transaction scoping, error
translation, row mapping) without a database.
"""

import json
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal

import pytest

from adwatch.config.models import PostgresConnectionConfig
from adwatch.errors import NotFoundError, PersistenceError, ProviderError, StoreUnavailableError
from adwatch.models.alerts import AlertStatus, AlertType
from adwatch.storage.alert_store import PostgresAlertStore, dedup_lock_key
from adwatch.storage.metrics_provider import PostgresCampaignSource, PostgresMetricsProvider
from adwatch.storage.postgres_client import (
    PostgresClient,
    PostgresConnectionException,
    PostgresOperationError,
    _affected_rows,
    _row_to_alert,
    _row_to_campaign,
    previous_period,
)

from tests.conftest import FIXED_NOW, FakeClock, make_alert


pytestmark = pytest.mark.asyncio


class FakePostgresClient:
    """Records calls; ``errors`` maps method name -> exception."""

    def __init__(self):
        self.calls = []
        self.errors = {}
        self.alerts = {}
        self.locks = []

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if name in self.errors:
            raise self.errors[name]

    async def ping(self):
        return True

    @asynccontextmanager
    async def transaction(self):
        self._record("transaction")
        yield "tx-conn"

    async def advisory_xact_lock(self, conn, key):
        self._record("advisory_xact_lock", conn, key)
        self.locks.append(key)

    async def fetch_active_alert(self, campaign_id, alert_type, since, conn=None):
        self._record("fetch_active_alert", campaign_id, alert_type, since, conn=conn)
        return None

    async def insert_alert(self, alert, conn=None):
        self._record("insert_alert", alert, conn=conn)
        self.alerts[alert.id] = alert
        return alert

    async def update_alert_fields(self, alert_id, fields, conn=None):
        self._record("update_alert_fields", alert_id, fields, conn=conn)
        if alert_id not in self.alerts:
            return None
        self.alerts[alert_id] = self.alerts[alert_id].model_copy(update=fields)
        return self.alerts[alert_id]

    async def fetch_alert(self, alert_id):
        self._record("fetch_alert", alert_id)
        return self.alerts.get(alert_id)

    async def delete_alert(self, alert_id):
        self._record("delete_alert", alert_id)
        return 0

    async def fetch_latest_metrics(self, campaign_id, as_of):
        self._record("fetch_latest_metrics", campaign_id, as_of)

    async def fetch_aggregated_metrics(self, campaign_id, start, end):
        self._record("fetch_aggregated_metrics", campaign_id, start, end)

    async def fetch_weekly_metrics(self, campaign_id, weeks, as_of):
        self._record("fetch_weekly_metrics", campaign_id, weeks, as_of)
        return []

    async def query_eligible_campaigns(self):
        self._record("query_eligible_campaigns")
        return []

    async def fetch_campaign(self, campaign_id):
        self._record("fetch_campaign", campaign_id)
        return None


@pytest.fixture
def client():
    return FakePostgresClient()


@pytest.fixture
def pg_store(client):
    return PostgresAlertStore(client)


class TestPostgresAlertStore:
    """Tests for the AlertStore adapter."""

    async def test_locked_scope_uses_transaction_connection(self, pg_store, client):
        async with pg_store.locked("cmp-1", AlertType.BURN_RATE) as tx:
            await tx.find_active_since("cmp-1", AlertType.BURN_RATE, FIXED_NOW)
            await tx.create(make_alert())

        assert client.locks == ["alert:cmp-1:BURN_RATE"]
        assert client.calls[2][2] == {"conn": "tx-conn"}
        assert client.calls[3][2] == {"conn": "tx-conn"}

    async def test_nested_lock_reuses_transaction(self, pg_store, client):
        async with pg_store.locked("cmp-1", AlertType.BURN_RATE) as tx:
            async with tx.locked("cmp-1", AlertType.BURN_RATE) as inner:
                assert inner is tx

        assert len(client.locks) == 1

    async def test_unlocked_calls_have_no_connection(self, pg_store, client):
        await pg_store.create(make_alert())
        assert client.calls[0][2] == {"conn": None}

    async def test_update_missing_alert(self, pg_store):
        with pytest.raises(NotFoundError):
            await pg_store.update("alert-404", {"email_sent": True})

    async def test_update_status(self, pg_store, client):
        await pg_store.create(make_alert())

        updated = await pg_store.update_status("alert-1", AlertStatus.RESOLVED, FIXED_NOW)

        assert updated.status == AlertStatus.RESOLVED
        assert updated.resolved_at == FIXED_NOW

    async def test_connection_loss_is_unavailable(self, pg_store, client):
        client.errors["fetch_alert"] = PostgresConnectionException("pool closed")

        with pytest.raises(StoreUnavailableError):
            await pg_store.get("alert-1")

    async def test_operation_error_is_persistence_error(self, pg_store, client):
        client.errors["insert_alert"] = PostgresOperationError("constraint violated")

        with pytest.raises(PersistenceError) as exc_info:
            await pg_store.create(make_alert())
        assert not isinstance(exc_info.value, StoreUnavailableError)
        assert exc_info.value.details["operation"] == "create"

    async def test_lock_failure(self, pg_store, client):
        client.errors["advisory_xact_lock"] = PostgresOperationError("deadlock detected")

        with pytest.raises(PersistenceError):
            async with pg_store.locked("cmp-1", AlertType.ROAS_DROP):
                pass

    async def test_delete_missing_is_quiet(self, pg_store):
        await pg_store.delete("alert-404")

    async def test_lock_key(self):
        assert dedup_lock_key("42", AlertType.CTR_DECLINE) == "alert:42:CTR_DECLINE"


class TestPostgresMetricsProvider:
    """Tests for the metrics and campaign adapters."""

    async def test_previous_period_window(self, client):
        provider = PostgresMetricsProvider(client, clock=FakeClock())

        await provider.get_previous("cmp-1", 7)

        assert client.calls[-1] == (
            "fetch_aggregated_metrics",
            ("cmp-1", date(2024, 4, 26), date(2024, 5, 3)),
            {},
        )

    async def test_weekly_uses_today(self, client):
        provider = PostgresMetricsProvider(client, clock=FakeClock())

        await provider.get_weekly("cmp-1", 4)

        assert client.calls[-1][1] == ("cmp-1", 4, date(2024, 5, 10))

    async def test_errors_become_provider_errors(self, client):
        client.errors["fetch_latest_metrics"] = PostgresOperationError("timeout")

        with pytest.raises(ProviderError) as exc_info:
            await PostgresMetricsProvider(client).get_current("cmp-1")
        assert exc_info.value.details["campaign_id"] == "cmp-1"

    async def test_campaign_source(self, client):
        source = PostgresCampaignSource(client)

        assert await source.list_eligible() == []
        assert await source.get("cmp-1") is None


class TestRowMapping:
    """Tests for row conversion helpers."""

    async def test_row_to_alert(self):
        row = {
            "id": "alert-1",
            "campaign_id": "cmp-1",
            "recipient_id": "user-7",
            "alert_type": "BUDGET_LOSS",
            "priority": "HIGH",
            "status": "ACKNOWLEDGED",
            "title": "Impressions lost to budget: Brand Search",
            "message": "Losing 45.0% of impressions.",
            "threshold": Decimal("40"),
            "current_value": Decimal("45"),
            "previous_value": None,
            "detail": json.dumps({"kind": "BUDGET_LOSS", "lost_percent": "45"}),
            "is_read": True,
            "read_at": FIXED_NOW,
            "email_sent": True,
            "chat_sent": False,
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
            "resolved_at": None,
        }

        alert = _row_to_alert(row)

        assert alert.alert_type == AlertType.BUDGET_LOSS
        assert alert.status == AlertStatus.ACKNOWLEDGED
        assert alert.detail.lost_percent == Decimal("45")

    async def test_row_to_campaign_drops_null_overrides(self):
        row = {
            "id": "cmp-1",
            "name": "Brand Search",
            "tenant_id": "acme",
            "recipient_id": "user-7",
            "daily_budget": Decimal("100"),
            "monthly_budget": None,
            "target_roas": None,
            "target_cpa": Decimal("50"),
            "alert_thresholds": json.dumps({"ROAS_DROP_PERCENT": 30, "burn_rate_threshold": None}),
        }

        campaign = _row_to_campaign(row)

        assert campaign.threshold_overrides == {"roas_drop_percent": Decimal("30")}
        assert campaign.effective_monthly_budget == Decimal("3040.0")

    async def test_affected_rows(self):
        assert _affected_rows("UPDATE 3") == 3
        assert _affected_rows("DELETE 0") == 0
        assert _affected_rows("") == 0

    async def test_previous_period(self):
        assert previous_period(date(2024, 5, 10), 7) == (date(2024, 4, 26), date(2024, 5, 3))

    async def test_update_rejects_unknown_columns(self):
        client = PostgresClient(PostgresConnectionConfig())

        with pytest.raises(ValueError):
            await client.update_alert_fields("alert-1", {"campaign_id": "cmp-2"})

    async def test_sanitize_url(self):
        client = PostgresClient(PostgresConnectionConfig(url="postgresql://ads:secret@db:5432/ads"))

        assert client._sanitize_url(client.config.url) == "postgresql://ads:***@db:5432/ads"
