"""
Tests for the alert orchestrator.

Covers batch runs, the critical-only pass, single-campaign analysis,
deadlines, threshold resolution and failure isolation per campaign and
per alert.
"""

from decimal import Decimal

import pytest

from adwatch.config.models import AlertsConfig
from adwatch.detection.deduplicator import AlertDeduplicator
from adwatch.detection.orchestrator import AlertOrchestrator, create_orchestrator
from adwatch.errors import NotFoundError, ProviderError, StoreUnavailableError, ValidationError
from adwatch.models.alerts import AlertPriority, AlertType
from adwatch.models.campaign import MetricsSnapshot

from tests.conftest import FakeCampaignSource, StepTimer, make_campaign, roas_snapshots


pytestmark = pytest.mark.asyncio


@pytest.fixture
def source():
    return FakeCampaignSource(
        [make_campaign("cmp-1"), make_campaign("cmp-2", name="Display Retargeting")]
    )


@pytest.fixture
def build(store, provider, source, dispatcher, clock):
    def _build(**kwargs):
        alerts_config = kwargs.pop("alerts_config", None)
        return AlertOrchestrator(
            provider=provider,
            campaign_source=source,
            store=store,
            deduplicator=AlertDeduplicator(store, clock=clock),
            dispatcher=dispatcher,
            alerts_config=alerts_config,
            clock=clock,
            **kwargs,
        )

    return _build


def roas_drop(provider, campaign_id="cmp-1"):
    current, previous = roas_snapshots("180", "300")
    provider.set(campaign_id, current=current, previous=previous)


class TestBatchAnalysis:
    """Tests for the full batch run."""

    async def test_creates_and_dispatches(self, build, provider, email_sender):
        roas_drop(provider)
        provider.set("cmp-2")

        summary = await build().run_batch_analysis()

        assert summary.run_type == "full"
        assert summary.campaigns_analyzed == 2
        assert summary.alerts_generated == 1
        assert summary.alerts_created == 1
        assert summary.errors == 0
        assert summary.partial is False
        alert = summary.alerts[0]
        assert alert.alert_type == AlertType.ROAS_DROP
        assert alert.email_sent is True
        assert [a.id for a in email_sender.sent] == [alert.id]

    async def test_rerun_does_not_redispatch(self, build, provider, store, email_sender):
        roas_drop(provider)
        orchestrator = build()

        await orchestrator.run_batch_analysis()
        summary = await orchestrator.run_batch_analysis()

        assert summary.alerts_generated == 1
        assert summary.alerts_created == 0
        assert len(email_sender.sent) == 1
        assert len(store.alerts) == 1

    async def test_provider_failure_isolated(self, build, provider):
        provider.failing.add("cmp-1")
        provider.set("cmp-2", current=MetricsSnapshot(lost_is_budget=Decimal("0.45")))

        summary = await build().run_batch_analysis()

        assert summary.campaigns_analyzed == 2
        assert summary.errors == 1
        assert summary.failed_campaigns == ["cmp-1"]
        assert summary.alerts_created == 1

    async def test_provider_timeout(self, build, provider, source):
        source.campaigns = [make_campaign("cmp-1")]
        provider.delay = 0.5

        summary = await build(provider_timeout=0.01).run_batch_analysis()

        assert summary.errors == 1
        assert summary.alerts_generated == 0

    async def test_malformed_recipient_isolated(self, build, provider, source):
        source.campaigns = [make_campaign("cmp-1", recipient_id="not valid"), make_campaign("cmp-2")]
        roas_drop(provider, "cmp-2")

        summary = await build().run_batch_analysis()

        assert summary.failed_campaigns == ["cmp-1"]
        assert summary.alerts_created == 1

    async def test_persistence_failure_drops_alert(self, build, provider, store):
        roas_drop(provider)
        store.fail("create")

        summary = await build().run_batch_analysis()

        assert summary.dropped_alerts == 1
        assert summary.errors == 0
        assert summary.alerts_created == 0

    async def test_store_unavailable(self, build, provider, store):
        store.available = False

        with pytest.raises(StoreUnavailableError):
            await build().run_batch_analysis()
        assert provider.calls == []

    async def test_campaign_listing_failure(self, build, source):
        source.fail = True

        with pytest.raises(ProviderError):
            await build().run_batch_analysis()

    async def test_no_campaigns(self, build, source):
        source.campaigns = []

        summary = await build().run_batch_analysis()

        assert summary.campaigns_analyzed == 0
        assert summary.alerts == []


class TestDeadline:
    """Tests for the run deadline."""

    async def test_deadline_skips_remaining(self, build, source):
        source.campaigns = [make_campaign(f"cmp-{i}") for i in range(1, 4)]
        orchestrator = build(max_concurrency=1, timer=StepTimer(1.0))

        summary = await orchestrator.run_batch_analysis(deadline_seconds=2.5)

        assert summary.campaigns_analyzed == 2
        assert summary.skipped_campaigns == 1
        assert summary.partial is True

    async def test_default_deadline(self, build, source):
        source.campaigns = [make_campaign(f"cmp-{i}") for i in range(1, 4)]
        orchestrator = build(max_concurrency=1, timer=StepTimer(1.0), default_deadline_seconds=1.5)

        summary = await orchestrator.run_batch_analysis()

        assert summary.campaigns_analyzed == 1
        assert summary.skipped_campaigns == 2

    async def test_no_deadline(self, build, source):
        source.campaigns = [make_campaign(f"cmp-{i}") for i in range(1, 4)]
        orchestrator = build(max_concurrency=1, timer=StepTimer(100.0))

        summary = await orchestrator.run_batch_analysis()

        assert summary.campaigns_analyzed == 3
        assert summary.partial is False


class TestCriticalPass:
    """Tests for the critical-only pass."""

    async def test_only_critical_candidates_kept(self, build, provider, source, store):
        source.campaigns = [
            make_campaign("cmp-1"),
            make_campaign("cmp-2"),
            make_campaign("cmp-3"),
        ]
        current, previous = roas_snapshots("100", "300")
        provider.set(
            "cmp-1",
            current=current.model_copy(update={"lost_is_budget": Decimal("0.5")}),
            previous=previous,
        )
        provider.set("cmp-2", current=MetricsSnapshot(lost_is_budget=Decimal("0.65")))
        provider.set("cmp-3", current=MetricsSnapshot(month_to_date_cost=1350))

        summary = await build().run_critical_only_pass()

        assert summary.run_type == "critical"
        assert summary.alerts_created == 1
        alert = summary.alerts[0]
        assert alert.campaign_id == "cmp-2"
        assert alert.alert_type == AlertType.BUDGET_LOSS
        assert alert.priority == AlertPriority.CRITICAL

    async def test_critical_burn_rate(self, build, provider, source):
        source.campaigns = [make_campaign("cmp-1")]
        provider.set("cmp-1", current=MetricsSnapshot(month_to_date_cost=1600))

        summary = await build().run_critical_only_pass()

        assert [a.alert_type for a in summary.alerts] == [AlertType.BURN_RATE]

    async def test_stricter_budget_threshold(self, build, provider, source):
        """Budget loss of 50% alerts in a full run but not in the critical pass."""
        source.campaigns = [make_campaign("cmp-1")]
        provider.set("cmp-1", current=MetricsSnapshot(lost_is_budget=Decimal("0.5")))
        orchestrator = build()

        assert (await orchestrator.run_critical_only_pass()).alerts == []
        assert len((await orchestrator.run_batch_analysis()).alerts) == 1

    async def test_reads_current_metrics_only(self, build, provider, source):
        source.campaigns = [make_campaign("cmp-1")]
        provider.set("cmp-1", current=MetricsSnapshot(month_to_date_cost=2000))
        provider.failing_operations.update({"get_previous", "get_weekly"})

        summary = await build().run_critical_only_pass()

        assert provider.calls == [("get_current", "cmp-1")]
        assert summary.errors == 0
        assert [a.alert_type for a in summary.alerts] == [AlertType.BURN_RATE]
        assert summary.alerts[0].priority == AlertPriority.CRITICAL

    async def test_full_run_still_reads_history(self, build, provider, source):
        source.campaigns = [make_campaign("cmp-1")]
        provider.set("cmp-1")

        await build().run_batch_analysis()

        assert sorted(op for op, _ in provider.calls) == ["get_current", "get_previous", "get_weekly"]


class TestSingleCampaign:
    """Tests for per-campaign analysis."""

    async def test_analyze_campaign_does_not_dispatch(self, build, provider, publisher, email_sender):
        roas_drop(provider)

        alerts = await build().analyze_campaign(make_campaign("cmp-1"))

        assert len(alerts) == 1
        assert alerts[0].email_sent is False
        assert email_sender.sent == []
        assert publisher.events == []

    async def test_analyze_by_id_dispatches(self, build, provider, email_sender):
        roas_drop(provider)

        alerts = await build().analyze_campaign_by_id("cmp-1")

        assert len(alerts) == 1
        assert alerts[0].chat_sent is True
        assert len(email_sender.sent) == 1

    async def test_analyze_by_id_not_found(self, build):
        with pytest.raises(NotFoundError):
            await build().analyze_campaign_by_id("cmp-404")

    async def test_analyze_by_id_malformed(self, build, provider):
        with pytest.raises(ValidationError):
            await build().analyze_campaign_by_id("cmp 1; drop")
        assert provider.calls == []

    async def test_analyze_provider_error_raises(self, build, provider):
        provider.failing.add("cmp-1")

        with pytest.raises(ProviderError):
            await build().analyze_campaign(make_campaign("cmp-1"))


class TestThresholdResolution:
    """Tests for configured and campaign-level thresholds."""

    async def test_campaign_override(self, build, provider):
        roas_drop(provider)
        campaign = make_campaign("cmp-1", threshold_overrides={"ROAS_DROP_PERCENT": 50})

        assert await build().analyze_campaign(campaign) == []

    async def test_tenant_threshold(self, build, provider):
        roas_drop(provider)
        config = AlertsConfig(thresholds={"*": {"ROAS_DROP_PERCENT": 10}, "acme": {"ROAS_DROP_PERCENT": 45}})

        assert await build(alerts_config=config).analyze_campaign(make_campaign("cmp-1")) == []

    async def test_campaign_beats_tenant(self, build, provider):
        roas_drop(provider)
        config = AlertsConfig(thresholds={"acme": {"ROAS_DROP_PERCENT": 45}})
        campaign = make_campaign("cmp-1", threshold_overrides={"roas_drop_percent": 30})

        alerts = await build(alerts_config=config).analyze_campaign(campaign)

        assert len(alerts) == 1
        assert alerts[0].threshold == Decimal("30")

    async def test_weekly_window_covers_ctr_drop_weeks(self, build, provider):
        """A campaign asking for five declining weeks gets five weeks fetched."""
        weekly = [MetricsSnapshot(impressions=1000, clicks=clicks) for clicks in (10, 20, 40, 80, 160, 320)]
        provider.set("cmp-1", weekly=weekly)
        campaign = make_campaign("cmp-1", threshold_overrides={"ctr_drop_weeks": 5})

        alerts = await build().analyze_campaign(campaign)

        assert provider.weeks_requested == [5]
        assert [a.alert_type for a in alerts] == [AlertType.CTR_DECLINE]

    async def test_weekly_window_keeps_configured_minimum(self, build, provider):
        provider.set("cmp-1")

        await build().analyze_campaign(make_campaign("cmp-1", threshold_overrides={"ctr_drop_weeks": 2}))

        assert provider.weeks_requested == [4]


class TestFactory:
    """Tests for the orchestrator factory."""

    async def test_factory_applies_dedup_settings(self, store, provider, source, dispatcher):
        config = AlertsConfig(dedup={"window_hours": 6, "refresh_delta": "0.5"})

        orchestrator = create_orchestrator(provider, source, store, dispatcher, alerts_config=config)

        assert orchestrator.deduplicator.dedup_window.total_seconds() == 6 * 3600
        assert orchestrator.deduplicator.refresh_delta == Decimal("0.5")

    async def test_rejects_zero_concurrency(self, build):
        with pytest.raises(ValueError):
            build(max_concurrency=0)
