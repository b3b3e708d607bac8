"""
Alert orchestrator for batch and per-campaign analysis.

This module provides the AlertOrchestrator class which drives the whole
pipeline: fetch metrics, run detectors, deduplicate into the store and
dispatch newly created alerts.

Key Features:
    - Per-campaign analysis with concurrent metric fetches
    - Batch runs over all eligible campaigns with a bounded worker pool
    - Optional run deadline: in-flight campaigns finish, no new ones start
    - Critical-only pass with a reduced detector list and stricter thresholds
    - Failures isolated per campaign and per alert

Example:
    >>> orchestrator = AlertOrchestrator(
    ...     provider=metrics_provider,
    ...     campaign_source=campaign_source,
    ...     store=store,
    ...     deduplicator=AlertDeduplicator(store),
    ...     dispatcher=dispatcher,
    ... )
    >>> summary = await orchestrator.run_batch_analysis(deadline_seconds=600)
    >>> summary.alerts_created
    4
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from adwatch.config.models import AlertsConfig
from adwatch.detection.deduplicator import AlertDeduplicator
from adwatch.detection.detectors import (
    ALL_DETECTORS,
    CRITICAL_PASS_DETECTORS,
    DetectionContext,
    Detector,
    run_detectors,
)
from adwatch.detection.dispatcher import AlertDispatcher
from adwatch.errors import (
    AlertEngineError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    StoreUnavailableError,
    validate_identifier,
)
from adwatch.interfaces.alert_store import AlertStore
from adwatch.interfaces.metrics_provider import CampaignSource, MetricsProvider
from adwatch.models.alerts import Alert, AlertCandidate, AlertPriority, utc_now
from adwatch.models.campaign import Campaign, MetricsSnapshot
from adwatch.models.results import BatchSummary, CampaignRunResult, UpsertResult

logger = structlog.get_logger(__name__)


FULL_RUN = "full"
CRITICAL_RUN = "critical"


class AlertOrchestrator:
    """
    Runs detection over campaigns and hands results to the dispatcher.

    Only newly created alerts are dispatched; refreshed and unchanged
    alerts were already delivered when they were created.

    Attributes:
        provider: Metrics source.
        campaign_source: Campaign source.
        store: Alert persistence.
        deduplicator: Candidate upserter.
        dispatcher: Notification fan-out.
        alerts_config: Thresholds, lookbacks and critical-pass settings.
        max_concurrency: Campaigns analyzed in parallel.
    """

    def __init__(
        self,
        provider: MetricsProvider,
        campaign_source: CampaignSource,
        store: AlertStore,
        deduplicator: AlertDeduplicator,
        dispatcher: AlertDispatcher,
        alerts_config: Optional[AlertsConfig] = None,
        max_concurrency: int = 5,
        provider_timeout: float = 30.0,
        store_timeout: float = 10.0,
        default_deadline_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            provider: Metrics source.
            campaign_source: Campaign source.
            store: Alert persistence.
            deduplicator: Candidate upserter.
            dispatcher: Notification fan-out.
            alerts_config: Alert settings, defaults when omitted.
            max_concurrency: Worker pool size for batch runs.
            provider_timeout: Seconds allowed for a provider call.
            store_timeout: Seconds allowed for the store health check.
            default_deadline_seconds: Run deadline used when none is passed.
            clock: Wall clock, sets the evaluation date.
            timer: Monotonic timer, drives deadlines and durations.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.provider = provider
        self.campaign_source = campaign_source
        self.store = store
        self.deduplicator = deduplicator
        self.dispatcher = dispatcher
        self.alerts_config = alerts_config or AlertsConfig()
        self.max_concurrency = max_concurrency
        self.provider_timeout = provider_timeout
        self.store_timeout = store_timeout
        self.default_deadline_seconds = default_deadline_seconds
        self._clock = clock
        self._timer = timer

        logger.info(
            "alert_orchestrator_initialized",
            max_concurrency=max_concurrency,
            provider_timeout=provider_timeout,
            default_deadline_seconds=default_deadline_seconds,
        )

    # =========================================================================
    # SINGLE CAMPAIGN
    # =========================================================================

    async def analyze_campaign(
        self,
        campaign: Campaign,
        detectors: Sequence[Detector] = ALL_DETECTORS,
    ) -> List[Alert]:
        """
        Run detectors for one campaign and upsert the candidates.

        Alerts are not dispatched here.

        Args:
            campaign: Campaign to analyze.
            detectors: Detectors to run.

        Returns:
            List[Alert]: Created, refreshed or unchanged alerts.

        Raises:
            ValidationError: If the campaign or recipient id is malformed.
            ProviderError: If metrics cannot be fetched.
        """
        result = await self._evaluate(campaign, detectors)
        return result.alerts

    async def analyze_campaign_by_id(self, campaign_id: str) -> List[Alert]:
        """
        Analyze one campaign by id and dispatch its new alerts.

        Args:
            campaign_id: Campaign identifier.

        Returns:
            List[Alert]: Alerts produced, with delivery flags as persisted.

        Raises:
            ValidationError: If the id is malformed.
            NotFoundError: If the campaign does not exist.
            ProviderError: If the campaign or its metrics cannot be fetched.

        Example:
            >>> alerts = await orchestrator.analyze_campaign_by_id("cmp-42")
        """
        campaign_id = validate_identifier(campaign_id, "campaign_id")
        campaign = await self._call_provider(
            "get_campaign",
            campaign_id,
            self.campaign_source.get(campaign_id),
        )
        if campaign is None:
            raise NotFoundError(f"Campaign not found: {campaign_id}", campaign_id=campaign_id)

        result = await self._analyze_and_dispatch(campaign, ALL_DETECTORS)
        return result.alerts

    # =========================================================================
    # BATCH RUNS
    # =========================================================================

    async def run_batch_analysis(self, deadline_seconds: Optional[float] = None) -> BatchSummary:
        """
        Analyze every eligible campaign.

        Args:
            deadline_seconds: Stop starting new campaigns after this many
                seconds. Falls back to the configured default.

        Returns:
            BatchSummary: Aggregated outcome of the run.

        Raises:
            StoreUnavailableError: If the alert store is unreachable.
            ProviderError: If the campaign list cannot be fetched.
        """
        return await self._run(FULL_RUN, ALL_DETECTORS, deadline_seconds)

    async def run_critical_only_pass(self, deadline_seconds: Optional[float] = None) -> BatchSummary:
        """
        Run the burn-rate and budget-loss detectors with critical-pass
        thresholds, keeping only candidates at the configured priority.

        Args:
            deadline_seconds: Run deadline, as for ``run_batch_analysis``.

        Returns:
            BatchSummary: Aggregated outcome of the pass.
        """
        critical = self.alerts_config.critical_pass
        return await self._run(
            CRITICAL_RUN,
            CRITICAL_PASS_DETECTORS,
            deadline_seconds,
            threshold_overrides=critical.threshold_overrides,
            min_priority=critical.min_priority,
        )

    async def _run(
        self,
        run_type: str,
        detectors: Sequence[Detector],
        deadline_seconds: Optional[float],
        threshold_overrides: Optional[Dict[str, Any]] = None,
        min_priority: Optional[AlertPriority] = None,
    ) -> BatchSummary:
        started = self._timer()
        deadline = deadline_seconds if deadline_seconds is not None else self.default_deadline_seconds
        deadline_at = started + deadline if deadline is not None else None

        await self._ensure_store_available()
        campaigns = await self._call_provider(
            "list_campaigns",
            None,
            self.campaign_source.list_eligible(),
        )

        logger.info(
            "batch_analysis_started",
            run_type=run_type,
            campaigns=len(campaigns),
            max_concurrency=self.max_concurrency,
            deadline_seconds=deadline,
        )

        queue: asyncio.Queue = asyncio.Queue()
        for campaign in campaigns:
            queue.put_nowait(campaign)

        results: List[CampaignRunResult] = []
        skipped = 0

        async def worker() -> None:
            nonlocal skipped
            while True:
                try:
                    campaign = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                if deadline_at is not None and self._timer() >= deadline_at:
                    skipped += 1
                    continue
                results.append(
                    await self._process_campaign(
                        campaign, detectors, threshold_overrides, min_priority
                    )
                )

        worker_count = max(1, min(self.max_concurrency, len(campaigns)))
        await asyncio.gather(*(worker() for _ in range(worker_count)))

        duration_ms = (self._timer() - started) * 1000
        summary = BatchSummary.from_results(results, run_type, skipped, duration_ms)

        log = logger.warning if summary.partial or summary.errors else logger.info
        log(
            "batch_analysis_complete",
            run_type=run_type,
            campaigns_analyzed=summary.campaigns_analyzed,
            alerts_generated=summary.alerts_generated,
            alerts_created=summary.alerts_created,
            dropped_alerts=summary.dropped_alerts,
            errors=summary.errors,
            skipped_campaigns=summary.skipped_campaigns,
            partial=summary.partial,
            duration_ms=summary.duration_ms,
        )
        return summary

    async def _process_campaign(
        self,
        campaign: Campaign,
        detectors: Sequence[Detector],
        threshold_overrides: Optional[Dict[str, Any]],
        min_priority: Optional[AlertPriority],
    ) -> CampaignRunResult:
        try:
            return await self._analyze_and_dispatch(
                campaign, detectors, threshold_overrides, min_priority
            )
        except AlertEngineError as e:
            logger.error(
                "campaign_analysis_failed",
                campaign_id=campaign.id,
                error_kind=type(e).__name__,
                error=e.message,
            )
            return CampaignRunResult(
                campaign_id=campaign.id,
                error=e.message,
                error_kind=type(e).__name__,
            )
        except Exception as e:
            logger.exception(
                "campaign_analysis_crashed",
                campaign_id=campaign.id,
                error=str(e),
            )
            return CampaignRunResult(
                campaign_id=campaign.id,
                error=str(e) or type(e).__name__,
                error_kind=type(e).__name__,
            )

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def _analyze_and_dispatch(
        self,
        campaign: Campaign,
        detectors: Sequence[Detector],
        threshold_overrides: Optional[Dict[str, Any]] = None,
        min_priority: Optional[AlertPriority] = None,
    ) -> CampaignRunResult:
        evaluated = await self._evaluate(campaign, detectors, threshold_overrides, min_priority)

        results: List[UpsertResult] = []
        dispatched = 0
        for result in evaluated.results:
            if not result.is_new:
                results.append(result)
                continue
            report = await self.dispatcher.dispatch(result.alert, campaign)
            results.append(UpsertResult(alert=report.alert, outcome=result.outcome))
            dispatched += 1

        return evaluated.model_copy(update={"results": results, "dispatched": dispatched})

    async def _evaluate(
        self,
        campaign: Campaign,
        detectors: Sequence[Detector],
        threshold_overrides: Optional[Dict[str, Any]] = None,
        min_priority: Optional[AlertPriority] = None,
    ) -> CampaignRunResult:
        validate_identifier(campaign.id, "campaign_id")
        validate_identifier(campaign.recipient_id, "recipient_id")

        context = await self._build_context(campaign, detectors, threshold_overrides)
        candidates = run_detectors(detectors, context)
        if min_priority is not None:
            candidates = [c for c in candidates if c.priority.rank >= min_priority.rank]

        results: List[UpsertResult] = []
        dropped = 0
        for candidate in candidates:
            try:
                results.append(
                    await self.deduplicator.upsert_with_outcome(
                        candidate, campaign.id, campaign.recipient_id
                    )
                )
            except PersistenceError as e:
                dropped += 1
                self._log_dropped(campaign, candidate, e)

        logger.info(
            "campaign_analyzed",
            campaign_id=campaign.id,
            candidates=len(candidates),
            alerts=len(results),
            dropped_alerts=dropped,
        )
        return CampaignRunResult(campaign_id=campaign.id, results=results, dropped_alerts=dropped)

    async def _build_context(
        self,
        campaign: Campaign,
        detectors: Sequence[Detector],
        threshold_overrides: Optional[Dict[str, Any]],
    ) -> DetectionContext:
        """
        Resolve thresholds, then fetch the snapshots the detectors read.

        The current snapshot is always fetched. The previous period and the
        weekly series are fetched only when some detector reads them; the
        weekly series covers at least ``ctr_drop_weeks`` weeks.
        """
        thresholds = self.alerts_config.resolve_thresholds(
            campaign.tenant_id,
            campaign.threshold_overrides,
        ).merged(threshold_overrides)

        lookback = self.alerts_config.lookback
        fetches = {
            "current": self._call_provider(
                "get_current", campaign.id, self.provider.get_current(campaign.id)
            ),
        }
        if any(detector.reads_previous for detector in detectors):
            fetches["previous"] = self._call_provider(
                "get_previous",
                campaign.id,
                self.provider.get_previous(campaign.id, lookback.previous_days),
            )
        if any(detector.reads_weekly for detector in detectors):
            weeks = max(lookback.weekly_weeks, thresholds.ctr_drop_weeks)
            fetches["weekly"] = self._call_provider(
                "get_weekly",
                campaign.id,
                self.provider.get_weekly(campaign.id, weeks),
            )

        snapshots = dict(zip(fetches, await asyncio.gather(*fetches.values())))

        return DetectionContext(
            campaign=campaign,
            current=snapshots["current"],
            previous=snapshots.get("previous", MetricsSnapshot()),
            weekly=list(snapshots.get("weekly", [])),
            thresholds=thresholds,
            as_of=self._clock().date(),
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _call_provider(self, operation: str, campaign_id: Optional[str], call) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self.provider_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"{operation} timed out",
                operation=operation,
                campaign_id=campaign_id,
                timeout_seconds=self.provider_timeout,
            ) from e
        except AlertEngineError:
            raise
        except Exception as e:
            raise ProviderError(
                f"{operation} failed: {e}",
                operation=operation,
                campaign_id=campaign_id,
            ) from e

    async def _ensure_store_available(self) -> None:
        try:
            reachable = await asyncio.wait_for(self.store.ping(), timeout=self.store_timeout)
        except Exception as e:
            raise StoreUnavailableError(f"Alert store unreachable: {e}") from e
        if not reachable:
            raise StoreUnavailableError("Alert store unreachable")

    @staticmethod
    def _log_dropped(campaign: Campaign, candidate: AlertCandidate, error: PersistenceError) -> None:
        logger.error(
            "alert_dropped",
            campaign_id=campaign.id,
            alert_type=candidate.alert_type.value,
            priority=candidate.priority.value,
            error=error.message,
        )


def create_orchestrator(
    provider: MetricsProvider,
    campaign_source: CampaignSource,
    store: AlertStore,
    dispatcher: AlertDispatcher,
    alerts_config: Optional[AlertsConfig] = None,
    max_concurrency: int = 5,
    provider_timeout: float = 30.0,
    store_timeout: float = 10.0,
    default_deadline_seconds: Optional[float] = None,
) -> AlertOrchestrator:
    """
    Factory function to create an AlertOrchestrator with its deduplicator.

    Args:
        provider: Metrics source.
        campaign_source: Campaign source.
        store: Alert persistence.
        dispatcher: Notification fan-out.
        alerts_config: Alert settings (dedup window, refresh delta, lookbacks).
        max_concurrency: Worker pool size.
        provider_timeout: Seconds allowed for a provider call.
        store_timeout: Seconds allowed for a store operation.
        default_deadline_seconds: Default run deadline.

    Returns:
        AlertOrchestrator: Configured orchestrator instance.

    Example:
        >>> orchestrator = create_orchestrator(
        ...     provider, source, store, dispatcher,
        ...     alerts_config=config.alerts,
        ...     max_concurrency=config.features.engine.max_concurrency,
        ... )
    """
    alerts_config = alerts_config or AlertsConfig()
    deduplicator = AlertDeduplicator(
        store,
        dedup_window_hours=alerts_config.dedup.window_hours,
        refresh_delta=alerts_config.dedup.refresh_delta,
        store_timeout=store_timeout,
    )
    return AlertOrchestrator(
        provider=provider,
        campaign_source=campaign_source,
        store=store,
        deduplicator=deduplicator,
        dispatcher=dispatcher,
        alerts_config=alerts_config,
        max_concurrency=max_concurrency,
        provider_timeout=provider_timeout,
        store_timeout=store_timeout,
        default_deadline_seconds=default_deadline_seconds,
    )
