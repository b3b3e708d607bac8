"""
Alert engine service entry point.

This service is responsible for:
- Running the full analysis over every eligible campaign on a schedule
- Running the frequent critical-only pass (burn rate, budget loss)
- Purging resolved and dismissed alerts past retention
- Sending the daily digest emails

Usage:
    python -m adwatch serve
    python -m adwatch batch
    python -m adwatch critical
    python -m adwatch analyze <campaign_id>
    python -m adwatch cleanup
    python -m adwatch digest

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    LOG_LEVEL: Logging level (default: INFO)
    CONFIG_PATH: Path to config directory (default: config)
    SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM: Email channel
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Any, Awaitable, Callable, List, Optional

import structlog

from adwatch import __version__
from adwatch.channels.chat import PostgresChatPoster
from adwatch.channels.email import SmtpEmailSender
from adwatch.channels.realtime import RedisRealtimePublisher
from adwatch.config.loader import ConfigLoadError
from adwatch.detection.dispatcher import AlertDispatcher, create_dispatcher
from adwatch.detection.maintenance import AlertMaintenance
from adwatch.detection.orchestrator import AlertOrchestrator, create_orchestrator
from adwatch.errors import AlertEngineError
from adwatch.services.runner import ServiceRunner, setup_logging
from adwatch.storage.alert_store import PostgresAlertStore
from adwatch.storage.metrics_provider import PostgresCampaignSource, PostgresMetricsProvider

logger = structlog.get_logger(__name__)


COMMANDS = ("serve", "batch", "critical", "analyze", "cleanup", "digest")


class AlertEngineService(ServiceRunner):
    """
    Scheduled alert engine.

    Attributes:
        store: Alert persistence.
        dispatcher: Notification fan-out.
        orchestrator: Batch and single-campaign analysis.
        maintenance: Retention cleanup and digests.
    """

    def __init__(self, config_path: str = "config") -> None:
        super().__init__(config_path)
        self.store: Optional[PostgresAlertStore] = None
        self.dispatcher: Optional[AlertDispatcher] = None
        self.orchestrator: Optional[AlertOrchestrator] = None
        self.maintenance: Optional[AlertMaintenance] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "alert-engine"

    async def _initialize(self) -> None:
        """Wire the engine components."""
        if self.config is None or self.redis_client is None or self.postgres_client is None:
            raise RuntimeError("Service not properly initialized")

        alerts = self.config.alerts
        engine = self.config.features.engine

        self.store = PostgresAlertStore(self.postgres_client)
        email_sender = SmtpEmailSender(alerts.channels.email, self.postgres_client)

        self.dispatcher = create_dispatcher(
            store=self.store,
            publisher=RedisRealtimePublisher(
                self.redis_client,
                channel_prefix=alerts.channels.realtime.channel_prefix,
            ),
            email_sender=email_sender,
            chat_poster=PostgresChatPoster(self.postgres_client),
            email_enabled=alerts.channels.email.enabled,
            chat_enabled=alerts.channels.chat.enabled,
            channel_timeout=engine.channel_timeout_seconds,
        )

        self.orchestrator = create_orchestrator(
            provider=PostgresMetricsProvider(self.postgres_client),
            campaign_source=PostgresCampaignSource(self.postgres_client),
            store=self.store,
            dispatcher=self.dispatcher,
            alerts_config=alerts,
            max_concurrency=engine.max_concurrency,
            provider_timeout=engine.provider_timeout_seconds,
            store_timeout=engine.store_timeout_seconds,
            default_deadline_seconds=engine.batch_deadline_seconds,
        )

        self.maintenance = AlertMaintenance(
            self.store,
            email_sender=email_sender if alerts.channels.email.enabled else None,
        )

        self.logger.info(
            "alert_engine_initialized",
            max_concurrency=engine.max_concurrency,
            email_enabled=alerts.channels.email.enabled,
            chat_enabled=alerts.channels.chat.enabled,
        )

    # =========================================================================
    # JOBS
    # =========================================================================

    async def run_batch(self) -> Any:
        """Full analysis of every eligible campaign."""
        summary = await self._require_orchestrator().run_batch_analysis()
        self.logger.info(
            "batch_job_complete",
            campaigns=summary.campaigns_analyzed,
            alerts_created=summary.alerts_created,
            errors=summary.errors,
            partial=summary.partial,
        )
        return summary

    async def run_critical(self) -> Any:
        """Critical-only pass."""
        summary = await self._require_orchestrator().run_critical_only_pass()
        self.logger.info(
            "critical_job_complete",
            campaigns=summary.campaigns_analyzed,
            alerts_created=summary.alerts_created,
            errors=summary.errors,
        )
        return summary

    async def run_analyze(self, campaign_id: str) -> Any:
        """Analyze one campaign and dispatch its new alerts."""
        alerts = await self._require_orchestrator().analyze_campaign_by_id(campaign_id)
        self.logger.info("analyze_job_complete", campaign_id=campaign_id, alerts=len(alerts))
        return alerts

    async def run_cleanup(self) -> int:
        """Purge terminal alerts past retention."""
        if self.maintenance is None or self.config is None:
            raise RuntimeError("Service not properly initialized")
        return await self.maintenance.purge_terminal_alerts(
            self.config.alerts.retention.terminal_alert_days
        )

    async def run_digest(self) -> Any:
        """Send the daily digests."""
        if self.maintenance is None or self.config is None:
            raise RuntimeError("Service not properly initialized")
        return await self.maintenance.send_daily_digests(
            self.config.alerts.retention.digest_window_hours
        )

    def _require_orchestrator(self) -> AlertOrchestrator:
        if self.orchestrator is None:
            raise RuntimeError("Service not properly initialized")
        return self.orchestrator

    # =========================================================================
    # SCHEDULER
    # =========================================================================

    async def _run(self) -> None:
        """Run the periodic jobs until shutdown."""
        if self.config is None:
            raise RuntimeError("Service not properly initialized")

        schedule = self.config.features.schedule
        self._tasks = [
            asyncio.create_task(self._periodic("batch", schedule.batch_interval_seconds, self.run_batch, 0)),
            asyncio.create_task(
                self._periodic(
                    "critical",
                    schedule.critical_interval_seconds,
                    self.run_critical,
                    schedule.critical_interval_seconds,
                )
            ),
            asyncio.create_task(
                self._periodic(
                    "cleanup",
                    schedule.cleanup_interval_seconds,
                    self.run_cleanup,
                    schedule.cleanup_interval_seconds,
                )
            ),
            asyncio.create_task(
                self._periodic(
                    "digest",
                    schedule.digest_interval_seconds,
                    self.run_digest,
                    schedule.digest_interval_seconds,
                )
            ),
        ]

        await self.shutdown_event.wait()

    async def _periodic(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[Any]],
        initial_delay: float,
    ) -> None:
        """Run ``job`` every ``interval`` seconds; a failed run is logged and retried next tick."""
        if await self._sleep(initial_delay):
            return

        while not self.shutdown_event.is_set():
            try:
                await job()
            except AlertEngineError as e:
                self.logger.error(
                    "scheduled_job_failed",
                    job=name,
                    error_kind=type(e).__name__,
                    error=e.message,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.exception("scheduled_job_crashed", job=name, error=str(e))

            if await self._sleep(interval):
                return

    async def _sleep(self, seconds: float) -> bool:
        """Wait ``seconds`` or until shutdown. Returns True on shutdown."""
        if seconds <= 0:
            return self.shutdown_event.is_set()
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _cleanup(self) -> None:
        """Cancel the periodic jobs."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []


def build_parser() -> argparse.ArgumentParser:
    """Command line parser."""
    parser = argparse.ArgumentParser(prog="adwatch", description="Campaign alert engine")
    parser.add_argument(
        "command",
        choices=COMMANDS,
        help="serve runs the scheduler; the others run one job and exit",
    )
    parser.add_argument("campaign_id", nargs="?", help="Campaign to analyze (analyze only)")
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config"),
        help="Configuration directory (default: $CONFIG_PATH or 'config')",
    )
    return parser


async def run_command(service: AlertEngineService, command: str, campaign_id: Optional[str] = None) -> Any:
    """Start the service, run one job, stop."""
    await service.start()
    try:
        if command == "batch":
            return await service.run_batch()
        if command == "critical":
            return await service.run_critical()
        if command == "analyze":
            return await service.run_analyze(campaign_id or "")
        if command == "cleanup":
            return await service.run_cleanup()
        if command == "digest":
            return await service.run_digest()
        raise ValueError(f"Unknown command: {command}")
    finally:
        await service.stop()


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    if args.command == "analyze" and not args.campaign_id:
        print("analyze requires a campaign_id", file=sys.stderr)
        return 2

    setup_logging()
    logger.info(
        "alert_engine_starting",
        version=__version__,
        command=args.command,
        config_path=args.config,
    )

    service = AlertEngineService(config_path=args.config)
    try:
        if args.command == "serve":
            await service.run()
        else:
            await run_command(service, args.command, args.campaign_id)
    except ConfigLoadError as e:
        logger.error("config_load_failed", error=e.message, file_path=str(e.file_path))
        return 1
    except AlertEngineError as e:
        logger.error("command_failed", error_kind=type(e).__name__, error=e.message, **e.details)
        return 1
    except Exception as e:
        logger.error("service_failed", error=str(e))
        return 1
    return 0


def cli() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
