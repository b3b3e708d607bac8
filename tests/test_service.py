"""Tests for the alert engine service scheduling and command line."""

import asyncio

import pytest

from adwatch.errors import ProviderError
from adwatch.services.alert_engine import AlertEngineService, build_parser, main


pytestmark = pytest.mark.asyncio


class TestCommandLine:
    """Tests for argument handling."""

    async def test_parser(self):
        args = build_parser().parse_args(["analyze", "cmp-1", "--config", "/etc/adwatch"])

        assert args.command == "analyze"
        assert args.campaign_id == "cmp-1"
        assert args.config == "/etc/adwatch"

    async def test_unknown_command_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["explode"])

    async def test_analyze_requires_campaign(self):
        assert await main(["analyze"]) == 2


class TestScheduler:
    """Tests for the periodic job loop."""

    async def test_failed_runs_do_not_stop_the_loop(self):
        service = AlertEngineService()
        calls = []

        async def job():
            calls.append(len(calls))
            if len(calls) == 1:
                raise ProviderError("warehouse down")
            if len(calls) == 2:
                raise RuntimeError("unexpected")
            service.request_shutdown()

        await service._periodic("batch", 0, job, 0)

        assert len(calls) == 3

    async def test_shutdown_during_initial_delay(self):
        service = AlertEngineService()
        calls = []

        async def job():
            calls.append(1)

        task = asyncio.create_task(service._periodic("digest", 60, job, 60))
        await asyncio.sleep(0)
        service.request_shutdown()
        await asyncio.wait_for(task, timeout=1)

        assert calls == []

    async def test_cleanup_cancels_jobs(self):
        service = AlertEngineService()

        async def job():
            pass

        service._tasks = [asyncio.create_task(service._periodic("cleanup", 3600, job, 3600))]
        await service._cleanup()

        assert service._tasks == []

    async def test_jobs_require_initialization(self):
        with pytest.raises(RuntimeError):
            await AlertEngineService().run_batch()
