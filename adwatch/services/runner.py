"""
Shared service scaffolding: logging setup and the ServiceRunner base class.

A service subclasses ServiceRunner and implements ``_initialize``,
``_run`` and ``_cleanup``. The runner loads configuration, connects to
PostgreSQL and Redis, installs signal handlers and tears everything down
in reverse order.

Example:
    >>> class MyService(ServiceRunner):
    ...     @property
    ...     def service_name(self) -> str:
    ...         return "my-service"
    ...     async def _initialize(self) -> None: ...
    ...     async def _run(self) -> None: ...
    ...     async def _cleanup(self) -> None: ...
    >>> await MyService("config").run()
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from adwatch.config.loader import load_config
from adwatch.config.models import AppConfig, LogFormat, LogLevel
from adwatch.storage.postgres_client import PostgresClient
from adwatch.storage.redis_client import RedisClient


def setup_logging(
    level: Optional[LogLevel] = None,
    log_format: LogFormat = LogFormat.JSON,
) -> None:
    """
    Configure structured logging for a service.

    Args:
        level: Log level, defaults to LOG_LEVEL from the environment or INFO.
        log_format: JSON lines for production, console rendering for local runs.
    """
    level_name = level.value if level is not None else os.getenv("LOG_LEVEL", "INFO").upper()

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == LogFormat.JSON
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name, logging.INFO),
        force=True,
    )

    # asyncpg logs every pool event at DEBUG
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


class ServiceRunner(ABC):
    """
    Base class for long-running services.

    Attributes:
        config_path: Configuration directory.
        config: Loaded configuration, set by ``start``.
        postgres_client: Connected PostgreSQL client.
        redis_client: Connected Redis client.
        shutdown_event: Set when the service should stop.
        logger: Logger bound to the service name.
    """

    def __init__(self, config_path: str = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.postgres_client: Optional[PostgresClient] = None
        self.redis_client: Optional[RedisClient] = None
        self.shutdown_event = asyncio.Event()
        self.logger = structlog.get_logger(self.service_name)

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Name used in logs."""

    @abstractmethod
    async def _initialize(self) -> None:
        """Build service components once connections are up."""

    @abstractmethod
    async def _run(self) -> None:
        """Service main loop; returns when ``shutdown_event`` is set."""

    async def _cleanup(self) -> None:
        """Service-specific cleanup before connections close."""

    def request_shutdown(self) -> None:
        """Ask the service to stop."""
        if not self.shutdown_event.is_set():
            self.logger.info("shutdown_requested", service=self.service_name)
            self.shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                pass

    async def start(self) -> None:
        """
        Load configuration, configure logging and connect to the stores.

        Raises:
            ConfigLoadError: If configuration is invalid.
            PostgresConnectionException: If PostgreSQL is unreachable.
            RedisConnectionException: If Redis is unreachable.
        """
        self.config = load_config(self.config_path)
        setup_logging(self.config.log_level, self.config.features.logging.format)

        self.postgres_client = PostgresClient(self.config.postgres)
        await self.postgres_client.connect()

        self.redis_client = RedisClient(self.config.redis)
        await self.redis_client.connect()

        await self._initialize()
        self.logger.info("service_started", service=self.service_name)

    async def stop(self) -> None:
        """Run service cleanup and close connections. Safe to call twice."""
        try:
            await self._cleanup()
        except Exception as e:
            self.logger.error("service_cleanup_error", error=str(e))

        if self.redis_client is not None:
            await self.redis_client.disconnect()
            self.redis_client = None
        if self.postgres_client is not None:
            await self.postgres_client.disconnect()
            self.postgres_client = None

        self.logger.info("service_stopped", service=self.service_name)

    async def run(self) -> None:
        """Start, run until shutdown, then stop."""
        self._install_signal_handlers()
        try:
            await self.start()
            await self._run()
        finally:
            await self.stop()
