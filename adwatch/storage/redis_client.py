"""
Publish-only Redis client for realtime alert fan-out.

The engine never subscribes. Operator dashboards listen on
``{prefix}:user_{id}`` and ``{prefix}:conversation_{id}`` through the
websocket gateway, which owns the subscriber side.

Decimals are sent as strings so amounts survive the JSON hop unchanged.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from adwatch.config.models import RedisConnectionConfig

logger = structlog.get_logger(__name__)


class RedisClientError(Exception):
    """Base exception for Redis client errors."""


class RedisConnectionException(RedisClientError):
    """Redis is unreachable or the client was never connected."""


class RedisOperationError(RedisClientError):
    """A command was sent but failed."""


def encode_message(message: Dict[str, Any]) -> str:
    """Serialize a pub/sub body; Decimal -> str, datetime/date -> ISO-8601."""

    def default(obj: Any) -> str:
        if isinstance(obj, Decimal):
            return str(obj)
        if hasattr(obj, "isoformat"):
            return obj.isoformat()
        raise TypeError(f"cannot encode {type(obj).__name__}")

    return json.dumps(message, default=default)


class RedisClient:
    """
    Pooled async Redis connection used as the realtime event bus.

    Example:
        >>> client = RedisClient(RedisConnectionConfig(url="redis://localhost:6379"))
        >>> await client.connect()
        >>> await client.publish("realtime:user_42", {"event": "new_alert", "payload": {}})
    """

    def __init__(self, config: RedisConnectionConfig) -> None:
        self.config = config
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None  # type: ignore[type-arg]
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """
        Open the pool and verify it with PING.

        Raises:
            RedisConnectionException: If Redis cannot be reached.
        """
        if self.is_connected:
            return

        self._pool = ConnectionPool.from_url(
            self.config.url,
            db=self.config.db,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.socket_timeout,
            socket_connect_timeout=self.config.socket_timeout,
            decode_responses=True,
        )
        self._client = Redis(connection_pool=self._pool)
        try:
            await self._client.ping()
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            await self.disconnect()
            logger.error("redis_connect_failed", url=self.config.url, error=str(e))
            raise RedisConnectionException(f"Redis unreachable at {self.config.url}: {e}") from e

        self._connected = True
        logger.info("redis_connected", url=self.config.url, db=self.config.db)

    async def disconnect(self) -> None:
        """Release the client and pool. Idempotent."""
        client, pool = self._client, self._pool
        self._client, self._pool, self._connected = None, None, False

        if client is not None:
            try:
                await client.aclose()
            except RedisError as e:
                logger.warning("redis_close_error", error=str(e))
        if pool is not None:
            await pool.disconnect()

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def publish(self, channel: str, message: Dict[str, Any]) -> int:
        """
        Publish ``message`` as JSON on ``channel``.

        Returns:
            int: Number of subscribers that received it (0 is not an error).

        Raises:
            RedisConnectionException: If the client is not connected.
            RedisOperationError: If encoding or the PUBLISH command fails.
        """
        if not self.is_connected:
            raise RedisConnectionException("Redis client is not connected")

        try:
            receivers = await self._client.publish(channel, encode_message(message))  # type: ignore[union-attr]
        except (RedisError, TypeError) as e:
            logger.error("redis_publish_failed", channel=channel, error=str(e))
            raise RedisOperationError(f"publish to {channel} failed: {e}") from e

        logger.debug("redis_published", channel=channel, receivers=receivers)
        return int(receivers)
