"""
Storage clients and collaborator adapters.

Components:
    postgres_client: Async PostgreSQL client for alerts, campaigns and metrics
    redis_client: Async Redis client for realtime pub/sub
    alert_store: AlertStore over PostgreSQL
    metrics_provider: MetricsProvider and CampaignSource over PostgreSQL
"""

from adwatch.storage.redis_client import (
    RedisClient,
    RedisClientError,
    RedisConnectionException,
    RedisOperationError,
)
from adwatch.storage.postgres_client import (
    PostgresClient,
    PostgresClientError,
    PostgresConnectionException,
    PostgresOperationError,
)
from adwatch.storage.alert_store import PostgresAlertStore
from adwatch.storage.metrics_provider import PostgresCampaignSource, PostgresMetricsProvider

__all__: list[str] = [
    # Redis
    "RedisClient",
    "RedisClientError",
    "RedisConnectionException",
    "RedisOperationError",
    # PostgreSQL
    "PostgresClient",
    "PostgresClientError",
    "PostgresConnectionException",
    "PostgresOperationError",
    # Adapters
    "PostgresAlertStore",
    "PostgresCampaignSource",
    "PostgresMetricsProvider",
]
