"""
Alert engine settings.

``load_config(dir)`` reads ``alerts.yaml`` (thresholds per tenant, dedup
window, lookbacks, critical pass, retention, channels) and
``features.yaml`` (concurrency, timeouts, schedules, logging), then
applies connection URLs and SMTP secrets from the environment.

Example:
    >>> from adwatch.config import load_config
    >>> load_config().alerts.resolve_thresholds("acme").ctr_drop_weeks
    3
"""

from adwatch.config.loader import ConfigLoadError, ConfigLoader, load_config
from adwatch.config.models import (
    # Enums
    LogFormat,
    LogLevel,
    # Alert config
    AlertsConfig,
    ChannelsConfig,
    ChatChannelConfig,
    CriticalPassConfig,
    DedupConfig,
    EmailChannelConfig,
    LookbackConfig,
    RealtimeChannelConfig,
    RetentionConfig,
    # Features config
    EngineConfig,
    FeaturesConfig,
    LoggingConfig,
    ScheduleConfig,
    # Connection config
    PostgresConnectionConfig,
    RedisConnectionConfig,
    # Root config
    AppConfig,
)

__all__: list[str] = [
    # Loader
    "load_config",
    "ConfigLoader",
    "ConfigLoadError",
    # Enums
    "LogFormat",
    "LogLevel",
    # Alert config
    "DedupConfig",
    "LookbackConfig",
    "CriticalPassConfig",
    "RetentionConfig",
    "RealtimeChannelConfig",
    "EmailChannelConfig",
    "ChatChannelConfig",
    "ChannelsConfig",
    "AlertsConfig",
    # Features config
    "EngineConfig",
    "ScheduleConfig",
    "LoggingConfig",
    "FeaturesConfig",
    # Connection config
    "RedisConnectionConfig",
    "PostgresConnectionConfig",
    # Root config
    "AppConfig",
]
