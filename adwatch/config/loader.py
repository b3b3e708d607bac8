"""
YAML configuration loading.

Two files are read from the configuration directory and each is validated
as a whole against its root model:

    - alerts.yaml: Thresholds, dedup, lookbacks, channels, retention
    - features.yaml: Engine concurrency, timeouts, schedule, logging

Connection settings and secrets come from the environment:

    DATABASE_URL, REDIS_URL, LOG_LEVEL,
    SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM, DASHBOARD_URL

Example:
    >>> from adwatch.config.loader import load_config
    >>> load_config("config").alerts.dedup.window_hours
    24
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from adwatch.config.models import (
    AlertsConfig,
    AppConfig,
    FeaturesConfig,
    LogLevel,
    PostgresConnectionConfig,
    RedisConnectionConfig,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

ALERTS_FILE = "alerts.yaml"
FEATURES_FILE = "features.yaml"

# env var -> key in channels.email
_SMTP_ENV: Dict[str, str] = {
    "SMTP_HOST": "smtp_host",
    "SMTP_PORT": "smtp_port",
    "SMTP_USER": "smtp_user",
    "SMTP_PASSWORD": "smtp_password",
    "SMTP_FROM": "from_address",
    "DASHBOARD_URL": "dashboard_url",
}


class ConfigLoadError(Exception):
    """
    Configuration could not be read or did not validate.

    Attributes:
        message: What went wrong.
        file_path: Offending file or directory, when there is one.
        cause: Underlying exception, when there is one.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[Path] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.file_path = file_path
        self.cause = cause
        super().__init__(message)


def _drop_empty_sections(data: Dict[str, Any]) -> Dict[str, Any]:
    """A bare ``section:`` line parses as None; treat it as absent."""
    return {key: value for key, value in data.items() if value is not None}


class ConfigLoader:
    """
    Reads and validates the configuration directory.

    Example:
        >>> ConfigLoader("config").load().features.engine.max_concurrency
        5
    """

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise ConfigLoadError(
                f"Configuration directory not found: {self.config_dir}",
                file_path=self.config_dir,
            )

    def read_mapping(self, filename: str) -> Dict[str, Any]:
        """
        Parse one YAML file that must hold a non-empty mapping.

        Raises:
            ConfigLoadError: Missing, unreadable, empty, or not a mapping.
        """
        path = self.config_dir / filename
        if not path.is_file():
            raise ConfigLoadError(f"Configuration file not found: {path}", file_path=path)

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML syntax in {path}: {e}", file_path=path, cause=e) from e
        except OSError as e:
            raise ConfigLoadError(f"Error reading {path}: {e}", file_path=path, cause=e) from e

        if not data:
            raise ConfigLoadError(f"Configuration file is empty: {path}", file_path=path)
        if not isinstance(data, dict):
            raise ConfigLoadError(f"Configuration file must contain a mapping: {path}", file_path=path)
        return _drop_empty_sections(data)

    def _validate(self, filename: str, model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
        try:
            return model.model_validate(data)
        except (ValidationError, TypeError) as e:
            raise ConfigLoadError(
                f"Invalid configuration in {filename}: {e}",
                file_path=self.config_dir / filename,
                cause=e,
            ) from e

    def load_alerts(self) -> AlertsConfig:
        data = self.read_mapping(ALERTS_FILE)

        channels = dict(data.get("channels") or {})
        email = dict(channels.get("email") or {})
        email.update({field: os.environ[env] for env, field in _SMTP_ENV.items() if os.environ.get(env)})
        channels["email"] = email
        data["channels"] = _drop_empty_sections(channels)

        return self._validate(ALERTS_FILE, AlertsConfig, data)

    def load_features(self) -> FeaturesConfig:
        return self._validate(FEATURES_FILE, FeaturesConfig, self.read_mapping(FEATURES_FILE))

    def load(self) -> AppConfig:
        """
        Load both files and overlay the environment.

        LOG_LEVEL wins over ``logging.level`` when it names a valid level
        and is ignored otherwise.

        Raises:
            ConfigLoadError: If anything is missing or invalid.
        """
        alerts = self.load_alerts()
        features = self.load_features()

        try:
            log_level = LogLevel(os.getenv("LOG_LEVEL", features.logging.level.value).upper())
        except ValueError:
            log_level = features.logging.level

        try:
            return AppConfig(
                alerts=alerts,
                features=features,
                redis=RedisConnectionConfig(url=os.getenv("REDIS_URL", RedisConnectionConfig().url)),
                postgres=PostgresConnectionConfig(
                    url=os.getenv("DATABASE_URL", PostgresConnectionConfig().url)
                ),
                log_level=log_level,
            )
        except ValidationError as e:
            raise ConfigLoadError(f"Configuration validation failed: {e}", cause=e) from e


def load_config(config_dir: Path | str = "config") -> AppConfig:
    """
    Load and validate the configuration directory.

    Raises:
        ConfigLoadError: If configuration loading fails.

    Example:
        >>> load_config().alerts.resolve_thresholds("acme").burn_rate_threshold
        Decimal('1.3')
    """
    return ConfigLoader(config_dir).load()
