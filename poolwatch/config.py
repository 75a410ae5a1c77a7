"""Configuration models for PoolWatch.

This module contains Pydantic models for configuration validation
and the loader that reads them from YAML and the environment.
"""

import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from poolwatch.common.errors import ConfigError
from poolwatch.pool.models import Account

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")


class PoolConfig(BaseModel):
    """Pool API configuration.

    ``status_url`` may contain a ``{token}`` placeholder; without one the
    account token is sent as the ``token`` query parameter. ``workers_url``
    and ``blocks_url`` follow the same rules and are only requested when set.
    """
    status_url: str
    workers_url: Optional[str] = None
    blocks_url: Optional[str] = None
    auth_header: Optional[str] = None
    request_timeout_seconds: float = Field(default=15.0, gt=0)
    proxy: Optional[str] = None

    @field_validator("status_url", "workers_url", "blocks_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the URL scheme."""
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("pool URLs must be http(s) URLs")
        return v


class PollConfig(BaseModel):
    """Poll cadence configuration."""
    interval_seconds: float = Field(default=60.0, gt=0)
    jitter_fraction: float = Field(default=0.1, ge=0, lt=1)


class ThresholdsConfig(BaseModel):
    """Change detection thresholds."""
    stale_after_seconds: float = Field(default=600.0, gt=0)
    drop_fraction: float = Field(default=0.5, gt=0, le=1)
    drop_confirmations: int = Field(default=2, ge=2)


class DeliveryConfig(BaseModel):
    """Event queue and delivery retry configuration."""
    queue_size: int = Field(default=1000, gt=0)
    base_delay_seconds: float = Field(default=1.0, gt=0)
    max_delay_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=6, gt=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)

    @model_validator(mode="after")
    def validate_delays(self) -> "DeliveryConfig":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self


class MatrixConfig(BaseModel):
    """Matrix chat configuration."""
    homeserver_url: str
    user_id: str
    password: Optional[str] = None
    access_token: Optional[str] = None
    device_id: Optional[str] = None
    device_name: str = "PoolWatch Bot"
    display_name: Optional[str] = None
    proxy: Optional[str] = None
    rooms: List[str] = Field(min_length=1)

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        """Validate the fully qualified Matrix user id (@user:server)."""
        if not v.startswith("@") or ":" not in v:
            raise ValueError("user_id must look like @user:homeserver")
        return v

    @field_validator("rooms")
    @classmethod
    def validate_rooms(cls, v: List[str]) -> List[str]:
        """Validate room ids or aliases."""
        if not all(room.startswith(("!", "#")) for room in v):
            raise ValueError("rooms must be room ids (!id:server) or aliases (#alias:server)")
        if len(set(v)) != len(v):
            raise ValueError("rooms must be unique")
        return v

    def __repr__(self) -> str:
        return (
            f"MatrixConfig(homeserver_url={self.homeserver_url!r}, "
            f"user_id={self.user_id!r}, rooms={self.rooms!r})"
        )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate logging format."""
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Invalid format. Must be one of: {', '.join(valid_formats)}")
        return v.lower()


class StorageConfig(BaseModel):
    """Checkpoint storage configuration."""
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".poolwatch")
    database_url: Optional[str] = None

    @field_validator("data_dir")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_dir / 'poolwatch.db'}"


class AppConfig(BaseModel):
    """Main application configuration."""
    pool: PoolConfig
    poll: PollConfig = Field(default_factory=PollConfig)
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    matrix: MatrixConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    accounts: List[Account] = Field(min_length=1)

    @field_validator("accounts")
    @classmethod
    def validate_accounts(cls, v: List[Account]) -> List[Account]:
        """Validate account ids are unique and every account has a token."""
        ids = [account.account_id for account in v]
        if len(set(ids)) != len(ids):
            raise ValueError("account ids must be unique")
        missing = [account.account_id for account in v if not account.token]
        if missing:
            raise ValueError(f"Missing pool token for accounts: {', '.join(missing)}")
        return v

    def rooms_for(self, account: Account) -> List[str]:
        """Get the rooms an account's events are announced in."""
        return list(account.room_ids) or list(self.matrix.rooms)


def _apply_environment(data: Dict, env: Mapping[str, str]) -> Dict:
    """Fill secrets from environment variables.

    - MATRIX_PASSWORD / MATRIX_ACCESS_TOKEN for the chat login
    - ``token_env`` on an account names the variable holding its pool token
    """
    matrix = data.setdefault("matrix", {}) or {}
    data["matrix"] = matrix
    if not matrix.get("password") and env.get("MATRIX_PASSWORD"):
        matrix["password"] = env["MATRIX_PASSWORD"]
    if not matrix.get("access_token") and env.get("MATRIX_ACCESS_TOKEN"):
        matrix["access_token"] = env["MATRIX_ACCESS_TOKEN"]

    accounts = []
    for account in data.get("accounts") or []:
        account = dict(account)
        token_env = account.get("token_env")
        if not account.get("token") and token_env:
            if token_env not in env:
                raise ConfigError(f"Environment variable {token_env} is not set")
            account["token"] = env[token_env]
        accounts.append(account)
    data["accounts"] = accounts
    return data


def load_config(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load configuration from a YAML file and the environment.

    Args:
        path: Path to the YAML config file. Defaults to config/config.yaml
        env: Environment mapping. Defaults to os.environ after loading .env

    Returns:
        AppConfig: Validated configuration

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if env is None:
        load_dotenv()
        env = os.environ

    if not config_path.exists():
        raise ConfigError(f"Config file not found at {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    try:
        config = AppConfig(**_apply_environment(data, env))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if not (config.matrix.password or config.matrix.access_token):
        raise ConfigError("Either matrix.password or matrix.access_token must be set")

    logger.info(
        "config_loaded",
        path=str(config_path),
        accounts=len(config.accounts),
        rooms=len(config.matrix.rooms),
    )
    return config
