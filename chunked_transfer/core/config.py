"""Unified configuration management: environment variables, YAML overlay, validation and typed views."""
import json
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chunked_transfer.core.exceptions import ConfigurationException

logger: logging.Logger = logging.getLogger(__name__)

ENV_PREFIX = "TRANSFER_"
MiB = 1024 * 1024


class Environment(Enum):
    """Deployment environment"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(Enum):
    """Log level"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class ReceiverConfig:
    """Receiver-side staging, validation and reassembly settings"""
    staging_dir: Path
    upload_dir: Path
    max_chunk_size: int
    max_upload_size: int
    max_total_chunks: int
    accepted_extensions: List[str]
    session_id_pattern: str
    max_file_name_length: int
    copy_buffer_size: int
    session_retention_seconds: int
    gc_enabled: bool
    gc_interval_seconds: int
    gc_probability: float


@dataclass
class LockConfig:
    """Per-session lock backend settings"""
    backend: str
    redis_url: str
    redis_max_connections: int
    redis_connection_pool_timeout: int
    lock_timeout: int
    lock_wait_timeout: float
    lock_poll_interval: float


@dataclass
class ClientConfig:
    """Upload client settings"""
    base_url: str
    username: Optional[str]
    password: Optional[str]
    chunk_size: int
    min_chunk_size: int
    max_chunk_size: int
    concurrency: int
    max_attempts: int
    complete_attempts: int
    chunk_timeout: float
    retry_delay: float
    target_chunk_seconds: float
    throughput_window: int
    min_samples: int
    compression_level: int
    compression_workers: int
    compression_threshold: int


@dataclass
class LoggingConfig:
    """Logging settings"""
    level: LogLevel
    log_dir: str
    enable_file: bool


class Settings(BaseSettings):
    """Application settings managed by pydantic-settings"""

    model_config = SettingsConfigDict(
        env_file=[".env.dev", ".env", ".env.local"],
        env_file_encoding="utf-8",
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="allow"
    )

    # Application
    app_name: str = Field(default="Chunked Transfer Service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")

    # Server
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port")

    # Staging and final storage
    staging_dir: Path = Field(default=Path("/tmp/chunked_transfer/staging"))
    upload_dir: Path = Field(default=Path("uploads"))

    # Receiver validation
    max_chunk_size: int = Field(default=10 * MiB, ge=1024, le=256 * MiB)
    max_upload_size: int = Field(default=2 * 1024 * MiB, ge=1024)
    max_total_chunks: int = Field(default=100_000, ge=1, le=999_999)
    accepted_extensions: List[str] = Field(default=[".kml", ".kmz"])
    session_id_pattern: str = Field(default=r"^[A-Za-z0-9_-]{1,128}$")
    max_file_name_length: int = Field(default=255, ge=1, le=1024)
    copy_buffer_size: int = Field(default=8192, ge=512, le=16 * MiB)

    # Garbage collection
    session_retention_seconds: int = Field(default=3600, ge=1)
    gc_enabled: bool = Field(default=True)
    gc_interval_seconds: int = Field(default=300, ge=1)
    gc_probability: float = Field(default=0.1, ge=0.0, le=1.0)

    # Session locks
    lock_backend: Literal["local", "redis"] = Field(default="local")
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_max_connections: int = Field(default=20, ge=1, le=100)
    redis_connection_pool_timeout: int = Field(default=5, ge=1, le=60)
    redis_lock_timeout: int = Field(default=30, ge=1, le=300)
    redis_lock_wait_timeout: float = Field(default=10.0, gt=0)
    redis_lock_poll_interval: float = Field(default=0.05, gt=0)

    # Authorization
    auth_enabled: bool = Field(default=True)
    auth_username: str = Field(default="admin")
    auth_password: str = Field(default="admin")

    # Upload client
    client_base_url: str = Field(default="http://localhost:8000/api/v1")
    client_chunk_size: int = Field(default=5 * MiB, ge=1)
    client_min_chunk_size: int = Field(default=1 * MiB, ge=1)
    client_max_chunk_size: int = Field(default=10 * MiB, ge=1)
    client_concurrency: int = Field(default=3, ge=1, le=64)
    client_max_attempts: int = Field(default=3, ge=1, le=20)
    client_complete_attempts: int = Field(default=3, ge=1, le=20)
    client_chunk_timeout: float = Field(default=60.0, gt=0)
    client_retry_delay: float = Field(default=0.5, ge=0)
    client_target_chunk_seconds: float = Field(default=2.0, gt=0)
    client_throughput_window: int = Field(default=10, ge=1)
    client_min_samples: int = Field(default=3, ge=1)
    compression_level: int = Field(default=6, ge=1, le=9)
    compression_workers: int = Field(default=2, ge=1, le=32)
    compression_threshold: int = Field(default=500 * 1024, ge=0)

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_dir: str = Field(default="logs")
    log_enable_file: bool = Field(default=True)

    # Performance monitoring
    slow_operation_threshold: float = Field(default=1.0, ge=0.1, le=60.0)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        """Accept environment names in any case"""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        """Accept log level names in any case"""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @field_validator("accepted_extensions")
    @classmethod
    def validate_extensions(cls, v):
        """Normalize extensions to lower case with a leading dot"""
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        if not normalized:
            raise ValueError("At least one accepted extension is required")
        return normalized

    @field_validator("session_id_pattern")
    @classmethod
    def validate_session_id_pattern(cls, v):
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid session id pattern: {e}")
        return v

    @model_validator(mode="before")
    @classmethod
    def validate_dependencies(cls, values):
        """Production requires file logging and authorization"""
        if not isinstance(values, dict):
            return values

        environment = values.get("environment", Environment.DEVELOPMENT)
        if isinstance(environment, str):
            environment = Environment(environment.lower())

        if environment == Environment.PRODUCTION:
            values["debug"] = False

            if str(values.get("log_enable_file", True)).lower() in ("0", "false", "no"):
                raise ValueError("Production environment requires file logging enabled")

            if str(values.get("auth_enabled", True)).lower() in ("0", "false", "no"):
                raise ValueError("Production environment requires authorization enabled")

        return values

    @model_validator(mode="after")
    def validate_chunk_sizes(self):
        """Client sizing bounds must fit inside the receiver ceiling"""
        if self.client_min_chunk_size > self.client_max_chunk_size:
            raise ValueError("client_min_chunk_size must not exceed client_max_chunk_size")
        if not self.client_min_chunk_size <= self.client_chunk_size <= self.client_max_chunk_size:
            raise ValueError("client_chunk_size must lie between client_min_chunk_size and client_max_chunk_size")
        if self.client_max_chunk_size > self.max_chunk_size:
            raise ValueError("client_max_chunk_size must not exceed max_chunk_size")
        return self

    def get_receiver_config(self) -> ReceiverConfig:
        return ReceiverConfig(
            staging_dir=Path(self.staging_dir),
            upload_dir=Path(self.upload_dir),
            max_chunk_size=self.max_chunk_size,
            max_upload_size=self.max_upload_size,
            max_total_chunks=self.max_total_chunks,
            accepted_extensions=list(self.accepted_extensions),
            session_id_pattern=self.session_id_pattern,
            max_file_name_length=self.max_file_name_length,
            copy_buffer_size=self.copy_buffer_size,
            session_retention_seconds=self.session_retention_seconds,
            gc_enabled=self.gc_enabled,
            gc_interval_seconds=self.gc_interval_seconds,
            gc_probability=self.gc_probability
        )

    def get_lock_config(self) -> LockConfig:
        return LockConfig(
            backend=self.lock_backend,
            redis_url=self.redis_url,
            redis_max_connections=self.redis_max_connections,
            redis_connection_pool_timeout=self.redis_connection_pool_timeout,
            lock_timeout=self.redis_lock_timeout,
            lock_wait_timeout=self.redis_lock_wait_timeout,
            lock_poll_interval=self.redis_lock_poll_interval
        )

    def get_client_config(self) -> ClientConfig:
        return ClientConfig(
            base_url=self.client_base_url,
            username=self.auth_username if self.auth_enabled else None,
            password=self.auth_password if self.auth_enabled else None,
            chunk_size=self.client_chunk_size,
            min_chunk_size=self.client_min_chunk_size,
            max_chunk_size=self.client_max_chunk_size,
            concurrency=self.client_concurrency,
            max_attempts=self.client_max_attempts,
            complete_attempts=self.client_complete_attempts,
            chunk_timeout=self.client_chunk_timeout,
            retry_delay=self.client_retry_delay,
            target_chunk_seconds=self.client_target_chunk_seconds,
            throughput_window=self.client_throughput_window,
            min_samples=self.client_min_samples,
            compression_level=self.compression_level,
            compression_workers=self.compression_workers,
            compression_threshold=self.compression_threshold
        )

    def get_logging_config(self) -> LoggingConfig:
        return LoggingConfig(
            level=self.log_level,
            log_dir=self.log_dir,
            enable_file=self.log_enable_file
        )


_CONFIG_GROUPS: Dict[str, str] = {
    "receiver": "get_receiver_config",
    "lock": "get_lock_config",
    "client": "get_client_config",
    "logging": "get_logging_config",
}


class ConfigManager:
    """Configuration manager - singleton"""

    _instance: Optional['ConfigManager'] = None
    _settings: Optional[Settings] = None
    _config_cache: Dict[str, Any] = {}

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, config_file: Optional[str] = None):
        if hasattr(self, '_initialized'):
            return

        self._initialized = True
        self.config_file = config_file or os.getenv(f"{ENV_PREFIX}CONFIG_FILE")
        self._watchers: List[Callable[[str, Any], None]] = []

        self._load_settings()

    def _load_settings(self):
        """Load settings, overlaying the optional YAML file through the environment"""
        try:
            if self.config_file and Path(self.config_file).exists():
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    config_data = yaml.safe_load(f) or {}

                for key, value in config_data.items():
                    env_key = f"{ENV_PREFIX}{key.upper()}"
                    if isinstance(value, (dict, list)):
                        os.environ[env_key] = json.dumps(value)
                    else:
                        os.environ[env_key] = str(value)

            self._settings = Settings()
            self._validate_settings()
            self._refresh_cache()

        except ConfigurationException:
            raise
        except Exception as e:
            raise ConfigurationException(f"Failed to load settings: {str(e)}")

    def _refresh_cache(self):
        self._config_cache = {
            name: getattr(self._settings, getter)() for name, getter in _CONFIG_GROUPS.items()
        }

    def _validate_settings(self):
        if not self._settings:
            raise ConfigurationException("Settings not loaded")

        if self._settings.lock_backend == "redis" and not self._settings.redis_url:
            raise ConfigurationException("Redis lock backend requires redis_url", config_key="redis_url")

        if self._settings.environment == Environment.PRODUCTION:
            self._validate_production_config()

    def _validate_production_config(self):
        if self._settings.debug:
            raise ConfigurationException("Debug mode should be disabled in production")

        if not self._settings.log_enable_file:
            raise ConfigurationException("File logging must be enabled in production")

        if not self._settings.auth_enabled:
            raise ConfigurationException("Authorization must be enabled in production")

    @property
    def settings(self) -> Settings:
        if not self._settings:
            raise ConfigurationException("Settings not initialized")
        return self._settings

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self.settings, key, default)

    def get_typed_config(self, config_type: str) -> Any:
        """Return one of the typed config groups: receiver, lock, client, logging"""
        if config_type not in self._config_cache:
            raise ConfigurationException(f"Unknown config type: {config_type}")
        return self._config_cache[config_type]

    def update(self, key: str, value: Any):
        """Update a single setting and notify watchers"""
        if not hasattr(self.settings, key):
            raise ConfigurationException(f"Unknown configuration key: {key}", config_key=key)

        setattr(self.settings, key, value)
        self._refresh_cache()
        self._notify_watchers(key, value)

    def add_watcher(self, watcher: Callable[[str, Any], None]):
        self._watchers.append(watcher)

    def _notify_watchers(self, key: str, value: Any):
        for watcher in self._watchers:
            try:
                watcher(key, value)
            except Exception as e:
                logger.warning("Failed to notify config watcher: %s", e)

    def reload(self):
        self._load_settings()

    def export_config(self, format: Literal['yaml', 'json', 'env'] = 'yaml') -> str:
        """Export the current settings"""
        config_dict = self.settings.model_dump(mode="json")

        if format == 'json':
            return json.dumps(config_dict, indent=2, ensure_ascii=False)
        elif format == 'env':
            lines = []
            for key, value in config_dict.items():
                env_key = f"{ENV_PREFIX}{key.upper()}"
                if isinstance(value, (dict, list)):
                    lines.append(f"{env_key}='{json.dumps(value)}'")
                else:
                    lines.append(f"{env_key}={value}")
            return "\n".join(lines)
        else:
            return yaml.dump(config_dict, default_flow_style=False, allow_unicode=True)


# Global configuration manager
config_manager = ConfigManager()
