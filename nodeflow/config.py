"""Configuration management for the NodeFlow workflow engine.

Every setting can be supplied as an environment variable named
``NODEFLOW_<FIELD_NAME>`` (for example ``NODEFLOW_API_NODE_MODE=live``).
List settings are comma separated; mapping settings are JSON objects. The
Gemini key is also read from the conventional ``GEMINI_API_KEY``.
"""

import os
import json
import typing
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator
from enum import Enum


ENV_PREFIX = "NODEFLOW_"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class ApiNodeMode(str, Enum):
    """How `api` nodes reach the outside world."""
    SIMULATE = "simulate"
    LIVE = "live"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application
    app_name: str = Field(default="NodeFlow Workflow Engine")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False, description="Debug mode (verbose errors, access log)")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    reload: bool = Field(default=False, description="Auto-reload on code changes")

    # Database
    database_url: str = Field(default="sqlite:///./nodeflow.db", description="SQLAlchemy database URL")
    database_echo: bool = Field(default=False, description="Log every SQL statement")

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file: Optional[str] = Field(default=None, description="Also log to this rotating file")
    log_structured: bool = Field(default=False, description="Emit JSON log records")
    log_max_size: int = Field(default=10 * 1024 * 1024, description="Rotate the log file at this many bytes")
    log_backup_count: int = Field(default=5)

    # AI completion
    gemini_api_key: Optional[str] = Field(default=None)
    gemini_base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    default_model: str = Field(default="gemini-1.5-flash", description="Model used when a prompt node names none")
    completion_timeout: float = Field(default=60.0, description="Seconds before a completion request is abandoned")

    # Node behaviour
    api_node_mode: ApiNodeMode = Field(default=ApiNodeMode.SIMULATE)
    api_node_timeout: float = Field(default=30.0, description="Seconds allowed for a live api node request")
    upload_dir: str = Field(default="./uploads", description="File nodes read paths only from below this directory")
    variable_aliases: Dict[str, str] = Field(
        default_factory=dict,
        description="Template path aliases, old path -> canonical path"
    )
    abort_on_capability_error: List[str] = Field(
        default_factory=list,
        description="Node types whose capability errors abort the run instead of being embedded"
    )
    record_node_executions: bool = Field(default=True, description="Persist per-node execution records")

    # Health and monitoring
    health_check_timeout: float = Field(default=5.0)
    slow_request_threshold: float = Field(default=5.0, description="Requests slower than this are logged")
    enable_performance_monitoring: bool = Field(default=True)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    cors_methods: List[str] = Field(default_factory=lambda: ["GET", "POST", "PUT", "DELETE"])

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("Database URL cannot be empty")

        scheme = v.split('://')[0].lower().split('+')[0]
        supported = [db_type.value for db_type in DatabaseType]
        if scheme not in supported:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported}")
        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('completion_timeout', 'api_node_timeout')
    @classmethod
    def validate_timeouts(cls, v):
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator('api_node_mode', mode='before')
    @classmethod
    def normalize_api_node_mode(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator('abort_on_capability_error')
    @classmethod
    def validate_abort_types(cls, v):
        return [item.strip() for item in v if item and item.strip()]

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType(self.database_url.split('://')[0].lower().split('+')[0])

    @property
    def is_sqlite(self) -> bool:
        return self.database_type == DatabaseType.SQLITE

    @property
    def is_production(self) -> bool:
        return not self.debug and not self.reload

    def get_database_connect_args(self) -> Dict[str, Any]:
        # Runs execute in FastAPI's worker threads
        if self.is_sqlite:
            return {"check_same_thread": False}
        return {}

    def get_uvicorn_config(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Build a configuration from ``NODEFLOW_*`` environment variables.

        Unset variables keep the field default. Values are converted by the
        field validators, so ``NODEFLOW_PORT=9000`` and ``NODEFLOW_DEBUG=yes``
        work as expected.
        """
        values: Dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = _parse_env_value(raw, field.annotation)

        if "gemini_api_key" not in values and os.getenv("GEMINI_API_KEY"):
            values["gemini_api_key"] = os.getenv("GEMINI_API_KEY")

        return cls(**values)


def _parse_env_value(raw: str, annotation: Any) -> Any:
    origin = typing.get_origin(annotation) or annotation
    if origin is list:
        return [item.strip() for item in raw.split(',') if item.strip()]
    if origin is dict:
        return json.loads(raw) if raw.strip() else {}
    return raw


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration, loading it from the environment on first use."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load a .env file (the given one, else ./.env) and rebuild the global configuration."""
    global _config

    from dotenv import load_dotenv

    env_file = config_file if config_file and os.path.exists(config_file) else '.env'
    if os.path.exists(env_file):
        load_dotenv(env_file)

    _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    global _config
    _config = config


def reset_config():
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """
    Check settings that depend on the environment or on each other.

    Creates missing directories for the SQLite file and the log file.

    Raises:
        ValueError: With every problem found, joined by "; "
    """
    from .models.core import NodeType

    errors = []

    directories = []
    if config.is_sqlite and ":memory:" not in config.database_url:
        directories.append(("database", os.path.dirname(config.database_url.replace("sqlite:///", ""))))
    if config.log_file:
        directories.append(("log", os.path.dirname(config.log_file)))

    for purpose, directory in directories:
        if directory and not os.path.exists(directory):
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create {purpose} directory {directory}: {e}")

    if config.api_node_mode == ApiNodeMode.LIVE and config.api_node_timeout > 300:
        errors.append("Live api node timeout must not exceed 300 seconds")

    known_types = {node_type.value for node_type in NodeType}
    unknown = [t for t in config.abort_on_capability_error if t not in known_types]
    if unknown:
        errors.append(f"Unknown node types in abort_on_capability_error: {unknown}")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


# Environment presets
def get_development_config() -> AppConfig:
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_echo=True
    )


def get_production_config() -> AppConfig:
    return AppConfig(
        log_level=LogLevel.INFO,
        cors_origins=[]
    )


def get_testing_config() -> AppConfig:
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        completion_timeout=5.0,
        api_node_timeout=5.0
    )
