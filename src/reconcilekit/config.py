"""
Configuration module for reconcilekit.

Loads process configuration (store connection, logging, Kubernetes API
access for pod exec) from environment variables. Reconciler configuration
is not kept here: it is fixed by ControllerBuilder.build().
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class DatabaseConfig:
    """PostgreSQL object store configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "reconcilekit"
    user: str = "reconcilekit"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 5
    max_pool_size: int = 20
    command_timeout: float = 60.0

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "reconcilekit"),
            user=os.getenv("DB_USER", "reconcilekit"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "5")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "20")),
            command_timeout=float(os.getenv("DB_COMMAND_TIMEOUT", "60")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"

    def __post_init__(self):
        self.level = self.level.upper()
        if self.level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid log level {self.level!r}, expected one of "
                f"{', '.join(_LOG_LEVELS)}"
            )

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO"))

    def configure(self) -> None:
        """Configure the root logger."""
        logging.basicConfig(level=getattr(logging, self.level), format=LOG_FORMAT)


@dataclass
class ExecConfig:
    """Kubernetes API access used by pod exec."""

    api_url: str = "https://kubernetes.default.svc"
    token: str = field(default="", repr=False)
    verify_ssl: bool = True
    ca_file: Optional[str] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            api_url=os.getenv("KUBE_API_URL", "https://kubernetes.default.svc"),
            token=os.getenv("KUBE_TOKEN", ""),
            verify_ssl=_env_bool("KUBE_VERIFY_SSL", "true"),
            ca_file=os.getenv("KUBE_CA_FILE") or None,
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    logging: LoggingConfig
    exec: ExecConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            logging=LoggingConfig.from_env(),
            exec=ExecConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            logging=LoggingConfig(),
            exec=ExecConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
