"""Configuration management for ConstructionPro Sync."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "SyncSettings",
    "setup_logging",
    "DEFAULT_API_URL",
    "API_URL_ENV",
    "MAX_RETRY_COUNT",
]

logger = logging.getLogger(__name__)

APP_NAME = "ConstructionPro Sync"
APP_AUTHOR = "ConstructionPro"

# API endpoints
DEFAULT_API_URL = "http://127.0.0.1:3000/api"
API_URL_ENV = "CONSTRUCTIONPRO_API_URL"

# Sync settings
DEFAULT_SYNC_INTERVAL = 60  # seconds
DEFAULT_PREFETCH_INTERVAL = 900  # seconds
MIN_SYNC_INTERVAL = 15
MAX_RETRY_COUNT = 5
DEFAULT_BACKOFF_BASE = 30  # seconds
DEFAULT_BACKOFF_MAX = 1800  # 30 min


@dataclass
class SyncSettings:
    """Sync configuration."""

    interval_seconds: int = DEFAULT_SYNC_INTERVAL
    prefetch_interval_seconds: int = DEFAULT_PREFETCH_INTERVAL
    max_retry_count: int = MAX_RETRY_COUNT
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX
    request_timeout: int = 30
    prefetch_page_size: int = 50


@dataclass
class Config:
    """Main configuration object."""

    api_url: str = DEFAULT_API_URL
    user_email: Optional[str] = None
    sync: SyncSettings = field(default_factory=SyncSettings)
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (for the SQLite outbox and cache)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults.

        The ``CONSTRUCTIONPRO_API_URL`` environment variable overrides the
        stored API URL.
        """
        config_file = path or cls.get_config_file()
        config = cls()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                config = cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")

        env_url = os.getenv(API_URL_ENV)
        if env_url:
            config.api_url = env_url
        return config

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary, ignoring unknown keys."""
        sync_data = data.pop("sync", {}) or {}
        sync_fields = SyncSettings.__dataclass_fields__
        sync = SyncSettings(**{k: v for k, v in sync_data.items() if k in sync_fields})

        if sync.interval_seconds < MIN_SYNC_INTERVAL:
            sync.interval_seconds = MIN_SYNC_INTERVAL

        return cls(
            sync=sync,
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )

    def save(self, path: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = path or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def setup_logging(debug: bool = False, log_dir: Optional[Path] = None) -> None:
    """Configure logging."""
    log_dir = log_dir or Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "constructionpro-sync.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
