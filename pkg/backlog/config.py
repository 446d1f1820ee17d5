# Backlog board — configuration
# Defaults, then an optional backlog.yaml, then environment variables.

import os
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .store import BacklogStore, SQLiteBacklogStore
from .file_store import JsonFileStore

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("backlog.yaml")

# env var → (field, type)
ENV_OVERRIDES = {
    "BACKLOG_HOST": ("host", str),
    "PORT": ("port", int),
    "BACKLOG_DB_FILE": ("data_file", str),
    "DATABASE_URL": ("database_url", str),
    "BACKLOG_LOG_LEVEL": ("log_level", str),
    "BACKLOG_CORS_ORIGINS": ("cors_origins", str),
}

# field → type, shared by YAML values and environment overrides
FIELD_TYPES = {attr: cast for attr, cast in ENV_OVERRIDES.values()}


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


def _coerce(source: str, value, cast):
    if isinstance(value, (dict, list)):
        raise ConfigError(f"{source} must be {cast.__name__}, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{source} must be {cast.__name__}, got {value!r}")


@dataclass
class Config:
    """Runtime configuration for the backlog server."""

    host: str = "127.0.0.1"
    port: int = 5000

    # Storage: relational when database_url is set, JSON file otherwise
    data_file: str = "data/database.json"
    database_url: Optional[str] = None

    log_level: str = "INFO"
    cors_origins: str = "*"

    @classmethod
    def load(cls, path: Optional[str] = None, environ: Optional[dict] = None) -> "Config":
        """Load config from YAML (if present) and apply environment overrides."""
        environ = os.environ if environ is None else environ
        if path is None:
            path = environ.get("BACKLOG_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH

        cfg = cls()
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid config file {cfg_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"Config file {cfg_path} must contain a mapping")
            known = {f.name for f in fields(cls)}
            # null leaves the default in place
            cfg = cls(**{
                k: _coerce(f"{k} in {cfg_path}", v, FIELD_TYPES[k])
                for k, v in data.items()
                if k in known and v is not None
            })
        elif path:
            raise ConfigError(f"Config file not found: {cfg_path}")

        for env_name, (attr, cast) in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                setattr(cfg, attr, _coerce(env_name, value, cast))
        return cfg

    def sqlite_path(self) -> Optional[str]:
        """Filesystem path from database_url, or None for the file store.

        As with SQLAlchemy URLs, sqlite:///data/backlog.db is relative to the
        working directory and sqlite:////var/lib/backlog.db is absolute.
        """
        url = (self.database_url or "").strip()
        if not url:
            return None
        if url.startswith("sqlite:///"):
            return url[len("sqlite:///"):]
        if "://" in url:
            raise ConfigError(f"Unsupported database URL {url!r}: only sqlite:/// is available")
        return url


def open_store(config: Config) -> BacklogStore:
    """Pick the storage backend once, at process start."""
    db_path = config.sqlite_path()
    if db_path:
        logger.info(f"Using SQLite store at {db_path}")
        return SQLiteBacklogStore(db_path)
    logger.info(f"Using JSON file store at {config.data_file}")
    return JsonFileStore(config.data_file)
