"""Configuration for diskdive."""

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from diskdive.cache import OVERVIEW_CACHE_TTL
from diskdive.deleter import TRASH_TIMEOUT
from diskdive.opener import MAX_BATCH_OPEN, OPEN_TIMEOUT
from diskdive.overview import DEFAULT_VOLUMES_ROOT, MAX_CONCURRENT_OVERVIEW
from diskdive.scanner import DEFAULT_LARGE_FILE_COUNT

logger = logging.getLogger(__name__)


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


CONFIG_DIR = expand_path("~/.diskdive")
CONFIG_FILE = CONFIG_DIR / "config.json"

ENV_ANALYZE_PATH = "DISKDIVE_ANALYZE_PATH"
ENV_CACHE_DIR = "DISKDIVE_CACHE_DIR"
ENV_LOG_LEVEL = "DISKDIVE_LOG_LEVEL"
ENV_NO_CACHE = "DISKDIVE_NO_CACHE"


class Settings(BaseModel):
    """User-tunable settings."""

    cache_dir: Path = Field(
        default_factory=lambda: expand_path("~/.cache/diskdive"),
        description="Where scan results and overview sizes are persisted",
    )
    persist_cache: bool = Field(True, description="Keep scan results between runs")
    large_file_count: int = Field(DEFAULT_LARGE_FILE_COUNT, ge=0, description="How many largest files to track")
    scan_workers: Optional[int] = Field(None, ge=1, description="Scanner thread pool size")
    overview_concurrency: int = Field(MAX_CONCURRENT_OVERVIEW, ge=1, le=8, description="Concurrent overview probes")
    overview_cache_ttl: float = Field(OVERVIEW_CACHE_TTL, ge=0, description="Seconds an overview size stays valid")
    prefetch_timeout: float = Field(30.0, gt=0, description="Seconds to wait for the overview warm pass")
    trash_timeout: float = Field(TRASH_TIMEOUT, gt=0, description="Seconds allowed per trash move")
    open_timeout: float = Field(OPEN_TIMEOUT, gt=0, description="Seconds allowed per open/reveal")
    open_batch_limit: int = Field(MAX_BATCH_OPEN, ge=1, description="Max items opened or revealed at once")
    volumes_root: str = Field(DEFAULT_VOLUMES_ROOT, description="Where external volumes are mounted")
    log_level: str = Field("WARNING", description="Logging level name")
    log_file: Optional[Path] = Field(None, description="Log file (default: <cache_dir>/diskdive.log)")

    @property
    def resolved_log_file(self) -> Path:
        return self.log_file or self.cache_dir / "diskdive.log"


def _load_config(config_file: Path) -> dict:
    """Load configuration from disk."""
    if not config_file.exists():
        return {}

    try:
        with open(config_file) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable config %s: %s", config_file, e)
        return {}

    return data if isinstance(data, dict) else {}


def load_settings(
    config_file: Path = CONFIG_FILE,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build settings from the config file, then environment overrides.

    An invalid config falls back to defaults rather than failing startup.
    """
    environ = os.environ if environ is None else environ
    data = _load_config(config_file)

    if environ.get(ENV_CACHE_DIR):
        data["cache_dir"] = str(expand_path(environ[ENV_CACHE_DIR]))
    if environ.get(ENV_LOG_LEVEL):
        data["log_level"] = environ[ENV_LOG_LEVEL]
    if environ.get(ENV_NO_CACHE, "").lower() in ("1", "true", "yes"):
        data["persist_cache"] = False

    if "cache_dir" in data and isinstance(data["cache_dir"], str):
        data["cache_dir"] = str(expand_path(data["cache_dir"]))

    try:
        return Settings(**data)
    except ValidationError as e:
        logger.warning("Invalid configuration, using defaults: %s", e)
        return Settings()
