"""Configuration loading for spelunk."""

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(os.path.expanduser("~/.config/spelunk"))
CONFIG_FILE = CONFIG_DIR / "config.json"
ENV_PREFIX = "SPELUNK_"


class Settings(BaseModel):
    """Tunable limits for scanning, caching and display."""

    probe_budget_seconds: float = Field(
        1.0, gt=0, description="Wall-clock budget for one interactive size probe"
    )
    scan_ceiling_seconds: float = Field(
        30.0, gt=0, description="Ceiling for a whole directory listing before forced cancel"
    )
    cache_ttl_seconds: int = Field(3600, ge=0, description="Lifetime of on-disk volume scans")
    max_items: int = Field(50, gt=0, description="Entries kept per directory listing")
    page_size: int = Field(15, gt=0, description="Entries shown per page in the navigator")
    large_file_bytes: int = Field(1_000_000_000, gt=0, description="Large-file threshold")
    medium_file_bytes: int = Field(100_000_000, gt=0, description="Medium-file threshold")
    min_workers: int = Field(12, gt=0, description="Lower bound for the probe pool")
    max_workers: int = Field(24, gt=0, description="Upper bound for the probe pool")
    cache_dir: Path = Field(CONFIG_DIR / "cache", description="On-disk cache location")

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _expand_cache_dir(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Path(os.path.expanduser(value))
        return value


def _load_config(config_file: Path) -> dict[str, Any]:
    """Load the JSON config file, returning {} when absent or unreadable."""
    if config_file.exists():
        try:
            with open(config_file) as f:
                data = json.load(f)
            if isinstance(data, dict):
                return data
            logger.warning("Ignoring %s: expected a JSON object", config_file)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable config %s: %s", config_file, e)
    return {}


def _env_overrides(environ: dict[str, str]) -> dict[str, str]:
    """Collect SPELUNK_<FIELD> overrides for known settings."""
    overrides = {}
    for name in Settings.model_fields:
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_settings(
    config_file: Path | None = None,
    environ: dict[str, str] | None = None,
) -> Settings:
    """
    Build Settings from the config file and environment.

    Unknown keys are ignored. Values that fail validation are dropped one
    at a time so a single bad entry doesn't discard the whole file.

    Args:
        config_file: Path to config.json (default: ~/.config/spelunk/config.json)
        environ: Environment mapping (default: os.environ)

    Returns:
        Settings instance; never raises
    """
    config_file = config_file or CONFIG_FILE
    environ = dict(os.environ) if environ is None else environ

    raw = {k: v for k, v in _load_config(config_file).items() if k in Settings.model_fields}
    raw.update(_env_overrides(environ))

    while True:
        try:
            settings = Settings(**raw)
            break
        except ValidationError as e:
            bad = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            if not bad or not bad & raw.keys():
                logger.warning("Invalid configuration, using defaults: %s", e)
                return Settings()
            for key in bad:
                logger.warning("Ignoring invalid setting %s=%r", key, raw.pop(key, None))

    if settings.min_workers > settings.max_workers:
        settings = settings.model_copy(update={"max_workers": settings.min_workers})
    if settings.medium_file_bytes >= settings.large_file_bytes:
        logger.warning("medium_file_bytes >= large_file_bytes; medium section will be empty")
    return settings


def save_settings(settings: Settings, config_file: Path | None = None) -> bool:
    """Write settings as JSON. Returns False on failure."""
    config_file = config_file or CONFIG_FILE
    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, "w") as f:
            f.write(settings.model_dump_json(indent=2))
        return True
    except OSError as e:
        logger.warning("Could not save config %s: %s", config_file, e)
        return False
