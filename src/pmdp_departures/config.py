from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_API_URL = "https://jizdnirady.pmdp.cz/odjezdy/vyhledat"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class UpstreamConfig(BaseModel):
    url: str = DEFAULT_API_URL
    timeout_seconds: float = 10.0
    max_results: int = 30
    retries: int = 0
    timezone: str = "Europe/Prague"


class CacheConfig(BaseModel):
    # None disables caching entirely
    dir: Optional[str] = "data/cache"
    gc_probability: float = Field(default=0.01, ge=0.0, le=1.0)
    gc_max_age_seconds: int = 3600


class Settings(BaseModel):
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    stops_db_file: Optional[str] = "data/stops.json"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


def _load_yaml(path: Optional[Path]) -> dict:
    if not path:
        return {}
    if not Path(path).exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with Path(path).open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")
    return raw


def _env_override(config: dict) -> dict:
    # Environment variables take precedence; prefix PMDP_
    # Supported:
    # PMDP_API_URL, PMDP_HTTP_TIMEOUT_SECONDS, PMDP_TIMEZONE,
    # PMDP_CACHE_DIR (empty disables the cache), PMDP_STOPS_DB_FILE, PMDP_LOG_LEVEL
    out = dict(config)
    upstream = dict(out.get("upstream") or {})
    api_url = os.environ.get("PMDP_API_URL")
    if api_url:
        upstream["url"] = api_url
    timeout = os.environ.get("PMDP_HTTP_TIMEOUT_SECONDS")
    if timeout:
        try:
            upstream["timeout_seconds"] = float(timeout)
        except ValueError:
            pass
    tz = os.environ.get("PMDP_TIMEZONE")
    if tz:
        upstream["timezone"] = tz
    if upstream:
        out["upstream"] = upstream

    cache_dir = os.environ.get("PMDP_CACHE_DIR")
    if cache_dir is not None:
        cache = dict(out.get("cache") or {})
        cache["dir"] = cache_dir.strip() or None
        out["cache"] = cache

    stops_file = os.environ.get("PMDP_STOPS_DB_FILE")
    if stops_file:
        out["stops_db_file"] = stops_file
    log = os.environ.get("PMDP_LOG_LEVEL")
    if log:
        out["log_level"] = log
    return out


def load_settings(config_path: Optional[Path] = None) -> Settings:
    base = _load_yaml(config_path)
    merged = _env_override(base)
    return Settings(**merged)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
