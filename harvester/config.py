"""
Environment-driven settings for the scraper and the sync worker.
"""

from __future__ import annotations

import logging
import os
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class ConfigError(Exception):
    """Raised when an environment variable holds an unusable value."""


class Settings(BaseModel):
    backend_api_url: str = "http://localhost:3001"
    api_key: str = "change-me"
    sync_api_url: Optional[str] = None
    sync_api_key: Optional[str] = None

    scrape_schedule: str = "0 0 * * *"
    service_mode: bool = False

    rate_limit_delay_ms: int = 2000
    max_retries: int = 3
    retry_delay_ms: int = 5000
    max_pages: Optional[int] = None
    start_page: int = 1
    enable_detail_images: bool = False

    sqlite_path: str = "data/scraper.db"
    disable_sqlite: bool = False
    site_ids: List[str] = Field(default_factory=list)
    sites_dir: str = "config/sites"
    backend_batch_size: int = 50
    debug_html_dir: Optional[str] = "."

    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT

    sync_worker_interval_ms: int = 60000
    sync_worker_batch_limit: int = 50

    log_level: str = "INFO"

    @property
    def sync_target(self) -> tuple[str, str]:
        """API url/key used by the queue worker (SYNC_* override the defaults)."""
        return (
            self.sync_api_url or self.backend_api_url,
            self.sync_api_key or self.api_key,
        )


def _flag(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(float(raw))
    except ValueError as e:
        raise ConfigError(f"Environment variable {name} must be numeric, got {raw!r}") from e


def _batch_size(env: Mapping[str, str]) -> int:
    # Bad values fall back silently; chunking must never block delivery.
    raw = env.get("SCRAPER_BACKEND_BATCH_SIZE")
    if not raw:
        return 50
    try:
        n = int(float(raw))
    except ValueError:
        logger.warning("Ignoring invalid SCRAPER_BACKEND_BATCH_SIZE=%r", raw)
        return 50
    return n if n > 0 else 50


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``env`` (defaults to ``os.environ`` + ``.env``)."""
    if env is None:
        load_dotenv()
        env = os.environ

    site_ids_raw = env.get("SCRAPER_SITE_IDS") or env.get("SCRAPER_SITE_ID") or ""
    site_ids = [s.strip() for s in site_ids_raw.split(",") if s.strip()]

    max_pages = _int(env, "SCRAPER_MAX_PAGES", None)
    if max_pages is not None and max_pages <= 0:
        max_pages = None
    start_page = _int(env, "SCRAPER_START_PAGE", 1) or 1

    debug_dir = env.get("SCRAPER_DEBUG_HTML_DIR", ".")

    return Settings(
        backend_api_url=env.get("BACKEND_API_URL") or "http://localhost:3001",
        api_key=env.get("API_KEY") or "change-me",
        sync_api_url=env.get("SYNC_API_URL") or None,
        sync_api_key=env.get("SYNC_API_KEY") or None,
        scrape_schedule=env.get("SCRAPE_SCHEDULE") or "0 0 * * *",
        service_mode=_flag(env, "SCRAPER_SERVICE_MODE"),
        rate_limit_delay_ms=_int(env, "RATE_LIMIT_DELAY", 2000),
        max_retries=max(1, _int(env, "MAX_RETRIES", 3)),
        retry_delay_ms=_int(env, "RETRY_DELAY", 5000),
        max_pages=max_pages,
        start_page=max(1, start_page),
        enable_detail_images=_flag(env, "SCRAPER_ENABLE_DETAIL_IMAGES"),
        sqlite_path=env.get("SCRAPER_SQLITE_PATH") or "data/scraper.db",
        disable_sqlite=_flag(env, "SCRAPER_DISABLE_SQLITE"),
        site_ids=site_ids,
        sites_dir=env.get("SCRAPER_SITES_DIR") or "config/sites",
        backend_batch_size=_batch_size(env),
        debug_html_dir=debug_dir or None,
        headless=_flag(env, "PLAYWRIGHT_HEADLESS", default=True),
        user_agent=env.get("PLAYWRIGHT_USER_AGENT") or DEFAULT_USER_AGENT,
        sync_worker_interval_ms=_int(env, "SYNC_WORKER_INTERVAL_MS", 60000),
        sync_worker_batch_limit=_int(env, "SYNC_WORKER_BATCH_LIMIT", 50),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )
