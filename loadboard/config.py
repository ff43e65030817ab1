"""Runtime settings.

One ``Settings`` value is built at start-up by :func:`load_settings` and passed
into every component; nothing reads the environment after that.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

OVERLAP_POLICIES = ("skip", "queue")


@dataclass(frozen=True)
class Settings:
    listings_url: str = "https://one.dat.com/search-loads-ow"
    # Empty means launch a local browser instead of attaching over CDP.
    cdp_url: str = ""
    headless: bool = True

    output_dir: Path = Path("output")
    output_file: str = "loads.csv"
    health_file: str = "health_status.json"
    stats_file: str = "run_stats.json"

    interval_seconds: int = 300
    run_immediately: bool = True
    overlap_policy: str = "skip"
    run_timeout: Optional[float] = None
    shutdown_grace: float = 30.0

    max_entries: int = 25
    enable_pagination: bool = False
    scroll_attempts: int = 5
    detail_timeout_ms: int = 3000
    nav_timeout_ms: int = 25000

    session_retries: int = 3
    session_retry_delay: float = 5.0
    session_cleanup_interval: int = 300
    block_images: bool = True
    block_styles: bool = False

    extract_contacts: bool = False

    max_file_bytes: int = 50 * 1024 * 1024
    archive_retention_days: Optional[int] = None

    max_consecutive_failures: int = 5
    stats_history: int = 100

    delay_scale: float = 1.0

    @property
    def output_path(self) -> Path:
        return self.output_dir / self.output_file

    @property
    def health_path(self) -> Path:
        return self.output_dir / self.health_file

    @property
    def stats_path(self) -> Path:
        return self.output_dir / self.stats_file


def _get(name: str) -> str:
    return (os.getenv(name) or "").strip()


def _geti(name: str, default):
    v = _get(name)
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _getf(name: str, default):
    v = _get(name)
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _getb(name: str, default: bool) -> bool:
    v = _get(name).lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


def load_settings(env_file: Optional[Path] = None) -> Settings:
    load_dotenv(env_file)

    policy = (_get("OVERLAP_POLICY") or Settings.overlap_policy).lower()
    if policy not in OVERLAP_POLICIES:
        raise ValueError(f"OVERLAP_POLICY must be one of {OVERLAP_POLICIES}, got {policy!r}")

    d = Settings
    return Settings(
        listings_url=_get("LISTINGS_URL") or d.listings_url,
        cdp_url=_get("CDP_URL"),
        headless=_getb("HEADLESS", d.headless),
        output_dir=Path(_get("OUTPUT_DIR") or d.output_dir),
        output_file=_get("OUTPUT_FILE") or d.output_file,
        health_file=_get("HEALTH_FILE") or d.health_file,
        stats_file=_get("STATS_FILE") or d.stats_file,
        interval_seconds=_geti("INTERVAL_SECONDS", d.interval_seconds),
        run_immediately=_getb("RUN_IMMEDIATELY", d.run_immediately),
        overlap_policy=policy,
        run_timeout=_getf("RUN_TIMEOUT", d.run_timeout),
        shutdown_grace=_getf("SHUTDOWN_GRACE", d.shutdown_grace),
        max_entries=_geti("MAX_ENTRIES", d.max_entries),
        enable_pagination=_getb("ENABLE_PAGINATION", d.enable_pagination),
        scroll_attempts=_geti("SCROLL_ATTEMPTS", d.scroll_attempts),
        detail_timeout_ms=_geti("DETAIL_TIMEOUT_MS", d.detail_timeout_ms),
        nav_timeout_ms=_geti("NAV_TIMEOUT_MS", d.nav_timeout_ms),
        session_retries=_geti("SESSION_RETRIES", d.session_retries),
        session_retry_delay=_getf("SESSION_RETRY_DELAY", d.session_retry_delay),
        session_cleanup_interval=_geti("SESSION_CLEANUP_INTERVAL", d.session_cleanup_interval),
        block_images=_getb("BLOCK_IMAGES", d.block_images),
        block_styles=_getb("BLOCK_STYLES", d.block_styles),
        extract_contacts=_getb("EXTRACT_CONTACTS", d.extract_contacts),
        max_file_bytes=_geti("MAX_FILE_BYTES", d.max_file_bytes),
        archive_retention_days=_geti("ARCHIVE_RETENTION_DAYS", d.archive_retention_days),
        max_consecutive_failures=_geti("MAX_CONSECUTIVE_FAILURES", d.max_consecutive_failures),
        stats_history=_geti("STATS_HISTORY", d.stats_history),
        delay_scale=_getf("DELAY_SCALE", d.delay_scale),
    )
