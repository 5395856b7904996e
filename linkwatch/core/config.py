# linkwatch/core/config.py

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv


def _load_env():
    """Project-root .env first, then the working directory. Real env vars always win."""
    project_env = Path(__file__).resolve().parents[2] / ".env"
    load_dotenv(project_env if project_env.exists() else None, override=False)


_load_env()


def _clean(s: str | None) -> str:
    s = (s or "").strip()
    # remove wrapping quotes if present
    if len(s) >= 2 and ((s[0] == s[-1] == '"') or (s[0] == s[-1] == "'")):
        s = s[1:-1].strip()
    return s


def _env_str(name: str, default: str) -> str:
    return _clean(os.getenv(name)) or default


def _env_int(name: str, default: int) -> int:
    try:
        return int(_clean(os.getenv(name)) or str(default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_clean(os.getenv(name)) or str(default))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _clean(os.getenv(name)).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_seconds_list(name: str, default: tuple) -> tuple:
    """Comma separated list of seconds, e.g. "30,120,600"."""
    raw = _clean(os.getenv(name))
    if not raw:
        return default
    try:
        return tuple(float(p) for p in raw.split(",") if p.strip())
    except ValueError:
        return default


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


DATABASE_URL = _clean(os.getenv("DATABASE_URL")) or "sqlite:///./linkwatch.db"

# Helpful local fallback: if user kept docker hostname "db", replace with localhost
if DATABASE_URL.startswith("postgresql://") and "@db:" in DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("@db:", "@localhost:")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./linkwatch.db"
    worker_id: str = field(default_factory=default_worker_id)

    # queue / worker
    idle_wait_seconds: float = 1.2
    claim_lease_seconds: int = 120
    reaper_interval_seconds: float = 120.0
    job_max_attempts: int = 3
    retry_backoff_seconds: tuple = (30, 120, 600)

    # scheduler
    scheduler_interval_seconds: float = 60.0
    schedule_cooldown_seconds: int = 60
    scheduler_batch_size: int = 25

    # crawler
    crawl_max_pages: int = 25
    crawl_max_depth: int = 2
    page_timeout_seconds: float = 10.0
    link_timeout_seconds: float = 12.0
    link_concurrency: int = 8
    link_retry_delays: tuple = (0.4, 0.9)
    user_agent: str = "LinkWatchBot/1.0 (+https://linkwatch.dev/bot)"
    ssrf_guard: bool = True

    notify_webhook_url: str | None = None


def load_settings() -> Settings:
    return Settings(
        database_url=DATABASE_URL,
        worker_id=_env_str("WORKER_ID", default_worker_id()),
        idle_wait_seconds=_env_float("WORKER_IDLE_WAIT_SECONDS", 1.2),
        claim_lease_seconds=_env_int("CLAIM_LEASE_SECONDS", 120),
        reaper_interval_seconds=_env_float("REAPER_INTERVAL_SECONDS", 120.0),
        job_max_attempts=_env_int("JOB_MAX_ATTEMPTS", 3),
        retry_backoff_seconds=_env_seconds_list("RETRY_BACKOFF_SECONDS", (30, 120, 600)),
        scheduler_interval_seconds=_env_float("SCHEDULER_INTERVAL_SECONDS", 60.0),
        schedule_cooldown_seconds=_env_int("SCHEDULE_COOLDOWN_SECONDS", 60),
        scheduler_batch_size=_env_int("SCHEDULER_BATCH_SIZE", 25),
        crawl_max_pages=_env_int("CRAWL_MAX_PAGES", 25),
        crawl_max_depth=_env_int("CRAWL_MAX_DEPTH", 2),
        page_timeout_seconds=_env_float("PAGE_TIMEOUT_SECONDS", 10.0),
        link_timeout_seconds=_env_float("LINK_TIMEOUT_SECONDS", 12.0),
        link_concurrency=_env_int("LINK_CONCURRENCY", 8),
        link_retry_delays=_env_seconds_list("LINK_RETRY_DELAYS", (0.4, 0.9)),
        user_agent=_env_str("CRAWLER_USER_AGENT", "LinkWatchBot/1.0 (+https://linkwatch.dev/bot)"),
        ssrf_guard=_env_bool("SSRF_GUARD", True),
        notify_webhook_url=_clean(os.getenv("NOTIFY_WEBHOOK_URL")) or None,
    )
