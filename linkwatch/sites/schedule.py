from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from linkwatch.core.errors import NotFoundError
from linkwatch.core.timeutil import utcnow, as_utc
from linkwatch.sites.models import Site, ScheduleFrequency
from linkwatch.sites.utils import normalize_url, extract_domain


def parse_time_utc(value: str) -> tuple[int, int]:
    parts = (value or "").split(":")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except (IndexError, ValueError):
        raise ValueError("schedule time must be HH:MM (24h)")
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError("schedule time must be HH:MM (24h)")
    return hours, minutes


def compute_next_scheduled_at(
    frequency: ScheduleFrequency,
    time_utc: str,
    day_of_week: int | None = None,
    now: datetime | None = None,
) -> datetime:
    """
    Next slot strictly after `now`.
    Weekly days use 0=Sunday .. 6=Saturday (defaults to Monday).
    """
    now = as_utc(now) or utcnow()
    hours, minutes = parse_time_utc(time_utc)
    base = now.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    if ScheduleFrequency(frequency) == ScheduleFrequency.DAILY:
        if base <= now:
            base += timedelta(days=1)
        return base

    target = day_of_week if day_of_week is not None else 1
    current = (now.weekday() + 1) % 7  # python: Monday=0 -> Sunday-based
    days_ahead = (target - current + 7) % 7
    if days_ahead == 0 and base <= now:
        days_ahead = 7
    return base + timedelta(days=days_ahead)


def create_site(db: Session, url: str) -> Site:
    url_n = normalize_url(url)
    site = Site(url=url_n, domain=extract_domain(url_n))
    db.add(site)
    db.commit()
    db.refresh(site)
    return site


def update_site_schedule(
    db: Session,
    site_id: int,
    *,
    enabled: bool,
    frequency: ScheduleFrequency = ScheduleFrequency.DAILY,
    time_utc: str = "02:00",
    day_of_week: int | None = None,
) -> Site:
    site = db.get(Site, site_id)
    if not site:
        raise NotFoundError("site_not_found")

    parse_time_utc(time_utc)
    frequency = ScheduleFrequency(frequency)
    day = (day_of_week if day_of_week is not None else 1) if frequency == ScheduleFrequency.WEEKLY else None

    site.schedule_enabled = enabled
    site.schedule_frequency = frequency
    site.schedule_time_utc = time_utc
    site.schedule_day_of_week = day
    site.next_scheduled_at = compute_next_scheduled_at(frequency, time_utc, day) if enabled else None
    db.commit()
    db.refresh(site)
    return site


def get_due_sites(db: Session, limit: int, now: datetime | None = None, offset: int = 0) -> list[Site]:
    now = now or utcnow()
    return (
        db.query(Site)
        .filter(Site.schedule_enabled.is_(True))
        .filter(Site.next_scheduled_at.isnot(None))
        .filter(Site.next_scheduled_at <= now)
        .order_by(Site.next_scheduled_at.asc(), Site.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def mark_site_scheduled(db: Session, site: Site, run_at: datetime) -> None:
    """Stamp last_scheduled_at and move next_scheduled_at past run_at. Caller commits."""
    site.last_scheduled_at = run_at
    if site.schedule_enabled:
        site.next_scheduled_at = compute_next_scheduled_at(
            site.schedule_frequency,
            site.schedule_time_utc,
            site.schedule_day_of_week,
            now=run_at,
        )
