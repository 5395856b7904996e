from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from linkwatch.core.errors import NotFoundError, to_http
from linkwatch.core.timeutil import iso
from linkwatch.db.session import get_db
from linkwatch.sites.models import Site, ScheduleFrequency
from linkwatch.sites.schedule import create_site as create_site_row, update_site_schedule

router = APIRouter(prefix="/sites", tags=["sites"])


class ScheduleIn(BaseModel):
    enabled: bool
    frequency: ScheduleFrequency = ScheduleFrequency.DAILY
    time_utc: str = "02:00"
    day_of_week: int | None = None


def _site_out(site: Site) -> dict:
    return {
        "id": site.id,
        "url": site.url,
        "domain": site.domain,
        "schedule": {
            "enabled": site.schedule_enabled,
            "frequency": site.schedule_frequency.value,
            "time_utc": site.schedule_time_utc,
            "day_of_week": site.schedule_day_of_week,
            "next_scheduled_at": iso(site.next_scheduled_at),
            "last_scheduled_at": iso(site.last_scheduled_at),
        },
        "created_at": iso(site.created_at),
    }


@router.post("", status_code=201)
def create_site(url: str, db: Session = Depends(get_db)):
    try:
        site = create_site_row(db, url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _site_out(site)


@router.get("/{site_id}")
def get_site(site_id: int, db: Session = Depends(get_db)):
    site = db.get(Site, site_id)
    if not site:
        raise HTTPException(status_code=404, detail="site_not_found")
    return _site_out(site)


@router.put("/{site_id}/schedule")
def set_schedule(site_id: int, payload: ScheduleIn, db: Session = Depends(get_db)):
    if payload.day_of_week is not None and not (0 <= payload.day_of_week <= 6):
        raise HTTPException(status_code=400, detail="day_of_week must be 0 (Sunday) .. 6 (Saturday)")
    try:
        site = update_site_schedule(
            db,
            site_id,
            enabled=payload.enabled,
            frequency=payload.frequency,
            time_utc=payload.time_utc,
            day_of_week=payload.day_of_week,
        )
    except (NotFoundError, ValueError) as e:
        raise to_http(e)
    return _site_out(site)
