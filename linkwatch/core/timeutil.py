from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt):
    if dt is None:
        return None
    # SQLite returns naive datetimes -> treat as UTC
    if getattr(dt, "tzinfo", None) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def iso(dt):
    dt = as_utc(dt)
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")
