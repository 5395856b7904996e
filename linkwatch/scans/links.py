"""
Deduplicated link results of a run.

A link_url lives in exactly one of two buckets per run: active
(`scan_links`) or ignored (`scan_ignored_links`). Each bucket row owns its
occurrences, one per source page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, insert, update
from sqlalchemy.orm import Session

from linkwatch.core.pagination import Page, paginate
from linkwatch.core.timeutil import utcnow
from linkwatch.ignores.models import IgnoreRule, IgnoreRuleType
from linkwatch.ignores.rules import LinkFacts, find_matching_rule
from linkwatch.scans.enums import IgnoredSource, LinkClassification
from linkwatch.scans.models import (
    ScanLink,
    ScanLinkOccurrence,
    ScanIgnoredLink,
    ScanIgnoredOccurrence,
)

logger = logging.getLogger(__name__)

ACTIVE = "active"
IGNORED = "ignored"

COPIED_FIELDS = (
    "scan_run_id",
    "link_url",
    "classification",
    "status_code",
    "error_message",
    "first_seen_at",
    "last_seen_at",
)


@dataclass
class Sighting:
    bucket: str
    link_id: int
    created: bool
    new_occurrence: bool


def _insert_or_skip(db: Session, table, values: dict, conflict_cols: list[str]) -> bool:
    """INSERT .. ON CONFLICT DO NOTHING. True when a row was written."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        return db.execute(insert(table).values(**values)).rowcount == 1

    stmt = dialect_insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_cols)
    return db.execute(stmt).rowcount == 1


def _occurrence_model(link):
    if isinstance(link, ScanIgnoredLink):
        return ScanIgnoredOccurrence, "scan_ignored_link_id"
    return ScanLinkOccurrence, "scan_link_id"


def rule_reason(rule: IgnoreRule) -> str:
    return f"Ignored by rule: {IgnoreRuleType(rule.rule_type).value} {rule.pattern}"


def find_active(db: Session, scan_run_id: int, link_url: str) -> ScanLink | None:
    return (
        db.query(ScanLink)
        .filter(ScanLink.scan_run_id == scan_run_id, ScanLink.link_url == link_url)
        .populate_existing()
        .first()
    )


def find_ignored(db: Session, scan_run_id: int, link_url: str) -> ScanIgnoredLink | None:
    return (
        db.query(ScanIgnoredLink)
        .filter(ScanIgnoredLink.scan_run_id == scan_run_id, ScanIgnoredLink.link_url == link_url)
        .populate_existing()
        .first()
    )


def get_active_link(db: Session, link_id: int) -> ScanLink | None:
    return db.get(ScanLink, link_id, populate_existing=True)


def get_ignored_link(db: Session, link_id: int) -> ScanIgnoredLink | None:
    return db.get(ScanIgnoredLink, link_id, populate_existing=True)


def stored_urls(db: Session, scan_run_id: int) -> dict[str, ScanLink | ScanIgnoredLink]:
    """Every link already stored for the run (both buckets), keyed by URL."""
    out: dict[str, ScanLink | ScanIgnoredLink] = {}
    for model in (ScanLink, ScanIgnoredLink):
        for row in db.query(model).filter(model.scan_run_id == scan_run_id).all():
            out[row.link_url] = row
    return out


def add_occurrence(db: Session, link, source_page: str, now: datetime | None = None) -> bool:
    """One occurrence per (link, source page). Returns False for a repeat sighting."""
    now = now or utcnow()
    occ_model, fk = _occurrence_model(link)
    inserted = _insert_or_skip(
        db,
        occ_model.__table__,
        {fk: link.id, "source_page": source_page, "created_at": now},
        [fk, "source_page"],
    )
    if inserted:
        model = type(link)
        db.execute(
            update(model)
            .where(model.id == link.id)
            .values(occurrence_count=model.occurrence_count + 1, last_seen_at=now)
            .execution_options(synchronize_session=False)
        )
    return inserted


def record_sighting(
    db: Session,
    *,
    scan_run_id: int,
    link_url: str,
    source_page: str,
    classification: LinkClassification,
    status_code: int | None,
    error_message: str | None = None,
    rules=(),
    site_id: int | None = None,
    now: datetime | None = None,
) -> Sighting:
    """
    Store one sighting of `link_url` on `source_page`.

    An existing row (either bucket) keeps its first verdict and only gains the
    occurrence. A new link is checked against `rules` first and lands in the
    ignored bucket on a match.
    """
    now = now or utcnow()

    existing = find_ignored(db, scan_run_id, link_url) or find_active(db, scan_run_id, link_url)
    if existing is not None:
        bucket = IGNORED if isinstance(existing, ScanIgnoredLink) else ACTIVE
        added = add_occurrence(db, existing, source_page, now)
        return Sighting(bucket=bucket, link_id=existing.id, created=False, new_occurrence=added)

    facts = LinkFacts(url=link_url, classification=classification, status_code=status_code)
    rule = find_matching_rule(rules, facts, site_id)

    values = {
        "scan_run_id": scan_run_id,
        "link_url": link_url,
        "classification": classification,
        "status_code": status_code,
        "error_message": error_message,
        "occurrence_count": 0,
        "first_seen_at": now,
        "last_seen_at": now,
        "ignored": rule is not None,
        "ignored_source": IgnoredSource.RULE if rule is not None else IgnoredSource.NONE,
        "ignored_by_rule_id": rule.id if rule is not None else None,
        "ignored_at": now if rule is not None else None,
        "ignore_reason": rule_reason(rule) if rule is not None else None,
    }
    model = ScanIgnoredLink if rule is not None else ScanLink
    created = _insert_or_skip(db, model.__table__, values, ["scan_run_id", "link_url"])

    row = (find_ignored if rule is not None else find_active)(db, scan_run_id, link_url)
    added = add_occurrence(db, row, source_page, now)
    return Sighting(bucket=IGNORED if rule is not None else ACTIVE, link_id=row.id, created=created, new_occurrence=added)


def _move(db: Session, src, target_model, extra: dict, now: datetime):
    finder = find_ignored if target_model is ScanIgnoredLink else find_active
    target = finder(db, src.scan_run_id, src.link_url)
    if target is None:
        values = {name: getattr(src, name) for name in COPIED_FIELDS}
        values.update(extra)
        values["occurrence_count"] = 0
        _insert_or_skip(db, target_model.__table__, values, ["scan_run_id", "link_url"])
        target = finder(db, src.scan_run_id, src.link_url)

    src_occ, src_fk = _occurrence_model(src)
    dst_occ, dst_fk = _occurrence_model(target)
    for occ in db.query(src_occ).filter(getattr(src_occ, src_fk) == src.id).order_by(src_occ.id).all():
        _insert_or_skip(
            db,
            dst_occ.__table__,
            {dst_fk: target.id, "source_page": occ.source_page, "created_at": occ.created_at},
            [dst_fk, "source_page"],
        )

    count = db.query(func.count(dst_occ.id)).filter(getattr(dst_occ, dst_fk) == target.id).scalar() or 0
    db.execute(
        update(target_model)
        .where(target_model.id == target.id)
        .values(occurrence_count=max(count, 1), **extra)
        .execution_options(synchronize_session=False)
    )

    db.execute(delete(src_occ).where(getattr(src_occ, src_fk) == src.id).execution_options(synchronize_session=False))
    db.execute(delete(type(src)).where(type(src).id == src.id).execution_options(synchronize_session=False))
    if src in db:
        db.expunge(src)

    return finder(db, target.scan_run_id, target.link_url)


def move_to_ignored(
    db: Session,
    link: ScanLink,
    *,
    source: IgnoredSource,
    rule: IgnoreRule | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> ScanIgnoredLink:
    """Move an active link (with its occurrences) into the ignored bucket. Caller commits."""
    now = now or utcnow()
    extra = {
        "ignored": True,
        "ignored_source": IgnoredSource(source),
        "ignored_by_rule_id": rule.id if rule is not None else None,
        "ignored_at": now,
        "ignore_reason": reason or (rule_reason(rule) if rule is not None else "manual"),
    }
    return _move(db, link, ScanIgnoredLink, extra, now)


def move_to_active(db: Session, link: ScanIgnoredLink, now: datetime | None = None) -> ScanLink:
    """Move an ignored link back into the active bucket. Caller commits."""
    extra = {
        "ignored": False,
        "ignored_source": IgnoredSource.NONE,
        "ignored_by_rule_id": None,
        "ignored_at": None,
        "ignore_reason": None,
    }
    return _move(db, link, ScanLink, extra, now or utcnow())


def count_run_links(db: Session, scan_run_id: int) -> dict:
    active = db.query(func.count(ScanLink.id)).filter(ScanLink.scan_run_id == scan_run_id).scalar() or 0
    ignored = db.query(func.count(ScanIgnoredLink.id)).filter(ScanIgnoredLink.scan_run_id == scan_run_id).scalar() or 0
    broken = (
        db.query(func.count(ScanLink.id))
        .filter(ScanLink.scan_run_id == scan_run_id, ScanLink.classification == LinkClassification.BROKEN)
        .scalar()
        or 0
    )
    return {"total": active + ignored, "checked": active + ignored, "broken": broken, "ignored": ignored}


def list_links(
    db: Session,
    scan_run_id: int,
    *,
    classification: LinkClassification | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> Page:
    q = db.query(ScanLink).filter(ScanLink.scan_run_id == scan_run_id)
    if classification is not None:
        q = q.filter(ScanLink.classification == LinkClassification(classification))
    q = q.order_by(ScanLink.occurrence_count.desc(), ScanLink.link_url.asc())
    return paginate(q, limit=limit, offset=offset)


def list_occurrences(db: Session, scan_link_id: int, *, limit: int | None = None, offset: int = 0) -> Page:
    q = (
        db.query(ScanLinkOccurrence)
        .filter(ScanLinkOccurrence.scan_link_id == scan_link_id)
        .order_by(ScanLinkOccurrence.created_at.asc(), ScanLinkOccurrence.id.asc())
    )
    return paginate(q, limit=limit, offset=offset, default_limit=50)


def list_ignored_links(db: Session, scan_run_id: int, *, limit: int | None = None, offset: int = 0) -> Page:
    q = (
        db.query(ScanIgnoredLink)
        .filter(ScanIgnoredLink.scan_run_id == scan_run_id)
        .order_by(ScanIgnoredLink.occurrence_count.desc(), ScanIgnoredLink.link_url.asc())
    )
    return paginate(q, limit=limit, offset=offset)


def list_ignored_occurrences(
    db: Session, scan_ignored_link_id: int, *, limit: int | None = None, offset: int = 0
) -> Page:
    q = (
        db.query(ScanIgnoredOccurrence)
        .filter(ScanIgnoredOccurrence.scan_ignored_link_id == scan_ignored_link_id)
        .order_by(ScanIgnoredOccurrence.created_at.asc(), ScanIgnoredOccurrence.id.asc())
    )
    return paginate(q, limit=limit, offset=offset, default_limit=50)
