"""
Compare the active link sets of two runs, keyed by link_url.

A is the baseline, B the comparand:
  added    in B only
  removed  in A only
  changed  in both, classification or status_code differs (before=A, after=B)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from linkwatch.core.errors import NotFoundError
from linkwatch.scans.enums import LinkClassification
from linkwatch.scans.models import ScanLink, ScanRun


@dataclass(frozen=True)
class LinkRow:
    link_url: str
    classification: LinkClassification
    status_code: int | None = None
    error_message: str | None = None

    @property
    def is_issue(self) -> bool:
        return LinkClassification(self.classification) != LinkClassification.OK

    def as_dict(self) -> dict:
        return {
            "link_url": self.link_url,
            "classification": LinkClassification(self.classification).value,
            "status_code": self.status_code,
            "error_message": self.error_message,
        }


@dataclass
class ChangedPair:
    before: LinkRow
    after: LinkRow


@dataclass
class RunDiff:
    added: list[LinkRow] = field(default_factory=list)
    removed: list[LinkRow] = field(default_factory=list)
    changed: list[ChangedPair] = field(default_factory=list)
    unchanged_count: int = 0
    totals: dict = field(default_factory=dict)


@dataclass
class IssueDiff:
    added: list[LinkRow] = field(default_factory=list)
    removed: list[LinkRow] = field(default_factory=list)
    changed: list[ChangedPair] = field(default_factory=list)
    unchanged_count: int = 0
    totals: dict = field(default_factory=dict)


def totals_for(rows) -> dict:
    out = {c.value: 0 for c in LinkClassification}
    for row in rows:
        out[LinkClassification(row.classification).value] += 1
    return out


def compute_diff(rows_a, rows_b) -> RunDiff:
    map_a = {r.link_url: r for r in rows_a}
    map_b = {r.link_url: r for r in rows_b}

    diff = RunDiff(totals={"a": totals_for(map_a.values()), "b": totals_for(map_b.values())})

    for url in sorted(map_b):
        after = map_b[url]
        before = map_a.get(url)
        if before is None:
            diff.added.append(after)
        elif (
            LinkClassification(before.classification) != LinkClassification(after.classification)
            or before.status_code != after.status_code
        ):
            diff.changed.append(ChangedPair(before=before, after=after))
        else:
            diff.unchanged_count += 1

    diff.removed = [map_a[url] for url in sorted(map_a) if url not in map_b]
    return diff


def issue_view(diff: RunDiff) -> IssueDiff:
    """Project a raw diff onto issues only (anything but `ok`)."""
    view = IssueDiff(
        added=[r for r in diff.added if r.is_issue],
        removed=[r for r in diff.removed if r.is_issue],
        unchanged_count=diff.unchanged_count,
        totals=diff.totals,
    )
    for pair in diff.changed:
        if not pair.before.is_issue and pair.after.is_issue:
            view.added.append(pair.after)
        elif pair.before.is_issue and not pair.after.is_issue:
            view.removed.append(pair.before)
        elif pair.before.is_issue and pair.after.is_issue:
            view.changed.append(pair)
        else:
            view.unchanged_count += 1
    return view


def _rows_for_run(db: Session, run_id: int) -> list[LinkRow]:
    return [
        LinkRow(link_url=url, classification=cls, status_code=code, error_message=err)
        for url, cls, code, err in db.query(
            ScanLink.link_url, ScanLink.classification, ScanLink.status_code, ScanLink.error_message
        )
        .filter(ScanLink.scan_run_id == run_id)
        .all()
    ]


def diff_runs(db: Session, baseline_id: int, comparand_id: int) -> RunDiff:
    for run_id in (baseline_id, comparand_id):
        if db.get(ScanRun, run_id) is None:
            raise NotFoundError(f"scan run {run_id} not found")
    return compute_diff(_rows_for_run(db, baseline_id), _rows_for_run(db, comparand_id))


def diff_as_dict(diff) -> dict:
    return {
        "added": [r.as_dict() for r in diff.added],
        "removed": [r.as_dict() for r in diff.removed],
        "changed": [{"before": p.before.as_dict(), "after": p.after.as_dict()} for p in diff.changed],
        "unchanged_count": diff.unchanged_count,
        "totals": diff.totals,
    }
