from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from linkwatch.core.errors import NotFoundError
from linkwatch.core.timeutil import utcnow
from linkwatch.ignores.models import IgnoreRule, IgnoreRuleType
from linkwatch.ignores.rules import (
    LinkFacts,
    create_rule,
    find_matching_rule,
    list_rules_for_site,
    rules_fingerprint,
)
from linkwatch.scans import links as link_store
from linkwatch.scans.enums import IgnoredSource
from linkwatch.scans.models import ScanLink, ScanIgnoreApplyState, ScanRun

logger = logging.getLogger(__name__)


class ManualIgnoreMode(str, enum.Enum):
    THIS_SCAN = "this_scan"
    SITE_RULE_CONTAINS = "site_rule_contains"
    SITE_RULE_EXACT = "site_rule_exact"
    SITE_RULE_REGEX = "site_rule_regex"


@dataclass
class ReapplyResult:
    applied: bool
    ignored_count: int
    rules_hash: str


@dataclass
class ManualIgnoreResult:
    mode: ManualIgnoreMode
    rule: IgnoreRule | None
    reapply: ReapplyResult | None
    ignored_count: int


def evaluate_on_ingest(facts: LinkFacts, rules, site_id: int | None = None) -> IgnoreRule | None:
    return find_matching_rule(rules, facts, site_id)


def _require_run(db: Session, scan_run_id: int) -> ScanRun:
    run = db.get(ScanRun, scan_run_id)
    if not run:
        raise NotFoundError("scan_run_not_found")
    return run


def _save_apply_state(db: Session, scan_run_id: int, rules_hash: str) -> None:
    state = db.get(ScanIgnoreApplyState, scan_run_id)
    if state is None:
        db.add(ScanIgnoreApplyState(scan_run_id=scan_run_id, rules_hash=rules_hash, last_applied_at=utcnow()))
    else:
        state.rules_hash = rules_hash
        state.last_applied_at = utcnow()


def reapply(db: Session, scan_run_id: int, force: bool = False) -> ReapplyResult:
    """
    Move every active link of the run that matches an enabled rule into the
    ignored bucket. Never restores links. Unforced calls are skipped when the
    rule set has not changed since the last apply.
    """
    run = _require_run(db, scan_run_id)
    rules = list_rules_for_site(db, run.site_id, enabled_only=True)
    rules_hash = rules_fingerprint(rules)

    if not force:
        state = db.get(ScanIgnoreApplyState, scan_run_id, populate_existing=True)
        if state is not None and state.rules_hash == rules_hash:
            return ReapplyResult(applied=False, ignored_count=0, rules_hash=rules_hash)

    ignored_count = 0
    if rules:
        now = utcnow()
        active = (
            db.query(ScanLink)
            .filter(ScanLink.scan_run_id == scan_run_id)
            .order_by(ScanLink.id.asc())
            .all()
        )
        for link in active:
            facts = LinkFacts(url=link.link_url, classification=link.classification, status_code=link.status_code)
            rule = find_matching_rule(rules, facts, run.site_id)
            if rule is None:
                continue
            link_store.move_to_ignored(db, link, source=IgnoredSource.RULE, rule=rule, now=now)
            ignored_count += 1

    _save_apply_state(db, scan_run_id, rules_hash)
    db.commit()

    logger.info("reapplied ignore rules run=%s moved=%s force=%s", scan_run_id, ignored_count, force)
    return ReapplyResult(applied=True, ignored_count=ignored_count, rules_hash=rules_hash)


def _pattern_for(mode: ManualIgnoreMode, url: str) -> tuple[IgnoreRuleType, str]:
    if mode == ManualIgnoreMode.SITE_RULE_CONTAINS:
        return IgnoreRuleType.CONTAINS, url
    if mode == ManualIgnoreMode.SITE_RULE_EXACT:
        return IgnoreRuleType.EXACT, url
    return IgnoreRuleType.REGEX, f"^{re.escape(url)}$"


def manual_ignore(db: Session, scan_link_id: int, mode) -> ManualIgnoreResult:
    mode = ManualIgnoreMode(mode)
    link = link_store.get_active_link(db, scan_link_id)
    if not link:
        raise NotFoundError("scan_link_not_found")

    if mode == ManualIgnoreMode.THIS_SCAN:
        link_store.move_to_ignored(db, link, source=IgnoredSource.MANUAL, reason="Ignored manually for this scan")
        db.commit()
        logger.info("manual ignore run=%s url=%s", link.scan_run_id, link.link_url)
        return ManualIgnoreResult(mode=mode, rule=None, reapply=None, ignored_count=1)

    run = _require_run(db, link.scan_run_id)
    rule_type, pattern = _pattern_for(mode, link.link_url)
    rule = create_rule(db, run.site_id, rule_type, pattern)
    result = reapply(db, run.id, force=True)
    return ManualIgnoreResult(mode=mode, rule=rule, reapply=result, ignored_count=result.ignored_count)


def unignore(db: Session, scan_run_id: int, link_url: str) -> ScanLink:
    """Bring one link back into the active bucket with its occurrences."""
    ignored = link_store.find_ignored(db, scan_run_id, link_url)
    if ignored is None:
        active = link_store.find_active(db, scan_run_id, link_url)
        if active is not None:
            return active
        raise NotFoundError("ignored_link_not_found")

    link = link_store.move_to_active(db, ignored)
    db.commit()
    logger.info("unignored run=%s url=%s", scan_run_id, link_url)
    return link
