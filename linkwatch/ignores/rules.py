"""
Ignore rules: validation, matching and CRUD.

Matching works on `LinkFacts` so the same rule set can be evaluated before a
link is stored (ingest) and against stored rows (reapply).
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from sqlalchemy import or_
from sqlalchemy.orm import Session

from linkwatch.core.errors import InvalidIgnoreRuleError, NotFoundError
from linkwatch.ignores.models import IgnoreRule, IgnoreRuleType
from linkwatch.scans.enums import LinkClassification


@dataclass(frozen=True)
class LinkFacts:
    url: str
    classification: LinkClassification | None = None
    status_code: int | None = None


def _domain_pattern(pattern: str) -> str:
    p = pattern.strip()
    if re.match(r"^https?://", p, re.I):
        return (urlparse(p).hostname or "").lower()
    return p.split("/")[0].lower()


def _path_pattern(pattern: str) -> str:
    p = pattern.strip()
    if re.match(r"^https?://", p, re.I):
        return urlparse(p).path or "/"
    slash = p.find("/")
    if slash >= 0:
        return p[slash:]
    return "/" + p


def validate_rule(rule_type, pattern: str) -> tuple[IgnoreRuleType, str]:
    try:
        rule_type = IgnoreRuleType(rule_type)
    except ValueError:
        raise InvalidIgnoreRuleError(f"unknown rule type: {rule_type!r}")

    pattern = (pattern or "").strip()
    if not pattern:
        raise InvalidIgnoreRuleError("pattern must not be empty")

    if rule_type == IgnoreRuleType.REGEX:
        try:
            re.compile(pattern)
        except re.error as e:
            raise InvalidIgnoreRuleError(f"invalid regex: {e}")
    elif rule_type == IgnoreRuleType.STATUS_CODE:
        if not pattern.isdigit() or not (100 <= int(pattern) <= 599):
            raise InvalidIgnoreRuleError("status_code pattern must be an HTTP status code")
    elif rule_type == IgnoreRuleType.CLASSIFICATION:
        try:
            LinkClassification(pattern.lower())
        except ValueError:
            raise InvalidIgnoreRuleError(f"unknown classification: {pattern!r}")
        pattern = pattern.lower()
    elif rule_type == IgnoreRuleType.DOMAIN:
        if not _domain_pattern(pattern).lstrip("*."):
            raise InvalidIgnoreRuleError("domain pattern has no host")

    return rule_type, pattern


def rule_matches(rule: IgnoreRule, facts: LinkFacts) -> bool:
    rule_type = IgnoreRuleType(rule.rule_type)
    pattern = rule.pattern
    url = facts.url

    if rule_type == IgnoreRuleType.CONTAINS:
        return pattern in url
    if rule_type == IgnoreRuleType.EXACT:
        return url == pattern
    if rule_type == IgnoreRuleType.REGEX:
        try:
            return re.search(pattern, url) is not None
        except re.error:
            return False
    if rule_type == IgnoreRuleType.STATUS_CODE:
        return facts.status_code is not None and pattern.strip().isdigit() and facts.status_code == int(pattern)
    if rule_type == IgnoreRuleType.CLASSIFICATION:
        return facts.classification is not None and LinkClassification(facts.classification).value == pattern.strip().lower()

    parsed = urlparse(url)
    if rule_type == IgnoreRuleType.DOMAIN:
        host = (parsed.hostname or "").lower()
        p = _domain_pattern(pattern)
        if p.startswith("*."):
            p = p[2:]
        elif p.startswith("."):
            p = p[1:]
        else:
            return host == p
        return host == p or host.endswith("." + p)
    if rule_type == IgnoreRuleType.PATH_PREFIX:
        return (parsed.path or "/").startswith(_path_pattern(pattern))
    return False


def find_matching_rule(rules, facts: LinkFacts, site_id: int | None = None) -> IgnoreRule | None:
    """First enabled rule that applies to the site and matches. `rules` come oldest first."""
    for rule in rules:
        if not rule.is_enabled:
            continue
        if rule.site_id is not None and site_id is not None and rule.site_id != site_id:
            continue
        if rule_matches(rule, facts):
            return rule
    return None


def list_rules_for_site(db: Session, site_id: int, *, enabled_only: bool = False) -> list[IgnoreRule]:
    """Site rules plus global rules, oldest first."""
    q = db.query(IgnoreRule).filter(or_(IgnoreRule.site_id == site_id, IgnoreRule.site_id.is_(None)))
    if enabled_only:
        q = q.filter(IgnoreRule.is_enabled.is_(True))
    return q.order_by(IgnoreRule.created_at.asc(), IgnoreRule.id.asc()).all()


def list_rules(db: Session, site_id: int | None = None):
    q = db.query(IgnoreRule)
    if site_id is not None:
        q = q.filter(or_(IgnoreRule.site_id == site_id, IgnoreRule.site_id.is_(None)))
    return q.order_by(IgnoreRule.created_at.asc(), IgnoreRule.id.asc())


def get_rule(db: Session, rule_id: int) -> IgnoreRule:
    rule = db.get(IgnoreRule, rule_id)
    if not rule:
        raise NotFoundError("ignore_rule_not_found")
    return rule


def create_rule(db: Session, site_id: int | None, rule_type, pattern: str, *, enabled: bool = True) -> IgnoreRule:
    rule_type, pattern = validate_rule(rule_type, pattern)
    rule = IgnoreRule(site_id=site_id, rule_type=rule_type, pattern=pattern, is_enabled=enabled)
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def set_rule_enabled(db: Session, rule_id: int, enabled: bool) -> IgnoreRule:
    rule = get_rule(db, rule_id)
    rule.is_enabled = bool(enabled)
    db.commit()
    db.refresh(rule)
    return rule


def delete_rule(db: Session, rule_id: int) -> None:
    rule = get_rule(db, rule_id)
    db.delete(rule)
    db.commit()


def rules_fingerprint(rules) -> str:
    """Stable hash of the enabled rule set, used to skip no-op reapplies."""
    parts = sorted(
        f"{r.id}|{r.site_id or ''}|{IgnoreRuleType(r.rule_type).value}|{r.pattern}"
        for r in rules
        if r.is_enabled
    )
    return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()
