from linkwatch.core.pagination import Page
from linkwatch.core.timeutil import iso
from linkwatch.scans.runs import run_snapshot


def run_out(run) -> dict:
    return run_snapshot(run)


def link_out(link) -> dict:
    return {
        "id": link.id,
        "scan_run_id": link.scan_run_id,
        "link_url": link.link_url,
        "classification": link.classification.value,
        "status_code": link.status_code,
        "error_message": link.error_message,
        "occurrence_count": link.occurrence_count,
        "first_seen_at": iso(link.first_seen_at),
        "last_seen_at": iso(link.last_seen_at),
        "ignored": link.ignored,
        "ignored_source": link.ignored_source.value,
        "ignored_by_rule_id": link.ignored_by_rule_id,
        "ignored_at": iso(link.ignored_at),
        "ignore_reason": link.ignore_reason,
    }


def occurrence_out(occ) -> dict:
    return {"id": occ.id, "source_page": occ.source_page, "created_at": iso(occ.created_at)}


def rule_out(rule) -> dict:
    return {
        "id": rule.id,
        "site_id": rule.site_id,
        "rule_type": rule.rule_type.value,
        "pattern": rule.pattern,
        "is_enabled": rule.is_enabled,
        "created_at": iso(rule.created_at),
    }


def page_out(page: Page, serialize) -> dict:
    return {
        "items": [serialize(x) for x in page.items],
        "count_returned": page.count_returned,
        "total_matching": page.total_matching,
    }
