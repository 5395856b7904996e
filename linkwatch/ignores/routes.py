# linkwatch/ignores/routes.py

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from linkwatch.core.errors import ConflictError, NotFoundError, to_http
from linkwatch.core.pagination import paginate
from linkwatch.db.session import get_db
from linkwatch.ignores import rules as rule_store
from linkwatch.ignores import service
from linkwatch.ignores.models import IgnoreRuleType
from linkwatch.scans.serializers import link_out, page_out, rule_out

router = APIRouter(prefix="/ignores", tags=["ignores"])


class RuleIn(BaseModel):
    site_id: int | None = None
    rule_type: IgnoreRuleType
    pattern: str
    is_enabled: bool = True


class RuleToggleIn(BaseModel):
    is_enabled: bool


class ManualIgnoreIn(BaseModel):
    mode: service.ManualIgnoreMode = service.ManualIgnoreMode.THIS_SCAN


class UnignoreIn(BaseModel):
    link_url: str


def _reapply_out(result) -> dict | None:
    if result is None:
        return None
    return {"applied": result.applied, "ignored_count": result.ignored_count, "rules_hash": result.rules_hash}


@router.get("/rules")
def list_rules(site_id: int | None = None, limit: int = 200, offset: int = 0, db: Session = Depends(get_db)):
    page = paginate(rule_store.list_rules(db, site_id), limit=limit, offset=offset)
    return page_out(page, rule_out)


@router.post("/rules", status_code=201)
def create_rule(payload: RuleIn, db: Session = Depends(get_db)):
    try:
        rule = rule_store.create_rule(db, payload.site_id, payload.rule_type, payload.pattern, enabled=payload.is_enabled)
    except ValueError as e:
        raise to_http(e)
    return rule_out(rule)


@router.patch("/rules/{rule_id}")
def toggle_rule(rule_id: int, payload: RuleToggleIn, db: Session = Depends(get_db)):
    try:
        rule = rule_store.set_rule_enabled(db, rule_id, payload.is_enabled)
    except NotFoundError as e:
        raise to_http(e)
    return rule_out(rule)


@router.delete("/rules/{rule_id}")
def delete_rule(rule_id: int, db: Session = Depends(get_db)):
    try:
        rule_store.delete_rule(db, rule_id)
    except NotFoundError as e:
        raise to_http(e)
    return {"ok": True}


@router.post("/links/{scan_link_id}")
def manual_ignore(scan_link_id: int, payload: ManualIgnoreIn, db: Session = Depends(get_db)):
    try:
        result = service.manual_ignore(db, scan_link_id, payload.mode)
    except (NotFoundError, ValueError) as e:
        raise to_http(e)
    return {
        "mode": result.mode.value,
        "rule": rule_out(result.rule) if result.rule else None,
        "reapply": _reapply_out(result.reapply),
        "ignored_count": result.ignored_count,
    }


@router.post("/runs/{run_id}/unignore")
def unignore(run_id: int, payload: UnignoreIn, db: Session = Depends(get_db)):
    try:
        link = service.unignore(db, run_id, payload.link_url)
    except NotFoundError as e:
        raise to_http(e)
    return link_out(link)


@router.post("/runs/{run_id}/reapply")
def reapply(run_id: int, force: bool = False, db: Session = Depends(get_db)):
    try:
        result = service.reapply(db, run_id, force=force)
    except (NotFoundError, ConflictError) as e:
        raise to_http(e)
    return _reapply_out(result)
