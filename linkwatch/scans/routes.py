# linkwatch/scans/routes.py

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from linkwatch.core.errors import ConflictError, NotFoundError, to_http
from linkwatch.core.ratelimit import limiter, SCAN_TRIGGER_LIMIT
from linkwatch.db.session import get_db
from linkwatch.scans import links as link_store
from linkwatch.scans import runs, service
from linkwatch.scans.diff import diff_as_dict, diff_runs, issue_view
from linkwatch.scans.enums import LinkClassification
from linkwatch.scans.serializers import link_out, occurrence_out, page_out, run_out

router = APIRouter(prefix="/scans", tags=["scans"])


def get_settings(request: Request):
    return request.app.state.settings


@router.post("/sites/{site_id}")
@limiter.limit(SCAN_TRIGGER_LIMIT)
def trigger_scan(request: Request, site_id: int, db: Session = Depends(get_db), settings=Depends(get_settings)):
    try:
        run, job = service.trigger_scan(db, site_id, settings)
    except (NotFoundError, ConflictError) as e:
        raise to_http(e)
    return {"scan_run": run_out(run), "job_id": job.id}


@router.get("/sites/{site_id}/runs")
def list_runs(site_id: int, limit: int = 20, offset: int = 0, db: Session = Depends(get_db)):
    try:
        page = service.list_runs(db, site_id, limit=limit, offset=offset)
    except NotFoundError as e:
        raise to_http(e)
    return page_out(page, run_out)


@router.get("/runs/{run_id}")
def get_run(run_id: int, db: Session = Depends(get_db)):
    run = runs.get_run(db, run_id)
    if not run:
        raise HTTPException(status_code=404, detail="scan_run_not_found")
    return run_out(run)


@router.post("/runs/{run_id}/cancel")
def cancel_run(run_id: int, db: Session = Depends(get_db)):
    try:
        run = service.cancel_scan_run(db, run_id)
    except (NotFoundError, ConflictError) as e:
        raise to_http(e)
    return run_out(run)


@router.post("/runs/{run_id}/retry")
def retry_run(run_id: int, db: Session = Depends(get_db), settings=Depends(get_settings)):
    try:
        run, job = service.retry_scan_run(db, run_id, settings)
    except (NotFoundError, ConflictError) as e:
        raise to_http(e)
    return {"scan_run": run_out(run), "job_id": job.id}


@router.get("/runs/{run_id}/links")
def list_links(
    run_id: int,
    classification: LinkClassification | None = None,
    limit: int = 200,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    try:
        runs.require_run(db, run_id)
    except NotFoundError as e:
        raise to_http(e)
    page = link_store.list_links(db, run_id, classification=classification, limit=limit, offset=offset)
    return page_out(page, link_out)


@router.get("/links/{link_id}/occurrences")
def list_occurrences(link_id: int, limit: int = 50, offset: int = 0, db: Session = Depends(get_db)):
    if not link_store.get_active_link(db, link_id):
        raise HTTPException(status_code=404, detail="scan_link_not_found")
    return page_out(link_store.list_occurrences(db, link_id, limit=limit, offset=offset), occurrence_out)


@router.get("/runs/{run_id}/ignored")
def list_ignored(run_id: int, limit: int = 200, offset: int = 0, db: Session = Depends(get_db)):
    try:
        runs.require_run(db, run_id)
    except NotFoundError as e:
        raise to_http(e)
    return page_out(link_store.list_ignored_links(db, run_id, limit=limit, offset=offset), link_out)


@router.get("/ignored/{ignored_id}/occurrences")
def list_ignored_occurrences(ignored_id: int, limit: int = 50, offset: int = 0, db: Session = Depends(get_db)):
    if not link_store.get_ignored_link(db, ignored_id):
        raise HTTPException(status_code=404, detail="ignored_link_not_found")
    page = link_store.list_ignored_occurrences(db, ignored_id, limit=limit, offset=offset)
    return page_out(page, occurrence_out)


@router.get("/diff")
def diff(a: int, b: int, issues_only: bool = False, db: Session = Depends(get_db)):
    try:
        raw = diff_runs(db, a, b)
    except NotFoundError as e:
        raise to_http(e)
    out = diff_as_dict(issue_view(raw) if issues_only else raw)
    out.update({"baseline": a, "comparand": b, "issues_only": issues_only})
    return out
