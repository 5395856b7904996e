class NotFoundError(LookupError):
    """A referenced site, run, job, link or rule does not exist."""


class ConflictError(RuntimeError):
    """The requested transition is not allowed in the current state."""


class InvalidIgnoreRuleError(ValueError):
    pass


class CrawlError(RuntimeError):
    """The crawl could not run at all (e.g. unusable start URL)."""


def to_http(exc: Exception):
    """Map a domain error onto the HTTPException the routers raise."""
    from fastapi import HTTPException

    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc) or "not_found")
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc) or "conflict")
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc) or "invalid_request")
    return HTTPException(status_code=500, detail="internal_error")
