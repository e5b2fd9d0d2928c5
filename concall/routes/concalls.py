"""
Concall API routes.

GET    /api/fetch_concalls   - run one ingestion for a date range
GET    /api/list_concalls    - paginated stored guidance, newest disclosure first
GET    /api/find_concalls    - same, filtered by issuer name substring
DELETE /api/cleanup_concalls - drop placeholder rows ("NA", "(no response)")
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from concall.common.errors import (
    ConcallError,
    PersistenceError,
    PipelineTimeoutError,
    UpstreamFetchError,
    ValidationError,
)
from concall.common.logging import log_event
from concall.ingest.dates import resolve_date_range
from concall.persistence.guidance_store import Page

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10


def _positive_int(raw: Optional[str], default: int) -> int:
    try:
        v = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return v if v > 0 else default


def _error(status_code: int, **body: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body)


def _page_body(p: Page, **extra_meta: Any) -> dict[str, Any]:
    return {
        "meta": {
            **extra_meta,
            "page": p.page,
            "limit": p.limit,
            "total": p.total,
            "totalPages": p.total_pages,
        },
        "data": p.rows,
    }


@router.get("/fetch_concalls")
async def fetch_concalls(
    request: Request,
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = Query(default=None),
):
    state = request.app.state
    try:
        date_range = resolve_date_range(from_, to)
    except ValidationError as e:
        return _error(400, error=str(e))
    if state.ingestor is None:
        return _error(500, error="Failed to initialize Gemini client: GEMINI_API_KEY is not set")

    log_event(logger, "concall_api.fetch_requested", start=str(date_range.start), end=str(date_range.end))
    try:
        result = await state.ingestor.run_with_deadline(date_range, deadline_s=state.config.pipeline_deadline_s)
    except UpstreamFetchError as e:
        return _error(502, error=f"Failed to fetch announcements: {e}")
    except PipelineTimeoutError as e:
        return _error(504, error=str(e))
    except PersistenceError as e:
        return _error(500, error=f"Failed to filter announcements: {e}")
    except ConcallError as e:
        return _error(500, error=str(e))

    if result.status == "empty":
        return {"message": "No announcements found for the given date range", "count": 0, "summaries": []}
    if result.status == "noop":
        return {"message": "All announcements already processed", "count": 0}
    if result.status == "persist_failed":
        return _error(
            500,
            error=f"Failed to save summaries: {result.error}",
            summary="Processed but failed to save",
            count=result.unsaved,
        )
    return {
        "message": "Announcements processed and saved successfully",
        "count": len(result.records),
        "processed": result.enriched,
        "skipped": result.skipped,
        "errored": result.errored,
        "summaries": [r.to_dict() for r in result.records],
    }


@router.get("/list_concalls")
async def list_concalls(request: Request, page: Optional[str] = None, limit: Optional[str] = None):
    pg = _positive_int(page, DEFAULT_PAGE)
    lim = _positive_int(limit, DEFAULT_LIMIT)
    try:
        p = await request.app.state.guidance_store.list_page(page=pg, limit=lim)
    except PersistenceError as e:
        return _error(500, error="Failed to query guidances", details=str(e))
    return _page_body(p)


@router.get("/find_concalls")
async def find_concalls(
    request: Request,
    name: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
):
    query = (name or "").replace("+", " ").strip()
    if not query:
        return _error(400, error="query parameter 'name' is required")
    pg = _positive_int(page, DEFAULT_PAGE)
    lim = _positive_int(limit, DEFAULT_LIMIT)
    try:
        p = await request.app.state.guidance_store.find_by_name(query, page=pg, limit=lim)
    except PersistenceError as e:
        return _error(500, error="failed to query guidances", details=str(e))
    return _page_body(p, query=query)


@router.delete("/cleanup_concalls")
async def cleanup_concalls(request: Request):
    try:
        deleted = await request.app.state.guidance_store.delete_placeholders()
    except PersistenceError as e:
        return _error(500, error="Failed to clean up guidances", details=str(e))
    return {"message": "Placeholder guidance removed", "deleted": deleted}
