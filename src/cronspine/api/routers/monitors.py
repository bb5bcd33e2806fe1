"""
Monitor read router.

GET /monitors
GET /monitors/{slug}
GET /monitors/{slug}/runs
"""

from __future__ import annotations

from fastapi import APIRouter, Path, Query

from cronspine.api.deps import Store
from cronspine.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from cronspine.api.schemas.monitors import MonitorSchema, RunSchema

router = APIRouter(prefix="/monitors")


@router.get("", response_model=PagedResponse[MonitorSchema])
def list_monitors(
    store: Store,
    environment: str | None = Query(None, description="Only monitors of this environment"),
):
    """List monitors with their status and counters."""
    items = [MonitorSchema.from_monitor(m) for m in store.list_monitors(environment)]
    return PagedResponse(
        data=items,
        page=PageMeta(total=len(items), limit=len(items)),
    )


@router.get("/{slug}", response_model=SuccessResponse[MonitorSchema])
def get_monitor(
    store: Store,
    slug: str = Path(..., description="Monitor slug"),
    environment: str = Query("production", description="Monitor environment"),
):
    """Get one monitor.

    Raises:
        404: No monitor for ``(slug, environment)``.
    """
    return SuccessResponse(data=MonitorSchema.from_monitor(store.require(slug, environment)))


@router.get("/{slug}/runs", response_model=PagedResponse[RunSchema])
def list_runs(
    store: Store,
    slug: str = Path(..., description="Monitor slug"),
    environment: str = Query("production", description="Monitor environment"),
    limit: int = Query(50, ge=1, le=1000, description="Most recent runs to return"),
):
    """Most recent runs first, including Missed and Timeout runs."""
    store.require(slug, environment)
    runs = store.list_runs(slug, environment, limit=limit + 1)
    items = [RunSchema.from_run(r) for r in runs[:limit]]
    return PagedResponse(
        data=items,
        page=PageMeta(total=len(items), limit=limit, has_more=len(runs) > limit),
    )
