"""
Operator force-refresh endpoints.

POST /v1/admin/matches/{match_id}/refresh : refresh one match as an override.
POST /v1/admin/matches/refresh-stuck      : refresh every stuck candidate now.

Partial failures come back as 200 with per-match outcomes; a provider that
cannot be reached at all surfaces as 503 and an unknown id as 404.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from shared.models.domain import RefreshReport
from shared.utils.logging import get_logger

from api.dependencies import get_force_refresh
from reconciler.jobs.force_refresh import ForceRefresh

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.post("/matches/refresh-stuck", response_model=RefreshReport, response_model_exclude_none=True)
async def refresh_stuck(
    force_refresh: ForceRefresh = Depends(get_force_refresh),
) -> RefreshReport:
    return await force_refresh.refresh_stuck()


@router.post(
    "/matches/{match_id}/refresh", response_model=RefreshReport, response_model_exclude_none=True
)
async def refresh_match(
    match_id: str,
    force_refresh: ForceRefresh = Depends(get_force_refresh),
) -> RefreshReport:
    return await force_refresh.refresh_one(match_id)
