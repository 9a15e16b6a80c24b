# src/api/admin.py
from typing import Optional

from fastapi import APIRouter, HTTPException, Header, Depends
from pydantic import BaseModel

from src.core.config import get_settings
from src.core.jobs.job_runner import JobResult
from src.core.jobs.scheduler import job_entry_points, run_named_job
from src.core.ranks import Tier
from src.core.services.rank_engine import RankCalculationResult
from src.core.services.rank_service import (
    admin_recalculate, apply_inactivity_penalty, override_user_tier,
)
from src.database.connection import async_session

router = APIRouter(prefix="/admin", tags=["admin"])


def require_admin(x_admin_secret: str = Header(None)):
    """Require admin secret in header"""
    if not x_admin_secret or x_admin_secret != get_settings().admin_secret:
        raise HTTPException(status_code=403, detail="Forbidden")
    return True


class OverrideRequest(BaseModel):
    tier: str
    note: Optional[str] = None


class OverrideResponse(BaseModel):
    ok: bool
    user_id: str
    previous_tier: Tier
    new_tier: Tier


class PenaltyResponse(BaseModel):
    ok: bool
    error: Optional[str] = None


@router.post("/rank/{user_id}/recalculate", response_model=RankCalculationResult)
async def admin_recalculate_rank(user_id: str, _=Depends(require_admin)):
    """Force a recalculation, bypassing the hourly limit"""
    async with async_session() as session:
        return await admin_recalculate(session, user_id)


@router.post("/rank/{user_id}/override", response_model=OverrideResponse)
async def admin_override_tier(user_id: str, body: OverrideRequest, _=Depends(require_admin)):
    """Manual tier change (may move backward or skip tiers)"""
    async with async_session() as session:
        try:
            entry = await override_user_tier(session, user_id, body.tier, note=body.note)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return OverrideResponse(ok=True, user_id=user_id, previous_tier=entry.previous_tier, new_tier=entry.new_tier)


@router.post("/rank/{user_id}/inactivity-penalty", response_model=PenaltyResponse)
async def admin_inactivity_penalty(user_id: str, _=Depends(require_admin)):
    async with async_session() as session:
        outcome = await apply_inactivity_penalty(session, user_id)
    return PenaltyResponse(ok=outcome.ok, error=outcome.error)


@router.post("/jobs/{job_name}/run", response_model=JobResult)
async def admin_run_job(job_name: str, _=Depends(require_admin)):
    """Run a batch job now (same path as the scheduler)"""
    if job_name not in job_entry_points():
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_name}")
    return await run_named_job(job_name, async_session)
