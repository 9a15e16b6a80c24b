"""
FastAPI Backend
Thin HTTP surface over the rank service, leaderboards and admin jobs
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from src.core.config import get_settings
from src.core.errors import RankStoreError, UserNotFoundError
from src.core.jobs.scheduler import build_scheduler
from src.core.ranks import validate_rank_configs
from src.api.rate_limit import limiter
from src.api.admin import router as admin_router
from src.api.leaderboard import router as leaderboard_router
from src.api.rank import router as rank_router

logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(title="TruthRank API", version="1.0.0")

# Rate Limiting
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request, exc):
    return JSONResponse(
        {"detail": "Rate limit exceeded. Please try again later."},
        status_code=429
    )


@app.exception_handler(UserNotFoundError)
async def user_not_found_handler(request: Request, exc: UserNotFoundError):
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(RankStoreError)
async def rank_store_error_handler(request: Request, exc: RankStoreError):
    logger.error("Rank store error on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": "Internal error, please retry"}, status_code=500)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rank_router)
app.include_router(leaderboard_router)
app.include_router(admin_router)

# Scheduler for background jobs (optional; run_scheduler is the standalone process)
scheduler = None


@app.on_event("startup")
async def startup_jobs():
    global scheduler
    validate_rank_configs()

    if settings.run_scheduler_with_api:
        scheduler = build_scheduler()
        scheduler.start()
        logger.info("Rank scheduler started inside the API process")


@app.on_event("shutdown")
async def shutdown_jobs():
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.get("/health")
async def health():
    return {"status": "ok"}
