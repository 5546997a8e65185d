# cms_api/jobs/scheduled.py
"""
Scheduled background jobs.

Jobs:
  - sync-fx-rates: Daily at 07:00 Africa/Dar_es_Salaam

Either an external scheduler calls POST /internal/jobs/sync-fx-rates, or, with
FX_SYNC_SCHEDULER_ENABLED, the app runs the same job from an in-process timer
started in the lifespan handler.
"""

import asyncio
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Request, status
import structlog

from cms_api.config import settings
from cms_api.database import AsyncSessionLocal
from cms_api.routes.fx_rates import get_rate_sync_engine
from cms_api.services.rate_sync import RateSyncEngine, SyncResult, build_rate_sync_engine

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """
    Verify request comes from the scheduler or an internal service.
    Validates X-Internal-Secret header against INTERNAL_JOB_SECRET from settings.
    """
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # In development (DEBUG=True), allow unauthenticated internal calls
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


def _log_sync_result(result: SyncResult, trigger: str) -> None:
    if result.success:
        logger.info(
            "fx_scheduled_sync_complete",
            trigger=trigger,
            updates=[f"{u.currency}:{u.action}" for u in result.updates],
        )
    else:
        logger.error("fx_scheduled_sync_failed", trigger=trigger, error=result.error)


@router.post("/sync-fx-rates")
async def sync_fx_rates_job(
    _auth: None = Depends(_require_internal_auth),
    engine: RateSyncEngine = Depends(get_rate_sync_engine),
):
    """Daily: refresh the FX board from the external quote source."""
    result = await engine.sync_all()
    _log_sync_result(result, trigger="http")
    return result.to_dict()


async def run_fx_sync_job() -> SyncResult:
    """One unattended sync in its own session; commits whatever was written."""
    async with AsyncSessionLocal() as session:
        result = await build_rate_sync_engine(session).sync_all()
        await session.commit()
    _log_sync_result(result, trigger="timer")
    return result


def seconds_until_next_run(now: datetime, hour: int, minute: int) -> float:
    """Seconds from `now` (timezone-aware) to the next hour:minute in now's timezone."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def daily_fx_sync_loop() -> None:
    tz = ZoneInfo(settings.FX_SYNC_TIMEZONE)
    logger.info(
        "fx_sync_timer_started",
        at=f"{settings.FX_SYNC_HOUR:02d}:{settings.FX_SYNC_MINUTE:02d}",
        timezone=settings.FX_SYNC_TIMEZONE,
    )
    while True:
        delay = seconds_until_next_run(
            datetime.now(tz), settings.FX_SYNC_HOUR, settings.FX_SYNC_MINUTE
        )
        await asyncio.sleep(delay)
        try:
            await run_fx_sync_job()
        except Exception as e:
            # Next day's run retries; the timer itself must keep going
            logger.error("fx_sync_timer_run_failed", error=str(e))
