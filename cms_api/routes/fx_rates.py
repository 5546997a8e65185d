"""
Foreign exchange board: /api/v1/foreign-exchange

Public visitors read active rates; editors manage them by hand or trigger a
sync from the external quote source.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from cms_api.config import settings
from cms_api.database import get_db
from cms_api.middleware.auth import get_current_user
from cms_api.middleware.authorization import require_roles
from cms_api.models.exchange_rate import ExchangeRate
from cms_api.schemas.exchange_rate import (
    ExchangeRateCreate,
    ExchangeRateList,
    ExchangeRateResponse,
    ExchangeRateUpdate,
    SyncResponse,
)
from cms_api.services.rate_sync import RateSyncEngine, build_rate_sync_engine

logger = structlog.get_logger()
router = APIRouter()


async def get_rate_sync_engine(db: AsyncSession = Depends(get_db)) -> RateSyncEngine:
    return build_rate_sync_engine(db)


def _to_response(r: ExchangeRate) -> ExchangeRateResponse:
    return ExchangeRateResponse(
        id=str(r.id),
        currency_code=r.currency_code,
        display_name=r.display_name,
        flag_glyph=r.flag_glyph,
        buy_rate=float(r.buy_rate),
        sell_rate=float(r.sell_rate),
        base_currency_code=r.base_currency_code,
        active=r.active,
        last_synced_at=r.last_synced_at.isoformat() if r.last_synced_at else None,
        created_at=r.created_at.isoformat() if r.created_at else None,
        updated_at=r.updated_at.isoformat() if r.updated_at else None,
    )


def _parse_id(rate_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(rate_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid ID format")


async def _get_or_404(db: AsyncSession, rate_id: str) -> ExchangeRate:
    result = await db.execute(
        select(ExchangeRate).where(ExchangeRate.id == _parse_id(rate_id))
    )
    rate = result.scalar_one_or_none()
    if not rate:
        raise HTTPException(status_code=404, detail="Foreign exchange rate not found")
    return rate


async def _active_rates(db: AsyncSession) -> list:
    result = await db.execute(
        select(ExchangeRate)
        .where(ExchangeRate.active.is_(True))
        .order_by(ExchangeRate.currency_code)
    )
    return list(result.scalars().all())


@router.get("", response_model=ExchangeRateList)
async def list_active_rates(
    db: AsyncSession = Depends(get_db),
    engine: RateSyncEngine = Depends(get_rate_sync_engine),
):
    """Active rates, sorted by code. An empty board is filled from the quote source once."""
    rates = await _active_rates(db)
    if not rates:
        logger.info("fx_board_empty_bootstrap")
        sync = await engine.sync_all()
        if sync.success:
            rates = await _active_rates(db)
        else:
            logger.error("fx_board_bootstrap_failed", error=sync.error)
    return ExchangeRateList(rates=[_to_response(r) for r in rates])


@router.get("/all", response_model=ExchangeRateList)
async def list_all_rates(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(ExchangeRate).order_by(ExchangeRate.currency_code))
    return ExchangeRateList(rates=[_to_response(r) for r in result.scalars().all()])


@router.post("/sync", response_model=SyncResponse)
async def sync_rates(
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin", "editor")),
    engine: RateSyncEngine = Depends(get_rate_sync_engine),
):
    """Pull fresh quotes and re-derive buy/sell rates for every board currency."""
    result = await engine.sync_all()
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": {
                    "code": "FX_SYNC_FAILED",
                    "message": "Exchange rates are unavailable right now, try again later",
                    "details": result.error,
                }
            },
        )
    logger.info(
        "fx_manual_sync", user_id=current_user["user_id"], updated=len(result.updates)
    )
    return SyncResponse(
        message="Foreign exchange rates synced successfully",
        updates=result.to_dict()["updates"],
    )


@router.get("/{rate_id}", response_model=ExchangeRateResponse)
async def get_rate(rate_id: str, db: AsyncSession = Depends(get_db)):
    return _to_response(await _get_or_404(db, rate_id))


@router.post("", response_model=ExchangeRateResponse, status_code=status.HTTP_201_CREATED)
async def create_rate(
    body: ExchangeRateCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin", "editor")),
    db: AsyncSession = Depends(get_db),
):
    existing = await db.execute(
        select(ExchangeRate.id).where(ExchangeRate.currency_code == body.currency_code)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Currency already exists")

    rate = ExchangeRate(
        currency_code=body.currency_code,
        display_name=body.display_name,
        flag_glyph=body.flag_glyph,
        buy_rate=Decimal(str(body.buy_rate)),
        sell_rate=Decimal(str(body.sell_rate)),
        base_currency_code=body.base_currency_code or settings.FX_BASE_CURRENCY,
        active=body.active,
        last_synced_at=datetime.utcnow(),
    )
    db.add(rate)
    try:
        await db.flush()
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Currency already exists")
    await db.refresh(rate)
    logger.info("fx_rate_created", currency=rate.currency_code, user_id=current_user["user_id"])
    return _to_response(rate)


@router.put("/{rate_id}", response_model=ExchangeRateResponse)
async def update_rate(
    rate_id: str,
    body: ExchangeRateUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin", "editor")),
    db: AsyncSession = Depends(get_db),
):
    rate = await _get_or_404(db, rate_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)

    buy = Decimal(str(changes.pop("buy_rate", rate.buy_rate)))
    sell = Decimal(str(changes.pop("sell_rate", rate.sell_rate)))
    if sell <= buy:
        raise HTTPException(status_code=400, detail="sell_rate must be greater than buy_rate")

    for field, val in changes.items():
        setattr(rate, field, val)
    rate.buy_rate = buy
    rate.sell_rate = sell
    rate.last_synced_at = datetime.utcnow()

    try:
        await db.flush()
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Currency already exists")
    await db.refresh(rate)
    logger.info("fx_rate_updated", currency=rate.currency_code, user_id=current_user["user_id"])
    return _to_response(rate)


@router.delete("/{rate_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rate(
    rate_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin", "editor")),
    db: AsyncSession = Depends(get_db),
):
    rate = await _get_or_404(db, rate_id)
    await db.delete(rate)
    await db.flush()
    logger.info("fx_rate_deleted", currency=rate.currency_code, user_id=current_user["user_id"])
