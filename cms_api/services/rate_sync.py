# cms_api/services/rate_sync.py
"""
FX rate synchronization.

Pipeline:
  1. QuoteSource.fetch_quotes()  -> raw quotes (foreign units per 1 base unit)
  2. derive_rates()              -> midpoint = 1 / quote, buy/sell around it
  3. RateStore.upsert()          -> create-or-update per currency code

The spread is applied symmetrically around the midpoint m:
    buy  = m * (1 - s/2)
    sell = m * (1 + s/2)
so sell - buy = m * s > 0 for any positive m.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Mapping, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from cms_api.models.exchange_rate import ExchangeRate
from cms_api.config import settings
from cms_api.services.rate_source import (
    ExternalSourceError,
    QuoteSource,
    default_quote_source,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class CurrencyInfo:
    display_name: str
    flag_glyph: str


# Currencies shown on the public rates board, in display order
ALLOW_LIST: Dict[str, CurrencyInfo] = {
    "USD": CurrencyInfo("US Dollar", "🇺🇸"),
    "EUR": CurrencyInfo("Euro", "🇪🇺"),
    "GBP": CurrencyInfo("British Pound", "🇬🇧"),
    "KES": CurrencyInfo("Kenyan Shilling", "🇰🇪"),
    "INR": CurrencyInfo("Indian Rupee", "🇮🇳"),
    "AUD": CurrencyInfo("Australian Dollar", "🇦🇺"),
    "CAD": CurrencyInfo("Canadian Dollar", "🇨🇦"),
    "CHF": CurrencyInfo("Swiss Franc", "🇨🇭"),
    "JPY": CurrencyInfo("Japanese Yen", "🇯🇵"),
    "CNY": CurrencyInfo("Chinese Yuan", "🇨🇳"),
    "ZAR": CurrencyInfo("South African Rand", "🇿🇦"),
    "SAR": CurrencyInfo("Saudi Riyal", "🇸🇦"),
}

DEFAULT_SPREAD = Decimal("0.02")


@dataclass
class DerivedRate:
    currency_code: str
    display_name: str
    flag_glyph: str
    midpoint: Decimal
    buy_rate: Decimal
    sell_rate: Decimal


@dataclass
class RateUpdate:
    currency: str
    action: str  # created | updated


@dataclass
class SyncResult:
    success: bool
    updates: List[RateUpdate] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "updates": [asdict(u) for u in self.updates]}
        return {"success": False, "error": self.error}


def _to_positive_decimal(value: object) -> Optional[Decimal]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        return None
    try:
        d = Decimal(str(value))
    except InvalidOperation:
        return None
    if not d.is_finite() or d <= 0:
        return None
    return d


def _check_spread(spread) -> Decimal:
    spread = Decimal(str(spread))
    if not (Decimal("0") < spread < Decimal("1")):
        raise ValueError(f"Spread must be in (0, 1), got {spread}")
    return spread


def derive_rates(
    quotes: Mapping[str, object],
    spread: Decimal = DEFAULT_SPREAD,
    allow_list: Optional[Mapping[str, CurrencyInfo]] = None,
) -> List[DerivedRate]:
    """
    Turn raw quotes into buy/sell rates for every allow-listed currency present.

    Currencies missing from `quotes`, or quoted with a non-positive or
    non-numeric value, are skipped.
    """
    spread = _check_spread(spread)
    if allow_list is None:
        allow_list = ALLOW_LIST

    half = spread / 2
    derived: List[DerivedRate] = []
    for code, info in allow_list.items():
        if code not in quotes:
            continue
        quote = _to_positive_decimal(quotes[code])
        if quote is None:
            logger.warning("fx_quote_invalid", currency=code, quote=repr(quotes[code]))
            continue
        midpoint = Decimal("1") / quote
        derived.append(
            DerivedRate(
                currency_code=code,
                display_name=info.display_name,
                flag_glyph=info.flag_glyph,
                midpoint=midpoint,
                buy_rate=midpoint * (1 - half),
                sell_rate=midpoint * (1 + half),
            )
        )
    return derived


class RateStore(Protocol):
    async def upsert(
        self, rate: DerivedRate, base_currency: str, synced_at: datetime
    ) -> str:
        """Create or update the row for rate.currency_code; return 'created' or 'updated'."""
        ...


class SqlAlchemyRateStore:
    """RateStore backed by the exchange_rates table; one savepoint per currency."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(
        self, rate: DerivedRate, base_currency: str, synced_at: datetime
    ) -> str:
        async with self.session.begin_nested():
            result = await self.session.execute(
                select(ExchangeRate).where(
                    ExchangeRate.currency_code == rate.currency_code
                )
            )
            existing = result.scalar_one_or_none()
            if existing:
                existing.buy_rate = rate.buy_rate
                existing.sell_rate = rate.sell_rate
                existing.last_synced_at = synced_at
                action = "updated"
            else:
                self.session.add(
                    ExchangeRate(
                        currency_code=rate.currency_code,
                        display_name=rate.display_name,
                        flag_glyph=rate.flag_glyph,
                        buy_rate=rate.buy_rate,
                        sell_rate=rate.sell_rate,
                        base_currency_code=base_currency,
                        active=True,
                        last_synced_at=synced_at,
                    )
                )
                action = "created"
            await self.session.flush()
        return action


class RateSyncEngine:
    def __init__(
        self,
        store: RateStore,
        source: QuoteSource,
        spread: Decimal = DEFAULT_SPREAD,
        base_currency: str = "TZS",
        allow_list: Optional[Mapping[str, CurrencyInfo]] = None,
    ):
        self.store = store
        self.source = source
        self.spread = _check_spread(spread)
        self.base_currency = base_currency.upper()
        self.allow_list = allow_list if allow_list is not None else ALLOW_LIST

    async def sync_all(self) -> SyncResult:
        """
        Fetch quotes, derive buy/sell rates, and upsert each allow-listed currency.

        Never raises for source failures: they come back as success=False with
        nothing written. A store failure on one currency drops it from
        `updates` without undoing the others.
        """
        try:
            quotes = await self.source.fetch_quotes()
        except ExternalSourceError as e:
            logger.error(
                "fx_sync_source_failed",
                error=str(e),
                cause=repr(e.cause) if e.cause else None,
            )
            return SyncResult(success=False, error=str(e))

        derived = derive_rates(quotes, self.spread, self.allow_list)
        synced_at = datetime.utcnow()
        updates: List[RateUpdate] = []
        failed: List[str] = []

        for rate in derived:
            try:
                action = await self.store.upsert(rate, self.base_currency, synced_at)
            except Exception as e:
                logger.error(
                    "fx_rate_upsert_failed", currency=rate.currency_code, error=str(e)
                )
                failed.append(rate.currency_code)
                continue
            updates.append(RateUpdate(currency=rate.currency_code, action=action))

        skipped = [code for code in self.allow_list if code not in quotes]
        logger.info(
            "fx_sync_complete",
            updated=len(updates),
            failed=failed,
            missing_upstream=skipped,
        )
        return SyncResult(success=True, updates=updates)


def build_rate_sync_engine(
    session: AsyncSession, source: Optional[QuoteSource] = None
) -> RateSyncEngine:
    """Engine wired from settings, writing through the given session."""
    return RateSyncEngine(
        store=SqlAlchemyRateStore(session),
        source=source or default_quote_source(),
        spread=Decimal(str(settings.FX_SPREAD)),
        base_currency=settings.FX_BASE_CURRENCY,
    )
