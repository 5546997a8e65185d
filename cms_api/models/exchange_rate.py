"""
Exchange rate model: one row per displayed foreign currency.

Rates are quoted as units of the base currency (TZS) per 1 unit of the
foreign currency. Rows are created by the FX sync or by an admin, updated in
place on every sync, and only removed by an explicit admin delete.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from cms_api.database import Base


class ExchangeRate(Base):
    __tablename__ = "exchange_rates"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    flag_glyph: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    buy_rate: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    sell_rate: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    base_currency_code: Mapped[str] = mapped_column(
        String(3), nullable=False, default="TZS"
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
