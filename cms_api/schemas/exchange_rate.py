from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class ExchangeRateCreate(BaseModel):
    currency_code: str = Field(..., min_length=3, max_length=3)
    display_name: str = Field(..., min_length=1, max_length=100)
    flag_glyph: Optional[str] = Field(None, max_length=16)
    buy_rate: float = Field(..., gt=0)
    sell_rate: float = Field(..., gt=0)
    base_currency_code: Optional[str] = Field(None, min_length=3, max_length=3)
    active: bool = True

    @field_validator("currency_code", "base_currency_code")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.isalpha():
            raise ValueError("Currency code must be alphabetic")
        return v.upper()

    @model_validator(mode="after")
    def sell_above_buy(self):
        if self.sell_rate <= self.buy_rate:
            raise ValueError("sell_rate must be greater than buy_rate")
        return self


class ExchangeRateUpdate(BaseModel):
    currency_code: Optional[str] = Field(None, min_length=3, max_length=3)
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    flag_glyph: Optional[str] = Field(None, max_length=16)
    buy_rate: Optional[float] = Field(None, gt=0)
    sell_rate: Optional[float] = Field(None, gt=0)
    base_currency_code: Optional[str] = Field(None, min_length=3, max_length=3)
    active: Optional[bool] = None

    @field_validator("currency_code", "base_currency_code")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.isalpha():
            raise ValueError("Currency code must be alphabetic")
        return v.upper()


class ExchangeRateResponse(BaseModel):
    id: str
    currency_code: str
    display_name: str
    flag_glyph: Optional[str] = None
    buy_rate: float
    sell_rate: float
    base_currency_code: str
    active: bool
    last_synced_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ExchangeRateList(BaseModel):
    rates: List[ExchangeRateResponse]


class RateUpdateItem(BaseModel):
    currency: str
    action: str


class SyncResponse(BaseModel):
    message: str
    updates: List[RateUpdateItem]
