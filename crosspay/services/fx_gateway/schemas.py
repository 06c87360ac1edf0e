"""Wire schemas for the upstream FX service RPCs.

Example quote exchange:

    POST /twirp/payments.v1.FXService/GetQuote
    {"source_currency": "USD", "target_currency": "EUR"}
    -> {"exchange_rate": 0.916487620119132, "expiry_time": "2026-01-20T20:18:42Z"}

Example supported-currencies exchange:

    POST /twirp/payments.v1.FXService/GetSupportedCurrencies
    {}
    -> {"currencies": ["USD", "EUR", "GBP", "JPY"]}
"""

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, field_validator


class FxQuoteRequest(BaseModel):
    """Quote request body; both codes are ISO 4217."""

    source_currency: str
    target_currency: str


class FxQuoteResponse(BaseModel):
    """Quote as returned upstream; validity is checked by the gateway, not here."""

    exchange_rate: Decimal | None = None
    expiry_time: datetime | None = None

    @field_validator("expiry_time")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class FxSupportedCurrenciesResponse(BaseModel):
    currencies: list[str]
