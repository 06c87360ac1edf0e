"""Local stand-in for the upstream FX service.

Serves the two Twirp-style RPCs the payment service consumes and injects
upstream faults at `FX_STUB_FAILURE_RATE` so retry, circuit breaker and
fallback behavior can be exercised end to end.
"""

import random
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from crosspay.common.config import settings
from crosspay.common.logging import configure_logging, logger
from crosspay.common.metrics import metrics_response
from crosspay.services.fx_gateway.client import QUOTE_PATH, SUPPORTED_CURRENCIES_PATH
from crosspay.services.fx_gateway.schemas import FxQuoteRequest


# Units of each currency per 1 USD.
USD_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.9165"),
    "GBP": Decimal("0.7890"),
    "JPY": Decimal("149.52"),
    "CAD": Decimal("1.3621"),
    "AUD": Decimal("1.5234"),
    "CHF": Decimal("0.8812"),
    "CNY": Decimal("7.2410"),
    "INR": Decimal("83.12"),
    "MXN": Decimal("17.05"),
}

FAULTS = ["UNAVAILABLE", "INTERNAL", "ZERO_RATE", "EXPIRED"]

configure_logging()
app = FastAPI(title="CrossPay FX Stub")


def cross_rate(source: str, target: str) -> Decimal:
    return (USD_RATES[target] / USD_RATES[source]).quantize(Decimal("0.0000001"), rounding=ROUND_HALF_UP)


def _maybe_fault() -> str | None:
    if random.random() < settings.fx_stub_failure_rate:
        return random.choice(FAULTS)
    return None


@app.post(QUOTE_PATH)
def get_quote(req: FxQuoteRequest):
    """Quote `source -> target`, occasionally misbehaving on purpose."""

    source = req.source_currency.upper()
    target = req.target_currency.upper()
    if source not in USD_RATES or target not in USD_RATES:
        return JSONResponse(status_code=404, content={"code": "not_found", "msg": "unsupported currency pair"})

    now = datetime.now(timezone.utc)
    fault = _maybe_fault()
    if fault is not None:
        logger.warning("fx stub injecting fault=%s pair=%s/%s", fault, source, target)
    if fault == "UNAVAILABLE":
        return JSONResponse(status_code=503, content={"code": "unavailable", "msg": "try again later"})
    if fault == "INTERNAL":
        return JSONResponse(status_code=500, content={"code": "internal", "msg": "quote engine error"})
    if fault == "ZERO_RATE":
        return {"exchange_rate": 0, "expiry_time": (now + timedelta(seconds=60)).isoformat()}
    if fault == "EXPIRED":
        return {"exchange_rate": str(cross_rate(source, target)), "expiry_time": (now - timedelta(seconds=5)).isoformat()}

    expiry = now + timedelta(seconds=settings.fx_stub_quote_ttl_seconds)
    return {"exchange_rate": str(cross_rate(source, target)), "expiry_time": expiry.isoformat()}


@app.post(SUPPORTED_CURRENCIES_PATH)
def get_supported_currencies():
    fault = _maybe_fault()
    if fault in ("UNAVAILABLE", "INTERNAL"):
        logger.warning("fx stub injecting fault=%s rpc=GetSupportedCurrencies", fault)
        return JSONResponse(status_code=503, content={"code": "unavailable", "msg": "try again later"})
    return {"currencies": sorted(USD_RATES)}


@app.get("/metrics")
def metrics():
    return metrics_response()


@app.get("/health")
def health():
    return {"ok": True}
