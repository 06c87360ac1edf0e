"""FX gateway: response validation, failure normalization, resilience wiring."""

import json
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from crosspay.common.resilience import CircuitState
from crosspay.services.fx_gateway.client import (
    QUOTE_PATH,
    SUPPORTED_CURRENCIES_PATH,
    FxServiceError,
    validate_quote,
)
from crosspay.services.fx_gateway.schemas import FxQuoteResponse
from tests.conftest import FIXED_NOW


def test_returns_rate_and_sends_twirp_request(fx_gateway, upstream):
    rate = fx_gateway.get_exchange_rate("USD", "EUR")

    assert rate == Decimal("0.8765432")
    request = upstream.requests[0]
    assert request.method == "POST"
    assert str(request.url) == f"http://fx.test{QUOTE_PATH}"
    assert json.loads(request.content) == {"source_currency": "USD", "target_currency": "EUR"}


def test_numeric_rate_without_expiry_is_accepted(fx_gateway, upstream):
    upstream.quote = {"exchange_rate": 1.25}
    assert fx_gateway.get_exchange_rate("USD", "CAD") == Decimal("1.25")


@pytest.mark.parametrize("rate", ["0", "-0.5", None])
def test_non_positive_or_missing_rate_is_retried_then_raises(fx_gateway, upstream, rate):
    upstream.quote = {"exchange_rate": rate}

    with pytest.raises(FxServiceError, match="FX service is unavailable after multiple attempts") as excinfo:
        fx_gateway.get_exchange_rate("USD", "EUR")

    assert upstream.quote_calls == 3
    assert "Invalid exchange rate" in str(excinfo.value.__cause__)


def test_expired_quote_is_rejected(fx_gateway, upstream):
    upstream.quote = {"exchange_rate": "0.9", "expiry_time": (FIXED_NOW - timedelta(seconds=1)).isoformat()}

    with pytest.raises(FxServiceError) as excinfo:
        fx_gateway.get_exchange_rate("USD", "EUR")
    assert "expired" in str(excinfo.value.__cause__)


def test_quote_expiring_exactly_now_is_expired():
    quote = FxQuoteResponse(exchange_rate=Decimal("0.9"), expiry_time=FIXED_NOW)
    with pytest.raises(FxServiceError, match="expired"):
        validate_quote(quote, FIXED_NOW)


def test_quote_expiring_just_after_now_is_valid():
    quote = FxQuoteResponse(exchange_rate=Decimal("0.9"), expiry_time=FIXED_NOW + timedelta(microseconds=1))
    assert validate_quote(quote, FIXED_NOW) == Decimal("0.9")


def test_naive_expiry_is_read_as_utc():
    quote = FxQuoteResponse.model_validate({"exchange_rate": "1", "expiry_time": "2026-01-20T20:18:42"})
    assert quote.expiry_time.utcoffset() == timedelta(0)


@pytest.mark.parametrize(
    "fault",
    [
        httpx.Response(503, json={"code": "unavailable"}),
        httpx.Response(404, json={"code": "not_found"}),
        httpx.Response(200, content=b"<html>oops</html>"),
        httpx.Response(200, json={"exchange_rate": "not-a-number"}),
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("read timed out"),
    ],
)
def test_every_upstream_failure_becomes_fx_service_error(fx_gateway, upstream, fault):
    upstream.quote_fault = fault

    with pytest.raises(FxServiceError) as excinfo:
        fx_gateway.get_exchange_rate("USD", "EUR")

    assert isinstance(excinfo.value.__cause__, FxServiceError)
    assert not isinstance(excinfo.value, httpx.HTTPError)


def test_transient_failure_recovers_within_retries(fx_gateway, upstream):
    upstream.quote_script = [httpx.Response(503), httpx.ConnectError("reset")]

    assert fx_gateway.get_exchange_rate("USD", "EUR") == Decimal("0.8765432")
    assert upstream.quote_calls == 3


def test_circuit_opens_short_circuits_and_recovers(fx_gateway, upstream, breaker_clock):
    upstream.quote_fault = httpx.Response(500)
    breaker = fx_gateway.quote_policy.breaker

    with pytest.raises(FxServiceError):
        fx_gateway.get_exchange_rate("USD", "EUR")
    assert upstream.quote_calls == 3
    assert breaker.state is CircuitState.CLOSED

    # Fourth failed attempt fills the window and opens the circuit; the next attempt is refused.
    with pytest.raises(FxServiceError):
        fx_gateway.get_exchange_rate("USD", "EUR")
    assert upstream.quote_calls == 4
    assert breaker.state is CircuitState.OPEN

    with pytest.raises(FxServiceError, match="unavailable"):
        fx_gateway.get_exchange_rate("USD", "EUR")
    assert upstream.quote_calls == 4

    upstream.quote_fault = None
    breaker_clock.advance(30)
    assert fx_gateway.get_exchange_rate("USD", "EUR") == Decimal("0.8765432")
    assert upstream.quote_calls == 5
    assert breaker.state is CircuitState.CLOSED


def test_operations_have_independent_breakers(fx_gateway, upstream):
    upstream.quote_fault = httpx.Response(500)
    for _ in range(2):
        with pytest.raises(FxServiceError):
            fx_gateway.get_exchange_rate("USD", "EUR")

    assert fx_gateway.quote_policy.breaker.state is CircuitState.OPEN
    assert fx_gateway.get_supported_currencies() == {"USD", "EUR", "GBP", "JPY"}


def test_supported_currencies_are_normalized(fx_gateway, upstream):
    upstream.currencies = ["usd", " eur ", "GBP"]

    assert fx_gateway.get_supported_currencies() == {"USD", "EUR", "GBP"}
    request = upstream.requests[0]
    assert str(request.url) == f"http://fx.test{SUPPORTED_CURRENCIES_PATH}"
    assert json.loads(request.content) == {}


def test_supported_currencies_fallback_is_empty_set(fx_gateway, upstream):
    upstream.currencies_fault = httpx.Response(502)

    assert fx_gateway.get_supported_currencies() == set()
    assert upstream.currencies_calls == 3


def test_malformed_currencies_payload_falls_back(fx_gateway, upstream):
    upstream.currencies_fault = httpx.Response(200, json={"unexpected": True})
    assert fx_gateway.get_supported_currencies() == set()


def test_is_currency_supported(fx_gateway):
    assert fx_gateway.is_currency_supported("EUR") is True
    assert fx_gateway.is_currency_supported("SEK") is False


def test_is_currency_supported_fails_closed_when_lookup_fails(fx_gateway, upstream):
    upstream.currencies_fault = httpx.ConnectError("down")

    for code in ("USD", "EUR", "GBP"):
        assert fx_gateway.is_currency_supported(code) is False


def test_is_currency_supported_never_raises(fx_gateway, monkeypatch):
    def boom():
        raise RuntimeError("unexpected")

    monkeypatch.setattr(fx_gateway, "get_supported_currencies", boom)
    assert fx_gateway.is_currency_supported("USD") is False
