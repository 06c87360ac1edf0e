"""Resilient client for the upstream FX service.

Every upstream failure mode (transport error, non-200 status, malformed body,
non-positive rate, expired quote, open circuit) is normalized to
`FxServiceError` before it leaves this module. The two RPCs share the retry
and circuit-breaker shape but differ in fallback:

- the rate lookup always raises, a guessed rate is never returned
- the supported-currency lookup returns an empty set so support checks fail closed
"""

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

import httpx
from pydantic import ValidationError

from crosspay.common.config import CommonSettings
from crosspay.common.logging import logger
from crosspay.common.metrics import fx_call_duration_seconds, fx_calls_total, fx_fallback_total
from crosspay.common.resilience import CircuitBreaker, CircuitBreakerConfig, ResiliencePolicy
from crosspay.common.tracing import tracer
from crosspay.services.fx_gateway.schemas import (
    FxQuoteRequest,
    FxQuoteResponse,
    FxSupportedCurrenciesResponse,
)


QUOTE_PATH = "/twirp/payments.v1.FXService/GetQuote"
SUPPORTED_CURRENCIES_PATH = "/twirp/payments.v1.FXService/GetSupportedCurrencies"


class FxServiceError(Exception):
    """The FX service could not produce a usable answer.

    Raised for unreachable service, timeouts, non-success responses,
    unparseable payloads, non-positive rates and expired quotes.
    """


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_quote(quote: FxQuoteResponse, now: datetime) -> Decimal:
    """Return the quote's rate, or raise if the quote must not be used."""

    if quote.exchange_rate is None or quote.exchange_rate <= 0:
        logger.error("invalid exchange rate received rate=%s", quote.exchange_rate)
        raise FxServiceError("Invalid exchange rate received from FX service")
    # A quote expiring exactly now is already expired.
    if quote.expiry_time is not None and not quote.expiry_time > now:
        logger.error("expired exchange rate received expiry_time=%s", quote.expiry_time.isoformat())
        raise FxServiceError("Received expired exchange rate from FX service")
    return quote.exchange_rate


class FxGateway:
    """Rate and supported-currency lookups guarded by per-operation policies."""

    def __init__(
        self,
        http_client: httpx.Client,
        base_url: str,
        quote_policy: ResiliencePolicy,
        currencies_policy: ResiliencePolicy,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._http = http_client
        self.base_url = base_url.rstrip("/")
        self.quote_policy = quote_policy
        self.currencies_policy = currencies_policy
        self._clock = clock
        self._guarded_quote = quote_policy.wrap(self._request_quote, fallback=self._exchange_rate_fallback)
        self._guarded_currencies = currencies_policy.wrap(
            self._request_supported_currencies,
            fallback=self._supported_currencies_fallback,
        )

    def get_exchange_rate(self, source_currency: str, target_currency: str) -> Decimal:
        """Return a strictly positive, unexpired rate or raise `FxServiceError`."""

        logger.info("calling FX service for exchange rate from=%s to=%s", source_currency, target_currency)
        return self._guarded_quote(source_currency, target_currency)

    def get_supported_currencies(self) -> set[str]:
        """Return the upstream-supported codes; empty when the upstream is unavailable."""

        logger.info("calling FX service for supported currencies")
        return self._guarded_currencies()

    def is_currency_supported(self, currency_code: str) -> bool:
        """Fail-closed membership check; never raises."""

        try:
            return currency_code in self.get_supported_currencies()
        except Exception:
            logger.exception("failed to check if currency is supported currency=%s", currency_code)
            return False

    def close(self) -> None:
        self._http.close()

    def _post(self, operation: str, path: str, body: dict) -> httpx.Response:
        """One transport attempt; any non-200 answer is a failure."""

        started = time.perf_counter()
        try:
            with tracer.start_as_current_span(f"fx.{operation}"):
                response = self._http.post(f"{self.base_url}{path}", json=body)
        except httpx.TimeoutException as exc:
            fx_calls_total.labels(operation=operation, outcome="timeout").inc()
            raise FxServiceError(f"Timed out while calling FX service: {exc}") from exc
        except httpx.HTTPError as exc:
            fx_calls_total.labels(operation=operation, outcome="transport_error").inc()
            raise FxServiceError(f"Resource access error while calling FX service: {exc}") from exc
        finally:
            fx_call_duration_seconds.labels(operation=operation).observe(time.perf_counter() - started)

        if response.status_code != httpx.codes.OK:
            fx_calls_total.labels(operation=operation, outcome="bad_status").inc()
            logger.error("invalid response from FX service operation=%s status=%s", operation, response.status_code)
            raise FxServiceError(f"HTTP error while calling FX service: {response.status_code}")
        return response

    def _request_quote(self, source_currency: str, target_currency: str) -> Decimal:
        request = FxQuoteRequest(source_currency=source_currency, target_currency=target_currency)
        response = self._post("get_quote", QUOTE_PATH, request.model_dump())
        try:
            quote = FxQuoteResponse.model_validate_json(response.content)
        except ValidationError as exc:
            fx_calls_total.labels(operation="get_quote", outcome="malformed").inc()
            raise FxServiceError("Malformed quote response from FX service") from exc

        logger.info(
            "received exchange rate rate=%s expiry_time=%s",
            quote.exchange_rate,
            quote.expiry_time.isoformat() if quote.expiry_time else None,
        )
        try:
            rate = validate_quote(quote, self._clock())
        except FxServiceError:
            fx_calls_total.labels(operation="get_quote", outcome="rejected").inc()
            raise
        fx_calls_total.labels(operation="get_quote", outcome="success").inc()
        return rate

    def _request_supported_currencies(self) -> set[str]:
        response = self._post("get_supported_currencies", SUPPORTED_CURRENCIES_PATH, {})
        try:
            payload = FxSupportedCurrenciesResponse.model_validate_json(response.content)
        except ValidationError as exc:
            fx_calls_total.labels(operation="get_supported_currencies", outcome="malformed").inc()
            raise FxServiceError("Malformed supported currencies response from FX service") from exc

        fx_calls_total.labels(operation="get_supported_currencies", outcome="success").inc()
        currencies = {code.strip().upper() for code in payload.currencies}
        logger.info("received supported currencies count=%s", len(currencies))
        return currencies

    def _exchange_rate_fallback(self, exc: Exception, source_currency: str, target_currency: str) -> Decimal:
        fx_fallback_total.labels(operation="get_quote").inc()
        logger.error(
            "FX service is unavailable from=%s to=%s breaker=%s error=%s",
            source_currency,
            target_currency,
            self.quote_policy.breaker.state.value,
            exc,
        )
        raise FxServiceError(
            "FX service is unavailable after multiple attempts. "
            f"Cannot retrieve exchange rate from {source_currency} to {target_currency}"
        ) from exc

    def _supported_currencies_fallback(self, exc: Exception) -> set[str]:
        fx_fallback_total.labels(operation="get_supported_currencies").inc()
        logger.error(
            "FX service is unavailable, treating every currency as unsupported breaker=%s error=%s",
            self.currencies_policy.breaker.state.value,
            exc,
        )
        return set()


def breaker_config_from_settings(config: CommonSettings) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        failure_rate_threshold=config.fx_cb_failure_rate_threshold,
        sliding_window_size=config.fx_cb_sliding_window_size,
        minimum_calls=config.fx_cb_minimum_calls,
        wait_open_seconds=config.fx_cb_wait_open_seconds,
        half_open_calls=config.fx_cb_half_open_calls,
    )


def build_fx_gateway(config: CommonSettings, http_client: httpx.Client | None = None) -> FxGateway:
    """Wire an `FxGateway` with one breaker per logical RPC, sized from settings."""

    breaker_config = breaker_config_from_settings(config)

    def policy(breaker_name: str) -> ResiliencePolicy:
        return ResiliencePolicy(
            CircuitBreaker(breaker_name, breaker_config),
            max_attempts=config.fx_retry_max_attempts,
            wait_seconds=config.fx_retry_wait_seconds,
            retry_on=(FxServiceError,),
            dependency="fx-service",
            service_name=config.service_name,
        )

    return FxGateway(
        http_client or httpx.Client(timeout=config.fx_timeout_seconds),
        config.fx_service_url,
        quote_policy=policy("fx_get_quote"),
        currencies_policy=policy("fx_get_supported_currencies"),
    )
