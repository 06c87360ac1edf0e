"""Shared fixtures: in-memory database, scripted FX upstream, wired services."""

import os

os.environ.setdefault("DATABASE_DSN", "sqlite://")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("FX_SERVICE_URL", "http://fx.test")

from collections import Counter
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy.pool import StaticPool

from crosspay.common.db import Base, build_engine, build_session_factory
from crosspay.common.resilience import CircuitBreaker, CircuitBreakerConfig, ResiliencePolicy
from crosspay.services.fx_gateway.client import QUOTE_PATH, FxGateway, FxServiceError
from crosspay.services.payments.repository import PaymentRepository
from crosspay.services.payments.service import PaymentService


FIXED_NOW = datetime(2026, 1, 20, 20, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Monotonic-style clock the test moves by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TickingClock:
    """UTC clock that moves one second forward on every read."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


class FakeFxUpstream:
    """httpx.MockTransport handler standing in for the FX service.

    `quote_script`/`currencies_script` hold one-off answers (an httpx.Response
    or an exception to raise) consumed in order; `quote_fault`/`currencies_fault`
    are returned on every call while set; otherwise a healthy answer is served.
    """

    def __init__(self) -> None:
        self.quote = {"exchange_rate": "0.8765432", "expiry_time": (FIXED_NOW + timedelta(minutes=5)).isoformat()}
        self.currencies = ["USD", "EUR", "GBP", "JPY"]
        self.quote_script: list = []
        self.currencies_script: list = []
        self.quote_fault = None
        self.currencies_fault = None
        self.calls: Counter = Counter()
        self.requests: list[httpx.Request] = []

    @property
    def quote_calls(self) -> int:
        return self.calls["quote"]

    @property
    def currencies_calls(self) -> int:
        return self.calls["currencies"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        is_quote = request.url.path == QUOTE_PATH
        self.calls["quote" if is_quote else "currencies"] += 1
        script = self.quote_script if is_quote else self.currencies_script
        fault = self.quote_fault if is_quote else self.currencies_fault
        item = script.pop(0) if script else fault
        if isinstance(item, Exception):
            raise item
        if item is not None:
            # Fresh response per call; the scripted one may be served repeatedly.
            return httpx.Response(item.status_code, headers=item.headers, content=item.content)
        if is_quote:
            return httpx.Response(200, json=self.quote)
        return httpx.Response(200, json={"currencies": self.currencies})


@pytest.fixture
def breaker_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def upstream() -> FakeFxUpstream:
    return FakeFxUpstream()


def make_policy(name: str, clock: ManualClock, **overrides) -> ResiliencePolicy:
    config = CircuitBreakerConfig(
        failure_rate_threshold=overrides.pop("failure_rate_threshold", 0.5),
        sliding_window_size=overrides.pop("sliding_window_size", 4),
        minimum_calls=overrides.pop("minimum_calls", 4),
        wait_open_seconds=overrides.pop("wait_open_seconds", 30.0),
        half_open_calls=overrides.pop("half_open_calls", 1),
    )
    return ResiliencePolicy(
        CircuitBreaker(name, config, clock=clock),
        max_attempts=overrides.pop("max_attempts", 3),
        wait_seconds=0,
        retry_on=(FxServiceError,),
        sleep=lambda _: None,
    )


@pytest.fixture
def fx_gateway(upstream, breaker_clock):
    client = httpx.Client(transport=httpx.MockTransport(upstream.handler))
    gateway = FxGateway(
        client,
        "http://fx.test/",
        quote_policy=make_policy("test_quote", breaker_clock),
        currencies_policy=make_policy("test_currencies", breaker_clock),
        clock=lambda: FIXED_NOW,
    )
    yield gateway
    gateway.close()


@pytest.fixture
def session_factory():
    import crosspay.services.payments.models  # noqa: F401

    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory) -> PaymentRepository:
    return PaymentRepository(session_factory, clock=TickingClock())


@pytest.fixture
def payment_service(fx_gateway, repository) -> PaymentService:
    return PaymentService(fx_gateway, repository, service_name="payments-test")
