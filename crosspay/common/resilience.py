"""Retry + circuit breaker + fallback policy for calls to unreliable dependencies.

A `ResiliencePolicy` wraps a plain callable and keeps its call signature. Each
logical call is retried by tenacity; every attempt passes through a
`CircuitBreaker`; once retries are exhausted or the circuit rejects the call,
the optional fallback decides the outcome.

Breaker state is process-wide and shared by every thread calling the same
logical operation, so all bookkeeping happens under one lock. Only aggregate
success/failure outcomes are stored.
"""

import functools
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from crosspay.common.logging import logger
from crosspay.common.metrics import circuit_breaker_state, retries_total


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    HALF_OPEN = "HALF_OPEN"
    OPEN = "OPEN"


_GAUGE_VALUES = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


class CircuitBreakerOpenError(Exception):
    """Raised instead of calling the dependency while the circuit rejects calls."""

    def __init__(self, name: str) -> None:
        super().__init__(f"circuit breaker '{name}' is open")
        self.name = name


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Tunables for one breaker.

    Attributes:
        failure_rate_threshold: failure ratio (0.0-1.0) at or above which the circuit opens
        sliding_window_size: number of most recent outcomes considered while closed
        minimum_calls: outcomes required before the ratio is evaluated
        wait_open_seconds: cooldown before half-open trial calls are admitted
        half_open_calls: trial calls admitted while half-open; their ratio decides close/re-open
    """

    failure_rate_threshold: float = 0.5
    sliding_window_size: int = 10
    minimum_calls: int = 5
    wait_open_seconds: float = 30.0
    half_open_calls: int = 1


class CircuitBreaker:
    """Count-based sliding-window circuit breaker.

    States:
    - CLOSED: calls allowed, outcomes recorded in the window
    - OPEN: calls rejected with `CircuitBreakerOpenError` until the cooldown elapses
    - HALF_OPEN: up to `half_open_calls` trial calls allowed; the rest are rejected
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._window: deque[bool] = deque(maxlen=self.config.sliding_window_size)
        self._state = CircuitState.CLOSED
        self._opened_at: float | None = None
        self._half_open_admitted = 0
        self._half_open_outcomes: list[bool] = []
        circuit_breaker_state.labels(breaker=self.name).set(_GAUGE_VALUES[self._state])

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def acquire(self) -> None:
        """Admit one call or raise `CircuitBreakerOpenError`."""

        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.OPEN:
                raise CircuitBreakerOpenError(self.name)
            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_admitted >= self.config.half_open_calls:
                    raise CircuitBreakerOpenError(self.name)
                self._half_open_admitted += 1

    def record_success(self) -> None:
        self._record(True)

    def record_failure(self) -> None:
        self._record(False)

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run `func` under breaker protection, recording its outcome."""

        self.acquire()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED with an empty window."""

        with self._lock:
            self._transition(CircuitState.CLOSED)

    def _record(self, ok: bool) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_outcomes.append(ok)
                if len(self._half_open_outcomes) >= self.config.half_open_calls:
                    if _failure_rate(self._half_open_outcomes) >= self.config.failure_rate_threshold:
                        self._transition(CircuitState.OPEN)
                    else:
                        self._transition(CircuitState.CLOSED)
                return
            if self._state is CircuitState.OPEN:
                # Late result of a call admitted before the circuit opened.
                return
            self._window.append(ok)
            if (
                len(self._window) >= self.config.minimum_calls
                and _failure_rate(self._window) >= self.config.failure_rate_threshold
            ):
                self._transition(CircuitState.OPEN)

    def _maybe_half_open(self) -> None:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.config.wait_open_seconds:
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._half_open_admitted = 0
        self._half_open_outcomes = []
        if new_state is CircuitState.OPEN:
            self._opened_at = self._clock()
            logger.warning(
                "circuit_breaker_opened breaker=%s from=%s failure_rate=%.2f",
                self.name,
                old_state.value,
                _failure_rate(self._window) if self._window else 1.0,
            )
        else:
            self._opened_at = None
            if new_state is CircuitState.CLOSED:
                self._window.clear()
            logger.info("circuit_breaker_%s breaker=%s from=%s", new_state.value.lower(), self.name, old_state.value)
        circuit_breaker_state.labels(breaker=self.name).set(_GAUGE_VALUES[new_state])


def _failure_rate(outcomes) -> float:
    outcomes = list(outcomes)
    return outcomes.count(False) / len(outcomes)


class ResiliencePolicy:
    """Retry around a circuit breaker, with an optional fallback.

    Open-circuit rejections are never retried: the call goes straight to the
    fallback without touching the dependency.
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        max_attempts: int = 3,
        wait_seconds: float = 0.5,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        dependency: str = "fx-service",
        service_name: str = "payments",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.breaker = breaker
        self.max_attempts = max_attempts
        self.wait_seconds = wait_seconds
        self.retry_on = retry_on
        self.dependency = dependency
        self.service_name = service_name
        self._sleep = sleep

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.wait_seconds),
            retry=retry_if_exception_type(self.retry_on) & retry_if_not_exception_type(CircuitBreakerOpenError),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        retries_total.labels(service=self.service_name, dependency=self.dependency).inc()
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "dependency retry dependency=%s breaker=%s attempt=%s/%s wait_s=%s error=%s",
            self.dependency,
            self.breaker.name,
            retry_state.attempt_number,
            self.max_attempts,
            self.wait_seconds,
            exc,
        )

    def call(
        self,
        func: Callable[..., Any],
        *args: Any,
        fallback: Callable[..., Any] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Invoke `func`; on final failure return `fallback(exc, *args, **kwargs)` or re-raise."""

        try:
            return self._retrying()(self.breaker.call, func, *args, **kwargs)
        except Exception as exc:
            if fallback is None:
                raise
            return fallback(exc, *args, **kwargs)

    def wrap(self, func: Callable[..., Any], fallback: Callable[..., Any] | None = None) -> Callable[..., Any]:
        """Return `func` guarded by this policy, keeping its signature."""

        @functools.wraps(func)
        def guarded(*args: Any, **kwargs: Any) -> Any:
            return self.call(func, *args, fallback=fallback, **kwargs)

        return guarded

    def decorate(self, fallback: Callable[..., Any] | None = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of `wrap`."""

        return functools.partial(self.wrap, fallback=fallback)
