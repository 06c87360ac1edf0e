"""HTTP surface for cross-border payments."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from crosspay.common.config import settings
from crosspay.common.db import Base, SessionLocal, engine
from crosspay.common.logging import configure_logging, logger, trace_id_ctx
from crosspay.common.metrics import metrics_response, payment_latency_seconds, payment_requests_total
from crosspay.common.startup import log_startup_config
from crosspay.common.state_machine import PaymentStatus
from crosspay.common.tracing import instrument_app, setup_tracing
from crosspay.services.fx_gateway.client import FxServiceError, build_fx_gateway
from crosspay.services.payments.repository import PaymentRepository
from crosspay.services.payments.schemas import (
    ErrorResponse,
    PaymentCreateRequest,
    PaymentResponse,
    TimelineEntry,
)
from crosspay.services.payments.service import (
    PaymentNotFoundError,
    PaymentService,
    UnsupportedCurrencyError,
)

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    [
        "database_dsn",
        "fx_service_url",
        "fx_timeout_seconds",
        "fx_retry_max_attempts",
        "fx_retry_wait_seconds",
        "fx_cb_failure_rate_threshold",
        "fx_cb_sliding_window_size",
        "fx_cb_wait_open_seconds",
    ],
)
service = PaymentService(
    build_fx_gateway(settings),
    PaymentRepository(SessionLocal),
    service_name=settings.service_name,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Optionally create tables for local runs; release the FX HTTP pool on shutdown."""

    if settings.db_create_all:
        Base.metadata.create_all(engine)
    yield
    service.fx_gateway.close()


app = FastAPI(title="CrossPay Payments", lifespan=lifespan)
instrument_app(app)


def _error(status_code: int, message: str, validation_errors: dict[str, str] | None = None) -> JSONResponse:
    body = ErrorResponse(
        timestamp=datetime.now(timezone.utc),
        status=status_code,
        message=message,
        validation_errors=validation_errors,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError):
    """Malformed request shape never reaches the orchestrator."""

    errors = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        errors[field or "body"] = error["msg"]
    return _error(400, "Validation failed", errors)


@app.exception_handler(UnsupportedCurrencyError)
async def unsupported_currency_handler(_: Request, exc: UnsupportedCurrencyError):
    return _error(400, str(exc))


@app.exception_handler(PaymentNotFoundError)
async def not_found_handler(_: Request, exc: PaymentNotFoundError):
    return _error(404, str(exc))


@app.exception_handler(FxServiceError)
async def fx_unavailable_handler(_: Request, exc: FxServiceError):
    logger.error("fx dependency failure surfaced to client: %s", exc)
    return _error(503, str(exc))


@app.post("/api/payments", response_model=PaymentResponse)
def create_payment(
    req: PaymentCreateRequest,
    response: Response,
    x_trace_id: str | None = Header(default=None),
):
    """Process a payment; 200 when it succeeded, 201 when it was recorded as FAILED."""

    trace_id = x_trace_id or str(uuid4())
    trace_id_ctx.set(trace_id)
    payment_requests_total.labels(service=settings.service_name).inc()
    with payment_latency_seconds.labels(service=settings.service_name).time():
        result = service.process_payment(req)
    response.status_code = 200 if result.status is PaymentStatus.SUCCESS else 201
    return result


@app.get("/api/payments", response_model=list[PaymentResponse])
def list_payments(
    status: PaymentStatus | None = None,
    sender: str | None = None,
    receiver: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
):
    """List payments filtered by status, sender or receiver."""

    return service.list_payments(status=status, sender=sender, receiver=receiver, limit=limit)


@app.get("/api/payments/{payment_id}", response_model=PaymentResponse)
def get_payment(payment_id: str):
    """Fetch one payment."""

    return service.get_payment_by_id(payment_id)


@app.get("/api/payments/{payment_id}/timeline", response_model=list[TimelineEntry])
def get_payment_timeline(payment_id: str):
    """Audited status changes for one payment, oldest first."""

    return service.get_payment_timeline(payment_id)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
