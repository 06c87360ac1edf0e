"""Payment orchestration.

Drives one payment through: destination-currency check -> PENDING checkpoint
-> FX rate lookup -> payout computation -> SUCCESS/FAILED finalization.

The checkpoint is committed before any rate request so a crash or FX outage
still leaves a traceable PENDING record. Once that record exists, an FX
failure always ends in a persisted FAILED payment carrying the reason.
"""

from decimal import ROUND_HALF_UP, Decimal

from crosspay.common.logging import logger, payment_id_ctx
from crosspay.common.metrics import (
    payment_failure_total,
    payment_rejected_total,
    payment_success_total,
)
from crosspay.common.state_machine import PaymentStatus, validate_transition
from crosspay.services.fx_gateway.client import FxGateway, FxServiceError
from crosspay.services.payments.models import RATE_SCALE, Payment
from crosspay.services.payments.repository import PaymentRepository
from crosspay.services.payments.schemas import (
    PaymentCreateRequest,
    PaymentResponse,
    TimelineEntry,
    to_response,
)


PAYOUT_QUANTUM = Decimal("0.0001")
RATE_QUANTUM = Decimal(1).scaleb(-RATE_SCALE)
SUCCESS_MESSAGE = "Payment processed successfully."


class UnsupportedCurrencyError(ValueError):
    """Destination currency is not offered by the FX service; no record is created."""


class PaymentNotFoundError(LookupError):
    def __init__(self, payment_id: str) -> None:
        super().__init__(f"Payment not found with id: {payment_id}")
        self.payment_id = payment_id


def normalize_rate(exchange_rate: Decimal) -> Decimal:
    """Half-up to the stored rate scale so the persisted and returned rate agree."""

    return exchange_rate.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def compute_payout(amount: Decimal, exchange_rate: Decimal) -> Decimal:
    """`amount * rate`, half-up to 4 fractional digits."""

    return (amount * exchange_rate).quantize(PAYOUT_QUANTUM, rounding=ROUND_HALF_UP)


class PaymentService:
    """Owns the payment state machine for single, synchronous requests."""

    def __init__(
        self,
        fx_gateway: FxGateway,
        repository: PaymentRepository,
        service_name: str = "payments",
    ) -> None:
        self.fx_gateway = fx_gateway
        self.repository = repository
        self.service_name = service_name

    def process_payment(self, req: PaymentCreateRequest) -> PaymentResponse:
        """Process one request and return the persisted, finalized view.

        Raises `UnsupportedCurrencyError` before anything is persisted when the
        destination currency is not supported, and `FxServiceError` when the
        support check itself could not be evaluated.
        """

        self._check_destination_currency(req.destination_currency)

        payment = Payment(
            sender=req.sender,
            receiver=req.receiver,
            amount=req.amount,
            source_currency=req.source_currency,
            destination_currency=req.destination_currency,
            status=PaymentStatus.PENDING,
        )
        payment = self.repository.save(payment, reason="payment_created")
        payment_id_ctx.set(payment.payment_id)
        logger.info(
            "payment checkpointed payment_id=%s status=%s from=%s to=%s",
            payment.payment_id,
            payment.status.value,
            payment.source_currency,
            payment.destination_currency,
        )

        try:
            exchange_rate = self.fx_gateway.get_exchange_rate(req.source_currency, req.destination_currency)
        except FxServiceError as exc:
            self._transition(payment, PaymentStatus.FAILED)
            payment.message = str(exc)
            payment = self.repository.save(payment, reason="fx_unavailable")
            payment_failure_total.labels(service=self.service_name).inc()
            logger.error("payment processing failed payment_id=%s reason=%s", payment.payment_id, exc)
            return to_response(payment)

        exchange_rate = normalize_rate(exchange_rate)
        self._transition(payment, PaymentStatus.SUCCESS)
        payment.exchange_rate = exchange_rate
        payment.payout_amount = compute_payout(payment.amount, exchange_rate)
        payment.message = SUCCESS_MESSAGE
        payment = self.repository.save(payment, reason="fx_rate_applied")
        payment_success_total.labels(service=self.service_name).inc()
        logger.info(
            "payment processed successfully payment_id=%s rate=%s payout=%s",
            payment.payment_id,
            payment.exchange_rate,
            payment.payout_amount,
        )
        return to_response(payment)

    def get_payment_by_id(self, payment_id: str) -> PaymentResponse:
        logger.info("retrieving payment payment_id=%s", payment_id)
        payment = self.repository.find_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return to_response(payment)

    def list_payments(
        self,
        status: PaymentStatus | None = None,
        sender: str | None = None,
        receiver: str | None = None,
        limit: int = 100,
    ) -> list[PaymentResponse]:
        payments = self.repository.find(status=status, sender=sender, receiver=receiver, limit=limit)
        return [to_response(payment) for payment in payments]

    def get_payment_timeline(self, payment_id: str) -> list[TimelineEntry]:
        if self.repository.find_by_id(payment_id) is None:
            raise PaymentNotFoundError(payment_id)
        return [TimelineEntry.model_validate(entry) for entry in self.repository.timeline(payment_id)]

    def _check_destination_currency(self, currency: str) -> None:
        # Source currency is deliberately not checked; only the payout side must be offered upstream.
        try:
            supported = self.fx_gateway.is_currency_supported(currency)
        except FxServiceError as exc:
            logger.error("error checking supported currencies: %s", exc)
            raise FxServiceError("Failed to validate supported currencies") from exc
        if not supported:
            payment_rejected_total.labels(service=self.service_name, reason="unsupported_currency").inc()
            logger.warning("payment rejected unsupported destination currency=%s", currency)
            raise UnsupportedCurrencyError(f"Target currency not supported: {currency}")

    @staticmethod
    def _transition(payment: Payment, new_status: PaymentStatus) -> None:
        validate_transition(payment.status, new_status)
        payment.status = new_status
