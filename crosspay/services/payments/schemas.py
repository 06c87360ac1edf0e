"""API request/response schemas for payment endpoints."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crosspay.common.state_machine import PaymentStatus


CURRENCY_PATTERN = r"^[A-Z]{3}$"
PRESENTATION_QUANTUM = Decimal("0.01")


class PaymentCreateRequest(BaseModel):
    """Payment creation payload.

    Example:
        {"sender": "Bob Doe", "receiver": "John Wick", "amount": "400.00",
         "source_currency": "USD", "destination_currency": "EUR"}
    """

    sender: str = Field(min_length=1, max_length=255)
    receiver: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0, max_digits=19, decimal_places=4)
    source_currency: str = Field(pattern=CURRENCY_PATTERN)
    destination_currency: str = Field(pattern=CURRENCY_PATTERN)

    @field_validator("sender", "receiver")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class PaymentResponse(BaseModel):
    """External view of a payment; rate and payout are null unless SUCCESS."""

    payment_id: str
    sender: str
    receiver: str
    amount: Decimal
    source_currency: str
    destination_currency: str
    exchange_rate: Decimal | None = None
    payout_amount: Decimal | None = None
    status: PaymentStatus
    message: str | None = None
    created_at: datetime
    updated_at: datetime


class TimelineEntry(BaseModel):
    """One audited status change."""

    model_config = ConfigDict(from_attributes=True)

    from_state: str | None = None
    to_state: str
    reason: str
    created_at: datetime


class ErrorResponse(BaseModel):
    """Body returned for rejected requests."""

    timestamp: datetime
    status: int
    message: str
    validation_errors: dict[str, str] | None = None


def round_for_presentation(value: Decimal | None) -> Decimal | None:
    """Half-up to 2 places; `None` passes through for PENDING/FAILED records."""

    if value is None:
        return None
    return value.quantize(PRESENTATION_QUANTUM, rounding=ROUND_HALF_UP)


def to_response(payment) -> PaymentResponse:
    """Map a `Payment` row to its external view."""

    return PaymentResponse(
        payment_id=payment.payment_id,
        sender=payment.sender,
        receiver=payment.receiver,
        amount=payment.amount,
        source_currency=payment.source_currency,
        destination_currency=payment.destination_currency,
        exchange_rate=payment.exchange_rate,
        payout_amount=round_for_presentation(payment.payout_amount),
        status=payment.status,
        message=payment.message,
        created_at=payment.created_at,
        updated_at=payment.processed_at,
    )
