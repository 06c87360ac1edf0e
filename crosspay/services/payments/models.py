"""Payment service database models.

This DB is the source of truth for payment state and its transition timeline.
Timestamps are assigned by `PaymentRepository.save`, not by column defaults.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from crosspay.common.db import Base, UTCDateTime
from crosspay.common.state_machine import PaymentStatus


# Fractional digits stored for exchange rates.
RATE_SCALE = 10


class Payment(Base):
    """Current state of one cross-border payment."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "(exchange_rate IS NULL) = (payout_amount IS NULL)",
            name="ck_payments_rate_payout_together",
        ),
    )

    payment_id: Mapped[str] = mapped_column(String, primary_key=True)
    sender: Mapped[str] = mapped_column(String, index=True)
    receiver: Mapped[str] = mapped_column(String, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(19, 4))
    source_currency: Mapped[str] = mapped_column(String(3))
    destination_currency: Mapped[str] = mapped_column(String(3))
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(19, RATE_SCALE), nullable=True)
    # Internal precision; the API view re-rounds to 2 places.
    payout_amount: Mapped[Decimal | None] = mapped_column(Numeric(19, 4), nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, native_enum=False, length=16), index=True
    )
    message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    processed_at: Mapped[datetime] = mapped_column(UTCDateTime)


class PaymentTimeline(Base):
    """Append-only audit trail of every status change."""

    __tablename__ = "payment_timeline"

    timeline_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    payment_id: Mapped[str] = mapped_column(ForeignKey("payments.payment_id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String, nullable=True)
    to_state: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
