"""SQLAlchemy-backed persistence for payments.

Each `save` is its own committed transaction. That makes the PENDING
checkpoint durable before any FX call, and makes finalization (status,
rate, payout, message, timeline row) atomic.
"""

from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from sqlalchemy import select

from crosspay.common.state_machine import PaymentStatus, validate_transition
from crosspay.services.payments.models import Payment, PaymentTimeline


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRepository:
    """Durable store keyed by payment identity."""

    def __init__(self, session_factory, clock: Callable[[], datetime] = _utcnow) -> None:
        self.session_factory = session_factory
        self._clock = clock

    def save(self, payment: Payment, reason: str | None = None) -> Payment:
        """Insert or update `payment` and return the persisted instance.

        Identity and `created_at` are assigned on first save; `processed_at`
        is refreshed on every save. A status change is validated against the
        stored row and appended to the timeline; re-saving an unchanged status
        writes nothing but the refreshed fields.
        """

        now = self._clock()
        with self.session_factory() as db:
            previous_status: PaymentStatus | None = None
            if payment.payment_id is None:
                payment.payment_id = str(uuid4())
            else:
                previous_status = db.execute(
                    select(Payment.status).where(Payment.payment_id == payment.payment_id)
                ).scalar_one_or_none()

            if previous_status is not None and previous_status != payment.status:
                validate_transition(previous_status, payment.status)

            if payment.created_at is None:
                payment.created_at = now
            payment.processed_at = now
            saved = db.merge(payment)
            db.flush()

            if previous_status != payment.status:
                db.add(
                    PaymentTimeline(
                        payment_id=saved.payment_id,
                        from_state=previous_status.value if previous_status is not None else None,
                        to_state=PaymentStatus(payment.status).value,
                        reason=reason or payment.message or "status_changed",
                        created_at=now,
                    )
                )
            db.commit()
            return saved

    def find_by_id(self, payment_id: str) -> Payment | None:
        with self.session_factory() as db:
            return db.get(Payment, payment_id)

    def find(
        self,
        status: PaymentStatus | None = None,
        sender: str | None = None,
        receiver: str | None = None,
        limit: int = 100,
    ) -> list[Payment]:
        """Filtered listing, oldest first."""

        query = select(Payment)
        if status is not None:
            query = query.where(Payment.status == status)
        if sender is not None:
            query = query.where(Payment.sender == sender)
        if receiver is not None:
            query = query.where(Payment.receiver == receiver)
        query = query.order_by(Payment.created_at, Payment.payment_id).limit(limit)
        with self.session_factory() as db:
            return list(db.execute(query).scalars().all())

    def timeline(self, payment_id: str) -> list[PaymentTimeline]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(PaymentTimeline)
                    .where(PaymentTimeline.payment_id == payment_id)
                    .order_by(PaymentTimeline.created_at)
                )
                .scalars()
                .all()
            )
