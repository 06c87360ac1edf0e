"""Payment state machine transitions enforced by the orchestrator and repository."""

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    # Reserved for a cancellation path; nothing in this service reaches it.
    CANCELLED = "CANCELLED"


ALLOWED_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.SUCCESS: set(),
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


def validate_transition(current: PaymentStatus, new: PaymentStatus) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(PaymentStatus(current), set()):
        raise ValueError(f"Invalid transition: {PaymentStatus(current).value} -> {PaymentStatus(new).value}")
