"""Unit tests for core payment state-machine guardrails."""

import pytest

from crosspay.common.state_machine import TERMINAL_STATES, PaymentStatus, validate_transition


def test_valid_transitions():
    """Sanity check: the two transitions the orchestrator takes are legal."""

    validate_transition(PaymentStatus.PENDING, PaymentStatus.SUCCESS)
    validate_transition(PaymentStatus.PENDING, PaymentStatus.FAILED)


def test_plain_strings_are_accepted():
    validate_transition("PENDING", "SUCCESS")


@pytest.mark.parametrize(
    "current,new",
    [
        (PaymentStatus.SUCCESS, PaymentStatus.FAILED),
        (PaymentStatus.FAILED, PaymentStatus.PENDING),
        (PaymentStatus.FAILED, PaymentStatus.SUCCESS),
        (PaymentStatus.PENDING, PaymentStatus.PENDING),
    ],
)
def test_invalid_transition(current, new):
    """Terminal states must never be left; nothing re-enters PENDING."""

    with pytest.raises(ValueError):
        validate_transition(current, new)


def test_terminal_states():
    assert TERMINAL_STATES == {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
