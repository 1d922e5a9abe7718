import pytest

from app.payouts.state_machine import (
    InvalidTransition,
    assert_submitted_invariant,
    assert_transition,
)


def test_valid_transitions():
    assert_transition("SCHEDULED", "SUBMITTED")
    assert_transition("SCHEDULED", "RETRYING")
    assert_transition("RETRYING", "SUBMITTED")
    assert_transition("RETRYING", "FAILED")
    assert_transition("SUBMITTED", "SENT")
    assert_transition("SUBMITTED", "FAILED")


def test_invalid_transition_skipping_states():
    with pytest.raises(InvalidTransition):
        assert_transition("SCHEDULED", "SENT")
    with pytest.raises(InvalidTransition):
        assert_transition("RETRYING", "SENT")


def test_terminal_states_cannot_transition():
    for status in ("SENT", "FAILED", "CANCELED"):
        with pytest.raises(InvalidTransition):
            assert_transition(status, "SUBMITTED")
    with pytest.raises(InvalidTransition):
        assert_transition("SENT", "FAILED")
    with pytest.raises(InvalidTransition):
        assert_transition("FAILED", "SENT")


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        assert_transition("PENDING", "SENT")


def test_submitted_requires_provider():
    with pytest.raises(ValueError):
        assert_submitted_invariant("SUBMITTED", None)
    with pytest.raises(ValueError):
        assert_submitted_invariant("SUBMITTED", "")
    assert_submitted_invariant("SUBMITTED", "opennode")
    assert_submitted_invariant("RETRYING", None)
