"""Transfer intent validation and lifecycle transitions."""

import pytest

from crosschain_transfer.errors import ValidationError
from crosschain_transfer.state import TransferIntent, TransferState, TransferTracker, can_transition

RECIPIENT = "0x000000000000000000000000000000000000dEaD"


@pytest.mark.parametrize("amount", [0, -1, 1.5, "100", True, None])
def test_intent_rejects_bad_amount(amount):
    """Amounts must be positive integers in raw units."""
    with pytest.raises(ValidationError):
        TransferIntent(amount=amount, recipient=RECIPIENT, source_chain="sepolia", destination_chain="arc")


def test_intent_rejects_same_chain():
    with pytest.raises(ValidationError, match="both sepolia"):
        TransferIntent(amount=1, recipient=RECIPIENT, source_chain="sepolia", destination_chain="sepolia")


def test_intent_is_immutable():
    intent = TransferIntent(amount=1_000_000, recipient=RECIPIENT, source_chain="sepolia", destination_chain="arc")
    with pytest.raises(AttributeError):
        intent.amount = 2


def test_intent_recipient_check():
    """Recipient format is checked lazily, by the orchestrator."""
    intent = TransferIntent(amount=1, recipient="not-an-address", source_chain="sepolia", destination_chain="arc")
    assert not intent.has_valid_recipient
    assert TransferIntent(amount=1, recipient=RECIPIENT.lower(), source_chain="sepolia", destination_chain="arc").has_valid_recipient


def test_transitions_move_forward_only():
    assert can_transition(TransferState.pending, TransferState.burning)
    assert can_transition(TransferState.burning, TransferState.burning)
    assert can_transition(TransferState.pending, TransferState.awaiting_attestation)
    assert not can_transition(TransferState.minting, TransferState.burning)
    assert not can_transition(TransferState.attestation_received, TransferState.awaiting_attestation)


def test_transitions_terminal_states():
    """Any live state can fail, terminal states never move."""
    for state in TransferState:
        if not state.is_terminal:
            assert can_transition(state, TransferState.failed)

    assert not can_transition(TransferState.completed, TransferState.failed)
    assert not can_transition(TransferState.failed, TransferState.pending)


def test_tracker_notifies_observer():
    received = []
    tracker = TransferTracker(received.append)

    tracker.emit(TransferState.burning, "Burning", "0xabc")
    tracker.emit(TransferState.awaiting_attestation, "Waiting")

    assert [e.state for e in received] == [TransferState.burning, TransferState.awaiting_attestation]
    assert tracker.events == received
    assert str(received[0]) == "[burning] Burning (tx: 0xabc)"
    assert str(received[1]) == "[awaiting_attestation] Waiting"


def test_tracker_refuses_backwards_move():
    tracker = TransferTracker()
    tracker.emit(TransferState.minting, "Minting")
    with pytest.raises(AssertionError):
        tracker.emit(TransferState.burning, "Burning")


def test_tracker_fail_after_completion_is_ignored():
    tracker = TransferTracker()
    tracker.emit(TransferState.completed, "Done")
    tracker.fail("late error")
    assert tracker.state == TransferState.completed
    assert len(tracker.events) == 1
