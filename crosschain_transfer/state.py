"""Transfer intents, lifecycle states and progress events."""

import datetime
import enum
import logging
from dataclasses import dataclass
from typing import Callable

from crosschain_transfer.errors import ValidationError
from crosschain_transfer.utils import is_valid_address

logger = logging.getLogger(__name__)


class TransferState(enum.Enum):
    """Lifecycle of a single CCTP transfer.

    States only move forward in declaration order. ``failed`` can be
    entered from any non-terminal state.
    """

    pending = "pending"
    burning = "burning"
    awaiting_attestation = "awaiting_attestation"
    attestation_received = "attestation_received"
    minting = "minting"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferState.completed, TransferState.failed)


_ORDER = [
    TransferState.pending,
    TransferState.burning,
    TransferState.awaiting_attestation,
    TransferState.attestation_received,
    TransferState.minting,
    TransferState.completed,
]


def can_transition(old: TransferState, new: TransferState) -> bool:
    """Is ``old -> new`` a legal move.

    Staying in the same non-terminal state is allowed, so that several
    progress events can be emitted for one phase.
    """
    if old.is_terminal:
        return False
    if new == TransferState.failed:
        return True
    return _ORDER.index(new) >= _ORDER.index(old)


@dataclass(slots=True, frozen=True)
class TransferIntent:
    """What the user wants to move.

    Immutable. Construction fails with :py:class:`ValidationError` on a
    non-integer or non-positive amount.
    """

    #: Amount in raw USDC units (6 decimals)
    amount: int

    #: Recipient address on the destination chain
    recipient: str

    #: Source chain name, e.g. ``"sepolia"``
    source_chain: str

    #: Destination chain name, e.g. ``"arc"``
    destination_chain: str

    def __post_init__(self):
        # bool is an int subclass
        if type(self.amount) is not int:
            raise ValidationError(f"Amount must be an integer in smallest token units, got {self.amount!r}")
        if self.amount <= 0:
            raise ValidationError(f"Amount must be greater than 0, got {self.amount}")
        if self.source_chain == self.destination_chain:
            raise ValidationError(f"Source and destination chain are both {self.source_chain}")

    @property
    def has_valid_recipient(self) -> bool:
        return is_valid_address(self.recipient)


@dataclass(slots=True, frozen=True)
class TransferEvent:
    """Progress event emitted on every state change."""

    timestamp: datetime.datetime
    state: TransferState
    message: str
    tx_hash: str | None = None

    def __str__(self) -> str:
        suffix = f" (tx: {self.tx_hash})" if self.tx_hash else ""
        return f"[{self.state.value}] {self.message}{suffix}"


#: Observer callback receiving progress events
TransferObserver = Callable[[TransferEvent], None]


class TransferTracker:
    """Holds the current state of one transfer and notifies an observer.

    One tracker per transfer attempt; not shared between threads.
    """

    def __init__(self, observer: TransferObserver | None = None, state: TransferState = TransferState.pending):
        self.state = state
        self.observer = observer
        self.events: list[TransferEvent] = []

    def emit(self, state: TransferState, message: str, tx_hash: str | None = None):
        assert can_transition(self.state, state), f"Illegal transfer state change {self.state.value} -> {state.value}"
        self.state = state
        event = TransferEvent(
            timestamp=datetime.datetime.now(datetime.timezone.utc),
            state=state,
            message=message,
            tx_hash=tx_hash,
        )
        self.events.append(event)
        logger.info("%s", event)
        if self.observer is not None:
            self.observer(event)

    def fail(self, message: str):
        if not self.state.is_terminal:
            self.emit(TransferState.failed, message)
