"""Exception hierarchy for cross-chain transfers.

Engines raise these, :py:class:`~crosschain_transfer.orchestrator.TransferOrchestrator`
catches them and turns them into ``success=False`` results.

- :py:class:`ValidationError`: bad input detected before any on-chain call, never retried
- :py:class:`TransferFailedError`: a chain submission or confirmation failed, never retried
  automatically because a blind resubmission could spend funds twice
- :py:class:`AttestationTimeoutError`: the attestation poller ran out of attempts or time
- :py:class:`GatewayError` and subclasses: Gateway balance, deposit and transfer failures
"""


class CrossChainTransferError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(CrossChainTransferError):
    """Invalid address, amount, key or insufficient funds."""


class TransferFailedError(CrossChainTransferError):
    """A CCTP stage failed.

    :param stage:
        ``"approve"``, ``"burn"``, ``"attestation"`` or ``"mint"``.
    """

    def __init__(self, stage: str, message: str, tx_hash: str | None = None):
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
        self.message = message
        self.tx_hash = tx_hash


class EventNotFoundError(TransferFailedError):
    """Expected event log is missing from a transaction receipt."""


class MessageAlreadyReceivedError(TransferFailedError):
    """The destination transmitter has already consumed the nonce of this message.

    Raised instead of submitting a second ``receiveMessage()`` so that
    repeated resumes of the same burn are detectable.
    """

    def __init__(self, nonce: bytes, tx_hash: str | None = None):
        super().__init__("mint", f"message with nonce 0x{nonce.hex()} has already been received on the destination chain", tx_hash)
        self.nonce = nonce


class DeadlineExceededError(TransferFailedError):
    """The overall transfer deadline passed while waiting on a stage."""


class PollingTimeoutError(CrossChainTransferError, TimeoutError):
    """Backoff polling gave up.

    :param reason:
        ``"timeout"`` when the wall-clock budget ran out,
        ``"max_attempts"`` when the attempt cap was reached first.
    """

    def __init__(self, reason: str, attempts: int, elapsed: float):
        assert reason in ("timeout", "max_attempts"), f"Unknown reason {reason}"
        super().__init__(f"Polling gave up ({reason}) after {attempts} attempts and {elapsed:.1f}s")
        self.reason = reason
        self.attempts = attempts
        self.elapsed = elapsed


class AttestationTimeoutError(PollingTimeoutError):
    """Attestation for a burn was not available in time."""

    def __init__(self, burn_tx_hash: str, reason: str, attempts: int, elapsed: float):
        super().__init__(reason, attempts, elapsed)
        self.burn_tx_hash = burn_tx_hash
        self.args = (f"Attestation not ready for burn {burn_tx_hash} ({reason}) after {attempts} attempts and {elapsed:.1f}s",)


class PollingCancelledError(CrossChainTransferError):
    """Polling was stopped through a :py:class:`~crosschain_transfer.polling.CancelToken`."""


class GatewayError(CrossChainTransferError):
    """Base class for Gateway errors."""


class GatewayInsufficientBalanceError(GatewayError):
    """Eligible source chains hold less than the requested amount."""

    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient Gateway balance: required {required}, available {available}")
        self.required = required
        self.available = available


class GatewayDepositTooSmallError(GatewayError):
    """Deposit amount is below the Gateway minimum."""

    def __init__(self, amount: int, minimum: int):
        super().__init__(f"Deposit amount {amount} is below minimum {minimum}")
        self.amount = amount
        self.minimum = minimum


class GatewayTransferFailedError(GatewayError):
    """Gateway deposit, settlement or mint failed.

    :param stage:
        ``"balance"``, ``"approve"``, ``"deposit"``, ``"sign"``, ``"submit"`` or ``"mint"``.
    """

    def __init__(self, stage: str, message: str):
        super().__init__(f"Gateway {stage} failed: {message}")
        self.stage = stage
        self.message = message
