"""CCTP V2 burn, attest and mint pipeline for one source/destination pair.

A transfer moves through three phases:

1. **Burn**: approve USDC to the TokenMessenger if the allowance is short,
   then ``depositForBurn()`` on the source chain
2. **Attestation**: poll Circle's Iris API until the burn is signed
3. **Mint**: ``receiveMessage()`` on the destination chain's MessageTransmitter

Each phase change is reported as a :py:class:`~crosschain_transfer.state.TransferEvent`
to the observer. A failed phase moves the transfer to ``failed`` and raises.

A burn that was already mined can be finished with :py:meth:`CCTPTransferEngine.resume`,
which starts from the attestation phase and never burns again.

Example::

    from eth_account import Account
    from crosschain_transfer.cctp.engine import CCTPTransferEngine
    from crosschain_transfer.state import TransferIntent

    engine = CCTPTransferEngine(sepolia_client, arc_client, attestation_client, observer=print)
    result = engine.transfer(
        TransferIntent(amount=1_000_000, recipient=address, source_chain="sepolia", destination_chain="arc"),
        Account.from_key(private_key),
    )
"""

import dataclasses
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable

from eth_account.signers.local import LocalAccount

from crosschain_transfer.abi import MESSAGE_TRANSMITTER_ABI, TOKEN_MESSENGER_ABI
from crosschain_transfer.cctp.attestation import Attestation, AttestationClient
from crosschain_transfer.cctp.constants import ANY_DESTINATION_CALLER, DEFAULT_MAX_FEE, FINALITY_THRESHOLD_STANDARD
from crosschain_transfer.cctp.message import find_deposit_for_burn, parse_message_header
from crosschain_transfer.chain import ChainClient, confirm_transaction, ensure_allowance
from crosschain_transfer.errors import (
    AttestationTimeoutError,
    CrossChainTransferError,
    DeadlineExceededError,
    EventNotFoundError,
    MessageAlreadyReceivedError,
    PollingTimeoutError,
    TransferFailedError,
    ValidationError,
)
from crosschain_transfer.polling import BackoffPoller, CancelToken, Deadline, PollingConfig
from crosschain_transfer.state import TransferIntent, TransferObserver, TransferState, TransferTracker
from crosschain_transfer.utils import address_to_bytes32, checksum, format_usdc, is_valid_tx_hash, normalise_tx_hash

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CCTPConfig:
    """Burn parameters."""

    #: Max fee in raw USDC units the burner accepts
    max_fee: int = DEFAULT_MAX_FEE

    #: ``minFinalityThreshold``, 1000 fast or 2000 standard
    min_finality_threshold: int = FINALITY_THRESHOLD_STANDARD

    #: Who may relay the message, zero address for anyone
    destination_caller: str = ANY_DESTINATION_CALLER

    #: Seconds to wait for each transaction receipt, ``None`` for the client default
    receipt_timeout: float | None = None


@dataclass(slots=True, frozen=True)
class BurnResult:
    """Result of the burn phase.

    Contains everything needed to proceed with attestation and mint.
    """

    #: Transaction hash of the burn on the source chain
    burn_tx_hash: str

    #: Message from the ``DepositForBurn`` event
    message: bytes

    #: Amount burned in raw USDC units (6 decimals)
    amount: int

    #: Transaction hash of the approval, ``None`` if the allowance was sufficient
    approve_tx_hash: str | None = None

    #: Nonce from the ``DepositForBurn`` event
    nonce: int | None = None


@dataclass(slots=True, frozen=True)
class MintResult:
    #: Transaction hash of ``receiveMessage()`` on the destination chain
    mint_tx_hash: str


@dataclass(slots=True, frozen=True)
class CCTPTransferResult:
    """Result of a complete CCTP transfer."""

    #: Transaction hash of the burn on the source chain
    burn_tx_hash: str

    #: Attestation used for the mint
    attestation: Attestation

    #: Transaction hash of the mint on the destination chain
    mint_tx_hash: str

    #: Source chain name
    source_chain: str

    #: Destination chain name
    destination_chain: str

    #: Amount in raw USDC units
    amount: int

    #: Approval transaction, if one was needed
    approve_tx_hash: str | None = None

    #: Burn event nonce
    nonce: int | None = None


class CCTPTransferEngine:
    """Runs CCTP transfers between a fixed source and destination chain.

    Create one engine per transfer. The engine keeps the state of the
    transfer in :py:attr:`tracker` and caches attestations by burn hash.

    :param source:
        Client for the chain USDC is burned on.

    :param destination:
        Client for the chain USDC is minted on.

    :param attestation_client:
        Iris API client.

    :param polling_config:
        Attestation polling bounds.

    :param observer:
        Called with each :py:class:`~crosschain_transfer.state.TransferEvent`.

    :param clock:
        Monotonic clock for the attestation poller.

    :param sleep:
        Sleep function for the attestation poller, replaceable in tests.
    """

    def __init__(
        self,
        source: ChainClient,
        destination: ChainClient,
        attestation_client: AttestationClient,
        polling_config: PollingConfig | None = None,
        config: CCTPConfig | None = None,
        observer: TransferObserver | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ):
        assert source.chain.supports_cctp, f"CCTP not configured on {source.chain.name}"
        assert destination.chain.supports_cctp, f"CCTP not configured on {destination.chain.name}"
        assert source.chain.name != destination.chain.name, "Source and destination must differ"
        self.source = source
        self.destination = destination
        self.attestation_client = attestation_client
        self.polling_config = polling_config or PollingConfig()
        self.config = config or CCTPConfig()
        self.observer = observer
        self.clock = clock
        self.sleep = sleep
        self.tracker = TransferTracker(observer)
        self._attestations: dict[str, Attestation] = {}
        self._attestation_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<CCTPTransferEngine {self.source.chain.name} -> {self.destination.chain.name} state={self.tracker.state.value}>"

    @property
    def state(self) -> TransferState:
        return self.tracker.state

    @contextmanager
    def _stage(self, stage: str):
        """Fail the transfer on any error and wrap untyped errors."""
        try:
            yield
        except CrossChainTransferError as e:
            logger.warning("CCTP %s failed: %s", stage, e)
            self.tracker.fail(str(e))
            raise
        except Exception as e:
            logger.warning("CCTP %s failed: %s", stage, e, exc_info=True)
            wrapped = TransferFailedError(stage, str(e) or e.__class__.__name__)
            self.tracker.fail(str(wrapped))
            raise wrapped from e

    def _receipt_timeout(self, stage: str, deadline: Deadline | None) -> float | None:
        timeout = self.config.receipt_timeout
        if deadline is None:
            return timeout
        deadline.check(stage)
        return deadline.remaining() if timeout is None else deadline.clip(timeout)

    def _confirm(self, client: ChainClient, tx_hash: str, stage: str, deadline: Deadline | None) -> dict:
        timeout = self._receipt_timeout(stage, deadline)
        try:
            return confirm_transaction(client, tx_hash, stage, timeout=timeout)
        except TimeoutError as e:
            if deadline is not None and deadline.expired:
                raise DeadlineExceededError(stage, f"transfer deadline of {deadline.seconds}s exceeded waiting for {tx_hash}", tx_hash) from e
            raise TransferFailedError(stage, str(e), tx_hash) from e

    def burn(self, intent: TransferIntent, account: LocalAccount, deadline: Deadline | None = None) -> BurnResult:
        """Approve if needed and burn on the source chain.

        :raise EventNotFoundError:
            Burn receipt has no ``DepositForBurn`` event.

        :raise TransferFailedError:
            Approval or burn failed.
        """
        source_chain = self.source.chain
        dest_chain = self.destination.chain

        logger.info(
            "Burning %d raw USDC on %s for %s, recipient %s",
            intent.amount,
            source_chain.name,
            dest_chain.name,
            intent.recipient,
        )
        self.tracker.emit(TransferState.burning, f"Burning {format_usdc(intent.amount)} on {source_chain.display_name}")

        with self._stage("approve"):
            approve_timeout = self._receipt_timeout("approve", deadline)
            approve_tx_hash = ensure_allowance(
                self.source,
                account,
                source_chain.usdc,
                source_chain.token_messenger,
                intent.amount,
                timeout=approve_timeout,
            )
            if approve_tx_hash:
                self.tracker.emit(TransferState.burning, "USDC approval confirmed", approve_tx_hash)

        with self._stage("burn"):
            if deadline is not None:
                deadline.check("burn")
            burn_tx_hash = self.source.transact(
                account,
                source_chain.token_messenger,
                TOKEN_MESSENGER_ABI,
                "depositForBurn",
                intent.amount,
                dest_chain.domain,
                address_to_bytes32(intent.recipient),
                checksum(source_chain.usdc),
                address_to_bytes32(self.config.destination_caller),
                self.config.max_fee,
                self.config.min_finality_threshold,
            )
            self.tracker.emit(TransferState.burning, "Burn transaction submitted", burn_tx_hash)

            receipt = self._confirm(self.source, burn_tx_hash, "burn", deadline)
            event = find_deposit_for_burn(receipt, source_chain.token_messenger)
            if event is None:
                raise EventNotFoundError("burn", "DepositForBurn event not found in burn receipt", burn_tx_hash)

        logger.info("CCTP burn confirmed: %s, nonce %d", burn_tx_hash, event.nonce)
        self.tracker.emit(TransferState.awaiting_attestation, "Burn confirmed, waiting for Circle attestation", burn_tx_hash)

        return BurnResult(
            burn_tx_hash=burn_tx_hash,
            message=event.message,
            amount=event.amount,
            approve_tx_hash=approve_tx_hash,
            nonce=event.nonce,
        )

    def get_cached_attestation(self, burn_tx_hash: str) -> Attestation | None:
        with self._attestation_lock:
            return self._attestations.get(normalise_tx_hash(burn_tx_hash))

    def _create_poller(self, deadline: Deadline | None) -> BackoffPoller:
        config = self.polling_config
        if deadline is not None:
            deadline.check("attestation")
            config = dataclasses.replace(config, total_timeout=deadline.clip(config.total_timeout))
        return BackoffPoller(config, clock=self.clock, sleep=self.sleep)

    def await_attestation(
        self,
        burn_tx_hash: str,
        cancel_token: CancelToken | None = None,
        deadline: Deadline | None = None,
    ) -> tuple[Attestation, BurnResult]:
        """Wait until Circle has signed the burn.

        Reads the burn receipt again to get the message, so this works for
        burns done in an earlier process.

        :raise AttestationTimeoutError:
            Attempt cap or time budget ran out.

        :raise PollingCancelledError:
            ``cancel_token`` was cancelled.
        """
        burn_tx_hash = normalise_tx_hash(burn_tx_hash)
        self.tracker.emit(TransferState.awaiting_attestation, "Polling Circle API for attestation", burn_tx_hash)

        with self._stage("attestation"):
            receipt = self._confirm(self.source, burn_tx_hash, "attestation", deadline)
            event = find_deposit_for_burn(receipt, self.source.chain.token_messenger)
            if event is None:
                raise EventNotFoundError("attestation", "DepositForBurn event not found in burn receipt", burn_tx_hash)

            burn = BurnResult(
                burn_tx_hash=burn_tx_hash,
                message=event.message,
                amount=event.amount,
                nonce=event.nonce,
            )

            attestation = self.get_cached_attestation(burn_tx_hash)
            if attestation is None:
                poller = self._create_poller(deadline)
                try:
                    attestation = poller.poll(
                        lambda: self.attestation_client.fetch_attestation(burn_tx_hash, event.message),
                        cancel_token=cancel_token,
                        description=f"attestation for {burn_tx_hash}",
                    )
                except PollingTimeoutError as e:
                    if deadline is not None and deadline.expired:
                        raise DeadlineExceededError("attestation", f"transfer deadline of {deadline.seconds}s exceeded", burn_tx_hash) from e
                    raise AttestationTimeoutError(burn_tx_hash, e.reason, e.attempts, e.elapsed) from e

                with self._attestation_lock:
                    attestation = self._attestations.setdefault(burn_tx_hash, attestation)
            else:
                logger.info("Using cached attestation for %s", burn_tx_hash)

        self.tracker.emit(TransferState.attestation_received, "Attestation received", burn_tx_hash)
        return attestation, burn

    def mint(
        self,
        attestation: Attestation,
        message: bytes | None,
        account: LocalAccount,
        deadline: Deadline | None = None,
    ) -> MintResult:
        """Relay the attested message to the destination chain.

        :param message:
            Message to relay, defaults to ``attestation.encoded_message``.

        :raise MessageAlreadyReceivedError:
            The destination has already consumed this message nonce.
        """
        dest_chain = self.destination.chain
        if message is None:
            message = attestation.encoded_message

        self.tracker.emit(TransferState.minting, f"Minting USDC on {dest_chain.display_name}")

        with self._stage("mint"):
            header = parse_message_header(message)
            if header.destination_domain != dest_chain.domain:
                raise TransferFailedError(
                    "mint",
                    f"message is for domain {header.destination_domain}, {dest_chain.name} is domain {dest_chain.domain}",
                )

            if header.has_nonce:
                used = self.destination.read(dest_chain.message_transmitter, MESSAGE_TRANSMITTER_ABI, "usedNonces", header.nonce)
                if used:
                    raise MessageAlreadyReceivedError(header.nonce)
            else:
                logger.debug("Message has no assigned nonce, skipping usedNonces check")

            if deadline is not None:
                deadline.check("mint")

            mint_tx_hash = self.destination.transact(
                account,
                dest_chain.message_transmitter,
                MESSAGE_TRANSMITTER_ABI,
                "receiveMessage",
                message,
                attestation.signature,
            )
            self.tracker.emit(TransferState.minting, "Mint transaction submitted", mint_tx_hash)
            self._confirm(self.destination, mint_tx_hash, "mint", deadline)

        logger.info("CCTP mint confirmed on %s: %s", dest_chain.name, mint_tx_hash)
        self.tracker.emit(TransferState.completed, "Transfer complete", mint_tx_hash)
        return MintResult(mint_tx_hash=mint_tx_hash)

    def _check_intent(self, intent: TransferIntent):
        if intent.source_chain != self.source.chain.name or intent.destination_chain != self.destination.chain.name:
            raise ValidationError(
                f"Engine bridges {self.source.chain.name} -> {self.destination.chain.name}, "
                f"intent is {intent.source_chain} -> {intent.destination_chain}"
            )
        if not intent.has_valid_recipient:
            raise ValidationError(f"Invalid recipient address: {intent.recipient}")

    def transfer(
        self,
        intent: TransferIntent,
        account: LocalAccount,
        cancel_token: CancelToken | None = None,
        deadline: Deadline | None = None,
    ) -> CCTPTransferResult:
        """Burn, wait for attestation and mint.

        Stops at the first failed phase.
        """
        self._check_intent(intent)
        self.tracker = TransferTracker(self.observer)

        burn = self.burn(intent, account, deadline=deadline)
        attestation, _ = self.await_attestation(burn.burn_tx_hash, cancel_token=cancel_token, deadline=deadline)
        mint = self.mint(attestation, attestation.encoded_message, account, deadline=deadline)

        return CCTPTransferResult(
            burn_tx_hash=burn.burn_tx_hash,
            attestation=attestation,
            mint_tx_hash=mint.mint_tx_hash,
            source_chain=self.source.chain.name,
            destination_chain=self.destination.chain.name,
            amount=burn.amount,
            approve_tx_hash=burn.approve_tx_hash,
            nonce=burn.nonce,
        )

    def resume(
        self,
        burn_tx_hash: str,
        account: LocalAccount,
        cancel_token: CancelToken | None = None,
        deadline: Deadline | None = None,
    ) -> CCTPTransferResult:
        """Finish a transfer whose burn is already on chain.

        Starts at the attestation phase. Never submits a burn.

        :raise ValidationError:
            Malformed transaction hash.
        """
        if not is_valid_tx_hash(burn_tx_hash):
            raise ValidationError(f"Invalid transaction hash: {burn_tx_hash}")

        self.tracker = TransferTracker(self.observer)

        attestation, burn = self.await_attestation(burn_tx_hash, cancel_token=cancel_token, deadline=deadline)
        mint = self.mint(attestation, attestation.encoded_message, account, deadline=deadline)

        return CCTPTransferResult(
            burn_tx_hash=burn.burn_tx_hash,
            attestation=attestation,
            mint_tx_hash=mint.mint_tx_hash,
            source_chain=self.source.chain.name,
            destination_chain=self.destination.chain.name,
            amount=burn.amount,
            nonce=burn.nonce,
        )
