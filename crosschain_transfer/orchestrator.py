"""Entry point for CCTP and Gateway transfers.

:py:class:`TransferOrchestrator` validates input, runs the engines and
turns every outcome into an :py:class:`OrchestratorResult`. No exception
escapes its public methods.

- Validation failures are reported and never retried
- Burn and mint failures are reported as they are, a blind resubmission
  could spend funds twice
- Only the attestation wait is retried, through the bounded poller

An interrupted CCTP transfer, e.g. a process crash between burn and mint, is
finished with :py:meth:`TransferOrchestrator.resume` using only the burn
transaction hash.

Example::

    from crosschain_transfer.orchestrator import TransferOptions, create_transfer_orchestrator
    from crosschain_transfer.state import TransferIntent

    orchestrator = create_transfer_orchestrator()
    intent = TransferIntent(amount=10_000_000, recipient="0x...", source_chain="sepolia", destination_chain="arc")
    result = orchestrator.transfer(intent, private_key, TransferOptions(skip_confirm=True))
    if result.success:
        print(result.explorer_urls["mint_tx"])
    else:
        print(f"{result.error_type}: {result.error}")
"""

import contextlib
import dataclasses
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable

import requests
from eth_account import Account
from eth_account.signers.local import LocalAccount
from tqdm_loggable.auto import tqdm

from crosschain_transfer.cctp.attestation import AttestationClient
from crosschain_transfer.cctp.engine import CCTPConfig, CCTPTransferEngine, CCTPTransferResult
from crosschain_transfer.chain import CHAINS, ChainClient, create_web3_chain_client, fetch_usdc_balance, get_chain_config
from crosschain_transfer.config import DEFAULT_MIN_GAS_BALANCE, DEFAULT_TRANSFER_TIMEOUT, TransferSettings
from crosschain_transfer.errors import GatewayError, TransferFailedError, ValidationError
from crosschain_transfer.gateway.api import GatewayAPIClient
from crosschain_transfer.gateway.engine import GatewayRoutingEngine
from crosschain_transfer.polling import CancelToken, Deadline, PollingConfig
from crosschain_transfer.session import create_api_session
from crosschain_transfer.state import TransferEvent, TransferIntent, TransferObserver, TransferState
from crosschain_transfer.utils import format_native, format_usdc, is_valid_address, is_valid_private_key, is_valid_tx_hash

logger = logging.getLogger(__name__)

#: CCTP route used when the caller does not name one
DEFAULT_SOURCE_CHAIN = "sepolia"

DEFAULT_DESTINATION_CHAIN = "arc"


@dataclass(slots=True)
class TransferOptions:
    """Per call options for :py:meth:`TransferOrchestrator.transfer`."""

    #: Do not ask the confirmation callback
    skip_confirm: bool = False

    #: Validate only, submit nothing
    dry_run: bool = False

    #: Overall deadline in seconds, defaults to the orchestrator setting
    timeout: float | None = None

    #: Stop the attestation wait from another thread
    cancel_token: CancelToken | None = None


@dataclass(slots=True)
class ChainBalance:
    """USDC and gas token balance on one chain."""

    #: Raw USDC units
    usdc: int

    #: Native token, wei
    native: int

    native_symbol: str = "ETH"

    def format_usdc(self) -> str:
        return format_usdc(self.usdc)

    def format_native(self) -> str:
        return format_native(self.native, self.native_symbol)


@dataclass(slots=True)
class WalletStatus:
    """Balances of an address, for display."""

    address: str

    #: Balance by chain name
    balances: dict[str, ChainBalance]

    def as_rows(self) -> list[list[str]]:
        """Table rows ``[chain, USDC, native]``."""
        return [[CHAINS[name].display_name, b.format_usdc(), b.format_native()] for name, b in self.balances.items()]


@dataclass(slots=True)
class ValidationResult:
    """Outcome of pre-flight checks. Returned, never raised."""

    valid: bool

    #: Why the transfer was refused
    error: str | None = None

    #: Source chain balances, when they could be read
    balances: ChainBalance | None = None

    #: Address derived from the signing key
    address: str | None = None


@dataclass(slots=True)
class OrchestratorResult:
    """What every public orchestrator method returns."""

    success: bool

    #: Engine result, :py:class:`WalletStatus`, :py:class:`ValidationResult` for dry runs, ...
    result: Any = None

    #: Human readable error
    error: str | None = None

    #: Exception class name, e.g. ``"AttestationTimeoutError"``
    error_type: str | None = None

    #: Block explorer links by name, e.g. ``burn_tx``, ``mint_tx``
    explorer_urls: dict[str, str] = field(default_factory=dict)

    #: Progress events of a CCTP transfer
    events: list[TransferEvent] = field(default_factory=list)

    #: Result of a dry run, nothing was submitted
    dry_run: bool = False


@dataclass(slots=True, frozen=True)
class TransferJob:
    """One transfer for :py:meth:`TransferOrchestrator.transfer_parallel`."""

    intent: TransferIntent
    signing_key: str
    options: TransferOptions | None = None


#: Asked before submitting a transfer, return ``False`` to abort
ConfirmCallback = Callable[[TransferIntent, ValidationResult], bool]


def get_confirmation_time(chain: str) -> str:
    """Rough time before a Gateway deposit on ``chain`` becomes spendable."""
    config = CHAINS.get(chain)
    if config is None or not config.confirmation_hint:
        return "varies"
    return config.confirmation_hint


class TransferOrchestrator:
    """Validates and runs transfers, reports results.

    Engines are created for each call, so concurrent calls share nothing
    but the chain clients and HTTP sessions.

    :param clients:
        Chain clients by chain name.

    :param attestation_client:
        Iris API client for CCTP.

    :param gateway_api:
        Gateway API client, Gateway operations fail without one.

    :param observer:
        Receives progress events of every CCTP transfer.

    :param confirm:
        Asked before each transfer unless ``skip_confirm`` is set.

    :param serialise_accounts:
        Run at most one transfer per signing address at a time.
        Off by default: two concurrent transfers from the same key are
        not serialised and the caller must prevent that.
    """

    def __init__(
        self,
        clients: dict[str, ChainClient],
        attestation_client: AttestationClient,
        gateway_api: GatewayAPIClient | None = None,
        polling_config: PollingConfig | None = None,
        cctp_config: CCTPConfig | None = None,
        observer: TransferObserver | None = None,
        confirm: ConfirmCallback | None = None,
        serialise_accounts: bool = False,
        min_gas_balance: int = DEFAULT_MIN_GAS_BALANCE,
        transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ):
        self.clients = clients
        self.attestation_client = attestation_client
        self.gateway_api = gateway_api
        self.polling_config = polling_config or PollingConfig()
        self.cctp_config = cctp_config or CCTPConfig()
        self.observer = observer
        self.confirm = confirm
        self.serialise_accounts = serialise_accounts
        self.min_gas_balance = min_gas_balance
        self.transfer_timeout = transfer_timeout
        self.clock = clock
        self.sleep = sleep
        self._account_locks: dict[str, threading.Lock] = {}
        self._account_locks_guard = threading.Lock()

    def __repr__(self) -> str:
        return f"<TransferOrchestrator chains={list(self.clients)}>"

    #
    # Helpers
    #

    def _get_client(self, chain: str) -> ChainClient:
        get_chain_config(chain)
        client = self.clients.get(chain)
        if client is None:
            raise ValidationError(f"No RPC client configured for {chain}")
        return client

    def _load_account(self, signing_key: str) -> LocalAccount:
        if not is_valid_private_key(signing_key):
            raise ValidationError("Invalid private key: expected 32 bytes of hex")
        return Account.from_key(signing_key)

    def _account_lock(self, address: str):
        if not self.serialise_accounts:
            return contextlib.nullcontext()
        # Locks are never evicted, one per signing address for the life of the orchestrator
        with self._account_locks_guard:
            return self._account_locks.setdefault(address.lower(), threading.Lock())

    def _create_cctp_engine(self, source_chain: str, destination_chain: str, observer: TransferObserver) -> CCTPTransferEngine:
        source = self._get_client(source_chain)
        destination = self._get_client(destination_chain)
        if not source.chain.supports_cctp:
            raise ValidationError(f"CCTP is not configured on {source_chain}")
        if not destination.chain.supports_cctp:
            raise ValidationError(f"CCTP is not configured on {destination_chain}")
        return CCTPTransferEngine(
            source,
            destination,
            self.attestation_client,
            polling_config=self.polling_config,
            config=self.cctp_config,
            observer=observer,
            clock=self.clock,
            sleep=self.sleep,
        )

    def _create_gateway_engine(self) -> GatewayRoutingEngine:
        if self.gateway_api is None:
            raise GatewayError("Gateway API is not configured")
        return GatewayRoutingEngine(self.clients, self.gateway_api, receipt_timeout=self.cctp_config.receipt_timeout)

    def _create_observer(self, events: list[TransferEvent], extra: TransferObserver | None = None) -> TransferObserver:
        def _observe(event: TransferEvent):
            events.append(event)
            if self.observer is not None:
                self.observer(event)
            if extra is not None:
                extra(event)

        return _observe

    def _create_deadline(self, options: TransferOptions) -> Deadline:
        return Deadline(options.timeout or self.transfer_timeout, clock=self.clock)

    def _create_gateway_deadline(self, timeout: float | None) -> Deadline:
        return Deadline(timeout or self.transfer_timeout, clock=self.clock)

    @staticmethod
    def _cctp_explorer_urls(result: CCTPTransferResult) -> dict[str, str]:
        source = CHAINS[result.source_chain]
        destination = CHAINS[result.destination_chain]
        urls = {}
        if result.approve_tx_hash:
            urls["approve_tx"] = source.get_tx_url(result.approve_tx_hash)
        urls["burn_tx"] = source.get_tx_url(result.burn_tx_hash)
        urls["mint_tx"] = destination.get_tx_url(result.mint_tx_hash)
        return urls

    @staticmethod
    def _failure(e: Exception, events: list[TransferEvent] | None = None, explorer_urls: dict[str, str] | None = None) -> OrchestratorResult:
        if isinstance(e, (ValidationError, TransferFailedError, GatewayError)):
            logger.warning("Operation failed: %s: %s", e.__class__.__name__, e)
        else:
            logger.error("Operation failed: %s: %s", e.__class__.__name__, e, exc_info=e)
        return OrchestratorResult(
            success=False,
            error=str(e),
            error_type=e.__class__.__name__,
            explorer_urls=explorer_urls or {},
            events=events or [],
        )

    @staticmethod
    def _burn_explorer_urls(source_chain: str, events: list[TransferEvent]) -> dict[str, str]:
        """Link the burn of a failed transfer, so it can be resumed."""
        for event in events:
            if event.state == TransferState.awaiting_attestation and event.tx_hash:
                return {"burn_tx": CHAINS[source_chain].get_tx_url(event.tx_hash)}
        return {}

    #
    # CCTP
    #

    def validate(self, intent: TransferIntent, account: LocalAccount) -> ValidationResult:
        """Pre-flight checks for a CCTP transfer.

        Checks the recipient address, the chains, USDC balance and gas
        balance on the source chain. Never raises.
        """
        if not intent.has_valid_recipient:
            return ValidationResult(valid=False, error=f"Invalid recipient address: {intent.recipient}", address=account.address)

        try:
            source = self._get_client(intent.source_chain)
            self._get_client(intent.destination_chain)
        except ValidationError as e:
            return ValidationResult(valid=False, error=str(e), address=account.address)

        try:
            usdc = fetch_usdc_balance(source, account.address)
            native = source.get_native_balance(account.address)
        except Exception as e:
            logger.warning("Failed to fetch wallet balances on %s: %s", intent.source_chain, e)
            return ValidationResult(valid=False, error=f"Failed to fetch wallet balances: {e}", address=account.address)

        balances = ChainBalance(usdc=usdc, native=native, native_symbol=source.chain.native_symbol)
        logger.info("Balances of %s on %s: %s, %s", account.address, intent.source_chain, balances.format_usdc(), balances.format_native())

        if usdc < intent.amount:
            return ValidationResult(
                valid=False,
                error=f"Insufficient USDC balance. Have: {format_usdc(usdc)}, Need: {format_usdc(intent.amount)}",
                balances=balances,
                address=account.address,
            )

        if native < self.min_gas_balance:
            return ValidationResult(
                valid=False,
                error=(
                    f"Insufficient {balances.native_symbol} for gas. Have: {balances.format_native()}, "
                    f"Need at least {format_native(self.min_gas_balance, balances.native_symbol)}"
                ),
                balances=balances,
                address=account.address,
            )

        return ValidationResult(valid=True, balances=balances, address=account.address)

    def transfer(
        self,
        intent: TransferIntent,
        signing_key: str,
        options: TransferOptions | None = None,
        observer: TransferObserver | None = None,
    ) -> OrchestratorResult:
        """Validate and run a CCTP transfer.

        :param signing_key:
            Hex private key of the burning account.

        :param observer:
            Receives the progress events of this transfer only.

        :return:
            Never raises. ``dry_run=True`` results carry the
            :py:class:`ValidationResult`.
        """
        if options is None:
            options = TransferOptions()
        events: list[TransferEvent] = []

        try:
            account = self._load_account(signing_key)
            # Balances are checked under the lock, the previous burn of this account has mined by then
            with self._account_lock(account.address):
                validation = self.validate(intent, account)
                if not validation.valid:
                    logger.warning("Transfer refused: %s", validation.error)
                    return OrchestratorResult(success=False, result=validation, error=validation.error, error_type="ValidationError", dry_run=options.dry_run)

                if options.dry_run:
                    logger.info("Dry run, %s from %s to %s passed validation", format_usdc(intent.amount), intent.source_chain, intent.destination_chain)
                    return OrchestratorResult(success=True, result=validation, dry_run=True)

                if not options.skip_confirm and self.confirm is not None:
                    if not self.confirm(intent, validation):
                        return OrchestratorResult(success=False, result=validation, error="Transfer cancelled by user", error_type="Cancelled")

                engine = self._create_cctp_engine(intent.source_chain, intent.destination_chain, self._create_observer(events, observer))
                deadline = self._create_deadline(options)
                result = engine.transfer(intent, account, cancel_token=options.cancel_token, deadline=deadline)
        except Exception as e:
            return self._failure(e, events, self._burn_explorer_urls(intent.source_chain, events))

        return OrchestratorResult(success=True, result=result, explorer_urls=self._cctp_explorer_urls(result), events=events)

    def resume(
        self,
        burn_tx_hash: str,
        signing_key: str,
        options: TransferOptions | None = None,
        source_chain: str = DEFAULT_SOURCE_CHAIN,
        destination_chain: str = DEFAULT_DESTINATION_CHAIN,
        observer: TransferObserver | None = None,
    ) -> OrchestratorResult:
        """Finish a CCTP transfer from its burn transaction hash.

        Never burns. Resuming a transfer whose mint already happened reports
        ``MessageAlreadyReceivedError`` instead of minting again.
        """
        if options is None:
            options = TransferOptions()
        events: list[TransferEvent] = []

        try:
            account = self._load_account(signing_key)
            if not is_valid_tx_hash(burn_tx_hash):
                raise ValidationError(f"Invalid transaction hash: {burn_tx_hash}")

            engine = self._create_cctp_engine(source_chain, destination_chain, self._create_observer(events, observer))
            with self._account_lock(account.address):
                deadline = self._create_deadline(options)
                result = engine.resume(burn_tx_hash, account, cancel_token=options.cancel_token, deadline=deadline)
        except Exception as e:
            return self._failure(e, events)

        return OrchestratorResult(success=True, result=result, explorer_urls=self._cctp_explorer_urls(result), events=events)

    def get_status(self, address: str, chains: list[str] | None = None) -> OrchestratorResult:
        """USDC and gas balances of ``address``, by default on the CCTP chains."""
        if chains is None:
            chains = [DEFAULT_SOURCE_CHAIN, DEFAULT_DESTINATION_CHAIN]

        try:
            if not is_valid_address(address):
                raise ValidationError(f"Invalid address: {address}")

            balances = {}
            for chain in chains:
                client = self._get_client(chain)
                balances[chain] = ChainBalance(
                    usdc=fetch_usdc_balance(client, address),
                    native=client.get_native_balance(address),
                    native_symbol=client.chain.native_symbol,
                )
        except Exception as e:
            return self._failure(e)

        explorer_urls = {chain: CHAINS[chain].get_address_url(address) for chain in chains}
        return OrchestratorResult(success=True, result=WalletStatus(address=address, balances=balances), explorer_urls=explorer_urls)

    def transfer_parallel(
        self,
        jobs: list[TransferJob],
        max_workers: int | None = None,
        progress: bool = True,
    ) -> list[OrchestratorResult]:
        """Run independent CCTP transfers in threads.

        The confirmation callback is not asked. When *progress* is ``True``,
        shows a ``tqdm`` progress bar advancing on each state change.

        :return:
            Results in the same order as ``jobs``.
        """
        if not jobs:
            return []

        if max_workers is None:
            max_workers = len(jobs)

        n_jobs = len(jobs)
        phases = [s for s in TransferState if s != TransferState.failed]
        job_states = [TransferState.pending] * n_jobs
        lock = threading.Lock()

        logger.info("Parallel transfers: %d jobs, %d total raw USDC", n_jobs, sum(j.intent.amount for j in jobs))

        progress_bar = tqdm(
            total=n_jobs * (len(phases) - 1),
            desc="Transfers",
            unit="phase",
            disable=not progress,
        )

        def _update_phase(idx: int, event: TransferEvent):
            with lock:
                old_state = job_states[idx]
                job_states[idx] = event.state
                if event.state in phases and old_state in phases:
                    advance = phases.index(event.state) - phases.index(old_state)
                    if advance > 0:
                        progress_bar.update(advance)
                parts = [f"{i}:{s.value}" for i, s in enumerate(job_states)]
                progress_bar.set_description(f"Transfers [{', '.join(parts)}]")

        def _run(idx: int, job: TransferJob) -> OrchestratorResult:
            threading.current_thread().name = f"transfer-{idx}"
            options = dataclasses.replace(job.options or TransferOptions(), skip_confirm=True)
            return self.transfer(job.intent, job.signing_key, options, observer=lambda e: _update_phase(idx, e))

        results: list[OrchestratorResult | None] = [None] * n_jobs
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="transfer") as executor:
            futures = {executor.submit(_run, idx, job): idx for idx, job in enumerate(jobs)}
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        progress_bar.close()
        return results

    #
    # Gateway
    #

    def gateway_deposit(self, amount: int, chain: str, signing_key: str, timeout: float | None = None) -> OrchestratorResult:
        """Deposit USDC into the Gateway unified balance on ``chain``.

        :param timeout:
            Overall deadline in seconds, defaults to the orchestrator setting.
        """
        try:
            account = self._load_account(signing_key)
            engine = self._create_gateway_engine()
            with self._account_lock(account.address):
                result = engine.deposit(amount, chain, account, deadline=self._create_gateway_deadline(timeout))
        except Exception as e:
            return self._failure(e)

        config = CHAINS[chain]
        explorer_urls = {"deposit_tx": config.get_tx_url(result.deposit_tx_hash)}
        if result.approve_tx_hash:
            explorer_urls["approve_tx"] = config.get_tx_url(result.approve_tx_hash)
        logger.info("Wait ~%s for confirmations before the deposit shows in the unified balance", get_confirmation_time(chain))
        return OrchestratorResult(success=True, result=result, explorer_urls=explorer_urls)

    def gateway_balance(self, address: str, chains: list[str] | None = None) -> OrchestratorResult:
        """Unified Gateway balance of ``address``."""
        try:
            engine = self._create_gateway_engine()
            result = engine.get_unified_balance(address, chains)
        except Exception as e:
            return self._failure(e)
        return OrchestratorResult(success=True, result=result)

    def gateway_transfer(
        self,
        amount: int,
        destination_chain: str,
        recipient: str,
        signing_key: str,
        source_chains: list[str] | None = None,
        timeout: float | None = None,
    ) -> OrchestratorResult:
        """Move unified balance to ``destination_chain``.

        :param source_chains:
            Only draw from these chains, defaults to all Gateway chains.

        :param timeout:
            Overall deadline in seconds, defaults to the orchestrator setting.
        """
        try:
            account = self._load_account(signing_key)
            if not is_valid_address(recipient):
                raise ValidationError(f"Invalid recipient address: {recipient}")
            engine = self._create_gateway_engine()
            with self._account_lock(account.address):
                deadline = self._create_gateway_deadline(timeout)
                route = engine.plan_route(amount, destination_chain, account.address, source_chains)
                logger.info(
                    "Using %d source chain(s) for %s, estimated fee %s",
                    len(route.source_allocations),
                    format_usdc(amount),
                    format_usdc(route.estimated_fee),
                )
                result = engine.execute_transfer(route, recipient, destination_chain, account, deadline=deadline)
        except Exception as e:
            return self._failure(e)

        explorer_urls = {"mint_tx": CHAINS[destination_chain].get_tx_url(result.mint_tx_hash)}
        return OrchestratorResult(success=True, result=result, explorer_urls=explorer_urls)


def create_transfer_orchestrator(
    settings: TransferSettings | None = None,
    observer: TransferObserver | None = None,
    confirm: ConfirmCallback | None = None,
    serialise_accounts: bool = False,
) -> TransferOrchestrator:
    """Wire web3 chain clients and API sessions from settings.

    :param settings:
        Defaults to :py:meth:`TransferSettings.from_env`.
    """
    if settings is None:
        settings = TransferSettings.from_env()

    clients = {}
    for name, config in CHAINS.items():
        clients[name] = create_web3_chain_client(config, settings.get_rpc_url(name), session=requests.Session())

    if not settings.gateway_api_key:
        logger.warning("CIRCLE_GATEWAY_API_KEY is not set, Gateway balance queries may be refused")

    polling_config = PollingConfig(
        initial_delay=settings.attestation_poll_interval,
        total_timeout=settings.attestation_timeout,
    )

    return TransferOrchestrator(
        clients=clients,
        attestation_client=AttestationClient(create_api_session(settings.iris_api_url)),
        gateway_api=GatewayAPIClient(create_api_session(settings.gateway_api_url, api_key=settings.gateway_api_key)),
        polling_config=polling_config,
        observer=observer,
        confirm=confirm,
        serialise_accounts=serialise_accounts,
        min_gas_balance=settings.min_gas_balance,
        transfer_timeout=settings.transfer_timeout,
    )
