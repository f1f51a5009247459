"""Circle Gateway deposits and instant transfers.

USDC deposited to the GatewayWallet on any supported chain becomes one
unified balance. A transfer signs a burn intent for every source chain it
draws from, submits them to the Gateway API in one batch and mints on the
destination with the returned attestation.

Either every intent in the batch settles and the mint succeeds, or the
call fails with :py:class:`~crosschain_transfer.errors.GatewayTransferFailedError`.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass

from eth_account.signers.local import LocalAccount
from web3 import Web3

from crosschain_transfer.abi import GATEWAY_MINTER_ABI, GATEWAY_WALLET_ABI
from crosschain_transfer.chain import ChainClient, confirm_transaction, ensure_allowance, get_chain_config
from crosschain_transfer.errors import (
    GatewayDepositTooSmallError,
    GatewayError,
    GatewayTransferFailedError,
    TransferFailedError,
    ValidationError,
)
from crosschain_transfer.gateway.api import GatewayAPIClient
from crosschain_transfer.gateway.constants import (
    DEFAULT_BALANCE_CHAINS,
    DEFAULT_MAX_FEE,
    GATEWAY_CHAINS,
    GATEWAY_MIN_DEPOSIT,
    GATEWAY_MINTER_ADDRESS,
    GATEWAY_TRANSFER_FEE,
    GATEWAY_WALLET_ADDRESS,
    MAX_BLOCK_HEIGHT_BUFFER,
)
from crosschain_transfer.gateway.intent import BurnIntent, create_burn_intent, sign_burn_intent
from crosschain_transfer.gateway.routing import GatewayDomainBalance, TransferRoute, UnifiedBalance, check_fee_coverage, compute_route
from crosschain_transfer.polling import Deadline
from crosschain_transfer.utils import format_usdc, is_valid_address

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class GatewayDepositResult:
    """Result of a deposit to the GatewayWallet."""

    #: Transaction hash of the deposit
    deposit_tx_hash: str

    #: Chain deposited on
    chain: str

    #: Raw USDC units
    amount: int

    #: Approval transaction, ``None`` if the allowance was sufficient
    approve_tx_hash: str | None = None


@dataclass(slots=True, frozen=True)
class GatewayTransferResult:
    """Result of a Gateway transfer."""

    #: Attestation returned by the Gateway API
    attestation: bytes

    #: ``gatewayMint()`` transaction on the destination chain
    mint_tx_hash: str

    #: Raw USDC units moved
    amount: int

    #: Chains the unified balance was drawn from
    source_chains: list[str]

    destination_chain: str

    #: ``0x`` hex signature per burn intent, in route order
    signatures: list[str]


class GatewayRoutingEngine:
    """Unified balance queries, route planning, deposits and transfers.

    :param clients:
        Chain clients by chain name. Only chains that are deposited to,
        drawn from or minted on need a client.

    :param api:
        Gateway API client.
    """

    def __init__(
        self,
        clients: dict[str, ChainClient],
        api: GatewayAPIClient,
        max_fee: int = DEFAULT_MAX_FEE,
        transfer_fee: int = GATEWAY_TRANSFER_FEE,
        min_deposit: int = GATEWAY_MIN_DEPOSIT,
        block_height_buffer: int = MAX_BLOCK_HEIGHT_BUFFER,
        receipt_timeout: float | None = None,
    ):
        self.clients = clients
        self.api = api
        self.max_fee = max_fee
        self.transfer_fee = transfer_fee
        self.min_deposit = min_deposit
        self.block_height_buffer = block_height_buffer
        self.receipt_timeout = receipt_timeout

    def __repr__(self) -> str:
        return f"<GatewayRoutingEngine chains={list(self.clients)}>"

    def _get_client(self, chain: str) -> ChainClient:
        if chain not in GATEWAY_CHAINS:
            raise ValidationError(f"Gateway is not available on {chain}. Supported: {', '.join(GATEWAY_CHAINS)}")
        client = self.clients.get(chain)
        if client is None:
            raise GatewayError(f"No RPC client configured for {chain}")
        return client

    @contextmanager
    def _stage(self, stage: str):
        try:
            yield
        except GatewayTransferFailedError:
            raise
        except TransferFailedError as e:
            # Reverts and deadlines already name the stage
            logger.warning("Gateway %s failed: %s", stage, e)
            raise GatewayTransferFailedError(stage, e.message) from e
        except Exception as e:
            logger.warning("Gateway %s failed: %s", stage, e, exc_info=True)
            raise GatewayTransferFailedError(stage, str(e) or e.__class__.__name__) from e

    def _receipt_timeout(self, stage: str, deadline: Deadline | None) -> float | None:
        if deadline is None:
            return self.receipt_timeout
        deadline.check(stage)
        return deadline.remaining() if self.receipt_timeout is None else deadline.clip(self.receipt_timeout)

    def get_unified_balance(self, address: str, chains: list[str] | None = None) -> UnifiedBalance:
        """Unified balance of ``address`` on each chain.

        One API call for all the chains.

        :param chains:
            Chain names, defaults to :py:data:`~crosschain_transfer.gateway.constants.DEFAULT_BALANCE_CHAINS`.
        """
        if not is_valid_address(address):
            raise ValidationError(f"Invalid address: {address}")

        if chains is None:
            chains = list(DEFAULT_BALANCE_CHAINS)

        configs = []
        for name in chains:
            if name not in GATEWAY_CHAINS:
                raise ValidationError(f"Gateway is not available on {name}. Supported: {', '.join(GATEWAY_CHAINS)}")
            configs.append(get_chain_config(name))

        by_domain = self.api.fetch_balances(address, [c.domain for c in configs])

        balances = [GatewayDomainBalance(chain=c.name, domain=c.domain, balance=by_domain.get(c.domain, 0)) for c in configs]
        unified = UnifiedBalance(address=address, balances=balances)
        logger.info("Unified Gateway balance of %s: %s", address, format_usdc(unified.total))
        return unified

    def plan_route(
        self,
        amount: int,
        destination_chain: str,
        address: str,
        candidate_chains: list[str] | None = None,
    ) -> TransferRoute:
        """Fetch balances and compute a route.

        :param candidate_chains:
            Chains allowed as sources, defaults to every Gateway chain.
            The destination is skipped even if listed.

        :raise GatewayInsufficientBalanceError:
            Candidates hold less than ``amount`` plus the transfer fee.
        """
        if candidate_chains is None:
            candidate_chains = list(GATEWAY_CHAINS)
        unified = self.get_unified_balance(address, candidate_chains)
        route = compute_route(amount, destination_chain, unified.balances, fee=self.transfer_fee)
        check_fee_coverage(route, destination_chain, unified.balances)
        return route

    def deposit(self, amount: int, chain: str, account: LocalAccount, deadline: Deadline | None = None) -> GatewayDepositResult:
        """Deposit USDC into the unified balance.

        Approves the GatewayWallet first if the allowance is short.

        :param deadline:
            Receipt waits are clipped to it.

        :raise GatewayDepositTooSmallError:
            Amount below :py:data:`~crosschain_transfer.gateway.constants.GATEWAY_MIN_DEPOSIT`.
        """
        if amount < self.min_deposit:
            raise GatewayDepositTooSmallError(amount, self.min_deposit)

        client = self._get_client(chain)
        config = client.chain

        logger.info("Depositing %s to Gateway on %s", format_usdc(amount), chain)

        with self._stage("approve"):
            approve_timeout = self._receipt_timeout("approve", deadline)
            approve_tx_hash = ensure_allowance(client, account, config.usdc, GATEWAY_WALLET_ADDRESS, amount, timeout=approve_timeout)

        with self._stage("deposit"):
            deposit_timeout = self._receipt_timeout("deposit", deadline)
            deposit_tx_hash = client.transact(account, GATEWAY_WALLET_ADDRESS, GATEWAY_WALLET_ABI, "deposit", amount, config.domain)
            confirm_transaction(client, deposit_tx_hash, "deposit", timeout=deposit_timeout)

        logger.info("Gateway deposit confirmed on %s: %s", chain, deposit_tx_hash)
        return GatewayDepositResult(
            deposit_tx_hash=deposit_tx_hash,
            chain=chain,
            amount=amount,
            approve_tx_hash=approve_tx_hash,
        )

    def execute_transfer(
        self,
        route: TransferRoute,
        recipient: str,
        destination_chain: str,
        account: LocalAccount,
        deadline: Deadline | None = None,
    ) -> GatewayTransferResult:
        """Sign a burn intent per allocation, settle them in one batch and mint.

        :param deadline:
            Checked before signing and submitting, the mint receipt wait is clipped to it.

        :raise GatewayTransferFailedError:
            Any step failed. Nothing is returned for partially completed work.
        """
        if not is_valid_address(recipient):
            raise ValidationError(f"Invalid recipient address: {recipient}")
        if not route.source_allocations:
            raise ValidationError("Route has no source allocations")
        for allocation in route.source_allocations:
            if allocation.chain == destination_chain:
                raise ValidationError(f"Route draws from the destination chain {destination_chain}")

        dest_client = self._get_client(destination_chain)
        dest_config = dest_client.chain

        intents: list[BurnIntent] = []
        signatures: list[bytes] = []

        with self._stage("sign"):
            if deadline is not None:
                deadline.check("sign")
            for allocation in route.source_allocations:
                source_client = self._get_client(allocation.chain)
                block_number = source_client.get_block_number()
                intent = create_burn_intent(
                    source=source_client.chain,
                    destination=dest_config,
                    amount=allocation.amount,
                    depositor=account.address,
                    recipient=recipient,
                    max_block_height=block_number + self.block_height_buffer,
                    max_fee=self.max_fee,
                )
                intents.append(intent)
                signatures.append(sign_burn_intent(intent, account))
                logger.info("Signed burn intent for %d on %s, valid until block %d", allocation.amount, allocation.chain, intent.max_block_height)

        hex_signatures = [Web3.to_hex(s) for s in signatures]

        with self._stage("submit"):
            if deadline is not None:
                deadline.check("submit")
            attestation = self.api.submit_transfer([i.as_json() for i in intents], hex_signatures)

        with self._stage("mint"):
            mint_timeout = self._receipt_timeout("mint", deadline)
            mint_tx_hash = dest_client.transact(
                account,
                GATEWAY_MINTER_ADDRESS,
                GATEWAY_MINTER_ABI,
                "gatewayMint",
                [i.encode() for i in intents],
                signatures,
                attestation,
            )
            confirm_transaction(dest_client, mint_tx_hash, "mint", timeout=mint_timeout)

        logger.info("Gateway mint confirmed on %s: %s", destination_chain, mint_tx_hash)
        return GatewayTransferResult(
            attestation=attestation,
            mint_tx_hash=mint_tx_hash,
            amount=route.total_amount,
            source_chains=route.source_chains,
            destination_chain=destination_chain,
            signatures=hex_signatures,
        )

    def transfer(
        self,
        amount: int,
        destination_chain: str,
        recipient: str,
        account: LocalAccount,
        candidate_chains: list[str] | None = None,
        deadline: Deadline | None = None,
    ) -> GatewayTransferResult:
        """Plan a route from the signer's unified balance and execute it."""
        route = self.plan_route(amount, destination_chain, account.address, candidate_chains)
        return self.execute_transfer(route, recipient, destination_chain, account, deadline=deadline)
