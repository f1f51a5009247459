"""Chain registry and RPC access.

All on-chain calls the engines make go through a :py:class:`ChainClient`:
contract reads, signed contract writes, receipt waits, block numbers and
native balances. :py:class:`Web3ChainClient` implements it on top of a
web3 ``HTTPProvider``; tests substitute an in-memory fake.

Example::

    from eth_account import Account
    from crosschain_transfer.chain import CHAINS, create_web3_chain_client, fetch_usdc_balance

    client = create_web3_chain_client(CHAINS["sepolia"], rpc_url="https://...")
    account = Account.from_key(private_key)
    balance = fetch_usdc_balance(client, account.address)
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

import requests
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from web3 import Web3
from web3.exceptions import TimeExhausted

from crosschain_transfer.abi import ERC20_ABI
from crosschain_transfer.errors import TransferFailedError, ValidationError
from crosschain_transfer.utils import checksum, get_url_domain

logger = logging.getLogger(__name__)

#: Seconds to wait for a transaction to be mined before giving up
DEFAULT_RECEIPT_TIMEOUT = 180.0

#: Seconds between receipt polls
DEFAULT_RECEIPT_POLL_LATENCY = 2.0


@dataclass(slots=True, frozen=True)
class ChainConfig:
    """Static description of a supported chain."""

    #: Short name used in the API and on the command line, e.g. ``"sepolia"``
    name: str

    #: Human readable name
    display_name: str

    #: EVM chain id
    chain_id: int

    #: Circle domain id, shared by CCTP and Gateway
    domain: int

    #: Default public RPC endpoint
    rpc_url: str

    #: Block explorer base URL
    explorer_url: str

    #: USDC token contract
    usdc: HexAddress

    #: CCTP V2 TokenMessenger, ``None`` if CCTP is not used on this chain
    token_messenger: HexAddress | None = None

    #: CCTP V2 MessageTransmitter, ``None`` if CCTP is not used on this chain
    message_transmitter: HexAddress | None = None

    #: Native gas token symbol
    native_symbol: str = "ETH"

    #: Rough time for a deposit to become spendable, shown to the user
    confirmation_hint: str = ""

    def get_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"

    def get_address_url(self, address: str) -> str:
        return f"{self.explorer_url}/address/{address}"

    @property
    def supports_cctp(self) -> bool:
        return self.token_messenger is not None and self.message_transmitter is not None


#: CCTP V2 testnet TokenMessenger, same address on every supported chain
CCTP_TOKEN_MESSENGER = HexAddress("0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA")

#: CCTP V2 testnet MessageTransmitter, same address on every supported chain
CCTP_MESSAGE_TRANSMITTER = HexAddress("0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275")

SEPOLIA = ChainConfig(
    name="sepolia",
    display_name="Ethereum Sepolia",
    chain_id=11155111,
    domain=0,
    rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
    explorer_url="https://sepolia.etherscan.io",
    usdc=HexAddress("0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"),
    token_messenger=CCTP_TOKEN_MESSENGER,
    message_transmitter=CCTP_MESSAGE_TRANSMITTER,
    confirmation_hint="13-19 minutes",
)

ARC = ChainConfig(
    name="arc",
    display_name="Arc Testnet",
    chain_id=5042002,
    domain=26,
    rpc_url="https://rpc.testnet.arc.network",
    explorer_url="https://testnet.arcscan.app",
    usdc=HexAddress("0x3600000000000000000000000000000000000000"),
    token_messenger=CCTP_TOKEN_MESSENGER,
    message_transmitter=CCTP_MESSAGE_TRANSMITTER,
    confirmation_hint="~1 minute",
)

BASE_SEPOLIA = ChainConfig(
    name="base",
    display_name="Base Sepolia",
    chain_id=84532,
    domain=6,
    rpc_url="https://sepolia.base.org",
    explorer_url="https://sepolia.basescan.org",
    usdc=HexAddress("0x036CbD53842c5426634e7929541eC2318f3dCF7e"),
    confirmation_hint="13-19 minutes",
)

AVALANCHE_FUJI = ChainConfig(
    name="avalanche",
    display_name="Avalanche Fuji",
    chain_id=43113,
    domain=1,
    rpc_url="https://api.avax-test.network/ext/bc/C/rpc",
    explorer_url="https://testnet.snowtrace.io",
    usdc=HexAddress("0x5425890298aed601595a70AB815c96711a31Bc65"),
    native_symbol="AVAX",
    confirmation_hint="~8 seconds",
)

#: All supported chains by short name
CHAINS: dict[str, ChainConfig] = {c.name: c for c in (SEPOLIA, ARC, BASE_SEPOLIA, AVALANCHE_FUJI)}

#: Chains reachable by domain id
CHAINS_BY_DOMAIN: dict[int, ChainConfig] = {c.domain: c for c in CHAINS.values()}


def get_chain_config(name: str) -> ChainConfig:
    """Look up a chain by its short name.

    :raise ValidationError:
        Unknown chain.
    """
    try:
        return CHAINS[name]
    except KeyError:
        raise ValidationError(f"Unsupported chain: {name}. Supported: {', '.join(CHAINS)}") from None


class ChainClient(Protocol):
    """On-chain capabilities the transfer engines need.

    Receipts are returned as plain dicts::

        {
            "transactionHash": "0x...",
            "status": 1,
            "blockNumber": 123,
            "logs": [{"address": "0x...", "topics": [b"..."], "data": b"..."}],
        }
    """

    #: Chain this client talks to
    chain: ChainConfig

    def read(self, address: str, abi: list[dict], function_name: str, *args) -> Any:
        """Call a view function."""

    def transact(self, account: LocalAccount, address: str, abi: list[dict], function_name: str, *args) -> str:
        """Sign and broadcast a contract call.

        :return:
            Transaction hash as ``0x`` hex string.
        """

    def wait_for_receipt(self, tx_hash: str, timeout: float | None = None) -> dict:
        """Wait until a transaction is mined.

        :raise TimeoutError:
            Transaction was not mined in time.
        """

    def get_block_number(self) -> int: ...

    def get_native_balance(self, address: str) -> int: ...


class Web3ChainClient:
    """:py:class:`ChainClient` backed by a web3 ``HTTPProvider``.

    The provider shares one :py:class:`requests.Session` so that all threads
    using this client reuse the same connection pool. Nonce allocation and
    broadcast are serialised per client, so concurrent transfers signed by
    the same key on the same chain do not collide on nonces.
    """

    def __init__(
        self,
        chain: ChainConfig,
        web3: Web3,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_latency: float = DEFAULT_RECEIPT_POLL_LATENCY,
    ):
        self.chain = chain
        self.web3 = web3
        self.receipt_timeout = receipt_timeout
        self.poll_latency = poll_latency
        self._send_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<Web3ChainClient {self.chain.name}>"

    def _contract(self, address: str, abi: list[dict]):
        return self.web3.eth.contract(address=checksum(address), abi=abi)

    def read(self, address: str, abi: list[dict], function_name: str, *args) -> Any:
        contract = self._contract(address, abi)
        return getattr(contract.functions, function_name)(*args).call()

    def transact(self, account: LocalAccount, address: str, abi: list[dict], function_name: str, *args) -> str:
        contract = self._contract(address, abi)
        bound_func = getattr(contract.functions, function_name)(*args)
        with self._send_lock:
            nonce = self.web3.eth.get_transaction_count(account.address, "pending")
            tx = bound_func.build_transaction(
                {
                    "from": account.address,
                    "nonce": nonce,
                    "chainId": self.chain.chain_id,
                }
            )
            signed = account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info("Broadcast %s.%s() on %s, nonce %d: %s", address, function_name, self.chain.name, nonce, tx_hash_hex)
        return tx_hash_hex

    def wait_for_receipt(self, tx_hash: str, timeout: float | None = None) -> dict:
        if timeout is None:
            timeout = self.receipt_timeout
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=self.poll_latency)
        except TimeExhausted as e:
            raise TimeoutError(f"Transaction {tx_hash} on {self.chain.name} not mined in {timeout}s") from e

        return {
            "transactionHash": Web3.to_hex(receipt["transactionHash"]),
            "status": receipt["status"],
            "blockNumber": receipt["blockNumber"],
            "logs": [
                {
                    "address": log["address"],
                    "topics": [bytes(t) for t in log["topics"]],
                    "data": bytes(log["data"]),
                }
                for log in receipt["logs"]
            ],
        }

    def get_block_number(self) -> int:
        return self.web3.eth.block_number

    def get_native_balance(self, address: str) -> int:
        return self.web3.eth.get_balance(checksum(address))


def create_web3_chain_client(
    chain: ChainConfig,
    rpc_url: str | None = None,
    session: requests.Session | None = None,
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
) -> Web3ChainClient:
    """Create a web3 backed client for a chain.

    :param rpc_url:
        Override the chain default RPC endpoint.

    :param session:
        Shared HTTP session for the provider connection pool.
    """
    rpc_url = rpc_url or chain.rpc_url
    if session is None:
        session = requests.Session()
    provider = Web3.HTTPProvider(rpc_url, session=session, request_kwargs={"timeout": 30})
    web3 = Web3(provider)
    logger.info("Connected %s client to %s", chain.name, get_url_domain(rpc_url))
    return Web3ChainClient(chain, web3, receipt_timeout=receipt_timeout)


def fetch_usdc_balance(client: ChainClient, address: str) -> int:
    """USDC balance in raw units."""
    return client.read(client.chain.usdc, ERC20_ABI, "balanceOf", checksum(address))


def confirm_transaction(client: ChainClient, tx_hash: str, stage: str, timeout: float | None = None) -> dict:
    """Wait for a receipt and check it succeeded.

    :raise TransferFailedError:
        Reverted transaction.

    :raise TimeoutError:
        Not mined in time.
    """
    receipt = client.wait_for_receipt(tx_hash, timeout=timeout)
    if receipt["status"] != 1:
        raise TransferFailedError(stage, f"transaction reverted on {client.chain.name}", tx_hash)
    return receipt


def ensure_allowance(
    client: ChainClient,
    account: LocalAccount,
    token: str,
    spender: str,
    amount: int,
    timeout: float | None = None,
) -> str | None:
    """Approve ``spender`` if the current allowance does not cover ``amount``.

    :return:
        Approval transaction hash, or ``None`` if no approval was needed.
    """
    current = client.read(token, ERC20_ABI, "allowance", checksum(account.address), checksum(spender))
    if current >= amount:
        logger.info("Allowance %d for %s already covers %d, skipping approval", current, spender, amount)
        return None

    tx_hash = client.transact(account, token, ERC20_ABI, "approve", checksum(spender), amount)
    confirm_transaction(client, tx_hash, "approve", timeout=timeout)
    logger.info("Approved %d to %s on %s: %s", amount, spender, client.chain.name, tx_hash)
    return tx_hash
