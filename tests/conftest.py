"""Shared fixtures.

On-chain calls go to :py:class:`FakeChainClient`, an in-memory stand-in
for :py:class:`~crosschain_transfer.chain.Web3ChainClient` that keeps token
balances, allowances and used message nonces, and produces receipts with
real ``DepositForBurn`` logs. HTTP calls are intercepted with ``requests_mock``.
"""

import itertools

import pytest
from eth_account import Account
from eth_utils import keccak

from crosschain_transfer.cctp.attestation import AttestationClient
from crosschain_transfer.cctp.message import DepositForBurnEvent, craft_cctp_message, encode_deposit_for_burn_log, parse_message_header
from crosschain_transfer.chain import ARC, BASE_SEPOLIA, SEPOLIA, ChainConfig
from crosschain_transfer.gateway.api import GatewayAPIClient
from crosschain_transfer.session import create_api_session
from crosschain_transfer.utils import address_to_bytes32, bytes32_to_address

#: Iris API base URL used in tests
IRIS_URL = "https://iris.test/v1"

#: Gateway API base URL used in tests
GATEWAY_URL = "https://gateway.test"

#: Deterministic test key
TEST_PRIVATE_KEY = "0x" + "4c" * 32

#: 65 bytes of fake attestation signature
TEST_ATTESTATION = "0x" + "ab" * 65

RECIPIENT = "0x000000000000000000000000000000000000dEaD"


class FakeClock:
    """Monotonic clock that only moves when slept on."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float):
        self.now += seconds


class FakeChainClient:
    """In-memory :py:class:`~crosschain_transfer.chain.ChainClient`.

    :param fail_functions:
        Contract functions whose transactions revert.

    :param unmined:
        Transaction hashes that never get a receipt.
    """

    _tx_counter = itertools.count(1)

    def __init__(self, chain: ChainConfig):
        self.chain = chain
        self.block_number = 5_000_000
        self.token_balances: dict[tuple[str, str], int] = {}
        self.allowances: dict[tuple[str, str, str], int] = {}
        self.native_balances: dict[str, int] = {}
        self.used_nonces: set[bytes] = set()
        self.receipts: dict[str, dict] = {}
        self.transactions: list[tuple[str, str, tuple]] = []
        self.fail_functions: set[str] = set()
        self.raise_on: dict[str, Exception] = {}
        self.unmined: set[str] = set()
        self.burn_nonces = itertools.count(100)

    def __repr__(self) -> str:
        return f"<FakeChainClient {self.chain.name}>"

    def fund(self, address: str, usdc: int = 0, native: int = 0):
        self.token_balances[(self.chain.usdc.lower(), address.lower())] = usdc
        self.native_balances[address.lower()] = native

    def get_function_calls(self, function_name: str) -> list[tuple]:
        return [args for name, _, args in self.transactions if name == function_name]

    def read(self, address: str, abi: list[dict], function_name: str, *args):
        if function_name in self.raise_on:
            raise self.raise_on[function_name]
        if function_name == "allowance":
            owner, spender = args
            return self.allowances.get((address.lower(), owner.lower(), spender.lower()), 0)
        if function_name == "balanceOf":
            return self.token_balances.get((address.lower(), args[0].lower()), 0)
        if function_name == "usedNonces":
            return 1 if args[0] in self.used_nonces else 0
        raise NotImplementedError(function_name)

    def _new_tx_hash(self) -> str:
        return "0x" + keccak(text=f"{self.chain.name}-{next(self._tx_counter)}").hex()

    def transact(self, account, address: str, abi: list[dict], function_name: str, *args) -> str:
        if function_name in self.raise_on:
            raise self.raise_on[function_name]

        tx_hash = self._new_tx_hash()
        self.transactions.append((function_name, address, args))
        logs = []

        if function_name == "approve":
            spender, amount = args
            self.allowances[(address.lower(), account.address.lower(), spender.lower())] = amount
        elif function_name == "depositForBurn":
            logs.append(self._create_burn_log(account.address, *args))
        elif function_name == "receiveMessage":
            header = parse_message_header(args[0])
            self.used_nonces.add(header.nonce)

        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "status": 0 if function_name in self.fail_functions else 1,
            "blockNumber": self.block_number,
            "logs": logs,
        }
        self.block_number += 1
        return tx_hash

    def _create_burn_log(self, depositor, amount, destination_domain, mint_recipient, burn_token, destination_caller, max_fee, min_finality):
        nonce = next(self.burn_nonces)
        message = craft_cctp_message(
            source_domain=self.chain.domain,
            destination_domain=destination_domain,
            nonce=nonce,
            mint_recipient=bytes32_to_address(mint_recipient),
            amount=amount,
            burn_token=burn_token,
            message_sender=depositor,
            token_messenger=self.chain.token_messenger,
            destination_caller=destination_caller,
            max_fee=max_fee,
            min_finality_threshold=min_finality,
        )
        event = DepositForBurnEvent(
            nonce=nonce,
            burn_token=burn_token,
            amount=amount,
            depositor=depositor,
            destination_domain=destination_domain,
            mint_recipient=mint_recipient,
            destination_caller=destination_caller,
            message=message,
        )
        return encode_deposit_for_burn_log(event, self.chain.token_messenger)

    def add_burn(self, depositor: str, amount: int, destination: ChainConfig, recipient: str = RECIPIENT) -> str:
        """Put a mined burn on the chain without going through :py:meth:`transact`."""
        tx_hash = self._new_tx_hash()
        log = self._create_burn_log(
            depositor,
            amount,
            destination.domain,
            address_to_bytes32(recipient),
            self.chain.usdc,
            b"\x00" * 32,
            500,
            2000,
        )
        self.receipts[tx_hash] = {"transactionHash": tx_hash, "status": 1, "blockNumber": self.block_number, "logs": [log]}
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float | None = None) -> dict:
        if tx_hash in self.unmined or tx_hash not in self.receipts:
            raise TimeoutError(f"Transaction {tx_hash} on {self.chain.name} not mined in {timeout}s")
        return self.receipts[tx_hash]

    def get_block_number(self) -> int:
        return self.block_number

    def get_native_balance(self, address: str) -> int:
        return self.native_balances.get(address.lower(), 0)


@pytest.fixture()
def private_key() -> str:
    return TEST_PRIVATE_KEY


@pytest.fixture()
def account(private_key):
    return Account.from_key(private_key)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sepolia(account) -> FakeChainClient:
    client = FakeChainClient(SEPOLIA)
    client.fund(account.address, usdc=100_000_000, native=10**18)
    return client


@pytest.fixture()
def arc(account) -> FakeChainClient:
    client = FakeChainClient(ARC)
    client.fund(account.address, usdc=0, native=10**18)
    return client


@pytest.fixture()
def base(account) -> FakeChainClient:
    client = FakeChainClient(BASE_SEPOLIA)
    client.fund(account.address, usdc=0, native=10**18)
    return client


@pytest.fixture()
def attestation_client() -> AttestationClient:
    return AttestationClient(create_api_session(IRIS_URL))


@pytest.fixture()
def gateway_api() -> GatewayAPIClient:
    return GatewayAPIClient(create_api_session(GATEWAY_URL, api_key="test-key"))


@pytest.fixture()
def mock_attestation(requests_mock, attestation_client):
    """Register an Iris response for a burn transaction.

    :return:
        Function returning the ``requests_mock`` matcher, so tests can check ``call_count``.
    """

    def _mock(burn_tx_hash: str, status: str = "complete", attestation: str | None = TEST_ATTESTATION, message: bytes | None = None, status_code: int = 200):
        url = attestation_client.get_attestation_url(burn_tx_hash)
        if status_code != 200:
            return requests_mock.get(url, status_code=status_code, text="error")
        data = {"status": status, "attestation": attestation}
        if message is not None:
            data["message"] = "0x" + message.hex()
        return requests_mock.get(url, json=data)

    return _mock
