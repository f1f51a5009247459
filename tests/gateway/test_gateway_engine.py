"""Gateway deposits and multi-source transfers against in-memory chains."""

import pytest
from eth_abi import decode

from crosschain_transfer.errors import GatewayDepositTooSmallError, GatewayError, GatewayInsufficientBalanceError, GatewayTransferFailedError, ValidationError
from crosschain_transfer.gateway.constants import GATEWAY_MINTER_ADDRESS, GATEWAY_WALLET_ADDRESS
from crosschain_transfer.gateway.engine import GatewayRoutingEngine
from crosschain_transfer.gateway.intent import BURN_INTENT_ABI_TYPE
from crosschain_transfer.gateway.routing import SourceAllocation, TransferRoute
from crosschain_transfer.polling import Deadline

RECIPIENT = "0x000000000000000000000000000000000000dEaD"

ATTESTATION = "0x" + "cd" * 40


@pytest.fixture()
def engine(sepolia, arc, base, gateway_api) -> GatewayRoutingEngine:
    clients = {c.chain.name: c for c in (sepolia, arc, base)}
    return GatewayRoutingEngine(clients, gateway_api)


@pytest.fixture()
def balances_matcher(requests_mock, gateway_api):
    return requests_mock.get(
        f"{gateway_api.session.api_url}/v1/balances",
        json={"balances": {"0": "20", "26": "15", "6": "100", "1": "0"}},
    )


@pytest.fixture()
def transfer_matcher(requests_mock, gateway_api):
    return requests_mock.post(f"{gateway_api.session.api_url}/v1/transfer", json={"attestation": ATTESTATION})


def test_deposit(engine, sepolia, account):
    result = engine.deposit(5_000_000, "sepolia", account)

    assert result.approve_tx_hash is not None
    (approve_args,) = sepolia.get_function_calls("approve")
    assert approve_args[0].lower() == GATEWAY_WALLET_ADDRESS.lower()
    assert approve_args[1] == 5_000_000

    # deposit(amount, srcDomain)
    (deposit_args,) = sepolia.get_function_calls("deposit")
    assert deposit_args == (5_000_000, 0)
    assert sepolia.receipts[result.deposit_tx_hash]["status"] == 1


def test_deposit_skips_approval(engine, sepolia, account):
    sepolia.allowances[(sepolia.chain.usdc.lower(), account.address.lower(), GATEWAY_WALLET_ADDRESS.lower())] = 10**12

    result = engine.deposit(5_000_000, "sepolia", account)

    assert result.approve_tx_hash is None
    assert sepolia.get_function_calls("approve") == []


def test_deposit_too_small(engine, sepolia, account):
    with pytest.raises(GatewayDepositTooSmallError) as exc_info:
        engine.deposit(2_009_999, "sepolia", account)

    assert exc_info.value.minimum == 2_010_000
    assert sepolia.transactions == []


def test_deposit_unsupported_chain(engine, account):
    with pytest.raises(ValidationError):
        engine.deposit(5_000_000, "polygon", account)


def test_deposit_without_client(engine, account):
    with pytest.raises(GatewayError, match="No RPC client"):
        engine.deposit(5_000_000, "avalanche", account)


def test_deposit_reverted(engine, sepolia, account):
    sepolia.fail_functions.add("deposit")

    with pytest.raises(GatewayTransferFailedError) as exc_info:
        engine.deposit(5_000_000, "sepolia", account)

    assert exc_info.value.stage == "deposit"


def test_get_unified_balance(engine, balances_matcher, account):
    unified = engine.get_unified_balance(account.address)

    assert [(b.chain, b.balance) for b in unified.balances] == [("sepolia", 20_000_000), ("arc", 15_000_000)]
    assert unified.total == 35_000_000
    assert balances_matcher.last_request.qs["domains"] == ["0,26"]


def test_get_unified_balance_invalid_address(engine):
    with pytest.raises(ValidationError):
        engine.get_unified_balance("0x1234")


def test_plan_route_with_candidates(engine, balances_matcher, account):
    """Only listed chains are drawn from, the destination never."""
    route = engine.plan_route(30_000_000, "base", account.address, ["arc", "sepolia", "base"])

    assert route.source_allocations == [
        SourceAllocation(chain="sepolia", domain=0, amount=20_000_000),
        SourceAllocation(chain="arc", domain=26, amount=10_000_000),
    ]


def test_plan_route_insufficient(engine, balances_matcher, account):
    with pytest.raises(GatewayInsufficientBalanceError):
        engine.plan_route(40_000_000, "base", account.address, ["sepolia", "arc"])


def test_transfer(engine, sepolia, arc, base, account, balances_matcher, transfer_matcher):
    """Two burn intents settle in one batch and mint in one call."""
    result = engine.transfer(30_000_000, "base", RECIPIENT, account, candidate_chains=["sepolia", "arc"])

    assert result.source_chains == ["sepolia", "arc"]
    assert result.amount == 30_000_000
    assert result.attestation == bytes.fromhex("cd" * 40)

    payload = transfer_matcher.last_request.json()
    assert len(payload["burnIntents"]) == 2
    assert payload["signatures"] == result.signatures
    first = payload["burnIntents"][0]
    assert first["maxBlockHeight"] == str(sepolia.block_number + 1000)
    assert first["spec"]["value"] == "20000000"
    assert first["spec"]["destinationDomain"] == 6

    (mint_args,) = base.get_function_calls("gatewayMint")
    encoded_intents, signatures, attestation = mint_args
    assert len(encoded_intents) == 2
    assert [f"0x{s.hex()}" for s in signatures] == result.signatures
    assert attestation == result.attestation

    (max_block_height, max_fee, spec) = decode([BURN_INTENT_ABI_TYPE], encoded_intents[1])[0]
    assert max_block_height == arc.block_number + 1000
    assert spec[1] == 26
    assert spec[11] == 10_000_000

    assert base.transactions[0][1] == GATEWAY_MINTER_ADDRESS
    assert sepolia.transactions == []
    assert arc.transactions == []


def test_transfer_submit_rejected(engine, base, account, balances_matcher, requests_mock, gateway_api):
    requests_mock.post(f"{gateway_api.session.api_url}/v1/transfer", status_code=400, text="bad signature")

    with pytest.raises(GatewayTransferFailedError) as exc_info:
        engine.transfer(10_000_000, "base", RECIPIENT, account, candidate_chains=["sepolia"])

    assert exc_info.value.stage == "submit"
    assert base.transactions == []


def test_transfer_mint_reverted(engine, base, account, balances_matcher, transfer_matcher):
    base.fail_functions.add("gatewayMint")

    with pytest.raises(GatewayTransferFailedError) as exc_info:
        engine.transfer(10_000_000, "base", RECIPIENT, account, candidate_chains=["sepolia"])

    assert exc_info.value.stage == "mint"


def test_execute_transfer_rejects_destination_source(engine, account):
    route = TransferRoute(source_allocations=[SourceAllocation("base", 6, 1_000_000)], total_amount=1_000_000, estimated_fee=0)

    with pytest.raises(ValidationError):
        engine.execute_transfer(route, RECIPIENT, "base", account)


def test_transfer_fee_not_covered(engine, base, account, balances_matcher, transfer_matcher):
    """A route that drains the unified balance is refused before any intent is submitted."""
    with pytest.raises(GatewayInsufficientBalanceError) as exc_info:
        engine.transfer(35_000_000, "base", RECIPIENT, account, candidate_chains=["sepolia", "arc"])

    assert exc_info.value.required == 35_000_000 + 2_010_000
    assert exc_info.value.available == 35_000_000
    assert transfer_matcher.call_count == 0
    assert base.transactions == []


def test_deposit_receipt_waits_clipped_to_deadline(engine, sepolia, account, clock, monkeypatch):
    timeouts = []
    wait_for_receipt = sepolia.wait_for_receipt

    def _wait(tx_hash, timeout=None):
        timeouts.append(timeout)
        return wait_for_receipt(tx_hash, timeout=timeout)

    monkeypatch.setattr(sepolia, "wait_for_receipt", _wait)
    deadline = Deadline(30, clock=clock)
    clock.advance(10)

    engine.deposit(5_000_000, "sepolia", account, deadline=deadline)

    # approve and deposit
    assert timeouts == [20.0, 20.0]


def test_deposit_deadline_passed(engine, sepolia, account, clock):
    deadline = Deadline(30, clock=clock)
    clock.advance(30)

    with pytest.raises(GatewayTransferFailedError, match="deadline") as exc_info:
        engine.deposit(5_000_000, "sepolia", account, deadline=deadline)

    assert exc_info.value.stage == "approve"
    assert sepolia.transactions == []


def test_transfer_deadline_passed(engine, base, account, clock, balances_matcher, transfer_matcher):
    """Nothing is signed or submitted once the deadline has passed."""
    deadline = Deadline(30, clock=clock)
    clock.advance(31)

    with pytest.raises(GatewayTransferFailedError) as exc_info:
        engine.transfer(10_000_000, "base", RECIPIENT, account, candidate_chains=["sepolia"], deadline=deadline)

    assert exc_info.value.stage == "sign"
    assert transfer_matcher.call_count == 0
    assert base.transactions == []
