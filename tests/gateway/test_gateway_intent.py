"""Burn intent signing and encoding."""

import pytest
from eth_abi import decode

from crosschain_transfer.chain import ARC, BASE_SEPOLIA, SEPOLIA
from crosschain_transfer.gateway.constants import GATEWAY_MINTER_ADDRESS, GATEWAY_WALLET_ADDRESS
from crosschain_transfer.gateway.intent import BURN_INTENT_ABI_TYPE, create_burn_intent, recover_burn_intent_signer, sign_burn_intent
from crosschain_transfer.utils import address_to_bytes32

RECIPIENT = "0x000000000000000000000000000000000000dEaD"

SALT = b"\x07" * 32


@pytest.fixture()
def intent(account):
    return create_burn_intent(
        SEPOLIA,
        BASE_SEPOLIA,
        amount=3_000_000,
        depositor=account.address,
        recipient=RECIPIENT,
        max_block_height=5_001_000,
        max_fee=2_010_000,
        salt=SALT,
    )


def test_create_burn_intent(intent, account):
    spec = intent.spec
    assert spec.source_domain == 0
    assert spec.destination_domain == 6
    assert spec.source_contract == address_to_bytes32(GATEWAY_WALLET_ADDRESS)
    assert spec.destination_contract == address_to_bytes32(GATEWAY_MINTER_ADDRESS)
    assert spec.source_token == address_to_bytes32(SEPOLIA.usdc)
    assert spec.destination_token == address_to_bytes32(BASE_SEPOLIA.usdc)
    assert spec.source_depositor == spec.source_signer == address_to_bytes32(account.address)
    assert spec.destination_caller == b"\x00" * 32
    assert spec.value == 3_000_000


def test_create_burn_intent_random_salt(account):
    one = create_burn_intent(SEPOLIA, ARC, 1, account.address, RECIPIENT, 100)
    two = create_burn_intent(SEPOLIA, ARC, 1, account.address, RECIPIENT, 100)
    assert one.spec.salt != two.spec.salt


def test_create_burn_intent_same_domain(account):
    with pytest.raises(AssertionError):
        create_burn_intent(SEPOLIA, SEPOLIA, 1, account.address, RECIPIENT, 100)


def test_sign_burn_intent(intent, account):
    """Signature recovers to the depositor."""
    signature = sign_burn_intent(intent, account)

    assert len(signature) == 65
    assert recover_burn_intent_signer(intent, signature) == account.address


def test_signature_covers_amount(intent, account):
    """Changing the amount invalidates the signature."""
    signature = sign_burn_intent(intent, account)
    other = create_burn_intent(SEPOLIA, BASE_SEPOLIA, 3_000_001, account.address, RECIPIENT, 5_001_000, 2_010_000, SALT)

    assert recover_burn_intent_signer(other, signature) != account.address


def test_encode(intent):
    """Encoding is the ABI tuple gatewayMint() decodes."""
    (max_block_height, max_fee, spec) = decode([BURN_INTENT_ABI_TYPE], intent.encode())[0]

    assert max_block_height == 5_001_000
    assert max_fee == 2_010_000
    assert spec[0] == 1
    assert spec[1:3] == (0, 6)
    assert spec[8] == address_to_bytes32(RECIPIENT)
    assert spec[11] == 3_000_000
    assert spec[12] == SALT
    assert spec[13] == b""


def test_as_json(intent):
    data = intent.as_json()

    assert data["maxBlockHeight"] == "5001000"
    assert data["maxFee"] == "2010000"
    assert data["spec"]["value"] == "3000000"
    assert data["spec"]["sourceDomain"] == 0
    assert data["spec"]["salt"] == "0x" + "07" * 32
    assert data["spec"]["hookData"] == "0x"
