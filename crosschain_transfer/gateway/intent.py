"""Gateway burn intents.

A burn intent authorises the Gateway to spend ``value`` of the signer's
unified balance on the source domain and mint it on the destination domain.
Each intent is signed as EIP-712 typed data and ABI encoded for the
``gatewayMint()`` call.

Example::

    intent = create_burn_intent(SEPOLIA, ARC, amount=5_000_000, depositor=account.address,
                                recipient=account.address, max_block_height=block + 1000)
    signature = sign_burn_intent(intent, account)
    encoded = intent.encode()
"""

import os
from dataclasses import dataclass

from eth_abi import encode
from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from web3 import Web3

from crosschain_transfer.chain import ChainConfig
from crosschain_transfer.gateway.constants import (
    DEFAULT_MAX_FEE,
    GATEWAY_EIP712_DOMAIN,
    GATEWAY_MINTER_ADDRESS,
    GATEWAY_WALLET_ADDRESS,
    TRANSFER_SPEC_VERSION,
)
from crosschain_transfer.utils import address_to_bytes32, checksum

#: EIP-712 type definitions for a burn intent
BURN_INTENT_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
    ],
    "TransferSpec": [
        {"name": "version", "type": "uint32"},
        {"name": "sourceDomain", "type": "uint32"},
        {"name": "destinationDomain", "type": "uint32"},
        {"name": "sourceContract", "type": "bytes32"},
        {"name": "destinationContract", "type": "bytes32"},
        {"name": "sourceToken", "type": "bytes32"},
        {"name": "destinationToken", "type": "bytes32"},
        {"name": "sourceDepositor", "type": "bytes32"},
        {"name": "destinationRecipient", "type": "bytes32"},
        {"name": "sourceSigner", "type": "bytes32"},
        {"name": "destinationCaller", "type": "bytes32"},
        {"name": "value", "type": "uint256"},
        {"name": "salt", "type": "bytes32"},
        {"name": "hookData", "type": "bytes"},
    ],
    "BurnIntent": [
        {"name": "maxBlockHeight", "type": "uint256"},
        {"name": "maxFee", "type": "uint256"},
        {"name": "spec", "type": "TransferSpec"},
    ],
}

#: ABI type of an encoded burn intent, ``(maxBlockHeight, maxFee, spec)``
BURN_INTENT_ABI_TYPE = "(uint256,uint256,(uint32,uint32,uint32,bytes32,bytes32,bytes32,bytes32,bytes32,bytes32,bytes32,bytes32,uint256,bytes32,bytes))"

_ZERO_BYTES32 = b"\x00" * 32


@dataclass(slots=True, frozen=True)
class TransferSpec:
    """What moves where. Address fields are left-padded 32-byte values."""

    version: int
    source_domain: int
    destination_domain: int
    source_contract: bytes
    destination_contract: bytes
    source_token: bytes
    destination_token: bytes
    source_depositor: bytes
    destination_recipient: bytes
    source_signer: bytes
    destination_caller: bytes

    #: Raw USDC amount
    value: int

    #: Random 32 bytes making each intent unique
    salt: bytes

    hook_data: bytes = b""

    def as_typed_message(self) -> dict:
        return {
            "version": self.version,
            "sourceDomain": self.source_domain,
            "destinationDomain": self.destination_domain,
            "sourceContract": self.source_contract,
            "destinationContract": self.destination_contract,
            "sourceToken": self.source_token,
            "destinationToken": self.destination_token,
            "sourceDepositor": self.source_depositor,
            "destinationRecipient": self.destination_recipient,
            "sourceSigner": self.source_signer,
            "destinationCaller": self.destination_caller,
            "value": self.value,
            "salt": self.salt,
            "hookData": self.hook_data,
        }

    def as_json(self) -> dict:
        """JSON form for the Gateway API, bytes as ``0x`` hex and the value as a string."""
        data = self.as_typed_message()
        for key, value in data.items():
            if isinstance(value, bytes):
                data[key] = Web3.to_hex(value)
        data["value"] = str(self.value)
        return data

    def as_abi_tuple(self) -> tuple:
        return (
            self.version,
            self.source_domain,
            self.destination_domain,
            self.source_contract,
            self.destination_contract,
            self.source_token,
            self.destination_token,
            self.source_depositor,
            self.destination_recipient,
            self.source_signer,
            self.destination_caller,
            self.value,
            self.salt,
            self.hook_data,
        )


@dataclass(slots=True, frozen=True)
class BurnIntent:
    """A signed-to-be authorisation to burn from the unified balance on one domain."""

    #: Intent is void after this source chain block
    max_block_height: int

    #: Max fee the signer accepts, raw USDC units
    max_fee: int

    spec: TransferSpec

    def as_typed_data(self) -> dict:
        """Full EIP-712 message for :py:func:`eth_account.messages.encode_typed_data`."""
        return {
            "types": BURN_INTENT_TYPES,
            "primaryType": "BurnIntent",
            "domain": dict(GATEWAY_EIP712_DOMAIN),
            "message": {
                "maxBlockHeight": self.max_block_height,
                "maxFee": self.max_fee,
                "spec": self.spec.as_typed_message(),
            },
        }

    def as_signable_message(self) -> SignableMessage:
        return encode_typed_data(full_message=self.as_typed_data())

    def as_json(self) -> dict:
        return {
            "maxBlockHeight": str(self.max_block_height),
            "maxFee": str(self.max_fee),
            "spec": self.spec.as_json(),
        }

    def encode(self) -> bytes:
        """ABI encode the intent for ``gatewayMint()``."""
        return encode([BURN_INTENT_ABI_TYPE], [(self.max_block_height, self.max_fee, self.spec.as_abi_tuple())])


def create_burn_intent(
    source: ChainConfig,
    destination: ChainConfig,
    amount: int,
    depositor: str,
    recipient: str,
    max_block_height: int,
    max_fee: int = DEFAULT_MAX_FEE,
    salt: bytes | None = None,
) -> BurnIntent:
    """Build a burn intent for one source allocation.

    :param depositor:
        Owner of the unified balance, also the signer.

    :param salt:
        32 random bytes. Generated when not given.
    """
    assert amount > 0, f"Bad amount {amount}"
    assert source.domain != destination.domain, f"Source and destination are both domain {source.domain}"
    if salt is None:
        salt = os.urandom(32)
    assert len(salt) == 32, f"Salt must be 32 bytes, got {len(salt)}"

    spec = TransferSpec(
        version=TRANSFER_SPEC_VERSION,
        source_domain=source.domain,
        destination_domain=destination.domain,
        source_contract=address_to_bytes32(GATEWAY_WALLET_ADDRESS),
        destination_contract=address_to_bytes32(GATEWAY_MINTER_ADDRESS),
        source_token=address_to_bytes32(source.usdc),
        destination_token=address_to_bytes32(destination.usdc),
        source_depositor=address_to_bytes32(depositor),
        destination_recipient=address_to_bytes32(recipient),
        source_signer=address_to_bytes32(depositor),
        destination_caller=_ZERO_BYTES32,
        value=amount,
        salt=salt,
    )
    return BurnIntent(max_block_height=max_block_height, max_fee=max_fee, spec=spec)


def sign_burn_intent(intent: BurnIntent, account: LocalAccount) -> bytes:
    """EIP-712 sign a burn intent.

    :return:
        65-byte signature.
    """
    signed = account.sign_message(intent.as_signable_message())
    return bytes(signed.signature)


def recover_burn_intent_signer(intent: BurnIntent, signature: bytes) -> HexAddress:
    """Address that produced ``signature`` for ``intent``."""
    return checksum(Account.recover_message(intent.as_signable_message(), signature=signature))
