"""CCTP V2 event and message codecs.

- Decode the ``DepositForBurn`` event from a burn receipt to get the message
  that must be relayed to the destination chain
- Parse the fixed-size V2 message header to learn the domains and the nonce
- Build messages locally with :py:func:`craft_cctp_message`, used in tests

Message header layout (big endian, byte offsets)::

    0   uint32   version
    4   uint32   sourceDomain
    8   uint32   destinationDomain
    12  bytes32  nonce
    44  bytes32  sender
    76  bytes32  recipient
    108 bytes32  destinationCaller
    140 uint32   minFinalityThreshold
    144 uint32   finalityThresholdExecuted
    148 bytes    messageBody
"""

import logging
from dataclasses import dataclass

from eth_abi import decode, encode
from eth_typing import HexAddress
from eth_utils import keccak, to_checksum_address

from crosschain_transfer.cctp.constants import CCTP_BURN_MESSAGE_VERSION, CCTP_MESSAGE_VERSION, FINALITY_THRESHOLD_STANDARD
from crosschain_transfer.utils import address_to_bytes32

logger = logging.getLogger(__name__)

#: ``DepositForBurn`` event signature
DEPOSIT_FOR_BURN_SIGNATURE = "DepositForBurn(uint64,address,uint256,address,uint32,bytes32,bytes32,bytes)"

#: topic0 of the ``DepositForBurn`` event
DEPOSIT_FOR_BURN_TOPIC = keccak(text=DEPOSIT_FOR_BURN_SIGNATURE)

#: Non-indexed ``DepositForBurn`` fields in data order
_DEPOSIT_FOR_BURN_DATA_TYPES = ["uint256", "uint32", "bytes32", "bytes32", "bytes"]

#: Size of the V2 message header before the message body
MESSAGE_HEADER_SIZE = 148


@dataclass(slots=True, frozen=True)
class DepositForBurnEvent:
    """Decoded ``DepositForBurn`` event."""

    #: Nonce from the first indexed topic
    nonce: int

    #: Burned token
    burn_token: HexAddress

    #: Raw amount burned
    amount: int

    #: Account that burned
    depositor: HexAddress

    #: Destination CCTP domain
    destination_domain: int

    #: Recipient, left-padded to 32 bytes
    mint_recipient: bytes

    #: Allowed relayer, all zero for anyone
    destination_caller: bytes

    #: Message to relay with ``receiveMessage()``
    message: bytes


@dataclass(slots=True, frozen=True)
class CCTPMessageHeader:
    """Fixed header of a CCTP V2 message."""

    version: int
    source_domain: int
    destination_domain: int

    #: 32-byte nonce, all zero until assigned by the attestation service
    nonce: bytes

    sender: bytes
    recipient: bytes
    destination_caller: bytes
    min_finality_threshold: int
    finality_threshold_executed: int

    #: Message body, a burn message for token transfers
    body: bytes

    @property
    def has_nonce(self) -> bool:
        return self.nonce != b"\x00" * 32


def _topic_to_address(topic: bytes) -> HexAddress:
    return HexAddress(to_checksum_address(topic[12:]))


def decode_deposit_for_burn(log: dict) -> DepositForBurnEvent:
    """Decode one ``DepositForBurn`` log entry.

    :param log:
        Log dict with ``topics`` and ``data`` as bytes.
    """
    topics = log["topics"]
    assert len(topics) == 4, f"DepositForBurn has 3 indexed arguments, got topics {topics}"
    assert topics[0] == DEPOSIT_FOR_BURN_TOPIC, "Not a DepositForBurn log"

    amount, destination_domain, mint_recipient, destination_caller, message = decode(_DEPOSIT_FOR_BURN_DATA_TYPES, log["data"])

    return DepositForBurnEvent(
        nonce=int.from_bytes(topics[1], "big"),
        burn_token=_topic_to_address(topics[2]),
        amount=amount,
        depositor=_topic_to_address(topics[3]),
        destination_domain=destination_domain,
        mint_recipient=mint_recipient,
        destination_caller=destination_caller,
        message=message,
    )


def find_deposit_for_burn(receipt: dict, token_messenger: str | None = None) -> DepositForBurnEvent | None:
    """Find the ``DepositForBurn`` event in a burn receipt.

    :param token_messenger:
        Only accept logs emitted by this contract.

    :return:
        The first matching event, or ``None``.
    """
    for log in receipt["logs"]:
        topics = log["topics"]
        if not topics or topics[0] != DEPOSIT_FOR_BURN_TOPIC:
            continue
        if token_messenger and log["address"].lower() != token_messenger.lower():
            logger.warning("Ignoring DepositForBurn emitted by unexpected contract %s", log["address"])
            continue
        return decode_deposit_for_burn(log)
    return None


def encode_deposit_for_burn_log(event: DepositForBurnEvent, token_messenger: str) -> dict:
    """Build a receipt log entry for ``event``.

    Reverse of :py:func:`decode_deposit_for_burn`, used to feed fake chains.
    """
    return {
        "address": token_messenger,
        "topics": [
            DEPOSIT_FOR_BURN_TOPIC,
            event.nonce.to_bytes(32, "big"),
            address_to_bytes32(event.burn_token),
            address_to_bytes32(event.depositor),
        ],
        "data": encode(
            _DEPOSIT_FOR_BURN_DATA_TYPES,
            [event.amount, event.destination_domain, event.mint_recipient, event.destination_caller, event.message],
        ),
    }


def parse_message_header(message: bytes) -> CCTPMessageHeader:
    """Parse the V2 message header.

    :raise ValueError:
        Message is shorter than the header.
    """
    if len(message) < MESSAGE_HEADER_SIZE:
        raise ValueError(f"CCTP message too short: {len(message)} bytes, header needs {MESSAGE_HEADER_SIZE}")

    def _uint32(offset: int) -> int:
        return int.from_bytes(message[offset : offset + 4], "big")

    return CCTPMessageHeader(
        version=_uint32(0),
        source_domain=_uint32(4),
        destination_domain=_uint32(8),
        nonce=message[12:44],
        sender=message[44:76],
        recipient=message[76:108],
        destination_caller=message[108:140],
        min_finality_threshold=_uint32(140),
        finality_threshold_executed=_uint32(144),
        body=message[MESSAGE_HEADER_SIZE:],
    )


def craft_cctp_message(
    source_domain: int,
    destination_domain: int,
    nonce: int,
    mint_recipient: str,
    amount: int,
    burn_token: str,
    message_sender: str,
    token_messenger: str,
    destination_caller: bytes = b"\x00" * 32,
    max_fee: int = 0,
    min_finality_threshold: int = FINALITY_THRESHOLD_STANDARD,
) -> bytes:
    """Build a CCTP V2 burn message.

    The output has the same layout as a message the attestation service
    signs, so it can be fed to :py:func:`parse_message_header`.
    """
    messenger = address_to_bytes32(token_messenger)

    body = b"".join(
        [
            CCTP_BURN_MESSAGE_VERSION.to_bytes(4, "big"),
            address_to_bytes32(burn_token),
            address_to_bytes32(mint_recipient),
            amount.to_bytes(32, "big"),
            address_to_bytes32(message_sender),
            max_fee.to_bytes(32, "big"),
            # feeExecuted, expirationBlock
            (0).to_bytes(32, "big"),
            (0).to_bytes(32, "big"),
        ]
    )

    header = b"".join(
        [
            CCTP_MESSAGE_VERSION.to_bytes(4, "big"),
            source_domain.to_bytes(4, "big"),
            destination_domain.to_bytes(4, "big"),
            nonce.to_bytes(32, "big"),
            messenger,
            messenger,
            destination_caller,
            min_finality_threshold.to_bytes(4, "big"),
            min_finality_threshold.to_bytes(4, "big"),
        ]
    )
    assert len(header) == MESSAGE_HEADER_SIZE
    return header + body
