"""Circle Cross-Chain Transfer Protocol V2.

USDC is burned on the source chain, Circle's attestation service signs the
burn and the signed message mints USDC on the destination chain.

- :class:`CCTPTransferEngine`: burn, attestation and mint for one chain pair
- :class:`AttestationClient`: Iris attestation API
- :class:`Attestation`: signed message ready for ``receiveMessage()``
- :func:`parse_message_header`: read domains and nonce from a message
"""

from crosschain_transfer.cctp.attestation import Attestation, AttestationClient
from crosschain_transfer.cctp.engine import BurnResult, CCTPConfig, CCTPTransferEngine, CCTPTransferResult, MintResult
from crosschain_transfer.cctp.message import CCTPMessageHeader, DepositForBurnEvent, parse_message_header

__all__ = [
    "Attestation",
    "AttestationClient",
    "BurnResult",
    "CCTPConfig",
    "CCTPMessageHeader",
    "CCTPTransferEngine",
    "CCTPTransferResult",
    "DepositForBurnEvent",
    "MintResult",
    "parse_message_header",
]
