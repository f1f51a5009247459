"""Circle Gateway unified USDC balance.

- :class:`GatewayRoutingEngine`: deposits, balance queries, route planning and transfers
- :class:`GatewayAPIClient`: Gateway HTTP API
- :func:`compute_route`: pure largest-balance-first route planning
- :class:`BurnIntent`: EIP-712 signed burn authorisation
"""

from crosschain_transfer.gateway.api import GatewayAPIClient
from crosschain_transfer.gateway.engine import GatewayDepositResult, GatewayRoutingEngine, GatewayTransferResult
from crosschain_transfer.gateway.intent import BurnIntent, TransferSpec, create_burn_intent, sign_burn_intent
from crosschain_transfer.gateway.routing import GatewayDomainBalance, SourceAllocation, TransferRoute, UnifiedBalance, compute_route

__all__ = [
    "BurnIntent",
    "GatewayAPIClient",
    "GatewayDepositResult",
    "GatewayDomainBalance",
    "GatewayRoutingEngine",
    "GatewayTransferResult",
    "SourceAllocation",
    "TransferRoute",
    "TransferSpec",
    "UnifiedBalance",
    "compute_route",
    "create_burn_intent",
    "sign_burn_intent",
]
