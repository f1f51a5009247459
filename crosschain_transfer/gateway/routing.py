"""Pick which chains a Gateway transfer draws from.

The routing rule:

1. Drop the destination chain and every chain with zero balance
2. Fail if what is left does not cover the amount
3. Sort by balance, largest first
4. Take ``min(remaining, balance)`` from each chain until nothing remains

Sorting is stable, chains with equal balances keep the order in which they
were given. The fee is a flat :py:data:`~crosschain_transfer.gateway.constants.GATEWAY_TRANSFER_FEE`
per transfer, whatever the number of source chains. It is paid from the
same unified balance, :py:func:`check_fee_coverage` refuses routes that
leave nothing for it.

No I/O here, see :py:meth:`~crosschain_transfer.gateway.engine.GatewayRoutingEngine.plan_route`
for the version that fetches balances first.
"""

import logging
from dataclasses import dataclass

from crosschain_transfer.errors import GatewayInsufficientBalanceError, ValidationError
from crosschain_transfer.gateway.constants import GATEWAY_TRANSFER_FEE

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class GatewayDomainBalance:
    """Unified balance held on one chain."""

    #: Chain name
    chain: str

    #: Circle domain id
    domain: int

    #: Raw USDC units
    balance: int


@dataclass(slots=True, frozen=True)
class UnifiedBalance:
    """Gateway balance of an address across chains."""

    address: str

    #: Per chain balances, in the order the chains were requested
    balances: list[GatewayDomainBalance]

    @property
    def total(self) -> int:
        return sum(b.balance for b in self.balances)

    def get_balance(self, chain: str) -> int:
        for b in self.balances:
            if b.chain == chain:
                return b.balance
        return 0


@dataclass(slots=True, frozen=True)
class SourceAllocation:
    """Amount to burn from the unified balance on one chain."""

    chain: str
    domain: int
    amount: int


@dataclass(slots=True, frozen=True)
class TransferRoute:
    """Where a Gateway transfer takes its funds from.

    Allocations add up to :py:attr:`total_amount` and never include the
    destination chain.
    """

    source_allocations: list[SourceAllocation]

    #: Requested amount, raw USDC units
    total_amount: int

    #: Flat fee estimate, raw USDC units
    estimated_fee: int

    @property
    def source_chains(self) -> list[str]:
        return [a.chain for a in self.source_allocations]


def compute_route(
    amount: int,
    destination_chain: str,
    balances: list[GatewayDomainBalance],
    fee: int = GATEWAY_TRANSFER_FEE,
) -> TransferRoute:
    """Greedy largest-balance-first allocation.

    Deterministic: the same balances in the same order always give the
    same route.

    :param amount:
        Raw USDC amount to move.

    :param balances:
        Candidate chains and their balances. The destination may be among
        them, it is skipped.

    :raise GatewayInsufficientBalanceError:
        Eligible balances add up to less than ``amount``.
    """
    if type(amount) is not int or amount <= 0:
        raise ValidationError(f"Amount must be a positive integer, got {amount!r}")

    eligible = [b for b in balances if b.chain != destination_chain and b.balance > 0]
    available = sum(b.balance for b in eligible)
    if available < amount:
        raise GatewayInsufficientBalanceError(amount, available)

    # sorted() is stable, ties keep candidate order
    ordered = sorted(eligible, key=lambda b: b.balance, reverse=True)

    allocations = []
    remaining = amount
    for b in ordered:
        if remaining == 0:
            break
        take = min(remaining, b.balance)
        allocations.append(SourceAllocation(chain=b.chain, domain=b.domain, amount=take))
        remaining -= take

    assert remaining == 0, f"Allocation left {remaining} unassigned"

    route = TransferRoute(source_allocations=allocations, total_amount=amount, estimated_fee=fee)
    logger.info(
        "Gateway route for %d to %s: %s, fee %d",
        amount,
        destination_chain,
        ", ".join(f"{a.chain}:{a.amount}" for a in allocations),
        fee,
    )
    return route


def check_fee_coverage(route: TransferRoute, destination_chain: str, balances: list[GatewayDomainBalance]):
    """Refuse a route whose source chains cannot also pay the flat fee.

    :py:func:`compute_route` only checks the amount. Gateway takes the fee
    out of the same unified balance, so a route that drains every eligible
    chain would be rejected after the burn intents are signed and submitted.

    :raise GatewayInsufficientBalanceError:
        Eligible balances add up to less than amount plus fee.
    """
    available = sum(b.balance for b in balances if b.chain != destination_chain and b.balance > 0)
    required = route.total_amount + route.estimated_fee
    if available < required:
        raise GatewayInsufficientBalanceError(required, available)
