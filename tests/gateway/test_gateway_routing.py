"""Greedy largest-balance-first route selection."""

import itertools

import pytest

from crosschain_transfer.errors import GatewayInsufficientBalanceError, ValidationError
from crosschain_transfer.gateway.constants import GATEWAY_TRANSFER_FEE
from crosschain_transfer.gateway.routing import GatewayDomainBalance, SourceAllocation, UnifiedBalance, check_fee_coverage, compute_route


def _balances(**kwargs) -> list[GatewayDomainBalance]:
    domains = {"sepolia": 0, "avalanche": 1, "base": 6, "arc": 26}
    return [GatewayDomainBalance(chain=name, domain=domains[name], balance=amount) for name, amount in kwargs.items()]


def test_single_source():
    """One chain with enough balance covers the whole amount."""
    route = compute_route(10_000_000, "arc", _balances(sepolia=50_000_000))

    assert route.source_allocations == [SourceAllocation(chain="sepolia", domain=0, amount=10_000_000)]
    assert route.total_amount == 10_000_000


def test_largest_balance_first():
    """Larger balance is drained first, the rest comes from the next chain."""
    route = compute_route(30_000_000, "base", _balances(arc=15_000_000, sepolia=20_000_000))

    assert route.source_allocations == [
        SourceAllocation(chain="sepolia", domain=0, amount=20_000_000),
        SourceAllocation(chain="arc", domain=26, amount=10_000_000),
    ]
    assert route.source_chains == ["sepolia", "arc"]


def test_destination_excluded():
    """Funds on the destination chain are never used, even when they would suffice."""
    route = compute_route(5_000_000, "arc", _balances(arc=100_000_000, sepolia=5_000_000))

    assert route.source_chains == ["sepolia"]


def test_destination_excluded_insufficient():
    with pytest.raises(GatewayInsufficientBalanceError) as exc_info:
        compute_route(10_000_000, "arc", _balances(arc=100_000_000, sepolia=5_000_000))

    assert exc_info.value.required == 10_000_000
    assert exc_info.value.available == 5_000_000


def test_zero_balances_skipped():
    route = compute_route(1_000_000, "arc", _balances(base=0, sepolia=1_000_000))
    assert route.source_chains == ["sepolia"]


def test_exact_total():
    """Draining every eligible chain is allowed."""
    route = compute_route(6_000_000, "arc", _balances(sepolia=4_000_000, base=2_000_000))
    assert sum(a.amount for a in route.source_allocations) == 6_000_000


def test_ties_keep_candidate_order():
    route = compute_route(15_000_000, "arc", _balances(base=10_000_000, sepolia=10_000_000))
    assert route.source_chains == ["base", "sepolia"]

    route = compute_route(15_000_000, "arc", _balances(sepolia=10_000_000, base=10_000_000))
    assert route.source_chains == ["sepolia", "base"]


def test_flat_fee():
    """Fee does not depend on the number of source chains."""
    one = compute_route(1_000_000, "arc", _balances(sepolia=10_000_000))
    two = compute_route(15_000_000, "arc", _balances(sepolia=10_000_000, base=10_000_000))

    assert one.estimated_fee == two.estimated_fee == GATEWAY_TRANSFER_FEE


def test_deterministic():
    balances = _balances(sepolia=7_000_000, base=9_000_000, avalanche=3_000_000)
    assert compute_route(12_000_000, "arc", balances) == compute_route(12_000_000, "arc", balances)


@pytest.mark.parametrize("amount", [0, -5, 1.0])
def test_bad_amount(amount):
    with pytest.raises(ValidationError):
        compute_route(amount, "arc", _balances(sepolia=10_000_000))


def test_succeeds_iff_enough_balance():
    """Routing fails exactly when eligible balances are short, and never over-allocates."""
    values = [0, 1_000_000, 2_500_000, 4_000_000]
    for sepolia, base, arc in itertools.product(values, repeat=3):
        balances = _balances(sepolia=sepolia, base=base, arc=arc)
        eligible = sepolia + base
        for amount in (1, 2_500_000, 5_000_000, 8_000_000):
            if eligible >= amount:
                route = compute_route(amount, "arc", balances)
                assert sum(a.amount for a in route.source_allocations) == amount
                for a in route.source_allocations:
                    assert a.chain != "arc"
                    assert 0 < a.amount <= {"sepolia": sepolia, "base": base}[a.chain]
            else:
                with pytest.raises(GatewayInsufficientBalanceError):
                    compute_route(amount, "arc", balances)


def test_unified_balance():
    unified = UnifiedBalance(address="0x000000000000000000000000000000000000dEaD", balances=_balances(sepolia=1_500_000, arc=500_000))

    assert unified.total == 2_000_000
    assert unified.get_balance("arc") == 500_000
    assert unified.get_balance("base") == 0


def test_fee_coverage():
    """Draining every eligible chain leaves nothing for the fee."""
    balances = _balances(sepolia=20_000_000, arc=15_000_000, base=50_000_000)
    route = compute_route(35_000_000, "base", balances)

    with pytest.raises(GatewayInsufficientBalanceError) as exc_info:
        check_fee_coverage(route, "base", balances)

    assert exc_info.value.required == 35_000_000 + GATEWAY_TRANSFER_FEE
    assert exc_info.value.available == 35_000_000


def test_fee_coverage_exact():
    balances = _balances(sepolia=20_000_000, arc=15_000_000)
    route = compute_route(35_000_000 - GATEWAY_TRANSFER_FEE, "base", balances)

    check_fee_coverage(route, "base", balances)
