"""Move USDC between testnets with Circle CCTP V2 or Circle Gateway.

Environment variables
---------------------
- ``COMMAND``: ``transfer`` (default), ``resume``, ``status``, ``gateway-balance``,
  ``gateway-deposit`` or ``gateway-transfer``.
- ``PRIVATE_KEY``: Hex private key of the wallet (required).
- ``AMOUNT``: USDC amount as a decimal, e.g. ``10.5``.
- ``RECIPIENT``: Destination address, defaults to the wallet itself.
- ``SOURCE_CHAIN``: CCTP source chain (default: ``sepolia``).
- ``DESTINATION_CHAIN``: Destination chain (default: ``arc``).
- ``BURN_TX_HASH``: Burn transaction to resume.
- ``CHAINS``: Comma separated chains for Gateway balance, deposit chain or transfer sources.
- ``DRY_RUN``: Validate only.
- ``SKIP_CONFIRM``: Do not ask before submitting.
- ``LOG_LEVEL``: Logging level (default: ``info``).

RPC and API endpoints are read as described in :py:mod:`crosschain_transfer.config`.

Usage::

    # Wallet balances on Sepolia and Arc
    COMMAND=status PRIVATE_KEY=0x... python scripts/crosschain-transfer.py

    # Bridge 10 USDC Sepolia -> Arc
    AMOUNT=10 PRIVATE_KEY=0x... python scripts/crosschain-transfer.py

    # Finish a transfer interrupted after the burn
    COMMAND=resume BURN_TX_HASH=0x... PRIVATE_KEY=0x... python scripts/crosschain-transfer.py

    # Gateway
    COMMAND=gateway-deposit CHAINS=sepolia AMOUNT=5 PRIVATE_KEY=0x... python scripts/crosschain-transfer.py
    COMMAND=gateway-balance CHAINS=sepolia,arc PRIVATE_KEY=0x... python scripts/crosschain-transfer.py
    COMMAND=gateway-transfer DESTINATION_CHAIN=base AMOUNT=3 PRIVATE_KEY=0x... python scripts/crosschain-transfer.py
"""

import logging
import os
import sys

from eth_account import Account
from tabulate import tabulate

from crosschain_transfer.errors import ValidationError
from crosschain_transfer.orchestrator import OrchestratorResult, TransferOptions, ValidationResult, create_transfer_orchestrator, get_confirmation_time
from crosschain_transfer.state import TransferEvent, TransferIntent
from crosschain_transfer.utils import format_usdc, parse_usdc, setup_console_logging

logger = logging.getLogger(__name__)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def _env_chains() -> list[str] | None:
    value = os.environ.get("CHAINS")
    if not value:
        return None
    return [c.strip() for c in value.split(",") if c.strip()]


def _env_amount() -> int:
    amount = os.environ.get("AMOUNT")
    assert amount, "AMOUNT environment variable required"
    return parse_usdc(amount)


def print_event(event: TransferEvent):
    print(f"  {event.timestamp:%H:%M:%S} {event}")


def ask_confirmation(intent: TransferIntent, validation: ValidationResult) -> bool:
    print(f"\nFrom:      {validation.address} on {intent.source_chain}")
    print(f"To:        {intent.recipient} on {intent.destination_chain}")
    print(f"Amount:    {format_usdc(intent.amount)}")
    if validation.balances:
        print(f"Balance:   {validation.balances.format_usdc()}, {validation.balances.format_native()}")
    answer = input("Proceed? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def print_result(result: OrchestratorResult):
    if not result.success:
        print(f"\nFailed ({result.error_type}): {result.error}")
        for name, url in result.explorer_urls.items():
            print(f"  {name}: {url}")
        return

    if result.dry_run:
        print("\nDry run passed validation, nothing was submitted")
        return

    print("\nDone")
    for name, url in result.explorer_urls.items():
        print(f"  {name}: {url}")


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    command = os.environ.get("COMMAND", "transfer")
    private_key = os.environ.get("PRIVATE_KEY")
    assert private_key, "PRIVATE_KEY environment variable required"

    address = Account.from_key(private_key).address
    source_chain = os.environ.get("SOURCE_CHAIN", "sepolia")
    destination_chain = os.environ.get("DESTINATION_CHAIN", "arc")
    recipient = os.environ.get("RECIPIENT", address)
    skip_confirm = _env_flag("SKIP_CONFIRM")

    orchestrator = create_transfer_orchestrator(
        observer=print_event,
        confirm=None if skip_confirm else ask_confirmation,
    )

    print(f"Wallet: {address}")
    print(f"Command: {command}")

    # Bad input is reported like any other failure, not as a traceback
    try:
        amount = _env_amount() if command in ("transfer", "gateway-deposit", "gateway-transfer") else None
        if command == "transfer":
            intent = TransferIntent(
                amount=amount,
                recipient=recipient,
                source_chain=source_chain,
                destination_chain=destination_chain,
            )
    except (ValidationError, ValueError) as e:
        print(f"\nInvalid input: {e}")
        sys.exit(1)

    if command == "status":
        result = orchestrator.get_status(address)
        if result.success:
            print(tabulate(result.result.as_rows(), headers=["Chain", "USDC", "Gas"], tablefmt="simple"))

    elif command == "transfer":
        options = TransferOptions(skip_confirm=skip_confirm, dry_run=_env_flag("DRY_RUN"))
        result = orchestrator.transfer(intent, private_key, options)

    elif command == "resume":
        burn_tx_hash = os.environ.get("BURN_TX_HASH")
        assert burn_tx_hash, "BURN_TX_HASH environment variable required"
        result = orchestrator.resume(burn_tx_hash, private_key, source_chain=source_chain, destination_chain=destination_chain)

    elif command == "gateway-balance":
        result = orchestrator.gateway_balance(address, _env_chains())
        if result.success:
            rows = [[b.chain, b.domain, format_usdc(b.balance)] for b in result.result.balances]
            print(tabulate(rows, headers=["Chain", "Domain", "Balance"], tablefmt="simple"))
            print(f"Total: {format_usdc(result.result.total)}")

    elif command == "gateway-deposit":
        chains = _env_chains() or [source_chain]
        assert len(chains) == 1, f"Deposit goes to one chain, got {chains}"
        result = orchestrator.gateway_deposit(amount, chains[0], private_key)
        if result.success:
            print(f"Wait ~{get_confirmation_time(chains[0])} for confirmations before the balance is available")

    elif command == "gateway-transfer":
        result = orchestrator.gateway_transfer(amount, destination_chain, recipient, private_key, _env_chains())
        if result.success:
            print(f"Sources: {', '.join(result.result.source_chains)}")

    else:
        raise AssertionError(f"Unknown COMMAND: {command}")

    print_result(result)
    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
