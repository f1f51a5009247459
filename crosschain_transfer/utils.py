"""Address, amount and logging helpers."""

import logging
import os
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from urllib.parse import urlparse

import coloredlogs
from eth_typing import HexAddress, HexStr
from eth_utils import to_checksum_address

logger = logging.getLogger(__name__)

#: USDC uses 6 decimals on every supported chain
USDC_DECIMALS = 6

#: Native gas tokens use 18 decimals
NATIVE_DECIMALS = 18

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")

_PRIVATE_KEY_RE = re.compile(r"^(0x)?[a-fA-F0-9]{64}$")


def is_valid_address(address: str) -> bool:
    """Check for a ``0x``-prefixed 20-byte hex address.

    Checksum case is not enforced.
    """
    return isinstance(address, str) and _ADDRESS_RE.match(address) is not None


def is_valid_tx_hash(tx_hash: str) -> bool:
    return isinstance(tx_hash, str) and _TX_HASH_RE.match(tx_hash) is not None


def is_valid_private_key(key: str) -> bool:
    return isinstance(key, str) and _PRIVATE_KEY_RE.match(key) is not None


def normalise_tx_hash(tx_hash: str) -> str:
    """Lowercase and ``0x``-prefix a transaction hash."""
    if not tx_hash.startswith("0x"):
        tx_hash = f"0x{tx_hash}"
    return tx_hash.lower()


def address_to_bytes32(address: str | HexAddress) -> bytes:
    """Left-pad a 20-byte address with zero bytes to a 32-byte value.

    Used for ``mintRecipient``, ``destinationCaller`` and the Gateway
    transfer spec fields.

    Example:

    .. code-block:: python

        value = address_to_bytes32("0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238")
        assert value[:12] == b"\\x00" * 12
    """
    assert is_valid_address(address), f"Not an address: {address}"
    raw = bytes.fromhex(address[2:])
    return raw.rjust(32, b"\x00")


def bytes32_to_address(value: bytes) -> HexAddress:
    """Reverse of :py:func:`address_to_bytes32`."""
    assert len(value) == 32, f"Expected 32 bytes, got {len(value)}"
    assert value[:12] == b"\x00" * 12, f"Not a left-padded address: 0x{value.hex()}"
    return HexAddress(HexStr(to_checksum_address("0x" + value[12:].hex())))


def format_usdc(amount: int) -> str:
    """Format raw USDC units for display, e.g. ``$10.50 USDC``."""
    value = Decimal(amount) / Decimal(10**USDC_DECIMALS)
    return f"${value:,.2f} USDC"


def format_native(amount: int, symbol: str = "ETH") -> str:
    """Format raw native token units (18 decimals) for display."""
    value = Decimal(amount) / Decimal(10**NATIVE_DECIMALS)
    return f"{value:.4f} {symbol}"


def parse_usdc(value: str | Decimal | int) -> int:
    """Convert a human USDC amount like ``"12.5"`` to raw units.

    :raise ValueError:
        If the value is not a number or has more than 6 decimals.
    """
    try:
        d = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a USDC amount: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"Not a USDC amount: {value!r}")
    raw = d * (10**USDC_DECIMALS)
    if raw != raw.to_integral_value():
        raise ValueError(f"USDC amount {value} has more than {USDC_DECIMALS} decimals")
    return int(raw)


def get_url_domain(url: str) -> str:
    """Redact URL so that only domain is displayed.

    Some RPC providers use the path as an API key.
    """
    parsed = urlparse(url)
    if parsed.port in (80, 443, None):
        return parsed.hostname
    else:
        return f"{parsed.hostname}:{parsed.port}"


def setup_console_logging(
    default_log_level="warning",
    log_file: Path | None = None,
    clear_log_file=True,
) -> logging.Logger:
    """Set up coloured log output.

    - The ``LOG_LEVEL`` environment variable overrides ``default_log_level``
    - Tune down some noisy dependency library logging

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    fmt = "%(asctime)s %(name)-44s [%(threadName)s] %(message)s"
    date_fmt = "%Y-%m-%d %H:%M:%S"

    coloredlogs.install(level=numeric_level, fmt=fmt, date_fmt=date_fmt)

    if log_file:
        assert isinstance(log_file, Path), "log_file must be a Path"
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # The file always gets INFO, the env var controls only terminal output
        min_level = min(logging.INFO, numeric_level)
        file_handler = logging.FileHandler(log_file, mode="w" if clear_log_file else "a", encoding="utf-8")
        file_handler.setLevel(min_level)
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))

        root = logging.getLogger()
        root.setLevel(min_level)
        root.addHandler(file_handler)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()


def checksum(address: str) -> HexAddress:
    """Checksum an address, see :py:func:`eth_utils.to_checksum_address`."""
    return HexAddress(HexStr(to_checksum_address(address)))
