"""Runtime settings read from environment variables.

==========================  ==================================================
Variable                    Meaning
==========================  ==================================================
``SEPOLIA_RPC_URL``         Ethereum Sepolia JSON-RPC endpoint
``ARC_RPC_URL``             Arc testnet JSON-RPC endpoint
``BASE_SEPOLIA_RPC_URL``    Base Sepolia JSON-RPC endpoint
``AVALANCHE_FUJI_RPC_URL``  Avalanche Fuji JSON-RPC endpoint
``IRIS_API_URL``            Circle attestation API base URL
``GATEWAY_API_URL``         Circle Gateway API base URL
``CIRCLE_GATEWAY_API_KEY``  Gateway API key, needed for balance queries
``ATTESTATION_TIMEOUT``     Seconds to wait for an attestation
``TRANSFER_TIMEOUT``        Overall seconds budget for one transfer
==========================  ==================================================
"""

import os
from dataclasses import dataclass, field

from crosschain_transfer.cctp.constants import DEFAULT_ATTESTATION_POLL_INTERVAL, DEFAULT_ATTESTATION_TIMEOUT, IRIS_API_SANDBOX_URL
from crosschain_transfer.chain import CHAINS
from crosschain_transfer.gateway.constants import GATEWAY_API_TESTNET_URL

#: Environment variable holding the RPC URL of each chain
RPC_URL_ENV_VARS = {
    "sepolia": "SEPOLIA_RPC_URL",
    "arc": "ARC_RPC_URL",
    "base": "BASE_SEPOLIA_RPC_URL",
    "avalanche": "AVALANCHE_FUJI_RPC_URL",
}

#: Overall transfer budget when ``TRANSFER_TIMEOUT`` is not set.
#:
#: Covers the attestation wait plus the burn and mint confirmations.
DEFAULT_TRANSFER_TIMEOUT = 900.0

#: Native balance below which a transfer is refused, 0.001 ETH.
#:
#: Testnet gas is cheap, this covers approve, burn and mint.
DEFAULT_MIN_GAS_BALANCE = 10**15


def _read_float(env: dict, name: str, default: float) -> float:
    value = env.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number of seconds, got {value!r}") from None


@dataclass(slots=True)
class TransferSettings:
    """Endpoints and limits for :py:func:`~crosschain_transfer.orchestrator.create_transfer_orchestrator`."""

    #: RPC URL per chain name, chains missing here use their public default
    rpc_urls: dict[str, str] = field(default_factory=dict)

    iris_api_url: str = IRIS_API_SANDBOX_URL

    gateway_api_url: str = GATEWAY_API_TESTNET_URL

    gateway_api_key: str | None = None

    attestation_timeout: float = DEFAULT_ATTESTATION_TIMEOUT

    attestation_poll_interval: float = DEFAULT_ATTESTATION_POLL_INTERVAL

    transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT

    #: Minimum native balance on the source chain, wei
    min_gas_balance: int = DEFAULT_MIN_GAS_BALANCE

    def get_rpc_url(self, chain: str) -> str:
        return self.rpc_urls.get(chain) or CHAINS[chain].rpc_url

    @classmethod
    def from_env(cls, env: dict | None = None) -> "TransferSettings":
        """Read settings from the environment.

        :param env:
            Mapping to read instead of :py:data:`os.environ`.
        """
        if env is None:
            env = os.environ

        rpc_urls = {}
        for chain, var in RPC_URL_ENV_VARS.items():
            value = env.get(var)
            if value:
                rpc_urls[chain] = value

        return cls(
            rpc_urls=rpc_urls,
            iris_api_url=env.get("IRIS_API_URL") or IRIS_API_SANDBOX_URL,
            gateway_api_url=env.get("GATEWAY_API_URL") or GATEWAY_API_TESTNET_URL,
            gateway_api_key=env.get("CIRCLE_GATEWAY_API_KEY") or None,
            attestation_timeout=_read_float(env, "ATTESTATION_TIMEOUT", DEFAULT_ATTESTATION_TIMEOUT),
            transfer_timeout=_read_float(env, "TRANSFER_TIMEOUT", DEFAULT_TRANSFER_TIMEOUT),
        )
