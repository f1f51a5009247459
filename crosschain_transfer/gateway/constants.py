"""Circle Gateway testnet constants.

- `Gateway overview <https://developers.circle.com/gateway/overview>`__
- `Contract addresses <https://developers.circle.com/gateway/references/contract-addresses>`__
"""

from eth_typing import HexAddress

#: Gateway API, testnet
GATEWAY_API_TESTNET_URL = "https://gateway-api-testnet.circle.com"

#: GatewayWallet holding the unified balance deposits, same address on every testnet chain
GATEWAY_WALLET_ADDRESS = HexAddress("0x0077777d7EBA4688BDeF3E311b846F25870A19B9")

#: GatewayMinter doing the instant mint, same address on every testnet chain
GATEWAY_MINTER_ADDRESS = HexAddress("0x0022222ABE238Cc2C7Bb1f21003F0a260052475B")

#: Chains with Gateway contracts, see :py:data:`crosschain_transfer.chain.CHAINS`
GATEWAY_CHAINS = ("sepolia", "arc", "base", "avalanche")

#: Chains queried for a unified balance when the caller does not list any
DEFAULT_BALANCE_CHAINS = ("sepolia", "arc")

#: Smallest deposit accepted, raw USDC units.
#:
#: 2.01 USDC, a deposit must cover at least one transfer fee.
GATEWAY_MIN_DEPOSIT = 2_010_000

#: Flat fee per Gateway transfer, raw USDC units.
#:
#: Charged once per transfer no matter how many source chains the route
#: pulls from. This is a client-side estimate, not a cost model.
GATEWAY_TRANSFER_FEE = 2_010_000

#: ``maxFee`` put in each signed burn intent
DEFAULT_MAX_FEE = 2_010_000

#: Burn intents expire this many blocks after the current source block
MAX_BLOCK_HEIGHT_BUFFER = 1000

#: TransferSpec version
TRANSFER_SPEC_VERSION = 1

#: EIP-712 domain the GatewayWallet verifies burn intent signatures against
GATEWAY_EIP712_DOMAIN = {
    "name": "GatewayWallet",
    "version": "1",
}
