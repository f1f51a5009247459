"""Minimal contract ABIs for the calls the transfer engines make.

Only the functions and events actually used are listed.
"""

#: ERC-20 subset
ERC20_ABI = [
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

#: CCTP V2 TokenMessenger.
#:
#: ``depositForBurn`` takes 7 parameters, the last two are the V2 additions
#: ``maxFee`` and ``minFinalityThreshold`` (1000 = fast, 2000 = standard).
TOKEN_MESSENGER_ABI = [
    {
        "name": "depositForBurn",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "destinationDomain", "type": "uint32"},
            {"name": "mintRecipient", "type": "bytes32"},
            {"name": "burnToken", "type": "address"},
            {"name": "destinationCaller", "type": "bytes32"},
            {"name": "maxFee", "type": "uint256"},
            {"name": "minFinalityThreshold", "type": "uint32"},
        ],
        "outputs": [{"name": "", "type": "uint64"}],
    },
    {
        "name": "DepositForBurn",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "nonce", "type": "uint64", "indexed": True},
            {"name": "burnToken", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "depositor", "type": "address", "indexed": True},
            {"name": "destinationDomain", "type": "uint32", "indexed": False},
            {"name": "mintRecipient", "type": "bytes32", "indexed": False},
            {"name": "destinationCaller", "type": "bytes32", "indexed": False},
            {"name": "message", "type": "bytes", "indexed": False},
        ],
    },
]

#: CCTP V2 MessageTransmitter
MESSAGE_TRANSMITTER_ABI = [
    {
        "name": "receiveMessage",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "message", "type": "bytes"},
            {"name": "attestation", "type": "bytes"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "usedNonces",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "nonce", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

#: Gateway wallet holding unified balance deposits
GATEWAY_WALLET_ABI = [
    {
        "name": "deposit",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "srcDomain", "type": "uint32"},
        ],
        "outputs": [],
    },
]

#: Gateway minter on the destination chain
GATEWAY_MINTER_ABI = [
    {
        "name": "gatewayMint",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "burnIntents", "type": "bytes[]"},
            {"name": "signatures", "type": "bytes[]"},
            {"name": "attestation", "type": "bytes"},
        ],
        "outputs": [],
    },
]
