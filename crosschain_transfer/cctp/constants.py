"""CCTP V2 protocol constants.

- `Contract addresses <https://developers.circle.com/cctp/references/contract-addresses>`__
- `Attestation API <https://developers.circle.com/api-reference/cctp/all/get-attestation>`__
"""

#: Circle Iris attestation API, sandbox (testnet) environment
IRIS_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com/v1"

#: Circle Iris attestation API, mainnet
IRIS_API_URL = "https://iris-api.circle.com/v1"

#: Max fee the burner is willing to pay for the transfer, raw USDC units.
#:
#: 500 = 0.0005 USDC
DEFAULT_MAX_FEE = 500

#: ``minFinalityThreshold`` value for a Fast Transfer
FINALITY_THRESHOLD_FAST = 1000

#: ``minFinalityThreshold`` value for a Standard Transfer.
#:
#: Supported on all chains, including Arc.
FINALITY_THRESHOLD_STANDARD = 2000

#: Zero destination caller, anyone can relay ``receiveMessage()``
ANY_DESTINATION_CALLER = "0x0000000000000000000000000000000000000000"

#: Seconds to wait for an attestation
DEFAULT_ATTESTATION_TIMEOUT = 300.0

#: Seconds before the first attestation re-poll
DEFAULT_ATTESTATION_POLL_INTERVAL = 2.0

#: Message version of CCTP V2 messages
CCTP_MESSAGE_VERSION = 1

#: Burn message body version of CCTP V2
CCTP_BURN_MESSAGE_VERSION = 1
