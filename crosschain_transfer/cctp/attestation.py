"""Circle CCTP attestation service client.

After ``depositForBurn()`` is mined on the source chain, Circle's Iris
service observes the burn and signs it once the source block reaches
finality. The signature is needed to call ``receiveMessage()`` on the
destination chain.

The Iris API goes through these states for a burn transaction:

- **404**: transaction not yet indexed by Circle
- **pending_confirmations**: burn detected, waiting for block finality
- **complete**: attestation signed and ready

:py:meth:`AttestationClient.fetch_attestation` does a single request and
returns ``None`` while the attestation is not ready, so it can be used as a
:py:class:`~crosschain_transfer.polling.BackoffPoller` probe.

Example::

    from crosschain_transfer.cctp.attestation import AttestationClient
    from crosschain_transfer.polling import BackoffPoller
    from crosschain_transfer.session import create_api_session

    client = AttestationClient(create_api_session("https://iris-api-sandbox.circle.com/v1"))
    attestation = BackoffPoller().poll(lambda: client.fetch_attestation("0x..."))
"""

import logging
from dataclasses import dataclass

import requests
from hexbytes import HexBytes

from crosschain_transfer.errors import TransferFailedError
from crosschain_transfer.session import APISession
from crosschain_transfer.utils import normalise_tx_hash

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating the burn is not indexed yet
HTTP_NOT_FOUND = 404

#: Seconds before a single HTTP request times out
REQUEST_TIMEOUT = 30


@dataclass(slots=True, frozen=True)
class Attestation:
    """Signed attestation for a CCTP burn.

    Contains what is needed to call ``receiveMessage()`` on the destination
    chain's MessageTransmitter.
    """

    #: The signed attestation bytes from Circle's Iris service
    signature: bytes

    #: The message bytes to relay.
    #:
    #: Taken from the attestation response when the service returns it, as
    #: that copy carries the assigned nonce. Otherwise the message decoded
    #: from the burn event.
    encoded_message: bytes

    #: Status from the Iris API, ``"complete"``
    status: str = "complete"


class AttestationClient:
    """Iris attestation API client.

    :param session:
        Session carrying the Iris API base URL,
        see :py:func:`~crosschain_transfer.session.create_api_session`.
    """

    def __init__(self, session: APISession):
        self.session = session

    def __repr__(self) -> str:
        return f"<AttestationClient {self.session.api_url}>"

    def get_attestation_url(self, burn_tx_hash: str) -> str:
        return f"{self.session.api_url}/attestations/{normalise_tx_hash(burn_tx_hash)}"

    def fetch_attestation(self, burn_tx_hash: str, message: bytes | None = None) -> Attestation | None:
        """Do one attestation lookup.

        :param burn_tx_hash:
            Transaction hash of the ``depositForBurn()`` call.

        :param message:
            Message decoded from the burn event, used when the response
            carries no message of its own.

        :return:
            :py:class:`Attestation` once complete, ``None`` while pending.

        :raise TransferFailedError:
            Non-retryable HTTP error or malformed response.
        """
        url = self.get_attestation_url(burn_tx_hash)

        try:
            response = self.session.get(url, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise TransferFailedError("attestation", f"attestation request failed: {e}", burn_tx_hash) from e

        # Not indexed yet, retry
        if response.status_code == HTTP_NOT_FOUND:
            logger.debug("Attestation not yet indexed (404) for %s", burn_tx_hash)
            return None

        if not response.ok:
            raise TransferFailedError(
                "attestation",
                f"attestation service returned HTTP {response.status_code}: {response.text[:200]}",
                burn_tx_hash,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransferFailedError("attestation", f"attestation service returned invalid JSON: {response.text[:200]}", burn_tx_hash) from e

        status = data.get("status", "")
        attestation_hex = data.get("attestation")

        if status != "complete" or not attestation_hex or attestation_hex == "PENDING":
            logger.debug("Attestation status for %s: %s (waiting for 'complete')", burn_tx_hash, status)
            return None

        message_hex = data.get("message")
        if message_hex:
            encoded_message = bytes(HexBytes(message_hex))
        elif message is not None:
            encoded_message = message
        else:
            raise TransferFailedError("attestation", "attestation response has no message and none was decoded from the burn", burn_tx_hash)

        logger.info("Attestation complete for %s", burn_tx_hash)
        return Attestation(
            signature=bytes(HexBytes(attestation_hex)),
            encoded_message=encoded_message,
            status=status,
        )
