"""Circle Gateway API client.

Typed wrappers for the two Gateway endpoints the routing engine needs:

- ``GET /v1/balances``: unified balance per domain
- ``POST /v1/transfer``: submit signed burn intents, receive the mint attestation

Uses :py:func:`~crosschain_transfer.session.create_api_session` for
HTTP connections with rate limiting and retry logic.

Example::

    from crosschain_transfer.gateway.api import GatewayAPIClient
    from crosschain_transfer.session import create_api_session

    api = GatewayAPIClient(create_api_session("https://gateway-api-testnet.circle.com"))
    balances = api.fetch_balances("0xAbc...", domains=[0, 26])
    for domain, amount in balances.items():
        print(f"Domain {domain}: {amount} raw USDC")
"""

import logging
from decimal import ROUND_DOWN, Decimal, InvalidOperation

import requests
from hexbytes import HexBytes

from crosschain_transfer.errors import GatewayError, GatewayTransferFailedError
from crosschain_transfer.session import APISession
from crosschain_transfer.utils import USDC_DECIMALS

logger = logging.getLogger(__name__)

#: Seconds before a single HTTP request times out
REQUEST_TIMEOUT = 30


def parse_balance_amount(value: str) -> int:
    """Convert a decimal USDC string such as ``"1000.50"`` to raw units.

    Parsed with :py:class:`~decimal.Decimal`, never through a float.
    Digits beyond the 6th decimal are truncated.

    :raise GatewayError:
        Not a number or negative.
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise GatewayError(f"Gateway returned a malformed balance: {value!r}") from e

    if not amount.is_finite() or amount < 0:
        raise GatewayError(f"Gateway returned a malformed balance: {value!r}")

    raw = (amount * (10**USDC_DECIMALS)).to_integral_value(rounding=ROUND_DOWN)
    return int(raw)


class GatewayAPIClient:
    """Circle Gateway HTTP API.

    :param session:
        Session carrying the Gateway API base URL and the API key.
    """

    def __init__(self, session: APISession):
        self.session = session

    def __repr__(self) -> str:
        return f"<GatewayAPIClient {self.session.api_url}>"

    def fetch_balances(self, address: str, domains: list[int]) -> dict[int, int]:
        """Fetch the unified balance of ``address`` on each domain.

        One request for the whole domain set.

        :return:
            Raw USDC balance per domain. Domains missing from the response
            have zero balance.

        :raise GatewayError:
            HTTP error or malformed response.
        """
        assert domains, "No domains given"
        url = f"{self.session.api_url}/v1/balances"
        params = {
            "address": address,
            "domains": ",".join(str(d) for d in domains),
        }

        try:
            response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise GatewayError(f"Failed to query Gateway balance: {e}") from e

        if not response.ok:
            raise GatewayError(f"Gateway API error: HTTP {response.status_code} - {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(f"Gateway balance response is not JSON: {response.text[:200]}") from e

        raw_balances = data.get("balances")
        if not isinstance(raw_balances, dict):
            raise GatewayError(f"Gateway balance response has no balances: {data}")

        result = {}
        for domain in domains:
            value = raw_balances.get(str(domain), "0")
            result[domain] = parse_balance_amount(value)

        logger.debug("Gateway balances for %s: %s", address, result)
        return result

    def submit_transfer(self, burn_intents: list[dict], signatures: list[str]) -> bytes:
        """Submit signed burn intents in one batch.

        :param burn_intents:
            JSON form of each intent, see :py:meth:`~crosschain_transfer.gateway.intent.BurnIntent.as_json`.

        :param signatures:
            ``0x`` hex signature for each intent, same order.

        :return:
            Attestation to pass to ``gatewayMint()``.

        :raise GatewayTransferFailedError:
            The Gateway refused the batch.
        """
        assert len(burn_intents) == len(signatures), "One signature per burn intent"
        url = f"{self.session.api_url}/v1/transfer"
        payload = {
            "burnIntents": burn_intents,
            "signatures": signatures,
        }

        logger.info("Submitting %d burn intents to %s", len(burn_intents), url)

        try:
            response = self.session.post(url, json=payload, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise GatewayTransferFailedError("submit", str(e)) from e

        if not response.ok:
            raise GatewayTransferFailedError("submit", f"Gateway API transfer failed: HTTP {response.status_code} - {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayTransferFailedError("submit", f"Gateway transfer response is not JSON: {response.text[:200]}") from e

        attestation = data.get("attestation")
        if not attestation:
            raise GatewayTransferFailedError("submit", f"Gateway transfer response has no attestation: {data}")

        return bytes(HexBytes(attestation))
