"""HTTP session management for the Circle attestation and Gateway APIs.

Sessions are configured with retry logic and rate limiting and are safe to
share across the threads of :py:meth:`~crosschain_transfer.orchestrator.TransferOrchestrator.transfer_parallel`.

The :py:class:`APISession` carries the API base URL so that the API clients
do not need a separate ``base_url`` argument.
"""

import logging

from requests import Session
from requests_ratelimiter import LimiterAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

#: Default number of retries for API requests
DEFAULT_RETRIES = 5

#: Default backoff factor for retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5

#: Default rate limit for Circle sandbox API requests per second.
#:
#: Circle documents 35 requests per second for the sandbox, stay well below.
DEFAULT_REQUESTS_PER_SECOND = 10.0


class APISession(Session):
    """A :py:class:`requests.Session` subclass that carries an API base URL.

    Use :py:func:`create_api_session` to create instances.
    """

    #: API base URL, without a trailing slash
    api_url: str

    def __init__(self, api_url: str):
        super().__init__()
        self.api_url = api_url.rstrip("/")

    def __repr__(self) -> str:
        return f"<APISession api_url={self.api_url!r}>"


def create_api_session(
    api_url: str,
    api_key: str | None = None,
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
    pool_maxsize: int = 32,
) -> APISession:
    """Create an :py:class:`APISession`.

    The session is configured with:

    - The API URL stored in :py:attr:`APISession.api_url`
    - Rate limiting shared by all threads using the session
    - Retry with exponential backoff for 429 and 5xx responses

    Retries do not raise on exhaustion, the last response is returned so that
    the API clients can classify the status code themselves.

    :param api_url:
        API base URL.

    :param api_key:
        Sent as a bearer token when given.

    :param pool_maxsize:
        Maximum number of connections to keep in the connection pool.
        Should be at least as large as the number of parallel transfers.
    """
    session = APISession(api_url)

    if api_key:
        session.headers["Authorization"] = f"Bearer {api_key}"
    session.headers["Content-Type"] = "application/json"

    # POST /v1/transfer is idempotent on the Gateway side, signatures are bound to a salt
    retry_policy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        allowed_methods=Retry.DEFAULT_ALLOWED_METHODS | frozenset(["POST"]),
        raise_on_status=False,
    )

    adapter = LimiterAdapter(
        per_second=requests_per_second,
        max_retries=retry_policy,
        pool_connections=pool_maxsize,
        pool_maxsize=pool_maxsize,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    logger.debug("Created API session for %s", api_url)
    return session
