"""Repeat-until-ready polling with exponential backoff.

Used for waiting on the attestation service after a CCTP burn. The probe
decides what is retryable: returning ``None`` means "not ready yet, poll again",
raising means "give up now".

Example::

    from crosschain_transfer.polling import BackoffPoller, CancelToken, PollingConfig

    token = CancelToken()
    poller = BackoffPoller(PollingConfig(initial_delay=2.0, total_timeout=300.0))

    # From another thread, e.g. a shutdown handler:
    #   token.cancel()

    attestation = poller.poll(lambda: fetch_if_ready(tx_hash), cancel_token=token)
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from crosschain_transfer.errors import DeadlineExceededError, PollingCancelledError, PollingTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class PollingConfig:
    """Backoff polling bounds.

    Both :py:attr:`max_attempts` and :py:attr:`total_timeout` are enforced,
    whichever is hit first ends the polling.

    Example:

    .. code-block:: python

        # Production (default)
        config = PollingConfig()

        # Fast-fail for tests
        config = PollingConfig.create_test_config()
    """

    #: Seconds to wait after the first unsuccessful attempt
    initial_delay: float = 2.0

    #: Cap for the growing delay, in seconds
    max_delay: float = 30.0

    #: Multiplier applied to the delay after each unsuccessful attempt
    backoff_multiplier: float = 1.5

    #: Maximum number of probe calls
    max_attempts: int = 60

    #: Wall-clock budget in seconds, measured from the first attempt
    total_timeout: float = 300.0

    def __post_init__(self):
        assert self.initial_delay >= 0, f"Bad initial_delay {self.initial_delay}"
        assert self.max_delay >= self.initial_delay, f"max_delay {self.max_delay} below initial_delay {self.initial_delay}"
        assert self.backoff_multiplier >= 1, f"Bad backoff_multiplier {self.backoff_multiplier}"
        assert self.max_attempts >= 1, f"Bad max_attempts {self.max_attempts}"
        assert self.total_timeout > 0, f"Bad total_timeout {self.total_timeout}"

    @classmethod
    def create_test_config(cls) -> "PollingConfig":
        """Tiny delays so unit tests finish instantly."""
        return cls(
            initial_delay=0.01,
            max_delay=0.05,
            backoff_multiplier=2.0,
            max_attempts=5,
            total_timeout=5.0,
        )


class CancelToken:
    """Thread-safe cancellation signal for :py:class:`BackoffPoller`.

    Waits are done on the underlying :py:class:`threading.Event`, so calling
    :py:meth:`cancel` wakes a sleeping poller immediately instead of leaving
    it parked on a timer.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``.

        :return:
            ``True`` if the token was cancelled while sleeping.
        """
        return self._event.wait(seconds)

    def __repr__(self) -> str:
        return f"<CancelToken cancelled={self.cancelled}>"


class Deadline:
    """Overall time budget for a transfer.

    Confirmation waits and attestation polling are clipped to
    :py:meth:`remaining`, so a transfer reports a timeout instead of hanging.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        assert seconds > 0, f"Bad deadline {seconds}"
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, stage: str):
        """Raise if the deadline has passed.

        :raise DeadlineExceededError:
            When no time is left.
        """
        if self.expired:
            raise DeadlineExceededError(stage, f"transfer deadline of {self.seconds}s exceeded")

    def clip(self, timeout: float) -> float:
        """Return ``timeout`` shortened to the time left."""
        return min(timeout, self.remaining())


class BackoffPoller:
    """Poll a probe until it returns a value.

    :param clock:
        Monotonic clock, replaceable in tests.

    :param sleep:
        Sleep function, replaceable in tests. When not given, sleeping
        happens on the cancel token (or a private one).
    """

    def __init__(
        self,
        config: PollingConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ):
        self.config = config or PollingConfig()
        self.clock = clock
        self._sleep = sleep

    def _wait(self, seconds: float, cancel_token: CancelToken) -> bool:
        if self._sleep is not None:
            self._sleep(seconds)
            return cancel_token.cancelled
        return cancel_token.sleep(seconds)

    def poll(
        self,
        probe: Callable[[], T | None],
        cancel_token: CancelToken | None = None,
        description: str = "probe",
    ) -> T:
        """Call ``probe`` until it returns something other than ``None``.

        :param probe:
            Zero-argument callable. Exceptions raised by it are not retried.

        :param cancel_token:
            Optional token to stop polling from another thread.

        :param description:
            Name used in log messages.

        :return:
            The first non-``None`` probe result.

        :raise PollingTimeoutError:
            When the attempt cap or the wall-clock budget is exhausted.

        :raise PollingCancelledError:
            When the token is cancelled.
        """
        config = self.config
        if cancel_token is None:
            cancel_token = CancelToken()

        start = self.clock()
        delay = config.initial_delay
        attempt = 0

        while True:
            if cancel_token.cancelled:
                raise PollingCancelledError(f"Polling {description} cancelled after {attempt} attempts")

            elapsed = self.clock() - start
            if elapsed >= config.total_timeout:
                raise PollingTimeoutError("timeout", attempt, elapsed)

            attempt += 1
            log_level = logging.INFO if attempt == 1 else logging.DEBUG
            logger.log(log_level, "Polling %s, attempt=%d, elapsed=%.1fs", description, attempt, elapsed)

            result = probe()
            if result is not None:
                logger.info("Polling %s finished after %d attempts", description, attempt)
                return result

            if attempt >= config.max_attempts:
                raise PollingTimeoutError("max_attempts", attempt, self.clock() - start)

            remaining = config.total_timeout - (self.clock() - start)
            if remaining <= 0:
                raise PollingTimeoutError("timeout", attempt, self.clock() - start)

            if self._wait(min(delay, remaining), cancel_token):
                raise PollingCancelledError(f"Polling {description} cancelled after {attempt} attempts")

            delay = min(delay * config.backoff_multiplier, config.max_delay)
