"""Retry policies for chain and API calls.

Every remote call in the settlement core goes through :py:func:`run_with_retries`.
The backoff is linear: the delay before retry ``i`` is ``base_delay * i`` seconds.
There is no jitter and no circuit breaker. Each call site picks its own
:py:class:`RetryConfig` based on the latency of the thing it calls:
chain writes get few attempts with long delays, persistence calls get
more attempts with short delays.

Example:

.. code-block:: python

    from monoma.retry import WALLET_CREATION_RETRY, run_with_retries

    wallet = run_with_retries(
        lambda: create_once(chain_key, mint_recipient),
        max_attempts=WALLET_CREATION_RETRY.max_attempts,
        base_delay=WALLET_CREATION_RETRY.base_delay,
        name="Base Sepolia wallet creation",
    )
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryConfig:
    """Retry policy of a single call site.

    Production defaults are tuned for public testnet RPCs;
    tests should use :py:meth:`create_test_config` or inject a ``sleep``.
    """

    #: Total number of attempts, including the first one
    max_attempts: int = 3

    #: Seconds; the delay before retry ``i`` is ``base_delay * i``
    base_delay: float = 1.0

    @classmethod
    def create_test_config(cls, max_attempts: int = 3) -> "RetryConfig":
        """Create a retry config that does not wait between attempts."""
        return cls(max_attempts=max_attempts, base_delay=0.0)

    def total_delay(self, failures: int) -> float:
        """Seconds slept in total when an action fails ``failures`` times and then succeeds."""
        return self.base_delay * failures * (failures + 1) / 2


#: Burn-only wallet creation: ownership check, submit, wait and decode redone as a whole
WALLET_CREATION_RETRY = RetryConfig(max_attempts=6, base_delay=1.5)

#: Transfer wallet creation: rarer and costlier to retry blindly
TRANSFER_WALLET_RETRY = RetryConfig(max_attempts=3, base_delay=3.0)

#: Burn → attest → mint towards Arbitrum, re-run as a whole
BURN_AND_MINT_RETRY = RetryConfig(max_attempts=5, base_delay=1.0)

#: Full smart wallet transfer towards Avalanche, re-run as a whole
TRANSFER_RETRY = RetryConfig(max_attempts=3, base_delay=2.0)

#: Request store reads and writes
STORE_RETRY = RetryConfig(max_attempts=5, base_delay=0.5)


def run_with_retries(
    action: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    give_up_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
    name: str = "action",
) -> T:
    """Call ``action`` until it succeeds or attempts run out.

    :param action:
        Zero-argument callable. Build fresh connections inside it,
        so every attempt starts from a clean state.

    :param max_attempts:
        Total number of calls before giving up.

    :param base_delay:
        Seconds. Retry ``i`` waits ``base_delay * i``.

    :param give_up_on:
        Exception types that are re-raised immediately without retrying.
        Empty by default, so every failure is retried.

    :param sleep:
        Sleep function, replaced in tests.

    :param name:
        Human-readable name for log messages.

    :return:
        Whatever ``action`` returns.

    :raise Exception:
        The last exception raised by ``action``, unmodified.
    """
    assert max_attempts >= 1, f"max_attempts must be positive, got {max_attempts}"

    attempt = 0
    while True:
        attempt += 1
        try:
            return action()
        except give_up_on:
            logger.error("%s failed with a non-retryable error on attempt %d", name, attempt)
            raise
        except Exception as e:
            if attempt >= max_attempts:
                logger.error("%s failed after %d attempts: %s", name, attempt, e)
                raise

            delay = base_delay * attempt
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs",
                name,
                attempt,
                max_attempts,
                e,
                delay,
            )
            sleep(delay)
