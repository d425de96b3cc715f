"""Exception types raised by the settlement core.

The exceptions fall into a few families that decide how a failure is handled:

- **Configuration errors** (:py:class:`ConfigurationError` and subclasses) are
  fatal. They are never retried and are surfaced immediately.

- **Transient errors** are whatever ``web3`` or ``requests`` raise on a flaky
  RPC or HTTP round trip. They are retried with a fresh client.

- **Duplicate submission** (:py:class:`TransactionAlreadyKnown`) means the
  network already holds our transaction. Recovered by reading the factory
  event log instead of resubmitting.

- **Semantic errors** (:py:class:`EventNotFound`) mean a mined transaction did
  not leave the expected trace. Retried as part of the whole attempt.

- **Caller errors** (:py:class:`InvalidRequest` and subclasses) are raised
  on bad input before anything is sent. Never retried.

Use :py:func:`classify_error` to map an exception to a stable label for
API responses.
"""

#: Substrings seen in transient RPC / HTTP failure messages
_TRANSIENT_MESSAGE_HINTS = (
    "timeout",
    "timed out",
    "network error",
    "getaddrinfo",
    "enotfound",
    "dns",
    "socket hang up",
    "econnreset",
    "etimedout",
    "connection aborted",
    "connection reset",
    "failed to detect network",
    "cannot start up",
    "503",
    "rate limit",
    "too many requests",
)


class MonomaError(Exception):
    """Base class for settlement core errors."""


class ConfigurationError(MonomaError):
    """The process is misconfigured. Never retried."""


class MissingSetting(ConfigurationError):
    """A required environment variable is not set."""


class UnsupportedChain(ConfigurationError):
    """Chain key is not in the configured set."""


class NotFactoryOwner(ConfigurationError):
    """Operator key is not the owner of the factory contract."""


class InvalidRequest(ValueError):
    """Caller sent a malformed or disallowed request."""


class InvalidAmount(InvalidRequest):
    """USDC amount string could not be converted to raw units."""


class TransactionReverted(MonomaError):
    """Transaction was mined with a failed status."""


class TransactionAlreadyKnown(MonomaError):
    """Node rejected the broadcast because the transaction is already in its mempool."""


class EventNotFound(MonomaError):
    """A successful receipt did not contain the expected event."""


class WalletProvisioningFailed(MonomaError):
    """The primary transfer wallet could not be created, so the batch was aborted."""


class AttestationTimeout(TimeoutError):
    """Circle did not produce a complete attestation within the polling budget."""


class RecordNotFound(LookupError):
    """No user or payment request with the given key."""


def is_already_known_error(exc: BaseException) -> bool:
    """Does the node say it already has this transaction.

    Geth says ``already known``, some forks say ``known transaction``.
    """
    message = str(exc).lower()
    return "already known" in message or "known transaction" in message


def is_retryable_network_error(exc: BaseException) -> bool:
    """Heuristic check for transient network conditions.

    Retry loops do not use this for filtering, they retry everything
    except configuration errors. It is used to label failures in API responses.
    """
    if isinstance(exc, (ConnectionError, TimeoutError)) and not isinstance(exc, AttestationTimeout):
        return True

    # requests exceptions are IOError subclasses and carry the text we match below
    message = str(exc).lower()
    return any(hint in message for hint in _TRANSIENT_MESSAGE_HINTS)


def classify_error(exc: BaseException) -> str:
    """Map an exception to a classification label.

    :return:
        One of ``configuration``, ``invalid_request``, ``attestation_timeout``,
        ``semantic``, ``not_found``, ``transient`` or ``internal``.
    """
    if isinstance(exc, ConfigurationError):
        return "configuration"
    # Library ValueErrors (JSON decoding, web3 arguments) are not caller mistakes
    if isinstance(exc, InvalidRequest):
        return "invalid_request"
    if isinstance(exc, AttestationTimeout):
        return "attestation_timeout"
    if isinstance(exc, RecordNotFound):
        return "not_found"
    if isinstance(exc, (EventNotFound, TransactionReverted)):
        return "semantic"
    if isinstance(exc, TransactionAlreadyKnown) or is_retryable_network_error(exc):
        return "transient"
    return "internal"
