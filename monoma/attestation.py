"""Circle CCTP V2 attestation service client.

Poll Circle's Iris API for burn attestations needed to complete
cross-chain USDC transfers.

After a smart wallet calls ``burnUSDC()`` on the source chain, Circle's
attestation service must sign the burn event before anyone can mint
on the destination chain. The Iris API reports transfer status as:

1. **404 Not Found**: burn transaction not yet indexed by Iris
2. **pending_confirmations**: burn detected, waiting for block finality
3. **complete**: attestation signed, ready for ``receiveMessage()``

Example::

    from monoma.attestation import fetch_attestation
    from monoma.constants import CCTP_DOMAIN_BASE

    attestation = fetch_attestation(
        source_domain=CCTP_DOMAIN_BASE,
        transaction_hash="0x...",
    )

    # Relay attestation.message and attestation.attestation
    # to MessageTransmitterV2.receiveMessage() on the destination chain
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests

from monoma.constants import (
    ATTESTATION_FIRST_POLL_DELAY,
    ATTESTATION_MAX_ATTEMPTS,
    ATTESTATION_POLL_INTERVAL,
    CCTP_DOMAIN_NAMES,
    IRIS_API_SANDBOX_URL,
)
from monoma.errors import AttestationTimeout

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating resource not found
HTTP_NOT_FOUND = 404

#: Seconds before a single Iris HTTP request is abandoned
IRIS_REQUEST_TIMEOUT = 30


@dataclass(slots=True)
class CCTPAttestation:
    """Attestation data for a CCTP burn event.

    Contains the signed message and attestation needed to call
    ``receiveMessage()`` on the destination chain's MessageTransmitterV2.
    """

    #: The CCTP message bytes to relay to the destination chain
    message: bytes

    #: The signed attestation bytes from Circle's Iris service
    attestation: bytes

    #: Status from Iris API, always ``"complete"`` for a returned attestation
    status: str


@dataclass(slots=True)
class CCTPTransferStatus:
    """Status of a CCTP transfer as reported by Iris ``/v2/messages``."""

    #: ``"complete"`` or ``"pending_confirmations"``
    status: str

    #: CCTP source domain ID
    source_domain: int

    #: Signed attestation bytes, or ``None`` if not yet available
    attestation: bytes | None

    #: Raw CCTP message bytes, or ``None`` if not yet available
    message: bytes | None

    #: Reason for delay, e.g. ``"insufficient_fee"``, or ``None``
    delay_reason: str | None

    #: Transaction hash of the burn on the source chain
    transaction_hash: str

    @property
    def is_complete(self) -> bool:
        """Whether the attestation is signed and ready for ``receiveMessage()``."""
        return self.status == "complete" and self.attestation is not None

    @property
    def is_pending(self) -> bool:
        """Whether the transfer is still awaiting block finality."""
        return self.status == "pending_confirmations"


def _hex_to_bytes(value: str | None) -> bytes | None:
    if not value or value == "PENDING":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Expected a hex string, got {value!r}")
    return bytes.fromhex(value.removeprefix("0x"))


def _is_ready(msg: dict) -> bool:
    attestation = msg.get("attestation")
    return msg.get("status") == "complete" and bool(attestation) and attestation != "PENDING"


def _parse_messages(response) -> list[dict]:
    """Message objects of an Iris response.

    :raise ValueError:
        The body is not JSON or not shaped like an Iris messages response.
    """
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError(f"Unexpected Iris response body: {data!r}")
    messages = data.get("messages") or []
    if not isinstance(messages, list):
        raise ValueError(f"Unexpected Iris messages field: {messages!r}")
    return [m for m in messages if isinstance(m, dict)]


def _find_ready_attestation(messages: list[dict]) -> CCTPAttestation | None:
    for msg in messages:
        if _is_ready(msg):
            return CCTPAttestation(
                message=_hex_to_bytes(msg.get("message")) or b"",
                attestation=_hex_to_bytes(msg["attestation"]),
                status=msg["status"],
            )
    return None


def _messages_url(api_base_url: str, source_domain: int, transaction_hash: str) -> str:
    return f"{api_base_url}/v2/messages/{source_domain}?transactionHash={transaction_hash}"


def fetch_attestation(
    source_domain: int,
    transaction_hash: str,
    api_base_url: str = IRIS_API_SANDBOX_URL,
    first_poll_delay: float = ATTESTATION_FIRST_POLL_DELAY,
    poll_interval: float = ATTESTATION_POLL_INTERVAL,
    max_attempts: int = ATTESTATION_MAX_ATTEMPTS,
    session: requests.Session | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CCTPAttestation:
    """Poll the Iris API until the attestation is ready.

    Attestations are never ready right after the burn, so we sleep
    ``first_poll_delay`` before the first request and ``poll_interval``
    before each later one.

    Not-ready answers (HTTP 404, no messages, pending status) just consume a poll.
    Network and HTTP errors are logged and also consume a poll.

    :param source_domain:
        CCTP domain ID of the burn chain, e.g. 6 for Base.

    :param transaction_hash:
        Transaction hash of the burn.

    :param api_base_url:
        Iris API base URL. Defaults to the sandbox.

    :param max_attempts:
        Maximum number of HTTP polls.

    :param session:
        HTTP session to use. Defaults to plain ``requests``.

    :param sleep:
        Sleep function, replaced in tests.

    :return:
        :class:`CCTPAttestation` with message and attestation bytes.

    :raise AttestationTimeout:
        No complete attestation within ``max_attempts`` polls.

    :raise requests.RequestException:
        The final poll failed on a network or HTTP error.
    """
    # Iris API requires 0x-prefixed transaction hash
    if not transaction_hash.startswith("0x"):
        transaction_hash = f"0x{transaction_hash}"

    http = session or requests
    domain_name = CCTP_DOMAIN_NAMES.get(source_domain, f"domain-{source_domain}")
    url = _messages_url(api_base_url, source_domain, transaction_hash)

    logger.info("Waiting for CCTP attestation on %s: tx=%s, Iris API: %s", domain_name, transaction_hash, url)

    for attempt in range(1, max_attempts + 1):
        sleep(first_poll_delay if attempt == 1 else poll_interval)

        try:
            response = http.get(url, timeout=IRIS_REQUEST_TIMEOUT)

            if response.status_code == HTTP_NOT_FOUND:
                logger.debug("Attestation not yet indexed (404) for %s, attempt %d/%d", domain_name, attempt, max_attempts)
                continue

            response.raise_for_status()
            messages = _parse_messages(response)
            attestation = _find_ready_attestation(messages)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Error fetching attestation for %s, attempt %d/%d: %s", domain_name, attempt, max_attempts, e)
            if attempt >= max_attempts:
                raise
            continue

        if attestation is not None:
            logger.info("Attestation complete for %s after %d attempts: tx=%s", domain_name, attempt, transaction_hash)
            return attestation

        status = messages[0].get("status", "") if messages else "no messages"
        logger.info("Attestation not ready yet for %s: %s, attempt %d/%d", domain_name, status, attempt, max_attempts)

    raise AttestationTimeout(f"Failed to fetch attestation after {max_attempts} attempts for tx {transaction_hash} on {domain_name}")


def fetch_transfer_status(
    source_domain: int,
    transaction_hash: str,
    api_base_url: str = IRIS_API_SANDBOX_URL,
    session: requests.Session | None = None,
) -> CCTPTransferStatus | None:
    """One-shot check of a CCTP transfer's status.

    Returns ``None`` if the transaction is not yet indexed by Iris (HTTP 404).
    Does not block or retry.

    :raise requests.HTTPError:
        If the API returns an error other than 404.
    """
    if not transaction_hash.startswith("0x"):
        transaction_hash = f"0x{transaction_hash}"

    http = session or requests
    response = http.get(_messages_url(api_base_url, source_domain, transaction_hash), timeout=IRIS_REQUEST_TIMEOUT)

    if response.status_code == HTTP_NOT_FOUND:
        return None

    response.raise_for_status()

    messages = _parse_messages(response)
    if not messages:
        return None

    msg = next((m for m in messages if _is_ready(m)), messages[0])
    return CCTPTransferStatus(
        status=msg.get("status", ""),
        source_domain=source_domain,
        attestation=_hex_to_bytes(msg.get("attestation")),
        message=_hex_to_bytes(msg.get("message")),
        delay_reason=msg.get("delayReason"),
        transaction_hash=transaction_hash,
    )
