"""Check the Circle attestation status of a burn.

Environment variables
---------------------
- ``TX_HASH``: burn transaction hash (required).
- ``CHAIN``: burn chain, ``eth``, ``base``, ``avalanche`` or ``arbitrum``. Default ``base``.
- ``IRIS_API_URL``: Circle Iris API. Defaults to the sandbox.
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    TX_HASH=0x... CHAIN=arbitrum python scripts/monoma/check-transfer-status.py
"""

import logging
import os

from monoma.attestation import fetch_transfer_status
from monoma.constants import CCTP_DOMAIN_ARBITRUM, CCTP_DOMAIN_AVALANCHE, CCTP_DOMAIN_BASE, CCTP_DOMAIN_ETHEREUM, IRIS_API_SANDBOX_URL
from monoma.utils import setup_console_logging

logger = logging.getLogger(__name__)

DOMAINS = {
    "eth": CCTP_DOMAIN_ETHEREUM,
    "avalanche": CCTP_DOMAIN_AVALANCHE,
    "arbitrum": CCTP_DOMAIN_ARBITRUM,
    "base": CCTP_DOMAIN_BASE,
}


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    tx_hash = os.environ.get("TX_HASH")
    assert tx_hash, "TX_HASH environment variable required"

    chain = os.environ.get("CHAIN", "base").lower()
    assert chain in DOMAINS, f"CHAIN must be one of {', '.join(DOMAINS)}, got '{chain}'"

    api_url = os.environ.get("IRIS_API_URL", IRIS_API_SANDBOX_URL)

    status = fetch_transfer_status(DOMAINS[chain], tx_hash, api_base_url=api_url)
    if status is None:
        print("Not yet indexed by Iris")
        return

    print(f"Status: {status.status}")
    print(f"Complete: {status.is_complete}")
    if status.delay_reason:
        print(f"Delay reason: {status.delay_reason}")


if __name__ == "__main__":
    main()
