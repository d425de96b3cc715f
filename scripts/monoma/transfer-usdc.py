"""Move USDC from a smart wallet on Base or Arbitrum to Avalanche.

Burns from the burn-only wallet, waits for Circle's attestation
and mints on Avalanche. Shows a progress bar over the phases.

Environment variables
---------------------
- ``WALLET_ADDRESS``: burn-only smart wallet on the source chain (required).
- ``CHAIN``: ``base`` (default) or ``arbitrum``.
- ``AMOUNT``: USDC as decimal (``0.001``) or raw units (``1000``). Default ``0.001``.
- ``PRIVATE_KEY``, RPC URLs and factory addresses: see :py:mod:`monoma.config`.
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    WALLET_ADDRESS=0x... CHAIN=base AMOUNT=0.01 python scripts/monoma/transfer-usdc.py
"""

import logging
import os

from tabulate import tabulate

from monoma.amounts import format_usdc_amount, parse_usdc_amount
from monoma.bridge import BridgeOrchestrator, create_progress_observer
from monoma.chain import make_client_factory
from monoma.config import MonomaConfig
from monoma.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    wallet_address = os.environ.get("WALLET_ADDRESS")
    assert wallet_address, "WALLET_ADDRESS environment variable required"

    chain = os.environ.get("CHAIN", "base").lower()
    amount = parse_usdc_amount(os.environ.get("AMOUNT", "0.001"))

    config = MonomaConfig.from_environment()
    orchestrator = BridgeOrchestrator(config, make_client_factory(config.private_key))

    print(f"Transferring {format_usdc_amount(amount)} from {wallet_address} on {chain} to Avalanche")

    progress_bar, on_step = create_progress_observer(f"{chain} → avalanche")
    try:
        result = orchestrator.transfer_usdc(chain, wallet_address, amount, on_step=on_step)
    finally:
        progress_bar.close()

    rows = [
        ["Burn tx", result.burn.transaction_hash],
        ["Mint tx", result.mint.transaction_hash],
        ["Burn gas", result.burn.gas_used],
        ["Mint gas", result.mint.gas_used],
        ["Total time", f"{result.total_time:.1f}s"],
        ["Burn explorer", result.explorer_links["burn"]],
        ["Mint explorer", result.explorer_links["mint"]],
    ]
    print(tabulate(rows, tablefmt="simple"))


if __name__ == "__main__":
    main()
