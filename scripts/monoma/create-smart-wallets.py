"""Provision the smart wallet set of a user.

Creates, or finds, the Avalanche transfer wallet forwarding to ``DESTINATION``
and burn-only wallets on Arbitrum and Base minting to it.

Environment variables
---------------------
- ``DESTINATION``: user address the Avalanche transfer wallet forwards to (required).
- ``PRIVATE_KEY``, RPC URLs and factory addresses: see :py:mod:`monoma.config`.
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    DESTINATION=0x5B078e081DA6b8F31b60EED13959f3B6Cf0C8c73 python scripts/monoma/create-smart-wallets.py
"""

import logging
import os

from tabulate import tabulate

from monoma.chain import make_client_factory
from monoma.config import MonomaConfig
from monoma.utils import setup_console_logging
from monoma.wallet import WalletProvisioner

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    destination = os.environ.get("DESTINATION")
    assert destination, "DESTINATION environment variable required"

    config = MonomaConfig.from_environment()
    print(f"Operator: {config.operator_address}")
    print(f"Destination: {destination}")

    provisioner = WalletProvisioner(config, make_client_factory(config.private_key))
    batch = provisioner.create_wallet_for_all_chains(destination)

    print(f"\nTransfer wallet outcome: {batch.transfer_wallet.outcome.value}")
    rows = [[chain_key, wallet.role.value, wallet.address] for chain_key, wallet in batch.wallets.items()]
    print(tabulate(rows, headers=["Chain", "Role", "Wallet"], tablefmt="simple"))

    if batch.failures:
        rows = [[chain_key, error] for chain_key, error in batch.failures.items()]
        print("\nFailed:")
        print(tabulate(rows, headers=["Chain", "Error"], tablefmt="simple"))


if __name__ == "__main__":
    main()
