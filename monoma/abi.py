"""Contract ABI loading.

ABIs ship as JSON files in ``monoma/abi/``.
"""

import json
from functools import lru_cache
from pathlib import Path

#: Where the ABI JSON files live
ABI_FOLDER = Path(__file__).resolve().parent / "abi"

#: Owner-gated factory deploying burn-only wallets on Arbitrum, Base and Avalanche
BURN_WALLET_FACTORY = "BurnWalletFactory.json"

#: Owner-gated factory deploying transfer-only wallets on Avalanche
TRANSFER_WALLET_FACTORY = "TransferWalletFactory.json"

#: Per-user burn-only smart wallet
BURN_ONLY_WALLET = "BurnOnlyWallet.json"

#: CCTP V2 MessageTransmitterV2, mint side
MESSAGE_TRANSMITTER = "MessageTransmitterV2.json"


@lru_cache(maxsize=None)
def get_abi_by_filename(fname: str) -> list[dict]:
    """Read a JSON ABI file from the package ABI folder.

    Cached, so hot retry loops do not hit the disk.

    :param fname:
        File name like ``"BurnWalletFactory.json"``.
    """
    path = ABI_FOLDER / fname
    assert path.exists(), f"ABI file missing: {path}"
    with open(path, "rt") as f:
        return json.load(f)
