"""Circle CCTP V2 testnet constants and operational timings.

CCTP moves USDC with burn-and-mint:

1. Source chain: the smart wallet calls ``burnUSDC()``, which burns through TokenMessengerV2
2. Circle's Iris attestation service signs the burn event
3. Destination chain: anyone can call ``receiveMessage()`` on MessageTransmitterV2 to mint

All CCTP V2 contracts share the same address across EVM testnets (deployed via CREATE2).

- `CCTP V2 documentation <https://developers.circle.com/cctp>`_
- `EVM contract addresses <https://developers.circle.com/cctp/evm-smart-contracts>`_
"""

from eth_typing import HexAddress

#: CCTP V2 MessageTransmitterV2 on testnets.
#: Same address on Arbitrum Sepolia, Base Sepolia, Avalanche Fuji and Ethereum Sepolia.
MESSAGE_TRANSMITTER_V2_TESTNET: HexAddress = HexAddress("0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275")

#: CCTP domain ID for Ethereum (Sepolia)
CCTP_DOMAIN_ETHEREUM = 0

#: CCTP domain ID for Avalanche (Fuji)
CCTP_DOMAIN_AVALANCHE = 1

#: CCTP domain ID for Arbitrum (Sepolia)
CCTP_DOMAIN_ARBITRUM = 3

#: CCTP domain ID for Base (Sepolia)
CCTP_DOMAIN_BASE = 6

#: Mapping from CCTP domain ID to human-readable chain name.
CCTP_DOMAIN_NAMES: dict[int, str] = {
    CCTP_DOMAIN_ETHEREUM: "Ethereum",
    CCTP_DOMAIN_AVALANCHE: "Avalanche",
    CCTP_DOMAIN_ARBITRUM: "Arbitrum",
    CCTP_DOMAIN_BASE: "Base",
}

#: Destination domain baked into every burn-only wallet.
#:
#: Burn wallets on Arbitrum and Base mint to the user's Avalanche transfer wallet.
DESTINATION_DOMAIN = CCTP_DOMAIN_AVALANCHE

#: Circle Iris attestation API base URL (testnet sandbox).
IRIS_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com"

#: USDC has 6 decimals on every CCTP chain
USDC_DECIMALS = 6

#: Raw units in one USDC
USDC_UNIT = 10**USDC_DECIMALS

#: Block explorers for transaction links in API responses
EXPLORER_TX_URLS: dict[str, str] = {
    "base": "https://sepolia.basescan.org/tx/",
    "arbitrum": "https://sepolia.arbiscan.io/tx/",
    "avalanche": "https://testnet.snowtrace.io/tx/",
    "eth": "https://sepolia.etherscan.io/tx/",
}

#: How many blocks back we look for an existing transfer wallet before creating one
EXISTING_WALLET_LOOKBACK_BLOCKS = 50

#: How many blocks back we look for a wallet after an "already known" broadcast
ALREADY_KNOWN_LOOKBACK_BLOCKS = 20

#: Seconds to let an "already known" transaction get mined before looking for its event
ALREADY_KNOWN_SETTLE_DELAY = 10.0

#: Seconds to wait before the first Iris poll. Attestations are never ready immediately.
ATTESTATION_FIRST_POLL_DELAY = 10.0

#: Seconds between subsequent Iris polls
ATTESTATION_POLL_INTERVAL = 5.0

#: Maximum number of Iris polls
ATTESTATION_MAX_ATTEMPTS = 10
