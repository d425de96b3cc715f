"""Cross-chain USDC settlement through Circle CCTP and per-user smart wallets."""
