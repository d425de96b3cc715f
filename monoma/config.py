"""Process configuration.

Read once at startup from environment variables and passed to every
component as an immutable :py:class:`MonomaConfig`. Nothing else in the
package reads the environment.

Environment variables
---------------------

``PRIVATE_KEY``
    Operator private key. Owner of every factory contract and relayer
    for burns and mints on all chains.

``ETHEREUM_RPC_URL``, ``BASE_RPC_URL``, ``ARBITRUM_RPC_URL``, ``AVALANCHE_RPC_URL``
    JSON-RPC endpoints of Ethereum Sepolia, Base Sepolia, Arbitrum Sepolia and Avalanche Fuji.

``BASE_FACTORY_ADDRESS``, ``ARBITRUM_FACTORY_ADDRESS``, ``AVALANCHE_FACTORY_ADDRESS``
    Burn-only wallet factories.

``AVALANCHE_TRANSFER_FACTORY_ADDRESS``
    Transfer-only wallet factory on Avalanche.

``IRIS_API_URL``
    Optional. Circle attestation API. Defaults to the sandbox.

``RETRY_DELAY``
    Optional. Milliseconds between attestation polls on the full transfer path. Default ``3000``.

``MAX_RETRIES``
    Optional. Maximum attestation polls on the full transfer path. Default ``100``.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping

from eth_account import Account
from eth_typing import HexAddress

from monoma.constants import (
    CCTP_DOMAIN_ARBITRUM,
    CCTP_DOMAIN_AVALANCHE,
    CCTP_DOMAIN_BASE,
    CCTP_DOMAIN_ETHEREUM,
    IRIS_API_SANDBOX_URL,
    MESSAGE_TRANSMITTER_V2_TESTNET,
)
from monoma.errors import MissingSetting, UnsupportedChain

#: Environment variables that must be present
REQUIRED_ENV_VARS = (
    "PRIVATE_KEY",
    "BASE_RPC_URL",
    "ARBITRUM_RPC_URL",
    "AVALANCHE_RPC_URL",
    "ETHEREUM_RPC_URL",
    "BASE_FACTORY_ADDRESS",
    "ARBITRUM_FACTORY_ADDRESS",
    "AVALANCHE_FACTORY_ADDRESS",
    "AVALANCHE_TRANSFER_FACTORY_ADDRESS",
)


@dataclass(slots=True, frozen=True)
class ChainConfig:
    """One chain endpoint in one role.

    The burn factory and the transfer factory on Avalanche are two
    separate configs even though they share the RPC.
    """

    #: Short key used in API paths, e.g. ``"base"``
    chain_key: str

    #: JSON-RPC endpoint
    rpc_url: str

    #: Contract this config points at: a wallet factory or the message transmitter.
    #: ``None`` for burn configs, where the contract is the user's smart wallet.
    factory_address: HexAddress | None

    #: Human-readable name for logs
    label: str

    #: CCTP domain of the chain
    domain: int


@dataclass(slots=True, frozen=True)
class MonomaConfig:
    """Everything the settlement core needs to talk to chains and Circle."""

    #: Operator private key, hex
    private_key: str = field(repr=False)

    #: Burn-only wallet factories by chain key
    factories: dict[str, ChainConfig]

    #: Transfer-only wallet factory on Avalanche
    transfer_factory: ChainConfig

    #: Chains where smart wallets burn USDC, by chain key
    burn_chains: dict[str, ChainConfig]

    #: Mint side message transmitters, by chain key
    mint_chains: dict[str, ChainConfig]

    #: Circle Iris API base URL
    iris_api_url: str = IRIS_API_SANDBOX_URL

    #: Seconds between attestation polls on the full transfer path
    transfer_poll_interval: float = 3.0

    #: Maximum attestation polls on the full transfer path
    transfer_poll_attempts: int = 100

    @property
    def operator_address(self) -> str:
        """Address derived from the operator key."""
        return Account.from_key(self.private_key).address

    def get_factory(self, chain_key: str) -> ChainConfig:
        """Burn factory config for a chain.

        :raise UnsupportedChain:
            No burn factory for this key.
        """
        try:
            return self.factories[chain_key]
        except KeyError:
            raise UnsupportedChain(f"Unsupported chain {chain_key}. Use {', '.join(self.factories)}.") from None

    def get_burn_chain(self, chain_key: str) -> ChainConfig:
        """Burn side config for a chain.

        :raise UnsupportedChain:
            Smart wallets do not burn on this chain.
        """
        try:
            return self.burn_chains[chain_key]
        except KeyError:
            raise UnsupportedChain(f"Unsupported chain {chain_key}. Use {', '.join(self.burn_chains)}.") from None

    def get_mint_chain(self, chain_key: str) -> ChainConfig:
        """Mint side config for a chain.

        :raise UnsupportedChain:
            No message transmitter configured for this key.
        """
        try:
            return self.mint_chains[chain_key]
        except KeyError:
            raise UnsupportedChain(f"Cannot mint on {chain_key}. Use {', '.join(self.mint_chains)}.") from None

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> "MonomaConfig":
        """Build the config from environment variables.

        :param environ:
            Mapping to read from. Defaults to ``os.environ``.

        :raise MissingSetting:
            A required variable is missing or empty.
        """
        if environ is None:
            environ = os.environ

        missing = [name for name in REQUIRED_ENV_VARS if not environ.get(name)]
        if missing:
            raise MissingSetting(f"Missing required environment variable(s): {', '.join(missing)}")

        private_key = environ["PRIVATE_KEY"].strip()
        if not private_key.startswith("0x"):
            private_key = f"0x{private_key}"

        eth_rpc = environ["ETHEREUM_RPC_URL"]
        base_rpc = environ["BASE_RPC_URL"]
        arbitrum_rpc = environ["ARBITRUM_RPC_URL"]
        avalanche_rpc = environ["AVALANCHE_RPC_URL"]

        factories = {
            "arbitrum": ChainConfig("arbitrum", arbitrum_rpc, HexAddress(environ["ARBITRUM_FACTORY_ADDRESS"]), "Arbitrum Sepolia", CCTP_DOMAIN_ARBITRUM),
            "base": ChainConfig("base", base_rpc, HexAddress(environ["BASE_FACTORY_ADDRESS"]), "Base Sepolia", CCTP_DOMAIN_BASE),
            "avalanche": ChainConfig("avalanche", avalanche_rpc, HexAddress(environ["AVALANCHE_FACTORY_ADDRESS"]), "Avalanche Fuji", CCTP_DOMAIN_AVALANCHE),
        }

        transfer_factory = ChainConfig(
            "avalanche",
            avalanche_rpc,
            HexAddress(environ["AVALANCHE_TRANSFER_FACTORY_ADDRESS"]),
            "Avalanche Fuji Transfer",
            CCTP_DOMAIN_AVALANCHE,
        )

        burn_chains = {
            "eth": ChainConfig("eth", eth_rpc, None, "ETH Sepolia", CCTP_DOMAIN_ETHEREUM),
            "base": ChainConfig("base", base_rpc, None, "Base Sepolia", CCTP_DOMAIN_BASE),
            "avalanche": ChainConfig("avalanche", avalanche_rpc, None, "Avalanche Fuji", CCTP_DOMAIN_AVALANCHE),
            "arbitrum": ChainConfig("arbitrum", arbitrum_rpc, None, "Arbitrum Sepolia", CCTP_DOMAIN_ARBITRUM),
        }

        mint_chains = {
            "arbitrum": ChainConfig("arbitrum", arbitrum_rpc, MESSAGE_TRANSMITTER_V2_TESTNET, "Arbitrum Sepolia", CCTP_DOMAIN_ARBITRUM),
            "avalanche": ChainConfig("avalanche", avalanche_rpc, MESSAGE_TRANSMITTER_V2_TESTNET, "Avalanche Fuji", CCTP_DOMAIN_AVALANCHE),
        }

        return cls(
            private_key=private_key,
            factories=factories,
            transfer_factory=transfer_factory,
            burn_chains=burn_chains,
            mint_chains=mint_chains,
            iris_api_url=environ.get("IRIS_API_URL") or IRIS_API_SANDBOX_URL,
            transfer_poll_interval=int(environ.get("RETRY_DELAY") or 3000) / 1000,
            transfer_poll_attempts=int(environ.get("MAX_RETRIES") or 100),
        )
