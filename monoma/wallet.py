"""Smart wallet provisioning through owner-gated factory contracts.

Two kinds of per-user wallets exist:

- **Burn-only wallets** on Arbitrum, Base and Avalanche. Deployed by a burn
  factory with ``createSingleWallet(destinationDomain, mintRecipient)``.
  They can only burn their USDC balance through CCTP towards the
  recipient on the destination domain.

- **Transfer-only wallets** on Avalanche. Deployed by the transfer factory with
  ``createSingleWallet(destination)``. They receive the minted USDC and
  can only forward it to the user's destination address.

The factory ``WalletCreated`` event log is the source of truth for
which wallets exist. Nothing is cached here.

Example::

    provisioner = WalletProvisioner(config, make_client_factory(config.private_key))
    batch = provisioner.create_wallet_for_all_chains("0x...")
    for chain_key, wallet in batch.wallets.items():
        print(chain_key, wallet.address)
"""

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from monoma.abi import BURN_WALLET_FACTORY, TRANSFER_WALLET_FACTORY, get_abi_by_filename
from monoma.chain import ClientFactory, to_hex_hash
from monoma.config import MonomaConfig
from monoma.constants import (
    ALREADY_KNOWN_LOOKBACK_BLOCKS,
    ALREADY_KNOWN_SETTLE_DELAY,
    DESTINATION_DOMAIN,
    EXISTING_WALLET_LOOKBACK_BLOCKS,
)
from monoma.errors import (
    ConfigurationError,
    EventNotFound,
    TransactionAlreadyKnown,
    WalletProvisioningFailed,
)
from monoma.retry import TRANSFER_WALLET_RETRY, WALLET_CREATION_RETRY, RetryConfig, run_with_retries

logger = logging.getLogger(__name__)

#: Chains that get a burn-only wallet pointing to the user's Avalanche transfer wallet
BURN_WALLET_CHAINS = ("arbitrum", "base")


class WalletRole(enum.Enum):
    """What a smart wallet is allowed to do."""

    burn_only = "burn_only"
    transfer_only = "transfer_only"


class SubmissionOutcome(enum.Enum):
    """How a transfer wallet creation attempt ended."""

    #: The factory event log already had a wallet for the destination
    existing = "existing"

    #: We submitted ``createSingleWallet`` and decoded the event from its receipt
    submitted_confirmed = "submitted_confirmed"

    #: The node said "already known" and we found the wallet in the event log afterwards
    already_known_recovered = "already_known_recovered"

    #: The attempt did not produce a wallet
    failed = "failed"


@dataclass(slots=True, frozen=True)
class SmartWallet:
    """A deployed per-user wallet."""

    #: Checksummed wallet contract address
    address: HexAddress

    #: Chain the wallet lives on
    chain_key: str

    #: Burn-only or transfer-only
    role: WalletRole

    #: For burn wallets the 32-byte mint recipient as hex,
    #: for transfer wallets the destination address.
    recipient: str


@dataclass(slots=True)
class WalletCreation:
    """Result of :py:meth:`WalletProvisioner.create_transfer_wallet`."""

    #: The wallet
    wallet: SmartWallet

    #: How the final, successful attempt ended
    outcome: SubmissionOutcome

    #: Outcome of every attempt in order. Earlier entries are ``failed``.
    history: list[SubmissionOutcome] = field(default_factory=list)

    #: Creation transaction, when we know it
    tx_hash: str | None = None


@dataclass(slots=True)
class WalletBatchResult:
    """Result of :py:meth:`WalletProvisioner.create_wallet_for_all_chains`."""

    #: The Avalanche transfer wallet all burn wallets mint to
    transfer_wallet: WalletCreation

    #: Created wallets by chain key, ``avalanche`` being the transfer wallet
    wallets: dict[str, SmartWallet] = field(default_factory=dict)

    #: Error message by chain key for chains whose burn wallet could not be created
    failures: dict[str, str] = field(default_factory=dict)

    def format_lines(self) -> list[str]:
        """``CHAIN: address`` lines, transfer wallet first."""
        return [f"{chain_key.upper()}: {wallet.address}" for chain_key, wallet in self.wallets.items()]


def encode_address_bytes32(address: str) -> HexBytes:
    """Left zero-pad a 20-byte address to a 32-byte CCTP mint recipient.

    :raise ValueError:
        Not an address.
    """
    raw = Web3.to_bytes(hexstr=address)
    if len(raw) != 20:
        raise ValueError(f"Not a 20-byte address: {address}")
    return HexBytes(bytes(12) + raw)


class WalletProvisioner:
    """Create smart wallets through the factories.

    Every attempt builds a fresh client through ``client_factory``.
    """

    def __init__(
        self,
        config: MonomaConfig,
        client_factory: ClientFactory,
        sleep: Callable[[float], None] = time.sleep,
        wallet_retry: RetryConfig = WALLET_CREATION_RETRY,
        transfer_wallet_retry: RetryConfig = TRANSFER_WALLET_RETRY,
    ):
        self.config = config
        self.client_factory = client_factory
        self.sleep = sleep
        self.wallet_retry = wallet_retry
        self.transfer_wallet_retry = transfer_wallet_retry

    def create_wallet_on_chain(self, chain_key: str, mint_recipient: bytes | str) -> SmartWallet:
        """Deploy a burn-only wallet.

        :param chain_key:
            ``arbitrum``, ``base`` or ``avalanche``.

        :param mint_recipient:
            32-byte recipient on the destination domain.

        :raise UnsupportedChain:
            Unknown chain key. Raised before any network traffic.

        :raise NotFactoryOwner:
            The operator key does not own the factory. Not retried.
        """
        chain = self.config.get_factory(chain_key)
        recipient = HexBytes(mint_recipient)
        assert len(recipient) == 32, f"Mint recipient must be 32 bytes, got {len(recipient)}"
        abi = get_abi_by_filename(BURN_WALLET_FACTORY)

        def _attempt() -> SmartWallet:
            client = self.client_factory(chain, abi)
            client.verify_ownership()
            receipt = client.call_write("createSingleWallet", DESTINATION_DOMAIN, recipient)
            event = client.decode_event(receipt, "WalletCreated")
            if event is None:
                raise EventNotFound(f"{chain.label}: wallet creation failed, no WalletCreated event in tx {to_hex_hash(receipt['transactionHash'])}")
            address = Web3.to_checksum_address(event["wallet"])
            logger.info("%s wallet: %s", chain.label, address)
            return SmartWallet(address, chain_key, WalletRole.burn_only, recipient.to_0x_hex())

        return run_with_retries(
            _attempt,
            max_attempts=self.wallet_retry.max_attempts,
            base_delay=self.wallet_retry.base_delay,
            give_up_on=(ConfigurationError,),
            sleep=self.sleep,
            name=f"{chain.label} wallet creation",
        )

    def find_transfer_wallet(self, destination: str, lookback_blocks: int = EXISTING_WALLET_LOOKBACK_BLOCKS) -> SmartWallet | None:
        """Look up the latest transfer wallet for a destination from the factory event log.

        :param lookback_blocks:
            How many blocks back from the tip to scan.
            Wallets created before the window are not found.

        :return:
            The most recently created wallet, or ``None``.
        """
        chain = self.config.transfer_factory
        destination = Web3.to_checksum_address(destination)
        client = self.client_factory(chain, get_abi_by_filename(TRANSFER_WALLET_FACTORY))
        events = client.find_events("WalletCreated", lookback_blocks, argument_filters={"destination": destination})
        if not events:
            return None
        address = Web3.to_checksum_address(events[-1]["wallet"])
        return SmartWallet(address, chain.chain_key, WalletRole.transfer_only, destination)

    def create_transfer_wallet(self, destination: str) -> WalletCreation:
        """Deploy, or find, the Avalanche transfer wallet of a destination address.

        Idempotent within the lookback window: an existing wallet is returned
        without submitting anything.

        :param destination:
            User address the transfer wallet forwards to.

        :raise NotFactoryOwner:
            The operator key does not own the transfer factory. Not retried.
        """
        chain = self.config.transfer_factory
        destination = Web3.to_checksum_address(destination)
        abi = get_abi_by_filename(TRANSFER_WALLET_FACTORY)
        history: list[SubmissionOutcome] = []

        def _attempt() -> WalletCreation:
            # Rescanned on every attempt: a failed attempt may still have mined
            try:
                existing = self.find_transfer_wallet(destination, EXISTING_WALLET_LOOKBACK_BLOCKS)
            except Exception as e:
                logger.warning("%s: could not check existing wallets, proceeding with creation: %s", chain.label, e)
                existing = None

            if existing:
                logger.info("%s transfer wallet (already exists): %s", chain.label, existing.address)
                history.append(SubmissionOutcome.existing)
                return WalletCreation(existing, SubmissionOutcome.existing, list(history))

            try:
                client = self.client_factory(chain, abi)
                client.verify_ownership()
                try:
                    receipt = client.call_write("createSingleWallet", destination)
                except TransactionAlreadyKnown:
                    recovered = self._recover_already_known(destination)
                    if recovered is None:
                        raise
                    logger.info("%s transfer wallet (from already known tx): %s", chain.label, recovered.address)
                    history.append(SubmissionOutcome.already_known_recovered)
                    return WalletCreation(recovered, SubmissionOutcome.already_known_recovered, list(history))

                event = client.decode_event(receipt, "WalletCreated")
                if event is None:
                    raise EventNotFound(f"{chain.label}: wallet creation failed, no WalletCreated event in tx {to_hex_hash(receipt['transactionHash'])}")
            except Exception:
                history.append(SubmissionOutcome.failed)
                raise

            address = Web3.to_checksum_address(event["wallet"])
            logger.info("%s transfer wallet: %s", chain.label, address)
            history.append(SubmissionOutcome.submitted_confirmed)
            return WalletCreation(
                SmartWallet(address, chain.chain_key, WalletRole.transfer_only, destination),
                SubmissionOutcome.submitted_confirmed,
                list(history),
                tx_hash=to_hex_hash(receipt["transactionHash"]),
            )

        return run_with_retries(
            _attempt,
            max_attempts=self.transfer_wallet_retry.max_attempts,
            base_delay=self.transfer_wallet_retry.base_delay,
            give_up_on=(ConfigurationError,),
            sleep=self.sleep,
            name=f"{chain.label} transfer wallet creation",
        )

    def _recover_already_known(self, destination: str) -> SmartWallet | None:
        """Give an already broadcast creation time to mine, then read it from the event log."""
        logger.info("Transaction already submitted, waiting %.0fs for it to be mined", ALREADY_KNOWN_SETTLE_DELAY)
        self.sleep(ALREADY_KNOWN_SETTLE_DELAY)
        try:
            return self.find_transfer_wallet(destination, ALREADY_KNOWN_LOOKBACK_BLOCKS)
        except Exception as e:
            logger.warning("Could not retrieve wallet from already known transaction: %s", e)
            return None

    def create_wallet_for_all_chains(self, destination: str) -> WalletBatchResult:
        """Provision the full wallet set of a user.

        1. Transfer wallet on Avalanche for ``destination``
        2. Burn wallets on Arbitrum and Base minting to the transfer wallet

        A failing burn wallet does not stop the others.

        :raise WalletProvisioningFailed:
            The transfer wallet could not be created. No burn wallets were attempted.

        :raise ConfigurationError:
            Operator key or chain setup is wrong, raised as is.
        """
        try:
            transfer = self.create_transfer_wallet(destination)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Failed to create Avalanche transfer wallet for %s: %s", destination, e)
            raise WalletProvisioningFailed(f"Failed to create Avalanche transfer wallet: {e}") from e

        result = WalletBatchResult(transfer_wallet=transfer)
        result.wallets[transfer.wallet.chain_key] = transfer.wallet

        mint_recipient = encode_address_bytes32(transfer.wallet.address)

        for chain_key in BURN_WALLET_CHAINS:
            try:
                result.wallets[chain_key] = self.create_wallet_on_chain(chain_key, mint_recipient)
            except Exception as e:
                logger.error("Failed to create %s wallet: %s", chain_key, e)
                result.failures[chain_key] = str(e)

        return result
