"""Burn → attest → mint orchestration for smart wallet USDC transfers.

A transfer is structured in three phases:

1. **Burn phase**: ``burnUSDC(amount)`` on the user's burn-only smart wallet
   on the source chain. The wallet burns through CCTP towards the
   recipient baked in at deployment.
2. **Attestation phase**: poll Circle's Iris API until the burn is signed.
3. **Mint phase**: ``receiveMessage(message, attestation)`` on the
   destination chain's MessageTransmitterV2, relayed by the operator key.

Each public operation wraps the whole sequence in one outer retry.
A retried sequence starts from a new burn. See ``DESIGN.md`` on why
this can burn twice.

Example::

    orchestrator = BridgeOrchestrator(config, make_client_factory(config.private_key))
    result = orchestrator.transfer_usdc("base", "0x...", 1_000_000)
    print(result.explorer_links["mint"])
"""

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from eth_typing import HexAddress
from tqdm_loggable.auto import tqdm
from web3 import Web3

from monoma.abi import BURN_ONLY_WALLET, MESSAGE_TRANSMITTER, get_abi_by_filename
from monoma.amounts import format_usdc_amount
from monoma.attestation import CCTPAttestation, fetch_attestation
from monoma.chain import ClientFactory, to_hex_hash
from monoma.config import ChainConfig, MonomaConfig
from monoma.constants import EXPLORER_TX_URLS
from monoma.errors import ConfigurationError, InvalidAmount, UnsupportedChain
from monoma.retry import BURN_AND_MINT_RETRY, TRANSFER_RETRY, RetryConfig, run_with_retries

logger = logging.getLogger(__name__)

#: Source chains of :py:meth:`BridgeOrchestrator.burn_and_mint`
BURN_AND_MINT_SOURCES = ("eth", "base", "avalanche")

#: Mint chain of :py:meth:`BridgeOrchestrator.burn_and_mint`
BURN_AND_MINT_DESTINATION = "arbitrum"

#: Source chains of :py:meth:`BridgeOrchestrator.transfer_usdc`
TRANSFER_SOURCES = ("base", "arbitrum")

#: Mint chain of :py:meth:`BridgeOrchestrator.transfer_usdc`
TRANSFER_DESTINATION = "avalanche"


class TransferPhase(enum.Enum):
    """Progress step reported to ``on_step`` observers."""

    #: Calling burnUSDC on the source chain
    burn = "burn"

    #: Waiting for Circle to sign the burn
    attestation = "attestation"

    #: Calling receiveMessage on the destination chain
    mint = "mint"

    #: USDC minted on the destination chain
    complete = "complete"


class TransferStatus(enum.Enum):
    """Lifecycle of a single :py:class:`TransferAttempt`."""

    created = "created"
    burn_submitted = "burn_submitted"
    burn_confirmed = "burn_confirmed"
    attestation_pending = "attestation_pending"
    attestation_complete = "attestation_complete"
    mint_submitted = "mint_submitted"
    mint_confirmed = "mint_confirmed"
    failed = "failed"


#: ``on_step(phase)`` progress observer
StepCallback = Callable[[TransferPhase], None]


@dataclass(slots=True)
class TransferAttempt:
    """One run of the burn → attest → mint sequence.

    Lives only for the duration of the call, nothing is persisted.
    """

    #: Burn chain key
    source_chain: str

    #: Burn-only smart wallet
    wallet_address: HexAddress

    #: Raw USDC units
    amount: int

    burn_tx_hash: str | None = None
    attestation: bytes | None = None
    message: bytes | None = None
    mint_tx_hash: str | None = None

    status: TransferStatus = TransferStatus.created

    #: Set when ``status`` is ``failed``
    error: str | None = None


@dataclass(slots=True)
class BurnResult:
    """Confirmed ``burnUSDC()`` on the source chain."""

    #: Burn chain key
    chain: str

    #: Burn transaction hash
    transaction_hash: str

    #: Gas used by the burn
    gas_used: int

    #: Smart wallet that burned
    wallet_address: HexAddress

    #: Raw USDC units burned
    amount: int

    def as_dict(self) -> dict:
        return {
            "chain": self.chain,
            "transactionHash": self.transaction_hash,
            "gasUsed": str(self.gas_used),
            "walletAddress": self.wallet_address,
            "amountBurned": self.amount,
        }


@dataclass(slots=True)
class MintResult:
    """Confirmed ``receiveMessage()`` on the destination chain."""

    #: Mint chain key
    chain: str

    #: Mint transaction hash
    transaction_hash: str

    #: Gas used by the mint
    gas_used: int

    def as_dict(self) -> dict:
        return {
            "chain": self.chain,
            "transactionHash": self.transaction_hash,
            "gasUsed": str(self.gas_used),
        }


@dataclass(slots=True)
class BurnAndMintResult:
    """Result of :py:meth:`BridgeOrchestrator.burn_and_mint`."""

    burn: BurnResult
    attestation: CCTPAttestation
    mint: MintResult

    #: The successful attempt
    attempt: TransferAttempt

    def as_dict(self) -> dict:
        data = self.burn.as_dict()
        data["attestation"] = "0x" + self.attestation.attestation.hex()
        data["arbitrumMint"] = self.mint.as_dict()
        return data


@dataclass(slots=True)
class TransferResult:
    """Result of :py:meth:`BridgeOrchestrator.transfer_usdc`."""

    burn: BurnResult
    mint: MintResult

    #: Seconds from the first burn attempt to the confirmed mint
    total_time: float

    #: Block explorer URLs of both transactions, keys ``burn`` and ``mint``
    explorer_links: dict[str, str] = field(default_factory=dict)

    #: The successful attempt
    attempt: TransferAttempt | None = None

    def as_dict(self) -> dict:
        return {
            "sourceChain": self.burn.chain,
            "destinationChain": self.mint.chain,
            "walletAddress": self.burn.wallet_address,
            "amount": str(self.burn.amount),
            "burnTxHash": self.burn.transaction_hash,
            "mintTxHash": self.mint.transaction_hash,
            "totalTime": round(self.total_time, 3),
            "gasUsed": {
                "burn": str(self.burn.gas_used),
                "mint": str(self.mint.gas_used),
            },
            "explorerLinks": self.explorer_links,
        }


def create_progress_observer(desc: str, disable: bool = False) -> tuple[tqdm, StepCallback]:
    """Progress bar advancing one step per :py:class:`TransferPhase`.

    A retried sequence reports ``burn`` again, which rewinds the bar.

    :return:
        ``(progress_bar, on_step)``. Close the bar when done.
    """
    phases = list(TransferPhase)
    progress_bar = tqdm(total=len(phases), desc=desc, unit="step", disable=disable)

    def on_step(phase: TransferPhase):
        progress_bar.n = phases.index(phase) + 1
        progress_bar.set_postfix_str(phase.value)
        progress_bar.refresh()

    return progress_bar, on_step


def make_explorer_link(chain_key: str, tx_hash: str) -> str:
    """Block explorer URL of a transaction."""
    return f"{EXPLORER_TX_URLS[chain_key]}{tx_hash}"


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Amount must be a positive integer in raw USDC units, got {amount!r}")
    return amount


class BridgeOrchestrator:
    """Run smart wallet transfers across chains.

    Holds no state between calls. Concurrent calls for different
    wallets do not interfere.

    :param poller:
        Attestation poller with the signature of :py:func:`~monoma.attestation.fetch_attestation`.

    :param sleep:
        Sleep function for backoff and polling, replaced in tests.
    """

    def __init__(
        self,
        config: MonomaConfig,
        client_factory: ClientFactory,
        poller: Callable[..., CCTPAttestation] = fetch_attestation,
        sleep: Callable[[float], None] = time.sleep,
        burn_and_mint_retry: RetryConfig = BURN_AND_MINT_RETRY,
        transfer_retry: RetryConfig = TRANSFER_RETRY,
    ):
        self.config = config
        self.client_factory = client_factory
        self.poller = poller
        self.sleep = sleep
        self.burn_and_mint_retry = burn_and_mint_retry
        self.transfer_retry = transfer_retry

    def _notify(self, on_step: StepCallback | None, phase: TransferPhase):
        if on_step is None:
            return
        try:
            on_step(phase)
        except Exception as e:
            logger.warning("Progress observer failed on %s: %s", phase.value, e)

    def _burn(self, chain: ChainConfig, attempt: TransferAttempt) -> BurnResult:
        client = self.client_factory(chain, get_abi_by_filename(BURN_ONLY_WALLET), address=attempt.wallet_address)
        logger.info("%s burning %s from %s", chain.label, format_usdc_amount(attempt.amount), attempt.wallet_address)
        attempt.status = TransferStatus.burn_submitted
        receipt = client.call_write("burnUSDC", attempt.amount)
        attempt.burn_tx_hash = to_hex_hash(receipt["transactionHash"])
        attempt.status = TransferStatus.burn_confirmed
        logger.info("%s burn success: %s", chain.label, attempt.burn_tx_hash)
        return BurnResult(chain.chain_key, attempt.burn_tx_hash, receipt["gasUsed"], attempt.wallet_address, attempt.amount)

    def _attest(self, chain: ChainConfig, attempt: TransferAttempt, **poll_budget) -> CCTPAttestation:
        attempt.status = TransferStatus.attestation_pending
        attestation = self.poller(
            source_domain=chain.domain,
            transaction_hash=attempt.burn_tx_hash,
            api_base_url=self.config.iris_api_url,
            sleep=self.sleep,
            **poll_budget,
        )
        attempt.message = attestation.message
        attempt.attestation = attestation.attestation
        attempt.status = TransferStatus.attestation_complete
        return attestation

    def _mint(self, chain: ChainConfig, attempt: TransferAttempt) -> MintResult:
        client = self.client_factory(chain, get_abi_by_filename(MESSAGE_TRANSMITTER))
        logger.info("Minting on %s with attestation", chain.label)
        attempt.status = TransferStatus.mint_submitted
        receipt = client.call_write("receiveMessage", attempt.message, attempt.attestation)
        attempt.mint_tx_hash = to_hex_hash(receipt["transactionHash"])
        attempt.status = TransferStatus.mint_confirmed
        logger.info("%s mint success: %s", chain.label, attempt.mint_tx_hash)
        return MintResult(chain.chain_key, attempt.mint_tx_hash, receipt["gasUsed"])

    def _resolve_source(self, chain_key: str, allowed: tuple[str, ...]) -> ChainConfig:
        chain_key = chain_key.lower()
        if chain_key not in allowed:
            raise UnsupportedChain(f"Unsupported chain {chain_key}. Use {', '.join(allowed)}.")
        return self.config.get_burn_chain(chain_key)

    def burn_only(self, chain_key: str, wallet_address: str, amount: int) -> BurnResult:
        """Burn from a smart wallet without waiting for the attestation or minting.

        Diagnostic path for checking a wallet can burn at all. Not retried.

        :raise UnsupportedChain:
            No burn config for the chain.
        """
        chain = self.config.get_burn_chain(chain_key.lower())
        attempt = TransferAttempt(chain.chain_key, Web3.to_checksum_address(wallet_address), _check_amount(amount))
        try:
            return self._burn(chain, attempt)
        except Exception as e:
            attempt.status = TransferStatus.failed
            attempt.error = str(e)
            raise

    def burn_and_mint(
        self,
        chain_key: str,
        wallet_address: str,
        amount: int,
        on_step: StepCallback | None = None,
    ) -> BurnAndMintResult:
        """Burn on Ethereum, Base or Avalanche and mint on Arbitrum.

        Uses the default attestation budget of 10 polls.

        :param chain_key:
            ``eth``, ``base`` or ``avalanche``.

        :param wallet_address:
            Burn-only smart wallet on the source chain.

        :param amount:
            Raw USDC units.

        :param on_step:
            Progress observer. Its exceptions are logged and ignored.

        :raise UnsupportedChain:
            Raised before any network traffic.
        """
        source = self._resolve_source(chain_key, BURN_AND_MINT_SOURCES)
        dest = self.config.get_mint_chain(BURN_AND_MINT_DESTINATION)
        wallet_address = Web3.to_checksum_address(wallet_address)
        amount = _check_amount(amount)

        def _attempt() -> BurnAndMintResult:
            attempt = TransferAttempt(source.chain_key, wallet_address, amount)
            try:
                self._notify(on_step, TransferPhase.burn)
                burn = self._burn(source, attempt)

                self._notify(on_step, TransferPhase.attestation)
                logger.info("Waiting for attestation...")
                attestation = self._attest(source, attempt)

                self._notify(on_step, TransferPhase.mint)
                mint = self._mint(dest, attempt)
            except Exception as e:
                attempt.status = TransferStatus.failed
                attempt.error = str(e)
                raise

            self._notify(on_step, TransferPhase.complete)
            return BurnAndMintResult(burn, attestation, mint, attempt)

        return run_with_retries(
            _attempt,
            max_attempts=self.burn_and_mint_retry.max_attempts,
            base_delay=self.burn_and_mint_retry.base_delay,
            give_up_on=(ConfigurationError,),
            sleep=self.sleep,
            name=f"{source.label} burn and mint",
        )

    def transfer_usdc(
        self,
        chain_key: str,
        wallet_address: str,
        amount: int,
        on_step: StepCallback | None = None,
    ) -> TransferResult:
        """Move USDC from a Base or Arbitrum smart wallet to Avalanche.

        The attestation budget comes from ``RETRY_DELAY`` and ``MAX_RETRIES``
        configuration, as Avalanche bound transfers can take minutes to attest.

        :param chain_key:
            ``base`` or ``arbitrum``.

        :raise UnsupportedChain:
            Raised before any network traffic.
        """
        source = self._resolve_source(chain_key, TRANSFER_SOURCES)
        dest = self.config.get_mint_chain(TRANSFER_DESTINATION)
        wallet_address = Web3.to_checksum_address(wallet_address)
        amount = _check_amount(amount)
        started_at = time.monotonic()

        logger.info("Starting transfer: %s → %s, wallet %s, %s", source.label, dest.label, wallet_address, format_usdc_amount(amount))

        def _attempt() -> TransferResult:
            attempt = TransferAttempt(source.chain_key, wallet_address, amount)
            try:
                self._notify(on_step, TransferPhase.burn)
                burn = self._burn(source, attempt)

                self._notify(on_step, TransferPhase.attestation)
                self._attest(
                    source,
                    attempt,
                    first_poll_delay=self.config.transfer_poll_interval,
                    poll_interval=self.config.transfer_poll_interval,
                    max_attempts=self.config.transfer_poll_attempts,
                )

                self._notify(on_step, TransferPhase.mint)
                mint = self._mint(dest, attempt)
            except Exception as e:
                attempt.status = TransferStatus.failed
                attempt.error = str(e)
                raise

            self._notify(on_step, TransferPhase.complete)
            return TransferResult(
                burn=burn,
                mint=mint,
                total_time=time.monotonic() - started_at,
                explorer_links={
                    "burn": make_explorer_link(burn.chain, burn.transaction_hash),
                    "mint": make_explorer_link(mint.chain, mint.transaction_hash),
                },
                attempt=attempt,
            )

        return run_with_retries(
            _attempt,
            max_attempts=self.transfer_retry.max_attempts,
            base_delay=self.transfer_retry.base_delay,
            give_up_on=(ConfigurationError,),
            sleep=self.sleep,
            name=f"{source.label} → {dest.label} transfer",
        )
