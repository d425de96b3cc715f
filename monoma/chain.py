"""Per-chain RPC client with the operator signer and one contract binding.

A :py:class:`ChainClient` is cheap and short-lived. Retry loops create a new one
for every attempt through a client factory (see :py:func:`make_client_factory`),
because a ``web3`` provider that hit a transient network error can stay broken
for the rest of its life. Nothing connection related survives between attempts.

Example::

    from monoma.abi import BURN_WALLET_FACTORY, get_abi_by_filename
    from monoma.chain import create_chain_client

    client = create_chain_client(config.get_factory("base"), config.private_key, get_abi_by_filename(BURN_WALLET_FACTORY))
    client.verify_ownership()
    receipt = client.call_write("createSingleWallet", 1, mint_recipient)
    event = client.decode_event(receipt, "WalletCreated")
"""

import logging
from typing import Any, Callable

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import HTTPProvider, Web3
from web3.contract.contract import Contract
from web3.datastructures import AttributeDict
from web3.exceptions import LogTopicError, MismatchedABI, Web3Exception
from web3.types import TxReceipt

from monoma.config import ChainConfig
from monoma.errors import NotFactoryOwner, TransactionAlreadyKnown, TransactionReverted, is_already_known_error
from monoma.utils import get_url_domain

logger = logging.getLogger(__name__)

#: Seconds we wait for one confirmation of a broadcast transaction
DEFAULT_RECEIPT_TIMEOUT = 120.0

#: Seconds before a single JSON-RPC HTTP request is abandoned
DEFAULT_REQUEST_TIMEOUT = 30.0

#: ``client_factory(chain, abi, address=None) -> ChainClient``
ClientFactory = Callable[..., "ChainClient"]


class ChainClient:
    """Signer + contract binding on one chain.

    Do not keep instances around across retries, create a new one per attempt.
    """

    def __init__(
        self,
        web3: Web3,
        account: LocalAccount,
        contract: Contract,
        label: str,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ):
        self.web3 = web3
        self.account = account
        self.contract = contract
        self.label = label
        self.receipt_timeout = receipt_timeout

    def __repr__(self) -> str:
        return f"<ChainClient {self.label} contract={self.contract.address}>"

    @property
    def address(self) -> HexAddress:
        """Operator address used as ``from``."""
        return self.account.address

    def call_view(self, method: str, *args) -> Any:
        """Read-only contract call."""
        fn = getattr(self.contract.functions, method)
        return fn(*args).call()

    def call_write(self, method: str, *args) -> TxReceipt:
        """Sign, broadcast and wait for one confirmation.

        :return:
            Receipt of the mined transaction.

        :raise TransactionAlreadyKnown:
            The node already has this transaction in its mempool.

        :raise TransactionReverted:
            The transaction was mined but reverted.
        """
        fn = getattr(self.contract.functions, method)(*args)
        nonce = self.web3.eth.get_transaction_count(self.account.address, "pending")
        tx = fn.build_transaction(
            {
                "from": self.account.address,
                "nonce": nonce,
            }
        )
        signed = self.account.sign_transaction(tx)

        try:
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except (ValueError, Web3Exception) as e:
            if is_already_known_error(e):
                raise TransactionAlreadyKnown(f"{self.label}: {method} transaction already known to the network (nonce {nonce})") from e
            raise

        logger.info("%s: %s broadcast, tx %s, nonce %d", self.label, method, to_hex_hash(tx_hash), nonce)

        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] != 1:
            raise TransactionReverted(f"{self.label}: {method} reverted in tx {to_hex_hash(tx_hash)}")

        return receipt

    def verify_ownership(self, expected_owner: str | None = None):
        """Check the operator key owns the contract.

        Mismatch is a configuration error, not a transient fault.

        :param expected_owner:
            Defaults to the operator address.

        :raise NotFactoryOwner:
            ``owner()`` returned someone else.
        """
        if expected_owner is None:
            expected_owner = self.account.address

        owner = self.call_view("owner")
        if owner.lower() != expected_owner.lower():
            raise NotFactoryOwner(f"{self.label}: {expected_owner} is not the owner of {self.contract.address}, owner is {owner}")

    def decode_event(self, receipt: TxReceipt, event_name: str) -> AttributeDict | None:
        """Find the first log in a receipt matching an event of our ABI.

        Logs emitted by other contracts or other events are skipped.

        :return:
            Decoded event arguments, or ``None`` if no log matched.
        """
        event = getattr(self.contract.events, event_name)
        for log in receipt["logs"]:
            try:
                decoded = event.process_log(log)
            except (MismatchedABI, LogTopicError):
                continue
            return decoded["args"]
        return None

    def find_events(
        self,
        event_name: str,
        lookback_blocks: int,
        argument_filters: dict | None = None,
    ) -> list[AttributeDict]:
        """Read recent events of our contract from the chain.

        The event log is the source of truth for what a factory has deployed.

        :param lookback_blocks:
            How many blocks back from the chain tip to scan.

        :param argument_filters:
            Indexed argument filters, e.g. ``{"destination": "0x..."}``.

        :return:
            Event arguments, oldest first.
        """
        latest = self.web3.eth.block_number
        from_block = max(latest - lookback_blocks, 0)
        event = getattr(self.contract.events, event_name)
        logs = event.get_logs(
            from_block=from_block,
            to_block=latest,
            argument_filters=argument_filters,
        )
        return [log["args"] for log in logs]


def create_chain_client(
    chain: ChainConfig,
    private_key: str,
    abi: list[dict],
    address: str | None = None,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> ChainClient:
    """Build a fresh provider, signer and contract binding.

    :param chain:
        Chain to connect to.

    :param private_key:
        Operator key.

    :param abi:
        ABI of the contract.

    :param address:
        Contract address. Defaults to ``chain.factory_address``.
    """
    address = address or chain.factory_address
    assert address, f"No contract address given for {chain.label}"

    logger.debug("Connecting to %s at %s", chain.label, get_url_domain(chain.rpc_url))

    web3 = Web3(HTTPProvider(chain.rpc_url, request_kwargs={"timeout": request_timeout}))
    account: LocalAccount = Account.from_key(private_key)
    contract = web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
    return ChainClient(web3, account, contract, chain.label)


def make_client_factory(private_key: str, request_timeout: float = DEFAULT_REQUEST_TIMEOUT) -> ClientFactory:
    """Bind the operator key into a client factory.

    Components receive the factory, never a live client,
    so each retry attempt starts from a new connection.
    """

    def factory(chain: ChainConfig, abi: list[dict], address: str | None = None) -> ChainClient:
        return create_chain_client(chain, private_key, abi, address=address, request_timeout=request_timeout)

    return factory


def to_hex_hash(tx_hash: HexBytes | bytes | str) -> str:
    """Normalise a transaction hash to ``0x``-prefixed hex."""
    if isinstance(tx_hash, str):
        return tx_hash if tx_hash.startswith("0x") else f"0x{tx_hash}"
    return "0x" + bytes(tx_hash).hex()
