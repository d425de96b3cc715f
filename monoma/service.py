"""Settlement operations as consumed by the HTTP layer.

Every method takes plain request values and returns a JSON-ready dict:

- ``{"success": True, ...}`` on success
- ``{"success": False, "error": message, "classification": kind}`` on failure,
  where ``kind`` comes from :py:func:`monoma.errors.classify_error`

Exceptions do not escape. The HTTP layer maps ``classification`` to a status code.
"""

import logging
import time
from typing import Callable

from hexbytes import HexBytes
from web3 import Web3

from monoma.amounts import parse_usdc_amount, usdc_to_raw
from monoma.attestation import fetch_transfer_status
from monoma.bridge import TRANSFER_SOURCES, BridgeOrchestrator, StepCallback
from monoma.chain import make_client_factory
from monoma.config import MonomaConfig
from monoma.constants import DESTINATION_DOMAIN
from monoma.errors import InvalidRequest, RecordNotFound, classify_error
from monoma.retry import STORE_RETRY, RetryConfig, run_with_retries
from monoma.store import InMemoryRequestStore, RequestStore
from monoma.wallet import WalletProvisioner

logger = logging.getLogger(__name__)

#: Service name reported by the health check
SERVICE_NAME = "monoma-server"

#: Classifications of caller mistakes, logged at a lower level
_CALLER_ERRORS = {"invalid_request", "not_found"}

#: Payment request statuses that must not be settled again
_SETTLED_STATUSES = ("settling", "paid")


def _require(payload: dict, *names: str):
    missing = [name for name in names if not payload.get(name)]
    if missing:
        raise InvalidRequest(f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required")


def _check_address(name: str, value: str) -> str:
    if not Web3.is_address(value):
        raise InvalidRequest(f"{name} is not a valid address: {value}")
    return value


def _check_bytes32(name: str, value: str) -> str:
    try:
        raw = HexBytes(value)
    except (ValueError, TypeError) as e:
        raise InvalidRequest(f"{name} is not hex: {value}") from e
    if len(raw) != 32:
        raise InvalidRequest(f"{name} must be 32 bytes, got {len(raw)}")
    return value


class SettlementService:
    """Wallet provisioning, transfers and payment request bookkeeping behind one facade."""

    def __init__(
        self,
        config: MonomaConfig,
        provisioner: WalletProvisioner,
        orchestrator: BridgeOrchestrator,
        store: RequestStore,
        sleep: Callable[[float], None] = time.sleep,
        store_retry: RetryConfig = STORE_RETRY,
    ):
        self.config = config
        self.provisioner = provisioner
        self.orchestrator = orchestrator
        self.store = store
        self.sleep = sleep
        self.store_retry = store_retry

    @classmethod
    def create(cls, config: MonomaConfig, store: RequestStore | None = None) -> "SettlementService":
        """Wire up the production components from a config."""
        client_factory = make_client_factory(config.private_key)
        return cls(
            config,
            WalletProvisioner(config, client_factory),
            BridgeOrchestrator(config, client_factory),
            store or InMemoryRequestStore(),
        )

    def _call(self, name: str, func: Callable[[], dict]) -> dict:
        try:
            return {"success": True, **func()}
        except Exception as e:
            classification = classify_error(e)
            if classification in _CALLER_ERRORS:
                logger.info("%s rejected: %s", name, e)
            else:
                logger.error("Error in %s: %s", name, e, exc_info=True)
            return {"success": False, "error": str(e) or type(e).__name__, "classification": classification}

    def _with_store_retry(self, action: Callable, name: str):
        return run_with_retries(
            action,
            max_attempts=self.store_retry.max_attempts,
            base_delay=self.store_retry.base_delay,
            give_up_on=(InvalidRequest, RecordNotFound),
            sleep=self.sleep,
            name=name,
        )

    def health(self) -> dict:
        return {"success": True, "status": "OK", "service": SERVICE_NAME, "destinationDomain": DESTINATION_DOMAIN}

    #
    # Wallets
    #

    def create_wallet(self, chain: str, payload: dict) -> dict:
        """Create one wallet.

        ``avalanche`` takes ``{"destination": address}`` and creates a transfer wallet,
        other chains take ``{"mintRecipient": bytes32}`` and create a burn wallet.
        """

        def _run():
            chain_key = (chain or "").lower()
            if chain_key == "avalanche":
                _require(payload, "destination")
                creation = self.provisioner.create_transfer_wallet(_check_address("destination", payload["destination"]))
                wallet = creation.wallet
                extra = {"outcome": creation.outcome.value}
            else:
                _require(payload, "mintRecipient")
                wallet = self.provisioner.create_wallet_on_chain(chain_key, _check_bytes32("mintRecipient", payload["mintRecipient"]))
                extra = {}
            return {
                "chain": chain_key,
                "address": wallet.address,
                "line": f"{chain_key.upper()}: {wallet.address}",
                **extra,
            }

        return self._call("create_wallet", _run)

    def create_wallet_all(self, payload: dict) -> dict:
        """Create the transfer wallet for ``avalancheDestination`` and burn wallets pointing to it."""

        def _run():
            _require(payload, "avalancheDestination")
            batch = self.provisioner.create_wallet_for_all_chains(_check_address("avalancheDestination", payload["avalancheDestination"]))
            return {
                "wallets": {chain_key: wallet.address for chain_key, wallet in batch.wallets.items()},
                "failures": batch.failures,
                "lines": batch.format_lines(),
            }

        return self._call("create_wallet_all", _run)

    def create_wallets_for_user(self, email: str, destination: str) -> dict:
        """Provision all wallets of a user and record them on the user account."""

        def _run():
            if not email:
                raise InvalidRequest("email is required")
            _check_address("destination", destination)
            batch = self.provisioner.create_wallet_for_all_chains(destination)
            smartwallets = {chain_key: wallet.address for chain_key, wallet in batch.wallets.items()}
            user, created = self._with_store_retry(
                lambda: self.store.upsert_user(
                    email,
                    smartwallets=smartwallets,
                    account=True,
                    chains=",".join(smartwallets),
                    destined_address=destination,
                ),
                name="upsert user",
            )
            return {"user": user.as_dict(), "created": created, "failures": batch.failures}

        return self._call("create_wallets_for_user", _run)

    #
    # Transfers
    #

    def burn_usdc(self, chain: str, payload: dict) -> dict:
        """Burn on ``chain`` and mint on Arbitrum."""

        def _run():
            _require(payload, "walletAddress", "amount")
            amount = parse_usdc_amount(payload["amount"])
            result = self.orchestrator.burn_and_mint((chain or "").lower(), _check_address("walletAddress", payload["walletAddress"]), amount)
            return result.as_dict()

        return self._call("burn_usdc", _run)

    def test_burn(self, payload: dict) -> dict:
        """Burn only, to check a wallet works."""

        def _run():
            _require(payload, "walletAddress", "chain", "amount")
            amount = parse_usdc_amount(payload["amount"])
            burn = self.orchestrator.burn_only(payload["chain"], _check_address("walletAddress", payload["walletAddress"]), amount)
            return {"burnTxHash": burn.transaction_hash, "gasUsed": str(burn.gas_used)}

        return self._call("test_burn", _run)

    def transfer_usdc(self, payload: dict, on_step: StepCallback | None = None) -> dict:
        """Full smart wallet transfer from Base or Arbitrum to Avalanche."""

        def _run():
            _require(payload, "walletAddress", "chain", "amount")
            chain_key = payload["chain"].lower()
            if chain_key not in TRANSFER_SOURCES:
                raise InvalidRequest(f"Invalid chain. Supported chains: {', '.join(TRANSFER_SOURCES)}")
            amount = parse_usdc_amount(payload["amount"])
            result = self.orchestrator.transfer_usdc(chain_key, _check_address("walletAddress", payload["walletAddress"]), amount, on_step=on_step)
            data = result.as_dict()
            # Echo the caller's amount string as given
            data["amount"] = str(payload["amount"])
            return data

        return self._call("transfer_usdc", _run)

    def get_transfer_status(self, chain: str, transaction_hash: str) -> dict:
        """One-shot Iris status of a burn."""

        def _run():
            source = self.config.get_burn_chain((chain or "").lower())
            status = fetch_transfer_status(source.domain, transaction_hash, api_base_url=self.config.iris_api_url)
            if status is None:
                return {"status": "not_indexed", "complete": False}
            return {"status": status.status, "complete": status.is_complete, "delayReason": status.delay_reason}

        return self._call("get_transfer_status", _run)

    #
    # Payment requests
    #

    def settle_payment_request(self, payid: str, chain: str) -> dict:
        """Pay a request from the user's smart wallet on ``chain``.

        The request status moves ``settling`` → ``paid`` with the mint hash,
        or ``failed`` with the error as description.
        Requests already ``settling`` or ``paid`` are refused, a ``failed`` one may be retried.
        """

        def _run():
            chain_key = (chain or "").lower()
            if chain_key not in TRANSFER_SOURCES:
                raise InvalidRequest(f"Invalid chain. Supported chains: {', '.join(TRANSFER_SOURCES)}")

            request = self._with_store_retry(lambda: self.store.get_payment_request(payid), name="get payment request")
            if request.status in _SETTLED_STATUSES:
                raise InvalidRequest(f"Payment request {payid} is already {request.status}")
            wallet_address = (request.smartwallets or {}).get(chain_key)
            if not wallet_address:
                raise InvalidRequest(f"Payment request {payid} has no {chain_key} smart wallet")
            amount = usdc_to_raw(request.amount)

            self._with_store_retry(lambda: self.store.update_payment_request(payid, status="settling"), name="mark settling")
            try:
                result = self.orchestrator.transfer_usdc(chain_key, wallet_address, amount)
            except Exception as e:
                self._with_store_retry(
                    lambda: self.store.update_payment_request(payid, status="failed", description=str(e) or type(e).__name__),
                    name="mark failed",
                )
                raise

            updated = self._with_store_retry(
                lambda: self.store.update_payment_request(payid, status="paid", hash=result.mint.transaction_hash),
                name="mark paid",
            )
            return {"request": updated.as_dict(), "transfer": result.as_dict()}

        return self._call("settle_payment_request", _run)

    def get_payment_status(self, payid: str) -> dict:
        def _run():
            request = self._with_store_retry(lambda: self.store.get_payment_request(payid), name="get payment request")
            history = self._with_store_retry(lambda: self.store.get_request_history(payid), name="get request history")
            return {
                "payid": payid,
                "status": request.status,
                "hash": request.hash,
                "history": [{"timestamp": h.timestamp.isoformat(), "changes": h.changes} for h in history],
            }

        return self._call("get_payment_status", _run)

    def create_payment_request(self, payload: dict) -> dict:
        def _run():
            _require(payload, "email", "amount")
            request = self._with_store_retry(
                lambda: self.store.create_payment_request(
                    payload["email"],
                    payload["amount"],
                    payid=payload.get("payid"),
                    smartwallets=payload.get("smartwallets"),
                    status=payload.get("status"),
                    hash=payload.get("hash"),
                    description=payload.get("descriptions"),
                ),
                name="create payment request",
            )
            return {"request": request.as_dict()}

        return self._call("create_payment_request", _run)

    def get_payment_request(self, payid: str) -> dict:
        def _run():
            request = self._with_store_retry(lambda: self.store.get_payment_request(payid), name="get payment request")
            return {"request": request.as_dict()}

        return self._call("get_payment_request", _run)

    def list_payment_requests(self, email: str) -> dict:
        def _run():
            requests = self._with_store_retry(lambda: self.store.list_payment_requests(email), name="list payment requests")
            return {"count": len(requests), "requests": [r.as_dict() for r in requests]}

        return self._call("list_payment_requests", _run)

    def update_payment_request(self, payid: str, payload: dict) -> dict:
        def _run():
            request = self._with_store_retry(
                lambda: self.store.update_payment_request(
                    payid,
                    status=payload.get("status"),
                    hash=payload.get("hash"),
                    description=payload.get("descriptions"),
                ),
                name="update payment request",
            )
            return {"request": request.as_dict()}

        return self._call("update_payment_request", _run)

    #
    # Users
    #

    def upsert_user(self, payload: dict) -> dict:
        def _run():
            _require(payload, "email")
            user, created = self._with_store_retry(
                lambda: self.store.upsert_user(
                    payload["email"],
                    smartwallets=payload.get("smartwallets"),
                    account=payload.get("account"),
                    chains=payload.get("chains"),
                    destined_address=payload.get("destinedAddress"),
                ),
                name="upsert user",
            )
            return {"user": user.as_dict(), "created": created}

        return self._call("upsert_user", _run)

    def get_user(self, email: str) -> dict:
        def _run():
            user = self._with_store_retry(lambda: self.store.get_user(email), name="get user")
            return {"user": user.as_dict()}

        return self._call("get_user", _run)

    def update_user(self, email: str, payload: dict) -> dict:
        def _run():
            user = self._with_store_retry(
                lambda: self.store.update_user(
                    email,
                    smartwallets=payload.get("smartwallets"),
                    account=payload.get("account"),
                    chains=payload.get("chains"),
                    destined_address=payload.get("destinedAddress"),
                ),
                name="update user",
            )
            return {"user": user.as_dict()}

        return self._call("update_user", _run)
