"""Settlement service facade, wired to fake chains and a scripted Iris API."""

import functools

import pytest
from web3 import Web3

from fakes import FakeChainBackend, FakeSession, RecordedSleep, iris_complete, make_receipt
from monoma.attestation import fetch_attestation
from monoma.bridge import BridgeOrchestrator
from monoma.config import MonomaConfig
from monoma.errors import TransactionReverted
from monoma.retry import RetryConfig
from monoma.service import SettlementService
from monoma.store import InMemoryRequestStore
from monoma.wallet import WalletProvisioner

DESTINATION = Web3.to_checksum_address("0x" + "de" * 20)
TRANSFER_WALLET = Web3.to_checksum_address("0x" + "a1" * 20)
ARBITRUM_WALLET = Web3.to_checksum_address("0x" + "a2" * 20)
BASE_WALLET = Web3.to_checksum_address("0x" + "a3" * 20)


@pytest.fixture()
def iris() -> FakeSession:
    return FakeSession([])


@pytest.fixture()
def service(config: MonomaConfig, backend: FakeChainBackend, sleep: RecordedSleep, iris: FakeSession) -> SettlementService:
    orchestrator = BridgeOrchestrator(
        config,
        backend.factory,
        poller=functools.partial(fetch_attestation, session=iris),
        sleep=sleep,
        transfer_retry=RetryConfig.create_test_config(max_attempts=1),
    )
    return SettlementService(
        config,
        WalletProvisioner(config, backend.factory, sleep=sleep),
        orchestrator,
        InMemoryRequestStore(),
        sleep=sleep,
        store_retry=RetryConfig.create_test_config(),
    )


def _script_wallets(backend: FakeChainBackend):
    backend.writes[("avalanche", "createSingleWallet")] = [make_receipt(1, {"wallet": TRANSFER_WALLET, "destination": DESTINATION})]
    backend.writes[("arbitrum", "createSingleWallet")] = [make_receipt(2, {"wallet": ARBITRUM_WALLET})]
    backend.writes[("base", "createSingleWallet")] = [make_receipt(3, {"wallet": BASE_WALLET})]


def test_health(service: SettlementService):
    assert service.health() == {"success": True, "status": "OK", "service": "monoma-server", "destinationDomain": 1}


def test_create_wallet_burn_only(service: SettlementService, backend: FakeChainBackend):
    backend.writes[("base", "createSingleWallet")] = [make_receipt(3, {"wallet": BASE_WALLET})]
    result = service.create_wallet("Base", {"mintRecipient": "0x" + "00" * 12 + "ab" * 20})
    assert result == {"success": True, "chain": "base", "address": BASE_WALLET, "line": f"BASE: {BASE_WALLET}"}


def test_create_wallet_transfer(service: SettlementService, backend: FakeChainBackend):
    _script_wallets(backend)
    result = service.create_wallet("avalanche", {"destination": DESTINATION})
    assert result["success"]
    assert result["address"] == TRANSFER_WALLET
    assert result["outcome"] == "submitted_confirmed"


def test_create_wallet_failures_are_classified(service: SettlementService, backend: FakeChainBackend):
    result = service.create_wallet("base", {})
    assert result == {"success": False, "error": "mintRecipient is required", "classification": "invalid_request"}

    result = service.create_wallet("eth", {"mintRecipient": "0x" + "00" * 32})
    assert not result["success"]
    assert result["classification"] == "configuration"

    backend.owner = "0x" + "99" * 20
    result = service.create_wallet("arbitrum", {"mintRecipient": "0x" + "00" * 32})
    assert result["classification"] == "configuration"
    assert backend.write_calls() == []


def test_create_wallet_all(service: SettlementService, backend: FakeChainBackend):
    _script_wallets(backend)
    result = service.create_wallet_all({"avalancheDestination": DESTINATION})
    assert result["success"]
    assert result["wallets"] == {"avalanche": TRANSFER_WALLET, "arbitrum": ARBITRUM_WALLET, "base": BASE_WALLET}
    assert result["failures"] == {}
    assert result["lines"][0] == f"AVALANCHE: {TRANSFER_WALLET}"


def test_create_wallets_for_user(service: SettlementService, backend: FakeChainBackend):
    _script_wallets(backend)
    result = service.create_wallets_for_user("alice@example.com", DESTINATION)

    assert result["success"]
    assert result["created"]
    user = service.store.get_user("alice@example.com")
    assert user.account is True
    assert user.chains == "avalanche,arbitrum,base"
    assert user.destined_address == DESTINATION
    assert user.smartwallets["base"] == BASE_WALLET


def test_burn_usdc(service: SettlementService, backend: FakeChainBackend, iris: FakeSession):
    backend.writes[("base", "burnUSDC")] = [make_receipt(1)]
    backend.writes[("arbitrum", "receiveMessage")] = [make_receipt(2)]
    iris.responses.append(iris_complete())

    result = service.burn_usdc("base", {"walletAddress": BASE_WALLET, "amount": "0.001"})

    assert result["success"]
    assert result["amountBurned"] == 1000
    assert result["arbitrumMint"]["transactionHash"] == "0x" + "02" * 32


def test_burn_usdc_bad_amount(service: SettlementService, backend: FakeChainBackend):
    result = service.burn_usdc("base", {"walletAddress": BASE_WALLET, "amount": "-1"})
    assert result["classification"] == "invalid_request"
    assert backend.clients_created == 0


def test_test_burn(service: SettlementService, backend: FakeChainBackend):
    backend.writes[("arbitrum", "burnUSDC")] = [make_receipt(5, gas_used=4321)]
    result = service.test_burn({"walletAddress": ARBITRUM_WALLET, "chain": "arbitrum", "amount": "1000"})
    assert result == {"success": True, "burnTxHash": "0x" + "05" * 32, "gasUsed": "4321"}


def test_transfer_usdc(service: SettlementService, backend: FakeChainBackend, iris: FakeSession):
    backend.writes[("arbitrum", "burnUSDC")] = [make_receipt(1)]
    backend.writes[("avalanche", "receiveMessage")] = [make_receipt(2)]
    iris.responses.append(iris_complete())
    steps = []

    result = service.transfer_usdc({"walletAddress": ARBITRUM_WALLET, "chain": "arbitrum", "amount": "0.5"}, on_step=steps.append)

    assert result["success"]
    assert result["amount"] == "0.5"
    assert result["sourceChain"] == "arbitrum"
    assert result["destinationChain"] == "avalanche"
    assert len(steps) == 4
    (burn,) = backend.write_calls("burnUSDC")
    assert burn[3] == (500_000,)


def test_transfer_usdc_rejects_chain(service: SettlementService, backend: FakeChainBackend):
    result = service.transfer_usdc({"walletAddress": ARBITRUM_WALLET, "chain": "eth", "amount": "1"})
    assert result == {"success": False, "error": "Invalid chain. Supported chains: base, arbitrum", "classification": "invalid_request"}

    result = service.transfer_usdc({"chain": "base"})
    assert result["error"] == "walletAddress, amount are required"
    assert backend.clients_created == 0


def test_get_transfer_status_unknown_chain(service: SettlementService):
    result = service.get_transfer_status("polygon", "0x" + "01" * 32)
    assert result["classification"] == "configuration"


def test_settle_payment_request(service: SettlementService, backend: FakeChainBackend, iris: FakeSession):
    backend.writes[("base", "burnUSDC")] = [make_receipt(1)]
    backend.writes[("avalanche", "receiveMessage")] = [make_receipt(2)]
    iris.responses.append(iris_complete())
    created = service.create_payment_request({"email": "alice@example.com", "amount": "2.5", "payid": "REQ1-1", "smartwallets": {"base": BASE_WALLET}, "status": "pending"})
    assert created["success"]

    result = service.settle_payment_request("REQ1-1", "base")

    assert result["success"]
    assert result["request"]["status"] == "paid"
    assert result["request"]["hash"] == "0x" + "02" * 32
    (burn,) = backend.write_calls("burnUSDC")
    assert burn[3] == (2_500_000,)

    status = service.get_payment_status("REQ1-1")
    assert [h["changes"].get("status") for h in status["history"]] == ["pending", "settling", "paid"]


def test_settle_payment_request_failure_is_recorded(service: SettlementService, backend: FakeChainBackend, iris: FakeSession):
    backend.writes[("base", "burnUSDC")] = [make_receipt(1)]
    backend.writes[("avalanche", "receiveMessage")] = [TransactionReverted("receiveMessage reverted")]
    iris.responses.append(iris_complete())
    service.create_payment_request({"email": "alice@example.com", "amount": "1", "payid": "REQ1-1", "smartwallets": {"base": BASE_WALLET}})

    result = service.settle_payment_request("REQ1-1", "base")

    assert result == {"success": False, "error": "receiveMessage reverted", "classification": "semantic"}
    request = service.store.get_payment_request("REQ1-1")
    assert request.status == "failed"
    assert request.description == "receiveMessage reverted"


def test_settle_payment_request_without_wallet(service: SettlementService, backend: FakeChainBackend):
    service.create_payment_request({"email": "alice@example.com", "amount": "1", "payid": "REQ1-1"})
    result = service.settle_payment_request("REQ1-1", "arbitrum")
    assert result["classification"] == "invalid_request"
    assert backend.clients_created == 0
    assert service.store.get_payment_request("REQ1-1").status is None


def test_payment_request_crud(service: SettlementService):
    created = service.create_payment_request({"email": "bob@example.com", "amount": "10", "descriptions": "Lunch"})
    payid = created["request"]["payid"]
    assert created["request"]["descriptions"] == "Lunch"

    assert service.get_payment_request(payid)["request"]["amount"] == "10"

    updated = service.update_payment_request(payid, {"status": "cancelled"})
    assert updated["request"]["status"] == "cancelled"

    listed = service.list_payment_requests("bob@example.com")
    assert listed["count"] == 1

    missing = service.get_payment_request("REQ0-0")
    assert missing["classification"] == "not_found"

    assert service.create_payment_request({"email": "bob@example.com"})["classification"] == "invalid_request"


def test_user_crud(service: SettlementService, sleep: RecordedSleep):
    created = service.upsert_user({"email": "carol@example.com", "destinedAddress": DESTINATION})
    assert created["created"]
    assert created["user"]["destined_address"] == DESTINATION
    assert created["user"]["account"] is False

    updated = service.update_user("carol@example.com", {"account": True})
    assert updated["user"]["account"] is True

    assert service.get_user("carol@example.com")["user"]["email"] == "carol@example.com"
    assert service.get_user("dave@example.com")["classification"] == "not_found"
    # Caller errors are not retried
    assert sleep.delays == []


def test_settle_payment_request_only_once(service: SettlementService, backend: FakeChainBackend, iris: FakeSession):
    """A paid request is refused, so the payer is never charged twice."""
    backend.writes[("base", "burnUSDC")] = [make_receipt(1), make_receipt(3)]
    backend.writes[("avalanche", "receiveMessage")] = [make_receipt(2), make_receipt(4)]
    iris.responses.extend([iris_complete(), iris_complete()])
    service.create_payment_request({"email": "alice@example.com", "amount": "1", "payid": "REQ1-1", "smartwallets": {"base": BASE_WALLET}})

    first = service.settle_payment_request("REQ1-1", "base")
    second = service.settle_payment_request("REQ1-1", "base")

    assert first["success"]
    assert second == {"success": False, "error": "Payment request REQ1-1 is already paid", "classification": "invalid_request"}
    assert len(backend.write_calls("burnUSDC")) == 1
    assert service.store.get_payment_request("REQ1-1").hash == "0x" + "02" * 32


def test_settle_payment_request_in_flight_is_refused(service: SettlementService, backend: FakeChainBackend):
    service.create_payment_request({"email": "alice@example.com", "amount": "1", "payid": "REQ1-1", "smartwallets": {"base": BASE_WALLET}, "status": "settling"})
    result = service.settle_payment_request("REQ1-1", "base")
    assert result["classification"] == "invalid_request"
    assert backend.clients_created == 0


def test_settle_failed_payment_request_can_be_retried(service: SettlementService, backend: FakeChainBackend, iris: FakeSession):
    backend.writes[("base", "burnUSDC")] = [make_receipt(1)]
    backend.writes[("avalanche", "receiveMessage")] = [make_receipt(2)]
    iris.responses.append(iris_complete())
    service.create_payment_request({"email": "alice@example.com", "amount": "1", "payid": "REQ1-1", "smartwallets": {"base": BASE_WALLET}, "status": "failed"})

    result = service.settle_payment_request("REQ1-1", "base")
    assert result["request"]["status"] == "paid"


def test_create_wallet_all_owner_mismatch_is_configuration(service: SettlementService, backend: FakeChainBackend):
    """A wrong operator key surfaces as a configuration error, not an internal one."""
    backend.owner = "0x" + "99" * 20

    result = service.create_wallet_all({"avalancheDestination": DESTINATION})

    assert not result["success"]
    assert result["classification"] == "configuration"
    assert backend.write_calls() == []


def test_malformed_addresses_are_caller_errors(service: SettlementService, backend: FakeChainBackend):
    assert service.create_wallet_all({"avalancheDestination": "0x1234"})["classification"] == "invalid_request"
    assert service.create_wallet("avalanche", {"destination": "not an address"})["classification"] == "invalid_request"
    assert service.create_wallet("base", {"mintRecipient": "0x" + "ab" * 20})["classification"] == "invalid_request"
    assert service.create_wallet("base", {"mintRecipient": "0xzz"})["classification"] == "invalid_request"
    assert service.burn_usdc("base", {"walletAddress": "0xdead", "amount": "1"})["classification"] == "invalid_request"
    assert service.create_wallets_for_user("alice@example.com", "0x1234")["classification"] == "invalid_request"
    assert backend.clients_created == 0
