"""Users and payment requests.

A payment request is a record of "this user asked to be paid this much"
plus the settlement status and hash once it is paid. Records are never deleted.
Every change to a payment request is appended to its history.

:py:class:`RequestStore` is the interface the settlement service talks to.
:py:class:`InMemoryRequestStore` is the bundled implementation, good for
a single process and for tests.
"""

import abc
import datetime
import logging
import random
import threading
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation

from monoma.errors import InvalidAmount, InvalidRequest, RecordNotFound

logger = logging.getLogger(__name__)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def generate_payid() -> str:
    """Payment request id like ``REQ1718000000-123456``."""
    return f"REQ{int(time.time())}-{random.randint(0, 999_999)}"


@dataclass(slots=True, frozen=True)
class UserAccount:
    """A user and their provisioned smart wallets."""

    email: str

    #: Wallet addresses by chain key
    smartwallets: dict[str, str] | None = None

    #: Has the user finished account creation
    account: bool = False

    #: Comma separated chain keys the user has wallets on
    chains: str | None = None

    #: Where the Avalanche transfer wallet forwards funds
    destined_address: str | None = None

    created_at: datetime.datetime = field(default_factory=_now)
    updated_at: datetime.datetime = field(default_factory=_now)

    def as_dict(self) -> dict:
        return {
            "email": self.email,
            "smartwallets": self.smartwallets,
            "account": self.account,
            "chains": self.chains,
            "destined_address": self.destined_address,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class PaymentRequest:
    """A request to be paid in USDC."""

    payid: str
    email: str

    #: Amount in USDC, not raw units
    amount: Decimal

    #: Wallet addresses by chain key the payer may send to
    smartwallets: dict[str, str] | None = None

    #: Free-form status, e.g. ``pending``, ``settling``, ``paid``, ``failed``
    status: str | None = None

    #: Settlement transaction hash
    hash: str | None = None

    description: str | None = None

    created_at: datetime.datetime = field(default_factory=_now)
    updated_at: datetime.datetime = field(default_factory=_now)

    def as_dict(self) -> dict:
        return {
            "payid": self.payid,
            "email": self.email,
            "amount": str(self.amount),
            "smartwallets": self.smartwallets,
            "status": self.status,
            "hash": self.hash,
            "descriptions": self.description,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class RequestHistoryEntry:
    """One change to a payment request."""

    payid: str
    timestamp: datetime.datetime

    #: Changed fields and their new values
    changes: dict


def _to_decimal(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise InvalidAmount(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise InvalidAmount(f"Amount must be greater than 0, got {amount!r}")
    return value


class RequestStore(abc.ABC):
    """Persistence of users and payment requests."""

    @abc.abstractmethod
    def upsert_user(
        self,
        email: str,
        smartwallets: dict[str, str] | None = None,
        account: bool | None = None,
        chains: str | None = None,
        destined_address: str | None = None,
    ) -> tuple[UserAccount, bool]:
        """Create a user or update the given fields of an existing one.

        :return:
            ``(user, created)``

        :raise InvalidRequest:
            Existing user and no fields given.
        """

    @abc.abstractmethod
    def get_user(self, email: str) -> UserAccount:
        """:raise RecordNotFound: Unknown email."""

    @abc.abstractmethod
    def update_user(self, email: str, **fields) -> UserAccount:
        """Update the given fields of an existing user.

        :raise RecordNotFound:
            Unknown email.

        :raise InvalidRequest:
            No fields given.
        """

    @abc.abstractmethod
    def create_payment_request(
        self,
        email: str,
        amount: Decimal | str,
        payid: str | None = None,
        smartwallets: dict[str, str] | None = None,
        status: str | None = None,
        hash: str | None = None,
        description: str | None = None,
    ) -> PaymentRequest:
        """Create a payment request. ``payid`` is generated when not given."""

    @abc.abstractmethod
    def get_payment_request(self, payid: str) -> PaymentRequest:
        """:raise RecordNotFound: Unknown payid."""

    @abc.abstractmethod
    def list_payment_requests(self, email: str) -> list[PaymentRequest]:
        """Payment requests of a user, newest first."""

    @abc.abstractmethod
    def update_payment_request(
        self,
        payid: str,
        status: str | None = None,
        hash: str | None = None,
        description: str | None = None,
    ) -> PaymentRequest:
        """Update status, hash and/or description.

        :raise RecordNotFound:
            Unknown payid.

        :raise InvalidRequest:
            No fields given.
        """

    @abc.abstractmethod
    def get_request_history(self, payid: str) -> list[RequestHistoryEntry]:
        """All changes to a payment request, oldest first, creation included."""


#: Fields :py:meth:`RequestStore.update_user` accepts
USER_FIELDS = ("smartwallets", "account", "chains", "destined_address")


class InMemoryRequestStore(RequestStore):
    """Thread-safe dict backed store. Lost on restart."""

    def __init__(self):
        self._lock = threading.Lock()
        self._users: dict[str, UserAccount] = {}
        self._requests: dict[str, PaymentRequest] = {}
        # Insertion order breaks ties between requests created in the same instant
        self._sequence: dict[str, int] = {}
        self._history: dict[str, list[RequestHistoryEntry]] = {}

    def upsert_user(self, email, smartwallets=None, account=None, chains=None, destined_address=None):
        if not email:
            raise InvalidRequest("email is required")

        fields = {
            "smartwallets": smartwallets,
            "account": account,
            "chains": chains,
            "destined_address": destined_address,
        }
        given = {k: v for k, v in fields.items() if v is not None}

        with self._lock:
            existing = self._users.get(email)
            if existing is None:
                user = UserAccount(email=email, account=account is True, **{k: v for k, v in given.items() if k != "account"})
                self._users[email] = user
                logger.info("Created user %s", email)
                return user, True

            if not given:
                raise InvalidRequest("no fields to update")
            user = replace(existing, updated_at=_now(), **given)
            self._users[email] = user
            return user, False

    def get_user(self, email):
        with self._lock:
            try:
                return self._users[email]
            except KeyError:
                raise RecordNotFound(f"User not found: {email}") from None

    def update_user(self, email, **fields):
        unknown = set(fields) - set(USER_FIELDS)
        assert not unknown, f"Unknown user fields: {unknown}"
        given = {k: v for k, v in fields.items() if v is not None}

        with self._lock:
            existing = self._users.get(email)
            if existing is None:
                raise RecordNotFound(f"User not found: {email}")
            if not given:
                raise InvalidRequest("no fields to update")
            user = replace(existing, updated_at=_now(), **given)
            self._users[email] = user
            return user

    def create_payment_request(self, email, amount, payid=None, smartwallets=None, status=None, hash=None, description=None):
        if not email or amount in (None, ""):
            raise InvalidRequest("email and amount are required")

        request = PaymentRequest(
            payid=payid or generate_payid(),
            email=email,
            amount=_to_decimal(amount),
            smartwallets=smartwallets,
            status=status,
            hash=hash,
            description=description,
        )

        with self._lock:
            if request.payid in self._requests:
                raise InvalidRequest(f"Payment request already exists: {request.payid}")
            self._requests[request.payid] = request
            self._sequence[request.payid] = len(self._sequence)
            self._history[request.payid] = [RequestHistoryEntry(request.payid, request.created_at, {"created": True, "status": status, "hash": hash})]

        logger.info("Created payment request %s for %s, amount %s USDC", request.payid, email, request.amount)
        return request

    def get_payment_request(self, payid):
        with self._lock:
            try:
                return self._requests[payid]
            except KeyError:
                raise RecordNotFound(f"Payment request not found: {payid}") from None

    def list_payment_requests(self, email):
        with self._lock:
            matches = [r for r in self._requests.values() if r.email == email]
            return sorted(matches, key=lambda r: (r.created_at, self._sequence[r.payid]), reverse=True)

    def update_payment_request(self, payid, status=None, hash=None, description=None):
        changes = {k: v for k, v in {"status": status, "hash": hash, "description": description}.items() if v is not None}

        with self._lock:
            existing = self._requests.get(payid)
            if existing is None:
                raise RecordNotFound(f"Payment request not found: {payid}")
            if not changes:
                raise InvalidRequest("no fields to update")
            request = replace(existing, updated_at=_now(), **changes)
            self._requests[payid] = request
            self._history[payid].append(RequestHistoryEntry(payid, request.updated_at, changes))

        logger.info("Payment request %s updated: %s", payid, changes)
        return request

    def get_request_history(self, payid):
        with self._lock:
            try:
                return list(self._history[payid])
            except KeyError:
                raise RecordNotFound(f"Payment request not found: {payid}") from None
