"""Shared test doubles: an in-process payment provider, a recording
publisher, and helpers to build a fully wired container on SQLite.
"""

import json
import os
import tempfile
import uuid
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy import event, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.core.config import Settings
from app.core.security import compute_signature
from app.db.base import Base
from app.models.notification import Notification
from app.models.transaction import Transaction
from app.models.user import User
from app.models.wallet import Wallet
from app.schemas.wallet import BalanceUpdate
from app.services.container import ServiceContainer
from app.services.rate_limiter import RateLimiter
from app.services.retry import RetryEngine

import app.models  # noqa: F401  registers every table on Base.metadata

BANK_NAMES = {
    "wema-bank": "Wema Bank",
    "titan-paystack": "Titan Paystack",
    "access-bank": "Access Bank",
}


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "POSTGRES_HOST": "localhost",
        "POSTGRES_USER": "testuser",
        "POSTGRES_PASSWORD": "testpass",
        "POSTGRES_DB": "testdb",
        "SECRET_KEY": "test-secret-key",
        "PROVIDER_SECRET_KEY": "sk_test_secret",
        "PROVIDER_BASE_URL": "https://provider.test",
        "PROVIDER_MIN_INTERVAL_SECONDS": 0.0,
        "RETRY_BASE_DELAY_SECONDS": 0.0,
        "DEDICATED_ACCOUNT_BANKS": ["wema-bank", "titan-paystack"],
    }
    values.update(overrides)
    return Settings(**values)


class RecordingPublisher:
    def __init__(self) -> None:
        self.updates: list[BalanceUpdate] = []

    async def publish(self, update: BalanceUpdate) -> None:
        self.updates.append(update)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _ok(data: Any, message: str = "ok") -> httpx.Response:
    return httpx.Response(200, json={"status": True, "message": message, "data": data})


def _error(status: int, message: str) -> httpx.Response:
    return httpx.Response(status, json={"status": False, "message": message})


class FakePaystack:
    """Stateful stand-in for the provider REST API, served via MockTransport."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.customers: dict[str, str] = {}
        self.accounts: dict[str, dict] = {}
        self.failing_banks: set[str] = set()
        self.transactions: dict[str, dict] = {}
        self.transfers: dict[str, dict] = {}
        self.transfer_responses: deque[httpx.Response] = deque()
        self.timeouts_after_accept = 0
        self.transfer_balance = Decimal("100000")
        self.revenue_balance = Decimal("0")
        self.balance_moves: list[Decimal] = []
        self.banks_unavailable = False
        self.balance_unavailable = False
        self.transfer_lookup_unavailable = False
        self.resolved_name = "ADA LOVELACE"
        self.resolve_fails = False
        self.recipients: list[dict] = []
        self._next_id = 1000

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, method: str, path: str) -> int:
        """Calls to ``path``; a trailing slash matches every path below it."""
        return sum(
            1 for m, seen in self.calls
            if m == method and (seen == path or (path.endswith("/") and seen.startswith(path)))
        )

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def settle_payment(self, reference: str, amount: Decimal, status: str = "success") -> None:
        self.transactions[reference] = {
            "reference": reference,
            "status": status,
            "amount": int(amount * 100),
            "gateway_response": "Approved" if status == "success" else "Declined",
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        body = json.loads(request.content) if request.content else {}

        if method == "POST" and path == "/customer":
            code = self.customers.setdefault(body["email"], f"CUS_{self._new_id()}")
            return _ok({"customer_code": code, "email": body["email"]})

        if method == "POST" and path == "/dedicated_account":
            bank = body["preferred_bank"]
            if bank in self.failing_banks:
                return _error(400, f"{bank} is not available")
            account_id = self._new_id()
            account = {
                "id": account_id,
                "account_name": "PAYSTACK/ADA LOVELACE",
                "account_number": f"{9000000000 + account_id}",
                "bank": {"name": BANK_NAMES.get(bank, bank)},
                "active": True,
            }
            self.accounts[str(account_id)] = account
            return _ok(account)

        if path.startswith("/dedicated_account/"):
            account = self.accounts.get(path.rsplit("/", 1)[1])
            if account is None:
                return _error(404, "Dedicated account not found")
            if method == "DELETE":
                account["active"] = False
            return _ok(account)

        if method == "GET" and path == "/balance":
            if self.balance_unavailable:
                return _error(503, "Service unavailable")
            return _ok([
                {"currency": "NGN", "balance": int(self.transfer_balance * 100), "balance_type": "transfers"},
                {"currency": "NGN", "balance": int(self.revenue_balance * 100), "balance_type": "revenue"},
            ])

        if method == "POST" and path == "/balance/transfer":
            amount = Decimal(body["amount"]) / 100
            self.revenue_balance -= amount
            self.transfer_balance += amount
            self.balance_moves.append(amount)
            return _ok({"amount": body["amount"]})

        if method == "GET" and path.startswith("/transaction/verify/"):
            found = self.transactions.get(path.rsplit("/", 1)[1])
            if found is None:
                return _error(404, "Transaction reference not found")
            return _ok(found)

        if method == "GET" and path == "/transaction":
            return _ok(list(self.transactions.values()))

        if method == "POST" and path == "/transferrecipient":
            recipient = {"recipient_code": f"RCP_{self._new_id()}", "details": {"account_name": body["name"]}}
            self.recipients.append(recipient)
            return _ok(recipient)

        if method == "POST" and path == "/transfer":
            if self.transfer_responses:
                return self.transfer_responses.popleft()
            if body["reference"] in self.transfers:
                return _error(400, "Duplicate Transfer Reference")
            transfer = {
                "reference": body["reference"],
                "amount": body["amount"],
                "status": "pending",
                "transfer_code": f"TRF_{self._new_id()}",
                "reason": body["reason"],
            }
            self.transfers[body["reference"]] = transfer
            self.transfer_balance -= Decimal(body["amount"]) / 100
            if self.timeouts_after_accept:
                self.timeouts_after_accept -= 1
                raise httpx.ReadTimeout("Timed out after accepting transfer", request=request)
            return _ok(transfer)

        if method == "GET" and path.startswith("/transfer/verify/"):
            if self.transfer_lookup_unavailable:
                return _error(503, "Service unavailable")
            found = self.transfers.get(path.rsplit("/", 1)[1])
            if found is None:
                return _error(404, "Transfer not found")
            return _ok(found)

        if method == "GET" and path == "/bank/resolve":
            if self.resolve_fails:
                return _error(422, "Could not resolve account name. Check parameters or try again.")
            return _ok({
                "account_name": self.resolved_name,
                "account_number": request.url.params["account_number"],
            })

        if method == "GET" and path == "/bank":
            if self.banks_unavailable:
                return _error(503, "Service unavailable")
            return _ok([
                {"name": "Access Bank", "code": "044", "active": True, "type": "nuban"},
                {"name": "Wema Bank", "code": "035", "active": True, "type": "nuban"},
            ])

        return _error(404, f"No route for {method} {path}")


async def make_engine(path: str | None = None) -> AsyncEngine:
    """File-backed SQLite so concurrent sessions see one database."""
    if path is None:
        fd, path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}")

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


def build_container(
    settings: Settings,
    engine: AsyncEngine,
    provider: FakePaystack,
    publisher: RecordingPublisher | None = None,
    sleep: RecordingSleep | None = None,
) -> ServiceContainer:
    return ServiceContainer.build(
        settings,
        engine=engine,
        publisher=publisher or RecordingPublisher(),
        retry_engine=RetryEngine.from_settings(settings, sleep=sleep or RecordingSleep()),
        limiter=RateLimiter(max_concurrent=settings.PROVIDER_MAX_CONCURRENCY, min_interval=0.0),
        transport=provider.transport,
    )


async def create_user(
    container: ServiceContainer,
    email: str = "ada@example.com",
    full_name: str = "Ada Lovelace",
    balance: Decimal = Decimal("0"),
    with_wallet: bool = True,
) -> tuple[uuid.UUID, uuid.UUID | None]:
    async with container.session_maker() as session:
        async with session.begin():
            user = User(id=uuid.uuid4(), email=email, full_name=full_name)
            session.add(user)
            wallet_id = None
            if with_wallet:
                wallet = Wallet(
                    id=uuid.uuid4(),
                    user_id=user.id,
                    balance=balance,
                    total_deposits=balance,
                    currency="NGN",
                )
                session.add(wallet)
                wallet_id = wallet.id
    return user.id, wallet_id


async def load_wallet(container: ServiceContainer, wallet_id: uuid.UUID) -> Wallet:
    async with container.session_maker() as session:
        return await session.get(Wallet, wallet_id)


async def load_transaction(container: ServiceContainer, reference: str) -> Transaction:
    from app.services.ledger import LedgerStore

    async with container.session_maker() as session:
        return await LedgerStore(session).find_by_reference(reference)


async def backdate(container: ServiceContainer, reference: str, created_at: datetime) -> None:
    async with container.session_maker() as session:
        async with session.begin():
            await session.execute(
                update(Transaction)
                .where(Transaction.reference == reference)
                .values(created_at=created_at)
            )


def webhook_body(event_name: str, data: dict) -> bytes:
    return json.dumps({"event": event_name, "data": data}).encode()


def sign(body: bytes, settings: Settings) -> str:
    return compute_signature(body, settings.webhook_secret)


def charge_success(email: str, reference: str, amount_kobo: int, account_id: str | None = None) -> bytes:
    data: dict[str, Any] = {
        "reference": reference,
        "amount": amount_kobo,
        "status": "success",
        "gateway_response": "Approved",
        "customer": {"email": email, "customer_code": "CUS_1"},
    }
    if account_id is not None:
        data["account_details"] = {"id": account_id}
    return webhook_body("charge.success", data)


async def notifications(container: ServiceContainer, title: str | None = None) -> list[Notification]:
    async with container.session_maker() as session:
        query = select(Notification).order_by(Notification.created_at)
        if title is not None:
            query = query.where(Notification.title == title)
        return list((await session.execute(query)).scalars().all())


async def transactions(container: ServiceContainer, wallet_id: uuid.UUID) -> list[Transaction]:
    async with container.session_maker() as session:
        result = await session.execute(
            select(Transaction).where(Transaction.wallet_id == wallet_id).order_by(Transaction.created_at)
        )
        return list(result.scalars().all())


async def credited_deposit(
    container: ServiceContainer,
    user_id: uuid.UUID,
    amount: str,
    email: str = "ada@example.com",
) -> str:
    """Open a funding and settle it through a signed webhook."""
    funding = await container.funding.initiate(user_id, amount, email, "08012345678")
    body = charge_success(email, funding.reference, int(Decimal(amount) * 100))
    await container.webhooks.ingest(body, sign(body, container.settings))
    return funding.reference


async def run_with_container(body, settings: Settings | None = None, provider: FakePaystack | None = None):
    """Run ``body(container, provider)`` against a throwaway database.

    For property tests, which drive each example through ``asyncio.run``.
    """
    provider = provider or FakePaystack()
    engine = await make_engine()
    path = engine.url.database
    container = build_container(settings or make_settings(), engine, provider)
    try:
        return await body(container, provider)
    finally:
        await container.aclose()
        os.remove(path)
