"""Async client for the payment provider's REST API.

Every call goes through the shared ``RateLimiter`` and carries the configured
timeout. HTTP and transport failures are mapped onto the provider exception
hierarchy so the retry engine can tell transient errors from terminal ones.
Idempotent reads and provisioning calls are retried here; transfer
initiation is a single attempt and the withdrawal flow owns its retries.
"""

from decimal import Decimal
from typing import Any

import httpx

from app.core.config import Settings
from app.core.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderInsufficientBalanceError,
    ProviderRateLimitError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RetryExhaustedError,
)
from app.core.logging import get_logger
from app.schemas.provider import (
    DedicatedAccount,
    ProviderBalances,
    ProviderCustomer,
    ResolvedAccount,
    TransferRecipient,
    TransferResult,
    VerifiedTransaction,
    from_minor,
    to_minor,
)
from app.schemas.withdrawal import BankRead
from app.services.rate_limiter import RateLimiter
from app.services.retry import RetryEngine

logger = get_logger(__name__)

# Served when the provider bank list cannot be fetched
CRITICAL_BANKS: list[BankRead] = [
    BankRead(name="Access Bank", code="044"),
    BankRead(name="Opay", code="999992", type="mobile_money"),
    BankRead(name="Kuda Bank", code="090267", type="microfinance"),
    BankRead(name="Zenith Bank", code="057"),
    BankRead(name="Moniepoint MFB", code="50515", type="microfinance"),
    BankRead(name="Palmpay", code="999991", type="mobile_money"),
    BankRead(name="First Bank of Nigeria", code="011"),
    BankRead(name="Guaranty Trust Bank", code="058"),
    BankRead(name="United Bank For Africa", code="033"),
    BankRead(name="Fidelity Bank", code="070"),
]

_INSUFFICIENT_BALANCE_MARKERS = ("balance is not enough", "insufficient balance")


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


def raise_for_provider_status(response: httpx.Response) -> None:
    """Translate a non-2xx provider response into a typed exception."""
    status = response.status_code
    if status < 400:
        return
    message = _error_message(response)
    if status in (401, 403):
        raise ProviderAuthError(provider_status=status)
    if status == 429:
        raise ProviderRateLimitError(retry_after=_retry_after(response))
    if status >= 500:
        raise ProviderUnavailableError(provider_status=status)
    if any(marker in message.lower() for marker in _INSUFFICIENT_BALANCE_MARKERS):
        raise ProviderInsufficientBalanceError()
    raise ProviderRejectedError(message, provider_status=status)


class ProviderGateway:
    """Typed wrapper around the provider REST API."""

    def __init__(
        self,
        settings: Settings,
        limiter: RateLimiter,
        retry_engine: RetryEngine,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.limiter = limiter
        self.retry_engine = retry_engine
        self.client = httpx.AsyncClient(
            base_url=settings.PROVIDER_BASE_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            headers={
                "Authorization": f"Bearer {settings.PROVIDER_SECRET_KEY}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        """Perform one HTTP call and return the ``data`` part of the envelope."""
        async with self.limiter.slot():
            try:
                response = await self.client.request(method, path, json=json, params=params)
            except httpx.TimeoutException as exc:
                logger.warning("Provider %s %s timed out", method, path)
                raise ProviderTimeoutError() from exc
            except httpx.TransportError as exc:
                logger.warning("Provider %s %s connection failed: %s", method, path, exc)
                raise ProviderUnavailableError(f"Payment service unreachable: {exc}") from exc

        raise_for_provider_status(response)
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError("Malformed response from payment service") from exc
        if not body.get("status"):
            raise ProviderRejectedError(
                body.get("message") or "Provider reported failure",
                provider_status=response.status_code,
            )
        return body.get("data")

    async def _call(self, description: str, method: str, path: str, **kwargs: Any) -> Any:
        return await self.retry_engine.run(
            lambda: self._request(method, path, **kwargs),
            description,
        )

    # Customers and dedicated accounts

    async def create_customer(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: str | None,
    ) -> ProviderCustomer:
        data = await self._call(
            "create customer",
            "POST",
            "/customer",
            json={"email": email, "first_name": first_name, "last_name": last_name, "phone": phone},
        )
        return ProviderCustomer(customer_code=data["customer_code"], email=data.get("email"))

    async def create_dedicated_account(self, customer_code: str, preferred_bank: str) -> DedicatedAccount:
        # Single attempt: the caller falls through to the next bank instead
        data = await self._request(
            "POST",
            "/dedicated_account",
            json={"customer": customer_code, "preferred_bank": preferred_bank},
        )
        return self._dedicated_account(data)

    async def fetch_dedicated_account(self, provider_id: str) -> DedicatedAccount:
        data = await self._call("fetch dedicated account", "GET", f"/dedicated_account/{provider_id}")
        return self._dedicated_account(data)

    async def deactivate_dedicated_account(self, provider_id: str) -> None:
        await self._call("deactivate dedicated account", "DELETE", f"/dedicated_account/{provider_id}")

    @staticmethod
    def _dedicated_account(data: dict) -> DedicatedAccount:
        bank = data.get("bank") or {}
        if not data.get("account_number") or not bank.get("name"):
            raise ProviderRejectedError("Invalid dedicated account data from provider")
        return DedicatedAccount(
            provider_id=str(data["id"]),
            account_name=data.get("account_name"),
            account_number=data["account_number"],
            bank_name=bank["name"],
            active=bool(data.get("active", True)),
        )

    # Provider balances

    async def get_balances(self) -> ProviderBalances:
        data = await self._call("check provider balance", "GET", "/balance")
        balances = ProviderBalances()
        for entry in data or []:
            kind = entry.get("balance_type")
            if kind == "transfers":
                balances.transfers = from_minor(entry.get("balance"))
            elif kind == "revenue":
                balances.revenue = from_minor(entry.get("balance"))
            if entry.get("currency"):
                balances.currency = entry["currency"]
        return balances

    async def move_to_transfer_balance(self, amount: Decimal, reason: str) -> dict:
        return await self._call(
            "move revenue to transfer balance",
            "POST",
            "/balance/transfer",
            json={
                "source": "revenue",
                "amount": to_minor(amount),
                "currency": self.settings.CURRENCY,
                "reason": reason,
            },
        )

    # Inbound payments

    async def verify_transaction(self, reference: str) -> VerifiedTransaction:
        data = await self._call("verify transaction", "GET", f"/transaction/verify/{reference}")
        return VerifiedTransaction(
            reference=reference,
            status=data.get("status") or "pending",
            amount=from_minor(data.get("amount")),
            provider_reference=data.get("reference"),
            gateway_response=data.get("gateway_response"),
        )

    async def list_customer_transactions(self, customer_code: str) -> list[VerifiedTransaction]:
        data = await self._call(
            "list customer transactions",
            "GET",
            "/transaction",
            params={"customer": customer_code, "status": "success", "perPage": 100},
        )
        return [
            VerifiedTransaction(
                reference=item.get("reference"),
                status=item.get("status") or "success",
                amount=from_minor(item.get("amount")),
                provider_reference=item.get("reference"),
                gateway_response=item.get("gateway_response"),
            )
            for item in data or []
        ]

    # Payouts

    async def create_transfer_recipient(
        self,
        account_name: str,
        account_number: str,
        bank_code: str,
    ) -> TransferRecipient:
        data = await self._call(
            "create transfer recipient",
            "POST",
            "/transferrecipient",
            json={
                "type": "nuban",
                "name": account_name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": self.settings.CURRENCY,
            },
        )
        details = data.get("details") or {}
        return TransferRecipient(
            recipient_code=data["recipient_code"],
            account_name=details.get("account_name") or account_name,
        )

    async def initiate_transfer(
        self,
        amount: Decimal,
        reference: str,
        recipient_code: str,
        reason: str,
    ) -> TransferResult:
        data = await self._request(
            "POST",
            "/transfer",
            json={
                "source": "balance",
                "amount": to_minor(amount),
                "reference": reference,
                "recipient": recipient_code,
                "reason": reason,
            },
        )
        return self._transfer_result(reference, data)

    async def verify_transfer(self, reference: str) -> TransferResult:
        data = await self._call("verify transfer", "GET", f"/transfer/verify/{reference}")
        return self._transfer_result(reference, data)

    @staticmethod
    def _transfer_result(reference: str, data: dict) -> TransferResult:
        return TransferResult(
            reference=data.get("reference") or reference,
            status=data.get("status") or "pending",
            transfer_code=data.get("transfer_code"),
            amount=from_minor(data["amount"]) if data.get("amount") is not None else None,
            reason=data.get("reason"),
        )

    async def resolve_account(self, account_number: str, bank_code: str) -> ResolvedAccount:
        data = await self._call(
            "resolve account",
            "GET",
            "/bank/resolve",
            params={"account_number": account_number, "bank_code": bank_code},
        )
        return ResolvedAccount(
            account_name=data["account_name"],
            account_number=data.get("account_number") or account_number,
            bank_code=bank_code,
        )

    async def list_banks(self) -> tuple[list[BankRead], bool]:
        """Return ``(banks, used_fallback)``.

        The provider list is merged with the static critical banks so the
        common destinations are always selectable.
        """
        try:
            data = await self._call("list banks", "GET", "/bank", params={"country": "nigeria"})
        except (ProviderError, RetryExhaustedError) as exc:
            logger.warning("Bank list unavailable, serving fallback list: %s", exc)
            return list(CRITICAL_BANKS), True

        banks = [
            BankRead(
                name=item["name"],
                code=str(item["code"]),
                active=bool(item.get("active", True)),
                type=item.get("type") or "commercial",
            )
            for item in data or []
            if item.get("name") and item.get("code")
        ]
        known = {bank.code for bank in banks}
        banks.extend(bank for bank in CRITICAL_BANKS if bank.code not in known)
        banks.sort(key=lambda bank: bank.name.lower())
        return banks, False
