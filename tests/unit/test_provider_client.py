"""Unit tests for the provider gateway: status mapping, envelope handling,
minor-unit conversion and the bank list fallback.
"""

from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from app.core.exceptions import (
    ProviderAuthError,
    ProviderInsufficientBalanceError,
    ProviderRateLimitError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RetryExhaustedError,
)
from app.schemas.provider import from_minor, to_minor
from app.services.provider_client import CRITICAL_BANKS, ProviderGateway, raise_for_provider_status
from app.services.rate_limiter import RateLimiter
from app.services.retry import RetryEngine
from support import FakePaystack, RecordingSleep


def make_gateway(settings, handler) -> ProviderGateway:
    return ProviderGateway(
        settings,
        RateLimiter(min_interval=0.0),
        RetryEngine(max_attempts=3, base_delay=0.0, sleep=RecordingSleep()),
        transport=httpx.MockTransport(handler),
    )


@pytest_asyncio.fixture
async def gateway(settings, provider: FakePaystack):
    client = make_gateway(settings, provider.handler)
    yield client
    await client.aclose()


class TestStatusMapping:
    @pytest.mark.parametrize("status,expected", [
        (401, ProviderAuthError),
        (403, ProviderAuthError),
        (429, ProviderRateLimitError),
        (500, ProviderUnavailableError),
        (503, ProviderUnavailableError),
        (400, ProviderRejectedError),
        (404, ProviderRejectedError),
    ])
    def test_error_status_maps_to_typed_error(self, status, expected) -> None:
        response = httpx.Response(status, json={"status": False, "message": "nope"})
        with pytest.raises(expected):
            raise_for_provider_status(response)

    def test_success_status_passes(self) -> None:
        raise_for_provider_status(httpx.Response(200, json={"status": True}))

    def test_retry_after_header_is_kept(self) -> None:
        response = httpx.Response(429, headers={"Retry-After": "7"}, json={"status": False})
        with pytest.raises(ProviderRateLimitError) as exc_info:
            raise_for_provider_status(response)
        assert exc_info.value.retry_after == 7.0

    def test_insufficient_balance_message_is_retryable(self) -> None:
        response = httpx.Response(
            400, json={"status": False, "message": "Your balance is not enough to fulfil this request"}
        )
        with pytest.raises(ProviderInsufficientBalanceError) as exc_info:
            raise_for_provider_status(response)
        assert exc_info.value.retryable

    def test_rejection_keeps_provider_message(self) -> None:
        response = httpx.Response(400, json={"status": False, "message": "Invalid bank code"})
        with pytest.raises(ProviderRejectedError) as exc_info:
            raise_for_provider_status(response)
        assert exc_info.value.message == "Invalid bank code"
        assert exc_info.value.provider_status == 400


class TestMinorUnits:
    def test_kobo_to_naira(self) -> None:
        assert from_minor(500000) == Decimal("5000")
        assert from_minor("12345") == Decimal("123.45")
        assert from_minor(None) == Decimal("0")

    def test_naira_to_kobo(self) -> None:
        assert to_minor(Decimal("5000.00")) == 500000
        assert to_minor(Decimal("123.45")) == 12345


class TestGatewayCalls:
    @pytest.mark.asyncio
    async def test_requests_carry_bearer_secret(self, settings) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"status": True, "data": []})

        client = make_gateway(settings, handler)
        await client.get_balances()
        await client.aclose()

        assert seen["auth"] == f"Bearer {settings.PROVIDER_SECRET_KEY}"

    @pytest.mark.asyncio
    async def test_verify_transaction_converts_amount(self, gateway, provider) -> None:
        provider.settle_payment("FUND_1", Decimal("5000"))

        verified = await gateway.verify_transaction("FUND_1")

        assert verified.succeeded
        assert verified.amount == Decimal("5000")
        assert verified.provider_reference == "FUND_1"

    @pytest.mark.asyncio
    async def test_unknown_reference_is_rejected_without_retry(self, gateway, provider) -> None:
        with pytest.raises(ProviderRejectedError):
            await gateway.verify_transaction("missing")
        assert provider.count("GET", "/transaction/verify/") == 1

    @pytest.mark.asyncio
    async def test_get_balances_splits_balance_types(self, gateway, provider) -> None:
        provider.transfer_balance = Decimal("1500")
        provider.revenue_balance = Decimal("250.50")

        balances = await gateway.get_balances()

        assert balances.transfers == Decimal("1500")
        assert balances.revenue == Decimal("250.50")
        assert balances.currency == "NGN"

    @pytest.mark.asyncio
    async def test_false_envelope_is_rejected(self, settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": False, "message": "Customer not found"})

        client = make_gateway(settings, handler)
        with pytest.raises(ProviderRejectedError, match="Customer not found"):
            await client.create_customer("ada@example.com", "Ada", "Lovelace", None)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timeouts_are_retried_then_exhausted(self, settings) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            raise httpx.ConnectTimeout("timed out", request=request)

        client = make_gateway(settings, handler)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await client.verify_transfer("WD-1")
        await client.aclose()

        assert len(calls) == 3
        assert isinstance(exc_info.value.last_error, ProviderTimeoutError)

    @pytest.mark.asyncio
    async def test_connection_errors_map_to_unavailable(self, settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_gateway(settings, handler)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await client.get_balances()
        await client.aclose()

        assert isinstance(exc_info.value.last_error, ProviderUnavailableError)

    @pytest.mark.asyncio
    async def test_initiate_transfer_is_single_attempt(self, gateway, provider) -> None:
        provider.transfer_responses.append(httpx.Response(503, json={"status": False, "message": "down"}))

        with pytest.raises(ProviderUnavailableError):
            await gateway.initiate_transfer(Decimal("500"), "WD-1", "RCP_1", "Withdrawal - WD-1")

        assert provider.count("POST", "/transfer") == 1

    @pytest.mark.asyncio
    async def test_initiate_transfer_sends_kobo(self, gateway, provider) -> None:
        result = await gateway.initiate_transfer(Decimal("1234.50"), "WD-2", "RCP_1", "Withdrawal - WD-2")

        assert provider.transfers["WD-2"]["amount"] == 123450
        assert result.amount == Decimal("1234.50")
        assert result.transfer_code.startswith("TRF_")
        assert not result.succeeded and not result.failed

    @pytest.mark.asyncio
    async def test_dedicated_account_parsing(self, gateway, provider) -> None:
        account = await gateway.create_dedicated_account("CUS_1", "wema-bank")

        assert account.bank_name == "Wema Bank"
        assert len(account.account_number) == 10
        assert account.active


class TestBankList:
    @pytest.mark.asyncio
    async def test_provider_list_is_merged_with_critical_banks(self, gateway) -> None:
        banks, fallback = await gateway.list_banks()

        codes = [bank.code for bank in banks]
        assert not fallback
        assert codes.count("044") == 1
        assert "035" in codes
        assert {bank.code for bank in CRITICAL_BANKS} <= set(codes)
        names = [bank.name.lower() for bank in banks]
        assert names == sorted(names)

    @pytest.mark.asyncio
    async def test_outage_serves_critical_banks(self, gateway, provider) -> None:
        provider.banks_unavailable = True

        banks, fallback = await gateway.list_banks()

        assert fallback
        assert banks == CRITICAL_BANKS
