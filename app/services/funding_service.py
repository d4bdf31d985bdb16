"""Funding initiator: provision a receiving account and open a pending deposit.

Funding never waits for money to arrive. It returns the dedicated account
the user should pay into plus a reference; the deposit is settled later by
the webhook ingestor or the reconciliation sweeper.
"""

import re
import secrets
import string
import time
import uuid
from decimal import Decimal, InvalidOperation

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import utc_now
from app.core.config import Settings
from app.core.exceptions import (
    NotFoundError,
    ProviderAuthError,
    ProviderError,
    ProviderRejectedError,
    ReceivingAccountUnavailableError,
    RetryExhaustedError,
    ValidationError,
)
from app.core.logging import get_logger
from app.models.notification import NotificationType
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.schemas.funding import FundingResponse, FundingStatusResponse
from app.schemas.provider import VerifiedTransaction
from app.schemas.transaction import DepositMetadata, ReceivingAccountSnapshot, dump_metadata, parse_metadata
from app.schemas.wallet import WalletRead
from app.services.ledger import LedgerStore, to_money
from app.services.notifications import BalancePublisher, Notifier, balance_update
from app.services.provider_client import ProviderGateway
from app.services.saga import SagaContext, SagaOrchestrator, SagaStep
from app.services.transaction_service import TransactionService, format_amount

logger = get_logger(__name__)

PHONE_PATTERN = re.compile(r"^(0\d{10}|\+234\d{10})$")
_REFERENCE_ALPHABET = string.ascii_lowercase + string.digits


def new_funding_reference(user_id: uuid.UUID) -> str:
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(9))
    return f"FUND_{user_id}_{int(time.time() * 1000)}_{suffix}"


def parse_amount(value, minimum: Decimal, label: str) -> Decimal:
    """Coerce ``value`` to a positive Decimal no smaller than ``minimum``."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid {label} amount") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{label.capitalize()} amount must be greater than zero")
    if amount < minimum:
        raise ValidationError(f"Minimum {label} amount is {format_amount(minimum)}")
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError(f"{label.capitalize()} amount cannot have more than 2 decimal places")
    return amount


class FundingService:
    def __init__(
        self,
        settings: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        gateway: ProviderGateway,
        publisher: BalancePublisher,
    ) -> None:
        self.settings = settings
        self.session_maker = session_maker
        self.gateway = gateway
        self.publisher = publisher

    def validate_request(self, amount, email: str, phone_number: str) -> tuple[Decimal, str]:
        amount = parse_amount(amount, self.settings.MIN_FUNDING_AMOUNT, "funding")
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationError("Invalid email format") from exc
        if not PHONE_PATTERN.match(phone_number or ""):
            raise ValidationError(
                "Invalid phone number format. Use 11 digits starting with 0 or +234 followed by 10 digits"
            )
        return amount, email

    async def initiate(
        self,
        user_id: uuid.UUID,
        amount,
        email: str,
        phone_number: str,
    ) -> FundingResponse:
        """Open a pending deposit and return where the user should pay.

        Raises:
            ValidationError: malformed amount, email or phone
            NotFoundError: unknown user
            ReceivingAccountUnavailableError: no bank could issue an account
        """
        amount, email = self.validate_request(amount, email, phone_number)

        try:
            async with self.session_maker() as session:
                async with session.begin():
                    ledger = LedgerStore(session)
                    user = await ledger.get_user(user_id)
                    wallet = await ledger.get_or_create_wallet(user.id, self.settings.CURRENCY)
                    context = SagaContext(values={
                        "session": session,
                        "user": user,
                        "wallet": wallet,
                        "amount": amount,
                        "email": email,
                        "phone_number": phone_number,
                    })
                    await self._saga().run(context)
                    transaction: Transaction = context.values["record_transaction"]
                    Notifier(session).notify(
                        user.id,
                        "Funding Initiated",
                        f"Transfer {format_amount(amount, wallet.currency)} to "
                        f"{wallet.receiving_account_number} ({wallet.receiving_bank_name}). "
                        f"Ref: {transaction.reference}",
                        NotificationType.FUNDING,
                        reference_id=transaction.reference,
                    )
                    response = FundingResponse(
                        receiving_account=ReceivingAccountSnapshot(**wallet.receiving_account_snapshot()),
                        reference=transaction.reference,
                        amount=amount,
                        customer_code=user.provider_customer_code,
                    )
        except (ProviderError, RetryExhaustedError) as exc:
            await self._record_failure(user_id, amount, exc)
            raise

        logger.info("Funding %s opened for user %s: %s", response.reference, user_id, amount)
        return response

    def _saga(self) -> SagaOrchestrator:
        return SagaOrchestrator(
            "funding",
            [
                SagaStep("ensure_customer", self._ensure_customer),
                SagaStep("ensure_receiving_account", self._ensure_receiving_account),
                SagaStep("record_transaction", self._record_transaction),
            ],
        )

    async def _ensure_customer(self, context: SagaContext) -> str:
        user = context.values["user"]
        if user.provider_customer_code:
            return user.provider_customer_code
        customer = await self.gateway.create_customer(
            email=context.values["email"],
            first_name=user.first_name,
            last_name=user.last_name,
            phone=context.values["phone_number"],
        )
        user.provider_customer_code = customer.customer_code
        user.phone_number = user.phone_number or context.values["phone_number"]
        logger.info("Provider customer %s created for user %s", customer.customer_code, user.id)
        return customer.customer_code

    async def _ensure_receiving_account(self, context: SagaContext) -> ReceivingAccountSnapshot:
        wallet = context.values["wallet"]
        if wallet.has_receiving_account and wallet.receiving_account_active:
            try:
                existing = await self.gateway.fetch_dedicated_account(wallet.receiving_account_provider_id)
            except (ProviderError, RetryExhaustedError) as exc:
                logger.warning("Could not verify receiving account for wallet %s: %s", wallet.id, exc)
            else:
                if existing.active:
                    return ReceivingAccountSnapshot(**wallet.receiving_account_snapshot())
                logger.info("Receiving account for wallet %s is no longer active", wallet.id)

        customer_code = context.values["ensure_customer"]
        account = None
        last_error: Exception | None = None
        for bank in self.settings.DEDICATED_ACCOUNT_BANKS:
            try:
                account = await self.gateway.create_dedicated_account(customer_code, bank)
                break
            except ProviderAuthError:
                raise
            except ProviderError as exc:
                logger.warning("Bank %s could not issue a receiving account: %s", bank, exc)
                last_error = exc
        if account is None:
            raise ReceivingAccountUnavailableError(str(last_error) if last_error else None)

        context.on_rollback(
            "deactivate receiving account",
            lambda: self.gateway.deactivate_dedicated_account(account.provider_id),
        )
        wallet.receiving_account_number = account.account_number
        wallet.receiving_account_name = account.account_name
        wallet.receiving_bank_name = account.bank_name
        wallet.receiving_account_provider_id = account.provider_id
        wallet.receiving_account_active = True
        wallet.receiving_account_created_at = utc_now()
        await context.values["session"].flush()
        logger.info("Receiving account %s issued for wallet %s", account.account_number, wallet.id)
        return ReceivingAccountSnapshot(**wallet.receiving_account_snapshot())

    async def _record_transaction(self, context: SagaContext) -> Transaction:
        wallet = context.values["wallet"]
        user = context.values["user"]
        snapshot: ReceivingAccountSnapshot = context.values["ensure_receiving_account"]
        metadata = DepositMetadata(
            gateway=self.settings.PROVIDER_NAME,
            customer_email=context.values["email"],
            customer_phone=context.values["phone_number"],
            customer_code=context.values["ensure_customer"],
            receiving_account=snapshot,
            receiving_account_id=snapshot.provider_reference,
        )
        ledger = LedgerStore(context.values["session"])
        return await ledger.add_transaction(
            wallet.id,
            TransactionType.DEPOSIT,
            context.values["amount"],
            new_funding_reference(user.id),
            dump_metadata(metadata),
        )

    async def _record_failure(self, user_id: uuid.UUID, amount: Decimal, error: Exception) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                Notifier(session).notify(
                    user_id,
                    "Funding Request Failed",
                    f"Your funding request of {format_amount(amount, self.settings.CURRENCY)} "
                    f"could not be processed: {getattr(error, 'message', str(error))}",
                    NotificationType.FUNDING,
                    status="failed",
                )
        logger.warning("Funding for user %s failed: %s", user_id, error)

    async def status(self, user_id: uuid.UUID, reference: str) -> FundingStatusResponse:
        """Report a funding's status, verifying with the provider while pending."""
        async with self.session_maker() as session:
            ledger = LedgerStore(session)
            wallet = await ledger.get_wallet(user_id)
            transaction = await ledger.find_by_reference(reference)
            if (
                wallet is None
                or transaction is None
                or transaction.wallet_id != wallet.id
                or transaction.type != TransactionType.DEPOSIT.value
            ):
                raise NotFoundError("Transaction", reference)
            if transaction.status != TransactionStatus.PENDING.value:
                return FundingStatusResponse(
                    reference=reference,
                    status=TransactionStatus(transaction.status),
                    new_balance=wallet.balance,
                )

        try:
            verified = await self._lookup_payment(transaction)
        except (ProviderError, RetryExhaustedError) as exc:
            logger.warning("Status check for %s could not reach the provider: %s", reference, exc)
            verified = None
        if verified is None:
            return FundingStatusResponse(
                reference=reference,
                status=TransactionStatus.PENDING,
                new_balance=wallet.balance,
            )

        credited = None
        async with self.session_maker() as session:
            async with session.begin():
                ledger = LedgerStore(session)
                transaction = await ledger.find_by_reference(reference)
                service = TransactionService(session)
                if verified.succeeded:
                    credited = await service.complete_deposit(
                        transaction,
                        resolved_by="status_check",
                        provider_reference=verified.provider_reference
                        if verified.provider_reference != reference else None,
                    )
                elif verified.failed:
                    await service.fail_deposit(
                        transaction,
                        verified.gateway_response or f"Payment {verified.status}",
                        resolved_by="status_check",
                    )
                wallet = await ledger.refresh_wallet(transaction.wallet_id)
                response = FundingStatusResponse(
                    reference=reference,
                    status=TransactionStatus(transaction.status),
                    new_balance=wallet.balance,
                )
        if credited is not None:
            await self.publisher.publish(balance_update(credited, transaction))
        return response

    async def _lookup_payment(self, transaction: Transaction) -> VerifiedTransaction | None:
        """Find the provider's record of a pending deposit.

        A bank transfer into the dedicated account carries the provider's own
        reference, so an unknown reference falls back to the customer's
        successful payments of the same amount not yet in the ledger.
        """
        try:
            return await self.gateway.verify_transaction(transaction.reference)
        except ProviderRejectedError as exc:
            if exc.provider_status != 404:
                raise

        metadata = parse_metadata(transaction.details, transaction.type)
        if not metadata.customer_code:
            return None
        payments = await self.gateway.list_customer_transactions(metadata.customer_code)
        async with self.session_maker() as session:
            ledger = LedgerStore(session)
            for payment in payments:
                if not payment.succeeded or to_money(payment.amount) != to_money(transaction.amount):
                    continue
                if await ledger.find_by_provider_reference(payment.reference) is None:
                    return payment
        return None

    async def get_balance(self, user_id: uuid.UUID) -> WalletRead:
        async with self.session_maker() as session:
            async with session.begin():
                ledger = LedgerStore(session)
                user = await ledger.get_user(user_id)
                wallet = await ledger.get_or_create_wallet(user.id, self.settings.CURRENCY)
                return WalletRead.from_wallet(wallet)

    async def list_transactions(self, user_id: uuid.UUID, limit: int = 50) -> list[Transaction]:
        async with self.session_maker() as session:
            ledger = LedgerStore(session)
            wallet = await ledger.get_wallet(user_id)
            if wallet is None:
                return []
            return await ledger.list_transactions(wallet.id, limit)
