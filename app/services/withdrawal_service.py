"""Withdrawal outflow: debit the wallet, then pay out through the provider.

The debit and the pending withdrawal row commit together before any money
moves at the provider. If the payout request errors, the provider is asked
whether it holds the transfer: only when it has none, or reports it failed,
is the withdrawal failed and the amount credited back, so a failed payout
nets to zero and an accepted one is never refunded.
Completion is only ever recorded from a ``transfer.*`` webhook or the sweep.
"""

import re
import secrets
import time
import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.exceptions import (
    InsufficientFundsError,
    NotFoundError,
    ProviderError,
    ProviderInsufficientBalanceError,
    ProviderRejectedError,
    RetryExhaustedError,
    ValidationError,
)
from app.core.logging import get_logger
from app.models.transaction import Transaction, TransactionStatus
from app.schemas.provider import TransferResult
from app.schemas.transaction import WithdrawalMetadata, parse_metadata
from app.schemas.withdrawal import BankListResponse, VerifyAccountResponse, WithdrawResponse
from app.services.funding_service import parse_amount
from app.services.ledger import LedgerStore, to_money
from app.services.notifications import BalancePublisher, Notifier, balance_update
from app.services.provider_client import ProviderGateway
from app.services.retry import RetryEngine
from app.services.transaction_service import TransactionService, format_amount, with_metadata

logger = get_logger(__name__)

ACCOUNT_NUMBER_PATTERN = re.compile(r"^\d{10}$")
BANK_CODE_PATTERN = re.compile(r"^\d{3,6}$")

# What the provider reports for a payout reference
PAYOUT_ABSENT = "absent"
PAYOUT_FAILED = "failed"
PAYOUT_PRESENT = "present"
PAYOUT_UNKNOWN = "unknown"


def new_withdrawal_reference() -> str:
    return f"WD-{secrets.token_hex(6).upper()}-{int(time.time() * 1000)}"


def validate_destination(bank_code: str, account_number: str) -> None:
    if not ACCOUNT_NUMBER_PATTERN.match(account_number or ""):
        raise ValidationError("Account number must be 10 digits")
    if not BANK_CODE_PATTERN.match(bank_code or ""):
        raise ValidationError("Invalid bank code")


def describe(error: Exception) -> str:
    return getattr(error, "message", None) or str(error)


def failed_attempts(error: Exception) -> int:
    return error.attempts if isinstance(error, RetryExhaustedError) else 1


class WithdrawalService:
    def __init__(
        self,
        settings: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        gateway: ProviderGateway,
        retry_engine: RetryEngine,
        publisher: BalancePublisher,
    ) -> None:
        self.settings = settings
        self.session_maker = session_maker
        self.gateway = gateway
        self.retry_engine = retry_engine
        self.publisher = publisher

    async def verify_account(self, bank_code: str, account_number: str) -> VerifyAccountResponse:
        validate_destination(bank_code, account_number)
        try:
            resolved = await self.gateway.resolve_account(account_number, bank_code)
        except ProviderRejectedError as exc:
            raise ValidationError("Could not verify account details") from exc
        return VerifyAccountResponse(
            account_name=resolved.account_name,
            bank_code=bank_code,
            account_number=account_number,
        )

    async def list_banks(self) -> BankListResponse:
        banks, fallback = await self.gateway.list_banks()
        return BankListResponse(
            banks=banks,
            source="fallback" if fallback else self.settings.PROVIDER_NAME.lower(),
            fallback=fallback,
        )

    async def withdraw(
        self,
        user_id: uuid.UUID,
        amount,
        bank_code: str,
        account_number: str,
        account_name: str,
    ) -> WithdrawResponse:
        """Debit the wallet and start the payout.

        Raises:
            ValidationError: bad amount or destination
            NotFoundError: the user has no wallet
            InsufficientFundsError: balance below the amount
            RetryExhaustedError / ProviderError: the provider never took the
                payout; the withdrawal has already been failed and refunded
        """
        amount = parse_amount(amount, self.settings.MIN_WITHDRAWAL_AMOUNT, "withdrawal")
        validate_destination(bank_code, account_number)
        if not (account_name or "").strip():
            raise ValidationError("Account name is required")

        async with self.session_maker() as session:
            wallet = await LedgerStore(session).get_wallet(user_id)
            if wallet is None:
                raise NotFoundError("Wallet", f"user {user_id}")
            if to_money(wallet.balance) < amount:
                raise InsufficientFundsError(str(wallet.id), amount, to_money(wallet.balance))
            wallet_id = wallet.id

        try:
            resolved = await self.gateway.resolve_account(account_number, bank_code)
        except ProviderRejectedError as exc:
            raise ValidationError("Invalid account details") from exc

        reference = new_withdrawal_reference()
        async with self.session_maker() as session:
            async with session.begin():
                ledger = LedgerStore(session)
                recipient = await ledger.get_or_create_recipient(
                    wallet_id,
                    bank_code,
                    account_number,
                    resolved.account_name,
                    lambda: self._create_recipient_code(resolved.account_name, account_number, bank_code),
                )
                metadata = WithdrawalMetadata(
                    gateway=self.settings.PROVIDER_NAME,
                    bank_code=bank_code,
                    account_number=account_number,
                    account_name=resolved.account_name,
                    recipient_code=recipient.recipient_code,
                )
                transaction, wallet = await TransactionService(session).open_withdrawal(
                    wallet_id, amount, reference, metadata
                )
        await self.publisher.publish(balance_update(wallet, transaction))
        logger.info("Withdrawal %s of %s opened for wallet %s", reference, amount, wallet_id)

        try:
            result = await self.retry_engine.run(
                lambda: self._attempt_payout(transaction, recipient.recipient_code),
                f"payout {reference}",
            )
        except (RetryExhaustedError, ProviderError) as exc:
            outcome, transfer_code = await self._settle_failed_start(reference, exc, failed_attempts(exc))
            if outcome == "failed":
                raise
        else:
            transfer_code = result.transfer_code
            await self.mark_initiated(reference, transfer_code)

        async with self.session_maker() as session:
            wallet = await LedgerStore(session).refresh_wallet(wallet_id)
        return WithdrawResponse(
            reference=reference,
            amount=amount,
            new_balance=wallet.balance,
            transfer_code=transfer_code,
        )

    async def retry_payout(self, reference: str) -> str:
        """Re-attempt a payout that never reached the provider.

        The provider is asked first whether it already holds the transfer,
        so a payout accepted before a crash is never sent twice. Each failed
        round adds its attempts to ``retry_attempts``; once that reaches the
        configured maximum the withdrawal is failed and refunded.
        """
        async with self.session_maker() as session:
            transaction = await LedgerStore(session).find_by_reference(reference)
        if transaction is None or transaction.status != TransactionStatus.PENDING.value:
            return "skipped"
        metadata = parse_metadata(transaction.details, transaction.type)
        if metadata.payout_initiated or not metadata.recipient_code:
            return "skipped"

        state, found = await self.lookup_payout(reference)
        if state == PAYOUT_PRESENT:
            await self.mark_initiated(reference, found.transfer_code)
            return "initiated"
        if state == PAYOUT_FAILED:
            await self._abandon(reference, f"Transfer {found.status}", metadata.retry_attempts)
            return "failed"
        if state == PAYOUT_UNKNOWN:
            return "pending"

        try:
            result = await self.retry_engine.run(
                lambda: self._attempt_payout(transaction, metadata.recipient_code),
                f"payout retry {reference}",
            )
        except RetryExhaustedError as exc:
            attempts = metadata.retry_attempts + exc.attempts
            if attempts >= self.settings.RETRY_MAX_ATTEMPTS:
                outcome, _ = await self._settle_failed_start(reference, exc, attempts)
                return outcome
            async with self.session_maker() as session:
                async with session.begin():
                    ledger = LedgerStore(session)
                    current = await ledger.find_by_reference(reference)
                    if current.status == TransactionStatus.PENDING.value:
                        await ledger.update_details(current, with_metadata(current, retry_attempts=attempts))
            return "pending"
        except ProviderError as exc:
            outcome, _ = await self._settle_failed_start(reference, exc, metadata.retry_attempts + 1)
            return outcome

        await self.mark_initiated(reference, result.transfer_code)
        return "initiated"

    async def lookup_payout(self, reference: str) -> tuple[str, TransferResult | None]:
        """Ask the provider what became of the payout sent as ``reference``.

        Only a 404 means the provider never took the transfer. Timeouts,
        outages and other rejections leave the outcome unknown.
        """
        try:
            result = await self.gateway.verify_transfer(reference)
        except ProviderRejectedError as exc:
            if exc.provider_status == 404:
                return PAYOUT_ABSENT, None
            logger.warning("Provider rejected lookup of payout %s: %s", reference, exc.message)
            return PAYOUT_UNKNOWN, None
        except (ProviderError, RetryExhaustedError) as exc:
            logger.warning("Could not look up payout %s: %s", reference, exc)
            return PAYOUT_UNKNOWN, None
        if result.failed:
            return PAYOUT_FAILED, result
        return PAYOUT_PRESENT, result

    async def _settle_failed_start(self, reference: str, error: Exception, attempts: int) -> tuple[str, str | None]:
        """Resolve a payout whose request errored.

        A timed-out or duplicate-rejected request may still have been
        accepted, so the withdrawal is refunded only when the provider has
        no such transfer or reports it failed. Anything else is left pending
        with ``payout_initiated`` set for the webhook or sweep to settle.
        """
        state, found = await self.lookup_payout(reference)
        if state in (PAYOUT_ABSENT, PAYOUT_FAILED):
            await self._abandon(reference, describe(error), attempts)
            return "failed", None
        transfer_code = found.transfer_code if found is not None else None
        await self.mark_initiated(
            reference,
            transfer_code,
            retry_attempts=attempts,
            unconfirmed_reason=describe(error) if state == PAYOUT_UNKNOWN else None,
        )
        return "initiated", transfer_code

    async def _create_recipient_code(self, account_name: str, account_number: str, bank_code: str) -> str:
        recipient = await self.gateway.create_transfer_recipient(account_name, account_number, bank_code)
        return recipient.recipient_code

    async def _attempt_payout(self, transaction: Transaction, recipient_code: str) -> TransferResult:
        await self.ensure_transfer_balance(transaction.amount, transaction.reference)
        return await self.gateway.initiate_transfer(
            amount=transaction.amount,
            reference=transaction.reference,
            recipient_code=recipient_code,
            reason=f"Withdrawal - {transaction.reference}",
        )

    async def ensure_transfer_balance(self, amount: Decimal, reference: str) -> None:
        """Top up the provider transfer balance from revenue if it is short."""
        balances = await self.gateway.get_balances()
        if balances.transfers >= amount:
            return
        shortfall = amount - balances.transfers
        if balances.revenue < shortfall:
            logger.warning(
                "Provider balances too low for %s: transfers %s, revenue %s",
                reference, balances.transfers, balances.revenue,
            )
            raise ProviderInsufficientBalanceError()
        await self.gateway.move_to_transfer_balance(shortfall, f"Fund withdrawal {reference}")
        logger.info("Moved %s from revenue to transfer balance for %s", shortfall, reference)

    async def mark_initiated(
        self,
        reference: str,
        transfer_code: str | None,
        retry_attempts: int | None = None,
        unconfirmed_reason: str | None = None,
    ) -> None:
        """Record that the provider holds the payout; settlement is left to the webhook or sweep."""
        changes: dict = {"payout_initiated": True}
        if transfer_code:
            changes["transfer_code"] = transfer_code
        if retry_attempts is not None:
            changes["retry_attempts"] = retry_attempts
        async with self.session_maker() as session:
            async with session.begin():
                ledger = LedgerStore(session)
                transaction = await ledger.find_by_reference(reference)
                if transaction.status != TransactionStatus.PENDING.value:
                    return
                await ledger.update_details(transaction, with_metadata(transaction, **changes))
                if unconfirmed_reason is not None:
                    Notifier(session).alert_operators(
                        "Payout Outcome Unknown",
                        f"Payout {reference} of {format_amount(transaction.amount)} errored "
                        f"({unconfirmed_reason}) and the provider could not confirm it. "
                        "Left pending for the sweep.",
                        reference_id=reference,
                    )
        logger.info("Payout %s initiated at provider (%s)", reference, transfer_code)

    async def _abandon(self, reference: str, reason: str, attempts: int | None = None) -> None:
        """Fail and refund a withdrawal whose payout the provider never took."""
        async with self.session_maker() as session:
            async with session.begin():
                ledger = LedgerStore(session)
                transaction = await ledger.find_by_reference(reference)
                wallet = await TransactionService(session).fail_withdrawal(
                    transaction, reason, retry_attempts=attempts
                )
                if wallet is not None:
                    Notifier(session).alert_operators(
                        "Payout Failed",
                        f"Payout {reference} of {format_amount(transaction.amount)} could not be "
                        f"started and was refunded: {reason}",
                        reference_id=reference,
                    )
        if wallet is not None:
            await self.publisher.publish(balance_update(wallet, transaction))
