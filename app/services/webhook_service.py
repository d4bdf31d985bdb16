"""Webhook ingestor: authenticate provider events and settle transactions.

Delivery is at-least-once and unordered, so every event is applied through
the compare-and-set transitions in ``TransactionService``: a replay, or a
webhook racing the reconciliation sweep, finds the transaction already
settled and becomes a no-op.
"""

import pydantic
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.security import validate_signature
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.models.wallet import Wallet
from app.schemas.transaction import DepositMetadata
from app.schemas.webhook import WebhookEvent
from app.services.ledger import LedgerStore, to_money
from app.services.notifications import BalancePublisher, Notifier, balance_update
from app.services.transaction_service import TransactionService

logger = get_logger(__name__)

IGNORED = "ignored"
DUPLICATE = "duplicate"
CREDITED = "credited"
FAILED = "failed"
COMPLETED = "completed"
REFUNDED = "refunded"
ALERTED = "alerted"
HELD = "held"


class WebhookService:
    def __init__(
        self,
        settings: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        publisher: BalancePublisher,
    ) -> None:
        self.settings = settings
        self.session_maker = session_maker
        self.publisher = publisher

    async def ingest(self, raw_body: bytes, signature: str | None) -> str:
        """Verify, parse and apply one webhook delivery.

        Returns a short outcome label for the acknowledgement.

        Raises:
            InvalidSignatureError: signature missing or wrong
            ValidationError: body is not a usable event
            NotFoundError: credit for an unknown user or wallet
        """
        validate_signature(raw_body, signature, self.settings.webhook_secret)
        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Malformed webhook payload: {exc.error_count()} errors") from exc

        if event.is_credit:
            return await self._handle_credit(event)
        if event.is_transfer:
            return await self._handle_transfer(event)
        logger.info("Ignoring webhook event %s", event.event)
        return IGNORED

    async def _handle_credit(self, event: WebhookEvent) -> str:
        data = event.data
        email = data.customer.email if data.customer else None
        if not email or not data.reference:
            raise ValidationError("Credit event is missing customer email or reference")
        provider_reference = data.reference
        amount = to_money(data.major_amount)
        if amount <= 0:
            raise ValidationError("Credit event has no positive amount")
        succeeded = (data.status or "success") == "success"
        receiving_account_id = data.account_details.id if data.account_details else None

        credited: Wallet | None = None
        async with self.session_maker() as session:
            async with session.begin():
                ledger = LedgerStore(session)
                service = TransactionService(session)
                user = await ledger.get_user_by_email(email)
                if user is None:
                    raise NotFoundError("User", email)
                wallet = await ledger.get_wallet(user.id)
                if wallet is None:
                    raise NotFoundError("Wallet", f"user {user.id}")

                existing = (
                    await ledger.find_by_provider_reference(provider_reference)
                    or await ledger.find_by_reference(provider_reference)
                )
                if existing is not None and existing.status != TransactionStatus.PENDING.value:
                    logger.info("Duplicate %s for %s (already %s)", event.event, provider_reference, existing.status)
                    return DUPLICATE

                transaction = await ledger.find_pending_match(
                    wallet.id,
                    provider_reference=provider_reference,
                    reference=provider_reference,
                    receiving_account_id=receiving_account_id,
                    amount=amount,
                )
                if transaction is not None and to_money(transaction.amount) != amount:
                    Notifier(session).alert_operators(
                        "Deposit Amount Mismatch",
                        f"Deposit {transaction.reference} expects {transaction.amount} but "
                        f"{event.event} reported {amount}",
                        reference_id=provider_reference,
                    )
                    return HELD
                if transaction is None:
                    transaction = await self._record_external(session, wallet, amount, provider_reference, event)
                    if transaction is None:
                        return DUPLICATE

                if succeeded:
                    credited = await service.complete_deposit(
                        transaction,
                        resolved_by="webhook",
                        provider_reference=provider_reference if transaction.provider_reference is None else None,
                        webhook_event=event.event,
                    )
                    if credited is None:
                        return DUPLICATE
                    outcome = CREDITED
                else:
                    reason = data.gateway_response or f"Payment {data.status}"
                    won = await service.fail_deposit(
                        transaction, reason, resolved_by="webhook", webhook_event=event.event
                    )
                    outcome = FAILED if won else DUPLICATE

        if credited is not None:
            await self.publisher.publish(balance_update(credited, transaction))
        return outcome

    async def _record_external(
        self,
        session: AsyncSession,
        wallet: Wallet,
        amount,
        provider_reference: str,
        event: WebhookEvent,
    ) -> Transaction | None:
        """Insert a deposit nobody asked for; None if a concurrent delivery won."""
        customer = event.data.customer
        metadata = DepositMetadata(
            gateway=self.settings.PROVIDER_NAME,
            customer_email=customer.email if customer else None,
            customer_code=customer.customer_code if customer else None,
            receiving_account_id=event.data.account_details.id if event.data.account_details else None,
            webhook_event=event.event,
            extra={"out_of_band": True},
        )
        try:
            async with session.begin_nested():
                transaction = await TransactionService(session).record_external_deposit(
                    wallet, amount, provider_reference, metadata
                )
        except IntegrityError:
            logger.info("Concurrent delivery already recorded %s", provider_reference)
            return None
        logger.info("Recorded out-of-band deposit %s of %s for wallet %s", provider_reference, amount, wallet.id)
        return transaction

    async def _handle_transfer(self, event: WebhookEvent) -> str:
        data = event.data
        if not data.reference:
            raise ValidationError("Transfer event is missing a reference")

        refunded: Wallet | None = None
        async with self.session_maker() as session:
            async with session.begin():
                ledger = LedgerStore(session)
                service = TransactionService(session)
                transaction = await ledger.find_by_reference(data.reference)
                if transaction is None or transaction.type != TransactionType.WITHDRAWAL.value:
                    logger.warning("No withdrawal matches %s %s", event.event, data.reference)
                    return IGNORED

                if transaction.status != TransactionStatus.PENDING.value:
                    if event.event == "transfer.reversed" and transaction.status == TransactionStatus.COMPLETED.value:
                        Notifier(session).alert_operators(
                            "Transfer Reversed After Completion",
                            f"Withdrawal {transaction.reference} of {transaction.amount} was reversed "
                            "by the provider after it completed. No automatic refund was made.",
                            reference_id=transaction.reference,
                        )
                        return ALERTED
                    logger.info("Withdrawal %s already %s, ignoring %s", transaction.reference, transaction.status, event.event)
                    return DUPLICATE

                if event.event == "transfer.success":
                    won = await service.complete_withdrawal(
                        transaction, webhook_event=event.event, transfer_code=data.transfer_code
                    )
                    outcome = COMPLETED if won else DUPLICATE
                else:
                    reason = data.gateway_response or data.message or event.event.replace("transfer.", "Transfer ")
                    refunded = await service.fail_withdrawal(transaction, reason, webhook_event=event.event)
                    outcome = REFUNDED if refunded is not None else DUPLICATE
                wallet = refunded or await ledger.refresh_wallet(transaction.wallet_id)

        await self.publisher.publish(balance_update(wallet, transaction))
        return outcome
