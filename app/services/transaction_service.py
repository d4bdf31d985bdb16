"""Settlement state machine shared by the webhook ingestor, the sweeper
and the withdrawal flow.

TRANSITIONS
===========

Every transaction starts ``pending`` and leaves it exactly once::

    pending -> completed | failed | cancelled

Each transition below runs inside the caller's unit of work and follows
the same three steps:

1. Lock the owning wallet row (``SELECT ... FOR UPDATE``)
2. Compare-and-set the transaction status (``UPDATE ... WHERE status = 'pending'``)
3. Only if step 2 won: apply the balance effect and write the notification

Losing step 2 means another actor (a duplicate webhook, a concurrent sweep)
already settled the transaction, so the method returns without touching the
balance. That is what makes replays and races safe.

BALANCE EFFECTS
===============

| Transition                    | Balance effect                         |
|-------------------------------|----------------------------------------|
| deposit -> completed          | balance += amount, total_deposits += amount |
| deposit -> failed / cancelled | none                                   |
| withdrawal created (pending)  | balance -= amount (guarded >= amount)  |
| withdrawal -> completed       | none (already debited)                 |
| withdrawal -> failed          | balance += amount (refund)             |
| withdrawal -> cancelled       | balance += amount (refund)             |
"""

import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_now
from app.core.logging import get_logger
from app.models.notification import NotificationType
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.models.wallet import Wallet
from app.schemas.transaction import DepositMetadata, WithdrawalMetadata, dump_metadata, parse_metadata
from app.services.ledger import LedgerStore
from app.services.notifications import Notifier

logger = get_logger(__name__)


def format_amount(amount: Decimal, currency: str = "NGN") -> str:
    return f"{currency} {Decimal(amount):,.2f}"


def with_metadata(transaction: Transaction, **changes: Any) -> dict:
    """Return the transaction's metadata with ``changes`` applied, as JSON."""
    metadata = parse_metadata(transaction.details, transaction.type)
    return dump_metadata(metadata.model_copy(update=changes))


class TransactionService:
    """Apply settlement transitions with their balance side effects.

    Example:
        async with session.begin():
            service = TransactionService(session)
            wallet = await service.complete_deposit(transaction, resolved_by="webhook")
            if wallet is None:
                ...  # someone else settled it first
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.ledger = LedgerStore(session)
        self.notifier = Notifier(session)

    async def complete_deposit(
        self,
        transaction: Transaction,
        *,
        resolved_by: str,
        provider_reference: str | None = None,
        webhook_event: str | None = None,
    ) -> Wallet | None:
        """Settle a pending deposit as completed and credit the wallet.

        Returns:
            The credited wallet, or None if the deposit was already settled.
        """
        wallet = await self.ledger.get_wallet_for_update(transaction.wallet_id)
        changes: dict[str, Any] = {"resolved_by": resolved_by, "resolved_at": utc_now()}
        if webhook_event:
            changes["webhook_event"] = webhook_event
        won = await self.ledger.transition(
            transaction,
            TransactionStatus.COMPLETED,
            details=with_metadata(transaction, **changes),
            provider_reference=provider_reference if not transaction.provider_reference else None,
        )
        if not won:
            logger.info("Deposit %s already settled as %s", transaction.reference, transaction.status)
            return None

        wallet = await self.ledger.credit(wallet.id, transaction.amount, deposit=True)
        self.notifier.notify(
            wallet.user_id,
            "Wallet Funded",
            f"Your wallet has been funded with {format_amount(transaction.amount, wallet.currency)}. "
            f"Ref: {transaction.reference}",
            NotificationType.FUNDING,
            reference_id=transaction.reference,
            status="completed",
        )
        logger.info(
            "Deposit %s completed via %s, wallet %s balance %s",
            transaction.reference, resolved_by, wallet.id, wallet.balance,
        )
        return wallet

    async def fail_deposit(
        self,
        transaction: Transaction,
        reason: str,
        *,
        resolved_by: str,
        webhook_event: str | None = None,
    ) -> bool:
        wallet = await self.ledger.get_wallet_for_update(transaction.wallet_id)
        changes: dict[str, Any] = {
            "resolved_by": resolved_by,
            "resolved_at": utc_now(),
            "failure_reason": reason,
        }
        if webhook_event:
            changes["webhook_event"] = webhook_event
        won = await self.ledger.transition(
            transaction,
            TransactionStatus.FAILED,
            details=with_metadata(transaction, **changes),
        )
        if not won:
            return False
        self.notifier.notify(
            wallet.user_id,
            "Funding Failed",
            f"Funding of {format_amount(transaction.amount, wallet.currency)} failed: {reason}. "
            f"Ref: {transaction.reference}",
            NotificationType.FUNDING,
            reference_id=transaction.reference,
            status="failed",
        )
        logger.info("Deposit %s failed: %s", transaction.reference, reason)
        return True

    async def open_withdrawal(
        self,
        wallet_id: uuid.UUID,
        amount: Decimal,
        reference: str,
        metadata: WithdrawalMetadata,
    ) -> tuple[Transaction, Wallet]:
        """Debit the wallet and append the pending withdrawal in one unit."""
        await self.ledger.get_wallet_for_update(wallet_id)
        wallet = await self.ledger.debit(wallet_id, amount)
        transaction = await self.ledger.add_transaction(
            wallet_id,
            TransactionType.WITHDRAWAL,
            amount,
            reference,
            dump_metadata(metadata),
        )
        self.notifier.notify(
            wallet.user_id,
            "Withdrawal Initiated",
            f"Withdrawal of {format_amount(amount, wallet.currency)} initiated. Ref: {reference}",
            NotificationType.WITHDRAWAL,
            reference_id=reference,
            status="pending",
        )
        return transaction, wallet

    async def complete_withdrawal(
        self,
        transaction: Transaction,
        *,
        webhook_event: str | None = None,
        transfer_code: str | None = None,
    ) -> bool:
        wallet = await self.ledger.get_wallet_for_update(transaction.wallet_id)
        changes: dict[str, Any] = {"resolved_at": utc_now(), "payout_initiated": True}
        if webhook_event:
            changes["webhook_event"] = webhook_event
        if transfer_code:
            changes["transfer_code"] = transfer_code
        won = await self.ledger.transition(
            transaction,
            TransactionStatus.COMPLETED,
            details=with_metadata(transaction, **changes),
        )
        if not won:
            return False
        self.notifier.notify(
            wallet.user_id,
            "Withdrawal Completed",
            f"Withdrawal of {format_amount(transaction.amount, wallet.currency)} completed. "
            f"Ref: {transaction.reference}",
            NotificationType.WITHDRAWAL,
            reference_id=transaction.reference,
            status="completed",
        )
        logger.info("Withdrawal %s completed", transaction.reference)
        return True

    async def fail_withdrawal(
        self,
        transaction: Transaction,
        reason: str,
        *,
        status: TransactionStatus = TransactionStatus.FAILED,
        webhook_event: str | None = None,
        retry_attempts: int | None = None,
    ) -> Wallet | None:
        """Settle a pending withdrawal as failed (or cancelled) and refund it.

        Returns:
            The refunded wallet, or None if the withdrawal was already settled.
        """
        wallet = await self.ledger.get_wallet_for_update(transaction.wallet_id)
        changes: dict[str, Any] = {
            "resolved_at": utc_now(),
            "failure_reason": reason,
            "refunded": True,
        }
        if webhook_event:
            changes["webhook_event"] = webhook_event
        if retry_attempts is not None:
            changes["retry_attempts"] = retry_attempts
        won = await self.ledger.transition(transaction, status, details=with_metadata(transaction, **changes))
        if not won:
            return None

        wallet = await self.ledger.credit(wallet.id, transaction.amount, deposit=False)
        self.notifier.notify(
            wallet.user_id,
            "Withdrawal Failed",
            f"Withdrawal of {format_amount(transaction.amount, wallet.currency)} failed: {reason}. "
            f"The amount has been returned to your wallet. Ref: {transaction.reference}",
            NotificationType.WITHDRAWAL,
            reference_id=transaction.reference,
            status="failed",
        )
        logger.info("Withdrawal %s %s and refunded: %s", transaction.reference, status.value, reason)
        return wallet

    async def cancel(self, transaction: Transaction, reason: str) -> bool:
        """Cancel an abandoned pending transaction.

        Withdrawals that never reached the provider are refunded; a
        withdrawal already initiated is left for the payout to settle.
        """
        if transaction.type == TransactionType.WITHDRAWAL.value:
            metadata = parse_metadata(transaction.details, transaction.type)
            if metadata.payout_initiated:
                self.notifier.alert_operators(
                    "Stale Withdrawal",
                    f"Withdrawal {transaction.reference} has been pending at the provider "
                    f"since {transaction.created_at}",
                    reference_id=transaction.reference,
                )
                return False
            wallet = await self.fail_withdrawal(transaction, reason, status=TransactionStatus.CANCELLED)
            return wallet is not None

        await self.ledger.get_wallet_for_update(transaction.wallet_id)
        won = await self.ledger.transition(
            transaction,
            TransactionStatus.CANCELLED,
            details=with_metadata(transaction, resolved_at=utc_now(), failure_reason=reason),
        )
        if won:
            logger.info("Deposit %s cancelled: %s", transaction.reference, reason)
        return won

    async def record_external_deposit(
        self,
        wallet: Wallet,
        amount: Decimal,
        provider_reference: str,
        metadata: DepositMetadata,
    ) -> Transaction:
        """Insert a pending deposit for a credit that had no funding request."""
        return await self.ledger.add_transaction(
            wallet.id,
            TransactionType.DEPOSIT,
            amount,
            provider_reference,
            dump_metadata(metadata),
            provider_reference=provider_reference,
        )
