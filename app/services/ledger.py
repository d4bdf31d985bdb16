"""Ledger store: every read and write against wallets and their transactions.

A ``LedgerStore`` wraps one ``AsyncSession``; the caller owns the unit of
work (``async with session.begin()``). Balance mutations are SQL-side
increments and status changes are compare-and-set updates, so concurrent
actors (webhook, sweeper, API) can race on the same rows without a global
lock. Exactly one of them wins a given ``pending`` transaction.
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from decimal import Decimal

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_now
from app.core.exceptions import InsufficientFundsError, NotFoundError
from app.models.notification import PayoutRecipient
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.models.user import User
from app.models.wallet import Wallet

MONEY_QUANTUM = Decimal("0.0001")


def to_money(value) -> Decimal:
    """Normalise driver output (Decimal, float or None) to 4dp Decimal."""
    if value is None:
        return Decimal("0.0000")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(MONEY_QUANTUM)


class LedgerStore:
    """Data access for users, wallets, transactions and payout recipients."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Users and wallets

    async def get_user(self, user_id: uuid.UUID) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))
        return user

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_wallet(self, user_id: uuid.UUID) -> Wallet | None:
        result = await self.session.execute(select(Wallet).where(Wallet.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_or_create_wallet(self, user_id: uuid.UUID, currency: str = "NGN") -> Wallet:
        """Return the user's wallet, creating it on first use.

        Two first fundings can race on the unique ``user_id``; the loser's
        savepoint rolls back and it reads the winner's wallet instead.
        """
        wallet = await self.get_wallet(user_id)
        if wallet is not None:
            return wallet
        try:
            async with self.session.begin_nested():
                wallet = Wallet(
                    user_id=user_id,
                    balance=Decimal("0.0000"),
                    total_deposits=Decimal("0.0000"),
                    currency=currency,
                )
                self.session.add(wallet)
        except IntegrityError:
            wallet = await self.get_wallet(user_id)
        return wallet

    async def get_wallet_for_update(self, wallet_id: uuid.UUID) -> Wallet:
        """Load a wallet holding its row lock until the unit of work ends."""
        result = await self.session.execute(
            select(Wallet)
            .where(Wallet.id == wallet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise NotFoundError("Wallet", str(wallet_id))
        return wallet

    async def refresh_wallet(self, wallet_id: uuid.UUID) -> Wallet:
        wallet = await self.session.get(Wallet, wallet_id, populate_existing=True)
        if wallet is None:
            raise NotFoundError("Wallet", str(wallet_id))
        return wallet

    async def all_wallets(self) -> list[Wallet]:
        result = await self.session.execute(select(Wallet).order_by(Wallet.created_at))
        return list(result.scalars().all())

    async def wallets_with_pending(self) -> list[Wallet]:
        has_pending = exists().where(
            Transaction.wallet_id == Wallet.id,
            Transaction.status == TransactionStatus.PENDING.value,
        )
        result = await self.session.execute(select(Wallet).where(has_pending).order_by(Wallet.created_at))
        return list(result.scalars().all())

    async def touch_synced(self, wallet_id: uuid.UUID, now: datetime | None = None) -> None:
        await self.session.execute(
            update(Wallet)
            .where(Wallet.id == wallet_id)
            .values(last_synced=now or utc_now())
            .execution_options(synchronize_session=False)
        )

    # Transactions

    async def find_by_reference(self, reference: str) -> Transaction | None:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_provider_reference(self, provider_reference: str) -> Transaction | None:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.provider_reference == provider_reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_completed_by_provider_reference(self, provider_reference: str) -> Transaction | None:
        transaction = await self.find_by_provider_reference(provider_reference)
        if transaction is not None and transaction.status == TransactionStatus.COMPLETED.value:
            return transaction
        return None

    async def find_pending_match(
        self,
        wallet_id: uuid.UUID,
        *,
        provider_reference: str | None = None,
        reference: str | None = None,
        receiving_account_id: str | None = None,
        amount: Decimal | None = None,
    ) -> Transaction | None:
        """Find the pending deposit an inbound credit settles.

        Tried in order: provider reference, our own reference, then the
        oldest pending deposit on the same receiving account for the same
        amount.
        """
        for key in (provider_reference, reference):
            if not key:
                continue
            for candidate in (
                await self.find_by_provider_reference(key),
                await self.find_by_reference(key),
            ):
                if (
                    candidate is not None
                    and candidate.wallet_id == wallet_id
                    and candidate.status == TransactionStatus.PENDING.value
                    and candidate.type == TransactionType.DEPOSIT.value
                ):
                    return candidate

        if receiving_account_id is None or amount is None:
            return None
        for candidate in await self.pending_transactions(wallet_id, TransactionType.DEPOSIT):
            details = candidate.details or {}
            if (
                str(details.get("receiving_account_id")) == str(receiving_account_id)
                and to_money(candidate.amount) == to_money(amount)
                and candidate.provider_reference is None
            ):
                return candidate
        return None

    async def pending_transactions(
        self,
        wallet_id: uuid.UUID | None = None,
        transaction_type: TransactionType | None = None,
        created_before: datetime | None = None,
    ) -> list[Transaction]:
        query = select(Transaction).where(Transaction.status == TransactionStatus.PENDING.value)
        if wallet_id is not None:
            query = query.where(Transaction.wallet_id == wallet_id)
        if transaction_type is not None:
            query = query.where(Transaction.type == transaction_type.value)
        if created_before is not None:
            query = query.where(Transaction.created_at < created_before)
        result = await self.session.execute(
            query.order_by(Transaction.created_at).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def completed_deposits_not_settled(self) -> list[Transaction]:
        result = await self.session.execute(
            select(Transaction)
            .where(
                Transaction.type == TransactionType.DEPOSIT.value,
                Transaction.status == TransactionStatus.COMPLETED.value,
            )
            .order_by(Transaction.created_at)
        )
        return [
            transaction
            for transaction in result.scalars().all()
            if not (transaction.details or {}).get("transferred_to_balance")
        ]

    async def list_transactions(self, wallet_id: uuid.UUID, limit: int = 50) -> list[Transaction]:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.wallet_id == wallet_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def add_transaction(
        self,
        wallet_id: uuid.UUID,
        transaction_type: TransactionType,
        amount: Decimal,
        reference: str,
        details: dict,
        provider_reference: str | None = None,
    ) -> Transaction:
        """Append a pending transaction; the unique index on ``reference``
        rejects a second row for the same key at flush time."""
        transaction = Transaction(
            wallet_id=wallet_id,
            type=transaction_type.value,
            amount=amount,
            reference=reference,
            provider_reference=provider_reference,
            status=TransactionStatus.PENDING.value,
            details=details,
        )
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def transition(
        self,
        transaction: Transaction,
        to_status: TransactionStatus,
        details: dict | None = None,
        provider_reference: str | None = None,
    ) -> bool:
        """Compare-and-set ``pending -> to_status``.

        Returns True when this caller made the transition; False when the
        transaction had already left ``pending``.
        """
        values: dict = {Transaction.status: to_status.value, Transaction.updated_at: utc_now()}
        if details is not None:
            values[Transaction.details] = details
        if provider_reference is not None:
            values[Transaction.provider_reference] = provider_reference
        result = await self.session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == TransactionStatus.PENDING.value,
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(transaction)
        return result.rowcount == 1

    async def update_details(self, transaction: Transaction, details: dict) -> None:
        """Rewrite metadata without touching status (pending-only fields)."""
        await self.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction.id)
            .values({Transaction.details: details, Transaction.updated_at: utc_now()})
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(transaction)

    # Balance mutations

    async def credit(self, wallet_id: uuid.UUID, amount: Decimal, *, deposit: bool = True) -> Wallet:
        """Add ``amount`` to the balance; deposits also grow ``total_deposits``."""
        values: dict = {
            Wallet.balance: Wallet.balance + amount,
            Wallet.version: Wallet.version + 1,
            Wallet.updated_at: utc_now(),
        }
        if deposit:
            values[Wallet.total_deposits] = Wallet.total_deposits + amount
        await self.session.execute(
            update(Wallet)
            .where(Wallet.id == wallet_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return await self.refresh_wallet(wallet_id)

    async def debit(self, wallet_id: uuid.UUID, amount: Decimal) -> Wallet:
        """Subtract ``amount``; refuses to take the balance below zero."""
        result = await self.session.execute(
            update(Wallet)
            .where(Wallet.id == wallet_id, Wallet.balance >= amount)
            .values({
                Wallet.balance: Wallet.balance - amount,
                Wallet.version: Wallet.version + 1,
                Wallet.updated_at: utc_now(),
            })
            .execution_options(synchronize_session=False)
        )
        wallet = await self.refresh_wallet(wallet_id)
        if result.rowcount != 1:
            raise InsufficientFundsError(str(wallet_id), amount, to_money(wallet.balance))
        return wallet

    async def expected_balance(self, wallet_id: uuid.UUID) -> Decimal:
        """Completed deposits minus completed and pending withdrawals."""
        result = await self.session.execute(
            select(Transaction.type, Transaction.status, func.sum(Transaction.amount))
            .where(Transaction.wallet_id == wallet_id)
            .group_by(Transaction.type, Transaction.status)
        )
        total = Decimal("0.0000")
        for transaction_type, status, amount in result.all():
            if transaction_type == TransactionType.DEPOSIT.value and status == TransactionStatus.COMPLETED.value:
                total += to_money(amount)
            elif transaction_type == TransactionType.WITHDRAWAL.value and status in (
                TransactionStatus.COMPLETED.value,
                TransactionStatus.PENDING.value,
            ):
                total -= to_money(amount)
        return total

    # Payout recipients

    async def get_recipient(
        self,
        wallet_id: uuid.UUID,
        bank_code: str,
        account_number: str,
    ) -> PayoutRecipient | None:
        result = await self.session.execute(
            select(PayoutRecipient).where(
                PayoutRecipient.wallet_id == wallet_id,
                PayoutRecipient.bank_code == bank_code,
                PayoutRecipient.account_number == account_number,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_recipient(
        self,
        wallet_id: uuid.UUID,
        bank_code: str,
        account_number: str,
        account_name: str,
        create_code: Callable[[], Awaitable[str]],
    ) -> PayoutRecipient:
        """Return the cached recipient, registering one via ``create_code`` if absent."""
        recipient = await self.get_recipient(wallet_id, bank_code, account_number)
        if recipient is not None:
            return recipient
        recipient = PayoutRecipient(
            wallet_id=wallet_id,
            bank_code=bank_code,
            account_number=account_number,
            account_name=account_name,
            recipient_code=await create_code(),
        )
        self.session.add(recipient)
        await self.session.flush()
        return recipient
