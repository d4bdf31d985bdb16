"""User notifications, operator alerts and real-time balance events.

Notifications are rows written in the caller's unit of work so they commit
or roll back with the state change they describe. Balance events are
published only after commit; a lost event never affects the ledger.
"""

import uuid
from typing import Protocol

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.notification import Notification, NotificationType
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.models.wallet import Wallet
from app.schemas.transaction import TransactionSummary
from app.schemas.wallet import BalanceUpdate

logger = get_logger(__name__)


class Notifier:
    """Writes ``Notification`` rows into the current session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def notify(
        self,
        user_id: uuid.UUID | None,
        title: str,
        message: str,
        notification_type: NotificationType,
        reference_id: str | None = None,
        status: str = "pending",
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            reference_id=reference_id,
            type=notification_type.value,
            status=status,
        )
        self.session.add(notification)
        return notification

    def alert_operators(self, title: str, message: str, reference_id: str | None = None) -> Notification:
        """Record an operator alert; also logged at error level."""
        logger.error("OPERATOR ALERT %s: %s (ref=%s)", title, message, reference_id)
        return self.notify(
            None,
            title,
            message,
            NotificationType.ADMIN_ALERT,
            reference_id=reference_id,
            status="pending",
        )


class BalancePublisher(Protocol):
    async def publish(self, update: BalanceUpdate) -> None:
        ...


def balance_update(wallet: Wallet, transaction: Transaction | None = None) -> BalanceUpdate:
    summary = None
    if transaction is not None:
        summary = TransactionSummary(
            reference=transaction.reference,
            amount=transaction.amount,
            status=TransactionStatus(transaction.status),
            type=TransactionType(transaction.type),
        )
    return BalanceUpdate(
        user_id=wallet.user_id,
        balance=wallet.balance,
        total_deposits=wallet.total_deposits,
        transaction=summary,
        last_synced=wallet.last_synced,
    )


class RedisBalancePublisher:
    """Publishes balance events on the ``wallet:{user_id}`` channel."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBalancePublisher":
        return cls(redis.from_url(url))

    @staticmethod
    def channel(user_id: uuid.UUID) -> str:
        return f"wallet:{user_id}"

    async def publish(self, update: BalanceUpdate) -> None:
        try:
            await self.client.publish(self.channel(update.user_id), update.model_dump_json())
        except redis.RedisError as exc:
            logger.warning("Balance update for user %s not delivered: %s", update.user_id, exc)

    async def aclose(self) -> None:
        await self.client.aclose()
