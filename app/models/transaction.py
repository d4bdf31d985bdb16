"""Wallet transaction SQLAlchemy ORM model."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utc_now
from app.db.base import Base


class TransactionType(str, enum.Enum):
    """Direction of a wallet transaction relative to the wallet balance."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(str, enum.Enum):
    """Transaction status enum.

    Values:
        PENDING: Awaiting confirmation from the provider
        COMPLETED: Confirmed; the balance reflects it
        FAILED: Rejected, timed out or reversed
        CANCELLED: Abandoned by the cleanup job

    Only PENDING may transition; the other three are terminal.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Transaction(Base):
    """Transaction model for deposits into and withdrawals out of a wallet.

    Attributes:
        id: Unique identifier (UUID)
        wallet_id: Foreign key to the owning Wallet
        type: deposit or withdrawal
        amount: Positive amount with DECIMAL(18,4) precision
        reference: Caller-generated idempotency key (globally unique)
        provider_reference: External transaction id once known (unique)
        status: pending, completed, failed or cancelled
        details: Tagged metadata, see app.schemas.transaction
        created_at: Transaction timestamp
        updated_at: Last transition timestamp
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("wallets.id"),
        nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        String(20),
        nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False
    )
    reference: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True
    )
    provider_reference: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        unique=True
    )
    status: Mapped[TransactionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.PENDING
    )
    details: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now
    )

    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
        Index("ix_wallet_transactions_wallet_id", "wallet_id"),
        Index("ix_wallet_transactions_status_created_at", "status", "created_at"),
    )
