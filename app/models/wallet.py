"""Wallet SQLAlchemy ORM model."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utc_now
from app.db.base import Base


class Wallet(Base):
    """Wallet model holding the authoritative spendable balance of a user.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Foreign key to User (unique, one-to-one)
        balance: Spendable balance with DECIMAL(18,4) precision, never negative
        total_deposits: Lifetime sum of completed deposits
        currency: ISO currency code (default: NGN)
        receiving_account_*: Dedicated receiving account issued by the provider,
            empty until provisioned
        last_synced: Last successful reconciliation against the provider
        version: Incremented on every balance mutation
        created_at: Record creation timestamp
        updated_at: Last modification timestamp
        user: Relationship to User model
        transactions: Deposits and withdrawals owned by this wallet
    """

    __tablename__ = "wallets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        unique=True,
        nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0.0000")
    )
    total_deposits: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0.0000")
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="NGN"
    )
    receiving_account_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    receiving_account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receiving_bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receiving_account_provider_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    receiving_account_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    receiving_account_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    last_synced: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1
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

    # One-to-one relationship with User
    user: Mapped["User"] = relationship("User", back_populates="wallet")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="wallet",
        order_by="Transaction.created_at",
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        CheckConstraint("total_deposits >= 0", name="ck_wallets_total_deposits_non_negative"),
    )

    @property
    def has_receiving_account(self) -> bool:
        return bool(
            self.receiving_account_number
            and self.receiving_bank_name
            and self.receiving_account_provider_id
        )

    def receiving_account_snapshot(self) -> dict | None:
        if not self.has_receiving_account:
            return None
        return {
            "account_name": self.receiving_account_name,
            "account_number": self.receiving_account_number,
            "bank_name": self.receiving_bank_name,
            "provider_reference": self.receiving_account_provider_id,
            "active": self.receiving_account_active,
        }
