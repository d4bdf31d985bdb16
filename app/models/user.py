"""User SQLAlchemy ORM model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utc_now
from app.db.base import Base


class User(Base):
    """User model for wallet ownership and provider identity.

    Attributes:
        id: Unique identifier (UUID)
        email: User email address (unique), also the provider counterparty key
        full_name: User's display name
        phone_number: Contact phone used when creating the provider customer
        provider_customer_code: Customer code issued by the payment provider
        is_active: Account status
        created_at: Record creation timestamp
        updated_at: Last modification timestamp
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True
    )
    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False
    )
    phone_number: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True
    )
    provider_customer_code: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
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

    # One-to-one relationship with Wallet
    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="user", uselist=False)

    @property
    def first_name(self) -> str:
        parts = self.full_name.split()
        return parts[0] if parts else "Unknown"

    @property
    def last_name(self) -> str:
        parts = self.full_name.split()
        return " ".join(parts[1:]) if len(parts) > 1 else "Unknown"
