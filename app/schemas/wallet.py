"""Wallet Pydantic schemas for request/response validation."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_serializer

from app.schemas.transaction import ReceivingAccountSnapshot, TransactionSummary


class WalletRead(BaseModel):
    """Schema for reading Wallet data.

    Balance is serialized as a decimal string for precision.
    """

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    balance: Decimal
    total_deposits: Decimal
    currency: str
    receiving_account: Optional[ReceivingAccountSnapshot] = None
    last_synced: Optional[datetime] = None

    @field_serializer("balance", "total_deposits")
    def serialize_money(self, value: Decimal) -> str:
        """Serialize money as decimal string to preserve precision."""
        return str(value)

    @classmethod
    def from_wallet(cls, wallet) -> "WalletRead":
        snapshot = wallet.receiving_account_snapshot()
        return cls(
            id=wallet.id,
            user_id=wallet.user_id,
            balance=wallet.balance,
            total_deposits=wallet.total_deposits,
            currency=wallet.currency,
            receiving_account=ReceivingAccountSnapshot(**snapshot) if snapshot else None,
            last_synced=wallet.last_synced,
        )


class BalanceUpdate(BaseModel):
    """Real-time balance event pushed to the user's channel."""

    user_id: uuid.UUID
    balance: Decimal
    total_deposits: Decimal
    transaction: Optional[TransactionSummary] = None
    last_synced: Optional[datetime] = None

    @field_serializer("balance", "total_deposits")
    def serialize_money(self, value: Decimal) -> str:
        return str(value)
