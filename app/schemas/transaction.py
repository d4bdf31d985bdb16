"""Transaction Pydantic schemas, including the tagged metadata union."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer

from app.models.transaction import TransactionStatus, TransactionType


class ReceivingAccountSnapshot(BaseModel):
    """Dedicated receiving account details as shown to the payer."""

    account_name: Optional[str] = None
    account_number: str
    bank_name: str
    provider_reference: str
    active: bool = True


class DepositMetadata(BaseModel):
    """Metadata carried by deposit transactions."""

    kind: Literal["deposit"] = "deposit"
    gateway: str = "Paystack"
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_code: Optional[str] = None
    receiving_account: Optional[ReceivingAccountSnapshot] = None
    receiving_account_id: Optional[str] = None
    webhook_event: Optional[str] = None
    resolved_by: Optional[Literal["webhook", "sweep", "status_check"]] = None
    resolved_at: Optional[datetime] = None
    transferred_to_balance: bool = False
    failure_reason: Optional[str] = None
    # Diagnostic fields only; nothing reads business state from here
    extra: dict[str, Any] = Field(default_factory=dict)


class WithdrawalMetadata(BaseModel):
    """Metadata carried by withdrawal transactions."""

    kind: Literal["withdrawal"] = "withdrawal"
    gateway: str = "Paystack"
    bank_code: str
    account_number: str
    account_name: str
    recipient_code: Optional[str] = None
    transfer_code: Optional[str] = None
    payout_initiated: bool = False
    retry_attempts: int = 0
    webhook_event: Optional[str] = None
    refunded: bool = False
    failure_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None
    extra: dict[str, Any] = Field(default_factory=dict)


TransactionMetadata = Annotated[
    Union[DepositMetadata, WithdrawalMetadata],
    Field(discriminator="kind"),
]

_metadata_adapter: TypeAdapter[TransactionMetadata] = TypeAdapter(TransactionMetadata)


def parse_metadata(raw: dict | None, transaction_type: TransactionType | str) -> DepositMetadata | WithdrawalMetadata:
    """Load stored metadata, defaulting the tag from the transaction type."""
    data = dict(raw or {})
    data.setdefault("kind", TransactionType(transaction_type).value)
    return _metadata_adapter.validate_python(data)


def dump_metadata(metadata: DepositMetadata | WithdrawalMetadata) -> dict:
    return metadata.model_dump(mode="json")


class TransactionRead(BaseModel):
    """Schema for reading Transaction data.

    Amount is serialized as a decimal string for precision.
    Status is serialized as a string enum value.
    """

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: TransactionType
    amount: Decimal
    reference: str
    provider_reference: Optional[str] = None
    status: TransactionStatus
    created_at: datetime

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> str:
        """Serialize amount as decimal string to preserve precision."""
        return str(amount)

    @field_serializer("status")
    def serialize_status(self, status: TransactionStatus) -> str:
        """Serialize status as string enum value."""
        return status.value


class TransactionSummary(BaseModel):
    """Compact transaction view attached to balance update events."""

    reference: str
    amount: Decimal
    status: TransactionStatus
    type: TransactionType

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> str:
        return str(amount)
