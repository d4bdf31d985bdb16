"""Funding request/response schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from app.models.transaction import TransactionStatus
from app.schemas.transaction import ReceivingAccountSnapshot


class FundingRequest(BaseModel):
    """Request schema for initiating a wallet top-up.

    Format checks on email and phone happen in the funding service so
    that every caller (API, scripts) gets the same rules.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "amount": "5000.00",
                "email": "ada@example.com",
                "phone_number": "08012345678",
            }
        }
    )

    amount: Decimal = Field(..., description="Amount to fund in major currency units")
    email: str = Field(..., description="Contact email registered with the provider")
    phone_number: str = Field(..., description="11 digits starting with 0, or +234")


class FundingResponse(BaseModel):
    receiving_account: ReceivingAccountSnapshot
    reference: str
    amount: Decimal
    customer_code: Optional[str] = None

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> str:
        return str(amount)


class FundingStatusResponse(BaseModel):
    reference: str
    status: TransactionStatus
    new_balance: Decimal

    @field_serializer("new_balance")
    def serialize_balance(self, value: Decimal) -> str:
        return str(value)
