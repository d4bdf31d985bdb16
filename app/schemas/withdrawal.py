"""Withdrawal request/response schemas."""

from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer


class VerifyAccountRequest(BaseModel):
    bank_code: str = Field(..., description="Provider bank code")
    account_number: str = Field(..., description="10-digit NUBAN account number")


class VerifyAccountResponse(BaseModel):
    account_name: str
    bank_code: str
    account_number: str


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(..., description="Amount to withdraw in major currency units")
    bank_code: str
    account_number: str
    account_name: str


class WithdrawResponse(BaseModel):
    reference: str
    amount: Decimal
    new_balance: Decimal
    transfer_code: str | None = None

    @field_serializer("amount", "new_balance")
    def serialize_money(self, value: Decimal) -> str:
        return str(value)


class BankRead(BaseModel):
    name: str
    code: str
    active: bool = True
    type: str = "commercial"


class BankListResponse(BaseModel):
    banks: list[BankRead]
    source: str
    fallback: bool = False
