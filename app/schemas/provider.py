"""Payloads returned by the payment provider, reduced to what we use.

Amounts are converted from minor units (kobo) to major units on the way in.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


def from_minor(amount: int | str | None) -> Decimal:
    return Decimal(amount or 0) / Decimal(100)


def to_minor(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class ProviderCustomer(BaseModel):
    customer_code: str
    email: Optional[str] = None


class DedicatedAccount(BaseModel):
    provider_id: str
    account_name: Optional[str] = None
    account_number: str
    bank_name: str
    active: bool = True


class ProviderBalances(BaseModel):
    transfers: Decimal = Decimal("0")
    revenue: Decimal = Decimal("0")
    currency: str = "NGN"


class VerifiedTransaction(BaseModel):
    """Outcome of a provider lookup for an inbound payment."""

    reference: str
    status: str
    amount: Decimal
    provider_reference: Optional[str] = None
    gateway_response: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def failed(self) -> bool:
        return self.status in ("failed", "abandoned", "reversed")


class TransferRecipient(BaseModel):
    recipient_code: str
    account_name: Optional[str] = None


class TransferResult(BaseModel):
    reference: str
    status: str
    transfer_code: Optional[str] = None
    amount: Optional[Decimal] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def failed(self) -> bool:
        return self.status in ("failed", "reversed", "rejected")


class ResolvedAccount(BaseModel):
    account_name: str
    account_number: str
    bank_code: str
