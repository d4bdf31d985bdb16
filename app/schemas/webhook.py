"""Inbound provider webhook payloads."""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CREDIT_EVENTS = frozenset({"charge.success", "dedicatedaccount.credit"})
TRANSFER_EVENTS = frozenset({"transfer.success", "transfer.failed", "transfer.reversed"})


class WebhookCustomer(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    customer_code: Optional[str] = None


class WebhookAccountDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    account_number: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        # Provider sends numeric ids
        return None if value is None else str(value)


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    reference: Optional[str] = None
    # Minor units (kobo)
    amount: Optional[int] = None
    status: Optional[str] = None
    message: Optional[str] = None
    gateway_response: Optional[str] = None
    transfer_code: Optional[str] = None
    reason: Optional[str] = None
    customer: Optional[WebhookCustomer] = None
    account_details: Optional[WebhookAccountDetails] = None

    @property
    def major_amount(self) -> Decimal:
        return Decimal(self.amount or 0) / Decimal(100)


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    data: WebhookData = Field(default_factory=WebhookData)

    @property
    def is_credit(self) -> bool:
        return self.event in CREDIT_EVENTS

    @property
    def is_transfer(self) -> bool:
        return self.event in TRANSFER_EVENTS


class WebhookAck(BaseModel):
    status: str = "success"
    outcome: str
