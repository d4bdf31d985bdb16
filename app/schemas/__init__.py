# Pydantic Data Transfer Objects

from app.schemas.funding import FundingRequest, FundingResponse, FundingStatusResponse
from app.schemas.transaction import (
    DepositMetadata,
    ReceivingAccountSnapshot,
    TransactionRead,
    TransactionSummary,
    WithdrawalMetadata,
)
from app.schemas.wallet import BalanceUpdate, WalletRead
from app.schemas.webhook import WebhookAck, WebhookEvent
from app.schemas.withdrawal import (
    BankListResponse,
    BankRead,
    VerifyAccountRequest,
    VerifyAccountResponse,
    WithdrawRequest,
    WithdrawResponse,
)

__all__ = [
    "BalanceUpdate",
    "BankListResponse",
    "BankRead",
    "DepositMetadata",
    "FundingRequest",
    "FundingResponse",
    "FundingStatusResponse",
    "ReceivingAccountSnapshot",
    "TransactionRead",
    "TransactionSummary",
    "VerifyAccountRequest",
    "VerifyAccountResponse",
    "WalletRead",
    "WebhookAck",
    "WebhookEvent",
    "WithdrawRequest",
    "WithdrawResponse",
    "WithdrawalMetadata",
]
