"""Wallet API endpoints: funding, balance, history and withdrawals."""

from fastapi import APIRouter, Query

from app.api.deps import Container, CurrentUserId
from app.schemas.funding import FundingRequest, FundingResponse, FundingStatusResponse
from app.schemas.transaction import TransactionRead
from app.schemas.wallet import WalletRead
from app.schemas.withdrawal import (
    BankListResponse,
    VerifyAccountRequest,
    VerifyAccountResponse,
    WithdrawRequest,
    WithdrawResponse,
)

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("", response_model=WalletRead)
async def get_wallet(container: Container, user_id: CurrentUserId):
    """Current balance and receiving account, creating the wallet on first read."""
    return await container.funding.get_balance(user_id)


@router.get("/transactions", response_model=list[TransactionRead])
async def list_transactions(
    container: Container,
    user_id: CurrentUserId,
    limit: int = Query(50, ge=1, le=200),
):
    return await container.funding.list_transactions(user_id, limit)


@router.post("/fund", response_model=FundingResponse, status_code=200)
async def fund_wallet(request: FundingRequest, container: Container, user_id: CurrentUserId):
    """
    Start a wallet top-up.

    - **amount**: Amount in naira (minimum 100)
    - **email**: Contact email for the provider customer
    - **phone_number**: 11 digits starting with 0, or +234 and 10 digits

    Returns the dedicated account to pay into and the funding reference.
    The balance changes only once the provider confirms the payment.
    """
    return await container.funding.initiate(
        user_id=user_id,
        amount=request.amount,
        email=request.email,
        phone_number=request.phone_number,
    )


@router.get("/fund/{reference}", response_model=FundingStatusResponse)
async def funding_status(reference: str, container: Container, user_id: CurrentUserId):
    return await container.funding.status(user_id, reference)


@router.post("/verify-account", response_model=VerifyAccountResponse)
async def verify_account(request: VerifyAccountRequest, container: Container, user_id: CurrentUserId):
    return await container.withdrawals.verify_account(request.bank_code, request.account_number)


@router.post("/withdraw", response_model=WithdrawResponse)
async def withdraw(request: WithdrawRequest, container: Container, user_id: CurrentUserId):
    """
    Withdraw to a bank account.

    The wallet is debited immediately and the payout started. If the payout
    cannot be started the amount is returned to the wallet and an error is
    returned.
    """
    return await container.withdrawals.withdraw(
        user_id=user_id,
        amount=request.amount,
        bank_code=request.bank_code,
        account_number=request.account_number,
        account_name=request.account_name,
    )


@router.get("/banks", response_model=BankListResponse)
async def list_banks(container: Container):
    return await container.withdrawals.list_banks()
