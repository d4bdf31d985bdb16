"""Reconciliation sweeper and the other scheduled ledger jobs.

The sweeper is the fallback for lost or late webhooks. It settles pending
transactions through the same compare-and-set transitions the webhook uses,
so running it concurrently with webhook delivery, or twice in a row, is safe.
Each job works one wallet (or one transaction) per unit of work; a provider
error for one item is logged and the sweep moves on.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import as_utc, utc_now
from app.core.config import Settings
from app.core.exceptions import InvariantViolationError, ProviderError, RetryExhaustedError
from app.core.logging import get_logger
from app.models.transaction import Transaction, TransactionType
from app.schemas.transaction import parse_metadata
from app.services.ledger import LedgerStore, to_money
from app.services.notifications import BalancePublisher, Notifier, balance_update
from app.services.provider_client import ProviderGateway
from app.services.transaction_service import TransactionService, format_amount, with_metadata
from app.services.withdrawal_service import PAYOUT_ABSENT, PAYOUT_PRESENT, PAYOUT_UNKNOWN, WithdrawalService

logger = get_logger(__name__)

TIMEOUT_REASON = "Transaction timed out"


@dataclass
class SweepReport:
    """Counts produced by one job run; returned to Celery as a dict."""

    wallets: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    errors: int = 0
    alerts: int = 0

    def as_dict(self) -> dict:
        return {
            "wallets": self.wallets,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "errors": self.errors,
            "alerts": self.alerts,
        }


class ReconciliationService:
    def __init__(
        self,
        settings: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        gateway: ProviderGateway,
        publisher: BalancePublisher,
        withdrawals: WithdrawalService,
    ) -> None:
        self.settings = settings
        self.session_maker = session_maker
        self.gateway = gateway
        self.publisher = publisher
        self.withdrawals = withdrawals

    @property
    def pending_timeout(self) -> timedelta:
        return timedelta(hours=self.settings.PENDING_TIMEOUT_HOURS)

    async def reconcile_pending(self, now: datetime | None = None) -> SweepReport:
        """Resolve pending deposits and withdrawals against the provider."""
        now = now or utc_now()
        report = SweepReport()
        async with self.session_maker() as session:
            wallets = await LedgerStore(session).wallets_with_pending()

        for wallet in wallets:
            report.wallets += 1
            async with self.session_maker() as session:
                pending = await LedgerStore(session).pending_transactions(wallet.id)
            for transaction in pending:
                await self._reconcile_one(transaction, now, report)

            async with self.session_maker() as session:
                async with session.begin():
                    ledger = LedgerStore(session)
                    await ledger.touch_synced(wallet.id, now)
                    refreshed = await ledger.refresh_wallet(wallet.id)
            await self.publisher.publish(balance_update(refreshed))

        logger.info("Reconciliation sweep finished: %s", report.as_dict())
        return report

    async def _reconcile_one(self, transaction: Transaction, now: datetime, report: SweepReport) -> None:
        expired = now - as_utc(transaction.created_at) > self.pending_timeout
        if transaction.type == TransactionType.DEPOSIT.value:
            if expired:
                await self._expire_deposit(transaction, report)
            else:
                await self._verify_deposit(transaction, report)
        else:
            await self._reconcile_withdrawal(transaction, expired, report)

    async def _expire_deposit(self, transaction: Transaction, report: SweepReport) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                current = await LedgerStore(session).find_by_reference(transaction.reference)
                won = await TransactionService(session).fail_deposit(
                    current, TIMEOUT_REASON, resolved_by="sweep"
                )
        if won:
            report.failed += 1
            logger.info("Deposit %s timed out", transaction.reference)
        else:
            report.skipped += 1

    async def _verify_deposit(self, transaction: Transaction, report: SweepReport) -> None:
        try:
            verified = await self.gateway.verify_transaction(transaction.reference)
        except (ProviderError, RetryExhaustedError) as exc:
            logger.warning("Could not verify deposit %s: %s", transaction.reference, exc)
            report.errors += 1
            return

        if not (verified.succeeded or verified.failed):
            report.skipped += 1
            return

        async with self.session_maker() as session:
            async with session.begin():
                current = await LedgerStore(session).find_by_reference(transaction.reference)
                service = TransactionService(session)
                if verified.succeeded:
                    if to_money(verified.amount) != to_money(current.amount):
                        Notifier(session).alert_operators(
                            "Deposit Amount Mismatch",
                            f"Deposit {current.reference} expects {current.amount} but the provider "
                            f"reports {verified.amount}",
                            reference_id=current.reference,
                        )
                        report.alerts += 1
                        return
                    credited = await service.complete_deposit(
                        current,
                        resolved_by="sweep",
                        provider_reference=verified.provider_reference
                        if verified.provider_reference != current.reference else None,
                    )
                    if credited is None:
                        report.skipped += 1
                    else:
                        report.completed += 1
                else:
                    won = await service.fail_deposit(
                        current,
                        verified.gateway_response or f"Payment {verified.status}",
                        resolved_by="sweep",
                    )
                    if won:
                        report.failed += 1
                    else:
                        report.skipped += 1

    async def _reconcile_withdrawal(self, transaction: Transaction, expired: bool, report: SweepReport) -> None:
        metadata = parse_metadata(transaction.details, transaction.type)
        if not metadata.payout_initiated and not expired:
            report.skipped += 1
            return

        # A payout never marked initiated may still have reached the provider
        state, result = await self.withdrawals.lookup_payout(transaction.reference)
        if state == PAYOUT_UNKNOWN or (state == PAYOUT_ABSENT and metadata.payout_initiated):
            report.errors += 1
            return
        if state == PAYOUT_ABSENT:
            async with self.session_maker() as session:
                async with session.begin():
                    current = await LedgerStore(session).find_by_reference(transaction.reference)
                    wallet = await TransactionService(session).fail_withdrawal(current, TIMEOUT_REASON)
            if wallet is None:
                report.skipped += 1
            else:
                report.failed += 1
            return
        if not metadata.payout_initiated:
            await self.withdrawals.mark_initiated(transaction.reference, result.transfer_code)

        async with self.session_maker() as session:
            async with session.begin():
                current = await LedgerStore(session).find_by_reference(transaction.reference)
                service = TransactionService(session)
                if result.succeeded:
                    if await service.complete_withdrawal(current, transfer_code=result.transfer_code):
                        report.completed += 1
                    else:
                        report.skipped += 1
                elif result.failed:
                    if await service.fail_withdrawal(current, f"Transfer {result.status}") is not None:
                        report.failed += 1
                    else:
                        report.skipped += 1
                else:
                    report.skipped += 1
                    if expired:
                        Notifier(session).alert_operators(
                            "Payout Overdue",
                            f"Payout {current.reference} of {format_amount(current.amount)} is still "
                            f"{result.status} at the provider after {self.settings.PENDING_TIMEOUT_HOURS}h",
                            reference_id=current.reference,
                        )
                        report.alerts += 1

    async def cleanup_timed_out(self, now: datetime | None = None) -> SweepReport:
        """Cancel pending transactions abandoned for longer than the cleanup window."""
        now = now or utc_now()
        report = SweepReport()
        cutoff = now - timedelta(days=self.settings.CLEANUP_TIMEOUT_DAYS)
        async with self.session_maker() as session:
            stale = await LedgerStore(session).pending_transactions(created_before=cutoff)

        for transaction in stale:
            if not await self._payout_state_known(transaction, report):
                continue
            async with self.session_maker() as session:
                async with session.begin():
                    current = await LedgerStore(session).find_by_reference(transaction.reference)
                    cancelled = await TransactionService(session).cancel(
                        current, f"Cancelled after {self.settings.CLEANUP_TIMEOUT_DAYS} days pending"
                    )
            if cancelled:
                report.cancelled += 1
            else:
                report.skipped += 1
        logger.info("Cleanup finished: %s", report.as_dict())
        return report

    async def _payout_state_known(self, transaction: Transaction, report: SweepReport) -> bool:
        """Mark an uninitiated withdrawal initiated if the provider holds its payout.

        Returns False when the provider cannot be asked, so the withdrawal is
        left alone rather than cancelled and refunded.
        """
        if transaction.type != TransactionType.WITHDRAWAL.value:
            return True
        metadata = parse_metadata(transaction.details, transaction.type)
        if metadata.payout_initiated:
            return True
        state, result = await self.withdrawals.lookup_payout(transaction.reference)
        if state == PAYOUT_UNKNOWN:
            report.errors += 1
            return False
        if state == PAYOUT_PRESENT:
            await self.withdrawals.mark_initiated(transaction.reference, result.transfer_code)
        return True

    async def sync_all_wallets(self, now: datetime | None = None) -> SweepReport:
        """Check every wallet's balance against its transaction history.

        A mismatch is raised to operators and never corrected here.
        """
        now = now or utc_now()
        report = SweepReport()
        async with self.session_maker() as session:
            wallets = await LedgerStore(session).all_wallets()

        for wallet in wallets:
            report.wallets += 1
            async with self.session_maker() as session:
                async with session.begin():
                    ledger = LedgerStore(session)
                    current = await ledger.get_wallet_for_update(wallet.id)
                    expected = await ledger.expected_balance(wallet.id)
                    actual = to_money(current.balance)
                    if expected != actual:
                        violation = InvariantViolationError(str(wallet.id), expected, actual)
                        Notifier(session).alert_operators(
                            "Wallet Balance Mismatch",
                            violation.message,
                            reference_id=str(wallet.id),
                        )
                        report.alerts += 1
                    await ledger.touch_synced(wallet.id, now)
        logger.info("Wallet sync finished: %s", report.as_dict())
        return report

    async def retry_pending_transactions(self, now: datetime | None = None) -> SweepReport:
        """Re-drive withdrawals whose payout never reached the provider."""
        now = now or utc_now()
        report = SweepReport()
        cutoff = now - timedelta(seconds=self.settings.PAYOUT_RETRY_GRACE_SECONDS)
        async with self.session_maker() as session:
            candidates = await LedgerStore(session).pending_transactions(
                transaction_type=TransactionType.WITHDRAWAL,
                created_before=cutoff,
            )

        for transaction in candidates:
            outcome = await self.withdrawals.retry_payout(transaction.reference)
            if outcome == "initiated":
                report.completed += 1
            elif outcome == "failed":
                report.failed += 1
            else:
                report.skipped += 1
        logger.info("Payout retry finished: %s", report.as_dict())
        return report

    async def settle_provider_balances(self) -> SweepReport:
        """Move credited deposits from the provider revenue balance to the
        transfer balance so withdrawals can be paid out.

        Wallets are credited as soon as a deposit completes; this job only
        catches the provider's own balances up afterwards.
        """
        report = SweepReport()
        async with self.session_maker() as session:
            unsettled = await LedgerStore(session).completed_deposits_not_settled()
        if not unsettled:
            return report

        total = sum((to_money(transaction.amount) for transaction in unsettled), Decimal("0"))
        try:
            balances = await self.gateway.get_balances()
            amount = min(total, balances.revenue)
            if amount > 0:
                await self.gateway.move_to_transfer_balance(amount, "Settle wallet deposits")
        except (ProviderError, RetryExhaustedError) as exc:
            async with self.session_maker() as session:
                async with session.begin():
                    Notifier(session).alert_operators(
                        "Balance Settlement Failed",
                        f"Could not move {format_amount(total)} to the transfer balance: {exc}",
                    )
            report.errors += 1
            report.alerts += 1
            return report

        # Mark oldest deposits first, only as far as the moved amount covers
        remaining = amount
        async with self.session_maker() as session:
            async with session.begin():
                ledger = LedgerStore(session)
                for transaction in unsettled:
                    if to_money(transaction.amount) > remaining:
                        report.skipped += 1
                        continue
                    current = await ledger.find_by_reference(transaction.reference)
                    await ledger.update_details(current, with_metadata(current, transferred_to_balance=True))
                    remaining -= to_money(transaction.amount)
                    report.completed += 1
        if amount < total:
            logger.warning("Revenue balance covered %s of %s pending settlement", amount, total)
        return report

    async def check_provider_balance(self) -> dict:
        balances = await self.gateway.get_balances()
        low = balances.transfers < self.settings.LOW_TRANSFER_BALANCE_THRESHOLD
        if low:
            async with self.session_maker() as session:
                async with session.begin():
                    Notifier(session).alert_operators(
                        "Low Transfer Balance",
                        f"Provider transfer balance is {format_amount(balances.transfers, balances.currency)}, "
                        f"below {format_amount(self.settings.LOW_TRANSFER_BALANCE_THRESHOLD, balances.currency)}",
                    )
        return {
            "transfers": str(balances.transfers),
            "revenue": str(balances.revenue),
            "low": low,
        }
