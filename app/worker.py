"""Scheduled reconciliation jobs run by Celery beat.

Each task builds its own ``ServiceContainer``, runs one job to completion
on a fresh event loop and closes every client before returning. Jobs are
safe to overlap with webhook delivery and with each other.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from celery import Task

from app.core.celery_app import celery_app
from app.core.config import get_settings
from app.core.logging import get_logger
from app.services.container import ServiceContainer

logger = get_logger(__name__)

T = TypeVar("T")


def run_job(job: Callable[[ServiceContainer], Awaitable[T]]) -> T:
    """Run ``job`` against a freshly built container."""

    async def runner() -> T:
        container = ServiceContainer.build(get_settings())
        try:
            return await job(container)
        finally:
            await container.aclose()

    return asyncio.run(runner())


def _result(task: Task, name: str, summary: dict) -> dict:
    logger.info("[%s %s] %s", name, task.request.id, summary)
    return {"success": True, "job": name, "summary": summary, "task_id": task.request.id}


@celery_app.task(name="sync_all_wallets", bind=True)
def sync_all_wallets(self: Task) -> dict:
    """Check every wallet balance against its transactions; alert on mismatch."""
    report = run_job(lambda c: c.reconciliation.sync_all_wallets())
    return _result(self, "sync_all_wallets", report.as_dict())


@celery_app.task(name="reconcile_pending_transactions", bind=True)
def reconcile_pending_transactions(self: Task) -> dict:
    """Settle pending transactions whose webhook never arrived."""
    report = run_job(lambda c: c.reconciliation.reconcile_pending())
    return _result(self, "reconcile_pending_transactions", report.as_dict())


@celery_app.task(name="cleanup_timed_out_transactions", bind=True)
def cleanup_timed_out_transactions(self: Task) -> dict:
    report = run_job(lambda c: c.reconciliation.cleanup_timed_out())
    return _result(self, "cleanup_timed_out_transactions", report.as_dict())


@celery_app.task(name="retry_pending_transactions", bind=True)
def retry_pending_transactions(self: Task) -> dict:
    """Re-drive withdrawals whose payout never reached the provider."""
    report = run_job(lambda c: c.reconciliation.retry_pending_transactions())
    return _result(self, "retry_pending_transactions", report.as_dict())


@celery_app.task(name="settle_provider_balances", bind=True)
def settle_provider_balances(self: Task) -> dict:
    report = run_job(lambda c: c.reconciliation.settle_provider_balances())
    return _result(self, "settle_provider_balances", report.as_dict())


@celery_app.task(name="check_provider_balance", bind=True)
def check_provider_balance(self: Task) -> dict:
    summary = run_job(lambda c: c.reconciliation.check_provider_balance())
    return _result(self, "check_provider_balance", summary)
