"""Celery application instance for the scheduled reconciliation jobs."""

from datetime import timedelta

from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings

# Load settings
settings = get_settings()

# Create Celery instance with unique application name
celery_app = Celery(
    "wallet_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.worker"],
)

# Configure Celery
celery_app.conf.update(
    # Serialization settings
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone settings
    timezone="UTC",
    enable_utc=True,

    # Task tracking and execution settings
    task_track_started=True,
    task_time_limit=1800,  # Sweeps walk every wallet
    result_expires=3600,  # Results expire after 1 hour
)

celery_app.conf.beat_schedule = {
    "sync-all-wallets": {
        "task": "sync_all_wallets",
        "schedule": timedelta(minutes=settings.SYNC_INTERVAL_MINUTES),
    },
    "reconcile-pending-transactions": {
        "task": "reconcile_pending_transactions",
        "schedule": timedelta(hours=settings.RECONCILE_INTERVAL_HOURS),
    },
    "cleanup-timed-out-transactions": {
        "task": "cleanup_timed_out_transactions",
        "schedule": crontab(hour=0, minute=0),
    },
    "retry-pending-transactions": {
        "task": "retry_pending_transactions",
        "schedule": timedelta(hours=settings.RETRY_INTERVAL_HOURS),
    },
    "settle-provider-balances": {
        "task": "settle_provider_balances",
        "schedule": timedelta(hours=settings.SETTLE_INTERVAL_HOURS),
    },
    "check-provider-balance": {
        "task": "check_provider_balance",
        "schedule": crontab(hour=6, minute=0),
    },
}
