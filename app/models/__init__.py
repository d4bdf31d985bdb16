# SQLAlchemy ORM Models
"""Model package exports for Alembic discovery and application use.

All models must be imported here to ensure Alembic can discover them
for automatic migration generation.
"""

from app.models.user import User
from app.models.wallet import Wallet
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.models.notification import Notification, NotificationType, PayoutRecipient

__all__ = [
    "User",
    "Wallet",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "Notification",
    "NotificationType",
    "PayoutRecipient",
]
