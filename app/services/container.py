"""Service wiring.

One ``ServiceContainer`` is built per process entry point (the FastAPI
lifespan, or one Celery task run) and owns every long-lived client: the DB
engine, the provider HTTP client, the rate limiter and the publisher.
"""

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.db.session import get_async_engine, get_async_session_maker
from app.services.funding_service import FundingService
from app.services.notifications import BalancePublisher, RedisBalancePublisher
from app.services.provider_client import ProviderGateway
from app.services.rate_limiter import RateLimiter
from app.services.reconciliation_service import ReconciliationService
from app.services.retry import RetryEngine
from app.services.webhook_service import WebhookService
from app.services.withdrawal_service import WithdrawalService


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    limiter: RateLimiter
    retry_engine: RetryEngine
    gateway: ProviderGateway
    publisher: BalancePublisher
    funding: FundingService
    webhooks: WebhookService
    withdrawals: WithdrawalService
    reconciliation: ReconciliationService

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        engine: AsyncEngine | None = None,
        publisher: BalancePublisher | None = None,
        retry_engine: RetryEngine | None = None,
        limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ServiceContainer":
        settings = settings or get_settings()
        engine = engine or get_async_engine(settings)
        session_maker = get_async_session_maker(engine)
        limiter = limiter or RateLimiter.from_settings(settings)
        retry_engine = retry_engine or RetryEngine.from_settings(settings)
        gateway = ProviderGateway(settings, limiter, retry_engine, transport=transport)
        publisher = publisher or RedisBalancePublisher.from_url(settings.redis_url)
        withdrawals = WithdrawalService(settings, session_maker, gateway, retry_engine, publisher)
        return cls(
            settings=settings,
            engine=engine,
            session_maker=session_maker,
            limiter=limiter,
            retry_engine=retry_engine,
            gateway=gateway,
            publisher=publisher,
            funding=FundingService(settings, session_maker, gateway, publisher),
            webhooks=WebhookService(settings, session_maker, publisher),
            withdrawals=withdrawals,
            reconciliation=ReconciliationService(settings, session_maker, gateway, publisher, withdrawals),
        )

    async def aclose(self) -> None:
        await self.gateway.aclose()
        close = getattr(self.publisher, "aclose", None)
        if close is not None:
            await close()
        await self.engine.dispose()
