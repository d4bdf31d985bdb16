"""Unit tests for ledger store wallet creation."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.models.wallet import Wallet
from app.services.ledger import LedgerStore
from support import create_user


async def wallet_count(container, user_id) -> int:
    async with container.session_maker() as session:
        result = await session.execute(select(func.count()).select_from(Wallet).where(Wallet.user_id == user_id))
        return result.scalar_one()


class TestGetOrCreateWallet:
    @pytest.mark.asyncio
    async def test_creates_an_empty_wallet_once(self, container) -> None:
        user_id, _ = await create_user(container, with_wallet=False)

        async with container.session_maker() as session:
            async with session.begin():
                first = await LedgerStore(session).get_or_create_wallet(user_id)
        async with container.session_maker() as session:
            async with session.begin():
                second = await LedgerStore(session).get_or_create_wallet(user_id)

        assert first.id == second.id
        assert first.balance == Decimal("0")
        assert await wallet_count(container, user_id) == 1

    @pytest.mark.asyncio
    async def test_losing_a_creation_race_returns_the_existing_wallet(self, container, monkeypatch) -> None:
        user_id, wallet_id = await create_user(container, balance=Decimal("250"))
        original = LedgerStore.get_wallet
        reads = []

        async def read_before_other_writer_commits(self, owner_id):
            reads.append(owner_id)
            if len(reads) == 1:
                return None
            return await original(self, owner_id)

        monkeypatch.setattr(LedgerStore, "get_wallet", read_before_other_writer_commits)

        async with container.session_maker() as session:
            async with session.begin():
                wallet = await LedgerStore(session).get_or_create_wallet(user_id)
                found_id, found_balance = wallet.id, wallet.balance

        assert found_id == wallet_id
        assert found_balance == Decimal("250")
        assert len(reads) == 2
        assert await wallet_count(container, user_id) == 1
