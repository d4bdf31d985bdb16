"""Property-based tests for idempotent deposit crediting.

**Feature: wallet-reconciliation-core, Property 2: Credit Exactly Once**
"""

import asyncio
from decimal import Decimal

from hypothesis import given, settings, strategies as st

from app.models.transaction import TransactionStatus, TransactionType
from app.services import webhook_service
from support import (
    charge_success,
    create_user,
    load_wallet,
    run_with_container,
    sign,
    transactions,
)

EMAIL = "ada@example.com"

amount_strategy = st.decimals(
    min_value=Decimal("100"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


@settings(max_examples=30, deadline=None)
@given(
    amount=amount_strategy,
    deliveries=st.integers(min_value=1, max_value=4),
    funded_first=st.booleans(),
    sweep_first=st.booleans(),
)
def test_deposit_is_credited_once_however_often_it_is_reported(
    amount: Decimal, deliveries: int, funded_first: bool, sweep_first: bool
) -> None:
    """
    **Feature: wallet-reconciliation-core, Property 2: Credit Exactly Once**

    *For any* deposit amount, number of webhook deliveries and ordering of the
    reconciliation sweep, the wallet SHALL be credited exactly once and hold
    exactly one completed deposit.
    """

    async def scenario(container, provider):
        user_id, wallet_id = await create_user(container)
        if funded_first:
            funding = await container.funding.initiate(user_id, str(amount), EMAIL, "08012345678")
            reference = funding.reference
        else:
            reference = "T_out_of_band"
        provider.settle_payment(reference, amount)

        outcomes = []
        if sweep_first:
            await container.reconciliation.reconcile_pending()
        body = charge_success(EMAIL, reference, int(amount * 100))
        for _ in range(deliveries):
            outcomes.append(await container.webhooks.ingest(body, sign(body, container.settings)))
        await container.reconciliation.reconcile_pending()

        wallet = await load_wallet(container, wallet_id)
        history = await transactions(container, wallet_id)
        return outcomes, wallet, history

    outcomes, wallet, history = asyncio.run(run_with_container(scenario))

    swept = sweep_first and funded_first
    expected_first = webhook_service.DUPLICATE if swept else webhook_service.CREDITED
    assert outcomes == [expected_first] + [webhook_service.DUPLICATE] * (deliveries - 1)
    assert wallet.balance == amount
    assert wallet.total_deposits == amount
    completed = [
        t for t in history
        if t.type == TransactionType.DEPOSIT.value and t.status == TransactionStatus.COMPLETED.value
    ]
    assert len(completed) == 1
    assert len(history) == 1
