import asyncio
from datetime import date

import pytest
from pydantic import ValidationError

from app.core.errors import InsufficientBalance, InvalidAmount, InvalidState, NotFound, TokenMismatch
from app.crud.goal import get_goal_by_id
from app.crud.transaction import get_goal_transactions
from app.schemas.goal import GoalUpdate
from app.utils.ledger import LedgerEngine
from app.utils.oracle import StaticPriceOracle
from conftest import ALICE, BOB, OTHER_TOKEN, OWNER, TOKEN, goal_input


@pytest.mark.asyncio
async def test_deposit_updates_balance_and_progress(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(target="1000"), db)

    goal, tx = await ledger.deposit(goal.id, OWNER, "250", db)

    assert goal.current_amount == "250"
    assert goal.progress == 25.0
    assert tx.type == "deposit"
    assert tx.status == "pending"
    assert tx.amount == "250"
    assert tx.goal_id == goal.id


@pytest.mark.asyncio
async def test_withdraw_more_than_balance_leaves_goal_untouched(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(target="1000"), db)
    await ledger.deposit(goal.id, OWNER, "250", db)

    with pytest.raises(InsufficientBalance):
        await ledger.withdraw(goal.id, OWNER, "300", db)

    stored = await get_goal_by_id(goal.id, db, refresh=True)
    assert stored.current_amount == "250"
    assert stored.progress == 25.0
    transactions = await get_goal_transactions(goal.id, OWNER, db)
    assert [t.type for t in transactions] == ["deposit"]


@pytest.mark.asyncio
async def test_withdraw_decrements(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(target="1000"), db)
    await ledger.deposit(goal.id, OWNER, "250", db)

    goal, tx = await ledger.withdraw(goal.id, OWNER, "100", db)

    assert goal.current_amount == "150"
    assert goal.progress == 15.0
    assert tx.type == "withdrawal"
    assert tx.status == "pending"


@pytest.mark.asyncio
async def test_deposit_requires_active_goal(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(), db)
    await ledger.set_goal_status(goal.id, OWNER, "paused", db)

    with pytest.raises(InvalidState):
        await ledger.deposit(goal.id, OWNER, "10", db)


@pytest.mark.asyncio
async def test_zero_deposit_is_rejected(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(), db)
    with pytest.raises(InvalidAmount):
        await ledger.deposit(goal.id, OWNER, "0", db)


@pytest.mark.asyncio
async def test_goals_are_scoped_to_their_owner(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(), db)
    with pytest.raises(NotFound):
        await ledger.deposit(goal.id, ALICE, "10", db)


@pytest.mark.asyncio
async def test_transfer_moves_funds_in_one_transaction(ledger, db):
    source = await ledger.create_goal(OWNER, goal_input(target="1000", title="Rent"), db)
    target = await ledger.create_goal(OWNER, goal_input(target="400", title="Trip"), db)
    await ledger.deposit(source.id, OWNER, "500", db)

    source, target, tx = await ledger.transfer(source.id, target.id, OWNER, "200", db)

    assert source.current_amount == "300"
    assert target.current_amount == "200"
    assert target.progress == 50.0
    assert tx.type == "transfer"
    assert tx.status == "completed"
    assert tx.from_goal_id == source.id
    assert tx.to_goal_id == target.id


@pytest.mark.asyncio
async def test_transfer_rejects_token_mismatch(ledger, db):
    source = await ledger.create_goal(OWNER, goal_input(), db)
    target = await ledger.create_goal(OWNER, goal_input(token=OTHER_TOKEN, symbol="DAI"), db)
    await ledger.deposit(source.id, OWNER, "100", db)

    with pytest.raises(TokenMismatch):
        await ledger.transfer(source.id, target.id, OWNER, "50", db)

    assert (await get_goal_by_id(source.id, db, refresh=True)).current_amount == "100"
    assert (await get_goal_by_id(target.id, db, refresh=True)).current_amount == "0"


@pytest.mark.asyncio
async def test_transfer_rejects_overdraft(ledger, db):
    source = await ledger.create_goal(OWNER, goal_input(), db)
    target = await ledger.create_goal(OWNER, goal_input(), db)
    await ledger.deposit(source.id, OWNER, "100", db)

    with pytest.raises(InsufficientBalance):
        await ledger.transfer(source.id, target.id, OWNER, "101", db)

    assert (await get_goal_by_id(target.id, db, refresh=True)).current_amount == "0"


@pytest.mark.asyncio
async def test_interest_accrues_once_per_day(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(target="0", interest_rate=5.0), db)
    await ledger.deposit(goal.id, OWNER, "1000000", db)
    day = date(2026, 1, 15)

    goal, tx = await ledger.accrue_interest(goal.id, OWNER, db, on_date=day)

    assert tx.amount == "136"
    assert tx.status == "completed"
    assert goal.current_amount == "1000136"
    assert goal.total_interest_earned == "136"

    with pytest.raises(InvalidState):
        await ledger.accrue_interest(goal.id, OWNER, db, on_date=day)
    assert (await get_goal_by_id(goal.id, db, refresh=True)).current_amount == "1000136"

    goal, _ = await ledger.accrue_interest(goal.id, OWNER, db, on_date=date(2026, 1, 16))
    assert goal.total_interest_earned == "273"


@pytest.mark.asyncio
async def test_calculate_interest_skips_goals_already_accrued(ledger, db):
    first = await ledger.create_goal(OWNER, goal_input(target="0", interest_rate=10.0), db)
    second = await ledger.create_goal(OWNER, goal_input(target="0", interest_rate=10.0), db)
    empty = await ledger.create_goal(OWNER, goal_input(target="0", interest_rate=10.0), db)
    await ledger.deposit(first.id, OWNER, "365000", db)
    await ledger.deposit(second.id, OWNER, "730000", db)
    day = date(2026, 3, 1)
    await ledger.accrue_interest(first.id, OWNER, db, on_date=day)

    updated = await ledger.calculate_interest(OWNER, db, on_date=day)

    assert [g.id for g in updated] == [second.id]
    assert (await get_goal_by_id(second.id, db, refresh=True)).current_amount == "730200"
    assert (await get_goal_by_id(empty.id, db, refresh=True)).current_amount == "0"


@pytest.mark.asyncio
async def test_delete_requires_empty_goal(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(), db)
    await ledger.deposit(goal.id, OWNER, "10", db)

    with pytest.raises(InvalidState):
        await ledger.delete_goal(goal.id, OWNER, db)

    await ledger.withdraw(goal.id, OWNER, "10", db)
    await ledger.delete_goal(goal.id, OWNER, db)
    with pytest.raises(NotFound):
        await ledger.get_goal(goal.id, OWNER, db)


@pytest.mark.asyncio
async def test_quick_save_goal_is_unique_and_permanent(ledger, db):
    quick = await ledger.create_quick_save_goal(OWNER, TOKEN, "USDC", db)
    assert quick.is_quick_save
    assert quick.target_amount == "0"
    assert quick.category == "quick"

    with pytest.raises(InvalidState):
        await ledger.create_quick_save_goal(OWNER, TOKEN, "USDC", db)
    with pytest.raises(InvalidState):
        await ledger.delete_goal(quick.id, OWNER, db)
    with pytest.raises(InvalidState):
        await ledger.set_goal_status(quick.id, OWNER, "cancelled", db)

    # Deposits still work and progress stays 0 without a target
    quick, _ = await ledger.deposit(quick.id, OWNER, "50", db)
    assert quick.progress == 0.0


@pytest.mark.asyncio
async def test_status_transitions(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(), db)
    await ledger.deposit(goal.id, OWNER, "10", db)

    with pytest.raises(InvalidState):
        await ledger.set_goal_status(goal.id, OWNER, "cancelled", db)

    goal = await ledger.set_goal_status(goal.id, OWNER, "completed", db)
    assert goal.completed_at is not None
    with pytest.raises(InvalidState):
        await ledger.set_goal_status(goal.id, OWNER, "active", db)


@pytest.mark.asyncio
async def test_attach_chain_reference(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(), db)
    _, tx = await ledger.deposit(goal.id, OWNER, "10", db)

    tx = await ledger.attach_chain_reference(tx.transaction_id, OWNER, "0xABC", db, vault_address="0xDEF")
    assert tx.transaction_hash == "0xabc"
    assert tx.vault_address == "0xdef"

    with pytest.raises(InvalidState):
        await ledger.attach_chain_reference(tx.transaction_id, OWNER, "0x123", db)
    with pytest.raises(NotFound):
        await ledger.attach_chain_reference(tx.transaction_id, BOB, "0xabc", db)


@pytest.mark.asyncio
async def test_stats_include_usd_value_when_prices_are_fresh(locks, db):
    ledger = LedgerEngine(locks, oracle=StaticPriceOracle({TOKEN: 2.5}))
    goal = await ledger.create_goal(OWNER, goal_input(target="4000000", token_decimals=6), db)
    await ledger.deposit(goal.id, OWNER, "2000000", db)

    stats = await ledger.get_user_goal_stats(OWNER, db)

    assert stats.total_goals == 1
    assert stats.total_saved == "2000000"
    assert stats.average_progress == 50.0
    assert stats.total_saved_usd == 5.0


@pytest.mark.asyncio
async def test_concurrent_withdrawals_cannot_overdraw(ledger, session_factory):
    async with session_factory() as db:
        goal = await ledger.create_goal(OWNER, goal_input(target="0"), db)
        await ledger.deposit(goal.id, OWNER, "300", db)

    async def withdraw():
        async with session_factory() as session:
            return await ledger.withdraw(goal.id, OWNER, "200", session)

    results = await asyncio.gather(withdraw(), withdraw(), return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, InsufficientBalance)) == 1
    assert sum(1 for r in results if isinstance(r, tuple)) == 1
    async with session_factory() as db:
        assert (await get_goal_by_id(goal.id, db)).current_amount == "100"


@pytest.mark.asyncio
async def test_update_goal_recomputes_progress(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(target="1000"), db)
    await ledger.deposit(goal.id, OWNER, "250", db)

    goal = await ledger.update_goal(goal.id, OWNER, GoalUpdate(title="New laptop", target_amount="500"), db)

    assert goal.title == "New laptop"
    assert goal.target_amount == "500"
    assert goal.current_amount == "250"
    assert goal.progress == 50.0


@pytest.mark.asyncio
async def test_update_goal_is_scoped_and_finished_goals_are_read_only(ledger, db):
    goal = await ledger.create_goal(OWNER, goal_input(), db)
    await ledger.deposit(goal.id, OWNER, "10", db)

    with pytest.raises(NotFound):
        await ledger.update_goal(goal.id, ALICE, GoalUpdate(title="Mine"), db)

    await ledger.set_goal_status(goal.id, OWNER, "completed", db)
    with pytest.raises(InvalidState):
        await ledger.update_goal(goal.id, OWNER, GoalUpdate(title="Too late"), db)


@pytest.mark.asyncio
async def test_quick_save_target_cannot_be_set(ledger, db):
    quick = await ledger.create_quick_save_goal(OWNER, TOKEN, "USDC", db)

    with pytest.raises(InvalidState):
        await ledger.update_goal(quick.id, OWNER, GoalUpdate(target_amount="100"), db)

    quick = await ledger.update_goal(quick.id, OWNER, GoalUpdate(title="Rainy day"), db)
    assert quick.title == "Rainy day"
    assert quick.target_amount == "0"


def test_zero_target_is_rejected():
    with pytest.raises(ValidationError):
        GoalUpdate(target_amount="0")
