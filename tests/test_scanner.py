import asyncio

import pytest

from app.core.errors import ExternalFetchFailure, MalformedEvent
from app.crud.checkpoint import advance_checkpoint, get_checkpoint
from app.crud.goal import get_goal_by_id
from app.crud.vault_event import get_events
from app.utils.reconciler import Outcome
from app.utils.scanner import VaultScanner
from conftest import (
    ALICE, NETWORK, OWNER, VAULT, FakeEventSource, deposited_log, goal_input, tx_hash, withdrawn_log, yield_log,
)


def make_scanner(vault_config, source, reconciler, session_factory):
    return VaultScanner(vault_config, source, reconciler, session_factory, max_retries=2, retry_delay=0)


@pytest.mark.asyncio
async def test_scan_processes_all_kinds_and_advances(vault_config, reconciler, session_factory, ledger):
    async with session_factory() as db:
        goal = await ledger.create_goal(OWNER, goal_input(target="1000"), db)
        await ledger.deposit(goal.id, OWNER, "250", db, transaction_hash=tx_hash(1), vault_address=VAULT)

    source = FakeEventSource()
    source.add(
        deposited_log(3, 0, tx_hash(1), OWNER, deposit_id=1, amount=250),
        deposited_log(3, 1, tx_hash(2), ALICE, deposit_id=2, amount=10),
        yield_log(15, 0, tx_hash(3), amount=99, index=1),
    )
    scanner = make_scanner(vault_config, source, reconciler, session_factory)

    result = await scanner.scan()

    assert (result.from_block, result.to_block) == (0, 15)
    assert (result.events_seen, result.matched, result.orphaned, result.recorded) == (3, 1, 1, 1)
    async with session_factory() as db:
        assert await get_checkpoint(NETWORK, VAULT, db) == 15
        rows = await get_events(NETWORK, VAULT, db)
        assert [(r.block_number, r.log_index, r.status) for r in rows] == [
            (3, 0, "matched"), (3, 1, "orphaned"), (15, 0, "recorded"),
        ]


@pytest.mark.asyncio
async def test_scan_splits_into_block_ranges(vault_config, reconciler, session_factory):
    source = FakeEventSource(head=25)
    scanner = make_scanner(vault_config, source, reconciler, session_factory)

    result = await scanner.scan()

    # max_block_range=10: [0,9] [10,19] [20,25], three kinds each
    assert source.fetch_calls == 9
    assert result.to_block == 25


@pytest.mark.asyncio
async def test_scan_resumes_after_checkpoint(vault_config, reconciler, session_factory):
    source = FakeEventSource()
    source.add(deposited_log(4, 0, tx_hash(1), ALICE, deposit_id=1, amount=5))
    scanner = make_scanner(vault_config, source, reconciler, session_factory)
    await scanner.scan()

    source.add(deposited_log(8, 0, tx_hash(2), ALICE, deposit_id=2, amount=6))
    result = await scanner.scan()

    assert (result.from_block, result.to_block) == (5, 8)
    assert result.events_seen == 1
    assert result.duplicates == 0


@pytest.mark.asyncio
async def test_scan_with_nothing_new(vault_config, reconciler, session_factory):
    source = FakeEventSource(head=5)
    scanner = make_scanner(vault_config, source, reconciler, session_factory)
    await scanner.scan()
    calls = source.fetch_calls

    result = await scanner.scan()

    assert result.events_seen == 0
    assert source.fetch_calls == calls


@pytest.mark.asyncio
async def test_replaying_a_processed_range_changes_nothing(vault_config, reconciler, session_factory, ledger):
    async with session_factory() as db:
        goal = await ledger.create_goal(OWNER, goal_input(target="1000"), db)
        await ledger.deposit(goal.id, OWNER, "250", db, transaction_hash=tx_hash(1), vault_address=VAULT)
    source = FakeEventSource()
    source.add(deposited_log(2, 0, tx_hash(1), OWNER, deposit_id=1, amount=260))
    scanner = make_scanner(vault_config, source, reconciler, session_factory)
    await scanner.scan()

    # Same blocks again, as after a crash before the checkpoint write
    events = await scanner.fetch_range(0, 2)
    async with session_factory() as db:
        outcomes = [(await reconciler.reconcile(event, db)).outcome for event in events]
        assert outcomes == [Outcome.DUPLICATE]
        assert (await get_goal_by_id(goal.id, db)).current_amount == "260"
        assert await get_checkpoint(NETWORK, VAULT, db) == 2


@pytest.mark.asyncio
async def test_fetch_failures_are_retried(vault_config, reconciler, session_factory):
    source = FakeEventSource()
    source.add(deposited_log(1, 0, tx_hash(1), ALICE, deposit_id=1, amount=5))
    source.fail_next(2)
    scanner = make_scanner(vault_config, source, reconciler, session_factory)

    result = await scanner.scan()

    assert result.events_seen == 1


@pytest.mark.asyncio
async def test_exhausted_retries_leave_checkpoint_alone(vault_config, reconciler, session_factory):
    source = FakeEventSource()
    source.add(deposited_log(1, 0, tx_hash(1), ALICE, deposit_id=1, amount=5))
    scanner = make_scanner(vault_config, source, reconciler, session_factory)
    await scanner.scan()

    source.add(withdrawn_log(12, 0, tx_hash(2), ALICE, deposit_id=1, amount=5))
    source.fail_next(10)
    with pytest.raises(ExternalFetchFailure):
        await scanner.scan()

    async with session_factory() as db:
        assert await get_checkpoint(NETWORK, VAULT, db) == 1


@pytest.mark.asyncio
async def test_malformed_event_stops_the_scan(vault_config, reconciler, session_factory):
    bad = deposited_log(3, 0, tx_hash(1), ALICE, deposit_id=1, amount=5)
    del bad["args"]["amount"]
    source = FakeEventSource()
    source.add(bad)
    scanner = make_scanner(vault_config, source, reconciler, session_factory)

    with pytest.raises(MalformedEvent):
        await scanner.scan()

    async with session_factory() as db:
        assert await get_checkpoint(NETWORK, VAULT, db) is None


@pytest.mark.asyncio
async def test_checkpoint_never_moves_backwards(session_factory):
    async with session_factory() as db:
        assert await advance_checkpoint(NETWORK, VAULT, 50, db) == 50
        assert await advance_checkpoint(NETWORK, VAULT, 20, db) == 50
        assert await advance_checkpoint(NETWORK, VAULT, 51, db) == 51
        assert await get_checkpoint(NETWORK, VAULT, db) == 51


class StallingEventSource(FakeEventSource):
    """Hangs on any fetch starting at or after ``stall_from`` until cancelled."""

    def __init__(self, head: int, stall_from: int):
        super().__init__(head)
        self.stall_from = stall_from
        self.stalled = asyncio.Event()

    async def fetch_events(self, kind, from_block, to_block):
        if from_block >= self.stall_from:
            self.stalled.set()
            await asyncio.Event().wait()
        return await super().fetch_events(kind, from_block, to_block)


@pytest.mark.asyncio
async def test_cancelled_scan_keeps_checkpoint_at_last_finished_range(vault_config, reconciler, session_factory):
    source = StallingEventSource(head=25, stall_from=10)
    source.add(
        deposited_log(4, 0, tx_hash(1), ALICE, deposit_id=1, amount=5),
        deposited_log(12, 0, tx_hash(2), ALICE, deposit_id=2, amount=6),
    )
    scanner = make_scanner(vault_config, source, reconciler, session_factory)

    task = asyncio.create_task(scanner.scan())
    await asyncio.wait_for(source.stalled.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    async with session_factory() as db:
        assert await get_checkpoint(NETWORK, VAULT, db) == 9
        rows = await get_events(NETWORK, VAULT, db)
        assert [r.block_number for r in rows] == [4]
