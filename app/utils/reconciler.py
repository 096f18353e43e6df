# app/utils/reconciler.py
"""
Matches normalized vault events to pending ledger transactions.

Every event lands in the audit store first. A matched event is applied to the
owning goal or group goal while holding that entity's lock, and the audit row
is marked ``matched`` in the same commit as the ledger change, so a re-scan of
the same block range finds the row and does nothing.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import utcnow
from app.core.locks import KeyedLock
from app.crud import transaction as tx_crud
from app.crud import vault_event as event_crud
from app.models.savings_transaction import SavingsTransaction
from app.schemas.vault_event import NormalizedEvent
from app.utils.group_ledger import GroupLedgerEngine
from app.utils.ledger import LedgerEngine, entity_lock_key, unit_of_work

logger = logging.getLogger(__name__)

# Transaction types a chain event can confirm
MATCHABLE_TYPES = {
    "Deposited": ("deposit", "contribution"),
    "Withdrawn": ("withdrawal", "refund"),
}


class Outcome(str, Enum):
    MATCHED = "matched"
    ORPHANED = "orphaned"
    RECORDED = "recorded"
    DUPLICATE = "duplicate"


@dataclass
class ReconciliationResult:
    outcome: Outcome
    transaction_id: Optional[str] = None


class Reconciler:
    def __init__(self, ledger: LedgerEngine, group_ledger: GroupLedgerEngine, locks: KeyedLock):
        self.ledger = ledger
        self.group_ledger = group_ledger
        self.locks = locks

    async def reconcile(
        self,
        event: NormalizedEvent,
        db: AsyncSession,
        token_symbol: Optional[str] = None,
    ) -> ReconciliationResult:
        try:
            existing = await event_crud.get_event(event, db, refresh=True)
            if existing is not None and existing.status != "orphaned":
                return ReconciliationResult(Outcome.DUPLICATE, existing.transaction_id)

            if event.kind == "YieldDistributed":
                # Vault-wide; booked per goal by a later index job
                async with unit_of_work(db):
                    row, _ = await event_crud.record_event(event, db, token_symbol=token_symbol)
                    row.status = "recorded"
                logger.info(f"Recorded YieldDistributed {event.amount} at block {event.block_height}")
                return ReconciliationResult(Outcome.RECORDED)

            tx = await self._find_pending(event, db)
            if tx is None:
                async with unit_of_work(db):
                    row, created = await event_crud.record_event(event, db, token_symbol=token_symbol)
                if not created:
                    # Already stored as an orphan by an earlier pass
                    return ReconciliationResult(Outcome.DUPLICATE)
                logger.warning(
                    f"Orphan {event.kind} from {event.user_address} in {event.tx_hash} "
                    f"(log {event.log_index}): no pending transaction yet"
                )
                return ReconciliationResult(Outcome.ORPHANED)

            kind, entity_id = entity_lock_key(tx)
            async with self.locks.acquire(kind, entity_id):
                return await self._apply(event, tx.transaction_id, db, token_symbol)
        except Exception:
            await db.rollback()
            raise

    async def _find_pending(self, event: NormalizedEvent, db: AsyncSession) -> Optional[SavingsTransaction]:
        if not event.user_address:
            return None
        return await tx_crud.find_pending_for_event(
            user_id=event.user_address,
            transaction_hash=event.tx_hash,
            vault_address=event.vault_address,
            types=MATCHABLE_TYPES[event.kind],
            db=db,
            deposit_id=event.correlation_id,
        )

    async def _apply(
        self,
        event: NormalizedEvent,
        transaction_id: str,
        db: AsyncSession,
        token_symbol: Optional[str],
    ) -> ReconciliationResult:
        tx = await tx_crud.get_transaction_by_transaction_id(transaction_id, db, refresh=True)
        row = await event_crud.get_event(event, db, refresh=True)
        if row is not None and row.status != "orphaned":
            return ReconciliationResult(Outcome.DUPLICATE, row.transaction_id)
        if tx is None or tx.status != "pending":
            # Another event confirmed it while we waited for the lock
            async with unit_of_work(db):
                await event_crud.record_event(event, db, token_symbol=token_symbol)
            return ReconciliationResult(Outcome.ORPHANED)

        async with unit_of_work(db):
            row, _ = await event_crud.record_event(event, db, token_symbol=token_symbol)
            if tx.type == "contribution":
                await self.group_ledger.apply_contribution_confirmation(tx, event, row, db)
            elif tx.type == "refund":
                await self.group_ledger.apply_refund_confirmation(tx, event, row, db)
            elif tx.type == "withdrawal":
                await self.ledger.apply_withdrawal_confirmation(tx, event, row, db)
            else:
                await self.ledger.apply_deposit_confirmation(tx, event, row, db)
            row.status = "matched"
            row.transaction_id = tx.transaction_id
            row.matched_at = utcnow()
        logger.info(f"✅ Matched {event.kind} {event.tx_hash} (log {event.log_index}) to {tx.transaction_id}")
        return ReconciliationResult(Outcome.MATCHED, tx.transaction_id)

    async def retry_orphans(
        self, network: str, vault_address: str, db: AsyncSession, limit: int = 500
    ) -> Tuple[int, int]:
        """Re-run matching over stored orphans. Returns (retried, matched)."""
        orphans = await event_crud.get_events(network, vault_address, db, status="orphaned", limit=limit)
        events = [event_crud.to_normalized(row) for row in orphans]
        matched = 0
        for event in events:
            result = await self.reconcile(event, db)
            if result.outcome == Outcome.MATCHED:
                matched += 1
        if events:
            logger.info(f"Orphan retry on {network}:{vault_address}: {matched}/{len(events)} matched")
        return len(events), matched

    async def match_transaction(
        self, tx: SavingsTransaction, db: AsyncSession
    ) -> Optional[ReconciliationResult]:
        """Match a pending transaction that just got its hash against stored orphans."""
        if tx.status != "pending" or not tx.transaction_hash or not tx.vault_address:
            return None
        orphans = await event_crud.get_orphans_for_transaction(
            tx.user_id, tx.transaction_hash, tx.vault_address, db
        )
        for event in [event_crud.to_normalized(row) for row in orphans]:
            result = await self.reconcile(event, db)
            if result.outcome == Outcome.MATCHED and result.transaction_id == tx.transaction_id:
                return result
        return None
