# app/crud/vault_event.py
"""
Audit store: one row per normalized vault event, keyed so that re-scanning a
block range never produces a second row for the same log.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import func
from app.models.vault_event import VaultEvent
from app.schemas.vault_event import NormalizedEvent
from typing import List, Optional, Tuple


async def get_event(event: NormalizedEvent, db: AsyncSession, refresh: bool = False) -> Optional[VaultEvent]:
    network, vault_address, tx_hash, kind, log_index = event.identity
    query = select(VaultEvent).where(
        VaultEvent.network == network,
        VaultEvent.vault_address == vault_address,
        VaultEvent.transaction_hash == tx_hash,
        VaultEvent.event_kind == kind,
        VaultEvent.log_index == log_index,
    )
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def record_event(
    event: NormalizedEvent,
    db: AsyncSession,
    token_symbol: Optional[str] = None,
) -> Tuple[VaultEvent, bool]:
    """Insert the event unless it is already stored. Returns (row, created)."""
    existing = await get_event(event, db)
    if existing is not None:
        return existing, False

    row = VaultEvent(
        network=event.network,
        vault_address=event.vault_address,
        transaction_hash=event.tx_hash,
        event_kind=event.kind,
        log_index=event.log_index,
        block_number=event.block_height,
        user_address=event.user_address,
        correlation_id=event.correlation_id,
        amount=event.amount,
        extra=dict(event.extra),
        token_symbol=token_symbol,
        status="orphaned",
    )
    db.add(row)
    await db.flush()
    return row, True


def to_normalized(row: VaultEvent) -> NormalizedEvent:
    return NormalizedEvent(
        kind=row.event_kind,
        network=row.network,
        vault_address=row.vault_address,
        user_address=row.user_address,
        amount=row.amount,
        correlation_id=row.correlation_id,
        block_height=row.block_number,
        log_index=row.log_index,
        tx_hash=row.transaction_hash,
        extra=row.extra or {},
    )


async def get_events(
    network: str,
    vault_address: str,
    db: AsyncSession,
    status: Optional[str] = None,
    limit: int = 100,
) -> List[VaultEvent]:
    query = select(VaultEvent).where(
        VaultEvent.network == network,
        VaultEvent.vault_address == vault_address,
    )
    if status:
        query = query.where(VaultEvent.status == status)
    query = query.order_by(VaultEvent.block_number, VaultEvent.log_index).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_orphans_for_transaction(
    user_id: str,
    transaction_hash: str,
    vault_address: str,
    db: AsyncSession,
) -> List[VaultEvent]:
    result = await db.execute(
        select(VaultEvent)
        .where(
            VaultEvent.status == "orphaned",
            VaultEvent.user_address == user_id,
            VaultEvent.transaction_hash == transaction_hash,
            VaultEvent.vault_address == vault_address,
        )
        .order_by(VaultEvent.block_number, VaultEvent.log_index)
    )
    return list(result.scalars().all())


async def count_orphans(network: str, vault_address: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(VaultEvent)
        .where(
            VaultEvent.network == network,
            VaultEvent.vault_address == vault_address,
            VaultEvent.status == "orphaned",
        )
    )
    return result.scalar_one() or 0
