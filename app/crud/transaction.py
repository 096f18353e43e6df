# app/crud/transaction.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import desc
from app.models.savings_transaction import SavingsTransaction
from typing import Iterable, List, Optional
from datetime import date
import secrets
import time
import uuid


def generate_transaction_id(prefix: str = "txn") -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


async def add_transaction(tx: SavingsTransaction, db: AsyncSession) -> SavingsTransaction:
    if not tx.transaction_id:
        tx.transaction_id = generate_transaction_id()
    db.add(tx)
    await db.flush()
    return tx


async def get_transaction_by_transaction_id(
    transaction_id: str,
    db: AsyncSession,
    user_id: Optional[str] = None,
    refresh: bool = False,
) -> Optional[SavingsTransaction]:
    query = select(SavingsTransaction).where(SavingsTransaction.transaction_id == transaction_id)
    if user_id is not None:
        query = query.where(SavingsTransaction.user_id == user_id)
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_goal_transactions(
    goal_id: uuid.UUID,
    user_id: str,
    db: AsyncSession,
    limit: int = 50,
) -> List[SavingsTransaction]:
    """Transactions touching a goal, including transfers in and out."""
    result = await db.execute(
        select(SavingsTransaction)
        .where(
            SavingsTransaction.user_id == user_id,
            (SavingsTransaction.goal_id == goal_id)
            | (SavingsTransaction.from_goal_id == goal_id)
            | (SavingsTransaction.to_goal_id == goal_id),
        )
        .order_by(desc(SavingsTransaction.created_at))
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_group_goal_transactions(
    group_goal_id: uuid.UUID,
    db: AsyncSession,
    limit: int = 50,
) -> List[SavingsTransaction]:
    result = await db.execute(
        select(SavingsTransaction)
        .where(SavingsTransaction.group_goal_id == group_goal_id)
        .order_by(desc(SavingsTransaction.created_at))
        .limit(limit)
    )
    return list(result.scalars().all())


async def find_pending_for_event(
    user_id: str,
    transaction_hash: str,
    vault_address: str,
    types: Iterable[str],
    db: AsyncSession,
    deposit_id: Optional[str] = None,
) -> Optional[SavingsTransaction]:
    """
    Oldest pending transaction matching the composite correlation key. When the
    transaction already knows its vault deposit id, that id must agree too.
    """
    query = (
        select(SavingsTransaction)
        .where(
            SavingsTransaction.status == "pending",
            SavingsTransaction.user_id == user_id,
            SavingsTransaction.transaction_hash == transaction_hash,
            SavingsTransaction.vault_address == vault_address,
            SavingsTransaction.type.in_(list(types)),
        )
        .order_by(SavingsTransaction.created_at)
    )
    if deposit_id is not None:
        query = query.where(
            (SavingsTransaction.deposit_id.is_(None)) | (SavingsTransaction.deposit_id == deposit_id)
        )
    result = await db.execute(query)
    return result.scalars().first()


async def interest_accrued_on(goal_id: uuid.UUID, accrual_date: date, db: AsyncSession) -> bool:
    result = await db.execute(
        select(SavingsTransaction.id).where(
            SavingsTransaction.goal_id == goal_id,
            SavingsTransaction.accrual_date == accrual_date,
        )
    )
    return result.first() is not None
