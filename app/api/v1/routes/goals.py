# app/api/v1/routes/goals.py
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_ledger, get_reconciler
from app.core.database import get_async_session
from app.schemas.goal import (
    AmountRequest,
    GoalCreate,
    GoalOperationResponse,
    GoalRead,
    GoalStats,
    GoalStatusUpdate,
    GoalUpdate,
    InterestRequest,
    InterestResponse,
    QuickSaveCreate,
    TransferRequest,
    TransferResponse,
)
from app.schemas.transaction import SavingsTransactionRead
from app.utils.ledger import LedgerEngine
from app.utils.reconciler import Reconciler

router = APIRouter(prefix="/goals", tags=["goals"])


@router.post("", response_model=GoalRead, status_code=status.HTTP_201_CREATED)
async def create_goal(
    goal_in: GoalCreate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    return await ledger.create_goal(user_id, goal_in, db)


@router.post("/quick-save", response_model=GoalRead, status_code=status.HTTP_201_CREATED)
async def create_quick_save_goal(
    data: QuickSaveCreate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    """Create the caller's quick-save goal. Each wallet gets exactly one."""
    return await ledger.create_quick_save_goal(
        user_id, data.token_address, data.token_symbol, db, token_decimals=data.token_decimals
    )


@router.get("", response_model=List[GoalRead])
async def list_goals(
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    return await ledger.list_goals(user_id, db)


@router.get("/stats", response_model=GoalStats)
async def get_goal_stats(
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    """
    Totals across the caller's goals.

    - **total_saved**: sum of current balances in base units
    - **total_saved_usd**: USD value when every token has a fresh price, otherwise null
    """
    return await ledger.get_user_goal_stats(user_id, db)


@router.post("/transfer", response_model=TransferResponse)
async def transfer_between_goals(
    transfer: TransferRequest,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    source, target, tx = await ledger.transfer(
        transfer.from_goal_id, transfer.to_goal_id, user_id, transfer.amount, db
    )
    return TransferResponse(from_goal=source, to_goal=target, transaction=tx)


@router.post("/interest", response_model=InterestResponse)
async def calculate_interest(
    interest: Optional[InterestRequest] = None,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    """Accrue one day of interest on each of the caller's active goals."""
    on_date = interest.accrual_date if interest else None
    goals = await ledger.calculate_interest(user_id, db, on_date=on_date)
    return InterestResponse(goals=goals)


@router.get("/{goal_id}", response_model=GoalRead)
async def get_goal(
    goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    return await ledger.get_goal(goal_id, user_id, db)


@router.put("/{goal_id}", response_model=GoalRead)
async def update_goal(
    goal_id: uuid.UUID,
    goal_in: GoalUpdate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    """
    Edit a goal's title, description, category, target amount, target date or
    visibility. Balances cannot be edited; use deposit and withdraw.
    """
    return await ledger.update_goal(goal_id, user_id, goal_in, db)


@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal(
    goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    await ledger.delete_goal(goal_id, user_id, db)


@router.patch("/{goal_id}/status", response_model=GoalRead)
async def update_goal_status(
    goal_id: uuid.UUID,
    update: GoalStatusUpdate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    return await ledger.set_goal_status(goal_id, user_id, update.status, db)


@router.post("/{goal_id}/deposit", response_model=GoalOperationResponse)
async def deposit_to_goal(
    goal_id: uuid.UUID,
    deposit: AmountRequest,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """
    Record a deposit. The balance moves immediately; the transaction stays
    pending until the matching vault event is seen.

    - **transaction_hash**: wallet transaction hash, if the deposit was already submitted
    - **lock_period**: lock duration in seconds, used to compute lock_end
    """
    goal, tx = await ledger.deposit(
        goal_id,
        user_id,
        deposit.amount,
        db,
        transaction_hash=deposit.transaction_hash,
        vault_address=deposit.vault_address,
        deposit_id=deposit.deposit_id,
        lock_tier=deposit.lock_tier,
        lock_period=deposit.lock_period,
        payment_method=deposit.payment_method,
    )
    # The vault event may have been scanned before this request arrived
    await reconciler.match_transaction(tx, db)
    return GoalOperationResponse(goal=goal, transaction=tx)


@router.post("/{goal_id}/withdraw", response_model=GoalOperationResponse)
async def withdraw_from_goal(
    goal_id: uuid.UUID,
    withdrawal: AmountRequest,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
    reconciler: Reconciler = Depends(get_reconciler),
):
    goal, tx = await ledger.withdraw(
        goal_id,
        user_id,
        withdrawal.amount,
        db,
        transaction_hash=withdrawal.transaction_hash,
        vault_address=withdrawal.vault_address,
        deposit_id=withdrawal.deposit_id,
        payment_method=withdrawal.payment_method,
    )
    await reconciler.match_transaction(tx, db)
    return GoalOperationResponse(goal=goal, transaction=tx)


@router.get("/{goal_id}/transactions", response_model=List[SavingsTransactionRead])
async def get_goal_transactions(
    goal_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    return await ledger.get_goal_transactions(goal_id, user_id, db, limit=limit)
