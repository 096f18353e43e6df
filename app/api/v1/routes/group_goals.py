# app/api/v1/routes/group_goals.py
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_group_ledger, get_reconciler
from app.core.database import get_async_session
from app.schemas.group_goal import (
    ContributionRequest,
    GroupGoalCreate,
    GroupGoalOperationResponse,
    GroupGoalRead,
    GroupGoalStats,
    GroupGoalUpdate,
    JoinRequest,
    LeaderboardEntry,
    OwnershipTransferRequest,
)
from app.schemas.transaction import SavingsTransactionRead
from app.utils.group_ledger import GroupLedgerEngine
from app.utils.reconciler import Reconciler

router = APIRouter(prefix="/group-goals", tags=["group-goals"])


@router.post("", response_model=GroupGoalRead, status_code=status.HTTP_201_CREATED)
async def create_group_goal(
    data: GroupGoalCreate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    return await group_ledger.create_group_goal(user_id, data, db)


@router.get("", response_model=List[GroupGoalRead])
async def list_group_goals(
    public: bool = Query(False, description="List open public groups instead of your own"),
    owned: bool = Query(False, description="Only groups you own"),
    q: Optional[str] = Query(None, min_length=1, description="Search titles and descriptions"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    """
    Your group goals by default.

    - **q**: search public groups and groups you belong to
    - **owned**: only groups you own
    - **public**: browse open public groups
    """
    if q:
        return await group_ledger.search_group_goals(q, user_id, db, limit=limit)
    if owned:
        return await group_ledger.list_owned_group_goals(user_id, db)
    if public:
        return await group_ledger.list_public_group_goals(db, limit=limit, offset=offset)
    return await group_ledger.list_group_goals(user_id, db)


@router.get("/stats", response_model=GroupGoalStats)
async def get_group_goal_stats(
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    return await group_ledger.get_user_group_goal_stats(user_id, db)


@router.get("/{group_goal_id}", response_model=GroupGoalRead)
async def get_group_goal(
    group_goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    return await group_ledger.get_group_goal(group_goal_id, db)


@router.put("/{group_goal_id}", response_model=GroupGoalRead)
async def update_group_goal(
    group_goal_id: uuid.UUID,
    data: GroupGoalUpdate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    """Owner or admin only."""
    return await group_ledger.update_group_goal(group_goal_id, user_id, data, db)


@router.get("/{group_goal_id}/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    group_goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    return await group_ledger.get_leaderboard(group_goal_id, db)


@router.get("/{group_goal_id}/transactions", response_model=List[SavingsTransactionRead])
async def get_group_goal_transactions(
    group_goal_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    return await group_ledger.get_group_goal_transactions(group_goal_id, user_id, db, limit=limit)


@router.post("/{group_goal_id}/join", response_model=GroupGoalRead)
async def join_group_goal(
    group_goal_id: uuid.UUID,
    join: Optional[JoinRequest] = None,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    """Join a group goal. Groups that require approval add you as pending."""
    target = join.target_contribution if join else None
    return await group_ledger.join(group_goal_id, user_id, db, target_contribution=target)


@router.post("/{group_goal_id}/leave", response_model=GroupGoalOperationResponse)
async def leave_group_goal(
    group_goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    """
    Leave a group goal. Your contribution leaves the pool and is returned
    through the pending refund transaction in the response.
    """
    group, refund = await group_ledger.leave(group_goal_id, user_id, db)
    return GroupGoalOperationResponse(group_goal=group, transaction=refund)


@router.post("/{group_goal_id}/contribute", response_model=GroupGoalOperationResponse)
async def contribute_to_group_goal(
    group_goal_id: uuid.UUID,
    contribution: ContributionRequest,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
    reconciler: Reconciler = Depends(get_reconciler),
):
    group, tx = await group_ledger.contribute(
        group_goal_id,
        user_id,
        contribution.amount,
        db,
        transaction_hash=contribution.transaction_hash,
        vault_address=contribution.vault_address,
        payment_method=contribution.payment_method,
    )
    await reconciler.match_transaction(tx, db)
    return GroupGoalOperationResponse(group_goal=group, transaction=tx)


@router.post("/{group_goal_id}/members/{member_id}/approve", response_model=GroupGoalRead)
async def approve_member(
    group_goal_id: uuid.UUID,
    member_id: str,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    return await group_ledger.approve_member(group_goal_id, user_id, member_id.lower(), db)


@router.post("/{group_goal_id}/members/{member_id}/remove", response_model=GroupGoalOperationResponse)
async def remove_member(
    group_goal_id: uuid.UUID,
    member_id: str,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    group, refund = await group_ledger.remove_member(group_goal_id, user_id, member_id.lower(), db)
    return GroupGoalOperationResponse(group_goal=group, transaction=refund)


@router.post("/{group_goal_id}/transfer-ownership", response_model=GroupGoalRead)
async def transfer_ownership(
    group_goal_id: uuid.UUID,
    transfer: OwnershipTransferRequest,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    group_ledger: GroupLedgerEngine = Depends(get_group_ledger),
):
    return await group_ledger.transfer_ownership(group_goal_id, user_id, transfer.new_owner_id.lower(), db)
