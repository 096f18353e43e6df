# app/schemas/group_goal.py
from typing import Optional, Literal, List
from pydantic import BaseModel, Field
from datetime import datetime
import uuid

from app.schemas.transaction import SavingsTransactionRead, AmountStr, NonNegativeAmountStr


class GroupGoalCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: str = "group"
    visibility: Literal["public", "private", "friends", "unlisted"] = "private"
    target_amount: NonNegativeAmountStr = "0"
    token_address: str
    token_symbol: str
    token_decimals: int = 18
    max_members: Optional[int] = Field(None, ge=1)
    require_approval: bool = False
    interest_rate: float = Field(0.0, ge=0)
    target_date: Optional[datetime] = None


class GroupGoalUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = None
    visibility: Optional[Literal["public", "private", "friends", "unlisted"]] = None
    target_amount: Optional[AmountStr] = None
    max_members: Optional[int] = Field(None, ge=1)
    require_approval: Optional[bool] = None
    target_date: Optional[datetime] = None


class GroupGoalMemberRead(BaseModel):
    user_id: str
    role: str
    status: str
    target_contribution: Optional[str] = None
    current_contribution: str
    contribution_percentage: float
    joined_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None
    left_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GroupGoalRead(BaseModel):
    id: uuid.UUID
    owner_id: str
    title: str
    description: Optional[str] = None
    category: str
    status: str
    visibility: str
    current_amount: str
    target_amount: str
    progress: float
    token_address: str
    token_symbol: str
    token_decimals: int
    total_members: int
    active_members: int
    max_members: Optional[int] = None
    require_approval: bool
    interest_rate: float
    total_interest_earned: str
    total_contributions: int
    target_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    members: List[GroupGoalMemberRead] = []

    class Config:
        from_attributes = True


class JoinRequest(BaseModel):
    target_contribution: Optional[NonNegativeAmountStr] = None


class ContributionRequest(BaseModel):
    amount: AmountStr
    transaction_hash: Optional[str] = None
    vault_address: Optional[str] = None
    payment_method: str = "blockchain"


class OwnershipTransferRequest(BaseModel):
    new_owner_id: str


class GroupGoalOperationResponse(BaseModel):
    group_goal: GroupGoalRead
    transaction: Optional[SavingsTransactionRead] = None


class GroupGoalStats(BaseModel):
    total_group_goals: int
    active_group_goals: int
    completed_group_goals: int
    total_members: int
    average_group_size: float
    total_amount_saved: str
    completion_rate: float


class LeaderboardEntry(BaseModel):
    user_id: str
    total_contributions: str
    contribution_percentage: float
    rank: int
