# app/schemas/goal.py
from typing import Optional, Literal, List
from pydantic import BaseModel, Field
from datetime import datetime, date
import uuid

from app.schemas.transaction import SavingsTransactionRead, AmountStr, NonNegativeAmountStr

GoalStatus = Literal["active", "completed", "paused", "cancelled"]


class GoalCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: str = "personal"
    target_amount: NonNegativeAmountStr = "0"
    token_address: str
    token_symbol: str
    token_decimals: int = 18
    interest_rate: Optional[float] = Field(None, ge=0, description="Annual rate in percent")
    is_public: bool = False
    target_date: Optional[datetime] = None


class GoalUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = None
    target_amount: Optional[AmountStr] = None
    target_date: Optional[datetime] = None
    is_public: Optional[bool] = None


class QuickSaveCreate(BaseModel):
    token_address: str
    token_symbol: str
    token_decimals: int = 18


class GoalRead(BaseModel):
    id: uuid.UUID
    user_id: str
    title: str
    description: Optional[str] = None
    category: str
    status: str
    current_amount: str
    target_amount: str
    progress: float
    token_address: str
    token_symbol: str
    token_decimals: int
    interest_rate: float
    total_interest_earned: str
    is_quick_save: bool
    is_public: bool
    target_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GoalStatusUpdate(BaseModel):
    status: GoalStatus


class AmountRequest(BaseModel):
    amount: AmountStr
    transaction_hash: Optional[str] = Field(None, description="Hash returned by the wallet on submission")
    vault_address: Optional[str] = None
    deposit_id: Optional[str] = None
    lock_tier: Optional[int] = None
    lock_period: Optional[int] = Field(None, description="Lock period in seconds")
    payment_method: str = "blockchain"


class TransferRequest(BaseModel):
    from_goal_id: uuid.UUID
    to_goal_id: uuid.UUID
    amount: AmountStr


class InterestRequest(BaseModel):
    accrual_date: Optional[date] = None


class GoalOperationResponse(BaseModel):
    goal: GoalRead
    transaction: SavingsTransactionRead


class TransferResponse(BaseModel):
    from_goal: GoalRead
    to_goal: GoalRead
    transaction: SavingsTransactionRead


class GoalStats(BaseModel):
    total_goals: int
    active_goals: int
    completed_goals: int
    total_saved: str
    total_interest_earned: str
    average_progress: float
    total_saved_usd: Optional[float] = None


class InterestResponse(BaseModel):
    goals: List[GoalRead]
