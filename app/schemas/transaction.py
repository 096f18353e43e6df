# app/schemas/transaction.py
from typing import Annotated, Optional
from pydantic import AfterValidator, BaseModel, Field, field_validator
from datetime import datetime, date
import uuid


def validate_amount(allow_zero: bool = False):
    """Build a validator for integer-string amounts in token base units."""
    def _validate(value: str) -> str:
        value = str(value).strip()
        if not value.isdigit():
            raise ValueError("amount must be a non-negative integer string")
        if not allow_zero and int(value) == 0:
            raise ValueError("amount must be greater than zero")
        return str(int(value))
    return _validate


# Integer amounts in token base units
AmountStr = Annotated[str, AfterValidator(validate_amount())]
NonNegativeAmountStr = Annotated[str, AfterValidator(validate_amount(allow_zero=True))]


class SavingsTransactionRead(BaseModel):
    id: uuid.UUID
    transaction_id: str
    transaction_hash: Optional[str] = None
    user_id: str
    goal_id: Optional[uuid.UUID] = None
    group_goal_id: Optional[uuid.UUID] = None
    from_goal_id: Optional[uuid.UUID] = None
    to_goal_id: Optional[uuid.UUID] = None
    type: str
    status: str
    payment_method: str
    amount: str
    token_address: str
    token_symbol: str
    token_decimals: int
    vault_address: Optional[str] = None
    deposit_id: Optional[str] = None
    shares: Optional[str] = None
    lock_tier: Optional[int] = None
    lock_period: Optional[int] = None
    lock_end: Optional[datetime] = None
    yield_earned: Optional[str] = None
    shares_burned: Optional[str] = None
    accrual_date: Optional[date] = None
    description: Optional[str] = None
    initiated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChainReferenceUpdate(BaseModel):
    transaction_hash: str = Field(..., description="E.g. 0xabc... returned by the wallet")
    vault_address: str
    deposit_id: Optional[str] = None

    @field_validator("transaction_hash", "vault_address")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.lower()
