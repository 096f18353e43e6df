# app/models/savings_transaction.py
import uuid
from sqlalchemy import Column, String, DateTime, Date, Integer, BigInteger, Uuid, ForeignKey, UniqueConstraint
from app.core.database import Base, utcnow

TRANSACTION_TYPES = (
    "deposit", "withdrawal", "interest", "transfer",
    "contribution", "penalty", "bonus", "refund",
)
TRANSACTION_STATUSES = ("pending", "confirmed", "completed", "failed", "cancelled", "reversed")
# No field may change once a transaction reaches one of these
FINAL_STATUSES = ("completed", "failed", "cancelled", "reversed")


class SavingsTransaction(Base):
    __tablename__ = "savings_transactions"
    __table_args__ = (
        # One interest accrual per goal per day
        UniqueConstraint("goal_id", "accrual_date", name="uq_interest_accrual_per_day"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(String(64), nullable=False, unique=True, index=True)
    transaction_hash = Column(String(80), nullable=True, index=True)

    user_id = Column(String(64), nullable=False, index=True)
    goal_id = Column(Uuid(as_uuid=True), ForeignKey("goals.id", ondelete="SET NULL"), nullable=True, index=True)
    group_goal_id = Column(Uuid(as_uuid=True), ForeignKey("group_goals.id", ondelete="SET NULL"), nullable=True, index=True)
    from_goal_id = Column(Uuid(as_uuid=True), ForeignKey("goals.id", ondelete="SET NULL"), nullable=True)
    to_goal_id = Column(Uuid(as_uuid=True), ForeignKey("goals.id", ondelete="SET NULL"), nullable=True)

    type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    payment_method = Column(String(32), nullable=False, default="blockchain")

    amount = Column(String(78), nullable=False)
    token_address = Column(String(64), nullable=False)
    token_symbol = Column(String(16), nullable=False)
    token_decimals = Column(Integer, nullable=False, default=18)

    # Chain-derived metadata, filled in on reconciliation
    vault_address = Column(String(64), nullable=True, index=True)
    deposit_id = Column(String(78), nullable=True)
    shares = Column(String(78), nullable=True)
    lock_tier = Column(Integer, nullable=True)
    lock_period = Column(BigInteger, nullable=True)
    lock_end = Column(DateTime, nullable=True)
    yield_earned = Column(String(78), nullable=True)
    shares_burned = Column(String(78), nullable=True)

    accrual_date = Column(Date, nullable=True)
    vault_event_id = Column(Uuid(as_uuid=True), ForeignKey("vault_events.id", ondelete="SET NULL"), nullable=True)

    description = Column(String(255), nullable=True)
    error_message = Column(String, nullable=True)

    initiated_at = Column(DateTime, default=utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<SavingsTransaction {self.transaction_id} type={self.type} status={self.status} amount={self.amount}>"
