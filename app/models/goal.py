# app/models/goal.py
import uuid
from sqlalchemy import Column, String, Float, DateTime, Boolean, Integer, Uuid
from app.core.database import Base, utcnow

GOAL_STATUSES = ("active", "completed", "paused", "cancelled")


class Goal(Base):
    __tablename__ = "goals"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Wallet address of the owner, lower-cased
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String, nullable=True)
    category = Column(String(64), nullable=False, default="personal")
    status = Column(String(16), nullable=False, default="active")

    # Amounts are integer strings in token base units
    current_amount = Column(String(78), nullable=False, default="0")
    target_amount = Column(String(78), nullable=False, default="0")
    progress = Column(Float, nullable=False, default=0.0)

    token_address = Column(String(64), nullable=False)
    token_symbol = Column(String(16), nullable=False)
    token_decimals = Column(Integer, nullable=False, default=18)

    # Annual rate in percent, e.g. 5.0
    interest_rate = Column(Float, nullable=False, default=0.0)
    total_interest_earned = Column(String(78), nullable=False, default="0")

    is_quick_save = Column(Boolean, nullable=False, default=False)
    is_public = Column(Boolean, nullable=False, default=False)

    target_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Goal {self.title!r} current={self.current_amount} target={self.target_amount} user_id={self.user_id}>"
