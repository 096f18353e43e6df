# app/models/group_goal.py
import uuid
from sqlalchemy import Column, String, Float, DateTime, Boolean, Integer, Uuid, ForeignKey
from sqlalchemy.orm import relationship
from app.core.database import Base, utcnow

MEMBER_ROLES = ("owner", "admin", "member", "viewer")
MEMBER_STATUSES = ("active", "pending", "suspended", "left", "removed")
# Statuses that occupy a seat in the group
SEATED_STATUSES = ("active", "pending", "suspended")
GROUP_VISIBILITIES = ("public", "private", "friends", "unlisted")


class GroupGoal(Base):
    __tablename__ = "group_goals"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String, nullable=True)
    category = Column(String(64), nullable=False, default="group")
    status = Column(String(16), nullable=False, default="active")
    visibility = Column(String(16), nullable=False, default="private")

    current_amount = Column(String(78), nullable=False, default="0")
    target_amount = Column(String(78), nullable=False, default="0")
    progress = Column(Float, nullable=False, default=0.0)

    token_address = Column(String(64), nullable=False)
    token_symbol = Column(String(16), nullable=False)
    token_decimals = Column(Integer, nullable=False, default=18)

    total_members = Column(Integer, nullable=False, default=1)
    active_members = Column(Integer, nullable=False, default=1)
    max_members = Column(Integer, nullable=True)
    require_approval = Column(Boolean, nullable=False, default=False)

    interest_rate = Column(Float, nullable=False, default=0.0)
    total_interest_earned = Column(String(78), nullable=False, default="0")
    total_contributions = Column(Integer, nullable=False, default=0)

    target_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False)

    members = relationship(
        "GroupGoalMember",
        back_populates="group_goal",
        cascade="all, delete-orphan",
        order_by="GroupGoalMember.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def member_for(self, user_id: str, seated_only: bool = True):
        """The user's current membership record, if any."""
        for member in self.members:
            if member.user_id != user_id:
                continue
            if seated_only and member.status not in SEATED_STATUSES:
                continue
            return member
        return None

    def __repr__(self):
        return f"<GroupGoal {self.title!r} current={self.current_amount} members={self.active_members}>"


class GroupGoalMember(Base):
    __tablename__ = "group_goal_members"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    group_goal_id = Column(Uuid(as_uuid=True), ForeignKey("group_goals.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    # Join order within the group
    position = Column(Integer, nullable=False, default=0)
    role = Column(String(16), nullable=False, default="member")
    status = Column(String(16), nullable=False, default="active")

    target_contribution = Column(String(78), nullable=True)
    current_contribution = Column(String(78), nullable=False, default="0")
    contribution_percentage = Column(Float, nullable=False, default=0.0)

    joined_at = Column(DateTime, default=utcnow)
    last_active_at = Column(DateTime, default=utcnow)
    left_at = Column(DateTime, nullable=True)

    group_goal = relationship("GroupGoal", back_populates="members")

    def __repr__(self):
        return f"<GroupGoalMember {self.user_id} role={self.role} status={self.status}>"
