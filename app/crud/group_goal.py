# app/crud/group_goal.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import or_
from sqlalchemy.future import select
from app.models.group_goal import GroupGoal, GroupGoalMember, SEATED_STATUSES
from typing import List, Optional
import uuid


async def get_group_goal_by_id(
    group_goal_id: uuid.UUID,
    db: AsyncSession,
    refresh: bool = False,
) -> Optional[GroupGoal]:
    query = select(GroupGoal).where(GroupGoal.id == group_goal_id)
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_group_goals_for_user(user_id: str, db: AsyncSession) -> List[GroupGoal]:
    """Group goals the user currently sits in (active, pending or suspended)."""
    member_of = (
        select(GroupGoalMember.group_goal_id)
        .where(GroupGoalMember.user_id == user_id, GroupGoalMember.status.in_(SEATED_STATUSES))
    )
    result = await db.execute(
        select(GroupGoal)
        .where(GroupGoal.id.in_(member_of))
        .order_by(GroupGoal.created_at.desc())
    )
    return list(result.scalars().all())


async def get_public_group_goals(db: AsyncSession, limit: int = 20, offset: int = 0) -> List[GroupGoal]:
    result = await db.execute(
        select(GroupGoal)
        .where(GroupGoal.visibility == "public", GroupGoal.status == "active")
        .order_by(GroupGoal.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def add_group_goal(group_goal: GroupGoal, db: AsyncSession) -> GroupGoal:
    db.add(group_goal)
    await db.flush()
    return group_goal


async def get_owned_group_goals(owner_id: str, db: AsyncSession) -> List[GroupGoal]:
    result = await db.execute(
        select(GroupGoal)
        .where(GroupGoal.owner_id == owner_id)
        .order_by(GroupGoal.created_at.desc())
    )
    return list(result.scalars().all())


async def search_group_goals(query: str, user_id: str, db: AsyncSession, limit: int = 20) -> List[GroupGoal]:
    """Public group goals, plus any the user has been a member of, whose title or description contains the query."""
    member_of = select(GroupGoalMember.group_goal_id).where(GroupGoalMember.user_id == user_id)
    result = await db.execute(
        select(GroupGoal)
        .where(
            or_(GroupGoal.visibility == "public", GroupGoal.id.in_(member_of)),
            or_(
                GroupGoal.title.icontains(query, autoescape=True),
                GroupGoal.description.icontains(query, autoescape=True),
            ),
        )
        .order_by(GroupGoal.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
