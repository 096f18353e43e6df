# app/crud/goal.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from app.models.goal import Goal
from typing import List, Optional
import uuid


async def get_goals_for_user(user_id: str, db: AsyncSession) -> List[Goal]:
    result = await db.execute(
        select(Goal).where(Goal.user_id == user_id).order_by(Goal.created_at.desc())
    )
    return list(result.scalars().all())


async def get_goal_by_id(
    goal_id: uuid.UUID,
    db: AsyncSession,
    user_id: Optional[str] = None,
    refresh: bool = False,
) -> Optional[Goal]:
    """
    Fetch one goal, optionally scoped to its owner. ``refresh`` overwrites any
    copy already in the session's identity map; use it after taking the goal's lock.
    """
    query = select(Goal).where(Goal.id == goal_id)
    if user_id is not None:
        query = query.where(Goal.user_id == user_id)
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_quick_save_goal(user_id: str, db: AsyncSession) -> Optional[Goal]:
    result = await db.execute(
        select(Goal).where(Goal.user_id == user_id, Goal.is_quick_save.is_(True))
    )
    return result.scalars().first()


async def add_goal(goal: Goal, db: AsyncSession) -> Goal:
    db.add(goal)
    await db.flush()
    return goal


async def delete_goal(goal: Goal, db: AsyncSession) -> None:
    await db.delete(goal)
    await db.flush()
