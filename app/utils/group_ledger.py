# app/utils/group_ledger.py
"""
Group Ledger Engine: membership and contributions of shared goals.

After every mutation two invariants hold for a group goal:
  * the active members' contributions add up to ``current_amount``;
  * their contribution percentages add up to 100 (0.01 tolerance) whenever
    anything has been contributed.
Members who leave or are removed take their contribution out of the pool;
a pending refund transaction records it.
"""
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import utcnow
from app.core.errors import InvalidState, MembershipViolation, NotFound
from app.core.locks import KeyedLock
from app.crud import group_goal as group_crud
from app.crud import transaction as tx_crud
from app.models.group_goal import GroupGoal, GroupGoalMember, SEATED_STATUSES
from app.models.savings_transaction import FINAL_STATUSES, SavingsTransaction
from app.models.vault_event import VaultEvent
from app.schemas.group_goal import GroupGoalCreate, GroupGoalStats, GroupGoalUpdate, LeaderboardEntry
from app.schemas.vault_event import NormalizedEvent
from app.utils.amounts import compute_progress, format_amount, parse_amount, proportional_shares, shares_are_balanced
from app.utils.ledger import GROUP_GOAL_LOCK, unit_of_work

logger = logging.getLogger(__name__)

MANAGER_ROLES = ("owner", "admin")


def active_members(group: GroupGoal) -> List[GroupGoalMember]:
    return [m for m in group.members if m.status == "active"]


def recompute_shares(group: GroupGoal) -> None:
    """Refresh progress and every member's percentage, then check the invariants."""
    active = active_members(group)
    shares = proportional_shares({index: m.current_contribution for index, m in enumerate(active)})
    for index, member in enumerate(active):
        member.contribution_percentage = shares[index]
    for member in group.members:
        if member.status != "active":
            member.contribution_percentage = 0.0
    group.progress = compute_progress(group.current_amount, group.target_amount)
    check_invariants(group)


def check_invariants(group: GroupGoal) -> None:
    active = active_members(group)
    contributed = sum(parse_amount(m.current_contribution) for m in active)
    if contributed != parse_amount(group.current_amount):
        raise InvalidState(
            f"Group goal {group.id} is out of balance: members hold {contributed}, group holds {group.current_amount}"
        )
    if not shares_are_balanced([m.contribution_percentage for m in active], group.current_amount):
        raise InvalidState(f"Group goal {group.id} contribution shares do not add up to 100")


class GroupLedgerEngine:
    def __init__(self, locks: KeyedLock, max_members: Optional[int] = None):
        self.locks = locks
        self.max_members = max_members or settings.GROUP_MAX_MEMBERS

    async def _load(self, group_goal_id: uuid.UUID, db: AsyncSession) -> GroupGoal:
        group = await group_crud.get_group_goal_by_id(group_goal_id, db, refresh=True)
        if group is None:
            raise NotFound(f"Group goal {group_goal_id} not found")
        return group

    def _require_manager(self, group: GroupGoal, user_id: str) -> GroupGoalMember:
        actor = group.member_for(user_id)
        if actor is None or actor.status != "active" or actor.role not in MANAGER_ROLES:
            raise MembershipViolation("Only the owner or an admin can manage this group goal")
        return actor

    def _member_cap(self, group: GroupGoal) -> int:
        return group.max_members or self.max_members

    async def create_group_goal(self, owner_id: str, data: GroupGoalCreate, db: AsyncSession) -> GroupGoal:
        now = utcnow()
        group = GroupGoal(
            owner_id=owner_id,
            title=data.title,
            description=data.description,
            category=data.category,
            status="active",
            visibility=data.visibility,
            current_amount="0",
            target_amount=data.target_amount,
            progress=0.0,
            token_address=data.token_address.lower(),
            token_symbol=data.token_symbol,
            token_decimals=data.token_decimals,
            total_members=1,
            active_members=1,
            max_members=data.max_members,
            require_approval=data.require_approval,
            interest_rate=data.interest_rate,
            total_interest_earned="0",
            total_contributions=0,
            target_date=data.target_date,
            members=[
                GroupGoalMember(
                    user_id=owner_id,
                    position=0,
                    role="owner",
                    status="active",
                    current_contribution="0",
                    contribution_percentage=0.0,
                    joined_at=now,
                    last_active_at=now,
                )
            ],
        )
        async with unit_of_work(db):
            await group_crud.add_group_goal(group, db)
        logger.info(f"👥 Created group goal {group.id} owned by {owner_id}")
        return group

    async def get_group_goal(self, group_goal_id: uuid.UUID, db: AsyncSession) -> GroupGoal:
        group = await group_crud.get_group_goal_by_id(group_goal_id, db)
        if group is None:
            raise NotFound(f"Group goal {group_goal_id} not found")
        return group

    async def list_group_goals(self, user_id: str, db: AsyncSession) -> List[GroupGoal]:
        return await group_crud.get_group_goals_for_user(user_id, db)

    async def list_public_group_goals(self, db: AsyncSession, limit: int = 20, offset: int = 0) -> List[GroupGoal]:
        return await group_crud.get_public_group_goals(db, limit=limit, offset=offset)

    async def list_owned_group_goals(self, owner_id: str, db: AsyncSession) -> List[GroupGoal]:
        return await group_crud.get_owned_group_goals(owner_id, db)

    async def search_group_goals(self, query: str, user_id: str, db: AsyncSession, limit: int = 20) -> List[GroupGoal]:
        return await group_crud.search_group_goals(query.strip(), user_id, db, limit=limit)

    async def update_group_goal(
        self, group_goal_id: uuid.UUID, user_id: str, data: GroupGoalUpdate, db: AsyncSession
    ) -> GroupGoal:
        """Owner or admin edits the group's settings and target. The pool is untouched."""
        changes = data.model_dump(exclude_unset=True)
        changes = {
            k: v for k, v in changes.items()
            if v is not None or k in ("description", "max_members", "target_date")
        }
        async with self.locks.acquire(GROUP_GOAL_LOCK, group_goal_id):
            group = await self._load(group_goal_id, db)
            self._require_manager(group, user_id)
            if group.status != "active":
                raise InvalidState(f"Cannot edit a {group.status} group goal")
            if "target_amount" in changes:
                changes["target_amount"] = format_amount(parse_amount(changes["target_amount"], allow_zero=False))
            if changes.get("max_members") is not None:
                seated = sum(1 for m in group.members if m.status in SEATED_STATUSES)
                if changes["max_members"] < seated:
                    raise MembershipViolation(f"Group goal already has {seated} members")
            async with unit_of_work(db):
                for field, value in changes.items():
                    setattr(group, field, value)
                recompute_shares(group)
        logger.info(f"✏️ {user_id} updated group goal {group_goal_id}: {', '.join(changes) or 'no changes'}")
        return group

    # Membership

    async def join(
        self,
        group_goal_id: uuid.UUID,
        user_id: str,
        db: AsyncSession,
        target_contribution: Optional[str] = None,
    ) -> GroupGoal:
        async with self.locks.acquire(GROUP_GOAL_LOCK, group_goal_id):
            group = await self._load(group_goal_id, db)
            if group.status != "active":
                raise InvalidState(f"Cannot join a {group.status} group goal")
            if group.member_for(user_id) is not None:
                raise MembershipViolation("Already a member of this group goal")
            seated = [m for m in group.members if m.status in SEATED_STATUSES]
            if len(seated) >= self._member_cap(group):
                raise MembershipViolation("Group goal has reached its member limit")

            now = utcnow()
            status = "pending" if group.require_approval else "active"
            member = GroupGoalMember(
                user_id=user_id,
                position=max((m.position for m in group.members), default=-1) + 1,
                role="member",
                status=status,
                target_contribution=target_contribution,
                current_contribution="0",
                contribution_percentage=0.0,
                joined_at=now,
                last_active_at=now,
            )
            async with unit_of_work(db):
                group.members.append(member)
                group.total_members += 1
                if status == "active":
                    group.active_members += 1
                recompute_shares(group)
        logger.info(f"{user_id} joined group goal {group_goal_id} as {status}")
        return group

    async def approve_member(
        self, group_goal_id: uuid.UUID, approver_id: str, user_id: str, db: AsyncSession
    ) -> GroupGoal:
        async with self.locks.acquire(GROUP_GOAL_LOCK, group_goal_id):
            group = await self._load(group_goal_id, db)
            self._require_manager(group, approver_id)
            member = group.member_for(user_id)
            if member is None:
                raise NotFound(f"{user_id} is not a member of this group goal")
            if member.status != "pending":
                raise InvalidState(f"Member is {member.status}, not pending")
            async with unit_of_work(db):
                member.status = "active"
                member.last_active_at = utcnow()
                group.active_members += 1
                recompute_shares(group)
        logger.info(f"{approver_id} approved {user_id} in group goal {group_goal_id}")
        return group

    async def _release_member(
        self, group: GroupGoal, member: GroupGoalMember, status: str, db: AsyncSession
    ) -> Optional[SavingsTransaction]:
        was_active = member.status == "active"
        contribution = parse_amount(member.current_contribution)
        now = utcnow()

        member.status = status
        member.left_at = now
        member.contribution_percentage = 0.0
        if was_active:
            group.active_members -= 1

        refund = None
        if was_active and contribution > 0:
            group.current_amount = format_amount(parse_amount(group.current_amount) - contribution)
            refund = SavingsTransaction(
                transaction_id=tx_crud.generate_transaction_id(),
                user_id=member.user_id,
                group_goal_id=group.id,
                type="refund",
                status="pending",
                payment_method="blockchain",
                amount=format_amount(contribution),
                token_address=group.token_address,
                token_symbol=group.token_symbol,
                token_decimals=group.token_decimals,
                description=f"Contribution returned from {group.title}",
                initiated_at=now,
            )
            await tx_crud.add_transaction(refund, db)
        recompute_shares(group)
        return refund

    async def leave(
        self, group_goal_id: uuid.UUID, user_id: str, db: AsyncSession
    ) -> Tuple[GroupGoal, Optional[SavingsTransaction]]:
        async with self.locks.acquire(GROUP_GOAL_LOCK, group_goal_id):
            group = await self._load(group_goal_id, db)
            member = group.member_for(user_id)
            if member is None:
                raise NotFound(f"{user_id} is not a member of this group goal")
            if member.role == "owner":
                raise MembershipViolation("The owner cannot leave; transfer ownership first")
            async with unit_of_work(db):
                refund = await self._release_member(group, member, "left", db)
        logger.info(f"{user_id} left group goal {group_goal_id}")
        return group, refund

    async def remove_member(
        self, group_goal_id: uuid.UUID, actor_id: str, user_id: str, db: AsyncSession
    ) -> Tuple[GroupGoal, Optional[SavingsTransaction]]:
        async with self.locks.acquire(GROUP_GOAL_LOCK, group_goal_id):
            group = await self._load(group_goal_id, db)
            actor = self._require_manager(group, actor_id)
            member = group.member_for(user_id)
            if member is None:
                raise NotFound(f"{user_id} is not a member of this group goal")
            if member.role == "owner":
                raise MembershipViolation("The owner cannot be removed")
            if member.role == "admin" and actor.role != "owner":
                raise MembershipViolation("Only the owner can remove an admin")
            async with unit_of_work(db):
                refund = await self._release_member(group, member, "removed", db)
        logger.info(f"{actor_id} removed {user_id} from group goal {group_goal_id}")
        return group, refund

    async def transfer_ownership(
        self, group_goal_id: uuid.UUID, owner_id: str, new_owner_id: str, db: AsyncSession
    ) -> GroupGoal:
        async with self.locks.acquire(GROUP_GOAL_LOCK, group_goal_id):
            group = await self._load(group_goal_id, db)
            if group.owner_id != owner_id:
                raise MembershipViolation("Only the owner can transfer ownership")
            new_owner = group.member_for(new_owner_id)
            if new_owner is None or new_owner.status != "active":
                raise MembershipViolation("New owner must be an active member")
            if new_owner_id == owner_id:
                return group
            current = group.member_for(owner_id)
            async with unit_of_work(db):
                current.role = "admin"
                new_owner.role = "owner"
                group.owner_id = new_owner_id
        logger.info(f"Group goal {group_goal_id} ownership moved from {owner_id} to {new_owner_id}")
        return group

    # Contributions

    async def contribute(
        self,
        group_goal_id: uuid.UUID,
        user_id: str,
        amount: str,
        db: AsyncSession,
        transaction_hash: Optional[str] = None,
        vault_address: Optional[str] = None,
        payment_method: str = "blockchain",
    ) -> Tuple[GroupGoal, SavingsTransaction]:
        value = parse_amount(amount, allow_zero=False)
        async with self.locks.acquire(GROUP_GOAL_LOCK, group_goal_id):
            group = await self._load(group_goal_id, db)
            if group.status != "active":
                raise InvalidState(f"Cannot contribute to a {group.status} group goal")
            member = group.member_for(user_id)
            if member is None or member.status != "active":
                raise MembershipViolation("Only active members can contribute")
            if member.role == "viewer":
                raise MembershipViolation("Viewers cannot contribute")

            now = utcnow()
            tx = SavingsTransaction(
                transaction_id=tx_crud.generate_transaction_id(),
                transaction_hash=transaction_hash.lower() if transaction_hash else None,
                user_id=user_id,
                group_goal_id=group.id,
                type="contribution",
                status="pending",
                payment_method=payment_method,
                amount=format_amount(value),
                token_address=group.token_address,
                token_symbol=group.token_symbol,
                token_decimals=group.token_decimals,
                vault_address=vault_address.lower() if vault_address else None,
                description=f"Contribution to {group.title}",
                initiated_at=now,
            )
            async with unit_of_work(db):
                await tx_crud.add_transaction(tx, db)
                member.current_contribution = format_amount(parse_amount(member.current_contribution) + value)
                member.last_active_at = now
                group.current_amount = format_amount(parse_amount(group.current_amount) + value)
                group.total_contributions += 1
                recompute_shares(group)
        logger.info(f"💰 Contribution {tx.transaction_id}: +{value} by {user_id} to group goal {group_goal_id}")
        return group, tx

    async def apply_contribution_confirmation(
        self,
        tx: SavingsTransaction,
        event: NormalizedEvent,
        row: VaultEvent,
        db: AsyncSession,
    ) -> None:
        """Reconciler hook. The caller holds the group goal lock and commits."""
        if tx.status in FINAL_STATUSES:
            raise InvalidState(f"Transaction {tx.transaction_id} is already {tx.status}")
        tx.status = "confirmed"
        tx.confirmed_at = utcnow()
        tx.deposit_id = event.correlation_id
        tx.vault_event_id = row.id
        tx.shares = event.extra.get("shares")
        tx.lock_tier = event.extra.get("lock_tier")

        recorded = parse_amount(tx.amount)
        on_chain = parse_amount(event.amount)
        if on_chain == recorded:
            return
        tx.amount = format_amount(on_chain)
        group = await group_crud.get_group_goal_by_id(tx.group_goal_id, db, refresh=True) if tx.group_goal_id else None
        member = group.member_for(tx.user_id) if group is not None else None
        if member is None or member.status != "active":
            logger.warning(f"Contribution {tx.transaction_id} confirmed after the member left; pool unchanged")
            return

        delta = on_chain - recorded
        contribution = parse_amount(member.current_contribution) + delta
        if contribution < 0:
            logger.warning(f"Member {tx.user_id} would go negative after confirming {tx.transaction_id}; clamping to 0")
            delta -= contribution
            contribution = 0
        member.current_contribution = format_amount(contribution)
        group.current_amount = format_amount(parse_amount(group.current_amount) + delta)
        recompute_shares(group)
        logger.info(f"Contribution {tx.transaction_id} settled at {on_chain} (requested {recorded})")

    async def apply_refund_confirmation(
        self,
        tx: SavingsTransaction,
        event: NormalizedEvent,
        row: VaultEvent,
        db: AsyncSession,
    ) -> None:
        """
        Reconciler hook for the vault payout of a leaving member's refund.

        The contribution already left the pool when the member left, so only
        the transaction is settled here.
        """
        if tx.status in FINAL_STATUSES:
            raise InvalidState(f"Transaction {tx.transaction_id} is already {tx.status}")
        tx.status = "confirmed"
        tx.confirmed_at = utcnow()
        tx.deposit_id = event.correlation_id
        tx.vault_event_id = row.id
        tx.yield_earned = format_amount(parse_amount(event.extra.get("yield_amount", "0")))
        tx.shares_burned = event.extra.get("shares_burned")

        on_chain = parse_amount(event.amount)
        if on_chain != parse_amount(tx.amount):
            logger.warning(f"Refund {tx.transaction_id} paid out {on_chain}, recorded {tx.amount}")
            tx.amount = format_amount(on_chain)

    # Read models

    async def get_user_group_goal_stats(self, user_id: str, db: AsyncSession) -> GroupGoalStats:
        groups = await group_crud.get_group_goals_for_user(user_id, db)
        total = len(groups)
        completed = sum(1 for g in groups if g.status == "completed")
        total_members = sum(g.active_members for g in groups)
        # Only the caller's own contributions count towards their amount saved
        saved = 0
        for group in groups:
            member = group.member_for(user_id)
            if member is not None:
                saved += parse_amount(member.current_contribution)
        return GroupGoalStats(
            total_group_goals=total,
            active_group_goals=sum(1 for g in groups if g.status == "active"),
            completed_group_goals=completed,
            total_members=total_members,
            average_group_size=round(total_members / total, 2) if total else 0.0,
            total_amount_saved=format_amount(saved),
            completion_rate=round(completed / total * 100, 2) if total else 0.0,
        )

    async def get_leaderboard(self, group_goal_id: uuid.UUID, db: AsyncSession) -> List[LeaderboardEntry]:
        group = await self.get_group_goal(group_goal_id, db)
        ranked = sorted(
            active_members(group),
            key=lambda m: (-parse_amount(m.current_contribution), m.position),
        )
        return [
            LeaderboardEntry(
                user_id=member.user_id,
                total_contributions=member.current_contribution,
                contribution_percentage=member.contribution_percentage,
                rank=rank,
            )
            for rank, member in enumerate(ranked, start=1)
        ]

    async def get_group_goal_transactions(
        self, group_goal_id: uuid.UUID, user_id: str, db: AsyncSession, limit: int = 50
    ) -> List[SavingsTransaction]:
        """Contributions and refunds of the pool, visible to anyone who has been a member."""
        group = await self.get_group_goal(group_goal_id, db)
        if group.member_for(user_id, seated_only=False) is None:
            raise MembershipViolation("Only members can view the group's transactions")
        return await tx_crud.get_group_goal_transactions(group.id, db, limit=limit)
