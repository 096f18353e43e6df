# app/utils/ledger.py
"""
Ledger Engine: the only writer of Goal balances.

Balances move at request time. Every mutation of a goal runs while holding that
goal's KeyedLock entry and re-reads the row before changing it, so concurrent
requests in this process see each other's writes. The ``version`` column on
Goal catches writers in other processes.

The reconciler later confirms the pending transaction through
``apply_deposit_confirmation`` / ``apply_withdrawal_confirmation``. Those two
expect the caller to hold the goal lock and to commit.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import AsyncIterator, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import utcnow
from app.core.errors import (
    InsufficientBalance,
    InvalidState,
    NotFound,
    StalePriceError,
    TokenMismatch,
)
from app.core.locks import KeyedLock
from app.crud import goal as goal_crud
from app.crud import transaction as tx_crud
from app.models.goal import Goal
from app.models.savings_transaction import FINAL_STATUSES, SavingsTransaction
from app.models.vault_event import VaultEvent
from app.schemas.goal import GoalCreate, GoalStats, GoalUpdate
from app.schemas.vault_event import NormalizedEvent
from app.utils.amounts import compute_progress, daily_interest, format_amount, parse_amount
from app.utils.oracle import PriceOracle, convert_to_usd, get_fresh_rate

logger = logging.getLogger(__name__)

GOAL_LOCK = "goal"
GROUP_GOAL_LOCK = "group_goal"

STATUS_TRANSITIONS = {
    "active": {"paused", "completed", "cancelled"},
    "paused": {"active", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def entity_lock_key(tx: SavingsTransaction) -> Tuple[str, str]:
    """Lock key of the goal or group goal a transaction belongs to."""
    if tx.group_goal_id is not None:
        return GROUP_GOAL_LOCK, str(tx.group_goal_id)
    return GOAL_LOCK, str(tx.goal_id or tx.from_goal_id)


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[None]:
    """Commit on success, roll back and re-raise on any failure."""
    try:
        yield
        await db.commit()
    except Exception:
        await db.rollback()
        raise


def set_balance(goal: Goal, amount: int) -> None:
    goal.current_amount = format_amount(amount)
    goal.progress = compute_progress(goal.current_amount, goal.target_amount)


class LedgerEngine:
    def __init__(self, locks: KeyedLock, oracle: Optional[PriceOracle] = None):
        self.locks = locks
        self.oracle = oracle

    async def _load_goal(self, goal_id: uuid.UUID, user_id: str, db: AsyncSession) -> Goal:
        goal = await goal_crud.get_goal_by_id(goal_id, db, user_id=user_id, refresh=True)
        if goal is None:
            raise NotFound(f"Goal {goal_id} not found")
        return goal

    # Goal lifecycle

    async def create_goal(self, user_id: str, goal_in: GoalCreate, db: AsyncSession) -> Goal:
        interest_rate = goal_in.interest_rate
        if interest_rate is None:
            interest_rate = settings.DEFAULT_GOAL_INTEREST_RATE
        goal = Goal(
            user_id=user_id,
            title=goal_in.title,
            description=goal_in.description,
            category=goal_in.category,
            status="active",
            current_amount="0",
            target_amount=goal_in.target_amount,
            progress=0.0,
            token_address=goal_in.token_address.lower(),
            token_symbol=goal_in.token_symbol,
            token_decimals=goal_in.token_decimals,
            interest_rate=interest_rate,
            total_interest_earned="0",
            is_quick_save=False,
            is_public=goal_in.is_public,
            target_date=goal_in.target_date,
        )
        async with unit_of_work(db):
            await goal_crud.add_goal(goal, db)
        logger.info(f"🎯 Created goal {goal.id} for {user_id}")
        return goal

    async def create_quick_save_goal(
        self,
        user_id: str,
        token_address: str,
        token_symbol: str,
        db: AsyncSession,
        token_decimals: int = 18,
    ) -> Goal:
        """Create the owner's single quick-save goal. Called once at onboarding."""
        async with self.locks.acquire("quick_save", user_id):
            if await goal_crud.get_quick_save_goal(user_id, db) is not None:
                raise InvalidState("Quick save goal already exists")
            goal = Goal(
                user_id=user_id,
                title="Quick Save",
                description="Instant savings without a target",
                category="quick",
                status="active",
                current_amount="0",
                target_amount="0",
                progress=0.0,
                token_address=token_address.lower(),
                token_symbol=token_symbol,
                token_decimals=token_decimals,
                interest_rate=settings.QUICK_SAVE_INTEREST_RATE,
                total_interest_earned="0",
                is_quick_save=True,
                is_public=False,
            )
            async with unit_of_work(db):
                await goal_crud.add_goal(goal, db)
        logger.info(f"⚡ Created quick save goal {goal.id} for {user_id}")
        return goal

    async def get_goal(self, goal_id: uuid.UUID, user_id: str, db: AsyncSession) -> Goal:
        goal = await goal_crud.get_goal_by_id(goal_id, db, user_id=user_id)
        if goal is None:
            raise NotFound(f"Goal {goal_id} not found")
        return goal

    async def list_goals(self, user_id: str, db: AsyncSession) -> List[Goal]:
        return await goal_crud.get_goals_for_user(user_id, db)

    async def get_goal_transactions(
        self, goal_id: uuid.UUID, user_id: str, db: AsyncSession, limit: int = 50
    ) -> List[SavingsTransaction]:
        await self.get_goal(goal_id, user_id, db)
        return await tx_crud.get_goal_transactions(goal_id, user_id, db, limit=limit)

    async def get_transaction(self, transaction_id: str, user_id: str, db: AsyncSession) -> SavingsTransaction:
        tx = await tx_crud.get_transaction_by_transaction_id(transaction_id, db, user_id=user_id)
        if tx is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        return tx

    async def delete_goal(self, goal_id: uuid.UUID, user_id: str, db: AsyncSession) -> None:
        async with self.locks.acquire(GOAL_LOCK, goal_id):
            goal = await self._load_goal(goal_id, user_id, db)
            if goal.is_quick_save:
                raise InvalidState("Quick save goal cannot be deleted")
            if parse_amount(goal.current_amount) > 0:
                raise InvalidState("Goal still holds funds; withdraw before deleting")
            async with unit_of_work(db):
                await goal_crud.delete_goal(goal, db)
        logger.info(f"🗑️ Deleted goal {goal_id}")

    async def set_goal_status(self, goal_id: uuid.UUID, user_id: str, status: str, db: AsyncSession) -> Goal:
        async with self.locks.acquire(GOAL_LOCK, goal_id):
            goal = await self._load_goal(goal_id, user_id, db)
            if status == goal.status:
                return goal
            if status not in STATUS_TRANSITIONS.get(goal.status, set()):
                raise InvalidState(f"Cannot change goal status from {goal.status} to {status}")
            if status == "cancelled":
                if goal.is_quick_save:
                    raise InvalidState("Quick save goal cannot be cancelled")
                if parse_amount(goal.current_amount) > 0:
                    raise InvalidState("Goal still holds funds; withdraw before cancelling")
            async with unit_of_work(db):
                goal.status = status
                if status == "completed":
                    goal.completed_at = utcnow()
        logger.info(f"Goal {goal_id} is now {status}")
        return goal

    async def update_goal(self, goal_id: uuid.UUID, user_id: str, goal_in: GoalUpdate, db: AsyncSession) -> Goal:
        """
        Edit the descriptive fields and target of a goal.

        Balances are never edited here; changing the target only moves progress.
        Finished goals (completed or cancelled) are read-only.
        """
        changes = goal_in.model_dump(exclude_unset=True)
        # Only these columns may be cleared
        changes = {k: v for k, v in changes.items() if v is not None or k in ("description", "target_date")}
        async with self.locks.acquire(GOAL_LOCK, goal_id):
            goal = await self._load_goal(goal_id, user_id, db)
            if goal.status in ("completed", "cancelled"):
                raise InvalidState(f"Cannot edit a {goal.status} goal")
            if "target_amount" in changes:
                if goal.is_quick_save:
                    raise InvalidState("Quick save goal has no target")
                changes["target_amount"] = format_amount(parse_amount(changes["target_amount"], allow_zero=False))
            async with unit_of_work(db):
                for field, value in changes.items():
                    setattr(goal, field, value)
                set_balance(goal, parse_amount(goal.current_amount))
        logger.info(f"✏️ Updated goal {goal_id}: {', '.join(changes) or 'no changes'}")
        return goal

    # Balance mutations

    async def deposit(
        self,
        goal_id: uuid.UUID,
        user_id: str,
        amount: str,
        db: AsyncSession,
        transaction_hash: Optional[str] = None,
        vault_address: Optional[str] = None,
        deposit_id: Optional[str] = None,
        lock_tier: Optional[int] = None,
        lock_period: Optional[int] = None,
        payment_method: str = "blockchain",
    ) -> Tuple[Goal, SavingsTransaction]:
        value = parse_amount(amount, allow_zero=False)
        async with self.locks.acquire(GOAL_LOCK, goal_id):
            goal = await self._load_goal(goal_id, user_id, db)
            if goal.status != "active":
                raise InvalidState(f"Cannot deposit into a {goal.status} goal")

            now = utcnow()
            tx = SavingsTransaction(
                transaction_id=tx_crud.generate_transaction_id(),
                transaction_hash=transaction_hash.lower() if transaction_hash else None,
                user_id=user_id,
                goal_id=goal.id,
                type="deposit",
                status="pending",
                payment_method=payment_method,
                amount=format_amount(value),
                token_address=goal.token_address,
                token_symbol=goal.token_symbol,
                token_decimals=goal.token_decimals,
                vault_address=vault_address.lower() if vault_address else None,
                deposit_id=deposit_id,
                lock_tier=lock_tier,
                lock_period=lock_period,
                lock_end=now + timedelta(seconds=lock_period) if lock_period else None,
                description=f"Deposit to {goal.title}",
                initiated_at=now,
            )
            async with unit_of_work(db):
                await tx_crud.add_transaction(tx, db)
                set_balance(goal, parse_amount(goal.current_amount) + value)
        logger.info(f"💰 Deposit {tx.transaction_id}: +{value} to goal {goal_id} (now {goal.current_amount})")
        return goal, tx

    async def withdraw(
        self,
        goal_id: uuid.UUID,
        user_id: str,
        amount: str,
        db: AsyncSession,
        transaction_hash: Optional[str] = None,
        vault_address: Optional[str] = None,
        deposit_id: Optional[str] = None,
        payment_method: str = "blockchain",
    ) -> Tuple[Goal, SavingsTransaction]:
        value = parse_amount(amount, allow_zero=False)
        async with self.locks.acquire(GOAL_LOCK, goal_id):
            goal = await self._load_goal(goal_id, user_id, db)
            if goal.status == "cancelled":
                raise InvalidState("Cannot withdraw from a cancelled goal")
            balance = parse_amount(goal.current_amount)
            if value > balance:
                raise InsufficientBalance(f"Insufficient balance: requested {value}, available {balance}")

            tx = SavingsTransaction(
                transaction_id=tx_crud.generate_transaction_id(),
                transaction_hash=transaction_hash.lower() if transaction_hash else None,
                user_id=user_id,
                goal_id=goal.id,
                type="withdrawal",
                status="pending",
                payment_method=payment_method,
                amount=format_amount(value),
                token_address=goal.token_address,
                token_symbol=goal.token_symbol,
                token_decimals=goal.token_decimals,
                vault_address=vault_address.lower() if vault_address else None,
                deposit_id=deposit_id,
                description=f"Withdrawal from {goal.title}",
                initiated_at=utcnow(),
            )
            async with unit_of_work(db):
                await tx_crud.add_transaction(tx, db)
                set_balance(goal, balance - value)
        logger.info(f"💸 Withdrawal {tx.transaction_id}: -{value} from goal {goal_id} (now {goal.current_amount})")
        return goal, tx

    async def transfer(
        self,
        from_goal_id: uuid.UUID,
        to_goal_id: uuid.UUID,
        user_id: str,
        amount: str,
        db: AsyncSession,
    ) -> Tuple[Goal, Goal, SavingsTransaction]:
        """Move funds between two of the user's goals in a single commit."""
        value = parse_amount(amount, allow_zero=False)
        if from_goal_id == to_goal_id:
            raise InvalidState("Cannot transfer a goal's funds to itself")

        async with self.locks.acquire_many([(GOAL_LOCK, from_goal_id), (GOAL_LOCK, to_goal_id)]):
            source = await self._load_goal(from_goal_id, user_id, db)
            target = await self._load_goal(to_goal_id, user_id, db)
            if source.token_address.lower() != target.token_address.lower():
                raise TokenMismatch(
                    f"Cannot transfer {source.token_symbol} into a {target.token_symbol} goal"
                )
            if target.status != "active":
                raise InvalidState(f"Cannot transfer into a {target.status} goal")
            balance = parse_amount(source.current_amount)
            if value > balance:
                raise InsufficientBalance(f"Insufficient balance: requested {value}, available {balance}")

            now = utcnow()
            tx = SavingsTransaction(
                transaction_id=tx_crud.generate_transaction_id(),
                user_id=user_id,
                from_goal_id=source.id,
                to_goal_id=target.id,
                type="transfer",
                status="completed",
                payment_method="internal",
                amount=format_amount(value),
                token_address=source.token_address,
                token_symbol=source.token_symbol,
                token_decimals=source.token_decimals,
                description=f"Transfer from {source.title} to {target.title}",
                initiated_at=now,
                confirmed_at=now,
                completed_at=now,
            )
            async with unit_of_work(db):
                await tx_crud.add_transaction(tx, db)
                set_balance(source, balance - value)
                set_balance(target, parse_amount(target.current_amount) + value)
        logger.info(f"🔁 Transfer {tx.transaction_id}: {value} from {from_goal_id} to {to_goal_id}")
        return source, target, tx

    async def accrue_interest(
        self,
        goal_id: uuid.UUID,
        user_id: str,
        db: AsyncSession,
        on_date: Optional[date] = None,
    ) -> Tuple[Goal, Optional[SavingsTransaction]]:
        """
        Credit one day of simple interest. At most one accrual per goal per
        day; the unique (goal_id, accrual_date) key enforces it across processes.
        Returns no transaction when the interest rounds down to zero.
        """
        accrual_date = on_date or utcnow().date()
        async with self.locks.acquire(GOAL_LOCK, goal_id):
            goal = await self._load_goal(goal_id, user_id, db)
            if goal.status != "active":
                raise InvalidState(f"Cannot accrue interest on a {goal.status} goal")
            if await tx_crud.interest_accrued_on(goal.id, accrual_date, db):
                raise InvalidState(f"Interest already accrued for {accrual_date}")

            interest = daily_interest(goal.current_amount, goal.interest_rate)
            if interest == 0:
                return goal, None

            now = utcnow()
            tx = SavingsTransaction(
                transaction_id=tx_crud.generate_transaction_id(),
                user_id=user_id,
                goal_id=goal.id,
                type="interest",
                status="completed",
                payment_method="internal",
                amount=format_amount(interest),
                token_address=goal.token_address,
                token_symbol=goal.token_symbol,
                token_decimals=goal.token_decimals,
                accrual_date=accrual_date,
                description=f"Daily interest at {goal.interest_rate}% APY",
                initiated_at=now,
                confirmed_at=now,
                completed_at=now,
            )
            try:
                async with unit_of_work(db):
                    await tx_crud.add_transaction(tx, db)
                    set_balance(goal, parse_amount(goal.current_amount) + interest)
                    goal.total_interest_earned = format_amount(
                        parse_amount(goal.total_interest_earned) + interest
                    )
            except IntegrityError as e:
                raise InvalidState(f"Interest already accrued for {accrual_date}") from e
        logger.info(f"📈 Accrued {interest} interest on goal {goal_id} for {accrual_date}")
        return goal, tx

    async def calculate_interest(
        self, user_id: str, db: AsyncSession, on_date: Optional[date] = None
    ) -> List[Goal]:
        """Accrue today's interest on every active goal of the user that has a balance."""
        accrual_date = on_date or utcnow().date()
        updated = []
        for goal in await goal_crud.get_goals_for_user(user_id, db):
            if goal.status != "active" or parse_amount(goal.current_amount) == 0:
                continue
            if await tx_crud.interest_accrued_on(goal.id, accrual_date, db):
                continue
            goal, tx = await self.accrue_interest(goal.id, user_id, db, on_date=accrual_date)
            if tx is not None:
                updated.append(goal)
        return updated

    async def attach_chain_reference(
        self,
        transaction_id: str,
        user_id: str,
        transaction_hash: str,
        db: AsyncSession,
        vault_address: Optional[str] = None,
        deposit_id: Optional[str] = None,
    ) -> SavingsTransaction:
        """Record the wallet's transaction hash on a pending transaction."""
        tx = await self.get_transaction(transaction_id, user_id, db)
        kind, entity_id = entity_lock_key(tx)
        async with self.locks.acquire(kind, entity_id):
            tx = await tx_crud.get_transaction_by_transaction_id(transaction_id, db, user_id=user_id, refresh=True)
            if tx.status != "pending":
                raise InvalidState(f"Transaction {transaction_id} is already {tx.status}")
            transaction_hash = transaction_hash.lower()
            if tx.transaction_hash and tx.transaction_hash != transaction_hash:
                raise InvalidState(f"Transaction {transaction_id} already references {tx.transaction_hash}")
            async with unit_of_work(db):
                tx.transaction_hash = transaction_hash
                if vault_address:
                    tx.vault_address = vault_address.lower()
                if deposit_id is not None:
                    tx.deposit_id = deposit_id
        logger.info(f"🔗 Transaction {transaction_id} linked to {transaction_hash}")
        return tx

    # Stats

    async def get_user_goal_stats(self, user_id: str, db: AsyncSession) -> GoalStats:
        goals = await goal_crud.get_goals_for_user(user_id, db)
        total_saved = sum(parse_amount(g.current_amount) for g in goals)
        total_interest = sum(parse_amount(g.total_interest_earned) for g in goals)
        average_progress = sum(g.progress for g in goals) / len(goals) if goals else 0.0

        total_saved_usd = None
        if self.oracle is not None and goals:
            try:
                total_saved_usd = 0.0
                for goal in goals:
                    rate = await get_fresh_rate(self.oracle, goal.token_address)
                    total_saved_usd += convert_to_usd(goal.current_amount, goal.token_decimals, rate)
                total_saved_usd = round(total_saved_usd, 2)
            except (StalePriceError, NotFound) as e:
                logger.warning(f"USD valuation unavailable for {user_id}: {e}")
                total_saved_usd = None

        return GoalStats(
            total_goals=len(goals),
            active_goals=sum(1 for g in goals if g.status == "active"),
            completed_goals=sum(1 for g in goals if g.status == "completed"),
            total_saved=format_amount(total_saved),
            total_interest_earned=format_amount(total_interest),
            average_progress=round(average_progress, 2),
            total_saved_usd=total_saved_usd,
        )

    # Reconciler hooks. The caller holds the goal lock and commits.

    def _confirm(self, tx: SavingsTransaction, event: NormalizedEvent, row: VaultEvent) -> None:
        if tx.status in FINAL_STATUSES:
            raise InvalidState(f"Transaction {tx.transaction_id} is already {tx.status}")
        tx.status = "confirmed"
        tx.confirmed_at = utcnow()
        tx.deposit_id = event.correlation_id
        tx.vault_event_id = row.id

    async def apply_deposit_confirmation(
        self,
        tx: SavingsTransaction,
        event: NormalizedEvent,
        row: VaultEvent,
        db: AsyncSession,
    ) -> None:
        self._confirm(tx, event, row)
        tx.shares = event.extra.get("shares")
        tx.lock_tier = event.extra.get("lock_tier")

        recorded = parse_amount(tx.amount)
        on_chain = parse_amount(event.amount)
        if on_chain == recorded:
            return
        goal = await goal_crud.get_goal_by_id(tx.goal_id, db, refresh=True) if tx.goal_id else None
        tx.amount = format_amount(on_chain)
        if goal is None:
            logger.warning(f"Deposit {tx.transaction_id} confirmed for a goal that no longer exists")
            return
        adjusted = parse_amount(goal.current_amount) + on_chain - recorded
        if adjusted < 0:
            logger.warning(f"Goal {goal.id} would go negative after confirming {tx.transaction_id}; clamping to 0")
            adjusted = 0
        set_balance(goal, adjusted)
        logger.info(f"Deposit {tx.transaction_id} settled at {on_chain} (requested {recorded})")

    async def apply_withdrawal_confirmation(
        self,
        tx: SavingsTransaction,
        event: NormalizedEvent,
        row: VaultEvent,
        db: AsyncSession,
    ) -> Optional[SavingsTransaction]:
        """Confirm a withdrawal and book any vault yield paid out with it."""
        self._confirm(tx, event, row)
        yield_amount = parse_amount(event.extra.get("yield_amount", "0"))
        tx.yield_earned = format_amount(yield_amount)
        tx.shares_burned = event.extra.get("shares_burned")

        goal = await goal_crud.get_goal_by_id(tx.goal_id, db, refresh=True) if tx.goal_id else None
        recorded = parse_amount(tx.amount)
        on_chain = parse_amount(event.amount)
        if on_chain != recorded:
            tx.amount = format_amount(on_chain)
            if goal is not None:
                adjusted = parse_amount(goal.current_amount) + recorded - on_chain
                if adjusted < 0:
                    logger.warning(f"Goal {goal.id} would go negative after confirming {tx.transaction_id}; clamping to 0")
                    adjusted = 0
                set_balance(goal, adjusted)
            logger.info(f"Withdrawal {tx.transaction_id} settled at {on_chain} (requested {recorded})")

        if yield_amount == 0 or goal is None:
            return None

        now = utcnow()
        interest_tx = SavingsTransaction(
            transaction_id=tx_crud.generate_transaction_id(),
            transaction_hash=tx.transaction_hash,
            user_id=tx.user_id,
            goal_id=goal.id,
            type="interest",
            status="completed",
            payment_method="blockchain",
            amount=format_amount(yield_amount),
            token_address=goal.token_address,
            token_symbol=goal.token_symbol,
            token_decimals=goal.token_decimals,
            vault_address=tx.vault_address,
            deposit_id=tx.deposit_id,
            vault_event_id=row.id,
            description="Vault yield paid on withdrawal",
            initiated_at=now,
            confirmed_at=now,
            completed_at=now,
        )
        await tx_crud.add_transaction(interest_tx, db)
        goal.total_interest_earned = format_amount(parse_amount(goal.total_interest_earned) + yield_amount)
        logger.info(f"📈 Booked {yield_amount} vault yield on goal {goal.id}")
        return interest_tx
