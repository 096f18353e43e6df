"""
Shared fixtures for the ledger test suite.

Each test gets its own SQLite database file, fresh engines sharing one
KeyedLock, and a scriptable in-memory vault event source.
"""
import logging
from typing import Any, Dict, List, Mapping

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import VaultConfig
from app.core.database import Base
from app.core.errors import ExternalFetchFailure
from app.core.locks import KeyedLock
from app.models import goal, group_goal, savings_transaction, vault_event, scan_checkpoint  # noqa: F401
from app.schemas.goal import GoalCreate
from app.utils.group_ledger import GroupLedgerEngine
from app.utils.ledger import LedgerEngine
from app.utils.reconciler import Reconciler

logging.basicConfig(level=logging.INFO)

NETWORK = "testnet"
OWNER = "0x" + "a" * 40
ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40
TOKEN = "0x" + "c" * 40
OTHER_TOKEN = "0x" + "e" * 40
VAULT = "0x" + "d" * 40


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def goal_input(target: str = "1000", token: str = TOKEN, symbol: str = "USDC", **kwargs) -> GoalCreate:
    return GoalCreate(
        title=kwargs.pop("title", "Laptop"),
        target_amount=target,
        token_address=token,
        token_symbol=symbol,
        **kwargs,
    )


def deposited_log(block: int, log_index: int, tx: str, user: str, deposit_id: int, amount: int,
                  shares: int = 0, lock_tier: int = 0) -> Dict[str, Any]:
    return {
        "event": "Deposited",
        "args": {"user": user, "depositId": deposit_id, "amount": amount, "shares": shares, "lockTier": lock_tier},
        "blockNumber": block,
        "logIndex": log_index,
        "transactionHash": tx,
    }


def withdrawn_log(block: int, log_index: int, tx: str, user: str, deposit_id: int, amount: int,
                  yield_amount: int = 0, shares_burned: int = 0) -> Dict[str, Any]:
    return {
        "event": "Withdrawn",
        "args": {
            "user": user,
            "depositId": deposit_id,
            "amount": amount,
            "yield": yield_amount,
            "sharesBurned": shares_burned,
        },
        "blockNumber": block,
        "logIndex": log_index,
        "transactionHash": tx,
    }


def yield_log(block: int, log_index: int, tx: str, amount: int, index: int) -> Dict[str, Any]:
    return {
        "event": "YieldDistributed",
        "args": {"amount": amount, "newInterestIndex": index},
        "blockNumber": block,
        "logIndex": log_index,
        "transactionHash": tx,
    }


class FakeEventSource:
    """In-memory stand-in for Web3VaultEventSource."""

    def __init__(self, head: int = 0):
        self.head = head
        self.logs: List[Mapping[str, Any]] = []
        self.failures_left = 0
        self.fetch_calls = 0

    def add(self, *logs: Mapping[str, Any]) -> None:
        self.logs.extend(logs)
        self.head = max([self.head] + [log["blockNumber"] for log in logs])

    def fail_next(self, times: int) -> None:
        self.failures_left = times

    async def get_block_number(self) -> int:
        return self.head

    async def fetch_events(self, kind: str, from_block: int, to_block: int) -> List[Mapping[str, Any]]:
        self.fetch_calls += 1
        if self.failures_left > 0:
            self.failures_left -= 1
            raise ExternalFetchFailure("rpc unavailable")
        return [
            log for log in self.logs
            if log["event"] == kind and from_block <= log["blockNumber"] <= to_block
        ]


@pytest.fixture
def vault_config() -> VaultConfig:
    return VaultConfig(
        network=NETWORK,
        chain_id=31337,
        rpc_url="http://localhost:8545",
        vault_address=VAULT,
        token_symbol="USDC",
        max_block_range=10,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def ledger(locks):
    return LedgerEngine(locks)


@pytest.fixture
def group_ledger(locks):
    return GroupLedgerEngine(locks, max_members=3)


@pytest.fixture
def reconciler(ledger, group_ledger, locks):
    return Reconciler(ledger, group_ledger, locks)
