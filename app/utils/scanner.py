# app/utils/scanner.py
"""
Checkpointed scan of one vault's event log.

Blocks are processed in ranges of at most ``max_block_range``. A range is
fetched in full (with retries), sorted into chain order, written to the audit
store and reconciled event by event; only then does the checkpoint move to the
range's last block. If anything fails the checkpoint stays put and the next
scan starts over from the same block.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import VaultConfig, settings
from app.core.db_utils import with_retry
from app.core.errors import ExternalFetchFailure
from app.crud.checkpoint import advance_checkpoint, get_checkpoint
from app.models.vault_event import EVENT_KINDS
from app.schemas.vault_event import NormalizedEvent
from app.utils.event_source import VaultEventSource
from app.utils.normalizer import event_order, normalize_event
from app.utils.reconciler import Outcome, Reconciler

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    network: str
    vault_address: str
    from_block: int
    to_block: int
    events_seen: int = 0
    matched: int = 0
    orphaned: int = 0
    recorded: int = 0
    duplicates: int = 0

    def count(self, outcome: Outcome) -> None:
        self.events_seen += 1
        if outcome == Outcome.MATCHED:
            self.matched += 1
        elif outcome == Outcome.ORPHANED:
            self.orphaned += 1
        elif outcome == Outcome.RECORDED:
            self.recorded += 1
        else:
            self.duplicates += 1


class VaultScanner:
    def __init__(
        self,
        vault: VaultConfig,
        source: VaultEventSource,
        reconciler: Reconciler,
        session_factory: async_sessionmaker,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.vault = vault
        self.source = source
        self.reconciler = reconciler
        self.session_factory = session_factory
        self.max_retries = settings.SCAN_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.SCAN_RETRY_BASE_DELAY if retry_delay is None else retry_delay

    def _retrying(self, func):
        return with_retry((ExternalFetchFailure,), max_retries=self.max_retries, retry_delay=self.retry_delay)(func)

    async def fetch_range(self, from_block: int, to_block: int) -> List[NormalizedEvent]:
        """All vault events in [from_block, to_block], normalized and in chain order."""
        fetch = self._retrying(self.source.fetch_events)
        events = []
        for kind in EVENT_KINDS:
            for raw in await fetch(kind, from_block, to_block):
                events.append(normalize_event(raw, self.vault.network, self.vault.vault_address))
        events.sort(key=event_order)
        return events

    async def scan(self) -> ScanResult:
        vault = self.vault
        async with self.session_factory() as db:
            checkpoint = await get_checkpoint(vault.network, vault.vault_address, db)
            start = checkpoint + 1 if checkpoint is not None else vault.start_block
            head = await self._retrying(self.source.get_block_number)()

            result = ScanResult(
                network=vault.network,
                vault_address=vault.vault_address,
                from_block=start,
                to_block=start - 1,
            )
            if head < start:
                logger.debug(f"{vault.key}: up to date at block {checkpoint}")
                return result

            logger.info(f"🔍 {vault.key}: scanning blocks {start} to {head}")
            range_start = start
            while range_start <= head:
                range_end = min(range_start + vault.max_block_range - 1, head)
                events = await self.fetch_range(range_start, range_end)
                for event in events:
                    outcome = await self.reconciler.reconcile(event, db, token_symbol=vault.token_symbol)
                    result.count(outcome.outcome)
                await advance_checkpoint(vault.network, vault.vault_address, range_end, db)
                result.to_block = range_end
                range_start = range_end + 1

        logger.info(
            f"{vault.key}: blocks {result.from_block}-{result.to_block}, {result.events_seen} events "
            f"({result.matched} matched, {result.orphaned} orphaned, {result.recorded} recorded, "
            f"{result.duplicates} duplicates)"
        )
        return result
