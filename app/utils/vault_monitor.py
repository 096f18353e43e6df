# app/utils/vault_monitor.py
"""Periodic and on-demand scans of every configured vault."""
import logging
from typing import Callable, Dict, Iterable, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import VaultConfig, settings
from app.core.errors import ExternalFetchFailure, NotFound, ScanInProgress
from app.core.locks import KeyedLock
from app.utils.event_source import VaultEventSource, Web3VaultEventSource
from app.utils.reconciler import Reconciler
from app.utils.scanner import ScanResult, VaultScanner

logger = logging.getLogger(__name__)

SCAN_LOCK = "vault_scan"


class VaultMonitor:
    """
    One VaultScanner per configured vault. The scheduler runs each on an
    interval with ``max_instances=1``; manual syncs share the same per-vault
    lock, so two scans of one vault never overlap while different vaults scan
    independently.
    """

    def __init__(
        self,
        vaults: Iterable[VaultConfig],
        reconciler: Reconciler,
        session_factory: async_sessionmaker,
        source_factory: Callable[[VaultConfig], VaultEventSource] = Web3VaultEventSource,
        interval_seconds: Optional[int] = None,
    ):
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds or settings.SCAN_INTERVAL_SECONDS
        self.scanners: Dict[str, VaultScanner] = {
            vault.key: VaultScanner(vault, source_factory(vault), reconciler, session_factory)
            for vault in vaults
        }
        self.locks = KeyedLock()
        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': self.interval_seconds,
            },
            timezone='UTC',
        )

    def get_scanner(self, network: str, vault_address: str) -> VaultScanner:
        key = f"{network.lower()}:{vault_address.lower()}"
        scanner = self.scanners.get(key)
        if scanner is None:
            raise NotFound(f"Vault {key} is not configured")
        return scanner

    def start(self) -> None:
        for key in self.scanners:
            self.scheduler.add_job(
                self.run_scheduled_scan,
                trigger=IntervalTrigger(seconds=self.interval_seconds),
                args=[key],
                id=f"vault_scan:{key}",
                name=f"Scan vault {key}",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self.scheduler.start()
        logger.info(f"🚀 Vault monitor started for {len(self.scanners)} vault(s), every {self.interval_seconds}s")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Vault monitor stopped")

    async def scan_now(self, key: str) -> ScanResult:
        scanner = self.scanners.get(key)
        if scanner is None:
            raise NotFound(f"Vault {key} is not configured")
        if self.locks.locked(SCAN_LOCK, key):
            raise ScanInProgress(f"A scan of {key} is already running")
        async with self.locks.acquire(SCAN_LOCK, key):
            return await scanner.scan()

    async def run_scheduled_scan(self, key: str) -> Optional[ScanResult]:
        try:
            return await self.scan_now(key)
        except ScanInProgress:
            logger.info(f"Skipping scheduled scan of {key}: already running")
        except ExternalFetchFailure as e:
            logger.error(f"❌ Scan of {key} failed, retrying next interval: {e}")
        return None
