# app/api/v1/routes/vaults.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_reconciler, get_vault_monitor
from app.core.database import get_async_session
from app.crud.checkpoint import get_checkpoint
from app.crud.vault_event import count_orphans, get_events
from app.schemas.vault_event import OrphanRetryResult, ScanResultRead, VaultEventRead, VaultStatus
from app.utils.reconciler import Reconciler
from app.utils.vault_monitor import VaultMonitor

router = APIRouter(prefix="/vaults", tags=["vaults"])


@router.get("", response_model=List[VaultStatus])
async def list_vaults(
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    monitor: VaultMonitor = Depends(get_vault_monitor),
):
    """Configured vaults with their scan checkpoint and unmatched event count."""
    statuses = []
    for scanner in monitor.scanners.values():
        vault = scanner.vault
        statuses.append(VaultStatus(
            network=vault.network,
            chain_id=vault.chain_id,
            vault_address=vault.vault_address,
            token_symbol=vault.token_symbol,
            last_block=await get_checkpoint(vault.network, vault.vault_address, db),
            orphaned_events=await count_orphans(vault.network, vault.vault_address, db),
        ))
    return statuses


@router.post("/{network}/{vault_address}/sync", response_model=ScanResultRead)
async def sync_vault(
    network: str,
    vault_address: str,
    user_id: str = Depends(get_current_user),
    monitor: VaultMonitor = Depends(get_vault_monitor),
):
    """
    Scan the vault up to the chain head now.

    Returns 409 if a scan of this vault is already running and 502 if the
    node could not be reached after retries; the checkpoint is unchanged then.
    """
    scanner = monitor.get_scanner(network, vault_address)
    result = await monitor.scan_now(scanner.vault.key)
    return ScanResultRead(**vars(result))


@router.post("/{network}/{vault_address}/reconcile-orphans", response_model=OrphanRetryResult)
async def reconcile_orphans(
    network: str,
    vault_address: str,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    monitor: VaultMonitor = Depends(get_vault_monitor),
    reconciler: Reconciler = Depends(get_reconciler),
):
    vault = monitor.get_scanner(network, vault_address).vault
    retried, matched = await reconciler.retry_orphans(vault.network, vault.vault_address, db)
    return OrphanRetryResult(retried=retried, matched=matched)


@router.get("/{network}/{vault_address}/events", response_model=List[VaultEventRead])
async def list_vault_events(
    network: str,
    vault_address: str,
    status: Optional[str] = Query(None, description="orphaned, matched or recorded"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    monitor: VaultMonitor = Depends(get_vault_monitor),
):
    vault = monitor.get_scanner(network, vault_address).vault
    return await get_events(vault.network, vault.vault_address, db, status=status, limit=limit)
