# app/crud/checkpoint.py
"""
Checkpoint store: last fully processed block per (network, vault).
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from app.models.scan_checkpoint import ScanCheckpoint
from typing import Optional
import logging

logger = logging.getLogger(__name__)


async def get_checkpoint(network: str, vault_address: str, db: AsyncSession) -> Optional[int]:
    result = await db.execute(
        select(ScanCheckpoint.last_block).where(
            ScanCheckpoint.network == network,
            ScanCheckpoint.vault_address == vault_address,
        )
    )
    return result.scalar_one_or_none()


async def advance_checkpoint(network: str, vault_address: str, block: int, db: AsyncSession) -> int:
    """
    Move the checkpoint forward to ``block`` and commit. Never moves it
    backwards; returns the stored value.
    """
    result = await db.execute(
        select(ScanCheckpoint)
        .where(ScanCheckpoint.network == network, ScanCheckpoint.vault_address == vault_address)
        .execution_options(populate_existing=True)
    )
    checkpoint = result.scalar_one_or_none()
    if checkpoint is None:
        checkpoint = ScanCheckpoint(network=network, vault_address=vault_address, last_block=block)
        db.add(checkpoint)
    elif block > checkpoint.last_block:
        checkpoint.last_block = block
    else:
        logger.debug(f"Checkpoint for {network}:{vault_address} already at {checkpoint.last_block}, not moving to {block}")
    await db.commit()
    return checkpoint.last_block
