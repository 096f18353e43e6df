# app/api/v1/routes/transactions.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.schemas.transaction import ChainReferenceUpdate, SavingsTransactionRead
from app.core.database import get_async_session
from app.api.deps import get_current_user, get_ledger, get_reconciler
from app.utils.ledger import LedgerEngine
from app.utils.reconciler import Reconciler

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/{transaction_id}", response_model=SavingsTransactionRead)
async def read_transaction(
    transaction_id: str,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
):
    return await ledger.get_transaction(transaction_id, user_id, db)


@router.post("/{transaction_id}/chain-reference", response_model=SavingsTransactionRead)
async def attach_chain_reference(
    transaction_id: str,
    reference: ChainReferenceUpdate,
    db: AsyncSession = Depends(get_async_session),
    user_id: str = Depends(get_current_user),
    ledger: LedgerEngine = Depends(get_ledger),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """
    Attach the wallet's transaction hash to a pending transaction.

    If the vault event for that hash was already scanned and stored as an
    orphan, it is matched right away and the returned transaction is confirmed.
    """
    tx = await ledger.attach_chain_reference(
        transaction_id,
        user_id,
        reference.transaction_hash,
        db,
        vault_address=reference.vault_address,
        deposit_id=reference.deposit_id,
    )
    await reconciler.match_transaction(tx, db)
    return tx
