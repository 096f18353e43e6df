# app/schemas/vault_event.py
from typing import Optional, Literal, Dict, Any, Tuple
from pydantic import BaseModel, ConfigDict
from datetime import datetime
import uuid

EventKind = Literal["Deposited", "Withdrawn", "YieldDistributed"]


class NormalizedEvent(BaseModel):
    """Uniform shape of a vault event, independent of how it was fetched."""
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    network: str
    vault_address: str
    user_address: Optional[str] = None
    amount: str
    # Opaque per-user deposit id; None for vault-wide events
    correlation_id: Optional[str] = None
    block_height: int
    log_index: int
    tx_hash: str
    extra: Dict[str, Any] = {}

    @property
    def identity(self) -> Tuple[str, str, str, str, int]:
        return (self.network, self.vault_address, self.tx_hash, self.kind, self.log_index)


class VaultEventRead(BaseModel):
    id: uuid.UUID
    network: str
    vault_address: str
    transaction_hash: str
    event_kind: str
    log_index: int
    block_number: int
    user_address: Optional[str] = None
    correlation_id: Optional[str] = None
    amount: str
    extra: Dict[str, Any]
    status: str
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
    matched_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VaultStatus(BaseModel):
    network: str
    chain_id: int
    vault_address: str
    token_symbol: str
    last_block: Optional[int] = None
    orphaned_events: int = 0


class ScanResultRead(BaseModel):
    network: str
    vault_address: str
    from_block: int
    to_block: int
    events_seen: int
    matched: int
    orphaned: int
    recorded: int
    duplicates: int


class OrphanRetryResult(BaseModel):
    retried: int
    matched: int
