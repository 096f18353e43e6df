# app/models/vault_event.py
import uuid
from sqlalchemy import Column, String, DateTime, Integer, BigInteger, Uuid, JSON, UniqueConstraint
from app.core.database import Base, utcnow

EVENT_KINDS = ("Deposited", "Withdrawn", "YieldDistributed")
# orphaned: no pending transaction matched yet; matched: applied to the ledger;
# recorded: audit only (vault-wide events)
RECONCILIATION_STATUSES = ("orphaned", "matched", "recorded")


class VaultEvent(Base):
    __tablename__ = "vault_events"
    __table_args__ = (
        UniqueConstraint(
            "network", "vault_address", "transaction_hash", "event_kind", "log_index",
            name="uq_vault_event_identity",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    network = Column(String(32), nullable=False)
    vault_address = Column(String(64), nullable=False)
    transaction_hash = Column(String(80), nullable=False)
    event_kind = Column(String(32), nullable=False)
    log_index = Column(Integer, nullable=False)
    block_number = Column(BigInteger, nullable=False, index=True)

    user_address = Column(String(64), nullable=True, index=True)
    correlation_id = Column(String(78), nullable=True)
    amount = Column(String(78), nullable=False)
    extra = Column(JSON, nullable=False, default=dict)
    token_symbol = Column(String(16), nullable=True)

    status = Column(String(16), nullable=False, default="orphaned", index=True)
    transaction_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    matched_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<VaultEvent {self.event_kind} tx={self.transaction_hash} log={self.log_index} status={self.status}>"
