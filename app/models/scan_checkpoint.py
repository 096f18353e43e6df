# app/models/scan_checkpoint.py
from sqlalchemy import Column, String, DateTime, BigInteger
from app.core.database import Base, utcnow


class ScanCheckpoint(Base):
    __tablename__ = "scan_checkpoints"

    network = Column(String(32), primary_key=True)
    vault_address = Column(String(64), primary_key=True)
    # Last block whose events are all stored in vault_events
    last_block = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ScanCheckpoint {self.network}:{self.vault_address} last_block={self.last_block}>"
