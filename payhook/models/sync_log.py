"""
Sync log model - append-only audit trail of inbound webhooks and
outbound integration calls.
"""
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, CheckConstraint, Index
from sqlalchemy.sql import func
import enum

from payhook.database import Base, JSONType


class SyncDirection(str, enum.Enum):
    """Direction of the sync operation."""
    INBOUND = 'inbound'
    OUTBOUND = 'outbound'


class SyncStatus(str, enum.Enum):
    """Outcome of a sync attempt."""
    SUCCESS = 'success'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class SyncLogEntry(Base):
    """
    Audit record of one sync attempt.

    Rows are only ever inserted; nothing updates or deletes them.
    """
    __tablename__ = 'sync_log'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    provider = Column(String(50), nullable=False, index=True)
    direction = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    entity_type = Column(String(100), nullable=False)  # e.g. 'payment', 'refund', 'payment_receipt'
    local_id = Column(String(100))  # Our record ID
    remote_id = Column(String(100))  # Square / Zoho record ID
    message = Column(Text)
    error_message = Column(Text)
    payload = Column(JSONType)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint("direction IN ('inbound', 'outbound')", name='check_sync_direction'),
        CheckConstraint("status IN ('success', 'failed', 'skipped')", name='check_sync_status'),
        Index('sync_log_entity_idx', 'entity_type', 'local_id'),
    )

    def __repr__(self):
        return f"<SyncLogEntry {self.direction} {self.provider} {self.entity_type} status={self.status}>"
