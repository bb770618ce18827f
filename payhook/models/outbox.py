"""Outbox model for side effects (receipts, accounting) delivered after commit."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, CheckConstraint
from sqlalchemy.sql import func
import enum

from payhook.database import Base, JSONType


class OutboxKind(str, enum.Enum):
    """Side effects the reconciler can queue."""
    RECEIPT_EMAIL = 'receipt_email'
    BOOKS_PAYMENT = 'books_payment'


class OutboxStatus(str, enum.Enum):
    PENDING = 'pending'
    SENT = 'sent'
    FAILED = 'failed'


class OutboxMessage(Base):
    """A side effect recorded in the same transaction as the state change."""
    __tablename__ = 'outbox_messages'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    kind = Column(String(50), nullable=False)
    payload = Column(JSONType, nullable=False)
    status = Column(String(20), nullable=False, default=OutboxStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    sent_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("kind IN ('receipt_email', 'books_payment')", name='check_outbox_kind'),
        CheckConstraint("status IN ('pending', 'sent', 'failed')", name='check_outbox_status'),
    )

    def __repr__(self):
        return f"<OutboxMessage id={self.id} kind={self.kind} status={self.status} attempts={self.attempts}>"

