"""Webhook event ledger model for idempotency and replay."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Boolean, DateTime, UniqueConstraint, Index
from sqlalchemy.sql import func
from payhook.database import Base, JSONType


class WebhookEvent(Base):
    """
    One row per logical webhook event received from a provider.

    The (provider, external_event_id) pair is the idempotency key. Events
    without an external id get a fresh row on every delivery.
    """
    __tablename__ = 'webhook_events'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    provider = Column(String(50), nullable=False, index=True)
    external_event_id = Column(String(200))
    event_type = Column(String(200), nullable=False, index=True)
    payload = Column(JSONType, nullable=False)
    is_processed = Column(Boolean, nullable=False, default=False)
    attempts = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint('provider', 'external_event_id', name='uq_webhook_events_provider_external_id'),
        Index('webhook_unprocessed_idx', 'is_processed'),
    )

    def __repr__(self):
        return (
            f"<WebhookEvent(id={self.id}, provider='{self.provider}', "
            f"type='{self.event_type}', processed={self.is_processed})>"
        )

