"""
Webhook event ledger: durable capture and idempotency for inbound events.

Every delivery is committed to `webhook_events` before it is dispatched, so
the raw payload survives even if processing later fails. The database
enforces one row per (provider, external_event_id); redeliveries of an
event that has not been processed yet reuse that row and bump `attempts`.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple
from sqlalchemy.exc import IntegrityError

from payhook.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


class EventLedger:
    """Store and claim webhook events for one provider."""

    def __init__(self, session, provider: str):
        self.db = session
        self.provider = provider

    def find(self, external_event_id: Optional[str]) -> Optional[WebhookEvent]:
        """Return the ledger row for an external event ID, if any."""
        if not external_event_id:
            return None
        return self.db.query(WebhookEvent).filter(
            WebhookEvent.provider == self.provider,
            WebhookEvent.external_event_id == external_event_id
        ).first()

    def record_delivery(
        self,
        external_event_id: Optional[str],
        event_type: str,
        payload: dict
    ) -> Tuple[WebhookEvent, bool]:
        """
        Store a delivery and report whether it is a duplicate.

        Args:
            external_event_id: Provider event ID (None when the sender omits it)
            event_type: Provider event type tag
            payload: Parsed event body, stored verbatim

        Returns:
            tuple: (webhook_event, already_processed)
        """
        existing = self.find(external_event_id)
        if existing:
            return self._redelivered(existing)

        event = WebhookEvent(
            provider=self.provider,
            external_event_id=external_event_id,
            event_type=event_type,
            payload=payload,
            is_processed=False,
            attempts=1
        )

        try:
            self.db.add(event)
            self.db.commit()
        except IntegrityError:
            # Race condition: another delivery of the same event inserted first
            self.db.rollback()
            logger.warning(
                f"[LEDGER] Dedupe conflict (race) for {self.provider} event {external_event_id}"
            )
            existing = self.find(external_event_id)
            if existing is None:
                raise
            return self._redelivered(existing)

        logger.info(f"[LEDGER] Stored {self.provider} event {external_event_id} ({event_type}) as #{event.id}")
        return event, False

    def _redelivered(self, existing: WebhookEvent) -> Tuple[WebhookEvent, bool]:
        if existing.is_processed:
            logger.info(f"[LEDGER] Event {existing.external_event_id} already processed (#{existing.id})")
            return existing, True

        # Increment in SQL so concurrent redeliveries don't lose a count
        existing.attempts = WebhookEvent.attempts + 1
        self.db.commit()
        logger.info(
            f"[LEDGER] Redelivery of unprocessed event {existing.external_event_id} "
            f"(#{existing.id}, attempt {existing.attempts})"
        )
        return existing, False

    def lock_for_processing(self, event_id: int) -> Optional[WebhookEvent]:
        """
        Re-read a ledger row with a row lock for the processing transaction.

        Concurrent deliveries of the same event block here until the first
        one commits; the caller must re-check `is_processed` afterwards.
        """
        return self.db.query(WebhookEvent).filter(
            WebhookEvent.id == event_id
        ).with_for_update().first()

    def mark_processed(self, event: WebhookEvent):
        """Flag the event processed. Caller commits with the business changes."""
        event.is_processed = True
        event.processed_at = utcnow()
        event.error_message = None

    def mark_failed(self, event_id: int, error_message: str):
        """Record a processing error (is_processed stays False), commit and return the row."""
        event = self.db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()
        if event is None:
            logger.error(f"[LEDGER] Cannot mark missing event #{event_id} as failed")
            return None
        event.error_message = (error_message or 'Unknown error')[:2000]
        self.db.commit()
        return event

    def unprocessed(self, limit: int = 50):
        """Oldest unprocessed events, for replay."""
        return self.db.query(WebhookEvent).filter(
            WebhookEvent.provider == self.provider,
            WebhookEvent.is_processed.is_(False)
        ).order_by(WebhookEvent.created_at, WebhookEvent.id).limit(limit).all()
