"""
Event router: dispatches a stored webhook event to its handler and records
the outcome.

Transaction layout for one delivery:
  1. lock the ledger row and re-check it is still unprocessed
  2. run the handler, mark the row processed, commit
     (on any exception: rollback, store error_message on the row)
  3. write exactly one inbound sync_log entry, commit

Queued side effects are delivered by the caller once the delivery has been
acknowledged (`deliver_side_effects`), never inside this transaction.
"""
import enum
import logging
from functools import partial

from payhook.models.sync_log import SyncStatus
from payhook.services import audit_service, outbox_service, payment_service
from payhook.services.results import HandlerResult

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    """Square event types the reconciler handles."""
    PAYMENT_COMPLETED = 'payment.completed'
    PAYMENT_UPDATED = 'payment.updated'
    REFUND_CREATED = 'refund.created'
    REFUND_UPDATED = 'refund.updated'


class DuplicateDelivery(Exception):
    """The ledger row was processed by a concurrent delivery."""


def handlers_for(order_client=None) -> dict:
    """EventType -> handler(session, data) map."""
    return {
        EventType.PAYMENT_COMPLETED: partial(payment_service.handle_payment_completed, order_client=order_client),
        EventType.PAYMENT_UPDATED: payment_service.handle_payment_updated,
        EventType.REFUND_CREATED: payment_service.handle_refund,
        EventType.REFUND_UPDATED: payment_service.handle_refund,
    }


def parse_event_type(event_type):
    """Return the EventType for a tag, or None for tags we don't handle."""
    try:
        return EventType(event_type)
    except ValueError:
        return None


def dispatch(session, event_type: str, data: dict, order_client=None) -> HandlerResult:
    """
    Run the handler for an event type. Unknown types are skipped, not errors.

    Exceptions from handlers propagate to the caller.
    """
    kind = parse_event_type(event_type)
    if kind is None:
        logger.info(f"Unhandled webhook type: {event_type}")
        return HandlerResult.skipped(f"Event type {event_type} not handled")

    handler = handlers_for(order_client)[kind]
    return handler(session, data)


def _run_handler(session, ledger, event_id: int, order_client):
    event = ledger.lock_for_processing(event_id)
    if event is None:
        raise LookupError(f"Webhook event #{event_id} disappeared before processing")
    if event.is_processed:
        raise DuplicateDelivery(event.external_event_id)

    stored_type = event.event_type
    payload = event.payload or {}
    result = dispatch(session, stored_type, payload.get('data') or {}, order_client=order_client)

    ledger.mark_processed(event)
    session.commit()
    return result, stored_type


def process_event(session, ledger, event_id: int, event_type: str, external_event_id=None,
                  order_client=None) -> HandlerResult:
    """
    Process one stored webhook event end to end.

    The handler and the audit entry both follow the event type stored on
    the ledger row; `event_type` is only used when the row cannot be read.

    Args:
        session: Database session
        ledger: EventLedger for the event's provider
        event_id: Ledger row ID (already committed)
        event_type: Event type tag of the current delivery
        external_event_id: Provider event ID for the audit entry
        order_client: Square client for order lookups, or None

    Returns:
        HandlerResult (status success, skipped or failed). Side effects it
        queued are still pending; pass them to `deliver_side_effects`.

    Raises:
        DuplicateDelivery: If a concurrent delivery processed the event first
    """
    audited_type = event_type
    try:
        result, audited_type = _run_handler(session, ledger, event_id, order_client)
    except DuplicateDelivery:
        session.rollback()
        logger.info(f"Event {external_event_id} was processed by a concurrent delivery")
        raise
    except Exception as e:
        session.rollback()
        error_message = str(e) or e.__class__.__name__
        logger.exception(f"Error processing {event_type} event {external_event_id}: {error_message}")
        try:
            failed_event = ledger.mark_failed(event_id, error_message)
            if failed_event is not None:
                audited_type = failed_event.event_type
        except Exception as mark_error:
            session.rollback()
            logger.error(f"Failed to store error on webhook event #{event_id}: {mark_error}")
        result = HandlerResult.failed(error_message)

    try:
        audit_service.record_inbound(session, ledger.provider, audited_type, external_event_id, result)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Failed to write inbound sync log for event {external_event_id}: {e}")

    return result


def side_effect_ids(result: HandlerResult) -> list:
    """Outbox message IDs queued by a successful handler."""
    if result.status != SyncStatus.SUCCESS:
        return []
    return [m.id for m in result.side_effects]


def deliver_side_effects(session, message_ids, external_event_id=None) -> dict:
    """
    Deliver outbox messages queued for one event. Never raises; messages
    that could not be delivered stay in the outbox for `flask outbox-retry`.
    """
    if not message_ids:
        return {'sent': 0, 'failed': 0}
    try:
        return outbox_service.deliver_pending(session, message_ids)
    except Exception as e:
        session.rollback()
        logger.error(f"Side effect delivery failed for event {external_event_id}: {e}")
        return {'sent': 0, 'failed': len(message_ids)}
