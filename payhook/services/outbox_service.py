"""
Outbox for reconciliation side effects.

Handlers queue receipt emails and accounting payments as `outbox_messages`
rows in the same transaction as the state change. After the webhook commits
they are delivered once; failures stay in the table with `last_error` and
are retried by `flask outbox-retry`. Delivery never raises to the caller.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from flask import current_app

from payhook.blueprints.metrics import outbox_deliveries_total
from payhook.exceptions import IntegrationError, NotConfiguredError
from payhook.models.outbox import OutboxMessage, OutboxKind, OutboxStatus
from payhook.models.sync_log import SyncStatus
from payhook.services import audit_service
from payhook.services.books_client import get_books_client
from payhook.services.email_service import mail_enabled, send_payment_receipt

logger = logging.getLogger(__name__)


def enqueue(session, kind: OutboxKind, payload: dict) -> OutboxMessage:
    """Queue a side effect. Caller commits."""
    message = OutboxMessage(
        kind=OutboxKind(kind).value,
        payload=payload,
        status=OutboxStatus.PENDING.value,
        attempts=0
    )
    session.add(message)
    return message


def enqueue_receipt(session, to: str, subject: str, template_data: dict, local_id=None) -> OutboxMessage:
    """Queue a payment receipt email."""
    return enqueue(session, OutboxKind.RECEIPT_EMAIL, {
        'to': to,
        'subject': subject,
        'template_data': template_data,
        'local_id': str(local_id) if local_id is not None else None,
    })


def enqueue_books_payment(
    session,
    invoice_id: str,
    amount_in_cents: int,
    external_payment_id: str,
    description: str
) -> OutboxMessage:
    """Queue an accounting payment against an invoice."""
    return enqueue(session, OutboxKind.BOOKS_PAYMENT, {
        'invoice_id': invoice_id,
        'amount_in_cents': amount_in_cents,
        'external_payment_id': external_payment_id,
        'description': description,
    })


def _deliver_receipt(payload: dict):
    if not mail_enabled():
        raise NotConfiguredError('mail')
    if not send_payment_receipt(payload['to'], payload['subject'], payload.get('template_data') or {}):
        raise IntegrationError(f"Receipt email to {payload['to']} could not be sent", provider='mail')


def _deliver_books_payment(payload: dict):
    client = get_books_client()
    if client is None:
        raise NotConfiguredError('zoho')
    client.record_payment(
        invoice_id=payload['invoice_id'],
        amount_in_cents=payload['amount_in_cents'],
        external_payment_id=payload.get('external_payment_id'),
        description=payload.get('description'),
    )


# kind -> (deliver function, provider, sync_log entity type)
DELIVERERS = {
    OutboxKind.RECEIPT_EMAIL.value: (_deliver_receipt, 'mail', 'payment_receipt'),
    OutboxKind.BOOKS_PAYMENT.value: (_deliver_books_payment, 'zoho', 'books_payment'),
}


def _ids_for(message: OutboxMessage):
    payload = message.payload or {}
    if message.kind == OutboxKind.BOOKS_PAYMENT.value:
        return payload.get('external_payment_id'), payload.get('invoice_id')
    return payload.get('local_id'), None


def deliver(session, message: OutboxMessage) -> bool:
    """
    Attempt one outbox message and record the outcome.

    Returns:
        True when the side effect was delivered
    """
    deliver_fn, provider, entity_type = DELIVERERS[message.kind]
    local_id, remote_id = _ids_for(message)
    message.attempts = (message.attempts or 0) + 1

    try:
        deliver_fn(message.payload or {})
    except NotConfiguredError as e:
        message.status = OutboxStatus.FAILED.value
        message.last_error = e.message
        logger.info(f"[OUTBOX] {message.kind} #{message.id} skipped: {e.message}")
        audit_service.record_outbound(
            session, provider, SyncStatus.SKIPPED, entity_type,
            local_id=local_id, remote_id=remote_id, message=e.message
        )
        delivered = False
        outcome = 'skipped'
    except Exception as e:
        message.status = OutboxStatus.FAILED.value
        message.last_error = str(getattr(e, 'message', e))[:2000]
        logger.warning(f"[OUTBOX] {message.kind} #{message.id} failed (attempt {message.attempts}): {message.last_error}")
        audit_service.record_outbound(
            session, provider, SyncStatus.FAILED, entity_type,
            local_id=local_id, remote_id=remote_id, error_message=message.last_error
        )
        delivered = False
        outcome = 'failed'
    else:
        message.status = OutboxStatus.SENT.value
        message.sent_at = datetime.now(timezone.utc)
        message.last_error = None
        audit_service.record_outbound(
            session, provider, SyncStatus.SUCCESS, entity_type,
            local_id=local_id, remote_id=remote_id,
            message=f"Delivered {message.kind} #{message.id}"
        )
        delivered = True
        outcome = 'sent'

    outbox_deliveries_total.labels(kind=message.kind, outcome=outcome).inc()

    session.commit()
    return delivered


def deliver_pending(session, message_ids: Optional[Iterable[int]] = None, limit: int = 50,
                    max_attempts: Optional[int] = None) -> dict:
    """
    Deliver pending or failed messages.

    Args:
        session: Database session
        message_ids: Restrict to these IDs (one event's side effects)
        limit: Max messages to attempt
        max_attempts: Skip messages that already used this many attempts

    Returns:
        dict: counts of 'sent' and 'failed'
    """
    if max_attempts is None:
        max_attempts = current_app.config.get('OUTBOX_MAX_ATTEMPTS', 5)

    query = session.query(OutboxMessage).filter(
        OutboxMessage.status.in_([OutboxStatus.PENDING.value, OutboxStatus.FAILED.value]),
        OutboxMessage.attempts < max_attempts
    )
    if message_ids is not None:
        ids = [i for i in message_ids if i is not None]
        if not ids:
            return {'sent': 0, 'failed': 0}
        query = query.filter(OutboxMessage.id.in_(ids))

    counts = {'sent': 0, 'failed': 0}
    for message in query.order_by(OutboxMessage.id).limit(limit).all():
        if deliver(session, message):
            counts['sent'] += 1
        else:
            counts['failed'] += 1
    return counts
