"""
Audit logging service backed by the append-only sync_log table.
"""
from payhook.models.sync_log import SyncLogEntry, SyncDirection, SyncStatus
import json
import logging

logger = logging.getLogger(__name__)


def entity_type_for_event(event_type: str) -> str:
    """Refund events are audited as 'refund', everything else as 'payment'."""
    return 'refund' if (event_type or '').startswith('refund') else 'payment'


def _json_safe(payload):
    """Round-trip through json so dates/decimals don't break the JSON column."""
    if payload is None:
        return None
    try:
        return json.loads(json.dumps(payload, default=str))
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to serialize audit payload: {e}")
        return {'repr': str(payload)}


def log_sync(
    session,
    provider: str,
    direction: SyncDirection,
    status: SyncStatus,
    entity_type: str,
    local_id=None,
    remote_id=None,
    message: str = None,
    error_message: str = None,
    payload: dict = None
):
    """
    Append a sync_log entry.

    Args:
        session: Database session
        provider: 'square', 'zoho', 'mail'
        direction: SyncDirection value
        status: SyncStatus value
        entity_type: What was synced (e.g. 'payment', 'refund', 'books_payment')
        local_id: Our record ID
        remote_id: Provider record ID
        message: Human-readable summary
        error_message: Error details on failure
        payload: Optional snapshot for later reconciliation

    Returns:
        SyncLogEntry or None if the entry could not be built
    """
    try:
        entry = SyncLogEntry(
            provider=provider,
            direction=SyncDirection(direction).value,
            status=SyncStatus(status).value,
            entity_type=entity_type,
            local_id=str(local_id) if local_id is not None else None,
            remote_id=str(remote_id) if remote_id is not None else None,
            message=message,
            error_message=error_message,
            payload=_json_safe(payload),
        )
        session.add(entry)
        # Note: Caller is responsible for committing the session

        logger.info(f"Sync log: {entry.direction} {provider} {entity_type} {entry.status} - {message or error_message}")
        return entry

    except Exception as e:
        logger.error(f"Failed to create sync log entry: {e}")
        # Don't raise exception - audit failures should not break business logic
        return None


def record_inbound(session, provider: str, event_type: str, external_event_id, outcome):
    """
    Record the outcome of one inbound webhook delivery.

    Args:
        session: Database session
        provider: Webhook provider
        event_type: Provider event type tag
        external_event_id: Provider event ID (may be None)
        outcome: HandlerResult produced by the router
    """
    return log_sync(
        session,
        provider=provider,
        direction=SyncDirection.INBOUND,
        status=outcome.status,
        entity_type=entity_type_for_event(event_type),
        local_id=outcome.local_id,
        remote_id=external_event_id,
        message=outcome.message,
        error_message=outcome.message if outcome.status == SyncStatus.FAILED else None,
        payload=outcome.payload,
    )


def record_outbound(session, provider: str, status: SyncStatus, entity_type: str,
                    local_id=None, remote_id=None, message=None, error_message=None):
    """Record one outbound side-effect attempt."""
    return log_sync(
        session,
        provider=provider,
        direction=SyncDirection.OUTBOUND,
        status=status,
        entity_type=entity_type,
        local_id=local_id,
        remote_id=remote_id,
        message=message,
        error_message=error_message,
    )


def get_sync_log(
    session,
    limit: int = 100,
    offset: int = 0,
    provider: str = None,
    direction: SyncDirection = None,
    status: SyncStatus = None,
    entity_type: str = None
):
    """
    Retrieve sync log entries with optional filters, newest first.

    Returns:
        List of SyncLogEntry objects
    """
    query = session.query(SyncLogEntry)

    if provider:
        query = query.filter(SyncLogEntry.provider == provider)

    if direction:
        query = query.filter(SyncLogEntry.direction == SyncDirection(direction).value)

    if status:
        query = query.filter(SyncLogEntry.status == SyncStatus(status).value)

    if entity_type:
        query = query.filter(SyncLogEntry.entity_type == entity_type)

    query = query.order_by(SyncLogEntry.created_at.desc(), SyncLogEntry.id.desc())
    query = query.limit(limit).offset(offset)

    return query.all()
