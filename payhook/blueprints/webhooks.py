"""
Webhooks Blueprint for payment processor notifications.
Handles Square payment and refund events.
"""

import json
import logging
from functools import partial
from flask import Blueprint, Response, request, jsonify, current_app
from payhook.database import get_session
from payhook.exceptions import PayhookError, AuthenticationFailure, MalformedPayload, UnknownProvider
from payhook.services.event_ledger import EventLedger
from payhook.services.event_router import (
    process_event, parse_event_type, side_effect_ids, deliver_side_effects, DuplicateDelivery
)
from payhook.services.signature_service import verify_signature, SIGNATURE_HEADER
from payhook.services.square_client import get_square_client
from payhook.blueprints.metrics import record_webhook

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')

SUPPORTED_PROVIDERS = {'square'}


def _text(body: str, status: int = 200) -> Response:
    return Response(body, status=status, mimetype='text/plain')


@webhooks_bp.errorhandler(PayhookError)
def handle_webhook_error(error):
    """Auth, parse and routing failures are the only non-200 answers."""
    logger.warning(f"Webhook rejected [{error.status_code}]: {error.message}")
    return _text(error.message, error.status_code)


def _signed_url() -> str:
    """URL the sender signed; configurable when a proxy rewrites the host."""
    return current_app.config.get('WEBHOOK_PUBLIC_URL') or request.url


def _reject_constant(name):
    # NaN, Infinity and -Infinity are not JSON
    raise MalformedPayload()


def _parse_event(body: bytes) -> dict:
    try:
        event = json.loads(body, parse_constant=_reject_constant)
    except ValueError:
        raise MalformedPayload()
    if not isinstance(event, dict):
        raise MalformedPayload()
    return event


@webhooks_bp.route('/<provider>', methods=['POST'])
def receive_webhook(provider):
    """
    Handle payment processor webhook notifications.

    Expected events:
    - payment.completed
    - payment.updated
    - refund.created / refund.updated

    Always answers 200 once the request is authenticated and parsed;
    processing failures are recorded on the ledger row and in sync_log.
    """
    if provider not in SUPPORTED_PROVIDERS:
        raise UnknownProvider(provider)

    body = request.get_data()

    # Verify signature
    signature = request.headers.get(SIGNATURE_HEADER, '')
    secret = current_app.config.get('SQUARE_WEBHOOK_SIGNATURE_KEY')
    if not verify_signature(body, _signed_url(), signature, secret):
        record_webhook(provider, 'unknown', 'rejected')
        raise AuthenticationFailure()

    event = _parse_event(body)

    event_id = event.get('event_id')
    event_id = str(event_id) if event_id else None
    event_type = str(event.get('type') or 'unknown')

    # Bounded label set for metrics
    metric_type = event_type if parse_event_type(event_type) else 'other'

    logger.info(f"Received {provider} webhook: type={event_type}, event_id={event_id}")

    session = get_session()
    ledger = EventLedger(session, provider)

    event_row, already_processed = ledger.record_delivery(event_id, event_type, event)
    if already_processed:
        record_webhook(provider, metric_type, 'duplicate')
        return _text('Already processed')

    try:
        result = process_event(
            session,
            ledger,
            event_row.id,
            event_type,
            external_event_id=event_id,
            order_client=get_square_client(),
        )
    except DuplicateDelivery:
        record_webhook(provider, metric_type, 'duplicate')
        return _text('Already processed')

    # Label by the stored type, which is what the handler ran
    stored_type = event_row.event_type
    record_webhook(provider, stored_type if parse_event_type(stored_type) else 'other', result.status.value)
    logger.info(f"Processed {provider} webhook {event_id}: {result.status.value} - {result.message}")

    response = _text('OK')
    message_ids = side_effect_ids(result)
    if message_ids:
        response.call_on_close(partial(
            _deliver_after_response, current_app._get_current_object(), message_ids, event_id
        ))
    return response


def _deliver_after_response(app, message_ids, external_event_id):
    """Send receipts and accounting entries once the sender has its 200."""
    with app.app_context():
        deliver_side_effects(get_session(), message_ids, external_event_id)


@webhooks_bp.route('/health', methods=['GET'])
def webhook_health():
    """Endpoint to verify the webhook receiver is reachable."""
    return jsonify({
        'status': 'ok',
        'message': 'Webhook endpoint is active'
    }), 200
