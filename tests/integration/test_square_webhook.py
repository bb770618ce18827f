"""
Integration tests for POST /webhooks/square.
Exercise the full path: signature check, ledger, routing, reconciliation, audit.
"""

import time

import pytest
from prometheus_client import REGISTRY

from payhook.models import Payment, Booking, ProductOrder, WebhookEvent, SyncLogEntry, OutboxMessage
from payhook.services import outbox_service, payment_service
from payhook.services.event_ledger import EventLedger

LOCAL_URL = 'http://localhost/webhooks/square'


def inbound_entries(session):
    return session.query(SyncLogEntry).filter(SyncLogEntry.direction == 'inbound').order_by(SyncLogEntry.id).all()


def deliveries(outcome, event_type='payment.completed'):
    value = REGISTRY.get_sample_value(
        'webhook_deliveries_total',
        {'provider': 'square', 'event_type': event_type, 'outcome': outcome}
    )
    return value or 0


class TestAuthentication:
    """Signature verification on the webhook endpoint."""

    def test_invalid_signature_rejected(self, post_event, make_event, session, signature_key):
        response = post_event(make_event(), headers={'x-square-hmacsha256-signature': 'invalid-signature'})

        assert response.status_code == 403
        assert response.get_data(as_text=True) == 'Invalid signature'
        assert session.query(WebhookEvent).count() == 0
        assert session.query(SyncLogEntry).count() == 0

    def test_missing_signature_rejected(self, post_event, make_event, signature_key):
        response = post_event(make_event())

        assert response.status_code == 403

    def test_valid_signature_accepted(self, post_event, make_event, signature_key):
        response = post_event(make_event(), signature_key=signature_key)

        assert response.status_code == 200
        assert response.get_data(as_text=True) == 'OK'

    def test_signature_over_request_url_without_public_url(self, app, post_event, make_event, monkeypatch):
        monkeypatch.setitem(app.config, 'SQUARE_WEBHOOK_SIGNATURE_KEY', 'test-webhook-key')
        monkeypatch.setitem(app.config, 'WEBHOOK_PUBLIC_URL', None)

        ok = post_event(make_event(), signature_key='test-webhook-key', url=LOCAL_URL)
        wrong_url = post_event(make_event(event_id='evt_2'), signature_key='test-webhook-key')

        assert ok.status_code == 200
        assert wrong_url.status_code == 403

    def test_no_key_configured_skips_verification(self, post_event, make_event):
        response = post_event(make_event(), headers={'x-square-hmacsha256-signature': 'garbage'})

        assert response.status_code == 200
        assert response.get_data(as_text=True) == 'OK'


class TestRequestValidation:

    def test_invalid_json(self, post_event, session):
        response = post_event('this is not json{')

        assert response.status_code == 400
        assert response.get_data(as_text=True) == 'Invalid JSON'
        assert session.query(WebhookEvent).count() == 0

    @pytest.mark.parametrize('constant', ['NaN', 'Infinity', '-Infinity'])
    def test_non_finite_numbers_are_invalid_json(self, post_event, session, constant):
        body = '{"event_id": "evt_nan", "type": "payment.completed", "data": {"amount": ' + constant + '}}'

        response = post_event(body)

        assert response.status_code == 400
        assert response.get_data(as_text=True) == 'Invalid JSON'
        assert session.query(WebhookEvent).count() == 0

    def test_json_that_is_not_an_object(self, post_event, session):
        response = post_event('[1, 2, 3]')

        assert response.status_code == 400
        assert session.query(WebhookEvent).count() == 0

    def test_unknown_provider(self, client, session):
        response = client.post('/webhooks/stripe', data='{}')

        assert response.status_code == 404
        assert response.get_data(as_text=True) == 'Unknown provider'

    def test_health(self, client):
        response = client.get('/webhooks/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'ok'


class TestIdempotency:
    """The same event_id is processed at most once."""

    def test_redelivery_is_acknowledged_without_reprocessing(self, post_event, make_event, session, booking):
        first = post_event(make_event())
        second = post_event(make_event())

        assert first.get_data(as_text=True) == 'OK'
        assert second.status_code == 200
        assert second.get_data(as_text=True) == 'Already processed'
        assert session.query(Payment).count() == 1
        assert session.query(WebhookEvent).count() == 1
        assert len(inbound_entries(session)) == 1

    def test_duplicate_counted_in_metrics(self, post_event, make_event, booking):
        before = deliveries('duplicate')

        post_event(make_event())
        post_event(make_event())

        assert deliveries('duplicate') == before + 1

    def test_event_stored_before_processing(self, post_event, make_event, session):
        post_event(make_event())

        event = session.query(WebhookEvent).one()
        assert event.provider == 'square'
        assert event.external_event_id == 'evt_test_123'
        assert event.event_type == 'payment.completed'
        assert event.payload['data']['object']['payment']['id'] == 'sq_pay_abc'
        assert event.is_processed is True
        assert event.attempts == 1


class TestPaymentCompleted:
    """Reconciliation through the endpoint."""

    def test_links_payment_to_booking(self, post_event, make_event, session, booking):
        booking_id = booking.id

        response = post_event(make_event(payment={'tenders': [{'type': 'CARD'}]}))

        assert response.get_data(as_text=True) == 'OK'
        payment = session.query(Payment).one()
        assert payment.booking_id == booking_id
        assert payment.amount_in_cents == 5000
        assert payment.method == 'card'
        assert payment.status == 'paid'
        entries = inbound_entries(session)
        assert len(entries) == 1
        assert entries[0].status == 'success'
        assert entries[0].entity_type == 'payment'
        assert entries[0].remote_id == 'evt_test_123'
        assert entries[0].message == f"Auto-linked payment to booking #{booking_id}"

    def test_deposit(self, post_event, make_event, session, booking):
        booking_id = booking.id

        post_event(make_event(payment={'note': 'Lash set (deposit)'}))

        stored = session.get(Booking, booking_id)
        assert stored.deposit_paid_in_cents == 5000
        assert stored.deposit_paid_at is not None
        assert inbound_entries(session)[0].message.endswith('(deposit)')

    def test_booking_takes_precedence_over_product_order(self, post_event, make_event, session, booking,
                                                          product_order):
        booking_id = booking.id
        order_id = product_order.id

        post_event(make_event())

        payment = session.query(Payment).one()
        assert payment.booking_id == booking_id
        assert payment.order_id is None
        assert session.get(ProductOrder, order_id).status == 'inquiry'

    def test_product_order(self, post_event, make_event, session, product_order):
        order_id = product_order.id

        post_event(make_event())

        assert session.get(ProductOrder, order_id).status == 'in_progress'
        assert session.query(Payment).one().order_id == order_id

    def test_booking_resolved_through_square_order_reference(self, post_event, make_event, session, customer,
                                                            fake_order_client, monkeypatch):
        booking = Booking(client_id=customer.id)
        session.add(booking)
        session.commit()
        booking_id = booking.id
        order_client = fake_order_client({'sq_order_456': {'reference_id': str(booking_id)}})
        monkeypatch.setattr('payhook.blueprints.webhooks.get_square_client', lambda: order_client)

        post_event(make_event())

        assert session.query(Payment).one().booking_id == booking_id
        assert order_client.calls == ['sq_order_456']

    def test_unmatched_payment_is_skipped_for_manual_linking(self, post_event, make_event, session):
        response = post_event(make_event())

        assert response.get_data(as_text=True) == 'OK'
        assert session.query(Payment).count() == 0
        entries = session.query(SyncLogEntry).all()
        assert len(entries) == 1
        assert entries[0].status == 'skipped'
        assert 'manual linking' in entries[0].message
        assert entries[0].payload['square_payment_id'] == 'sq_pay_abc'
        assert entries[0].payload['square_order_id'] == 'sq_order_456'

    def test_side_effects_queued_and_attempted(self, post_event, make_event, session, booking):
        """Mail and accounting are not configured in tests; attempts are audited as skipped."""
        response = post_event(make_event())
        response.close()

        messages = session.query(OutboxMessage).order_by(OutboxMessage.id).all()
        assert [m.kind for m in messages] == ['receipt_email', 'books_payment']
        assert all(m.attempts == 1 for m in messages)
        assert all(m.status == 'failed' for m in messages)
        outbound = session.query(SyncLogEntry).filter(SyncLogEntry.direction == 'outbound').all()
        assert {(e.provider, e.status) for e in outbound} == {('mail', 'skipped'), ('zoho', 'skipped')}
        assert len(inbound_entries(session)) == 1

    def test_side_effects_wait_for_the_response(self, post_event, make_event, session, booking, monkeypatch):
        """A slow accounting call runs after the 200 is handed back, not before."""
        calls = []

        class SlowBooksClient:
            def record_payment(self, **kwargs):
                time.sleep(0.2)
                calls.append(kwargs)
                return {'payment': {'payment_id': 'zb_1'}}

        monkeypatch.setattr(outbox_service, 'get_books_client', lambda: SlowBooksClient())

        response = post_event(make_event())

        assert response.status_code == 200
        assert response.get_data(as_text=True) == 'OK'
        assert calls == []
        books = session.query(OutboxMessage).filter_by(kind='books_payment').one()
        assert books.status == 'pending'
        assert books.attempts == 0

        response.close()

        assert len(calls) == 1
        assert calls[0]['invoice_id'] == 'inv_100'
        assert calls[0]['amount_in_cents'] == 5000
        session.expire_all()
        assert session.query(OutboxMessage).filter_by(kind='books_payment').one().status == 'sent'


class TestUpdatesAndRefunds:

    def test_payment_updated_without_local_payment(self, post_event, make_event, session):
        post_event(make_event(event_type='payment.updated'))

        entry = inbound_entries(session)[0]
        assert entry.status == 'skipped'
        assert entry.message == 'No matching local payment found'
        assert session.query(Payment).count() == 0

    def test_refunds_accumulate_across_events(self, post_event, make_event, session, paid_payment):
        payment_id = paid_payment.id
        refund = {'payment_id': 'sq_pay_abc', 'amount_money': {'amount': 2500, 'currency': 'USD'}}

        post_event(make_event(event_type='refund.created', event_id='evt_r1', refund=dict(refund, id='rf_1')))
        assert session.get(Payment, payment_id).status == 'partially_refunded'

        post_event(make_event(event_type='refund.created', event_id='evt_r2', refund=dict(refund, id='rf_2')))

        session.expire_all()
        stored = session.get(Payment, payment_id)
        assert stored.refunded_in_cents == 5000
        assert stored.status == 'refunded'
        entries = inbound_entries(session)
        assert len(entries) == 2
        assert {e.entity_type for e in entries} == {'refund'}

    def test_refund_for_unknown_payment(self, post_event, make_event, session):
        refund = {'id': 'rf_1', 'payment_id': 'sq_pay_missing', 'amount_money': {'amount': 100}}

        response = post_event(make_event(event_type='refund.created', refund=refund))

        assert response.status_code == 200
        assert inbound_entries(session)[0].message == 'No matching local payment for refund'


class TestRouting:

    def test_unknown_event_type_is_skipped(self, post_event, make_event, session):
        response = post_event(make_event(event_type='inventory.count.updated'))

        assert response.status_code == 200
        assert response.get_data(as_text=True) == 'OK'
        entry = inbound_entries(session)[0]
        assert entry.status == 'skipped'
        assert entry.message == 'Event type inventory.count.updated not handled'
        assert session.query(WebhookEvent).one().is_processed is True

    def test_unknown_event_type_uses_bounded_metric_label(self, post_event, make_event):
        before = deliveries('skipped', event_type='other')

        post_event(make_event(event_type='inventory.count.updated'))

        assert deliveries('skipped', event_type='other') == before + 1

    def test_stored_event_type_wins_over_redelivered_type(self, post_event, make_event, session):
        """A redelivery carrying a different type is handled and audited as the stored event."""
        refund = {'id': 'rf_1', 'payment_id': 'sq_pay_missing', 'amount_money': {'amount': 100}}
        EventLedger(session, 'square').record_delivery(
            'evt_test_123', 'refund.created', make_event(event_type='refund.created', refund=refund)
        )

        response = post_event(make_event())

        assert response.get_data(as_text=True) == 'OK'
        entry = inbound_entries(session)[0]
        assert entry.entity_type == 'refund'
        assert entry.message == 'No matching local payment for refund'
        assert session.query(Payment).count() == 0


class TestHandlerFault:
    """A handler exception is audited and acknowledged with 200."""

    @pytest.fixture
    def broken_resolver(self, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError('boom')
        monkeypatch.setattr(payment_service, 'resolve', boom)
        return monkeypatch

    def test_fault_is_recorded(self, post_event, make_event, session, booking, broken_resolver):
        response = post_event(make_event())

        assert response.status_code == 200
        assert response.get_data(as_text=True) == 'OK'
        entry = inbound_entries(session)[0]
        assert entry.status == 'failed'
        assert entry.error_message == 'boom'
        event = session.query(WebhookEvent).one()
        assert event.is_processed is False
        assert event.error_message == 'boom'
        assert session.query(Payment).count() == 0
        assert session.query(OutboxMessage).count() == 0

    def test_redelivery_after_fault_is_processed(self, post_event, make_event, session, booking, broken_resolver):
        post_event(make_event())
        broken_resolver.undo()

        response = post_event(make_event())

        assert response.get_data(as_text=True) == 'OK'
        session.expire_all()
        event = session.query(WebhookEvent).one()
        assert event.is_processed is True
        assert event.attempts == 2
        assert event.error_message is None
        assert session.query(Payment).count() == 1
        assert [e.status for e in inbound_entries(session)] == ['failed', 'success']


def test_metrics_endpoint(client, post_event, make_event):
    post_event(make_event(event_type='inventory.count.updated'))

    response = client.get('/metrics')

    assert response.status_code == 200
    assert b'webhook_deliveries_total' in response.data
