import copy
import json
import uuid

import pytest

from payhook import create_app
from payhook.database import get_session, create_all, drop_all
from payhook.models import Client, Booking, ProductOrder, Payment, PaymentStatus
from payhook.services.signature_service import compute_signature, SIGNATURE_HEADER

WEBHOOK_URL = '/webhooks/square'
PUBLIC_URL = 'https://example.com/webhooks/square'


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    return app


@pytest.fixture(autouse=True)
def database(app):
    """Fresh in-memory schema for every test."""
    with app.app_context():
        create_all()
        yield
        get_session().remove()
        drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session (the scoped session registry used by the app)."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture(scope='function')
def customer(session):
    """A client with an email on file."""
    suffix = str(uuid.uuid4())[:8]
    record = Client(first_name='Ana', last_name='Lopez', email=f'ana-{suffix}@test.com')
    session.add(record)
    session.commit()
    return record


@pytest.fixture(scope='function')
def booking(session, customer):
    """Booking linked to the default Square order id."""
    record = Booking(
        client_id=customer.id,
        service_name='Lash extensions',
        square_order_id='sq_order_456',
        books_invoice_id='inv_100',
    )
    session.add(record)
    session.commit()
    return record


@pytest.fixture(scope='function')
def product_order(session, customer):
    """Product order linked to the default Square order id."""
    record = ProductOrder(
        client_id=customer.id,
        title='Aftercare kit',
        square_order_id='sq_order_456',
    )
    session.add(record)
    session.commit()
    return record


@pytest.fixture(scope='function')
def paid_payment(session, booking):
    """A $50.00 payment already reconciled for the booking."""
    record = Payment(
        booking_id=booking.id,
        client_id=booking.client_id,
        amount_in_cents=5000,
        tip_in_cents=0,
        refunded_in_cents=0,
        method='card',
        status=PaymentStatus.PAID.value,
        square_payment_id='sq_pay_abc',
        square_order_id='sq_order_456',
    )
    session.add(record)
    session.commit()
    return record


def _make_event(event_type='payment.completed', event_id='evt_test_123', payment=None, refund=None, **overrides):
    event = {
        'event_id': event_id,
        'type': event_type,
        'data': {
            'object': {
                'payment': {
                    'id': 'sq_pay_abc',
                    'amount_money': {'amount': 5000, 'currency': 'USD'},
                    'receipt_url': 'https://squareup.com/receipt/123',
                    'order_id': 'sq_order_456',
                },
            },
        },
    }
    if payment:
        event['data']['object']['payment'].update(payment)
    if refund is not None:
        event['data'] = {'object': {'refund': refund}}
    event.update(overrides)
    return copy.deepcopy(event)


@pytest.fixture
def make_event():
    """Factory for Square webhook event bodies."""
    return _make_event


@pytest.fixture
def post_event(client):
    """POST an event (dict or raw body) to the Square webhook endpoint."""
    def _post(event, signature_key=None, url=PUBLIC_URL, headers=None):
        body = event if isinstance(event, (bytes, str)) else json.dumps(event)
        all_headers = {'Content-Type': 'application/json'}
        if signature_key:
            all_headers[SIGNATURE_HEADER] = compute_signature(body, url, signature_key)
        all_headers.update(headers or {})
        return client.post(WEBHOOK_URL, data=body, headers=all_headers)
    return _post


@pytest.fixture
def signature_key(app, monkeypatch):
    """Enable signature verification against the public webhook URL."""
    key = 'test-webhook-key'
    monkeypatch.setitem(app.config, 'SQUARE_WEBHOOK_SIGNATURE_KEY', key)
    monkeypatch.setitem(app.config, 'WEBHOOK_PUBLIC_URL', PUBLIC_URL)
    return key


class FakeOrderClient:
    """Stands in for SquareClient.get_order."""

    def __init__(self, orders=None, error=None):
        self.orders = orders or {}
        self.error = error
        self.calls = []

    def get_order(self, order_id):
        self.calls.append(order_id)
        if self.error is not None:
            raise self.error
        return self.orders.get(order_id, {'id': order_id, 'reference_id': None})


@pytest.fixture
def fake_order_client():
    return FakeOrderClient
