"""Models package - exports all SQLAlchemy models."""
# Business records owned by other subsystems
from payhook.models.client import Client
from payhook.models.booking import Booking
from payhook.models.product_order import ProductOrder, OrderStatus

# Reconciliation
from payhook.models.payment import Payment, PaymentStatus, PaymentMethod, normalize_payment_method
from payhook.models.webhook_event import WebhookEvent
from payhook.models.sync_log import SyncLogEntry, SyncDirection, SyncStatus
from payhook.models.outbox import OutboxMessage, OutboxKind, OutboxStatus

__all__ = [
    'Client', 'Booking', 'ProductOrder', 'OrderStatus',
    'Payment', 'PaymentStatus', 'PaymentMethod', 'normalize_payment_method',
    'WebhookEvent',
    'SyncLogEntry', 'SyncDirection', 'SyncStatus',
    'OutboxMessage', 'OutboxKind', 'OutboxStatus',
]
