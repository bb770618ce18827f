"""
Entity resolution: map a Square order ID to a local Booking or ProductOrder.

Bookings are resolved first, using every strategy, before product orders
are considered at all.
"""
import logging
from typing import Optional

from payhook.exceptions import IntegrationError
from payhook.models.booking import Booking
from payhook.models.product_order import ProductOrder

logger = logging.getLogger(__name__)

MAX_BOOKING_ID = 2 ** 63 - 1


class ResolvedEntity:
    """A booking or product order matched to a Square order."""

    BOOKING = 'booking'
    PRODUCT_ORDER = 'product_order'

    def __init__(self, kind: str, record, strategy: str):
        self.kind = kind
        self.record = record
        self.strategy = strategy

    @property
    def is_booking(self):
        return self.kind == self.BOOKING

    def __repr__(self):
        return f"<ResolvedEntity {self.kind} #{self.record.id} via {self.strategy}>"


def parse_booking_reference(reference_id) -> Optional[int]:
    """
    Parse a Square order reference_id as a booking ID.

    Returns:
        int booking ID, or None for missing/non-numeric references
    """
    if reference_id is None:
        return None
    text = str(reference_id).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    value = int(text)
    # Out of BIGINT range cannot be a booking
    if value > MAX_BOOKING_ID:
        return None
    return value


def _booking_by_order_id(session, square_order_id: str) -> Optional[Booking]:
    return session.query(Booking).filter(
        Booking.square_order_id == square_order_id
    ).first()


def _booking_by_order_reference(session, square_order_id: str, order_client) -> Optional[Booking]:
    """Fetch the order from Square and use its reference_id as the booking ID."""
    try:
        order = order_client.get_order(square_order_id)
    except IntegrationError as e:
        logger.warning(f"Square order lookup failed for {square_order_id}: {e.message}")
        return None
    except Exception as e:
        logger.warning(f"Unexpected error looking up Square order {square_order_id}: {e}")
        return None

    booking_id = parse_booking_reference((order or {}).get('reference_id'))
    if booking_id is None:
        logger.info(f"Square order {square_order_id} has no numeric reference_id")
        return None

    return session.get(Booking, booking_id)


def resolve_booking(session, square_order_id: Optional[str], order_client=None) -> Optional[Booking]:
    """
    Find the booking for a Square order.

    Strategies, in order:
    1. bookings.square_order_id == square_order_id
    2. Square order reference_id parsed as the booking ID (only when a
       Square client is available; failures count as no match)

    Args:
        session: Database session
        square_order_id: Square order ID (None -> no match)
        order_client: Object with get_order(order_id), or None

    Returns:
        Booking or None
    """
    return _resolve_booking_with_strategy(session, square_order_id, order_client)[0]


def _resolve_booking_with_strategy(session, square_order_id, order_client):
    if not square_order_id:
        return None, None

    booking = _booking_by_order_id(session, square_order_id)
    if booking:
        return booking, 'order_id'

    if order_client is not None:
        booking = _booking_by_order_reference(session, square_order_id, order_client)
        if booking:
            return booking, 'order_reference'

    return None, None


def resolve_product_order(session, square_order_id: Optional[str]) -> Optional[ProductOrder]:
    """Find the product order whose square_order_id matches."""
    if not square_order_id:
        return None
    return session.query(ProductOrder).filter(
        ProductOrder.square_order_id == square_order_id
    ).first()


def resolve(session, square_order_id: Optional[str], order_client=None) -> Optional[ResolvedEntity]:
    """
    Resolve a Square order to a booking or, failing that, a product order.

    Returns:
        ResolvedEntity or None when nothing matches
    """
    booking, strategy = _resolve_booking_with_strategy(session, square_order_id, order_client)
    if booking:
        logger.info(f"Resolved Square order {square_order_id} to booking #{booking.id} via {strategy}")
        return ResolvedEntity(ResolvedEntity.BOOKING, booking, strategy)

    order = resolve_product_order(session, square_order_id)
    if order:
        logger.info(f"Resolved Square order {square_order_id} to product order #{order.id}")
        return ResolvedEntity(ResolvedEntity.PRODUCT_ORDER, order, 'order_id')

    return None
