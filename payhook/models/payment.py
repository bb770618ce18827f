"""
Payment model - local mirror of Square payments.

All monetary values are stored in cents.
"""
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payhook.database import Base
import enum


class PaymentStatus(str, enum.Enum):
    """Payment status."""
    PENDING = 'pending'
    PAID = 'paid'
    PARTIALLY_REFUNDED = 'partially_refunded'
    REFUNDED = 'refunded'
    FAILED = 'failed'


class PaymentMethod(str, enum.Enum):
    """Payment instrument."""
    CARD = 'card'
    CASH = 'cash'
    WALLET = 'wallet'
    GIFT_CARD = 'gift_card'
    OTHER = 'other'


# Square tender type -> our payment method
TENDER_METHODS = {
    'CARD': PaymentMethod.CARD,
    'CASH': PaymentMethod.CASH,
    'WALLET': PaymentMethod.WALLET,
    'SQUARE_GIFT_CARD': PaymentMethod.GIFT_CARD,
}


def normalize_payment_method(tender_type) -> str:
    """
    Map a Square tender type to a PaymentMethod value.

    Args:
        tender_type: Square tender type string (e.g. 'CARD'), or None

    Returns:
        str: one of the PaymentMethod values; unknown types map to 'other'
    """
    if isinstance(tender_type, PaymentMethod):
        return tender_type.value
    return TENDER_METHODS.get(tender_type, PaymentMethod.OTHER).value


class Payment(Base):
    """
    Reconciled payment.

    square_payment_id is the natural key linking a Square payment to at
    most one local row.
    """
    __tablename__ = 'payments'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    booking_id = Column(BigInteger, ForeignKey('bookings.id', ondelete='RESTRICT'), nullable=True, index=True)
    order_id = Column(BigInteger, ForeignKey('orders.id', ondelete='RESTRICT'), nullable=True, index=True)
    client_id = Column(BigInteger, ForeignKey('clients.id', ondelete='RESTRICT'), nullable=False, index=True)

    # Amounts (cents)
    amount_in_cents = Column(Integer, nullable=False)
    tip_in_cents = Column(Integer, nullable=False, default=0)
    refunded_in_cents = Column(Integer, nullable=False, default=0)

    method = Column(String(20), nullable=False, default=PaymentMethod.OTHER.value)
    status = Column(String(30), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    # Square integration
    square_payment_id = Column(String(100), unique=True)
    square_order_id = Column(String(100))
    square_receipt_url = Column(Text)

    notes = Column(Text)
    paid_at = Column(DateTime(timezone=True), index=True)
    refunded_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    booking = relationship('Booking', back_populates='payments')
    order = relationship('ProductOrder', back_populates='payments')
    client = relationship('Client')

    # Table constraints
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'partially_refunded', 'refunded', 'failed')",
            name='check_payment_status'
        ),
        CheckConstraint(
            "method IN ('card', 'cash', 'wallet', 'gift_card', 'other')",
            name='check_payment_method'
        ),
        CheckConstraint(
            'refunded_in_cents >= 0 AND refunded_in_cents <= amount_in_cents',
            name='check_refund_bounds'
        ),
    )

    def __repr__(self):
        return f'<Payment id={self.id} square_id={self.square_payment_id} amount={self.amount_in_cents} status={self.status}>'

