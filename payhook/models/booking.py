"""Booking model - a scheduled service appointment."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payhook.database import Base


class Booking(Base):
    """
    Service booking.

    Scheduling owns most of this row; reconciliation only reads
    square_order_id / books_invoice_id and writes the deposit columns.
    """

    __tablename__ = 'bookings'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    client_id = Column(BigInteger, ForeignKey('clients.id'), nullable=False, index=True)
    status = Column(String(30), nullable=False, default='confirmed')
    service_name = Column(String(200))

    # Square order created for this booking (its reference_id is the booking id)
    square_order_id = Column(String(100), index=True)

    # Accounting invoice on file
    books_invoice_id = Column(String(100))

    # Deposit tracking
    deposit_paid_in_cents = Column(Integer)
    deposit_paid_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    client = relationship('Client', back_populates='bookings')
    payments = relationship('Payment', back_populates='booking')

    def __repr__(self):
        return f"<Booking(id={self.id}, square_order_id='{self.square_order_id}')>"

