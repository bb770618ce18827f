"""Product order model - shop orders paid through Square."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payhook.database import Base
import enum


class OrderStatus(str, enum.Enum):
    """Product order status."""
    INQUIRY = 'inquiry'
    QUOTED = 'quoted'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class ProductOrder(Base):
    """Product order (alternate resolution target for Square payments)."""

    __tablename__ = 'orders'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    client_id = Column(BigInteger, ForeignKey('clients.id'), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.INQUIRY.value)
    title = Column(String(200))
    square_order_id = Column(String(100), index=True)
    books_invoice_id = Column(String(100))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    client = relationship('Client', back_populates='orders')
    payments = relationship('Payment', back_populates='order')

    __table_args__ = (
        CheckConstraint(
            "status IN ('inquiry', 'quoted', 'in_progress', 'completed', 'cancelled')",
            name='check_order_status'
        ),
    )

    def __repr__(self):
        return f"<ProductOrder(id={self.id}, status='{self.status}')>"
