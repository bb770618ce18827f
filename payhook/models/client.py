"""Client model - the person a booking or order belongs to."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payhook.database import Base


class Client(Base):
    """Client profile (owned by onboarding; read here for receipts)."""

    __tablename__ = 'clients'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False, default='')
    last_name = Column(String(100))
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    bookings = relationship('Booking', back_populates='client')
    orders = relationship('ProductOrder', back_populates='client')

    def __repr__(self):
        return f"<Client(id={self.id}, email='{self.email}')>"
