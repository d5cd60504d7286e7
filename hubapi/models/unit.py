from datetime import datetime
from sqlalchemy import Column, String, Numeric, Boolean, DateTime
from sqlalchemy.orm import relationship
from ..database import Base


class Unit(Base):
    """
    Read-only mirror of a rentable unit from the catalog service.

    Only pricing and existence are consulted here; the row is also the
    lock target that serializes booking writes for one unit on PostgreSQL.
    """
    __tablename__ = "units"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False, default="")

    # Pricing basis: CoBnB reads daily_price, MonthlyKey amortizes monthly_price
    daily_price = Column(Numeric(12, 2), nullable=True)
    monthly_price = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="SAR")

    is_active = Column(Boolean, default=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bookings = relationship("Booking", back_populates="unit")

    def __repr__(self):
        return f"<Unit {self.id} daily={self.daily_price} monthly={self.monthly_price}>"
