from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Boolean, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockprobe.database import Base


class Store(Base):
    __tablename__ = "stores"

    store_id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    retailer_id = Column(String(50), ForeignKey("retailers.retailer_id"), nullable=False, index=True)
    store_name = Column(String(300), nullable=False)
    street = Column(String(300))
    street_number = Column(String(50))
    city = Column(String(200), nullable=False)
    province = Column(String(100), nullable=False)
    postal_code = Column(String(20))
    latitude = Column(Numeric(10, 8))
    longitude = Column(Numeric(11, 8))
    vtex_pickup_point_id = Column(String(200))  # Pickup point id registered with the platform
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    retailer = relationship("Retailer", back_populates="stores")
