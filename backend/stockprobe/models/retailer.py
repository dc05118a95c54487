from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockprobe.database import Base


class Retailer(Base):
    __tablename__ = "retailers"

    retailer_id = Column(String(50), primary_key=True)
    display_name = Column(String(200), nullable=False)  # 'Carrefour', 'Vea', 'Jumbo'
    vtex_host = Column(String(500))  # 'https://www.carrefour.com.ar'
    public_host = Column(String(500))  # Fallback when the checkout host is not set
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    stores = relationship("Store", back_populates="retailer")
    host_config = relationship("RetailerHostConfig", back_populates="retailer", uselist=False)


class RetailerHostConfig(Base):
    """Per-host probing config: enabled flag and ordered sales channels."""
    __tablename__ = "vtex_retailer_configs"

    id = Column(Integer, primary_key=True, index=True)
    retailer_host = Column(String(500), unique=True, nullable=False, index=True)
    retailer_id = Column(String(50), ForeignKey("retailers.retailer_id"))
    sales_channels = Column(String(100), nullable=False, default="1")  # '1,2' - first is primary
    enabled = Column(Boolean, default=False, nullable=False)

    # Relationships
    retailer = relationship("Retailer", back_populates="host_config")
