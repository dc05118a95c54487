from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from stockprobe.database import Base


class Sku(Base):
    """A platform SKU as discovered in a retailer's catalog."""
    __tablename__ = "skus"

    id = Column(Integer, primary_key=True, index=True)
    retailer_host = Column(String(500), nullable=False, index=True)
    item_id = Column(String(50), nullable=False)  # Platform-internal SKU id
    name = Column(String(500))
    ean = Column(String(20), index=True)

    __table_args__ = (
        UniqueConstraint("retailer_host", "item_id", name="uq_sku_host_item"),
    )

    # Relationships
    sellers = relationship("SkuSeller", back_populates="sku")


class SkuSeller(Base):
    __tablename__ = "sku_sellers"

    id = Column(Integer, primary_key=True, index=True)
    sku_db_id = Column(Integer, ForeignKey("skus.id"), nullable=False)
    seller_id = Column(String(50), nullable=False)
    seller_name = Column(String(200))
    is_default = Column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("sku_db_id", "seller_id", name="uq_sku_seller"),
    )

    # Relationships
    sku = relationship("Sku", back_populates="sellers")
