from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, Text, UniqueConstraint, Index
from stockprobe.database import Base


class StoreAvailability(Base):
    """Latest pickup availability for one SKU/seller at one pickup point.

    One live row per (retailer_host, pickup_point_id, sku_id, seller_id,
    sales_channel); a new probe overwrites the previous values.
    """
    __tablename__ = "store_availability"

    id = Column(Integer, primary_key=True, index=True)
    retailer_host = Column(String(255), nullable=False)
    pickup_point_id = Column(String(200), nullable=False)
    sku_id = Column(String(50), nullable=False)
    seller_id = Column(String(50), nullable=False)
    sales_channel = Column(Integer, nullable=False)

    ean = Column(String(20), index=True)
    country_code = Column(String(5))
    postal_code = Column(String(20))

    is_available = Column(Boolean, nullable=False, default=False, index=True)
    max_feasible_qty = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(18, 2))
    list_price = Column(Numeric(18, 2))
    currency = Column(String(10), nullable=False, default="ARS")
    captured_at = Column(DateTime(timezone=True), nullable=False)
    raw_payload = Column(Text)  # Truncated simulate response, postmortem only
    error_message = Column(String(500))

    __table_args__ = (
        UniqueConstraint(
            "retailer_host", "pickup_point_id", "sku_id", "seller_id", "sales_channel",
            name="uq_store_availability_key",
        ),
        Index("idx_store_availability_host_captured", "retailer_host", "captured_at"),
    )
