from sqlalchemy import Column, String, Boolean
from stockprobe.database import Base


class ProductToTrack(Base):
    __tablename__ = "products_to_track"

    ean = Column(String(20), primary_key=True)
    owner = Column(String(50), nullable=False)  # Own brand name or competitor
    product_name = Column(String(255))
    track = Column(Boolean, default=True)  # Only rows with track=True are probed
