from sqlalchemy import Column, Integer, String, DateTime, Text
from stockprobe.database import Base


class ProbeLog(Base):
    """Log of availability probe runs for monitoring."""
    __tablename__ = "probe_logs"

    id = Column(Integer, primary_key=True, index=True)
    retailer_host = Column(String(500), index=True)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    stores_processed = Column(Integer, default=0)
    product_checks = Column(Integer, default=0)
    available_count = Column(Integer, default=0)
    status = Column(String(20))  # 'success', 'failed', 'partial', 'skipped'
    error_message = Column(Text)
