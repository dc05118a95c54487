"""
Result Sink

Shapes availability records and writes them with one live row per
(retailer_host, pickup_point_id, sku_id, seller_id, sales_channel).
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from stockprobe.config import get_settings
from stockprobe.models import StoreAvailability
from stockprobe.services.probe_client import normalize_country
from stockprobe.services.probe_types import (
    AvailabilityKey,
    AvailabilityRecord,
    SkuSellerPair,
    StoreTarget,
)

logger = logging.getLogger(__name__)

KEY_COLUMNS = ["retailer_host", "pickup_point_id", "sku_id", "seller_id", "sales_channel"]


def truncate(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None:
        return None
    return value[:max_length]


def build_record(
    host: str,
    store: StoreTarget,
    pair: SkuSellerPair,
    sales_channel: int,
    available: bool,
    max_qty: int,
    price: Optional[Decimal] = None,
    list_price: Optional[Decimal] = None,
    currency: Optional[str] = None,
    raw: Optional[str] = None,
    error_message: Optional[str] = None,
    country: Optional[str] = None,
    captured_at: Optional[datetime] = None,
) -> AvailabilityRecord:
    """
    Build the record for one probe result.

    Unavailable results always carry quantity 0. The raw payload and error
    message are cut to the configured column limits.
    """
    settings = get_settings()
    return AvailabilityRecord(
        key=AvailabilityKey(
            retailer_host=host,
            pickup_point_id=store.pickup_point_id,
            sku_id=pair.sku_id,
            seller_id=pair.seller_id,
            sales_channel=sales_channel,
        ),
        is_available=available,
        max_feasible_qty=max(0, max_qty) if available else 0,
        price=price,
        list_price=list_price,
        currency=currency or settings.default_currency,
        captured_at=captured_at or datetime.now(timezone.utc),
        raw_payload=truncate(raw, settings.raw_payload_max_length),
        error_message=truncate(error_message, settings.error_message_max_length),
        ean=pair.ean,
        country_code=normalize_country(country or settings.country_code),
        postal_code=store.postal_code,
    )


class ResultSink(ABC):
    """Where availability records go. upsert must be idempotent by key."""

    @abstractmethod
    def upsert(self, record: AvailabilityRecord) -> None:
        pass


class SqlAlchemyResultSink(ResultSink):
    """
    Row-level upsert into store_availability.

    Uses INSERT ... ON CONFLICT DO UPDATE on PostgreSQL and SQLite, so
    concurrent writers on different keys never block each other. Each call
    opens its own session, which makes it safe to run from worker threads.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        if session_factory is None:
            from stockprobe.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    @staticmethod
    def _values(record: AvailabilityRecord) -> dict:
        return {
            "retailer_host": record.key.retailer_host,
            "pickup_point_id": record.key.pickup_point_id,
            "sku_id": record.key.sku_id,
            "seller_id": record.key.seller_id,
            "sales_channel": record.key.sales_channel,
            "ean": record.ean,
            "country_code": record.country_code,
            "postal_code": record.postal_code,
            "is_available": record.is_available,
            "max_feasible_qty": record.max_feasible_qty,
            "price": record.price,
            "list_price": record.list_price,
            "currency": record.currency,
            "captured_at": record.captured_at,
            "raw_payload": record.raw_payload,
            "error_message": record.error_message,
        }

    def _insert_statement(self, db: Session, values: dict):
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")

        stmt = insert(StoreAvailability).values(**values)
        update_columns = {k: stmt.excluded[k] for k in values if k not in KEY_COLUMNS}
        return stmt.on_conflict_do_update(index_elements=KEY_COLUMNS, set_=update_columns)

    def upsert(self, record: AvailabilityRecord) -> None:
        db = self.session_factory()
        try:
            db.execute(self._insert_statement(db, self._values(record)))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
