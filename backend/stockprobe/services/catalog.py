"""
Catalog Lookups

Read-only snapshots of retailer config, tracked products, SKU/seller pairs
and store targets. Everything returned here is a plain frozen dataclass so
the orchestrator never holds a session across network calls.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from stockprobe.models import (
    ProductToTrack,
    Retailer,
    RetailerHostConfig,
    Sku,
    SkuSeller,
    Store,
)
from stockprobe.services.probe_types import (
    RetailerConfig,
    SkuSellerPair,
    StoreTarget,
    TrackedProduct,
)

logger = logging.getLogger(__name__)

DEFAULT_SALES_CHANNEL = 1


def normalize_host(host: Optional[str]) -> str:
    """Compare hosts without scheme, trailing slash or case."""
    if not host:
        return ""
    host = host.strip().lower()
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return host.rstrip("/")


def parse_sales_channels(value: Optional[str]) -> tuple[int, ...]:
    """
    Parse a comma-separated channel list, e.g. "1,2".

    Entries that are not positive integers become channel 1.
    """
    if not value or not value.strip():
        return (DEFAULT_SALES_CHANNEL,)

    channels = []
    for part in value.split(","):
        part = part.strip()
        try:
            channel = int(part)
        except ValueError:
            channel = DEFAULT_SALES_CHANNEL
        if channel < 1:
            channel = DEFAULT_SALES_CHANNEL
        channels.append(channel)
    return tuple(channels)


def _to_retailer_config(row: RetailerHostConfig) -> RetailerConfig:
    retailer = row.retailer
    return RetailerConfig(
        host=row.retailer_host,
        enabled=bool(row.enabled),
        sales_channels=parse_sales_channels(row.sales_channels),
        retailer_id=row.retailer_id,
        display_name=retailer.display_name if retailer else None,
    )


def get_retailer_config(db: Session, host: str) -> Optional[RetailerConfig]:
    """Config for one host, or None when the host is unknown."""
    wanted = normalize_host(host)
    for row in db.query(RetailerHostConfig).all():
        if normalize_host(row.retailer_host) == wanted:
            return _to_retailer_config(row)
    return None


def list_enabled_retailers(db: Session, specific_host: Optional[str] = None) -> list[RetailerConfig]:
    rows = (
        db.query(RetailerHostConfig)
        .filter(RetailerHostConfig.enabled == True)
        .order_by(RetailerHostConfig.retailer_host)
        .all()
    )
    configs = [_to_retailer_config(row) for row in rows]
    if specific_host:
        wanted = normalize_host(specific_host)
        configs = [c for c in configs if normalize_host(c.host) == wanted]
    return configs


def load_tracked_products(db: Session) -> list[TrackedProduct]:
    rows = (
        db.query(ProductToTrack)
        .filter(ProductToTrack.track == True)
        .order_by(ProductToTrack.ean)
        .all()
    )
    return [TrackedProduct(ean=r.ean, owner=r.owner or "", name=r.product_name) for r in rows]


def resolve_sku_sellers(db: Session, host: str, eans: list[str]) -> list[SkuSellerPair]:
    """Distinct (sku, seller) pairs on this host for the given EANs."""
    if not eans:
        return []

    wanted = normalize_host(host)
    rows = (
        db.query(Sku.item_id, SkuSeller.seller_id, Sku.ean, Sku.retailer_host)
        .join(SkuSeller, SkuSeller.sku_db_id == Sku.id)
        .filter(Sku.ean.in_(eans))
        .order_by(Sku.ean, Sku.item_id, SkuSeller.seller_id)
        .all()
    )

    pairs = []
    seen = set()
    for item_id, seller_id, ean, row_host in rows:
        if normalize_host(row_host) != wanted:
            continue
        pair = SkuSellerPair(sku_id=str(item_id), seller_id=str(seller_id), ean=ean)
        if (pair.sku_id, pair.seller_id) in seen:
            continue
        seen.add((pair.sku_id, pair.seller_id))
        pairs.append(pair)
    return pairs


def _retailer_ids_for_host(db: Session, host: str) -> set[str]:
    wanted = normalize_host(host)
    retailer_ids = set()

    for config in db.query(RetailerHostConfig).all():
        if config.retailer_id and normalize_host(config.retailer_host) == wanted:
            retailer_ids.add(config.retailer_id)

    for retailer in db.query(Retailer).all():
        if wanted in (normalize_host(retailer.vtex_host), normalize_host(retailer.public_host)):
            retailer_ids.add(retailer.retailer_id)

    return retailer_ids


def load_store_targets(db: Session, host: str) -> list[StoreTarget]:
    """
    Stores eligible for probing on a host.

    A store qualifies when it and its retailer are active, it has a pickup
    point id and a postal code, and its retailer is linked to the host.
    """
    retailer_ids = _retailer_ids_for_host(db, host)
    if not retailer_ids:
        return []

    stores = (
        db.query(Store)
        .join(Retailer, Retailer.retailer_id == Store.retailer_id)
        .filter(
            Store.retailer_id.in_(retailer_ids),
            Store.is_active == True,
            Retailer.is_active == True,
            Store.vtex_pickup_point_id.isnot(None),
            Store.vtex_pickup_point_id != "",
            Store.postal_code.isnot(None),
            Store.postal_code != "",
        )
        .order_by(Store.store_id)
        .all()
    )

    return [
        StoreTarget(
            pickup_point_id=s.vtex_pickup_point_id,
            postal_code=s.postal_code,
            city=s.city,
            province=s.province,
            store_id=s.store_id,
            store_name=s.store_name,
            latitude=float(s.latitude) if s.latitude is not None else None,
            longitude=float(s.longitude) if s.longitude is not None else None,
        )
        for s in stores
    ]


class SqlCatalog:
    """Catalog snapshot source backed by the database, one session per lookup."""

    def __init__(self, session_factory=None):
        if session_factory is None:
            from stockprobe.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    def _read(self, fn, *args):
        db = self.session_factory()
        try:
            return fn(db, *args)
        finally:
            db.close()

    def get_retailer_config(self, host: str) -> Optional[RetailerConfig]:
        return self._read(get_retailer_config, host)

    def list_enabled_retailers(self, specific_host: Optional[str] = None) -> list[RetailerConfig]:
        return self._read(list_enabled_retailers, specific_host)

    def load_tracked_products(self) -> list[TrackedProduct]:
        return self._read(load_tracked_products)

    def resolve_sku_sellers(self, host: str, eans: list[str]) -> list[SkuSellerPair]:
        return self._read(resolve_sku_sellers, host, eans)

    def load_store_targets(self, host: str) -> list[StoreTarget]:
        return self._read(load_store_targets, host)
