"""Shared fakes and fixtures for the probe tests."""

import asyncio
import json
import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from stockprobe.config import Settings
from stockprobe.database import Base
from stockprobe.services.probe_client import BaseProbeClient, ProbeError
from stockprobe.services.probe_types import (
    BatchItemResult,
    BatchSimulationResult,
    CartResult,
    RetailerConfig,
    SimulationResult,
    SkuSearchResult,
    SkuSellerPair,
    StoreTarget,
    TrackedProduct,
)

HOST = "www.retailer-a.test"


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "product_delay_seconds": 0,
        "batch_delay_seconds": 0,
        "store_delay_seconds": 0,
        "retailer_delay_seconds": 0,
        "retry_backoff_seconds": 0,
        "retry_attempts": 3,
        "probe_mode": "batch",
        "resolve_missing_eans": False,
        "max_stores": None,
        "max_skus": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_store(pickup_point_id: str, store_id: int = 1, postal_code: str = "1425") -> StoreTarget:
    return StoreTarget(
        pickup_point_id=pickup_point_id,
        postal_code=postal_code,
        city="CABA",
        province="Buenos Aires",
        store_id=store_id,
        store_name=f"Store {pickup_point_id}",
    )


def make_pair(sku_id: str, seller_id: str = "1", ean: str = None) -> SkuSellerPair:
    return SkuSellerPair(sku_id=sku_id, seller_id=seller_id, ean=ean or f"779{sku_id}")


class FakeProbeClient(BaseProbeClient):
    """
    In-process stand-in for the platform.

    stock maps (pickup_point_id, sku_id) to the largest quantity the fake
    checkout confirms; missing keys are never available.
    """

    mode = "fake"

    def __init__(self, stock=None, settings=None):
        super().__init__(settings=settings or make_settings())
        self.stock = stock or {}
        self.single_calls = []
        self.batch_calls = []
        self.session_calls = []
        self.search_calls = []
        self.search_results = {}
        self.failing_skus = set()
        self.failing_stores = set()
        self.warmup_ok = {}
        self.cart_ok = {}
        self.batch_delay = 0
        self.active = 0
        self.max_active = 0

    @property
    def remote_calls(self) -> int:
        return (
            len(self.single_calls) + len(self.batch_calls)
            + len(self.session_calls) + len(self.search_calls)
        )

    async def warmup_session(self, host, sales_channel=1):
        self.session_calls.append(("warmup", host))
        return self.warmup_ok.get(host, True)

    async def create_cart(self, host, sales_channel=1):
        self.session_calls.append(("cart", host))
        if not self.cart_ok.get(host, True):
            return CartResult(success=False, raw="CHK003")
        return CartResult(success=True, order_form_id=f"of-{host}", raw="{}")

    async def search_sku_by_external_code(self, host, ean):
        self.search_calls.append((host, ean))
        hit = self.search_results.get(ean)
        if hit is None:
            return SkuSearchResult(success=False, raw="[]")
        sku_id, seller_id = hit
        return SkuSearchResult(success=True, sku_id=sku_id, seller_id=seller_id, raw="[...]")

    async def simulate_single(
        self, host, sales_channel, sku_id, quantity, seller_id,
        country, postal_code, pickup_point_id, geo=None,
    ):
        self.single_calls.append((pickup_point_id, sku_id, quantity))
        if sku_id in self.failing_skus:
            raise ProbeError(f"simulate failed for {sku_id}")
        limit = self.stock.get((pickup_point_id, sku_id), 0)
        return SimulationResult(
            available=quantity <= limit,
            price=Decimal("1999.90"),
            list_price=Decimal("2499.00"),
            currency="ARS",
            raw=json.dumps({"sku": sku_id, "quantity": quantity}),
        )

    async def simulate_batch(
        self, host, sales_channel, pairs, country,
        postal_code, pickup_point_id, city, province,
    ):
        self.batch_calls.append((pickup_point_id, [p.sku_id for p in pairs]))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.batch_delay)
            if pickup_point_id in self.failing_stores:
                raise ProbeError(f"simulate failed at {pickup_point_id}")
            items = {
                (p.sku_id, p.seller_id): BatchItemResult(
                    available=self.stock.get((pickup_point_id, p.sku_id), 0) >= 1,
                    price=Decimal("100.50"),
                )
                for p in pairs
            }
            return BatchSimulationResult(raw='{"items": []}', items=items, currency="ARS")
        finally:
            self.active -= 1


class FakeCatalog:
    """Catalog snapshot source backed by plain lists."""

    def __init__(self, configs=None, products=None, pairs=None, stores=None):
        self.configs = {c.host: c for c in (configs or [])}
        self.products = products or []
        self.pairs = pairs or {}
        self.stores = stores or {}

    def get_retailer_config(self, host):
        return self.configs.get(host)

    def list_enabled_retailers(self, specific_host=None):
        configs = [c for c in self.configs.values() if c.enabled]
        if specific_host:
            configs = [c for c in configs if c.host == specific_host]
        return configs

    def load_tracked_products(self):
        return list(self.products)

    def resolve_sku_sellers(self, host, eans):
        return [p for p in self.pairs.get(host, []) if p.ean in eans]

    def load_store_targets(self, host):
        return list(self.stores.get(host, []))


class InMemorySink:
    """Result sink keeping the latest record per key."""

    def __init__(self, failing_skus=()):
        self.records = {}
        self.writes = []
        self.failing_skus = set(failing_skus)
        self._lock = threading.Lock()

    def upsert(self, record):
        if record.key.sku_id in self.failing_skus:
            raise RuntimeError(f"write failed for {record.key.sku_id}")
        with self._lock:
            self.writes.append(record.key)
            self.records[record.key] = record

    def get(self, pickup_point_id, sku_id):
        for key, record in self.records.items():
            if key.pickup_point_id == pickup_point_id and key.sku_id == sku_id:
                return record
        return None


def make_catalog(stores, pairs, host=HOST, enabled=True, sales_channels=(1,)):
    products = [TrackedProduct(ean=p.ean, owner="Adeco") for p in pairs]
    return FakeCatalog(
        configs=[RetailerConfig(host=host, enabled=enabled, sales_channels=sales_channels)],
        products=products,
        pairs={host: pairs},
        stores={host: stores},
    )


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def session_factory(tmp_path):
    import stockprobe.models  # noqa: F401

    engine = create_engine(
        f"sqlite:///{tmp_path / 'stockprobe_test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()
