"""Tests for catalog snapshot loading."""

import pytest

from stockprobe.models import (
    ProductToTrack,
    Retailer,
    RetailerHostConfig,
    Sku,
    SkuSeller,
    Store,
)
from stockprobe.services.catalog import (
    SqlCatalog,
    normalize_host,
    parse_sales_channels,
)

HOST = "www.retailer-a.test"


def _store(store_id, retailer_id="ret-a", **overrides):
    values = {
        "store_id": store_id,
        "retailer_id": retailer_id,
        "store_name": f"Store {store_id}",
        "city": "CABA",
        "province": "Buenos Aires",
        "postal_code": "1425",
        "vtex_pickup_point_id": f"pp-{store_id}",
        "is_active": True,
    }
    values.update(overrides)
    return Store(**values)


@pytest.fixture
def catalog(session_factory):
    db = session_factory()
    db.add_all([
        Retailer(retailer_id="ret-a", display_name="Retailer A", vtex_host=f"https://{HOST}", is_active=True),
        Retailer(retailer_id="ret-b", display_name="Retailer B", vtex_host="https://www.retailer-b.test", is_active=True),
        Retailer(retailer_id="ret-c", display_name="Retailer C", vtex_host="https://www.retailer-c.test", is_active=False),
    ])
    db.flush()
    db.add_all([
        RetailerHostConfig(retailer_host=HOST, retailer_id="ret-a", sales_channels="2,1", enabled=True),
        RetailerHostConfig(retailer_host="www.retailer-b.test", retailer_id="ret-b", sales_channels="x", enabled=False),
        RetailerHostConfig(retailer_host="www.retailer-c.test", retailer_id="ret-c", sales_channels="1", enabled=True),
        _store(1),
        _store(2, postal_code=None),
        _store(3, vtex_pickup_point_id=None),
        _store(4, vtex_pickup_point_id=""),
        _store(5, is_active=False),
        _store(6, retailer_id="ret-b"),
        _store(7, retailer_id="ret-c"),
        _store(8, latitude=-34.6037, longitude=-58.3816),
        ProductToTrack(ean="7791", owner="Adeco", product_name="Yerba", track=True),
        ProductToTrack(ean="7792", owner="Competitor", product_name="Cafe", track=True),
        ProductToTrack(ean="7793", owner="Competitor", product_name="Te", track=False),
    ])
    sku_a = Sku(retailer_host=HOST, item_id="101", ean="7791")
    sku_b = Sku(retailer_host="www.retailer-b.test", item_id="201", ean="7791")
    sku_c = Sku(retailer_host=HOST, item_id="103", ean="7793")
    db.add_all([sku_a, sku_b, sku_c])
    db.flush()
    db.add_all([
        SkuSeller(sku_db_id=sku_a.id, seller_id="1", is_default=True),
        SkuSeller(sku_db_id=sku_a.id, seller_id="7"),
        SkuSeller(sku_db_id=sku_b.id, seller_id="1"),
        SkuSeller(sku_db_id=sku_c.id, seller_id="1"),
    ])
    db.commit()
    db.close()
    return SqlCatalog(session_factory)


class TestParsing:
    @pytest.mark.parametrize("value,expected", [
        ("1", (1,)),
        ("2,1", (2, 1)),
        (" 3 , 4 ", (3, 4)),
        ("x", (1,)),
        ("2,abc", (2, 1)),
        ("0", (1,)),
        ("", (1,)),
        (None, (1,)),
    ])
    def test_sales_channels(self, value, expected):
        assert parse_sales_channels(value) == expected

    @pytest.mark.parametrize("value,expected", [
        ("https://www.Retailer-A.test/", "www.retailer-a.test"),
        ("http://x.test", "x.test"),
        ("x.test", "x.test"),
        (None, ""),
    ])
    def test_normalize_host(self, value, expected):
        assert normalize_host(value) == expected


class TestRetailerConfig:
    def test_found(self, catalog):
        config = catalog.get_retailer_config(HOST)

        assert config.enabled is True
        assert config.sales_channels == (2, 1)
        assert config.primary_sales_channel == 2
        assert config.display_name == "Retailer A"

    def test_lookup_ignores_scheme(self, catalog):
        assert catalog.get_retailer_config(f"https://{HOST}/").host == HOST

    def test_missing(self, catalog):
        assert catalog.get_retailer_config("unknown.test") is None

    def test_invalid_channels_fall_back(self, catalog):
        assert catalog.get_retailer_config("www.retailer-b.test").sales_channels == (1,)

    def test_enabled_only(self, catalog):
        hosts = [c.host for c in catalog.list_enabled_retailers()]

        assert hosts == [HOST, "www.retailer-c.test"]

    def test_specific_host(self, catalog):
        assert [c.host for c in catalog.list_enabled_retailers(HOST)] == [HOST]


class TestTrackedProducts:
    def test_only_tracked(self, catalog):
        products = catalog.load_tracked_products()

        assert [p.ean for p in products] == ["7791", "7792"]
        assert products[0].owner == "Adeco"


class TestSkuSellers:
    def test_pairs_for_host(self, catalog):
        pairs = catalog.resolve_sku_sellers(HOST, ["7791", "7792"])

        assert [(p.sku_id, p.seller_id, p.ean) for p in pairs] == [("101", "1", "7791"), ("101", "7", "7791")]

    def test_untracked_ean_excluded(self, catalog):
        assert catalog.resolve_sku_sellers(HOST, ["7791"]) == catalog.resolve_sku_sellers(HOST, ["7791", "9999"])

    def test_empty(self, catalog):
        assert catalog.resolve_sku_sellers(HOST, []) == []


class TestStoreTargets:
    """Eligible stores: active, with pickup point and postal code, on the host."""

    def test_eligibility(self, catalog):
        stores = catalog.load_store_targets(HOST)

        assert [s.store_id for s in stores] == [1, 8]
        assert stores[0].pickup_point_id == "pp-1"
        assert stores[0].postal_code == "1425"

    def test_inactive_retailer(self, catalog):
        assert catalog.load_store_targets("www.retailer-c.test") == []

    def test_other_retailer(self, catalog):
        assert [s.store_id for s in catalog.load_store_targets("www.retailer-b.test")] == [6]

    def test_coordinates(self, catalog):
        store = catalog.load_store_targets(HOST)[1]

        assert store.geo == pytest.approx((-58.3816, -34.6037))

    def test_unknown_host(self, catalog):
        assert catalog.load_store_targets("unknown.test") == []
