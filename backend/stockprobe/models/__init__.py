from stockprobe.models.retailer import Retailer, RetailerHostConfig
from stockprobe.models.store import Store
from stockprobe.models.tracked_product import ProductToTrack
from stockprobe.models.sku import Sku, SkuSeller
from stockprobe.models.availability import StoreAvailability
from stockprobe.models.probe_log import ProbeLog

__all__ = [
    "Retailer",
    "RetailerHostConfig",
    "Store",
    "ProductToTrack",
    "Sku",
    "SkuSeller",
    "StoreAvailability",
    "ProbeLog",
]
