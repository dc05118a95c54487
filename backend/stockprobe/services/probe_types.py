"""
Probe Types

Immutable snapshots loaded at the start of a run and the result objects
passed between the probe client, the quantity prober and the result sink.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional


# ============== Run Snapshots ==============

@dataclass(frozen=True)
class TrackedProduct:
    """A tracked EAN. Owner is only used for reporting counts."""
    ean: str
    owner: str = ""
    name: Optional[str] = None


@dataclass(frozen=True)
class RetailerConfig:
    """Probing config for one retailer host."""
    host: str
    enabled: bool
    sales_channels: tuple[int, ...] = (1,)
    retailer_id: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def primary_sales_channel(self) -> int:
        return self.sales_channels[0] if self.sales_channels else 1


@dataclass(frozen=True)
class StoreTarget:
    """A physical store eligible for pickup probing."""
    pickup_point_id: str
    postal_code: str
    city: str
    province: str
    store_id: int
    store_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def geo(self) -> Optional[tuple[float, float]]:
        """(lon, lat) as the platform expects, when both are known."""
        if self.latitude is None or self.longitude is None:
            return None
        return (self.longitude, self.latitude)

    def label(self) -> str:
        return f"{self.store_id} ({self.city}, {self.province})"


@dataclass(frozen=True)
class SkuSellerPair:
    """A tracked EAN resolved to a platform SKU and seller for one host."""
    sku_id: str
    seller_id: str
    ean: str


@dataclass
class WorkUnit:
    """One store with the batches of SKUs it will be probed for."""
    store: StoreTarget
    batches: list[list[SkuSellerPair]] = field(default_factory=list)

    @property
    def sku_count(self) -> int:
        return sum(len(batch) for batch in self.batches)


# ============== Client Results ==============

@dataclass
class SimulationResult:
    """Outcome of one single-SKU simulate call."""
    available: bool
    price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None
    currency: str = "ARS"
    raw: str = ""


@dataclass
class BatchItemResult:
    available: bool
    price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None


@dataclass
class BatchSimulationResult:
    """Outcome of one multi-SKU simulate call, keyed by (sku_id, seller_id)."""
    raw: str = ""
    items: dict[tuple[str, str], BatchItemResult] = field(default_factory=dict)
    currency: str = "ARS"


@dataclass
class CartResult:
    success: bool
    order_form_id: Optional[str] = None
    raw: str = ""


@dataclass
class SkuSearchResult:
    success: bool
    sku_id: Optional[str] = None
    seller_id: Optional[str] = None
    product_name: Optional[str] = None
    raw: str = ""


@dataclass
class ProbeOutcome:
    """Result of the adaptive quantity search for one SKU at one store."""
    available: bool
    max_qty: int
    price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None
    currency: str = "ARS"
    raw: str = ""
    calls: int = 0


# ============== Persisted Unit ==============

@dataclass(frozen=True)
class AvailabilityKey:
    retailer_host: str
    pickup_point_id: str
    sku_id: str
    seller_id: str
    sales_channel: int


@dataclass
class AvailabilityRecord:
    """The value written through the result sink, one per key."""
    key: AvailabilityKey
    is_available: bool
    max_feasible_qty: int
    currency: str
    captured_at: datetime
    price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None
    raw_payload: Optional[str] = None
    error_message: Optional[str] = None
    ean: Optional[str] = None
    country_code: Optional[str] = None
    postal_code: Optional[str] = None


# ============== Run Summaries ==============

@dataclass
class RetailerRunSummary:
    retailer_host: str
    stores_processed: int = 0
    product_checks: int = 0
    available_count: int = 0
    error_message: Optional[str] = None
    skipped: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def availability_rate(self) -> float:
        if self.product_checks == 0:
            return 0.0
        return self.available_count / self.product_checks

    def to_dict(self) -> dict:
        return {
            "retailer_host": self.retailer_host,
            "stores_processed": self.stores_processed,
            "product_checks": self.product_checks,
            "available_count": self.available_count,
            "error_message": self.error_message,
            "skipped": self.skipped,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class RunSummary:
    """Aggregate over every retailer processed by one multi-retailer run."""
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_retailers: int = 0
    total_products_to_track: int = 0
    own_brand_products: int = 0
    competitor_products: int = 0
    stores_processed: int = 0
    product_checks: int = 0
    available_count: int = 0
    retailer_results: dict[str, RetailerRunSummary] = field(default_factory=dict)
    error_message: Optional[str] = None

    def add(self, result: RetailerRunSummary):
        self.retailer_results[result.retailer_host] = result
        self.stores_processed += result.stores_processed
        self.product_checks += result.product_checks
        self.available_count += result.available_count

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": (
                (self.completed_at - self.started_at).total_seconds()
                if self.completed_at else None
            ),
            "total_retailers": self.total_retailers,
            "total_products_to_track": self.total_products_to_track,
            "own_brand_products": self.own_brand_products,
            "competitor_products": self.competitor_products,
            "stores_processed": self.stores_processed,
            "product_checks": self.product_checks,
            "available_count": self.available_count,
            "error_message": self.error_message,
            "retailers": {host: r.to_dict() for host, r in self.retailer_results.items()},
        }
