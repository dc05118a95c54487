from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal


class RetailerRunResult(BaseModel):
    retailer_host: str
    stores_processed: int = 0
    product_checks: int = 0
    available_count: int = 0
    error_message: str | None = None
    skipped: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None


class RunResult(BaseModel):
    """Aggregate of a multi-retailer run."""
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: float | None = None
    total_retailers: int = 0
    total_products_to_track: int = 0
    own_brand_products: int = 0
    competitor_products: int = 0
    stores_processed: int = 0
    product_checks: int = 0
    available_count: int = 0
    error_message: str | None = None
    retailers: dict[str, RetailerRunResult] = {}


class StoreAvailability(BaseModel):
    id: int
    retailer_host: str
    pickup_point_id: str
    sku_id: str
    seller_id: str
    sales_channel: int
    ean: str | None = None
    country_code: str | None = None
    postal_code: str | None = None
    is_available: bool
    max_feasible_qty: int
    price: Decimal | None = None
    list_price: Decimal | None = None
    currency: str
    captured_at: datetime
    error_message: str | None = None

    class Config:
        from_attributes = True


class ProbeLog(BaseModel):
    id: int
    retailer_host: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    stores_processed: int | None = 0
    product_checks: int | None = 0
    available_count: int | None = 0
    status: str | None = None
    error_message: str | None = None

    class Config:
        from_attributes = True
