"""
VTEX Probe Client

Async client for the public checkout endpoints used to probe pickup
availability. Two flavours share session handling, SKU search and the
retry policy:

- VtexSimulationClient: stateless orderForms/simulation calls (mode "direct")
- VtexOrderFormClient: a fresh order form per probe with the pickup SLA
  attached as shipping data (mode "orderform")

Use create_probe_client() to get the one selected by settings.
"""
import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

import httpx

from stockprobe.config import Settings, get_settings
from stockprobe.services.probe_types import (
    BatchItemResult,
    BatchSimulationResult,
    CartResult,
    SimulationResult,
    SkuSearchResult,
    SkuSellerPair,
)

logger = logging.getLogger(__name__)

SIMULATION_PATH = "/api/checkout/pub/orderForms/simulation"
ORDER_FORM_PATH = "/api/checkout/pub/orderForm"
SEARCH_PATH = "/api/catalog_system/pub/products/search"
SEGMENT_PATH = "/_v/segment"

PICKUP_CHANNEL = "pickup-in-point"

# ISO alpha-2 <-> alpha-3 for the markets we probe
COUNTRY_ALPHA3 = {
    "AR": "ARG",
    "BR": "BRA",
    "CL": "CHL",
    "CO": "COL",
    "MX": "MEX",
    "PE": "PER",
    "UY": "URY",
}
COUNTRY_ALPHA2 = {v: k for k, v in COUNTRY_ALPHA3.items()}

ERROR_BODY_EXCERPT = 500


class ProbeError(Exception):
    """Base error for probe failures."""


class VtexHttpError(ProbeError):
    """The platform answered with a non-success status."""

    def __init__(self, status_code: int, body: str = "", url: str = ""):
        self.status_code = status_code
        self.body = (body or "")[:ERROR_BODY_EXCERPT]
        self.url = url
        super().__init__(f"HTTP {status_code} from {url or 'remote'}: {self.body[:120]}")


def normalize_country(code: Optional[str]) -> str:
    """Return the alpha-2 form of a country code ("ARG" -> "AR")."""
    if not code:
        return "AR"
    code = code.strip().upper()
    return COUNTRY_ALPHA2.get(code, code)


def vtex_country(code: Optional[str]) -> str:
    """Return the alpha-3 form the checkout API expects ("AR" -> "ARG")."""
    alpha2 = normalize_country(code)
    return COUNTRY_ALPHA3.get(alpha2, alpha2)


def cents_to_decimal(value: Any) -> Optional[Decimal]:
    """Checkout amounts are integer cents."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value)) / Decimal(100)
    except (ArithmeticError, ValueError):
        return None


def build_segment_cookie(sales_channel: int, currency: str = "ARS", country: str = "AR") -> str:
    """Encode the vtex_segment cookie that pins the session to a sales channel."""
    segment = {
        "campaigns": None,
        "channel": str(sales_channel),
        "priceTables": None,
        "regionId": None,
        "utm_campaign": None,
        "utm_source": None,
        "utmi_campaign": None,
        "currencyCode": currency,
        "currencySymbol": "$",
        "countryCode": vtex_country(country),
        "cultureInfo": "es-AR",
        "channelPrivacy": "public",
    }
    raw = json.dumps(segment, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def parse_currency(data: dict, default: str = "ARS") -> str:
    prefs = data.get("storePreferencesData") or {}
    return prefs.get("currencyCode") or default


def parse_item_prices(item: dict) -> tuple[Optional[Decimal], Optional[Decimal]]:
    """(price, list_price) for one checkout item."""
    selling = item.get("sellingPrice")
    if selling is None:
        selling = item.get("price")
    return cents_to_decimal(selling), cents_to_decimal(item.get("listPrice"))


def has_pickup_sla(data: dict, pickup_point_id: str) -> bool:
    """True when some logistics entry offers the pickup SLA for this point."""
    logistics = data.get("logisticsInfo")
    if logistics is None:
        logistics = (data.get("shippingData") or {}).get("logisticsInfo")
    for info in logistics or []:
        for sla in info.get("slas") or []:
            if sla.get("id") == pickup_point_id and sla.get("deliveryChannel") == PICKUP_CHANNEL:
                return True
    return False


def parse_single_simulation(body: str, pickup_point_id: str, default_currency: str = "ARS") -> SimulationResult:
    data = json.loads(body) if body else {}
    items = data.get("items") or []
    price, list_price = parse_item_prices(items[0]) if items else (None, None)
    return SimulationResult(
        available=has_pickup_sla(data, pickup_point_id),
        price=price,
        list_price=list_price,
        currency=parse_currency(data, default_currency),
        raw=body,
    )


def parse_order_form(body: str, pickup_point_id: str, default_currency: str = "ARS") -> SimulationResult:
    """
    Read an order form returned by the shippingData attachment.

    The pickup SLAs sit under shippingData.logisticsInfo. An item reported
    as "available" also counts as available.
    """
    data = json.loads(body) if body else {}
    items = data.get("items") or []
    first = items[0] if items else {}
    price, list_price = parse_item_prices(first) if items else (None, None)
    return SimulationResult(
        available=has_pickup_sla(data, pickup_point_id) or first.get("availability") == "available",
        price=price,
        list_price=list_price,
        currency=parse_currency(data, default_currency),
        raw=body,
    )


def parse_batch_simulation(body: str, pairs: list[SkuSellerPair], default_currency: str = "ARS") -> BatchSimulationResult:
    """
    Map a multi-item checkout response back to (sku_id, seller_id) pairs.

    Items are matched by id and seller; entries missing either fall back to
    their position in the request. Pairs missing from the response are
    reported unavailable.
    """
    data = json.loads(body) if body else {}
    items = data.get("items") or []
    result = BatchSimulationResult(raw=body, currency=parse_currency(data, default_currency))

    for index, item in enumerate(items):
        requested = pairs[index] if index < len(pairs) else None
        sku_id = item.get("id")
        seller_id = item.get("seller")
        if sku_id is None and requested:
            sku_id = requested.sku_id
        if seller_id is None and requested:
            seller_id = requested.seller_id
        if sku_id is None or seller_id is None:
            continue
        price, list_price = parse_item_prices(item)
        result.items[(str(sku_id), str(seller_id))] = BatchItemResult(
            available=item.get("availability") == "available",
            price=price,
            list_price=list_price,
        )

    for pair in pairs:
        result.items.setdefault((pair.sku_id, pair.seller_id), BatchItemResult(available=False))

    return result


def pickup_logistics(count: int, pickup_point_id: str) -> list[dict]:
    return [
        {
            "itemIndex": index,
            "selectedSla": pickup_point_id,
            "selectedDeliveryChannel": PICKUP_CHANNEL,
        }
        for index in range(count)
    ]


class BaseProbeClient(ABC):
    """
    Shared session, search and transport handling.

    The httpx.AsyncClient is created lazily so one client instance can be
    reused across retailers; pass http_client to inject a transport in tests.
    """

    mode: str = ""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self._client = http_client
        self._owns_client = http_client is None

    # ============== Transport ==============

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.request_timeout_seconds,
                follow_redirects=True,
                proxy=self.settings.proxy_url,
                headers={
                    "User-Agent": self.settings.user_agent,
                    "Accept": "application/json, text/plain, */*",
                    "Accept-Language": self.settings.accept_language,
                    "Accept-Encoding": "gzip, deflate",
                },
            )
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    @staticmethod
    def base_url(host: str) -> str:
        host = host.rstrip("/")
        if host.startswith("http://") or host.startswith("https://"):
            return host
        return f"https://{host}"

    async def request(self, method: str, host: str, path: str, **kwargs) -> httpx.Response:
        """
        Send a request with retries.

        Transport errors and 5xx responses are retried with exponential
        backoff; any other non-2xx raises VtexHttpError straight away.
        """
        url = f"{self.base_url(host)}{path}"
        attempts = max(1, self.settings.retry_attempts)
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                response = await self.client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"{method} {url} failed (attempt {attempt + 1}/{attempts}): {e}")
            else:
                if response.is_success:
                    return response
                error = VtexHttpError(response.status_code, response.text, url)
                if response.status_code < 500:
                    raise error
                last_error = error
                logger.warning(f"{method} {url} returned {response.status_code} (attempt {attempt + 1}/{attempts})")

            if attempt < attempts - 1:
                await asyncio.sleep((2 ** attempt) * self.settings.retry_backoff_seconds)

        if isinstance(last_error, VtexHttpError):
            raise last_error
        raise ProbeError(f"{method} {url} failed after {attempts} attempts: {last_error}") from last_error

    # ============== Session ==============

    async def warmup_session(self, host: str, sales_channel: int = 1) -> bool:
        """Load the storefront so the cookie jar carries a checkout session."""
        self.client.cookies.set(
            "vtex_segment",
            build_segment_cookie(sales_channel, self.settings.default_currency, self.settings.country_code),
            domain=httpx.URL(self.base_url(host)).host,
        )
        try:
            await self.request("GET", host, "/", headers={"Accept": "text/html,*/*"})
        except ProbeError as e:
            logger.error(f"Warmup failed for {host}: {e}")
            return False

        # Segment and orderForm priming are best effort
        for path in (SEGMENT_PATH, ORDER_FORM_PATH):
            try:
                await self.request("GET", host, path)
            except ProbeError as e:
                logger.debug(f"Warmup step {path} failed for {host}: {e}")

        return True

    async def create_cart(self, host: str, sales_channel: int = 1) -> CartResult:
        try:
            response = await self.request("POST", host, ORDER_FORM_PATH, params={"sc": sales_channel}, json={})
        except ProbeError as e:
            logger.error(f"Could not create order form on {host}: {e}")
            return CartResult(success=False, raw=str(e))

        body = response.text
        try:
            order_form_id = response.json().get("orderFormId")
        except ValueError:
            order_form_id = None
        return CartResult(success=bool(order_form_id), order_form_id=order_form_id, raw=body)

    async def search_sku_by_external_code(self, host: str, ean: str) -> SkuSearchResult:
        """Resolve an EAN to the first item and first seller of the first product."""
        try:
            response = await self.request(
                "GET", host, SEARCH_PATH, params={"ft": ean, "_from": 0, "_to": 0}
            )
            products = response.json()
        except (ProbeError, ValueError) as e:
            logger.warning(f"SKU search for {ean} on {host} failed: {e}")
            return SkuSearchResult(success=False, raw=str(e))

        body = response.text
        if not isinstance(products, list) or not products:
            return SkuSearchResult(success=False, raw=body)

        product = products[0]
        items = product.get("items") or []
        if not items:
            return SkuSearchResult(success=False, product_name=product.get("productName"), raw=body)

        item = items[0]
        sellers = item.get("sellers") or []
        seller_id = sellers[0].get("sellerId") if sellers else None
        return SkuSearchResult(
            success=bool(item.get("itemId") and seller_id),
            sku_id=item.get("itemId"),
            seller_id=seller_id,
            product_name=product.get("productName"),
            raw=body,
        )

    # ============== Simulation ==============

    @abstractmethod
    async def simulate_single(
        self,
        host: str,
        sales_channel: int,
        sku_id: str,
        quantity: int,
        seller_id: str,
        country: str,
        postal_code: str,
        pickup_point_id: str,
        geo: Optional[tuple[float, float]] = None,
    ) -> SimulationResult:
        """Probe one SKU at one quantity for pickup at one point."""
        pass

    @abstractmethod
    async def simulate_batch(
        self,
        host: str,
        sales_channel: int,
        pairs: list[SkuSellerPair],
        country: str,
        postal_code: str,
        pickup_point_id: str,
        city: str,
        province: str,
    ) -> BatchSimulationResult:
        """Probe several SKUs at quantity 1 in one call."""
        pass


class VtexSimulationClient(BaseProbeClient):
    """Stateless checkout simulation."""

    mode = "direct"

    def simulation_payload(
        self,
        items: list[dict],
        country: str,
        postal_code: str,
        pickup_point_id: str,
        geo: Optional[tuple[float, float]] = None,
    ) -> dict:
        payload = {
            "items": items,
            "postalCode": postal_code,
            "country": vtex_country(country),
            "shippingData": {
                "logisticsInfo": pickup_logistics(len(items), pickup_point_id),
            },
        }
        if geo is not None:
            payload["geoCoordinates"] = list(geo)
        return payload

    async def simulate_single(
        self,
        host,
        sales_channel,
        sku_id,
        quantity,
        seller_id,
        country,
        postal_code,
        pickup_point_id,
        geo=None,
    ) -> SimulationResult:
        payload = self.simulation_payload(
            [{"id": sku_id, "quantity": quantity, "seller": seller_id}],
            country,
            postal_code,
            pickup_point_id,
            geo,
        )
        response = await self.request("POST", host, SIMULATION_PATH, params={"sc": sales_channel}, json=payload)
        return parse_single_simulation(response.text, pickup_point_id, self.settings.default_currency)

    async def simulate_batch(
        self,
        host,
        sales_channel,
        pairs,
        country,
        postal_code,
        pickup_point_id,
        city,
        province,
    ) -> BatchSimulationResult:
        payload = self.simulation_payload(
            [{"id": p.sku_id, "quantity": 1, "seller": p.seller_id} for p in pairs],
            country,
            postal_code,
            pickup_point_id,
        )
        response = await self.request("POST", host, SIMULATION_PATH, params={"sc": sales_channel}, json=payload)
        return parse_batch_simulation(response.text, pairs, self.settings.default_currency)


class VtexOrderFormClient(BaseProbeClient):
    """
    Probe through a real order form.

    Three calls per probe: create the form, add the items, then attach
    pickup shipping data for the selected SLA.
    """

    mode = "orderform"

    async def _new_order_form(self, host: str, sales_channel: int) -> str:
        response = await self.request("POST", host, ORDER_FORM_PATH, params={"sc": sales_channel}, json={})
        order_form_id = response.json().get("orderFormId")
        if not order_form_id:
            raise ProbeError(f"No orderFormId returned by {host}")
        return order_form_id

    async def _attach_pickup(
        self,
        host: str,
        sales_channel: int,
        order_form_id: str,
        item_count: int,
        country: str,
        postal_code: str,
        pickup_point_id: str,
        city: str = "",
        province: str = "",
        geo: Optional[tuple[float, float]] = None,
    ) -> httpx.Response:
        address = {
            "addressType": "pickup",
            "country": vtex_country(country),
            "postalCode": postal_code,
            "city": city,
            "state": province,
        }
        if geo is not None:
            address["geoCoordinates"] = list(geo)
        return await self.request(
            "POST",
            host,
            f"{ORDER_FORM_PATH}/{order_form_id}/attachments/shippingData",
            params={"sc": sales_channel},
            json={
                "address": address,
                "logisticsInfo": pickup_logistics(item_count, pickup_point_id),
            },
        )

    async def _run_flow(
        self,
        host: str,
        sales_channel: int,
        order_items: list[dict],
        country: str,
        postal_code: str,
        pickup_point_id: str,
        city: str = "",
        province: str = "",
        geo: Optional[tuple[float, float]] = None,
    ) -> str:
        order_form_id = await self._new_order_form(host, sales_channel)
        await self.request(
            "POST",
            host,
            f"{ORDER_FORM_PATH}/{order_form_id}/items",
            params={"sc": sales_channel},
            json={"orderItems": order_items},
        )
        response = await self._attach_pickup(
            host, sales_channel, order_form_id, len(order_items),
            country, postal_code, pickup_point_id, city, province, geo,
        )
        return response.text

    async def simulate_single(
        self,
        host,
        sales_channel,
        sku_id,
        quantity,
        seller_id,
        country,
        postal_code,
        pickup_point_id,
        geo=None,
    ) -> SimulationResult:
        body = await self._run_flow(
            host,
            sales_channel,
            [{"id": sku_id, "quantity": quantity, "seller": seller_id}],
            country,
            postal_code,
            pickup_point_id,
            geo=geo,
        )
        return parse_order_form(body, pickup_point_id, self.settings.default_currency)

    async def simulate_batch(
        self,
        host,
        sales_channel,
        pairs,
        country,
        postal_code,
        pickup_point_id,
        city,
        province,
    ) -> BatchSimulationResult:
        body = await self._run_flow(
            host,
            sales_channel,
            [{"id": p.sku_id, "quantity": 1, "seller": p.seller_id} for p in pairs],
            country,
            postal_code,
            pickup_point_id,
            city,
            province,
        )
        return parse_batch_simulation(body, pairs, self.settings.default_currency)


PROBE_CLIENTS = {
    VtexSimulationClient.mode: VtexSimulationClient,
    VtexOrderFormClient.mode: VtexOrderFormClient,
}


def create_probe_client(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> BaseProbeClient:
    """Build the probe client selected by probe_client_mode."""
    settings = settings or get_settings()
    client_cls = PROBE_CLIENTS.get(settings.probe_client_mode)
    if client_cls is None:
        raise ValueError(
            f"Unknown probe_client_mode '{settings.probe_client_mode}'. "
            f"Expected one of: {', '.join(PROBE_CLIENTS)}"
        )
    return client_cls(settings=settings, http_client=http_client)
