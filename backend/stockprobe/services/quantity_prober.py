"""
Quantity Prober

Finds the largest quantity the checkout confirms for pickup of one SKU at
one store, using an exponential climb followed by a binary search.
"""
import logging

from stockprobe.services.probe_client import BaseProbeClient
from stockprobe.services.probe_types import ProbeOutcome, SkuSellerPair, StoreTarget

logger = logging.getLogger(__name__)


async def probe_max_quantity(
    client: BaseProbeClient,
    host: str,
    store: StoreTarget,
    pair: SkuSellerPair,
    sales_channel: int,
    cap: int,
    country: str,
) -> ProbeOutcome:
    """
    Probe the maximum feasible pickup quantity, never above cap.

    Price, list price, currency and raw payload come from the quantity 1
    probe. A result equal to cap only means "at least cap". Client errors
    propagate to the caller.
    """
    if cap < 1:
        raise ValueError(f"cap must be >= 1, got {cap}")

    calls = 0

    async def available_at(quantity: int):
        nonlocal calls
        calls += 1
        return await client.simulate_single(
            host,
            sales_channel,
            pair.sku_id,
            quantity,
            pair.seller_id,
            country,
            store.postal_code,
            store.pickup_point_id,
            store.geo,
        )

    first = await available_at(1)
    if not first.available:
        return ProbeOutcome(
            available=False,
            max_qty=0,
            price=first.price,
            list_price=first.list_price,
            currency=first.currency,
            raw=first.raw,
            calls=calls,
        )

    # Exponential climb: lo is always a confirmed quantity
    lo, hi = 1, 2
    while hi <= cap:
        if not (await available_at(hi)).available:
            break
        lo, hi = hi, hi * 2
    if hi > cap:
        hi = cap + 1

    # Binary search in (lo, hi); hi is unavailable or past cap
    best = lo
    left, right = lo + 1, hi - 1
    while left <= right:
        mid = (left + right) // 2
        if (await available_at(mid)).available:
            best = mid
            left = mid + 1
        else:
            right = mid - 1

    logger.debug(
        f"Probed sku {pair.sku_id} at {store.pickup_point_id}: max {best} in {calls} calls"
    )

    return ProbeOutcome(
        available=True,
        max_qty=best,
        price=first.price,
        list_price=first.list_price,
        currency=first.currency,
        raw=first.raw,
        calls=calls,
    )
