"""
Availability Orchestrator

Runs pickup availability probes for every tracked product at every eligible
store of a retailer.

- One task per store, at most `parallelism` stores in flight
- SKUs are split into randomly sized batches, processed in order per store
- Each batch is persisted before the next one starts
- A failing SKU, batch or record is logged and skipped, never the whole run

run_all_retailers() drives every enabled retailer in turn and never raises.
"""
import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Optional

from stockprobe.config import Settings, get_settings
from stockprobe.services.catalog import SqlCatalog
from stockprobe.services.probe_client import BaseProbeClient, create_probe_client
from stockprobe.services.probe_types import (
    RetailerConfig,
    RetailerRunSummary,
    RunSummary,
    SkuSellerPair,
    WorkUnit,
)
from stockprobe.services.quantity_prober import probe_max_quantity
from stockprobe.services.result_sink import ResultSink, SqlAlchemyResultSink, build_record

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PROBE_MODES = ("batch", "single")


def validate_run_parameters(parallelism: int, min_batch: int, max_batch: int):
    if min_batch < 1:
        raise ValueError(f"min_batch_size must be >= 1, got {min_batch}")
    if max_batch < min_batch:
        raise ValueError(f"max_batch_size ({max_batch}) must be >= min_batch_size ({min_batch})")
    if parallelism < 1:
        raise ValueError(f"parallelism must be >= 1, got {parallelism}")


def partition(
    pairs: list[SkuSellerPair],
    min_batch: int,
    max_batch: int,
    rng: random.Random,
) -> list[list[SkuSellerPair]]:
    """Split pairs into consecutive batches, each size drawn from [min_batch, max_batch]."""
    batches = []
    index = 0
    while index < len(pairs):
        size = rng.randint(min_batch, max_batch)
        batches.append(pairs[index:index + size])
        index += size
    return batches


class BatchOrchestrator:
    """Probe one retailer's stores with bounded store-level parallelism."""

    def __init__(
        self,
        client: BaseProbeClient,
        sink: ResultSink,
        catalog=None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.sink = sink
        self.catalog = catalog or SqlCatalog()
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()
        self.cancel_event = asyncio.Event()
        self._lock = asyncio.Lock()

    def cancel(self):
        """Stop before the next store, batch or product. In-flight calls finish."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    async def run(
        self,
        retailer_host: str,
        parallelism: Optional[int] = None,
        min_batch: Optional[int] = None,
        max_batch: Optional[int] = None,
        mode: Optional[str] = None,
        establish_session: bool = False,
    ) -> RetailerRunSummary:
        """
        Probe every tracked SKU at every eligible store of one retailer.

        Invalid batch sizes, parallelism or mode raise ValueError before any
        remote call. A missing or disabled retailer config yields an empty,
        skipped summary.
        """
        parallelism = parallelism if parallelism is not None else self.settings.parallelism
        min_batch = min_batch if min_batch is not None else self.settings.min_batch_size
        max_batch = max_batch if max_batch is not None else self.settings.max_batch_size
        mode = mode or self.settings.probe_mode

        validate_run_parameters(parallelism, min_batch, max_batch)
        if mode not in PROBE_MODES:
            raise ValueError(f"Unknown probe mode '{mode}'. Expected one of: {', '.join(PROBE_MODES)}")

        summary = RetailerRunSummary(retailer_host=retailer_host, started_at=datetime.now(timezone.utc))

        config = self.catalog.get_retailer_config(retailer_host)
        if config is None or not config.enabled:
            logger.info(f"No enabled config for {retailer_host}, nothing to probe")
            summary.skipped = True
            summary.completed_at = datetime.now(timezone.utc)
            return summary

        products = self.catalog.load_tracked_products()
        eans = [p.ean for p in products]
        pairs = self.catalog.resolve_sku_sellers(config.host, eans)
        stores = self.catalog.load_store_targets(config.host)

        if not stores or not (pairs or (eans and self.settings.resolve_missing_eans)):
            logger.info(f"{config.host}: {len(pairs)} SKU/seller pairs, {len(stores)} stores, nothing to probe")
            summary.skipped = True
            summary.completed_at = datetime.now(timezone.utc)
            return summary

        if establish_session:
            error = await self.establish_session(config)
            if error:
                summary.error_message = error
                summary.completed_at = datetime.now(timezone.utc)
                return summary

        if self.settings.resolve_missing_eans:
            pairs = pairs + await self.resolve_missing(config, eans, pairs)

        if self.settings.max_skus is not None and len(pairs) > self.settings.max_skus:
            logger.info(f"Limiting {config.host} to {self.settings.max_skus} of {len(pairs)} SKU/seller pairs")
            pairs = pairs[:self.settings.max_skus]
        if self.settings.max_stores is not None and len(stores) > self.settings.max_stores:
            logger.info(f"Limiting {config.host} to {self.settings.max_stores} of {len(stores)} stores")
            stores = stores[:self.settings.max_stores]

        if not pairs:
            logger.info(f"{config.host}: no SKU/seller pairs resolved, nothing to probe")
            summary.skipped = True
            summary.completed_at = datetime.now(timezone.utc)
            return summary

        units = [WorkUnit(store=s, batches=partition(pairs, min_batch, max_batch, self.rng)) for s in stores]

        logger.info(
            f"Probing {config.host} ({mode} mode): {len(stores)} stores x {len(pairs)} SKUs, "
            f"parallelism {parallelism}, batches {min_batch}-{max_batch}"
        )

        semaphore = asyncio.Semaphore(parallelism)

        async def process_with_semaphore(unit: WorkUnit):
            async with semaphore:
                await self._process_store(config, unit, mode, summary)

        await asyncio.gather(*(process_with_semaphore(u) for u in units))

        summary.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Finished {config.host}: {summary.stores_processed} stores, "
            f"{summary.product_checks} checks, {summary.available_count} available"
            + (" (cancelled)" if self.cancelled else "")
        )
        return summary

    async def establish_session(self, config: RetailerConfig) -> Optional[str]:
        """Warm up and create a cart. Returns an error message on failure."""
        sales_channel = config.primary_sales_channel
        if not await self.client.warmup_session(config.host, sales_channel):
            return f"Session warmup failed for {config.host}"
        cart = await self.client.create_cart(config.host, sales_channel)
        if not cart.success:
            return f"Could not create order form for {config.host}"
        return None

    async def resolve_missing(
        self,
        config: RetailerConfig,
        eans: list[str],
        pairs: list[SkuSellerPair],
    ) -> list[SkuSellerPair]:
        """Look up EANs with no catalog mapping through the platform search."""
        known = {p.ean for p in pairs}
        seen = {(p.sku_id, p.seller_id) for p in pairs}
        resolved = []

        for ean in eans:
            if ean in known or self.cancelled:
                continue
            result = await self.client.search_sku_by_external_code(config.host, ean)
            if result.success and (result.sku_id, result.seller_id) not in seen:
                seen.add((result.sku_id, result.seller_id))
                resolved.append(SkuSellerPair(sku_id=result.sku_id, seller_id=result.seller_id, ean=ean))
            await asyncio.sleep(self.settings.product_delay_seconds)

        if resolved:
            logger.info(f"Resolved {len(resolved)} unmapped EANs on {config.host} through search")
        return resolved

    async def _process_store(self, config: RetailerConfig, unit: WorkUnit, mode: str, summary: RetailerRunSummary):
        if self.cancelled:
            return

        store = unit.store
        for batch in unit.batches:
            if self.cancelled:
                break
            if mode == "batch":
                await self._probe_batch(config, unit, batch, summary)
            else:
                await self._probe_each(config, unit, batch, summary)
            await asyncio.sleep(self.settings.batch_delay_seconds)

        # A store cut short by cancellation is not counted.
        if self.cancelled:
            logger.info(f"Store {store.label()} interrupted on {config.host}")
            return

        async with self._lock:
            summary.stores_processed += 1

        logger.info(f"Store {store.label()} done on {config.host}")
        await asyncio.sleep(self.settings.store_delay_seconds)

    async def _probe_batch(self, config: RetailerConfig, unit: WorkUnit, batch: list[SkuSellerPair], summary):
        """One multi-SKU simulate call; an available SKU is recorded with quantity 1."""
        store = unit.store
        sales_channel = config.primary_sales_channel

        try:
            result = await self.client.simulate_batch(
                config.host,
                sales_channel,
                batch,
                self.settings.country_code,
                store.postal_code,
                store.pickup_point_id,
                store.city,
                store.province,
            )
        except Exception as e:
            logger.error(f"Batch of {len(batch)} failed at store {store.label()} on {config.host}: {e}")
            return

        checks = 0
        available = 0
        for pair in batch:
            item = result.items.get((pair.sku_id, pair.seller_id))
            is_available = bool(item and item.available)
            record = build_record(
                config.host,
                store,
                pair,
                sales_channel,
                available=is_available,
                max_qty=1 if is_available else 0,
                price=item.price if item else None,
                list_price=item.list_price if item else None,
                currency=result.currency,
                raw=result.raw,
                country=self.settings.country_code,
            )
            if await self._persist(record):
                checks += 1
                if is_available:
                    available += 1

        async with self._lock:
            summary.product_checks += checks
            summary.available_count += available

    async def _probe_each(self, config: RetailerConfig, unit: WorkUnit, batch: list[SkuSellerPair], summary):
        """Run the quantity search for each SKU of the batch in order."""
        store = unit.store
        sales_channel = config.primary_sales_channel

        for pair in batch:
            if self.cancelled:
                break

            try:
                outcome = await probe_max_quantity(
                    self.client,
                    config.host,
                    store,
                    pair,
                    sales_channel,
                    self.settings.probe_max_quantity,
                    self.settings.country_code,
                )
                record = build_record(
                    config.host,
                    store,
                    pair,
                    sales_channel,
                    available=outcome.available,
                    max_qty=outcome.max_qty,
                    price=outcome.price,
                    list_price=outcome.list_price,
                    currency=outcome.currency,
                    raw=outcome.raw,
                    country=self.settings.country_code,
                )
            except Exception as e:
                logger.error(f"Probe failed for sku {pair.sku_id} at store {store.label()}: {e}")
                record = build_record(
                    config.host,
                    store,
                    pair,
                    sales_channel,
                    available=False,
                    max_qty=0,
                    error_message=str(e),
                    country=self.settings.country_code,
                )

            if await self._persist(record):
                async with self._lock:
                    summary.product_checks += 1
                    if record.is_available:
                        summary.available_count += 1

            await asyncio.sleep(self.settings.product_delay_seconds)

    async def _persist(self, record) -> bool:
        try:
            await asyncio.to_thread(self.sink.upsert, record)
            return True
        except Exception as e:
            logger.error(
                f"Could not save availability for sku {record.key.sku_id} "
                f"at {record.key.pickup_point_id}: {e}"
            )
            return False


# ============== Multi-retailer driver ==============

def run_status(result: RetailerRunSummary) -> str:
    if result.skipped and not result.error_message:
        return "skipped"
    if result.error_message:
        return "partial" if result.product_checks else "failed"
    return "success"


def save_probe_log(session_factory, result: RetailerRunSummary):
    """Store one ProbeLog row per retailer run. Failures are only logged."""
    from stockprobe.models import ProbeLog

    db = session_factory()
    try:
        db.add(ProbeLog(
            retailer_host=result.retailer_host,
            started_at=result.started_at,
            completed_at=result.completed_at,
            stores_processed=result.stores_processed,
            product_checks=result.product_checks,
            available_count=result.available_count,
            status=run_status(result),
            error_message=result.error_message,
        ))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Could not write probe log for {result.retailer_host}: {e}")
    finally:
        db.close()


def log_final_report(summary: RunSummary):
    logger.info("=" * 60)
    logger.info("AVAILABILITY PROBE REPORT")
    logger.info(
        f"Retailers: {summary.total_retailers} | Tracked products: {summary.total_products_to_track} "
        f"({summary.own_brand_products} own brand, {summary.competitor_products} competitor) | "
        f"Stores: {summary.stores_processed} | Checks: {summary.product_checks} | "
        f"Available: {summary.available_count}"
    )
    for host, result in summary.retailer_results.items():
        status = run_status(result)
        line = (
            f"  {host}: {status}, {result.stores_processed} stores, "
            f"{result.available_count}/{result.product_checks} available "
            f"({result.availability_rate:.1%})"
        )
        if result.error_message:
            line += f" - {result.error_message}"
        logger.info(line)
    logger.info("=" * 60)


async def run_all_retailers(
    specific_host: Optional[str] = None,
    client: Optional[BaseProbeClient] = None,
    sink: Optional[ResultSink] = None,
    catalog=None,
    session_factory=None,
    settings: Optional[Settings] = None,
    rng: Optional[random.Random] = None,
) -> RunSummary:
    """
    Probe every enabled retailer (or just specific_host), one after another.

    A chain whose session cannot be established, or that fails unexpectedly,
    gets an error message in its summary and the run moves on. This function
    never raises.
    """
    settings = settings or get_settings()
    summary = RunSummary(started_at=datetime.now(timezone.utc))

    if session_factory is None:
        from stockprobe.database import SessionLocal
        session_factory = SessionLocal

    owns_client = client is None
    try:
        catalog = catalog or SqlCatalog(session_factory)
        sink = sink or SqlAlchemyResultSink(session_factory)
        client = client or create_probe_client(settings)

        retailers = catalog.list_enabled_retailers(specific_host)
        summary.total_retailers = len(retailers)
        products = catalog.load_tracked_products()
        summary.total_products_to_track = len(products)
        summary.own_brand_products = sum(1 for p in products if p.owner == settings.own_brand)
        summary.competitor_products = summary.total_products_to_track - summary.own_brand_products
    except Exception as e:
        logger.error(f"Could not start availability run: {e}")
        summary.error_message = str(e)
        summary.completed_at = datetime.now(timezone.utc)
        return summary

    logger.info(
        f"Starting availability run for {len(retailers)} retailers, tracking "
        f"{summary.total_products_to_track} products ({summary.own_brand_products} {settings.own_brand} "
        f"+ {summary.competitor_products} competitor)"
    )

    orchestrator = BatchOrchestrator(client, sink, catalog=catalog, settings=settings, rng=rng)

    try:
        for index, config in enumerate(retailers):
            try:
                result = await orchestrator.run(config.host, establish_session=True)
            except Exception as e:
                logger.error(f"Availability run failed for {config.host}: {e}")
                result = RetailerRunSummary(
                    retailer_host=config.host,
                    error_message=str(e),
                    completed_at=datetime.now(timezone.utc),
                )

            summary.add(result)
            save_probe_log(session_factory, result)

            if index < len(retailers) - 1:
                await asyncio.sleep(settings.retailer_delay_seconds)
    finally:
        if owns_client:
            await client.aclose()

    summary.completed_at = datetime.now(timezone.utc)
    log_final_report(summary)
    return summary


# CLI interface
if __name__ == "__main__":
    import argparse
    import json

    from stockprobe.database import init_db

    parser = argparse.ArgumentParser(description="Probe pickup availability for tracked products")
    parser.add_argument("--host", help="Retailer host to probe")
    parser.add_argument("--all", action="store_true", help="Probe every enabled retailer")
    parser.add_argument("--mode", choices=PROBE_MODES, help="Override probe_mode")
    parser.add_argument("--parallelism", type=int)
    parser.add_argument("--min-batch", type=int)
    parser.add_argument("--max-batch", type=int)
    args = parser.parse_args()

    init_db()

    async def main():
        if args.all or not args.host:
            result = await run_all_retailers(specific_host=args.host)
            return result.to_dict()

        async with create_probe_client() as client:
            orchestrator = BatchOrchestrator(client, SqlAlchemyResultSink())
            result = await orchestrator.run(
                args.host,
                parallelism=args.parallelism,
                min_batch=args.min_batch,
                max_batch=args.max_batch,
                mode=args.mode,
                establish_session=True,
            )
            return result.to_dict()

    print(json.dumps(asyncio.run(main()), indent=2))
