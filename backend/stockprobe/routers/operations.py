"""Operations endpoints: trigger availability probes and read their results."""
from fastapi import APIRouter, Depends, HTTPException, Query, Header
from sqlalchemy.orm import Session
from typing import Optional

from stockprobe.config import get_settings
from stockprobe.database import SessionLocal, get_db
from stockprobe.models import ProbeLog, StoreAvailability
from stockprobe.schemas.probe import (
    ProbeLog as ProbeLogSchema,
    RetailerRunResult,
    RunResult,
    StoreAvailability as StoreAvailabilitySchema,
)
from stockprobe.services.catalog import SqlCatalog
from stockprobe.services.orchestrator import (
    BatchOrchestrator,
    run_all_retailers,
    validate_run_parameters,
)
from stockprobe.services.probe_client import create_probe_client
from stockprobe.services.result_sink import SqlAlchemyResultSink
from stockprobe.tasks.scheduler import get_scheduler_status, record_run

router = APIRouter(prefix="/operations", tags=["operations"])


def get_session_factory():
    return SessionLocal


async def get_probe_client():
    client = create_probe_client()
    try:
        yield client
    finally:
        await client.aclose()


def verify_admin_key(x_admin_key: Optional[str] = Header(None, description="Admin API key")):
    """Reject the request unless X-Admin-Key matches the configured admin_api_key."""
    admin_key = get_settings().admin_api_key
    if not admin_key or x_admin_key != admin_key:
        raise HTTPException(status_code=403, detail="Invalid admin key")


@router.post(
    "/availability/probe",
    response_model=RetailerRunResult,
    dependencies=[Depends(verify_admin_key)],
)
async def probe_retailer(
    host: str = Query(..., description="Retailer host, e.g. www.example.com.ar"),
    min_batch_size: int = Query(20),
    max_batch_size: int = Query(50),
    parallelism: int = Query(8),
    mode: Optional[str] = Query(None, description="batch or single (defaults to settings)"),
    session_factory=Depends(get_session_factory),
    client=Depends(get_probe_client),
):
    """Probe every tracked product at every eligible store of one retailer."""
    try:
        validate_run_parameters(parallelism, min_batch_size, max_batch_size)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    orchestrator = BatchOrchestrator(
        client,
        SqlAlchemyResultSink(session_factory),
        catalog=SqlCatalog(session_factory),
    )
    try:
        summary = await orchestrator.run(
            host,
            parallelism=parallelism,
            min_batch=min_batch_size,
            max_batch=max_batch_size,
            mode=mode,
            establish_session=True,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return summary.to_dict()


@router.post(
    "/availability/probe-all",
    response_model=RunResult,
    dependencies=[Depends(verify_admin_key)],
)
async def probe_all_retailers(
    host: Optional[str] = Query(None, description="Only this retailer host"),
    session_factory=Depends(get_session_factory),
    client=Depends(get_probe_client),
):
    """Run every enabled retailer in turn. Per-retailer failures are reported, not raised."""
    summary = await run_all_retailers(
        specific_host=host,
        client=client,
        session_factory=session_factory,
    )
    result = summary.to_dict()
    record_run(result, manual=True)
    return result


@router.get("/availability", response_model=list[StoreAvailabilitySchema])
def list_availability(
    host: Optional[str] = Query(None),
    pickup_point_id: Optional[str] = Query(None),
    sku_id: Optional[str] = Query(None),
    only_available: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Latest persisted availability rows, newest first."""
    query = db.query(StoreAvailability)
    if host:
        query = query.filter(StoreAvailability.retailer_host == host)
    if pickup_point_id:
        query = query.filter(StoreAvailability.pickup_point_id == pickup_point_id)
    if sku_id:
        query = query.filter(StoreAvailability.sku_id == sku_id)
    if only_available:
        query = query.filter(StoreAvailability.is_available == True)

    return query.order_by(StoreAvailability.captured_at.desc()).limit(limit).all()


@router.get("/status")
def operations_status(db: Session = Depends(get_db)):
    """Scheduler state, last run and the most recent probe logs."""
    logs = db.query(ProbeLog).order_by(ProbeLog.id.desc()).limit(20).all()
    status = get_scheduler_status()
    status["recent_runs"] = [ProbeLogSchema.model_validate(log).model_dump(mode="json") for log in logs]
    return status
