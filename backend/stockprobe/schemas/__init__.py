from stockprobe.schemas.probe import RetailerRunResult, RunResult, StoreAvailability, ProbeLog

__all__ = [
    "RetailerRunResult", "RunResult",
    "StoreAvailability", "ProbeLog",
]
