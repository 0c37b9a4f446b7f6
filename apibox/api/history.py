"""History endpoint — hourly snapshots of the tracked instrument."""
from fastapi import APIRouter, Depends, Query

from apibox.api.deps import get_container
from apibox.core.container import Container

router = APIRouter(tags=["History"])


@router.get("/history/{instrument}")
async def get_history(
    instrument: str,
    start: int | None = Query(None, description="Inclusive lower bound, ms since epoch"),
    end: int | None = Query(None, description="Inclusive upper bound, ms since epoch"),
    container: Container = Depends(get_container),
):
    if start is not None and end is not None and start > end:
        raise ValueError(f"start ({start}) must not be after end ({end})")
    key = f"{container.settings.history_namespace}:{instrument.upper()}"
    points = await container.ledger.get_history(key, start, end)
    return {
        "status": "success",
        "data": {
            "instrument": instrument.upper(),
            "count": len(points),
            "points": [p.to_dict() for p in points],
        },
    }
