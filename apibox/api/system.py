"""Health, stats and scheduler status."""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from apibox import __version__
from apibox.api.deps import get_container
from apibox.core.container import Container

router = APIRouter(tags=["System"])


@router.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@router.get("/stats")
async def stats(container: Container = Depends(get_container)):
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "apis": {"total": len(container.registry.api_names()), "list": container.registry.api_names()},
        "cache": container.cache.stats(),
        "history_cache": container.ledger.store.stats(),
        "scheduler": container.scheduler.get_stats(),
        "persistence": container.persistent.enabled,
    }


@router.get("/scheduler/jobs")
async def list_jobs(container: Container = Depends(get_container)):
    return {"items": [job.to_dict() for job in container.scheduler.get_all_statuses()]}


@router.get("/scheduler/jobs/{job_id}")
async def get_job(job_id: str, container: Container = Depends(get_container)):
    job = container.scheduler.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id!r} not found")
    return job.to_dict()
