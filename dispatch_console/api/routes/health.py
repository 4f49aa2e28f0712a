from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from dispatch_console.services.scheduler_service import SchedulerService, get_scheduler_service

router = APIRouter(tags=["health"])


@router.get("/health")
def read_health(scheduler: SchedulerService = Depends(get_scheduler_service)) -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scheduler": "running" if scheduler.is_running else "stopped",
        "jobs": scheduler.list_jobs(),
    }
