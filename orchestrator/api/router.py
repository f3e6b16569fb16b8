from fastapi import APIRouter

from orchestrator.api.v1 import apps, auth, deployments, organizations, webhooks
from orchestrator.dependencies import peek_rollout_worker

router = APIRouter()

router.include_router(auth.router, prefix="/api/v1")
router.include_router(organizations.router, prefix="/api/v1")
router.include_router(apps.router, prefix="/api/v1")
router.include_router(deployments.router, prefix="/api/v1")
router.include_router(webhooks.router, prefix="/api/v1")


@router.get("/")
async def root():
    return {
        "message": "Deployment Orchestrator API",
        "version": "1.0.0",
        "docs": "/docs",
        "auth": {
            "login": "/api/v1/auth/login",
            "register": "/api/v1/auth/register"
        }
    }


@router.get("/health")
async def health():
    return {"status": "healthy"}


@router.get("/worker/status")
async def worker_status():
    worker = peek_rollout_worker()
    if worker is None:
        return {"running": False, "healthy": False, "status": "disabled"}

    is_healthy = worker.is_healthy()
    return {
        "running": worker.running,
        "healthy": is_healthy,
        "tracked_deployments": worker.tracked_count,
        "last_tick": worker.last_tick.isoformat() if worker.last_tick else None,
        "status": "healthy" if is_healthy else "unhealthy"
    }
