import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from orchestrator.api.router import router
from orchestrator.config import settings
from orchestrator.core.database import db_manager
from orchestrator.core.exceptions import OrchestratorError
from orchestrator.core.logging import setup_logging
from orchestrator.dependencies import get_rollout_worker

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Démarrage de l'application...")
    db_manager.create_tables()

    app.state.worker = None
    app.state.worker_task = None

    if settings.ENABLE_WORKER:
        worker = get_rollout_worker()
        worker_task = asyncio.create_task(worker.start())
        worker._task = worker_task
        app.state.worker = worker
        app.state.worker_task = worker_task
        logger.info("Worker de rollout démarré en arrière-plan")

    yield

    logger.info("Arrêt de l'application...")

    if app.state.worker:
        app.state.worker.stop()
        app.state.worker_task.cancel()
        try:
            await asyncio.wait_for(app.state.worker_task, timeout=10.0)
            logger.info("Worker arrêté proprement")
        except (asyncio.CancelledError, asyncio.TimeoutError):
            logger.warning("Worker forcé à s'arrêter (timeout ou annulation)")

    logger.info("Application arrêtée proprement")


app = FastAPI(
    title="Deployment Orchestrator API",
    description="API de gestion du cycle de vie des déploiements d'applications",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(OrchestratorError)
async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
    body = {"detail": exc.message, "error": type(exc).__name__}
    if getattr(exc, "retryable", False):
        body["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=body)


app.include_router(router)


if __name__ == "__main__":
    logger.info(f"Documentation : {settings.BASE_URL}/docs")
    uvicorn.run("orchestrator.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
