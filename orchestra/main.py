"""FastAPI entry-point exposing orchestrator controls."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from orchestra.api.routes import router as agents_router
from orchestra.api.workflows import stats_router, tasks_router, workflows_router
from orchestra.config import config, configure_logging
from orchestra.runtime import get_orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    configure_logging(config.log_level)
    get_orchestrator()
    yield
    # Shutdown: let running workflows and tasks settle
    await get_orchestrator().shutdown()


app = FastAPI(title="Agent Orchestra", lifespan=lifespan)
app.include_router(agents_router)
app.include_router(tasks_router)
app.include_router(workflows_router)
app.include_router(stats_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
