"""Font Inspector FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from font_inspector import config
from font_inspector.db import connection, migrations
from font_inspector.inspection_queue import InspectionQueue
from font_inspector.observability import initialize as initialize_observability, shutdown as shutdown_observability
from font_inspector.routers.inspections import inspect_router, inspections_router, queue_router
from font_inspector.routers.links import links_router
from font_inspector.routers.projects import projects_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("fontinspector")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Font Inspector backend starting up")
    initialize_observability(app)

    db = await connection.get_connection()
    await migrations.run_migrations(db)

    app.state.inspection_queue = InspectionQueue(db)

    yield

    logger.info("Font Inspector backend shutting down")
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="Font Inspector API",
    description="Backend API for inspecting the fonts used by web pages",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(projects_router)
app.include_router(inspect_router)
app.include_router(inspections_router)
app.include_router(queue_router)
app.include_router(links_router)


@app.get("/api/health")
async def health():
    """Health check endpoint."""
    queue = getattr(app.state, "inspection_queue", None)
    return {
        "status": "ok",
        "db": "connected" if connection.is_connected() else "disconnected",
        "queue": "ready" if queue else "stopped",
        "operations": await queue.get_observability_snapshot() if queue else {},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("font_inspector.main:app", host=config.HOST, port=config.PORT)
