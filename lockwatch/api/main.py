"""FastAPI application with lifespan: starts the blocker capture loop."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lockwatch.api.dependencies import get_state
from lockwatch.api.routes import blockers, health
from lockwatch.core.exceptions import LockwatchError
from lockwatch.core.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the capture loop on startup, stop it on shutdown."""
    state = get_state()

    # Wait for the repository database to be ready
    logger.info("Waiting for repository database...")
    for attempt in range(30):
        if state.repository.test_connection():
            logger.info("Repository database connected.")
            break
        logger.info("Repository database not ready (attempt %d/30)...", attempt + 1)
        await asyncio.sleep(2)
    else:
        logger.error("Could not connect to repository database after 30 attempts")

    try:
        if not state.history.supports_history():
            logger.warning("Blocker history tables are missing; captures will fail to store")
    except LockwatchError as e:
        logger.warning("Could not check blocker history tables: %s", e)

    runner_task = asyncio.create_task(state.runner.run_loop())
    logger.info("Capture loop started.")

    yield

    state.runner.stop()
    runner_task.cancel()
    logger.info("Lockwatch shutdown complete.")


app = FastAPI(
    title="Lockwatch",
    description="PostgreSQL query blocker sampling and history",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(blockers.router)


@app.get("/", include_in_schema=False)
def root():
    return {"message": "Lockwatch API", "docs": "/docs"}
