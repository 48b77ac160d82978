"""FastAPI application exposing the API key pool scheduler."""

import logging
from contextlib import asynccontextmanager
from typing import Dict

import uvicorn
from fastapi import FastAPI, Request

from keypool.config import load_config
from keypool.scheduler import KeyScheduler
from keypool.admin import admin_router
from keypool.leases import lease_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle: startup and shutdown."""
    config = load_config()

    logging.basicConfig(level=getattr(logging, config.log_level))

    scheduler = KeyScheduler(config)
    await scheduler.load()

    app.state.config = config
    app.state.scheduler = scheduler

    logger.info(
        "Key pool scheduler started with %d keys and %d tiers",
        len(config.api_keys),
        len(scheduler.policy.tiers()),
    )

    yield

    logger.info("Key pool scheduler stopped")


app = FastAPI(title="API Key Pool Scheduler", lifespan=lifespan)

app.include_router(admin_router)
app.include_router(lease_router)


@app.get("/")
async def root(request: Request) -> Dict[str, object]:
    scheduler = request.app.state.scheduler
    status = await scheduler.get_status()
    return {
        "service": "API Key Pool Scheduler",
        "status": "running",
        "available": status["available"],
        "total_keys": status["total_keys"],
    }


@app.get("/health")
async def health_check(request: Request) -> Dict[str, object]:
    """Health check endpoint with key pool status."""
    scheduler = request.app.state.scheduler
    status = await scheduler.get_status()
    return {
        "status": "healthy",
        "available": status["available"],
        "total_keys": status["total_keys"],
    }


def run() -> None:
    config = load_config()
    uvicorn.run(
        "keypool.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    run()
