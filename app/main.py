from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.supervisor import build_default_supervisor

SHUTDOWN_TIMEOUT_SECONDS = 30.0


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    supervisor = build_default_supervisor()
    supervisor.start()
    try:
        yield
    finally:
        supervisor.stop(timeout=SHUTDOWN_TIMEOUT_SECONDS)
        supervisor.close()
        build_default_supervisor.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Smart Home Telemetry",
        description="Polls vendor sensor telemetry, stores it and drives actuators from the latest readings.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
