from __future__ import annotations

import contextlib
import logging
import time

from fastapi import FastAPI, Request

from livetraffic.api import api_router
from livetraffic.config import settings
from livetraffic.services.engine import TrafficEngine

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger("livetraffic")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the traffic engine for as long as the status API is up."""

    engine = TrafficEngine(settings)
    await engine.start()
    app.state.engine = engine
    logger.info("Traffic engine started")

    try:
        yield
    finally:
        app.state.engine = None
        await engine.stop()
        logger.info("Traffic engine stopped")


app = FastAPI(title="LiveTraffic", lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log basic request information for observability."""

    start_time = time.time()
    response = await call_next(request)
    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        "HTTP %s %s -> %s (%.2f ms)",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


app.include_router(api_router)


@app.get("/", summary="Root")
def read_root() -> dict[str, str]:
    """Basic root endpoint for quick verification."""

    return {"message": "LiveTraffic radar feed is running"}
