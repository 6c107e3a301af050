"""Read-only views of the delivered traffic picture."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from livetraffic.models import FusedSnapshot, MetarObservation
from livetraffic.services.engine import TrafficEngine

router = APIRouter(prefix="/api/v1", tags=["traffic"])


def _engine(request: Request) -> TrafficEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Traffic engine is not running",
        )
    return engine


@router.get("/traffic", summary="Last delivered traffic snapshot")
def get_traffic(request: Request) -> dict[str, Any]:
    engine = _engine(request)
    snapshot: FusedSnapshot | None = engine.feed.current
    return {
        "snapshot": snapshot.model_dump(mode="json") if snapshot is not None else None,
        "status": engine.status(),
    }


@router.get(
    "/metar/{station}",
    response_model=MetarObservation,
    summary="Latest METAR for a station",
)
def get_metar(station: str, request: Request) -> MetarObservation:
    observation = _engine(request).weather.get(station)
    if observation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No METAR cached for {station.upper()}",
        )
    return observation


@router.get("/sessions", summary="Connected ATC clients")
def list_sessions(request: Request) -> list[dict[str, Any]]:
    engine = _engine(request)
    return [session.describe() for session in engine.server.active_sessions()]
