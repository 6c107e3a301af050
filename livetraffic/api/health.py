"""Health check endpoint."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz", summary="Health check")
def health_check(request: Request) -> dict[str, object]:
    """Report whether the engine is running and the ATC listener is up."""

    engine = getattr(request.app.state, "engine", None)
    return {
        "status": "ok",
        "engine": engine is not None,
        "listening": bool(engine and engine.server.is_serving),
    }
