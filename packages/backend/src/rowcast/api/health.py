"""Health check endpoint.

Learn: Reports whether the relay is up, how many sessions it holds, and
whether the database answers. A down database makes the relay
"degraded", not dead: broadcasts keep flowing from the change source.
"""

from fastapi import APIRouter, Request

from rowcast import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    relay = request.app.state.relay
    checks = {
        "server": "ok",
        "version": __version__,
        "sessions": len(relay.registry),
    }

    try:
        await relay.backend.ping()
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, **checks}
