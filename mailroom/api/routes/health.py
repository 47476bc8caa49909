"""
Health probes, served outside the /api prefix.
"""
from fastapi import APIRouter
from starlette.responses import JSONResponse

from mailroom.domain.services import health_service

router = APIRouter(tags=["Health"])

_READY_EXAMPLE = {"status": "healthy", "db": "ok", "celery": "ok", "pending_deliveries": 0}
_DEGRADED_EXAMPLE = {
    "status": "degraded",
    "db": "error: db_unavailable",
    "celery": "ok",
    "pending_deliveries": None,
}


@router.get(
    "/health",
    summary="Liveness probe",
    description="The process is up. No dependency is contacted.",
)
async def liveness() -> dict[str, str]:
    return {"status": "healthy"}


@router.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Pings the database and the Celery broker and reports the delivery "
        "queue depth. Any failed check makes the service degraded (503)."
    ),
    responses={
        200: {"content": {"application/json": {"example": _READY_EXAMPLE}}},
        503: {"content": {"application/json": {"example": _DEGRADED_EXAMPLE}}},
    },
)
async def readiness() -> JSONResponse:
    result = await health_service.check_readiness()
    return JSONResponse(
        content=result,
        status_code=200 if result["status"] == "healthy" else 503,
    )
