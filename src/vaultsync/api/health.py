"""Liveness and readiness endpoints for the operator process."""

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

router = APIRouter()


class HealthResponse(BaseModel):
    status: str


@router.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    """Report that the process is alive."""
    return HealthResponse(status="ok")


@router.get("/readyz", response_model=HealthResponse)
async def readyz(request: Request, response: Response) -> HealthResponse:
    """Report ready once the controller has listed VaultSecrets at least once.

    Answers 503 with ``starting`` until then.
    """
    controller = getattr(request.app.state, "controller", None)
    if controller is None or not controller.ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="starting")
    return HealthResponse(status="ready")
