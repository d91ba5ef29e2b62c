"""
Liveness and readiness probes.

GET /health never touches dependencies; GET /health/ready checks
configuration, the database pool and storage configuration and answers
503 when any of them is unusable.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from ... import __version__
from ...config.settings import Settings
from ...infrastructure.database.engine import DatabaseConnectionError, check_database
from ..dependencies import DatabaseEngineDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    details: dict[str, Any] = {}


class ProbeResult(BaseModel):
    """Outcome of a single readiness probe."""
    name: str
    ok: bool
    error: Optional[str] = None


class ReadinessResponse(BaseModel):
    status: str  # "ready" | "not_ready"
    version: str
    checks: list[ProbeResult]


def _probe_configuration(settings: Settings) -> ProbeResult:
    missing = settings.validate_required_fields()
    if missing:
        return ProbeResult(name="configuration", ok=False, error=f"missing {', '.join(missing)}")
    return ProbeResult(name="configuration", ok=True)


def _probe_database(settings: Settings, engine) -> ProbeResult:
    if engine is None:
        # An optional database that isn't configured is fine
        return ProbeResult(
            name="database",
            ok=not settings.database_required,
            error="not configured",
        )
    try:
        check_database(engine)
    except DatabaseConnectionError as e:
        return ProbeResult(name="database", ok=False, error=str(e))
    return ProbeResult(name="database", ok=True)


def _probe_storage(settings: Settings) -> ProbeResult:
    if settings.gcs_mock_mode:
        return ProbeResult(name="storage", ok=True, error="mock mode")
    if not settings.private_object_dir:
        return ProbeResult(name="storage", ok=False, error="PRIVATE_OBJECT_DIR not set")
    return ProbeResult(name="storage", ok=True)


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
)
async def health_check(settings: SettingsDep) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        details={
            "environment": settings.environment,
            "mock_mode": {"storage": settings.gcs_mock_mode},
        }
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness probe",
    responses={503: {"description": "At least one probe failed", "model": ReadinessResponse}},
)
async def readiness_check(
    settings: SettingsDep,
    engine: DatabaseEngineDep,
    response: Response,
) -> ReadinessResponse:
    """Run every probe; 503 tells the load balancer to route elsewhere."""
    checks = [
        _probe_configuration(settings),
        _probe_database(settings, engine),
        _probe_storage(settings),
    ]

    ready = all(check.ok for check in checks)
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning(
            "Not ready",
            extra={"failed": [c.name for c in checks if not c.ok]}
        )

    return ReadinessResponse(
        status="ready" if ready else "not_ready",
        version=__version__,
        checks=checks,
    )
