from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from qms_core.api.dependencies import health_service_dependency
from qms_core.schemas.health import HealthReportResponse, LivenessResponse, ReadinessResponse
from qms_core.services.health_service import HealthService, HealthStatus

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live", response_model=LivenessResponse)
def liveness() -> LivenessResponse:
    return HealthService.liveness()


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(
    response: Response,
    service: HealthService = Depends(health_service_dependency),
) -> ReadinessResponse:
    result = await service.readiness()
    if result.status != HealthStatus.OK:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result


@router.get("", response_model=HealthReportResponse)
async def health_report(
    response: Response,
    service: HealthService = Depends(health_service_dependency),
) -> HealthReportResponse:
    report = await service.report()
    if report.status == HealthStatus.DOWN:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return report
