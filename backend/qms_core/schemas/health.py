from datetime import datetime

from pydantic import BaseModel, Field


class LivenessResponse(BaseModel):
    status: str = "OK"
    timestamp: datetime


class ReadinessResponse(BaseModel):
    status: str
    timestamp: datetime


class DependencyCheck(BaseModel):
    status: str
    message: str | None = None
    latency_ms: float | None = None


class HealthReportResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime: float
    version: str
    checks: dict[str, DependencyCheck] = Field(default_factory=dict)
