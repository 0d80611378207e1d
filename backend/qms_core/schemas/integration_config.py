from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from qms_core.integrations.schema_registry import FieldKind
from qms_core.models.integration_config import IntegrationKind


class IntegrationSummary(BaseModel):
    kind: IntegrationKind
    configured: bool
    enabled: bool
    version: int
    updated_at: datetime | None = None


class IntegrationListResponse(BaseModel):
    items: list[IntegrationSummary]


class IntegrationConfigResponse(BaseModel):
    kind: IntegrationKind
    values: dict[str, Any]
    enabled: bool
    version: int
    updated_at: datetime
    updated_by: str


class IntegrationUpsertRequest(BaseModel):
    values: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = False
    version: int | None = Field(default=None, ge=0, description="Version last read; 0 when never configured")


class IntegrationEnabledRequest(BaseModel):
    enabled: bool
    version: int = Field(ge=1)


class FieldSpecResponse(BaseModel):
    name: str
    kind: FieldKind
    secret: bool
    required: bool
    default: str | int | bool | None = None
    description: str = ""


class IntegrationSchemaResponse(BaseModel):
    kind: IntegrationKind
    fields: list[FieldSpecResponse]


class ProbeResultResponse(BaseModel):
    kind: IntegrationKind
    status: str
    message: str | None = None
    checked_at: datetime
    latency_ms: float
