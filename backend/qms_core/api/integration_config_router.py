from fastapi import APIRouter, Depends, Request

from qms_core.api.dependencies import probe_dispatcher_dependency, require_action, service_dependency
from qms_core.integrations.probe_dispatcher import ProbeDispatcher
from qms_core.integrations.schema_registry import schema_for
from qms_core.models.integration_config import IntegrationKind
from qms_core.schemas.integration_config import (
    FieldSpecResponse,
    IntegrationConfigResponse,
    IntegrationEnabledRequest,
    IntegrationListResponse,
    IntegrationSchemaResponse,
    IntegrationUpsertRequest,
    ProbeResultResponse,
)
from qms_core.services.access_control import IntegrationAction
from qms_core.services.identity_token import CredentialClaims
from qms_core.services.integration_config_service import IntegrationConfigService

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("", response_model=IntegrationListResponse)
async def list_integrations(
    service: IntegrationConfigService = Depends(service_dependency),
    claims: CredentialClaims = Depends(require_action(IntegrationAction.READ)),
) -> IntegrationListResponse:
    return await service.list_summaries()


@router.get("/{kind}/schema", response_model=IntegrationSchemaResponse)
async def get_integration_schema(
    kind: IntegrationKind,
    claims: CredentialClaims = Depends(require_action(IntegrationAction.READ)),
) -> IntegrationSchemaResponse:
    schema = schema_for(kind)
    return IntegrationSchemaResponse(
        kind=kind,
        fields=[
            FieldSpecResponse(
                name=spec.name,
                kind=spec.kind,
                secret=spec.secret,
                required=spec.required,
                default=spec.default,
                description=spec.description,
            )
            for spec in schema.fields
        ],
    )


@router.get("/{kind}", response_model=IntegrationConfigResponse)
async def get_integration(
    kind: IntegrationKind,
    service: IntegrationConfigService = Depends(service_dependency),
    claims: CredentialClaims = Depends(require_action(IntegrationAction.READ)),
) -> IntegrationConfigResponse:
    return await service.get(kind=kind)


@router.put("/{kind}", response_model=IntegrationConfigResponse)
async def put_integration(
    kind: IntegrationKind,
    payload: IntegrationUpsertRequest,
    request: Request,
    service: IntegrationConfigService = Depends(service_dependency),
    claims: CredentialClaims = Depends(require_action(IntegrationAction.WRITE)),
) -> IntegrationConfigResponse:
    return await service.put(
        kind=kind,
        values=payload.values,
        enabled=payload.enabled,
        actor=claims.actor,
        expected_version=payload.version,
        correlation_id=getattr(request.state, "correlation_id", None),
    )


@router.patch("/{kind}/enabled", response_model=IntegrationConfigResponse)
async def set_integration_enabled(
    kind: IntegrationKind,
    payload: IntegrationEnabledRequest,
    request: Request,
    service: IntegrationConfigService = Depends(service_dependency),
    claims: CredentialClaims = Depends(require_action(IntegrationAction.WRITE)),
) -> IntegrationConfigResponse:
    return await service.set_enabled(
        kind=kind,
        enabled=payload.enabled,
        expected_version=payload.version,
        actor=claims.actor,
        correlation_id=getattr(request.state, "correlation_id", None),
    )


@router.post("/{kind}/test", response_model=ProbeResultResponse)
async def test_integration(
    kind: IntegrationKind,
    service: IntegrationConfigService = Depends(service_dependency),
    dispatcher: ProbeDispatcher = Depends(probe_dispatcher_dependency),
    claims: CredentialClaims = Depends(require_action(IntegrationAction.TEST)),
) -> ProbeResultResponse:
    config = await service.resolve(kind=kind)
    result = await dispatcher.probe(kind, config)
    return ProbeResultResponse(
        kind=kind,
        status=result.status.value,
        message=result.message,
        checked_at=result.checked_at,
        latency_ms=result.latency_ms,
    )
