from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from qms_core.core.config import get_settings
from qms_core.core.encryption.secret_codec import SecretCodec
from qms_core.db.session import AsyncSessionLocal, get_async_db_session, ping_database
from qms_core.integrations.probe_dispatcher import ProbeDispatcher
from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.models.integration_config import IntegrationKind
from qms_core.services.access_control import IntegrationAction, RolePolicy
from qms_core.services.health_service import HealthService
from qms_core.services.identity_token import (
    CredentialClaims,
    TokenVerificationError,
    claims_from_payload,
    verify_access_token,
)
from qms_core.services.integration_config_service import IntegrationConfigService

bearer_scheme = HTTPBearer(auto_error=False)


def get_secret_codec(request: Request) -> SecretCodec:
    return request.app.state.secret_codec


def get_role_policy(request: Request) -> RolePolicy:
    return request.app.state.role_policy


def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CredentialClaims:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise unauthorized
    try:
        payload = verify_access_token(credentials.credentials)
    except TokenVerificationError as exc:
        raise unauthorized from exc

    claims = claims_from_payload(payload)
    if hasattr(request.state, "audit_context"):
        request.state.audit_context["actor"] = claims.actor
    return claims


def require_action(action: IntegrationAction):
    def _dependency(
        request: Request,
        claims: CredentialClaims = Depends(get_current_claims),
        policy: RolePolicy = Depends(get_role_policy),
    ) -> CredentialClaims:
        policy.authorize(claims, action, _path_kind(request))
        return claims

    return _dependency


def _path_kind(request: Request) -> IntegrationKind | None:
    raw = request.path_params.get("kind")
    if raw is None:
        return None
    try:
        return IntegrationKind(raw)
    except ValueError:
        return None


def service_dependency(
    db: AsyncSession = Depends(get_async_db_session),
    codec: SecretCodec = Depends(get_secret_codec),
) -> IntegrationConfigService:
    return IntegrationConfigService(db=db, codec=codec)


def probe_dispatcher_dependency() -> ProbeDispatcher:
    return ProbeDispatcher(timeout=get_settings().probe_timeout_seconds)


def health_service_dependency(
    codec: SecretCodec = Depends(get_secret_codec),
    dispatcher: ProbeDispatcher = Depends(probe_dispatcher_dependency),
) -> HealthService:
    async def load_enabled() -> list[ResolvedIntegrationConfig]:
        async with AsyncSessionLocal() as db:
            return await IntegrationConfigService(db=db, codec=codec).resolve_enabled()

    return HealthService(
        database_check=ping_database,
        config_loader=load_enabled,
        dispatcher=dispatcher,
        version=get_settings().app_version,
    )
