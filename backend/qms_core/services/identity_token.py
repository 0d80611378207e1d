import enum
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import requests
from jose import jwt
from jose.exceptions import JWTError

from qms_core.core.config import get_settings


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    QA = "QA"
    SUPERVISOR = "SUPERVISOR"
    USER = "USER"


@dataclass(frozen=True)
class CredentialClaims:
    sub: str
    preferred_username: str
    email: str | None
    name: str | None
    roles: frozenset[Role]

    @property
    def actor(self) -> str:
        return self.preferred_username or self.sub


class TokenVerificationError(Exception):
    pass


@lru_cache(maxsize=1)
def _jwks() -> dict[str, Any]:
    settings = get_settings()
    if not settings.oidc_issuer and not settings.oidc_jwks_url:
        raise TokenVerificationError("OIDC not configured (OIDC_ISSUER/OIDC_JWKS_URL).")
    resp = requests.get(settings.jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def verify_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        if settings.auth_mode == "oidc":
            return jwt.decode(
                token,
                _jwks(),
                algorithms=["RS256"],
                audience=settings.oidc_audience or None,
                issuer=settings.oidc_issuer or None,
                options={"verify_aud": bool(settings.oidc_audience), "verify_exp": True},
            )
        if not settings.jwt_secret_key:
            raise TokenVerificationError("JWT secret not configured (JWT_SECRET_KEY).")
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False, "verify_exp": True},
        )
    except JWTError as exc:
        raise TokenVerificationError(f"Invalid access token: {exc}") from exc
    except requests.RequestException as exc:
        raise TokenVerificationError("Signing keys unavailable.") from exc


def claims_from_payload(payload: dict[str, Any]) -> CredentialClaims:
    """Build request claims from an already verified token payload.

    Roles come from a top-level ``roles`` claim, falling back to Keycloak's
    ``realm_access.roles``. Names outside :class:`Role` are dropped.
    """
    raw_roles = payload.get("roles")
    if raw_roles is None:
        raw_roles = (payload.get("realm_access") or {}).get("roles") or []
    if isinstance(raw_roles, str):
        raw_roles = [raw_roles]

    roles = set()
    for name in raw_roles:
        try:
            roles.add(Role(str(name).upper()))
        except ValueError:
            continue

    return CredentialClaims(
        sub=str(payload.get("sub") or ""),
        preferred_username=str(payload.get("preferred_username") or ""),
        email=payload.get("email"),
        name=payload.get("name"),
        roles=frozenset(roles),
    )
