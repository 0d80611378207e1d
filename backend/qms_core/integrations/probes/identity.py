from __future__ import annotations

import httpx

from qms_core.integrations.probes.base import (
    ConnectivityProbe,
    CredentialRejected,
    ProbeStatus,
    http_failure,
    raise_for_credentials,
)
from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.models.integration_config import IntegrationKind

_REJECTED_OAUTH_ERRORS = {"invalid_client", "unauthorized_client"}


class IdentityProviderProbe(ConnectivityProbe):
    """Client-credentials token request against the realm's OIDC token endpoint."""

    kind = IntegrationKind.IDENTITY

    async def check(self, config: ResolvedIntegrationConfig, *, timeout: float) -> tuple[ProbeStatus, str | None]:
        values = config.values
        if not values.get("client_secret"):
            raise CredentialRejected()
        token_url = (
            f"{values['base_url'].rstrip('/')}/realms/{values['realm']}/protocol/openid-connect/token"
        )
        async with httpx.AsyncClient(timeout=timeout, verify=bool(values["verify_tls"])) as client:
            response = await client.post(
                token_url,
                data={"grant_type": "client_credentials"},
                auth=(values["client_id"], values["client_secret"]),
            )
        raise_for_credentials(response)
        if response.status_code == 400 and _oauth_error(response) in _REJECTED_OAUTH_ERRORS:
            raise CredentialRejected()
        if response.status_code != 200:
            return http_failure(response)
        return ProbeStatus.OK, None


def _oauth_error(response: httpx.Response) -> str | None:
    try:
        return response.json().get("error")
    except ValueError:
        return None
