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

LOGIN_PATH = "/ora/authenticationService/authentication/login"
SERVICE_INFO_PATH = "/ora/serviceInfo"


class RecordingPlatformProbe(ConnectivityProbe):
    """Session login, falling back to basic-auth service info on releases without the login service."""

    kind = IntegrationKind.MEDIA_RECORDING

    async def check(self, config: ResolvedIntegrationConfig, *, timeout: float) -> tuple[ProbeStatus, str | None]:
        values = config.values
        if not values.get("api_secret"):
            raise CredentialRejected()
        base_url = values["api_url"].rstrip("/")
        async with httpx.AsyncClient(
            base_url=base_url, timeout=timeout, verify=bool(values["verify_tls"])
        ) as client:
            response = await client.post(
                LOGIN_PATH,
                json={"username": values["api_key"], "password": values["api_secret"]},
            )
            if response.status_code == 404:
                response = await client.get(
                    SERVICE_INFO_PATH, auth=(values["api_key"], values["api_secret"])
                )
        raise_for_credentials(response)
        if response.status_code not in (200, 201):
            return http_failure(response)
        return ProbeStatus.OK, None
