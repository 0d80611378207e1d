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


class ContactCenterProbe(ConnectivityProbe):
    kind = IntegrationKind.TELEPHONY

    async def check(self, config: ResolvedIntegrationConfig, *, timeout: float) -> tuple[ProbeStatus, str | None]:
        values = config.values
        if not values.get("password"):
            raise CredentialRejected()
        url = f"https://{values['host']}:{values['port']}/adminapi/team"
        async with httpx.AsyncClient(timeout=timeout, verify=bool(values["verify_tls"])) as client:
            response = await client.get(
                url,
                auth=(values["username"], values["password"]),
                headers={"Accept": "application/json"},
            )
        raise_for_credentials(response)
        if response.status_code != 200:
            return http_failure(response)
        return ProbeStatus.OK, None
