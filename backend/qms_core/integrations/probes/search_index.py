from __future__ import annotations

import httpx

from qms_core.integrations.probes.base import (
    ConnectivityProbe,
    ProbeStatus,
    http_failure,
    raise_for_credentials,
)
from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.models.integration_config import IntegrationKind

_CLUSTER_STATUS = {
    "green": ProbeStatus.OK,
    "yellow": ProbeStatus.DEGRADED,
    "red": ProbeStatus.DOWN,
}


class SearchClusterProbe(ConnectivityProbe):
    kind = IntegrationKind.SEARCH_INDEX

    async def check(self, config: ResolvedIntegrationConfig, *, timeout: float) -> tuple[ProbeStatus, str | None]:
        values = config.values
        scheme = "https" if values["use_tls"] else "http"
        url = f"{scheme}://{values['host']}:{values['port']}/_cluster/health"
        auth = (values["username"], values["password"] or "") if values.get("username") else None
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url, auth=auth)
        raise_for_credentials(response)
        if response.status_code != 200:
            return http_failure(response)
        cluster_status = str(response.json().get("status", "")).lower()
        status = _CLUSTER_STATUS.get(cluster_status, ProbeStatus.DEGRADED)
        if status is ProbeStatus.OK:
            return status, None
        return status, f"cluster status {cluster_status or 'unknown'}"
