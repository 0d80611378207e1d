from __future__ import annotations

import asyncio
import logging
import smtplib
import time
from collections.abc import Iterable, Mapping

import httpx

from qms_core.core.errors import UnknownIntegrationKind
from qms_core.integrations.probes.base import ConnectivityProbe, ProbeResult, ProbeStatus, build_result, scrub
from qms_core.integrations.probes.email import SmtpRelayProbe
from qms_core.integrations.probes.identity import IdentityProviderProbe
from qms_core.integrations.probes.media_recording import RecordingPlatformProbe
from qms_core.integrations.probes.search_index import SearchClusterProbe
from qms_core.integrations.probes.telephony import ContactCenterProbe
from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.models.integration_config import IntegrationKind

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0

PROBES: dict[IntegrationKind, ConnectivityProbe] = {
    IntegrationKind.IDENTITY: IdentityProviderProbe(),
    IntegrationKind.TELEPHONY: ContactCenterProbe(),
    IntegrationKind.MEDIA_RECORDING: RecordingPlatformProbe(),
    IntegrationKind.SEARCH_INDEX: SearchClusterProbe(),
    IntegrationKind.EMAIL: SmtpRelayProbe(),
}

_missing_kinds = set(IntegrationKind) - set(PROBES)
if _missing_kinds:
    raise RuntimeError(f"No connectivity probe registered for: {sorted(k.value for k in _missing_kinds)}")


class ProbeDispatcher:
    """Runs the probe registered for a kind under a hard timeout and never raises for probe failures."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        probes: Mapping[IntegrationKind, ConnectivityProbe] | None = None,
    ) -> None:
        self.timeout = timeout
        self._probes = dict(PROBES if probes is None else probes)

    async def probe(
        self, kind: IntegrationKind, config: ResolvedIntegrationConfig, *, timeout: float | None = None
    ) -> ProbeResult:
        probe = self._probes.get(kind)
        if probe is None:
            raise UnknownIntegrationKind(str(kind))

        timeout = self.timeout if timeout is None else round(timeout, 3)
        started = time.perf_counter()
        secrets = config.secret_values
        try:
            result = await asyncio.wait_for(probe.probe(config, timeout=timeout), timeout=timeout)
        except (TimeoutError, httpx.TimeoutException):
            status, message = ProbeStatus.DOWN, f"timeout after {timeout:g}s"
        except httpx.ConnectError as exc:
            status, message = ProbeStatus.DOWN, f"connection failed: {exc}"
        except (httpx.HTTPError, smtplib.SMTPException, OSError, ValueError) as exc:
            status, message = ProbeStatus.DOWN, f"{type(exc).__name__}: {exc}"
        except Exception as exc:
            logger.exception(
                "probe.failed",
                extra={"kind": kind.value, "error_type": type(exc).__name__},
            )
            status, message = ProbeStatus.DOWN, f"probe error: {type(exc).__name__}"
        else:
            if not result.ok:
                logger.warning(
                    "probe.not_ok",
                    extra={"kind": kind.value, "status": result.status.value, "probe_message": result.message},
                )
            return result

        logger.warning("probe.down", extra={"kind": kind.value, "probe_message": scrub(message, secrets)})
        return build_result(kind.value, status, message, started, secrets=secrets)

    async def probe_many(
        self, configs: Iterable[ResolvedIntegrationConfig], *, timeout: float | None = None
    ) -> dict[IntegrationKind, ProbeResult]:
        """Probe every enabled config concurrently; disabled ones are left out of the result."""
        enabled = [config for config in configs if config.enabled]
        results = await asyncio.gather(*(self.probe(config.kind, config, timeout=timeout) for config in enabled))
        return {config.kind: result for config, result in zip(enabled, results)}
