from __future__ import annotations

import enum
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.models.integration_config import IntegrationKind

CREDENTIAL_REJECTED = "credential-rejected"
REDACTED = "***"


class ProbeStatus(str, enum.Enum):
    OK = "OK"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"


@dataclass(frozen=True, slots=True)
class ProbeResult:
    name: str
    status: ProbeStatus
    checked_at: datetime
    latency_ms: float
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ProbeStatus.OK


class CredentialRejected(Exception):
    pass


class ConnectivityProbe(ABC):
    kind: IntegrationKind

    @abstractmethod
    async def check(self, config: ResolvedIntegrationConfig, *, timeout: float) -> tuple[ProbeStatus, str | None]:
        """Run one minimal live request. Raise :class:`CredentialRejected` on an auth failure."""
        raise NotImplementedError

    async def probe(self, config: ResolvedIntegrationConfig, *, timeout: float) -> ProbeResult:
        started = time.perf_counter()
        try:
            status, message = await self.check(config, timeout=timeout)
        except CredentialRejected:
            status, message = ProbeStatus.DOWN, CREDENTIAL_REJECTED
        return build_result(self.kind.value, status, message, started, secrets=config.secret_values)


def build_result(
    name: str,
    status: ProbeStatus,
    message: str | None,
    started: float,
    *,
    secrets: tuple[str, ...] = (),
) -> ProbeResult:
    return ProbeResult(
        name=name,
        status=status,
        message=scrub(message, secrets) if message else None,
        checked_at=datetime.now(UTC),
        latency_ms=round((time.perf_counter() - started) * 1000, 2),
    )


def scrub(message: str, secrets: tuple[str, ...]) -> str:
    for secret in secrets:
        if secret:
            message = message.replace(secret, REDACTED)
    return message


def raise_for_credentials(response: httpx.Response) -> None:
    if response.status_code in (401, 403):
        raise CredentialRejected()


def http_failure(response: httpx.Response) -> tuple[ProbeStatus, str]:
    return ProbeStatus.DOWN, f"unexpected HTTP {response.status_code}"
