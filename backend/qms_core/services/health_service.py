"""Liveness, readiness and the full dependency report.

Liveness never touches I/O. Readiness only looks at persistence. The full report
checks the database alongside the integration stage, which loads the enabled
configs and then probes them concurrently under a single shared deadline, so the
wall-clock cost is bounded by one probe timeout rather than the sum of them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from qms_core.integrations.probe_dispatcher import ProbeDispatcher
from qms_core.integrations.probes.base import ProbeResult, ProbeStatus, build_result
from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.schemas.health import (
    DependencyCheck,
    HealthReportResponse,
    LivenessResponse,
    ReadinessResponse,
)

logger = logging.getLogger(__name__)

PROCESS_STARTED = time.monotonic()

DATABASE_CHECK = "database"
CONFIGURATION_CHECK = "integrations"

# Floor for the probe stage when loading the configs used up the deadline.
MINIMUM_PROBE_WINDOW = 0.001

DatabaseCheck = Callable[[], Awaitable[None]]
ConfigLoader = Callable[[], Awaitable[list[ResolvedIntegrationConfig]]]


class HealthStatus:
    OK = "OK"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"
    NOT_READY = "NOT_READY"


class HealthService:
    def __init__(
        self,
        *,
        database_check: DatabaseCheck,
        config_loader: ConfigLoader,
        dispatcher: ProbeDispatcher,
        version: str,
        started_at: float = PROCESS_STARTED,
    ) -> None:
        self.database_check = database_check
        self.config_loader = config_loader
        self.dispatcher = dispatcher
        self.version = version
        self.started_at = started_at

    @staticmethod
    def liveness() -> LivenessResponse:
        return LivenessResponse(status=HealthStatus.OK, timestamp=datetime.now(UTC))

    async def check_database(self) -> ProbeResult:
        started = time.perf_counter()
        try:
            await asyncio.wait_for(self.database_check(), timeout=self.dispatcher.timeout)
        except TimeoutError:
            return build_result(
                DATABASE_CHECK, ProbeStatus.DOWN, f"timeout after {self.dispatcher.timeout:g}s", started
            )
        except Exception as exc:
            # Driver errors carry hosts and DSN fragments; the report is unauthenticated.
            logger.warning(
                "health.database_unreachable", exc_info=True, extra={"error_type": type(exc).__name__}
            )
            return build_result(DATABASE_CHECK, ProbeStatus.DOWN, type(exc).__name__, started)
        return build_result(DATABASE_CHECK, ProbeStatus.OK, None, started)

    async def readiness(self) -> ReadinessResponse:
        database = await self.check_database()
        return ReadinessResponse(
            status=HealthStatus.OK if database.ok else HealthStatus.NOT_READY,
            timestamp=datetime.now(UTC),
        )

    async def report(self) -> HealthReportResponse:
        database, integrations = await asyncio.gather(self.check_database(), self._integration_checks())
        checks: dict[str, ProbeResult] = {DATABASE_CHECK: database}

        if database.ok:
            checks.update(integrations)

        if not database.ok:
            status = HealthStatus.DOWN
        elif all(result.ok for result in checks.values()):
            status = HealthStatus.OK
        else:
            status = HealthStatus.DEGRADED

        return HealthReportResponse(
            status=status,
            timestamp=datetime.now(UTC),
            uptime=round(time.monotonic() - self.started_at, 3),
            version=self.version,
            checks={
                name: DependencyCheck(
                    status=result.status.value, message=result.message, latency_ms=result.latency_ms
                )
                for name, result in checks.items()
            },
        )

    async def _integration_checks(self) -> dict[str, ProbeResult]:
        """Loading the configs and probing them share one deadline."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.dispatcher.timeout
        started = time.perf_counter()
        try:
            configs = await asyncio.wait_for(self.config_loader(), timeout=self.dispatcher.timeout)
        except Exception as exc:
            logger.warning("health.integrations_unavailable", extra={"error_type": type(exc).__name__})
            return {
                CONFIGURATION_CHECK: build_result(
                    CONFIGURATION_CHECK, ProbeStatus.DOWN, "integration configuration unavailable", started
                )
            }
        remaining = max(deadline - loop.time(), MINIMUM_PROBE_WINDOW)
        results = await self.dispatcher.probe_many(configs, timeout=remaining)
        return {kind.value: result for kind, result in results.items()}
