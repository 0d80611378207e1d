import asyncio

import pytest
from fastapi.testclient import TestClient

from qms_core.api.dependencies import health_service_dependency
from qms_core.integrations.probe_dispatcher import ProbeDispatcher
from qms_core.integrations.probes.base import ConnectivityProbe, ProbeStatus
from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.main import app
from qms_core.models.integration_config import IntegrationKind
from qms_core.services.health_service import HealthService, HealthStatus


class FakeProbe(ConnectivityProbe):
    def __init__(self, kind: IntegrationKind, *, delay: float = 0.0) -> None:
        self.kind = kind
        self.delay = delay

    async def check(self, config, *, timeout):
        await asyncio.sleep(self.delay)
        return ProbeStatus.OK, None


async def _database_ok() -> None:
    return None


async def _database_down() -> None:
    raise ConnectionRefusedError("connection refused")


def _configs(*kinds: IntegrationKind, enabled: bool = True) -> list[ResolvedIntegrationConfig]:
    return [ResolvedIntegrationConfig(kind=kind, values={}, enabled=enabled, version=1) for kind in kinds]


def _service(*, database_check=_database_ok, configs=(), probes=(), timeout: float = 0.2) -> HealthService:
    async def load() -> list[ResolvedIntegrationConfig]:
        return list(configs)

    return HealthService(
        database_check=database_check,
        config_loader=load,
        dispatcher=ProbeDispatcher(timeout=timeout, probes={probe.kind: probe for probe in probes}),
        version="1.0.0",
    )


def test_liveness_needs_no_dependencies() -> None:
    assert HealthService.liveness().status == HealthStatus.OK


@pytest.mark.asyncio
async def test_report_is_ok_with_no_integrations_enabled() -> None:
    report = await _service().report()

    assert report.status == HealthStatus.OK
    assert list(report.checks) == ["database"]
    assert report.version == "1.0.0"
    assert report.uptime >= 0


@pytest.mark.asyncio
async def test_one_timed_out_probe_degrades_the_report() -> None:
    service = _service(
        configs=_configs(IntegrationKind.IDENTITY, IntegrationKind.SEARCH_INDEX),
        probes=[FakeProbe(IntegrationKind.IDENTITY), FakeProbe(IntegrationKind.SEARCH_INDEX, delay=5)],
        timeout=0.1,
    )

    report = await service.report()

    assert report.status == HealthStatus.DEGRADED
    assert report.checks["database"].status == "OK"
    assert report.checks["identity"].status == "OK"
    assert report.checks["search_index"].status == "DOWN"
    assert report.checks["search_index"].message == "timeout after 0.1s"


@pytest.mark.asyncio
async def test_disabled_integrations_are_not_probed() -> None:
    service = _service(
        configs=_configs(IntegrationKind.EMAIL, enabled=False),
        probes=[FakeProbe(IntegrationKind.EMAIL)],
    )

    report = await service.report()

    assert "email" not in report.checks
    assert report.status == HealthStatus.OK


@pytest.mark.asyncio
async def test_database_failure_is_down() -> None:
    service = _service(
        database_check=_database_down,
        configs=_configs(IntegrationKind.EMAIL),
        probes=[FakeProbe(IntegrationKind.EMAIL)],
    )

    report = await service.report()

    assert report.status == HealthStatus.DOWN
    assert report.checks["database"].status == "DOWN"
    assert "email" not in report.checks


@pytest.mark.asyncio
async def test_config_load_failure_degrades() -> None:
    async def broken_loader():
        raise RuntimeError("session closed")

    service = HealthService(
        database_check=_database_ok,
        config_loader=broken_loader,
        dispatcher=ProbeDispatcher(timeout=0.2, probes={}),
        version="1.0.0",
    )

    report = await service.report()

    assert report.status == HealthStatus.DEGRADED
    assert report.checks["integrations"].status == "DOWN"


@pytest.mark.asyncio
async def test_report_time_is_bounded_by_one_timeout() -> None:
    service = _service(
        configs=_configs(*IntegrationKind),
        probes=[FakeProbe(kind, delay=5) for kind in IntegrationKind],
        timeout=0.2,
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    report = await service.report()

    assert loop.time() - started < 1.0
    assert all(report.checks[kind.value].status == "DOWN" for kind in IntegrationKind)


@pytest.mark.asyncio
async def test_readiness_reflects_database() -> None:
    assert (await _service().readiness()).status == HealthStatus.OK
    assert (await _service(database_check=_database_down).readiness()).status == HealthStatus.NOT_READY


def test_health_endpoints_status_codes() -> None:
    app.dependency_overrides[health_service_dependency] = lambda: _service(database_check=_database_down)
    try:
        client = TestClient(app)
        live = client.get("/health/live")
        ready = client.get("/health/ready")
        report = client.get("/health")
    finally:
        app.dependency_overrides.clear()

    assert live.status_code == 200
    assert live.json()["status"] == "OK"
    assert ready.status_code == 503
    assert ready.json()["status"] == "NOT_READY"
    assert report.status_code == 503
    assert report.json()["status"] == "DOWN"


def test_degraded_report_is_still_200() -> None:
    app.dependency_overrides[health_service_dependency] = lambda: _service(
        configs=_configs(IntegrationKind.TELEPHONY),
        probes=[FakeProbe(IntegrationKind.TELEPHONY, delay=5)],
        timeout=0.05,
    )
    try:
        response = TestClient(app).get("/health", headers={"X-Correlation-ID": "corr-health-1"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["status"] == "DEGRADED"
    assert response.headers["x-correlation-id"] == "corr-health-1"


@pytest.mark.asyncio
async def test_slow_database_and_slow_loader_share_one_deadline() -> None:
    async def slow_database() -> None:
        await asyncio.sleep(0.4)

    async def slow_loader() -> list[ResolvedIntegrationConfig]:
        await asyncio.sleep(0.4)
        return _configs(IntegrationKind.IDENTITY)

    service = HealthService(
        database_check=slow_database,
        config_loader=slow_loader,
        dispatcher=ProbeDispatcher(
            timeout=0.5, probes={IntegrationKind.IDENTITY: FakeProbe(IntegrationKind.IDENTITY, delay=5)}
        ),
        version="1.0.0",
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    report = await service.report()

    assert loop.time() - started < 0.8
    assert report.status == HealthStatus.DEGRADED
    assert report.checks["database"].status == "OK"
    assert report.checks["identity"].status == "DOWN"
    assert report.checks["identity"].message.startswith("timeout after")


@pytest.mark.asyncio
async def test_database_error_detail_stays_out_of_the_report(caplog) -> None:
    async def leaky_database() -> None:
        raise ConnectionRefusedError("password=hunter2 host=db.internal:5432")

    with caplog.at_level("WARNING", logger="qms_core.services.health_service"):
        report = await _service(database_check=leaky_database).report()

    assert report.checks["database"].status == "DOWN"
    assert report.checks["database"].message == "ConnectionRefusedError"
    assert "db.internal" not in report.model_dump_json()
    assert any(record.getMessage() == "health.database_unreachable" for record in caplog.records)
