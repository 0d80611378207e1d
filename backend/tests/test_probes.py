import asyncio
import base64
import contextlib
import json
import smtplib

import httpx
import pytest

from qms_core.integrations.probe_dispatcher import ProbeDispatcher
from qms_core.integrations.probes import email as email_probe_module
from qms_core.integrations.probes.base import CREDENTIAL_REJECTED, ProbeStatus
from qms_core.integrations.probes.email import SmtpRelayProbe
from qms_core.integrations.probes.identity import IdentityProviderProbe
from qms_core.integrations.probes.media_recording import LOGIN_PATH, SERVICE_INFO_PATH, RecordingPlatformProbe
from qms_core.integrations.probes.search_index import SearchClusterProbe
from qms_core.integrations.probes.telephony import ContactCenterProbe
from qms_core.integrations.schema_registry import defaults_for
from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.models.integration_config import IntegrationKind


def _config(kind: IntegrationKind, **values) -> ResolvedIntegrationConfig:
    merged = {**defaults_for(kind), **values}
    secret_names = ("client_secret", "password", "api_secret", "smtp_password")
    secrets = tuple(value for name, value in values.items() if name in secret_names and value)
    return ResolvedIntegrationConfig(kind=kind, values=merged, enabled=True, version=1, secret_values=secrets)


def _mock_http(monkeypatch, handler) -> list[httpx.Request]:
    seen: list[httpx.Request] = []
    real_client = httpx.AsyncClient

    def recording_handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    def factory(**kwargs):
        kwargs.pop("verify", None)
        return real_client(transport=httpx.MockTransport(recording_handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    return seen


def _basic(username: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode("ascii")


IDENTITY = dict(base_url="https://sso.example.com/", realm="qms", client_id="qms-backend", client_secret="cs-1")


@pytest.mark.asyncio
async def test_identity_probe_requests_client_credentials_token(monkeypatch) -> None:
    seen = _mock_http(monkeypatch, lambda request: httpx.Response(200, json={"access_token": "t"}))

    result = await IdentityProviderProbe().probe(_config(IntegrationKind.IDENTITY, **IDENTITY), timeout=1.0)

    assert result.status is ProbeStatus.OK
    assert str(seen[0].url) == "https://sso.example.com/realms/qms/protocol/openid-connect/token"
    assert seen[0].headers["authorization"] == _basic("qms-backend", "cs-1")
    assert b"grant_type=client_credentials" in seen[0].content


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [httpx.Response(401), httpx.Response(400, json={"error": "invalid_client"})],
)
async def test_identity_probe_rejected_client(monkeypatch, response) -> None:
    _mock_http(monkeypatch, lambda request: response)

    result = await IdentityProviderProbe().probe(_config(IntegrationKind.IDENTITY, **IDENTITY), timeout=1.0)

    assert result.status is ProbeStatus.DOWN
    assert result.message == CREDENTIAL_REJECTED


@pytest.mark.asyncio
async def test_identity_probe_server_error(monkeypatch) -> None:
    _mock_http(monkeypatch, lambda request: httpx.Response(503))

    result = await IdentityProviderProbe().probe(_config(IntegrationKind.IDENTITY, **IDENTITY), timeout=1.0)

    assert result.status is ProbeStatus.DOWN
    assert result.message == "unexpected HTTP 503"


@pytest.mark.asyncio
async def test_missing_secret_is_rejected_without_a_request(monkeypatch) -> None:
    seen = _mock_http(monkeypatch, lambda request: httpx.Response(200))

    result = await ContactCenterProbe().probe(
        _config(IntegrationKind.TELEPHONY, host="uccx.local", username="admin", password=None), timeout=1.0
    )

    assert result.message == CREDENTIAL_REJECTED
    assert seen == []


@pytest.mark.asyncio
async def test_telephony_probe_lists_teams_with_basic_auth(monkeypatch) -> None:
    seen = _mock_http(monkeypatch, lambda request: httpx.Response(200, json={"team": []}))

    result = await ContactCenterProbe().probe(
        _config(IntegrationKind.TELEPHONY, host="uccx.local", username="admin", password="S3cr3t!"), timeout=1.0
    )

    assert result.status is ProbeStatus.OK
    assert str(seen[0].url) == "https://uccx.local:8080/adminapi/team"
    assert seen[0].headers["authorization"] == _basic("admin", "S3cr3t!")


@pytest.mark.asyncio
async def test_telephony_probe_wrong_password(monkeypatch) -> None:
    _mock_http(monkeypatch, lambda request: httpx.Response(401))

    result = await ContactCenterProbe().probe(
        _config(IntegrationKind.TELEPHONY, host="uccx.local", username="admin", password="wrong"), timeout=1.0
    )

    assert result.status is ProbeStatus.DOWN
    assert result.message == CREDENTIAL_REJECTED


@pytest.mark.asyncio
async def test_recording_probe_logs_in(monkeypatch) -> None:
    seen = _mock_http(monkeypatch, lambda request: httpx.Response(200, json={"responseCode": 2000}))

    result = await RecordingPlatformProbe().probe(
        _config(IntegrationKind.MEDIA_RECORDING, api_url="https://ms.local:8440", api_key="api", api_secret="ks"),
        timeout=1.0,
    )

    assert result.status is ProbeStatus.OK
    assert seen[0].url.path == LOGIN_PATH
    assert json.loads(seen[0].content) == {"username": "api", "password": "ks"}


@pytest.mark.asyncio
async def test_recording_probe_falls_back_to_service_info(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == LOGIN_PATH:
            return httpx.Response(404)
        return httpx.Response(200, json={"version": "11.5"})

    seen = _mock_http(monkeypatch, handler)

    result = await RecordingPlatformProbe().probe(
        _config(IntegrationKind.MEDIA_RECORDING, api_url="https://ms.local:8440", api_key="api", api_secret="ks"),
        timeout=1.0,
    )

    assert result.status is ProbeStatus.OK
    assert [request.url.path for request in seen] == [LOGIN_PATH, SERVICE_INFO_PATH]
    assert seen[1].headers["authorization"] == _basic("api", "ks")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("cluster_status", "expected", "message"),
    [
        ("green", ProbeStatus.OK, None),
        ("yellow", ProbeStatus.DEGRADED, "cluster status yellow"),
        ("red", ProbeStatus.DOWN, "cluster status red"),
    ],
)
async def test_search_probe_maps_cluster_status(monkeypatch, cluster_status, expected, message) -> None:
    seen = _mock_http(monkeypatch, lambda request: httpx.Response(200, json={"status": cluster_status}))

    result = await SearchClusterProbe().probe(_config(IntegrationKind.SEARCH_INDEX, use_tls=False), timeout=1.0)

    assert result.status is expected
    assert result.message == message
    assert str(seen[0].url) == "http://localhost:9200/_cluster/health"
    assert "authorization" not in seen[0].headers


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    reject_login = False

    def __init__(self, host="", port=0, timeout=None) -> None:
        self.host, self.port, self.timeout = host, port, timeout
        self.calls: list[str] = []
        FakeSMTP.instances.append(self)

    def connect(self, host, port) -> None:
        self.host, self.port = host, port
        self.calls.append("connect")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.calls.append("quit")

    def ehlo(self) -> None:
        self.calls.append("ehlo")

    def starttls(self, context=None) -> None:
        self.calls.append("starttls")

    def login(self, username, password) -> None:
        self.calls.append("login")
        if FakeSMTP.reject_login:
            raise smtplib.SMTPAuthenticationError(535, b"5.7.8 Authentication failed")


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.reject_login = False
    monkeypatch.setattr(email_probe_module.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.mark.asyncio
async def test_email_probe_handshake(fake_smtp) -> None:
    result = await SmtpRelayProbe().probe(
        _config(
            IntegrationKind.EMAIL,
            smtp_host="smtp.local",
            from_address="qa@x",
            smtp_username="mailer",
            smtp_password="pw",
        ),
        timeout=2.0,
    )

    assert result.status is ProbeStatus.OK
    smtp = fake_smtp.instances[0]
    assert (smtp.host, smtp.port, smtp.timeout) == ("smtp.local", 587, 2.0)
    assert smtp.calls == ["connect", "ehlo", "starttls", "ehlo", "login", "quit"]


@pytest.mark.asyncio
async def test_email_probe_skips_login_without_username(fake_smtp) -> None:
    result = await SmtpRelayProbe().probe(
        _config(IntegrationKind.EMAIL, smtp_host="smtp.local", from_address="qa@x", use_tls=False),
        timeout=2.0,
    )

    assert result.status is ProbeStatus.OK
    assert fake_smtp.instances[0].calls == ["connect", "ehlo", "quit"]


@pytest.mark.asyncio
async def test_email_probe_rejected_login(fake_smtp) -> None:
    fake_smtp.reject_login = True

    result = await SmtpRelayProbe().probe(
        _config(
            IntegrationKind.EMAIL,
            smtp_host="smtp.local",
            from_address="qa@x",
            smtp_username="mailer",
            smtp_password="bad",
        ),
        timeout=2.0,
    )

    assert result.status is ProbeStatus.DOWN
    assert result.message == CREDENTIAL_REJECTED


@pytest.mark.asyncio
async def test_slow_relay_connection_is_closed_after_timeout() -> None:
    connected, closed = asyncio.Event(), asyncio.Event()

    async def drip_banner(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        # Each byte arrives inside smtplib's per-read timeout, so the greeting never completes on its own.
        async def drip() -> None:
            with contextlib.suppress(ConnectionError):
                while True:
                    writer.write(b"2")
                    await writer.drain()
                    await asyncio.sleep(0.2)

        connected.set()
        dripping = asyncio.create_task(drip())
        with contextlib.suppress(ConnectionError):
            await reader.read()
        closed.set()
        dripping.cancel()
        writer.close()

    server = await asyncio.start_server(drip_banner, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        result = await ProbeDispatcher(timeout=0.5).probe(
            IntegrationKind.EMAIL,
            _config(IntegrationKind.EMAIL, smtp_host="127.0.0.1", smtp_port=port, from_address="qa@x", use_tls=False),
        )

        assert result.status is ProbeStatus.DOWN
        assert result.message == "timeout after 0.5s"
        assert connected.is_set()
        await asyncio.wait_for(closed.wait(), timeout=1.0)
    finally:
        server.close()
        await server.wait_closed()
