from __future__ import annotations

import asyncio
import contextlib
import smtplib
import socket
import ssl
from typing import Any

from qms_core.integrations.probes.base import ConnectivityProbe, CredentialRejected, ProbeStatus
from qms_core.integrations.snapshots import ResolvedIntegrationConfig
from qms_core.models.integration_config import IntegrationKind


class SmtpRelayProbe(ConnectivityProbe):
    """EHLO, STARTTLS and LOGIN against the relay; ``smtplib`` is blocking so it runs in a worker thread."""

    kind = IntegrationKind.EMAIL

    async def check(self, config: ResolvedIntegrationConfig, *, timeout: float) -> tuple[ProbeStatus, str | None]:
        handshake = _SmtpHandshake(config.values, timeout)
        try:
            return await asyncio.to_thread(handshake.run)
        except asyncio.CancelledError:
            # smtplib's timeout bounds each read, not the whole handshake.
            handshake.abort()
            raise


class _SmtpHandshake:
    def __init__(self, values: dict[str, Any], timeout: float) -> None:
        self.values = values
        self.timeout = timeout
        self.server: smtplib.SMTP | None = None
        self.aborted = False

    def run(self) -> tuple[ProbeStatus, str | None]:
        values = self.values
        self.server = server = smtplib.SMTP(timeout=self.timeout)
        if self.aborted:
            raise smtplib.SMTPServerDisconnected("handshake aborted")
        server.connect(values["smtp_host"], values["smtp_port"])
        with server:
            if self.aborted:
                raise smtplib.SMTPServerDisconnected("handshake aborted")
            server.ehlo()
            if values["use_tls"]:
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            if values.get("smtp_username"):
                try:
                    server.login(values["smtp_username"], values.get("smtp_password") or "")
                except smtplib.SMTPAuthenticationError as exc:
                    raise CredentialRejected() from exc
        return ProbeStatus.OK, None

    def abort(self) -> None:
        """Called from the event loop; shutting the socket down wakes the blocked worker read."""
        self.aborted = True
        sock = getattr(self.server, "sock", None)
        if sock is not None:
            with contextlib.suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
