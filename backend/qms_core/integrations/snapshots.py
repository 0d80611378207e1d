from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from qms_core.models.integration_config import IntegrationKind


@dataclass(frozen=True, slots=True)
class IntegrationConfig:
    """Copy of a stored record. Secret fields hold sealed blobs or ``None``."""

    kind: IntegrationKind
    values: dict[str, Any]
    enabled: bool
    version: int
    updated_at: datetime
    updated_by: str


@dataclass(frozen=True, slots=True)
class ResolvedIntegrationConfig:
    """Plaintext view handed to connectivity probes. Never serialized."""

    kind: IntegrationKind
    values: dict[str, Any]
    enabled: bool
    version: int
    secret_values: tuple[str, ...] = field(default=(), repr=False)

    def __repr__(self) -> str:
        return f"ResolvedIntegrationConfig(kind={self.kind.value!r}, enabled={self.enabled}, version={self.version})"
