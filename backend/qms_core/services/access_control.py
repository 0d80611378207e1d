from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from qms_core.core.config import Settings
from qms_core.core.errors import forbidden
from qms_core.models.integration_config import IntegrationKind
from qms_core.services.identity_token import CredentialClaims, Role

logger = logging.getLogger(__name__)


class IntegrationAction(str, enum.Enum):
    READ = "integration:read"
    WRITE = "integration:write"
    TEST = "integration:test"


class RolePolicyError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class RolePolicy:
    grants: Mapping[IntegrationAction, frozenset[Role]]

    @classmethod
    def build(cls, grants: Mapping[IntegrationAction, Iterable[str | Role]]) -> "RolePolicy":
        resolved: dict[IntegrationAction, frozenset[Role]] = {}
        for action in IntegrationAction:
            names = grants.get(action, ())
            try:
                resolved[action] = frozenset(Role(str(name).upper()) for name in names)
            except ValueError as exc:
                raise RolePolicyError(f"Unknown role in policy for {action.value}: {exc}") from exc
        return cls(grants=MappingProxyType(resolved))

    @classmethod
    def from_settings(cls, settings: Settings) -> "RolePolicy":
        return cls.build(
            {
                IntegrationAction.READ: settings.integration_read_roles,
                IntegrationAction.WRITE: settings.integration_write_roles,
                IntegrationAction.TEST: settings.integration_test_roles,
            }
        )

    @classmethod
    def admin_only(cls) -> "RolePolicy":
        return cls.build({action: [Role.ADMIN] for action in IntegrationAction})

    def is_allowed(self, claims: CredentialClaims | None, action: IntegrationAction) -> bool:
        if claims is None or not claims.roles:
            return False
        return bool(claims.roles & self.grants.get(action, frozenset()))

    def authorize(
        self,
        claims: CredentialClaims | None,
        action: IntegrationAction,
        kind: IntegrationKind | None = None,
    ) -> None:
        if self.is_allowed(claims, action):
            return
        logger.info(
            "access.denied",
            extra={
                "action": action.value,
                "kind": kind.value if kind else None,
                "subject": claims.sub if claims else None,
            },
        )
        raise forbidden()
