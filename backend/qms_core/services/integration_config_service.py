import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from qms_core.core.encryption.secret_codec import DecryptionError, SecretCodec
from qms_core.core.errors import AppError, ErrorCodes, not_found
from qms_core.integrations.schema_registry import MASKED_SECRET, schema_for, validate
from qms_core.integrations.snapshots import IntegrationConfig, ResolvedIntegrationConfig
from qms_core.models.integration_config import IntegrationConfigRecord, IntegrationKind
from qms_core.repositories.integration_config_repository import IntegrationConfigRepository
from qms_core.schemas.integration_config import (
    IntegrationConfigResponse,
    IntegrationListResponse,
    IntegrationSummary,
)

logger = logging.getLogger(__name__)


class IntegrationConfigService:
    def __init__(self, *, db: AsyncSession, codec: SecretCodec) -> None:
        self.db = db
        self.codec = codec
        self.repository = IntegrationConfigRepository(db)

    async def list_summaries(self) -> IntegrationListResponse:
        records = {record.kind: record for record in await self.repository.list_all()}
        items = []
        for kind in IntegrationKind:
            record = records.get(kind.value)
            items.append(
                IntegrationSummary(
                    kind=kind,
                    configured=record is not None,
                    enabled=bool(record and record.enabled),
                    version=record.version if record else 0,
                    updated_at=record.updated_at if record else None,
                )
            )
        return IntegrationListResponse(items=items)

    async def get(self, *, kind: IntegrationKind) -> IntegrationConfigResponse:
        record = await self.repository.get(kind=kind)
        if record is None:
            raise not_found(kind.value)
        return self._to_response(self._snapshot(record))

    async def list_enabled(self) -> list[IntegrationConfig]:
        return [self._snapshot(record) for record in await self._enabled_records()]

    async def resolve_enabled(self) -> list[ResolvedIntegrationConfig]:
        return [self._resolve(self._snapshot(record)) for record in await self._enabled_records()]

    async def resolve(self, *, kind: IntegrationKind) -> ResolvedIntegrationConfig:
        record = await self.repository.get(kind=kind)
        if record is None:
            raise not_found(kind.value)
        return self._resolve(self._snapshot(record))

    async def put(
        self,
        *,
        kind: IntegrationKind,
        values: dict[str, Any],
        enabled: bool,
        actor: str,
        expected_version: int | None,
        correlation_id: str | None = None,
        allow_overwrite: bool = False,
    ) -> IntegrationConfigResponse:
        validated = validate(kind, values)
        record = await self.repository.get(kind=kind)
        current = self._snapshot(record) if record is not None else None
        server_version = current.version if current else 0

        if expected_version is None:
            if current is not None and not allow_overwrite:
                raise AppError(
                    code=ErrorCodes.INTEGRATION_VERSION_REQUIRED,
                    message="Version is required when updating an integration.",
                    status_code=409,
                    details={"server_version": server_version},
                )
            expected_version = server_version
        if expected_version != server_version:
            raise self._conflict(expected_version=expected_version, current=current)

        stored_values = self._seal_values(kind, validated, current)
        now = datetime.now(UTC)

        if current is None:
            written = await self.repository.insert(
                entry=IntegrationConfigRecord(
                    kind=kind.value,
                    values_json=stored_values,
                    enabled=enabled,
                    version=1,
                    updated_at=now,
                    updated_by=actor,
                )
            )
        else:
            written = await self.repository.compare_and_swap(
                kind=kind,
                expected_version=expected_version,
                values=stored_values,
                enabled=enabled,
                updated_by=actor,
                updated_at=now,
            )
            if written is None:
                await self.db.rollback()
                latest = await self.repository.get(kind=kind)
                raise self._conflict(
                    expected_version=expected_version,
                    current=self._snapshot(latest) if latest is not None else None,
                )
        snapshot = self._snapshot(written)
        await self.db.commit()

        logger.info(
            "integration.updated",
            extra={
                "kind": kind.value,
                "version": snapshot.version,
                "actor": actor,
                "enabled": enabled,
                "changed_fields": _changed_fields(current, snapshot),
                "correlation_id": correlation_id,
            },
        )
        return self._to_response(snapshot)

    async def set_enabled(
        self,
        *,
        kind: IntegrationKind,
        enabled: bool,
        expected_version: int,
        actor: str,
        correlation_id: str | None = None,
    ) -> IntegrationConfigResponse:
        record = await self.repository.get(kind=kind)
        if record is None:
            raise not_found(kind.value)
        current = self._snapshot(record)
        if current.version != expected_version:
            raise self._conflict(expected_version=expected_version, current=current)
        if current.enabled == enabled:
            return self._to_response(current)

        written = await self.repository.compare_and_swap(
            kind=kind,
            expected_version=expected_version,
            values=dict(current.values),
            enabled=enabled,
            updated_by=actor,
            updated_at=datetime.now(UTC),
        )
        if written is None:
            await self.db.rollback()
            latest = await self.repository.get(kind=kind)
            raise self._conflict(
                expected_version=expected_version,
                current=self._snapshot(latest) if latest is not None else None,
            )
        snapshot = self._snapshot(written)
        await self.db.commit()

        logger.info(
            "integration.enabled" if enabled else "integration.disabled",
            extra={"kind": kind.value, "version": snapshot.version, "actor": actor, "correlation_id": correlation_id},
        )
        return self._to_response(snapshot)

    async def _enabled_records(self) -> list[IntegrationConfigRecord]:
        records = [record for record in await self.repository.list_all() if record.enabled]
        return sorted(records, key=lambda record: IntegrationKind.ordinal(IntegrationKind(record.kind)))

    def _seal_values(
        self, kind: IntegrationKind, validated: dict[str, Any], current: IntegrationConfig | None
    ) -> dict[str, Any]:
        schema = schema_for(kind)
        stored = dict(validated)
        missing: dict[str, str] = {}
        for name in schema.secret_fields:
            value = validated[name]
            if value == MASKED_SECRET:
                previous = current.values.get(name) if current else None
                if previous is None and schema.field(name).required:
                    missing[name] = "required"
                stored[name] = previous
            elif value:
                stored[name] = self.codec.seal(value, context=_secret_context(kind, name))
            else:
                stored[name] = None
        if missing:
            raise AppError(
                code=ErrorCodes.INTEGRATION_VALIDATION_FAILED,
                message="Integration configuration is invalid.",
                status_code=400,
                details={"kind": kind.value, "fields": missing},
            )
        return stored

    def _reveal(self, kind: IntegrationKind, name: str, blob: Any) -> str | None:
        if blob is None:
            return None
        try:
            return self.codec.reveal(blob, context=_secret_context(kind, name))
        except DecryptionError:
            logger.warning("secret.decrypt_failed", extra={"kind": kind.value, "field": name})
            return None

    def _resolve(self, config: IntegrationConfig) -> ResolvedIntegrationConfig:
        values = dict(config.values)
        secrets: list[str] = []
        for name in schema_for(config.kind).secret_fields:
            plaintext = self._reveal(config.kind, name, values.get(name))
            values[name] = plaintext
            if plaintext:
                secrets.append(plaintext)
        return ResolvedIntegrationConfig(
            kind=config.kind,
            values=values,
            enabled=config.enabled,
            version=config.version,
            secret_values=tuple(secrets),
        )

    def _to_response(self, config: IntegrationConfig) -> IntegrationConfigResponse:
        values = dict(config.values)
        for name in schema_for(config.kind).secret_fields:
            values[name] = MASKED_SECRET if self._reveal(config.kind, name, values.get(name)) is not None else None
        return IntegrationConfigResponse(
            kind=config.kind,
            values=values,
            enabled=config.enabled,
            version=config.version,
            updated_at=config.updated_at,
            updated_by=config.updated_by,
        )

    @staticmethod
    def _snapshot(record: IntegrationConfigRecord) -> IntegrationConfig:
        return IntegrationConfig(
            kind=IntegrationKind(record.kind),
            values=dict(record.values_json or {}),
            enabled=record.enabled,
            version=record.version,
            updated_at=record.updated_at,
            updated_by=record.updated_by,
        )

    @staticmethod
    def _conflict(*, expected_version: int, current: IntegrationConfig | None) -> AppError:
        details: dict[str, Any] = {
            "expected_version": expected_version,
            "server_version": current.version if current else 0,
        }
        if current is not None:
            details["updated_at"] = current.updated_at.isoformat()
        return AppError(
            code=ErrorCodes.CONCURRENCY_CONFLICT,
            message="Integration version conflict.",
            status_code=409,
            details=details,
        )


def _secret_context(kind: IntegrationKind, name: str) -> str:
    return f"{kind.value}.{name}"


def _changed_fields(before: IntegrationConfig | None, after: IntegrationConfig) -> list[str]:
    changed = [
        name
        for name in schema_for(after.kind).field_names
        if before is None or before.values.get(name) != after.values.get(name)
    ]
    if before is None or before.enabled != after.enabled:
        changed.append("enabled")
    return changed
