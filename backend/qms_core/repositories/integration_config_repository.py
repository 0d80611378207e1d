from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qms_core.core.errors import AppError, ErrorCodes
from qms_core.models.integration_config import IntegrationConfigRecord, IntegrationKind


class IntegrationConfigRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, *, kind: IntegrationKind) -> IntegrationConfigRecord | None:
        stmt = (
            select(IntegrationConfigRecord)
            .where(IntegrationConfigRecord.kind == kind.value)
            .execution_options(populate_existing=True)
        )
        return await self.db.scalar(stmt)

    async def list_all(self) -> list[IntegrationConfigRecord]:
        stmt = select(IntegrationConfigRecord).execution_options(populate_existing=True)
        return list((await self.db.scalars(stmt)).all())

    async def insert(self, *, entry: IntegrationConfigRecord) -> IntegrationConfigRecord:
        self.db.add(entry)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            raise AppError(
                code=ErrorCodes.CONCURRENCY_CONFLICT,
                message="Integration version conflict.",
                status_code=409,
                details={"expected_version": 0, "kind": entry.kind},
            ) from exc
        await self.db.refresh(entry)
        return entry

    async def compare_and_swap(
        self,
        *,
        kind: IntegrationKind,
        expected_version: int,
        values: dict[str, Any],
        enabled: bool,
        updated_by: str,
        updated_at: datetime,
    ) -> IntegrationConfigRecord | None:
        """Write a new version only if the stored one is still ``expected_version``.

        Returns ``None`` when another writer got there first.
        """
        stmt = (
            update(IntegrationConfigRecord)
            .where(
                IntegrationConfigRecord.kind == kind.value,
                IntegrationConfigRecord.version == expected_version,
            )
            .values(
                values_json=values,
                enabled=enabled,
                version=expected_version + 1,
                updated_by=updated_by,
                updated_at=updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            return None
        return await self.get(kind=kind)
