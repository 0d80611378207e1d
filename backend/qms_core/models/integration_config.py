import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from qms_core.db.base import Base, TimestampMixin, VersionMixin


class IntegrationKind(str, enum.Enum):
    # Declaration order is the canonical listing order.
    IDENTITY = "identity"
    TELEPHONY = "telephony"
    MEDIA_RECORDING = "media_recording"
    SEARCH_INDEX = "search_index"
    EMAIL = "email"

    @classmethod
    def ordinal(cls, kind: "IntegrationKind") -> int:
        return list(cls).index(kind)


class IntegrationConfigRecord(Base, TimestampMixin, VersionMixin):
    __tablename__ = "integration_configs"

    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    values_json: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
