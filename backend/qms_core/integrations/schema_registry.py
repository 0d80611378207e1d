"""Typed configuration shapes for every integration kind.

Each kind declares an ordered tuple of :class:`FieldSpec`. ``validate`` turns the
raw JSON an administrator submits into a value map whose keys are exactly the
schema's field names, filling defaults for optional fields that were left out.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from qms_core.core.errors import AppError, ErrorCodes, UnknownIntegrationKind
from qms_core.models.integration_config import IntegrationKind

# Placeholder that stands for "a secret is stored here". Sent back on update it means "keep it".
MASKED_SECRET = "•••set•••"


class FieldKind(str, enum.Enum):
    STRING = "string"
    INT = "int"
    BOOL = "bool"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    kind: FieldKind
    secret: bool = False
    required: bool = False
    default: str | int | bool | None = None
    description: str = ""


@dataclass(frozen=True, slots=True)
class IntegrationSchema:
    kind: IntegrationKind
    fields: tuple[FieldSpec, ...]

    def __post_init__(self) -> None:
        names = [spec.name for spec in self.fields]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Duplicate field names in {self.kind.value} schema: {sorted(duplicates)}")
        for spec in self.fields:
            if spec.secret and spec.default is not None:
                raise ValueError(f"Secret field {self.kind.value}.{spec.name} cannot carry a default")

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    @property
    def secret_fields(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.secret)

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(name)


_S, _I, _B = FieldKind.STRING, FieldKind.INT, FieldKind.BOOL

_SCHEMAS: dict[IntegrationKind, IntegrationSchema] = {
    IntegrationKind.IDENTITY: IntegrationSchema(
        kind=IntegrationKind.IDENTITY,
        fields=(
            FieldSpec("base_url", _S, required=True, description="Identity provider base URL"),
            FieldSpec("realm", _S, default="master"),
            FieldSpec("client_id", _S, required=True),
            FieldSpec("client_secret", _S, secret=True, required=True),
            FieldSpec("verify_tls", _B, default=True),
        ),
    ),
    IntegrationKind.TELEPHONY: IntegrationSchema(
        kind=IntegrationKind.TELEPHONY,
        fields=(
            FieldSpec("host", _S, required=True, description="Contact-center admin API host"),
            FieldSpec("port", _I, default=8080),
            FieldSpec("username", _S, required=True),
            FieldSpec("password", _S, secret=True, required=True),
            FieldSpec("verify_tls", _B, default=False),
        ),
    ),
    IntegrationKind.MEDIA_RECORDING: IntegrationSchema(
        kind=IntegrationKind.MEDIA_RECORDING,
        fields=(
            FieldSpec("api_url", _S, required=True, description="Recording platform API URL, usually port 8440"),
            FieldSpec("api_key", _S, required=True, description="API user name"),
            FieldSpec("api_secret", _S, secret=True, required=True),
            FieldSpec("verify_tls", _B, default=False),
        ),
    ),
    IntegrationKind.SEARCH_INDEX: IntegrationSchema(
        kind=IntegrationKind.SEARCH_INDEX,
        fields=(
            FieldSpec("host", _S, default="localhost"),
            FieldSpec("port", _I, default=9200),
            FieldSpec("username", _S),
            FieldSpec("password", _S, secret=True),
            FieldSpec("index_prefix", _S, default="qms"),
            FieldSpec("use_tls", _B, default=True),
        ),
    ),
    IntegrationKind.EMAIL: IntegrationSchema(
        kind=IntegrationKind.EMAIL,
        fields=(
            FieldSpec("smtp_host", _S, required=True),
            FieldSpec("smtp_port", _I, default=587),
            FieldSpec("smtp_username", _S),
            FieldSpec("smtp_password", _S, secret=True),
            FieldSpec("from_address", _S, required=True),
            FieldSpec("from_name", _S, default="QMS"),
            FieldSpec("use_tls", _B, default=True),
        ),
    ),
}

_missing_kinds = set(IntegrationKind) - set(_SCHEMAS)
if _missing_kinds:
    raise RuntimeError(f"No schema registered for: {sorted(k.value for k in _missing_kinds)}")


def schema_for(kind: IntegrationKind) -> IntegrationSchema:
    try:
        return _SCHEMAS[kind]
    except KeyError:
        raise UnknownIntegrationKind(str(kind)) from None


def defaults_for(kind: IntegrationKind) -> dict[str, Any]:
    return {spec.name: spec.default for spec in schema_for(kind).fields}


def validate(kind: IntegrationKind, raw_values: Mapping[str, Any]) -> dict[str, Any]:
    """Return the normalized value map for ``kind`` or raise a 400 ``AppError``.

    Integers accept numeric strings ("8443"); nothing else is coerced. Secret
    fields may carry :data:`MASKED_SECRET`, which is passed through untouched.
    """
    schema = schema_for(kind)
    errors: dict[str, str] = {}

    for name in raw_values:
        if name not in schema.field_names:
            errors[name] = "unknown field"

    values: dict[str, Any] = {}
    for spec in schema.fields:
        raw = raw_values.get(spec.name)
        if raw is None or raw == "":
            if spec.required:
                errors[spec.name] = "required"
            values[spec.name] = spec.default
            continue
        if spec.secret and raw == MASKED_SECRET:
            values[spec.name] = MASKED_SECRET
            continue
        try:
            values[spec.name] = _coerce(spec, raw)
        except ValueError as exc:
            errors[spec.name] = str(exc)

    if errors:
        raise AppError(
            code=ErrorCodes.INTEGRATION_VALIDATION_FAILED,
            message="Integration configuration is invalid.",
            status_code=400,
            details={"kind": kind.value, "fields": errors},
        )
    return values


def _coerce(spec: FieldSpec, raw: Any) -> str | int | bool:
    if spec.kind is FieldKind.STRING:
        if not isinstance(raw, str):
            raise ValueError("expected string")
        return raw.strip() if not spec.secret else raw
    if spec.kind is FieldKind.INT:
        if isinstance(raw, bool):
            raise ValueError("expected integer")
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
            return int(raw.strip())
        raise ValueError("expected integer")
    if not isinstance(raw, bool):
        raise ValueError("expected boolean")
    return raw
