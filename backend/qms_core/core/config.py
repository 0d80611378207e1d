from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "QMS Integration Console"
    app_version: str = "1.0.0"
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    @field_validator("debug", mode="before")
    @classmethod
    def _coerce_debug(cls, v: object) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes")
        return bool(v)

    database_url: str = Field(default="sqlite+aiosqlite:///./qms.db")

    # Identity token verification
    auth_mode: str = Field(default="local", description="local|oidc")
    jwt_secret_key: str = Field(default="")
    jwt_algorithm: str = Field(default="HS256")
    oidc_issuer: str = Field(default="", description="Realm issuer, e.g. https://sso.example.com/realms/qms")
    oidc_audience: str = Field(default="")
    oidc_jwks_url: str = Field(default="", description="Defaults to <issuer>/protocol/openid-connect/certs")

    # Secret material for integration configs (injected from the secret manager)
    integration_encryption_keys: str = Field(
        default="",
        description="Comma separated '<key_id>:<urlsafe base64 32 byte key>' entries",
    )
    integration_encryption_active_key: str = Field(default="", description="Key id used for new seals")

    # Role policy, fixed for the life of the process
    integration_read_roles: list[str] = Field(default_factory=lambda: ["ADMIN"])
    integration_write_roles: list[str] = Field(default_factory=lambda: ["ADMIN"])
    integration_test_roles: list[str] = Field(default_factory=lambda: ["ADMIN"])

    probe_timeout_seconds: float = Field(default=5.0, gt=0)

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])

    # Observability
    otel_enabled: bool = Field(default=False)
    otel_service_name: str = Field(default="qms-integration-console")
    otel_exporter_otlp_endpoint: str = Field(default="")

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> "Settings":
        env = self.environment.lower()
        if env in ("production", "prod", "staging"):
            _REQUIRED: list[tuple[str, str]] = [
                ("database_url",                       "DATABASE_URL"),
                ("integration_encryption_keys",        "INTEGRATION_ENCRYPTION_KEYS"),
                ("integration_encryption_active_key",  "INTEGRATION_ENCRYPTION_ACTIVE_KEY"),
            ]
            if self.auth_mode.lower() == "oidc":
                _REQUIRED += [
                    ("oidc_issuer",   "OIDC_ISSUER"),
                    ("oidc_audience", "OIDC_AUDIENCE"),
                ]
            else:
                _REQUIRED.append(("jwt_secret_key", "JWT_SECRET_KEY"))
            missing = [
                env_name
                for attr, env_name in _REQUIRED
                if not getattr(self, attr, "")
            ]
            if missing:
                raise ValueError(
                    f"The following required environment variables are not set "
                    f"for environment '{env}': {', '.join(missing)}."
                )
            if self.jwt_secret_key in ("change-me", "changeme", "secret"):
                raise ValueError(
                    "JWT_SECRET_KEY is set to a known insecure placeholder value. "
                    "Generate a cryptographically random key and inject it from the secret manager."
                )
        return self

    @field_validator("auth_mode")
    @classmethod
    def _validate_auth_mode(cls, v: str) -> str:
        if v.lower() not in ("local", "oidc"):
            raise ValueError(f"AUTH_MODE must be 'local' or 'oidc', got: {v!r}")
        return v.lower()

    @property
    def jwks_url(self) -> str:
        if self.oidc_jwks_url:
            return self.oidc_jwks_url
        return self.oidc_issuer.rstrip("/") + "/protocol/openid-connect/certs"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
