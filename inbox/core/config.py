from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

DEFAULT_AGENT_AUTH_SECRET = "local-dev-agent-auth-secret-change-me"
DEFAULT_WEBHOOK_SECRET = "local-dev-gateway-webhook-secret"
MIN_SECRET_LENGTH = 32


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    app_env: str = "local"
    log_level: str = "INFO"

    # Database
    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "inbox_core"
    postgres_user: str = "inbox_user"
    postgres_password: str = "inbox_password"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_auto_create: bool = False
    db_seed_defaults: bool = True

    # Identity and HTTP surface
    agent_auth_secret: str = DEFAULT_AGENT_AUTH_SECRET
    agent_auth_token_ttl_minutes: int = 480
    cors_allowed_origins_raw: str = "http://127.0.0.1:5173,http://localhost:5173"
    trusted_hosts_raw: str = "127.0.0.1,localhost"
    force_https: bool = False

    # Messaging gateway
    gateway_base_url: str = "http://127.0.0.1:8080"
    gateway_instance_token: str = ""
    gateway_timeout_seconds: float = Field(default=15.0, gt=0)
    gateway_webhook_secret: str = DEFAULT_WEBHOOK_SECRET

    # Media storage
    storage_base_url: str = "http://127.0.0.1:9000/storage/v1/object/inbox-media"
    storage_public_url: str = "http://127.0.0.1:9000/storage/v1/object/public/inbox-media"
    storage_api_key: str = ""
    storage_timeout_seconds: float = Field(default=30.0, gt=0)
    max_media_bytes: int = Field(default=50 * 1024 * 1024, gt=0)

    # Routing
    distribution_enabled_default: bool = False
    enforce_capacity_default: bool = True
    send_rate_limit_per_minute: int = Field(default=60, ge=1)

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        url = URL.create(
            "postgresql+asyncpg",
            username=self.postgres_user,
            password=self.postgres_password,
            host=self.postgres_host,
            port=self.postgres_port,
            database=self.postgres_db,
        )
        return url.render_as_string(hide_password=False)

    @property
    def cors_allowed_origins(self) -> list[str]:
        return _split_csv(self.cors_allowed_origins_raw)

    @property
    def trusted_hosts(self) -> list[str]:
        return _split_csv(self.trusted_hosts_raw)

    def security_problems(self) -> list[str]:
        """Settings that are unsafe outside local development."""
        problems: list[str] = []
        for name, value, default in (
            ("AGENT_AUTH_SECRET", self.agent_auth_secret, DEFAULT_AGENT_AUTH_SECRET),
            ("GATEWAY_WEBHOOK_SECRET", self.gateway_webhook_secret, DEFAULT_WEBHOOK_SECRET),
        ):
            if value == default:
                problems.append(f"{name} must be overridden.")
            elif len(value) < MIN_SECRET_LENGTH:
                problems.append(f"{name} must be at least {MIN_SECRET_LENGTH} characters.")

        for name, values in (
            ("CORS_ALLOWED_ORIGINS_RAW", self.cors_allowed_origins),
            ("TRUSTED_HOSTS_RAW", self.trusted_hosts),
        ):
            if not values:
                problems.append(f"{name} must list explicit entries.")
            elif "*" in values:
                problems.append(f"{name} cannot contain a wildcard.")
        return problems

    def validate_security_settings(self) -> None:
        if self.app_env.lower() != "production":
            return
        problems = self.security_problems()
        if problems:
            raise ValueError("Unsafe production settings: " + " ".join(problems))


@lru_cache
def get_settings() -> Settings:
    return Settings()
