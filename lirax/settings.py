import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # LiraX API Configuration
    base_url: str = Field(default="", alias="LIRAX_BASE_URL")
    secondary_base_url: str | None = Field(
        default=None, alias="LIRAX_SECONDARY_BASE_URL"
    )
    token: str = Field(default="", alias="LIRAX_TOKEN")
    incoming_token: str = Field(default="", alias="LIRAX_INCOMING_TOKEN")
    ssl_verify: bool = Field(default=True, alias="LIRAX_SSL_VERIFY")
    timeout_ms: int = Field(default=30000, alias="LIRAX_TIMEOUT_MS")
    retries: int = Field(default=3, alias="LIRAX_RETRIES")
    backoff_base_ms: int = Field(default=1000, alias="LIRAX_BACKOFF_BASE_MS")
    tenant_id: str | None = Field(default=None, alias="LIRAX_TENANT_ID")
    timeout_override_ms: int | None = Field(
        default=None, alias="LIRAX_TIMEOUT_OVERRIDE_MS"
    )
    circuit_breaker_enabled: bool = Field(
        default=True, alias="LIRAX_CIRCUIT_BREAKER_ENABLED"
    )

    # Cache Configuration
    cache_provider: str = Field(default="memory", alias="LIRAX_CACHE_PROVIDER")
    redis_url: str | None = Field(default=None, alias="LIRAX_REDIS_URL")
    redis_tls: bool = Field(default=False, alias="LIRAX_REDIS_TLS")
    redis_password: str | None = Field(default=None, alias="LIRAX_REDIS_PASSWORD")
    redis_db: int | None = Field(default=None, alias="LIRAX_REDIS_DB")
    file_cache_path: str = Field(
        default="/tmp/lirax-cache", alias="LIRAX_FILE_CACHE_PATH"
    )
    cache_ttl: int = Field(default=3600, alias="LIRAX_CACHE_TTL")
    cache_prefix: str = Field(default="lirax", alias="LIRAX_CACHE_PREFIX")
    bypass_cache: bool = Field(default=False, alias="LIRAX_BYPASS_CACHE")

    # Webhook Configuration
    webhook_host: str = Field(default="0.0.0.0", alias="LIRAX_WEBHOOK_HOST")
    webhook_port: int = Field(default=8080, alias="LIRAX_WEBHOOK_PORT")
    webhook_path: str = Field(default="lirax", alias="LIRAX_WEBHOOK_PATH")
    validate_webhook_token: bool = Field(
        default=True, alias="LIRAX_VALIDATE_WEBHOOK_TOKEN"
    )
    event_filter: list[str] = Field(default_factory=list, alias="LIRAX_EVENT_FILTER")

    # Runtime
    maintenance_interval_seconds: int = Field(
        default=60, alias="LIRAX_MAINTENANCE_INTERVAL"
    )
    log_level: str = Field(default="INFO", alias="LIRAX_LOG_LEVEL")

    @field_validator("event_filter", mode="before")
    @classmethod
    def _split_event_filter(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator(
        "secondary_base_url",
        "tenant_id",
        "timeout_override_ms",
        "redis_url",
        "redis_password",
        "redis_db",
        mode="before",
    )
    @classmethod
    def _blank_as_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Read settings from environment variables (after .env is loaded)."""
        return cls.model_validate(dict(os.environ if environ is None else environ))


global_settings = Settings.from_env()
