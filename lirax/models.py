"""
Credential and request models shared by the core and the webhook receiver.
"""

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr

if TYPE_CHECKING:
    from lirax.settings import Settings

DEFAULT_TENANT_ID = "default"

RetryPolicyName = Literal["exponential", "linear", "fixed", "none"]


class Credentials(BaseModel):
    """LiraX API credentials. Immutable for the lifetime of a request."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    secondary_base_url: str | None = None
    token: SecretStr
    incoming_token: SecretStr = SecretStr("")
    ssl_verify: bool = True
    timeout_ms: int = Field(default=30000, gt=0)
    retries: int = Field(default=3, ge=0)
    backoff_base_ms: int = Field(default=1000, ge=0)
    tenant_id: str | None = None

    # Retry shape; the defaults give exponential backoff with 0.8-1.2 jitter
    retry_policy: RetryPolicyName = "exponential"
    fixed_delay_ms: int = Field(default=1000, ge=0)
    jitter: bool = True

    @property
    def endpoints(self) -> list[str]:
        """Candidate base URLs in failover order."""
        urls = [self.base_url]
        if self.secondary_base_url:
            urls.append(self.secondary_base_url)
        return urls

    @property
    def breaker_key(self) -> str:
        """Key of the per-tenant circuit breaker."""
        return self.tenant_id or DEFAULT_TENANT_ID

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Credentials":
        """Build credentials from environment settings."""
        return cls(
            base_url=settings.base_url,
            secondary_base_url=settings.secondary_base_url or None,
            token=SecretStr(settings.token),
            incoming_token=SecretStr(settings.incoming_token),
            ssl_verify=settings.ssl_verify,
            timeout_ms=settings.timeout_ms,
            retries=settings.retries,
            backoff_base_ms=settings.backoff_base_ms,
            tenant_id=settings.tenant_id or None,
        )
