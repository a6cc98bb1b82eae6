"""Configuration management using pydantic-settings."""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class MicrosoftSettings(BaseSettings):
    """Microsoft identity platform and Graph configuration."""

    model_config = SettingsConfigDict(env_prefix="MICROSOFT_", case_sensitive=False)

    client_id: str = Field(default="", description="Azure app registration client ID")
    client_secret: Optional[str] = Field(default=None, description="Azure app client secret")
    tenant_id: str = Field(default="common", description="Tenant used for authorize/token endpoints")
    webhook_secret: Optional[str] = Field(
        default=None,
        description="clientState secret embedded in every Graph subscription",
    )
    webhook_url: Optional[str] = Field(
        default=None,
        description="Public base URL Graph posts notifications to (e.g. https://gw.example.com)",
    )
    graph_api_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Microsoft Graph base URL",
    )
    login_url: str = Field(
        default="https://login.microsoftonline.com",
        description="Microsoft identity platform host",
    )

    @property
    def is_configured(self) -> bool:
        """Check if the OAuth client is configured."""
        return bool(self.client_id)

    def endpoint(self, name: Literal["authorize", "token"]) -> str:
        """Get the v2.0 authorize or token endpoint for the configured tenant."""
        return f"{self.login_url.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/{name}"


class RedisSettings(BaseSettings):
    """Redis configuration (notification debounce cache)."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", case_sensitive=False)

    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    password: Optional[str] = Field(default=None, description="Redis password")
    decode_responses: bool = Field(default=True, description="Decode responses as strings")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    socket_connect_timeout: int = Field(default=5, description="Socket connect timeout in seconds")


class AgentSettings(BaseSettings):
    """Downstream agent layer that receives reconciled events."""

    model_config = SettingsConfigDict(env_prefix="AGENT_", case_sensitive=False)

    webhook_url: Optional[str] = Field(
        default=None,
        description="URL processed webhook batches are POSTed to. Env var: AGENT_WEBHOOK_URL",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Sent as X-Internal-API-Key when posting to the agent. Env var: AGENT_API_KEY",
    )


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service info
    service_name: str = "outlook-gateway"
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"

    microsoft: MicrosoftSettings = Field(default_factory=MicrosoftSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)

    # Notification reconciliation
    cache_backend: Literal["redis", "memory"] = "redis"
    debounce_ttl_seconds: int = 120
    webhook_mismatch_policy: Literal["drop", "reject"] = "drop"
    account_header: str = "x-mcp-name"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0

    # Bearer tokens closer than this to expiry are rejected
    token_expiry_leeway_seconds: int = 60

    # Tool sessions unused for this long are dropped
    session_idle_ttl_seconds: int = 3600

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("debounce_ttl_seconds")
    @classmethod
    def validate_debounce_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("debounce_ttl_seconds must be positive")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
