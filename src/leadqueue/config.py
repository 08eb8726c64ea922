"""Lead queue configuration management."""

import json
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StoreBackend(str, Enum):
    """Lease store backend."""

    MEMORY = "memory"
    REDIS = "redis"


# Intake fields whose change can move a record in or out of the queue or
# alter what the queue shows about it.
DEFAULT_RELEVANT_FIELDS = [
    "litify_pm__Status__c",
    "Priority_Score__c",
    "Queue_Case_Type__c",
    "Case_Type__c",
    "Type__c",
    "Call_at_Date__c",
    "Follow_Up_Date_Time__c",
    "Appointment_Date__c",
    "litify_pm__Sign_Up_Method__c",
    "Qualification_Status__c",
    "Test_Record__c",
    "litify_pm__Display_Name__c",
    "Referred_By_Name__c",
    "litify_pm__Phone__c",
    "Name",
]


class Settings(BaseSettings):
    """Lead queue configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LEADQUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # General
    env: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"
    debug: bool = False

    # Lease store
    lease_ttl_seconds: int = Field(default=1800, description="Lease TTL (30 min)")
    redis_url: Optional[str] = None
    store_backend: StoreBackend = StoreBackend.MEMORY
    redis_key_prefix: str = Field(default="leadqueue", description="Prefix for lease keys")

    # Record source
    records_file: Optional[str] = Field(
        default=None, description="JSON array of intake records, highest priority first"
    )

    # Lease service client
    lease_service_url: Optional[str] = None
    request_timeout_ms: int = Field(default=10000, description="Per-request timeout")

    # Security (shared token)
    api_key: Optional[str] = None
    allow_insecure_dev: bool = Field(default=False, description="Allow unauthenticated in dev")

    # Refresh bus
    refresh_debounce_ms: int = Field(default=500, description="Trailing debounce for refresh signals")
    storage_signal_key: str = Field(default="leadQueueRefresh", description="Storage signal key")
    broadcast_channel_name: str = Field(default="leadQueueRefresh", description="Broadcast channel name")
    signal_source: str = Field(default="leadQueueViewer", description="Source tag on published signals")
    change_feed_channel: str = "/data/litify_pm__Intake__ChangeEvent"
    change_feed_relevant_fields: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RELEVANT_FIELDS),
        description="Fields whose update triggers a reconciliation",
    )

    # Queue view model
    filter_debounce_ms: int = Field(default=300, description="Debounce after a filter change")
    assignment_notify_delay_ms: int = Field(
        default=100, description="Delay before the assignment-change notification"
    )
    poll_interval_seconds: float = Field(default=30, description="Periodic reconciliation cadence")
    health_probe_interval_seconds: float = Field(default=30, description="Lease store probe cadence")
    timer_tick_seconds: float = Field(default=1.0, description="Hold timer tick")

    # CORS configuration (explicit allowlist)
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins",
    )
    cors_allowed_headers: list[str] = Field(
        default=["Authorization", "Content-Type", "X-API-Key", "X-Holder-ID"],
        description="Allowed request headers",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def refresh_debounce_seconds(self) -> float:
        return self.refresh_debounce_ms / 1000

    @property
    def filter_debounce_seconds(self) -> float:
        return self.filter_debounce_ms / 1000

    @property
    def assignment_notify_delay_seconds(self) -> float:
        return self.assignment_notify_delay_ms / 1000

    # Validators
    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port number range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {v}")
        return v

    @field_validator("lease_ttl_seconds")
    @classmethod
    def validate_lease_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"lease_ttl_seconds must be positive, got {v}")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URLs use redis:// or rediss://."""
        if v and not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError(f"URL must start with redis://, rediss:// or unix://, got {v}")
        return v

    @field_validator("lease_service_url")
    @classmethod
    def validate_service_url(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got {v}")
        return v

    @field_validator("change_feed_relevant_fields", mode="before")
    @classmethod
    def parse_relevant_fields(cls, v: Any) -> list[str]:
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: StoreBackend, info) -> StoreBackend:
        """Redis backend needs a URL."""
        if v == StoreBackend.REDIS and not info.data.get("redis_url"):
            raise ValueError("redis_url is required when store_backend=redis")
        return v


settings = Settings()
