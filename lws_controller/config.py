"""Configuration management for the LWS controller."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Controller settings."""

    model_config = SettingsConfigDict(
        env_prefix="LWS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "lws-controller"
    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file, in-cluster config is used when unset",
    )
    kube_context: Optional[str] = None
    namespace: Optional[str] = Field(
        default=None,
        description="Namespace to watch, all namespaces when unset",
    )
    field_manager: str = Field(
        default="lws",
        description="Field manager identity used for server-side apply",
    )
    request_timeout_seconds: float = 30.0

    # Reconciliation Settings
    max_concurrent_reconciles: int = 4
    defer_requeue_seconds: float = 5.0
    requeue_base_delay_seconds: float = 0.005
    requeue_max_delay_seconds: float = 1000.0

    # Watch Settings
    watch_timeout_seconds: int = 300
    watch_min_backoff_seconds: float = 1.0
    watch_max_backoff_seconds: float = 30.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
