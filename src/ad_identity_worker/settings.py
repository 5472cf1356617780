"""
ad_identity_worker.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for the worker and its bindings.
- Hide secrets from repr/logging (connection string, LDAP password).
- Offer a cached settings instance for the process entrypoints.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

TransportBinding = Literal["development", "servicebus"]
DirectoryBackend = Literal["memory", "ldap"]


class Settings(BaseSettings):
    """
    Enterprise pattern:
    - Strict env-driven configuration
    - Defaults safe for local dev (in-memory bus + in-memory directory)
    - Single settings object injected into the worker host
    """

    model_config = SettingsConfigDict(env_prefix="ADW_", case_sensitive=False)

    # Environment selects the default transport/directory bindings.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "ad-identity-worker"
    log_level: str = "INFO"
    # "console" renders human-readable lines for local runs.
    log_format: Literal["json", "console"] = "json"

    # Explicit overrides; None means "derive from env".
    transport: TransportBinding | None = None
    directory_backend: DirectoryBackend | None = None

    # Service Bus: either a connection string or a namespace (DefaultAzureCredential).
    servicebus_connection_string: str | None = Field(default=None, repr=False)
    servicebus_fully_qualified_namespace: str | None = None
    queue_name: str = "ad-identity-actions"

    # Processing
    max_concurrent_calls: int = Field(default=4, ge=1)
    max_delivery_count: int = Field(default=10, ge=1)
    receive_wait_seconds: float = Field(default=5.0, gt=0)
    error_backoff_seconds: float = Field(default=5.0, ge=0)
    shutdown_timeout_seconds: float = Field(default=30.0, gt=0)

    # Directory (LDAP / Active Directory)
    ldap_server: str | None = None
    ldap_user: str | None = None
    ldap_password: str | None = Field(default=None, repr=False)
    ldap_search_base: str | None = None
    ldap_use_ssl: bool = True
    ldap_timeout_seconds: float = Field(default=10.0, gt=0)

    # Development directory seed (JSON list of users)
    directory_seed_file: str | None = None

    @property
    def transport_binding(self) -> TransportBinding:
        if self.transport is not None:
            return self.transport
        return "servicebus" if self.env == "prod" else "development"

    @property
    def directory_binding(self) -> DirectoryBackend:
        if self.directory_backend is not None:
            return self.directory_backend
        return "ldap" if self.env == "prod" else "memory"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars when several entrypoints ask for settings.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Binding selection lives here so that `worker.build_transport`/`build_directory`
# stay free of environment logic.
