from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator settings loaded from environment variables with VAULTSYNC_ prefix."""

    # Logging
    log_level: str = "INFO"
    # Vault client
    vault_addr: str = "http://127.0.0.1:8200"
    vault_ui_addr: str = ""
    client_timeout: float = 60.0
    client_max_retries: int = 2
    client_retry_wait_min: float = 1.0
    client_retry_wait_max: float = 30.0
    # Service account auth defaults
    default_sa_name: str = "vault-operator-sync"
    default_sa_auth_path: str = ""
    role: str = ""
    refresh_token_before: float = 30.0
    # Reconciliation
    default_reconcile_period: str = "10m"
    max_concurrent_reconciles: int = 5
    crawl_concurrency: int = 10
    fetch_concurrency: int = 20
    resync_interval: int = 30
    # K8s
    watch_namespace: str = ""
    # App
    health_port: int = 8081

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_", env_file=".env")


@lru_cache
def get_settings() -> Settings:
    """Return cached operator settings instance."""
    return Settings()
