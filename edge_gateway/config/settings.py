from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="EDGE_", case_sensitive=False)

    env: str = "dev"
    log_level: str = "INFO"
    metrics_enabled: bool = True

    # Ollama-compatible chat provider
    ollama_api_key: str | None = None
    ollama_api_base: str = "https://api.ollama.com"
    ollama_model: str = "llama3.1-8b-instruct"

    # Anthropic Messages API
    anthropic_api_key: str | None = None
    anthropic_api_base: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    claude_model: str = "claude-3-5-sonnet-20241022"

    # NPHIES regulated exchange
    nphies_api_base: str | None = None
    nphies_client_key: str | None = Field(
        default=None, description="PEM encoded PKCS#8 signing key", repr=False
    )
    nphies_mtls_cert_path: Path | None = None
    nphies_mtls_key_path: Path | None = None

    # Document store (MongoDB Data API)
    mongodb_api_key: str | None = Field(default=None, repr=False)
    mongodb_api_url: str = "https://data.mongodb-api.com/app/data-kmxgp/endpoint/data/v1"
    mongodb_database: str = "brainsait_platform"
    mongodb_data_source: str = "Cluster0"

    # Downstream execution
    upstream_timeout_s: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 8.0
    retry_backoff: bool = True

    # Admission control
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: float = 60.0
    chat_rate_limit: int = 30
    api_rate_limit: int = 20
    rate_limit_trusted_identifier_header: str | None = None

    @property
    def nphies_mtls_cert(self) -> tuple[str, str] | None:
        if self.nphies_mtls_cert_path and self.nphies_mtls_key_path:
            return (str(self.nphies_mtls_cert_path), str(self.nphies_mtls_key_path))
        return None

    @property
    def retry_attempts_normalized(self) -> int:
        return max(self.retry_max_attempts, 1)


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
