from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    images_root: str = "/app/images"

    # Connectivity state at startup; updated by connectivity events afterwards.
    start_online: bool = True

    on_device_language: str = "eng"
    on_device_timeout_seconds: int = 20
    on_device_psm: int = 6

    remote_ocr_provider: str = "http"
    remote_ocr_url: str = "https://api.deepseek.com/v1/ocr"
    remote_ocr_api_key: str = ""
    remote_ocr_timeout_seconds: int = 60
    remote_language_hints: list[str] = Field(default_factory=lambda: ["en", "ar"])

    remote_max_inline_retries: int = 2
    remote_retry_base_delay_seconds: float = 1.0

    semantic_provider: str = "openai"
    semantic_model_name: str = "gpt-4o-mini"
    semantic_api_key: str = ""
    semantic_base_url: str = ""
    semantic_timeout_seconds: int = 90

    compliance_provider: str = "gemini"
    compliance_model_name: str = "gemini-2.0-flash"
    compliance_api_key: str = ""
    compliance_base_url: str = ""
    compliance_timeout_seconds: int = 90

    analysis_temperature: float = 0.0
    # Outer ceiling per analysis call, inline retries included.
    analysis_ceiling_seconds: float = 300.0

    job_store: str = "memory"
    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "docinsight"
    db_username: str = "docinsight"
    db_password: str = "secret"

    offline_queue_capacity: int = 200
    max_job_attempts: int = 5
    backoff_base_seconds: float = 30.0
    backoff_max_seconds: float = 3600.0
    drain_interval_seconds: int = 60

    max_concurrent_documents: int = 4

    lab_critical_multiplier: float = 5.0

    sensitive_words: list[str] = Field(default_factory=list)
