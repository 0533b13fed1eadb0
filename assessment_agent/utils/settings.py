from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Grading backend (assessor endpoint lives at {backend_url}/v1/assessor)
    backend_url: str = Field(default="http://localhost:8080", validation_alias="BACKEND_URL")
    backend_api_key: str | None = Field(default=None, validation_alias="BACKEND_API_KEY")
    warm_up_url: str | None = Field(default=None, validation_alias="WARM_UP_URL")
    backend_batch_size: int = Field(default=30, validation_alias="BACKEND_BATCH_SIZE")
    request_timeout_seconds: float = Field(default=60.0, validation_alias="REQUEST_TIMEOUT_SECONDS")
    request_max_retries: int = Field(default=3, validation_alias="REQUEST_MAX_RETRIES")
    # First backoff pause; doubles on every subsequent attempt.
    request_backoff_seconds: float = Field(default=1.0, validation_alias="REQUEST_BACKOFF_SECONDS")

    # Image fetch (round-robin across owning documents)
    image_fetch_batch_size: int = Field(default=30, validation_alias="IMAGE_FETCH_BATCH_SIZE")
    image_auth_token: str | None = Field(default=None, validation_alias="IMAGE_AUTH_TOKEN")

    # Result cache
    result_cache_ttl_seconds: int = Field(default=6 * 3600, validation_alias="RESULT_CACHE_TTL_SECONDS")

    # Run orchestration
    document_scope: str = Field(default="default", validation_alias="DOCUMENT_SCOPE")
    lock_wait_seconds: float = Field(default=5.0, validation_alias="LOCK_WAIT_SECONDS")
    lock_ttl_seconds: int = Field(
        # Must outlive a full pipeline run; the host ceiling is well below this.
        default=1800, validation_alias="LOCK_TTL_SECONDS"
    )
    trigger_delay_seconds: float = Field(default=5.0, validation_alias="TRIGGER_DELAY_SECONDS")
    max_triggers: int = Field(default=20, validation_alias="MAX_TRIGGERS")
    progress_ttl_seconds: int = Field(default=24 * 3600, validation_alias="PROGRESS_TTL_SECONDS")
    worker_poll_interval_seconds: float = Field(default=2.0, validation_alias="WORKER_POLL_INTERVAL_SECONDS")
    # "package.module:callable" returning a ready RunOrchestrator.
    orchestrator_factory: str | None = Field(default=None, validation_alias="ORCHESTRATOR_FACTORY")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    allow_origins: list[str] = Field(default=["*"], validation_alias="ALLOW_ORIGINS")
    log_to_file: bool = Field(default=True, validation_alias="LOG_TO_FILE")
    log_file_path: str = Field(
        default=os.path.join("logs", "backend.log"),
        validation_alias="LOG_FILE_PATH",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
