from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# a ticket makes at most 4 repository calls: claim, save, processed, ai_failed
_REPOSITORY_CALLS_PER_TICKET = 4
_NOTIFY_MARGIN_SECONDS = 5.0


def min_tick_timeout(batch_size: int, classifier_timeout: float, repository_timeout: float) -> float:
    """Longest a batch can run when every classifier and repository call runs to its timeout."""
    per_ticket = classifier_timeout + _REPOSITORY_CALLS_PER_TICKET * repository_timeout + _NOTIFY_MARGIN_SECONDS
    return repository_timeout + batch_size * per_ticket


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    # Supabase
    supabase_url: str = Field(..., alias="SUPABASE_URL")
    supabase_service_role_key: str = Field(..., alias="SUPABASE_SERVICE_ROLE_KEY")

    # LLM provider: openai | groq | gemini
    llm_provider: str = Field("openai", alias="LLM_PROVIDER")
    llm_model: str | None = Field(None, alias="LLM_MODEL")
    llm_api_key: str | None = Field(None, alias="LLM_API_KEY")

    # Worker
    poll_interval_seconds: float = Field(5.0, gt=0, alias="POLL_INTERVAL_SECONDS")
    batch_size: int = Field(5, gt=0, alias="BATCH_SIZE")
    classifier_timeout_seconds: float = Field(20.0, gt=0, alias="CLASSIFIER_TIMEOUT_SECONDS")
    repository_timeout_seconds: float = Field(10.0, gt=0, alias="REPOSITORY_TIMEOUT_SECONDS")
    # derived from the per-call timeouts when unset
    tick_timeout_seconds: float | None = Field(None, gt=0, alias="TICK_TIMEOUT_SECONDS")
    worker_enabled: bool = Field(True, alias="WORKER_ENABLED")

    # Runtime
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _check_tick_timeout(self) -> "Settings":
        floor = min_tick_timeout(self.batch_size, self.classifier_timeout_seconds, self.repository_timeout_seconds)
        if self.tick_timeout_seconds is None:
            self.tick_timeout_seconds = floor
        elif self.tick_timeout_seconds < floor:
            raise ValueError(
                f"TICK_TIMEOUT_SECONDS={self.tick_timeout_seconds} is below the {floor}s a batch can take "
                "when every call hits its own timeout"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
