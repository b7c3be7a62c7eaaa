from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

from beatgen.core.retry import RetryConfig

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Beatgen"
    ENVIRONMENT: str = "development"  # "development" or "production"

    DATABASE_URL: str = "sqlite:///./beatgen.db"

    # Scheduler
    SCHEDULER_INTERVAL_MINUTES: int = 15
    TEMPLATE_REUSE_WINDOW_HOURS: int = 24

    # Circuit breaker
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_TIMEOUT_SECONDS: float = 30.0

    # Retry executor
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 8.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0

    # Generation provider
    PROVIDER_API_BASE: str = "https://api.sunoapi.org"
    PROVIDER_API_KEYS: str = ""  # Comma separated, imported by scripts/import_credentials.py
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_CREDENTIAL_QUOTA: int = 500

    # Error tracking
    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.RETRY_MAX_ATTEMPTS,
            base_delay=self.RETRY_BASE_DELAY_SECONDS,
            max_delay=self.RETRY_MAX_DELAY_SECONDS,
            backoff_multiplier=self.RETRY_BACKOFF_MULTIPLIER,
        )

    def provider_api_keys(self) -> list[str]:
        """Split PROVIDER_API_KEYS into a list, dropping blanks."""
        return [key.strip() for key in self.PROVIDER_API_KEYS.split(",") if key.strip()]


settings = Settings()
