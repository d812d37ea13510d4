import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # eRegulations API
    eregulations_api_url: str | None = Field(
        default=None, alias="EREGULATIONS_API_URL"
    )
    request_timeout: float = Field(default=60.0, alias="REQUEST_TIMEOUT")
    max_retries: int = Field(default=3, ge=0, alias="MAX_RETRIES")
    retry_delay: float = Field(default=2.0, ge=0, alias="RETRY_DELAY")

    # Circuit breaker
    circuit_failure_threshold: int = Field(
        default=3, ge=1, alias="CIRCUIT_FAILURE_THRESHOLD"
    )
    circuit_reset_seconds: float = Field(default=30.0, alias="CIRCUIT_RESET_SECONDS")

    # Cache Configuration
    cache_enabled: bool = Field(default=True, alias="EREGULATIONS_CACHE_ENABLED")
    cache_dir: str = Field(default="data/cache", alias="EREGULATIONS_CACHE_DIR")
    cache_sweep_interval_hours: float = Field(
        default=24.0, gt=0, alias="CACHE_SWEEP_INTERVAL_HOURS"
    )
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


global_settings = Settings.model_validate(dict(os.environ))
