from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DecoderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    cache_namespace: str = Field(default="vindecode", alias="CACHE_NAMESPACE")
    vin_cache_ttl_seconds: int = Field(default=2_592_000, alias="VIN_CACHE_TTL_SECONDS")

    # NHTSA vPIC
    nhtsa_base_url: str = Field(default="https://vpic.nhtsa.dot.gov/api/vehicles", alias="NHTSA_BASE_URL")
    nhtsa_timeout_seconds: float = Field(default=10.0, alias="NHTSA_TIMEOUT_SECONDS")
    nhtsa_max_retries: int = Field(default=3, alias="NHTSA_MAX_RETRIES")
    nhtsa_rate_limit_delay: float = Field(default=0.1, alias="NHTSA_RATE_LIMIT_DELAY")

    # ClearVIN via reader proxy
    clearvin_base_url: str = Field(
        default="https://r.jina.ai/https://www.clearvin.com/en/decoder/decode/",
        alias="CLEARVIN_BASE_URL",
    )
    clearvin_timeout_seconds: float = Field(default=30.0, alias="CLEARVIN_TIMEOUT_SECONDS")

    # Chain and merge behavior
    execution_strategy: str = Field(default="fail_fast", alias="EXECUTION_STRATEGY")
    merge_strategy: str = Field(default="priority", alias="MERGE_STRATEGY")
    conflict_resolution: str = Field(default="priority", alias="CONFLICT_RESOLUTION")
    use_local_fallback: bool = Field(default=True, alias="USE_LOCAL_FALLBACK")
    japanese_model_codes_path: str | None = Field(default=None, alias="JAPANESE_MODEL_CODES_PATH")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")
