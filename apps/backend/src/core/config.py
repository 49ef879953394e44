"""Application settings, CORS and gateway configuration."""

import json
import os
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "Portfolio Stream Gateway"
    ENVIRONMENT: str = "development"  # development | production | test

    # CORS
    # Accept list or CSV/JSON string from env; normalized to list[str] by validators
    CORS_ORIGINS: list[str] | str = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    ALLOW_CREDENTIALS: bool = True

    # Upstream LLM (OpenAI-compatible chat completions)
    XAI_API_KEY: str | None = None
    XAI_BASE_URL: str = "https://api.x.ai/v1"
    XAI_MODEL: str = "grok-2-1212"
    XAI_TEMPERATURE: float = Field(0.7, ge=0.0, le=2.0)

    # Market data (Financial Modeling Prep)
    FMP_API_KEY: str | None = None
    FMP_BASE_URL: str = "https://financialmodelingprep.com/api"
    MARKET_DATA_CACHE_MINUTES: int = Field(5, ge=0)

    # Admission control
    MAX_CONCURRENT_GENERATIONS: int = Field(3, ge=1)
    ESTIMATED_SECONDS_PER_REQUEST: int = Field(30, ge=1)
    QUEUE_WAIT_TIMEOUT_SECONDS: float = Field(120.0, gt=0)

    # Stage timeouts (seconds)
    CONTEXT_FETCH_TIMEOUT_SECONDS: float = Field(15.0, gt=0)
    GENERATION_TIMEOUT_SECONDS: float = Field(300.0, gt=0)
    ENRICHMENT_TIMEOUT_SECONDS: float = Field(30.0, gt=0)
    DISCONNECT_GRACE_SECONDS: float = Field(5.0, gt=0)
    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = Field(10.0, gt=0)

    # Upstash Rate Limiting
    # REST URL and token for Upstash Redis; optional in development/test
    UPSTASH_REDIS_REST_URL: str | None = None
    UPSTASH_REDIS_REST_TOKEN: str | None = None

    # Rate limit settings (requests per window)
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: object) -> list[str]:
        """Allow list, CSV string, or JSON array string for CORS origins."""
        if isinstance(v, list):
            return [str(i).strip() for i in v]
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    parsed = json.loads(s)
                except json.JSONDecodeError as e:
                    raise ValueError(
                        "CORS_ORIGINS must be a CSV list or JSON array string"
                    ) from e
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON must be a list")
                return [str(i).strip() for i in parsed]
            # CSV fallback
            return [i.strip() for i in s.split(",") if i.strip()]
        raise ValueError("Invalid CORS_ORIGINS type; expected str or list[str]")

    @model_validator(mode="after")
    def _validate_cors_credentials(self) -> "Settings":
        """Ensure wildcard origins are not used when credentials are allowed."""
        if isinstance(self.CORS_ORIGINS, str):
            self.CORS_ORIGINS = self.assemble_cors_origins(self.CORS_ORIGINS)
        if self.ALLOW_CREDENTIALS and any(
            o.strip() == "*" for o in (self.CORS_ORIGINS or [])
        ):
            raise ValueError(
                "CORS configuration error: ALLOW_CREDENTIALS=True but "
                "CORS_ORIGINS contains '*'. Use explicit origins when credentials "
                "are allowed."
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "development").lower()
    if env not in {"development", "production", "test"}:
        raise ValueError("ENVIRONMENT must be 'development', 'production', or 'test'")

    if env == "production":
        env_file = ".env.prod"
    elif env == "development":
        env_file = ".env.dev"
    else:
        # test environment - no env file needed, use defaults
        env_file = ""

    settings = Settings(_env_file=env_file or None)  # type: ignore[call-arg]

    # Generation is the whole point of a production deployment; fail fast.
    if env == "production" and not settings.XAI_API_KEY:
        raise RuntimeError("XAI_API_KEY must be set in production")
    return settings
