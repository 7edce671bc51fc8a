"""
Configuration with Pydantic Settings and validation.

Every section can be overridden from the environment using the ``XF_``
prefix and ``__`` as the nested delimiter, e.g.
``XF_ORCHESTRATOR__POLL_INTERVAL=0.5``.
"""

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OracleEndpoint(BaseModel):
    """Configuration for the decision oracle endpoint."""

    name: str = Field("llama3.1:8b-instruct", description="Model name served by the endpoint")
    base_url: str = Field("http://localhost:11434", description="Base URL for the oracle API")
    api_key: str | None = Field(None, description="API key if required")
    timeout: float = Field(30.0, gt=0, description="Request timeout in seconds")
    max_retries: int = Field(3, ge=1, description="Attempts per oracle request")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class OrchestratorConfig(BaseModel):
    """Configuration for orchestration lifecycle and monitoring."""

    poll_interval: float = Field(1.0, gt=0)
    max_adaptations: int = Field(3, ge=0)
    progress_retention: float = Field(300.0, ge=0)
    cancel_execution_task: bool = Field(False)
    similar_pattern_limit: int = Field(10, gt=0)
    trace_owner: str = Field("crossflow-orchestrator")


class ProgressConfig(BaseModel):
    """Configuration for progress estimation."""

    average_step_duration: float = Field(10.0, gt=0)


class CorrelationConfig(BaseModel):
    """Configuration for correlation trace analysis."""

    max_message_gap: float = Field(300.0, gt=0, description="Timing-gap threshold in seconds")
    completed_trace_retention: int = Field(1000, ge=0)


class AdaptationConfig(BaseModel):
    """Configuration for adaptation heuristics and oracle guarding."""

    repeated_failure_threshold: int = Field(3, gt=0)
    slow_response_ms: float = Field(5000.0, gt=0)
    min_samples: int = Field(3, gt=0)
    unavailable_after: int = Field(2, gt=0)
    retry_backoff_factor: float = Field(1.5, gt=1.0)
    oracle_timeout: float = Field(10.0, gt=0)
    oracle_failure_threshold: int = Field(5, gt=0)
    oracle_cooldown: float = Field(30.0, gt=0)


class ObservabilityConfig(BaseModel):
    """Configuration for observability."""

    enable_tracing: bool = Field(False)
    enable_metrics: bool = Field(True)
    log_level: str = Field("INFO")
    otlp_endpoint: str | None = Field(None)
    service_name: str = Field("crossflow")
    service_version: str = Field("0.1.0")


class APIConfig(BaseModel):
    """Configuration for the API server."""

    host: str = Field("0.0.0.0")
    port: int = Field(8000, gt=0, le=65535)
    reload: bool = Field(False)
    enable_cors: bool = Field(True)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    enable_docs: bool = Field(True)
    result_retention: int = Field(500, ge=0)


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="XF_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    correlation: CorrelationConfig = Field(default_factory=CorrelationConfig)
    adaptation: AdaptationConfig = Field(default_factory=AdaptationConfig)
    oracle: OracleEndpoint = Field(default_factory=OracleEndpoint)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    environment: str = Field(
        "development", description="Environment: development, staging, production"
    )
    debug: bool = Field(False)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
