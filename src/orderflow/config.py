"""Pipeline configuration read from environment variables.

Usage:
    from orderflow.config import get_settings

    settings = get_settings()
    settings.retry_policy().max_retries
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from orderflow.services.retry import RetryPolicy


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


class PipelineSettings(BaseModel):
    """Runtime settings for the event pipeline."""

    model_config = ConfigDict(frozen=True)

    environment: str = "dev"
    table_prefix: str = "orderflow-dev"
    lock_backend: Literal["dynamodb", "local"] = "dynamodb"
    lock_timeout_seconds: float = Field(default=5.0, gt=0)
    lock_lease_seconds: int = Field(default=30, gt=0)
    lock_poll_interval_ms: int = Field(default=50, gt=0)
    max_conflict_retries: int = Field(default=3, ge=0)
    stale_processing_seconds: int = Field(default=300, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay_ms: int = Field(default=60_000, ge=0)
    retry_jitter_ms: int = Field(default=250, ge=0)
    notification_topic_arn: str | None = None

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from the process environment."""
        environment = os.getenv("ENVIRONMENT", "dev")
        return cls(
            environment=environment,
            table_prefix=os.getenv("DYNAMODB_TABLE_PREFIX", f"orderflow-{environment}"),
            lock_backend=os.getenv("ORDERFLOW_LOCK_BACKEND", "dynamodb"),
            lock_timeout_seconds=_env_float("ORDERFLOW_LOCK_TIMEOUT_SECONDS", 5.0),
            lock_lease_seconds=_env_int("ORDERFLOW_LOCK_LEASE_SECONDS", 30),
            lock_poll_interval_ms=_env_int("ORDERFLOW_LOCK_POLL_INTERVAL_MS", 50),
            max_conflict_retries=_env_int("ORDERFLOW_MAX_CONFLICT_RETRIES", 3),
            stale_processing_seconds=_env_int("ORDERFLOW_STALE_PROCESSING_SECONDS", 300),
            max_retries=_env_int("ORDERFLOW_MAX_RETRIES", 3),
            retry_base_delay_ms=_env_int("ORDERFLOW_RETRY_BASE_DELAY_MS", 1000),
            retry_backoff_multiplier=_env_float("ORDERFLOW_RETRY_BACKOFF_MULTIPLIER", 2.0),
            retry_max_delay_ms=_env_int("ORDERFLOW_RETRY_MAX_DELAY_MS", 60_000),
            retry_jitter_ms=_env_int("ORDERFLOW_RETRY_JITTER_MS", 250),
            notification_topic_arn=os.getenv("ORDERFLOW_NOTIFICATION_TOPIC_ARN") or None,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.retry_base_delay_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
            max_delay_ms=self.retry_max_delay_ms,
            jitter_ms=self.retry_jitter_ms,
        )


@lru_cache(maxsize=1)
def get_settings() -> PipelineSettings:
    """Get the process-wide settings, read once from the environment."""
    return PipelineSettings.from_env()
