"""Retry and backoff coordination.

Classifies a failed attempt onto the error taxonomy and decides whether the
event gets another attempt or goes to the dead-letter list. Delays grow
exponentially with jitter so that a burst of failures does not retry in
lockstep.
"""

import datetime as dt
import random
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from orderflow.models import ErrorCode, PipelineError, is_retryable


class RetryPolicy(BaseModel):
    """Retry budget and backoff shape."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay_ms: int = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_ms: int = Field(default=60_000, ge=0)
    jitter_ms: int = Field(default=250, ge=0)


class RetryDecision(BaseModel):
    """What to do with an event after a transient failure."""

    model_config = ConfigDict(frozen=True)

    retry: bool
    retry_count: int = Field(
        ...,
        description="Retry counter to persist: the retry number if retrying, "
        "otherwise the retries already spent",
    )
    delay_ms: float = 0.0
    next_attempt_at: Optional[dt.datetime] = None

    @property
    def exhausted(self) -> bool:
        return not self.retry


class RetryCoordinator:
    """Applies a RetryPolicy to failed attempts."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            policy: Retry policy (defaults to RetryPolicy())
            rng: Random source for jitter, injectable for deterministic tests
        """
        self.policy = policy or RetryPolicy()
        self._rng = rng or random.Random()

    def compute_delay(self, retry_number: int) -> float:
        """Backoff delay in milliseconds before retry number ``retry_number``.

        Retry 1 waits ``base_delay_ms``, each further retry multiplies the
        delay by ``backoff_multiplier``, capped at ``max_delay_ms``. Jitter is
        added after the cap.
        """
        if retry_number < 1:
            raise ValueError("retry_number starts at 1")
        policy = self.policy
        delay = min(
            policy.base_delay_ms * policy.backoff_multiplier ** (retry_number - 1),
            policy.max_delay_ms,
        )
        jitter = self._rng.uniform(0, policy.jitter_ms) if policy.jitter_ms else 0.0
        return delay + jitter

    @staticmethod
    def classify(exc: BaseException) -> ErrorCode:
        """Map an exception onto the error taxonomy.

        Unrecognized exceptions are treated as a transient dependency error.
        """
        if isinstance(exc, PipelineError):
            return exc.code
        if isinstance(exc, ValidationError):
            return ErrorCode.INVALID_EVENT
        if isinstance(exc, BotoCoreError):
            return ErrorCode.STORAGE_UNAVAILABLE
        if isinstance(exc, ClientError):
            return ErrorCode.DEPENDENCY_ERROR
        return ErrorCode.DEPENDENCY_ERROR

    @staticmethod
    def is_transient(code: ErrorCode) -> bool:
        return is_retryable(code)

    def decide(self, retry_count: int, now: dt.datetime) -> RetryDecision:
        """Decide between another attempt and exhaustion.

        Args:
            retry_count: Retries already spent on this event
            now: Time of the failed attempt

        Returns:
            RetryDecision scheduling retry ``retry_count + 1``, or exhausting
            the event once ``max_retries`` retries have been spent.
        """
        if retry_count >= self.policy.max_retries:
            return RetryDecision(retry=False, retry_count=retry_count)

        retry_number = retry_count + 1
        delay_ms = self.compute_delay(retry_number)
        return RetryDecision(
            retry=True,
            retry_count=retry_number,
            delay_ms=delay_ms,
            next_attempt_at=now + dt.timedelta(milliseconds=delay_ms),
        )
