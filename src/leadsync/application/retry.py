"""Declarative retry policies for calls that can fall back to another model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, TypeVar

from loguru import logger
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_none
from tenacity.wait import wait_base

from leadsync.domain.errors import TransientExternalError

T = TypeVar("T")


def is_transient_error(exc: BaseException) -> bool:
    """Network failures and 5xx responses are worth another attempt."""
    return isinstance(exc, TransientExternalError)


@dataclass(frozen=True)
class RetryStep:
    """Use ``model`` for up to ``max_attempts`` consecutive attempts."""

    model: str
    max_attempts: int = 1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")


@dataclass(frozen=True)
class RetryPolicy:
    """Ordered steps plus the predicate that decides whether to move on."""

    steps: tuple[RetryStep, ...]
    is_transient: Callable[[BaseException], bool] = field(default=is_transient_error)

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("RetryPolicy needs at least one step")

    @classmethod
    def with_fallback(cls, primary: str, fallback: str | None) -> "RetryPolicy":
        """One attempt on the primary model, then one on the fallback."""
        steps = [RetryStep(primary)]
        if fallback:
            steps.append(RetryStep(fallback))
        return cls(steps=tuple(steps))

    @property
    def total_attempts(self) -> int:
        return sum(step.max_attempts for step in self.steps)

    def model_for_attempt(self, attempt_number: int) -> str:
        """Model to use for a 1-based attempt number."""
        remaining = attempt_number
        for step in self.steps:
            if remaining <= step.max_attempts:
                return step.model
            remaining -= step.max_attempts
        return self.steps[-1].model


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Attempt {retry_state.attempt_number} failed with transient error, retrying: {exc}")


def run_with_retry(
    policy: RetryPolicy,
    call: Callable[[str], T],
    wait: wait_base | None = None,
) -> T:
    """Run ``call(model)`` under ``policy``.

    Non-transient errors propagate immediately. When every attempt fails
    transiently, the last error propagates.
    """
    retrying = Retrying(
        stop=stop_after_attempt(policy.total_attempts),
        retry=retry_if_exception(policy.is_transient),
        wait=wait or wait_none(),
        before_sleep=_log_retry,
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            model = policy.model_for_attempt(attempt.retry_state.attempt_number)
            result = call(model)
    return result
