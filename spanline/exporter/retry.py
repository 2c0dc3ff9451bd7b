"""Exponential backoff policy for failed exports, built on tenacity."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, stop_before_delay
from tenacity.wait import wait_base, wait_exponential

from spanline.errors import ValidationError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with a total time budget.

    Intervals start at ``initial_interval``, grow by ``multiplier`` and are
    capped at ``max_interval``. Once ``max_elapsed_time`` seconds have
    passed since the first attempt the batch is abandoned. With
    ``randomization_factor`` > 0 each interval is jittered by up to that
    fraction in either direction.
    """

    initial_interval: float = 5.0
    max_interval: float = 30.0
    max_elapsed_time: float = 300.0
    multiplier: float = 1.5
    randomization_factor: float = 0.0
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.initial_interval <= 0:
            raise ValidationError("initial_interval must be positive")
        if self.max_interval < self.initial_interval:
            raise ValidationError("max_interval must be >= initial_interval")
        if self.max_elapsed_time < 0:
            raise ValidationError("max_elapsed_time must not be negative")
        if self.multiplier < 1.0:
            raise ValidationError("multiplier must be >= 1.0")
        if not 0.0 <= self.randomization_factor < 1.0:
            raise ValidationError("randomization_factor must be in [0.0, 1.0)")

    def retrying(
        self,
        should_retry: Callable[[Any], bool],
        *,
        sleep: Callable[[float], None] = time.sleep,
        before_sleep: Optional[Callable[[RetryCallState], None]] = None,
    ) -> Retrying:
        """
        Build a ``Retrying`` controller for one delivery.

        The wrapped call is repeated while ``should_retry(result)`` is true
        and the budget lasts. No attempt is made once the next wait would
        use up the rest of the budget. When retries stop, the last result
        is returned instead of raising ``RetryError``.
        """
        if self.enabled:
            stop = stop_before_delay(self.max_elapsed_time)
        else:
            stop = stop_after_attempt(1)
        return Retrying(
            retry=retry_if_result(should_retry),
            stop=stop,
            wait=wait_backoff(self),
            sleep=sleep,
            before_sleep=before_sleep,
            retry_error_callback=_last_result,
        )


class wait_backoff(wait_base):
    """Exponential wait with optional jitter, clipped to the policy's remaining budget."""

    def __init__(self, policy: RetryPolicy, rng: Optional[random.Random] = None) -> None:
        self.policy = policy
        self.rng = rng or random
        self._exponential = wait_exponential(
            multiplier=policy.initial_interval,
            exp_base=policy.multiplier,
            max=policy.max_interval,
        )

    def __call__(self, retry_state: RetryCallState) -> float:
        interval = self._exponential(retry_state)
        factor = self.policy.randomization_factor
        if factor:
            delta = factor * interval
            interval = self.rng.uniform(interval - delta, interval + delta)
        elapsed = retry_state.seconds_since_start or 0.0
        return max(0.0, min(interval, self.policy.max_elapsed_time - elapsed))


def _last_result(retry_state: RetryCallState) -> Any:
    return retry_state.outcome.result()


NO_RETRY = RetryPolicy(enabled=False)
