import time
import random
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from certvalidator.errors import (
    CertificateValidatorError, DeadlineExceeded, ExhaustedRetries, UpstreamError
)

logger = logging.getLogger(__name__)


def positive_jitter() -> float:
    """Return a random factor in (0, 1], so the jittered share of a delay is never zero."""
    return 1.0 - random.random()


@dataclass(frozen=True)
class Backoff:
    """Attempt budget and delay profile for one kind of wait.

    The sleep after attempt `n` (zero based) is
    `jitter() * base * jitter_factor + base * delay`, where `base` is
    `2 ** n` for exponential profiles and 1 for fixed ones.
    """
    max_attempts: int
    delay: float
    jitter: float = 0.0
    exponential: bool = True

    def delay_for(self, attempt: int, jitter_draw: float) -> float:
        base = 2 ** attempt if self.exponential else 1
        return jitter_draw * base * self.jitter + base * self.delay


class Poller:
    """Retry a predicate until it returns True, the budget runs out, or the deadline passes.

    Sleep, jitter source and clock are injected so callers (and tests) control
    time explicitly. `deadline` is an absolute value on `clock`'s scale.
    """

    def __init__(self,
                 sleep: Callable[[float], None] = time.sleep,
                 jitter: Callable[[], float] = positive_jitter,
                 clock: Callable[[], float] = time.monotonic,
                 deadline: Optional[float] = None):
        self.sleep = sleep
        self.jitter = jitter
        self.clock = clock
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float, **kwargs) -> "Poller":
        """Build a poller whose deadline is `seconds` from now on its own clock."""
        poller = cls(**kwargs)
        poller.deadline = poller.clock() + seconds
        return poller

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - self.clock()

    def poll(self, predicate: Callable[[], bool], backoff: Backoff, description: str = "condition") -> int:
        """Evaluate `predicate` until it returns a truthy value.

        Args:
            predicate (Callable[[], bool]): Zero-argument check. Returning a
                falsy value means "not ready yet"; raising means the upstream
                call itself failed.
            backoff (Backoff): Attempt budget and delay profile.
            description (str): Human readable name of the awaited condition,
                used in logs and error messages.

        Returns:
            int: The number of attempts it took.

        Raises:
            UpstreamError: If the predicate raises anything that is not already
                a workflow error. The original exception is kept as `cause`.
            DeadlineExceeded: If the deadline passes, or the next sleep would
                cross it, before the budget is spent.
            ExhaustedRetries: If every attempt returned a falsy value.
        """
        for attempt in range(backoff.max_attempts):
            self._check_deadline(description, attempt)
            try:
                ready = predicate()
            except CertificateValidatorError:
                raise
            except Exception as e:
                logger.exception(f"Error while waiting for {description}: {e}")
                raise UpstreamError(f"Error while waiting for {description}: {e}", cause=e) from e

            if ready:
                logger.info(f"{description} ready after {attempt + 1} attempt(s)")
                return attempt + 1

            if attempt + 1 == backoff.max_attempts:
                break

            delay = backoff.delay_for(attempt, self.jitter())
            remaining = self.remaining()
            if remaining is not None and delay > remaining:
                raise DeadlineExceeded(
                    f"Invocation deadline reached while waiting for {description} "
                    f"after {attempt + 1} of {backoff.max_attempts} attempts"
                )
            logger.info(f"{description} not ready (attempt {attempt + 1}/{backoff.max_attempts}), "
                        f"sleeping for {delay:.2f}s")
            self.sleep(delay)

        raise ExhaustedRetries(
            f"{description} not ready after {backoff.max_attempts} attempts",
            attempts=backoff.max_attempts
        )

    def _check_deadline(self, description, attempt):
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded(
                f"Invocation deadline reached while waiting for {description} "
                f"after {attempt} attempts"
            )
