"""Retry policy: how many attempts a job gets and how long to wait between them."""

from dataclasses import dataclass
from typing import NamedTuple, Optional

from fplsync.jobs.errors import InvalidArgument


class RetryDecision(NamedTuple):
    retry: bool
    delay: Optional[float]  # seconds; None when the failure is terminal


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry table attached to a job.

    Attempt k (1-indexed) failing waits delays_after_attempt[k-1] seconds
    before attempt k+1, unless k == max_attempts, in which case the failure
    is terminal.

    Example:
        RetryPolicy(3, (30, 60))  # 3 attempts, wait 30s then 60s
    """

    max_attempts: int = 1
    delays_after_attempt: tuple[float, ...] = ()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise InvalidArgument(f"max_attempts must be >= 1, got {self.max_attempts}")
        delays = tuple(float(d) for d in self.delays_after_attempt)
        if len(delays) != self.max_attempts - 1:
            raise InvalidArgument(
                f"expected {self.max_attempts - 1} delays for {self.max_attempts} attempts, "
                f"got {len(delays)}"
            )
        if any(d < 0 for d in delays):
            raise InvalidArgument(f"retry delays must be non-negative, got {delays}")
        object.__setattr__(self, "delays_after_attempt", delays)

    @classmethod
    def with_delays(cls, *delays: float) -> "RetryPolicy":
        """Build a policy with one more attempt than there are delays."""
        return cls(max_attempts=len(delays) + 1, delays_after_attempt=tuple(delays))

    def should_retry(self, attempt_number: int) -> RetryDecision:
        if attempt_number < 1:
            raise InvalidArgument(f"attempt_number must be >= 1, got {attempt_number}")
        if attempt_number >= self.max_attempts:
            return RetryDecision(False, None)
        return RetryDecision(True, self.delays_after_attempt[attempt_number - 1])

    def describe(self) -> str:
        if self.max_attempts == 1:
            return "no retries"
        delays = ", ".join(f"{d:g}s" for d in self.delays_after_attempt)
        return f"{self.max_attempts} attempts ({delays})"


NO_RETRY = RetryPolicy()
