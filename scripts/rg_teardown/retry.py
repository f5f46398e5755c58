from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .model import CallResult, DeletionAttempt, Outcome


class TeardownCancelled(RuntimeError):
    pass


class Clock:
    """Monotonic time plus sleeps that an operator can interrupt."""

    def __init__(self, cancel: Optional[threading.Event] = None):
        self.cancel = cancel or threading.Event()

    def now(self) -> float:
        return time.monotonic()

    def check(self) -> None:
        if self.cancel.is_set():
            raise TeardownCancelled("cancelled by operator")

    def sleep(self, seconds: float) -> None:
        self.check()
        if self.cancel.wait(max(0.0, seconds)):
            raise TeardownCancelled("cancelled by operator")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 5
    base_delay: float = 5
    max_delay: float = 60

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


class RetryExecutor:
    """
    Bounded retry around one control-plane call.

    Only transient failures are retried. Not-found counts as done; blocked,
    permission and permanent failures are returned to the caller at once so
    that it can decide whether to defer, skip or abort.
    """

    def __init__(self, policy: RetryPolicy, clock: Clock):
        self.policy = policy
        self.clock = clock

    def execute(self, target_id: str, call: Callable[[], CallResult]) -> DeletionAttempt:
        elapsed = 0.0
        attempts = max(1, self.policy.attempts)
        n = 1
        while True:
            self.clock.check()
            res = call()
            if res.outcome is not Outcome.TRANSIENT or n >= attempts:
                return DeletionAttempt(
                    target_id=target_id,
                    attempts=n,
                    backoff_elapsed=elapsed,
                    outcome=res.outcome,
                    reason=res.reason,
                )
            delay = self.policy.delay(n)
            print(f"--- transient failure ({res.reason}); retry {n}/{attempts - 1} in {delay:.0f}s")
            self.clock.sleep(delay)
            elapsed += delay
            n += 1
