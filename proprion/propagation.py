from __future__ import annotations

import time
from typing import Callable

from .errors import PolicyRejected, ProviderApiError, ProviderUnreachable
from .models import Role, WaitOutcome, WaitStatus


DEFAULT_INITIAL_INTERVAL_SECONDS = 0.5
DEFAULT_MAX_INTERVAL_SECONDS = 4.0
DEFAULT_BUDGET_SECONDS = 15.0


class NotYetPropagated(Exception):
    """Raised by a probe when the role is not visible or usable yet."""


Probe = Callable[[Role], bool]


class PropagationWaiter:
    """Polls a read-only probe with exponential backoff inside a fixed budget.

    A probe returns True once the role is usable. ``False``,
    ``NotYetPropagated``, ``ProviderUnreachable`` and transient provider
    statuses count as "not yet". Other provider statuses become
    ``PolicyRejected`` right away; any other error propagates unchanged.
    """

    def __init__(
        self,
        *,
        budget_seconds: float = DEFAULT_BUDGET_SECONDS,
        initial_interval: float = DEFAULT_INITIAL_INTERVAL_SECONDS,
        max_interval: float = DEFAULT_MAX_INTERVAL_SECONDS,
        multiplier: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if initial_interval <= 0:
            raise ValueError("initial_interval must be positive")
        if max_interval < initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        if budget_seconds < 0:
            raise ValueError("budget_seconds must be >= 0")
        self.budget_seconds = float(budget_seconds)
        self.initial_interval = float(initial_interval)
        self.max_interval = float(max_interval)
        self.multiplier = max(float(multiplier), 1.0)
        self._clock = clock
        self._sleep = sleep

    def _probe_once(self, role: Role, probe: Probe) -> bool:
        try:
            return bool(probe(role))
        except (NotYetPropagated, ProviderUnreachable):
            return False
        except ProviderApiError as e:
            if e.transient:
                return False
            raise PolicyRejected(f"role {role.role_id} probe rejected: {e}") from e

    def wait_until_usable(self, role: Role, probe: Probe) -> WaitOutcome:
        start = self._clock()
        deadline = start + self.budget_seconds
        interval = self.initial_interval
        probes = 0
        while True:
            probes += 1
            if self._probe_once(role, probe):
                return WaitOutcome(
                    status=WaitStatus.USABLE,
                    probes=probes,
                    waited_seconds=self._clock() - start,
                )
            remaining = deadline - self._clock()
            if remaining < self.initial_interval:
                return WaitOutcome(
                    status=WaitStatus.TIMED_OUT,
                    probes=probes,
                    waited_seconds=self._clock() - start,
                )
            self._sleep(min(interval, remaining))
            interval = min(interval * self.multiplier, self.max_interval)
