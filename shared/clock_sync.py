"""watchsync clock offset math (bounded estimate from backward/forward probes)."""
from __future__ import annotations
import statistics
from dataclasses import dataclass, field
from typing import Optional

from shared.protocol import now_ms


def median(values: list[float]) -> float:
    """Median of values; 0 for an empty list."""
    if not values:
        return 0
    return statistics.median(values)


@dataclass
class ClockEstimate:
    """
    Offset samples collected against the arbiter clock.

    under_estimates come from backward probes (arbiter time minus local time at
    receipt, which misses the reply's transit) and over_estimates from forward
    probes (arbiter time at receipt minus local send time, which includes the
    request's transit). The true offset lies between the two medians.
    Samples are kept across sampling runs.
    """
    under_estimates: list[float] = field(default_factory=list)
    over_estimates: list[float] = field(default_factory=list)
    correction: float = 0.0

    def add_under_sample(self, arbiter_time_ms: float, local_time_ms: Optional[int] = None) -> float:
        """Record a backward probe reply; returns the new correction."""
        if local_time_ms is None:
            local_time_ms = now_ms()
        self.under_estimates.append(arbiter_time_ms - local_time_ms)
        return self._recompute()

    def add_over_sample(self, diff_ms: float) -> float:
        """Record a forward probe reply (arbiter_now - client_sent); returns the new correction."""
        self.over_estimates.append(diff_ms)
        return self._recompute()

    def _recompute(self) -> float:
        self.correction = (self.under_estimate + self.over_estimate) / 2
        return self.correction

    @property
    def under_estimate(self) -> float:
        return median(self.under_estimates)

    @property
    def over_estimate(self) -> float:
        return median(self.over_estimates)

    @property
    def sample_count(self) -> int:
        return len(self.under_estimates) + len(self.over_estimates)

