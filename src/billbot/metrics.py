"""Stage timing for pipeline runs - latency focused."""

import time


class MetricsCollector:
    """Collects named stage timings for a single scan."""

    def __init__(self):
        self._start_times: dict[str, float] = {}
        self.stage_times: dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        """Start a named timer."""
        self._start_times[name] = time.perf_counter()

    def stop_timer(self, name: str) -> float:
        """Stop a named timer, record and return elapsed time."""
        if name not in self._start_times:
            return 0.0
        elapsed = time.perf_counter() - self._start_times.pop(name)
        self.stage_times[name] = self.stage_times.get(name, 0.0) + elapsed
        return elapsed
