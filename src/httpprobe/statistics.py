"""
Running aggregation of request results.

Keeps every observed duration per phase and reports the averages
once the run is over.
"""

import numpy as np

from .models import Phase, Result
from .output import format_phase


class ResultSummary:
    """Per-phase duration series collected during a run."""

    def __init__(self):
        self.series: dict[Phase, list[float]] = {phase: [] for phase in Phase}
        self.count = 0

    def load(self, result: Result) -> None:
        """Record the durations of one completed request."""
        for phase in Phase:
            self.series[phase].append(result.duration(phase))
        self.count += 1

    def average(self, phase: Phase) -> float:
        """
        Arithmetic mean of the phase's durations in seconds.

        Raises:
            ValueError: No result has been loaded yet
        """
        values = self.series[phase]
        if not values:
            raise ValueError(f"no results recorded for {phase.label}")
        return float(np.mean(values))

    def averages(self) -> dict[Phase, float]:
        """Averages of all phases, empty when nothing was loaded."""
        if self.count == 0:
            return {}
        return {phase: self.average(phase) for phase in Phase}

    def render(self) -> str:
        lines = [f"Test ended. {self.count} requests made"]
        averages = self.averages()
        if averages:
            lines.append("")
            for phase, value in averages.items():
                lines.append(f"Average {phase.label}: {format_phase(phase, value)}")
        return "\n".join(lines)
