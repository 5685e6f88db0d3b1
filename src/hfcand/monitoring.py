"""Monitoring sinks injected into the candidate builder.

The builder never owns histograms: it reports values and counters to a
`Reporter`, and the caller decides whether to keep or discard them.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Protocol


class Reporter(Protocol):
    """Append-only sink for monitoring quantities."""

    def fill(self, name: str, value: float) -> None: ...

    def count(self, name: str, n: int = 1) -> None: ...


class NullReporter:
    """Reporter that discards everything."""

    def fill(self, name: str, value: float) -> None:
        return None

    def count(self, name: str, n: int = 1) -> None:
        return None


@dataclass
class HistogramReporter:
    """In-memory reporter keeping raw values per quantity and named counters."""

    values: defaultdict[str, list[float]] = field(default_factory=lambda: defaultdict(list))
    counters: Counter[str] = field(default_factory=Counter)

    def fill(self, name: str, value: float) -> None:
        self.values[name].append(float(value))

    def count(self, name: str, n: int = 1) -> None:
        self.counters[name] += n

    def histogram(self, name: str, bins: int, low: float, high: float) -> list[int]:
        """Fixed-width bin contents of one quantity; out-of-range values are dropped."""
        if bins <= 0 or high <= low:
            raise ValueError("Histogram needs bins > 0 and high > low.")
        contents = [0] * bins
        width = (high - low) / bins
        for value in self.values.get(name, ()):
            if not low <= value < high:
                continue
            contents[min(int((value - low) / width), bins - 1)] += 1
        return contents

    def summary(self) -> dict[str, dict[str, float]]:
        """Entries, mean and RMS per filled quantity, plus the counters."""
        out: dict[str, dict[str, float]] = {}
        for name, vals in self.values.items():
            n = len(vals)
            mean = sum(vals) / n if n else 0.0
            rms = math.sqrt(sum((v - mean) ** 2 for v in vals) / n) if n else 0.0
            out[name] = {"entries": float(n), "mean": mean, "rms": rms}
        for name, n in self.counters.items():
            out[name] = {"entries": float(n)}
        return out
