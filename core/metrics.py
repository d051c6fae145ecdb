import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

LabelsKey = tuple[tuple[str, str], ...]


@dataclass
class Counter:
    value: int = 0

    def add(self, value: int = 1):
        self.value += value


@dataclass
class Histogram:
    values: list[float] = field(default_factory=list)

    def record(self, value: float):
        self.values.append(value)

    @property
    def sum(self) -> float:
        return sum(self.values)

    @property
    def count(self) -> int:
        return len(self.values)

    def percentiles(self, *percentiles: float) -> dict[str, float]:
        if not self.values:
            return {f"p{int(p)}": 0.0 for p in percentiles}
        ordered = sorted(self.values)
        last = len(ordered) - 1
        return {
            f"p{int(p)}": ordered[min(int(len(ordered) * p / 100), last)]
            for p in percentiles
        }


def _labels_key(labels: dict[str, str] | None) -> LabelsKey:
    return tuple(sorted((labels or {}).items()))


def _format_labels(key: LabelsKey) -> str:
    if not key:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in key) + "}"


class MetricsCollector:
    """In-process counters and histograms for the balancer.

    Not locked: it is only touched from the event loop thread that runs the
    balancer.
    """

    def __init__(self, prefix: str = "lb") -> None:
        self.prefix = prefix
        self._counters: dict[str, dict[LabelsKey, Counter]] = defaultdict(
            lambda: defaultdict(Counter)
        )
        self._histograms: dict[str, dict[LabelsKey, Histogram]] = defaultdict(
            lambda: defaultdict(Histogram)
        )

    def increment_counter(
        self, name: str, labels: dict[str, str] | None = None, value: int = 1
    ):
        self._counters[name][_labels_key(labels)].add(value)

    def record_histogram(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ):
        self._histograms[name][_labels_key(labels)].record(value)

    def counter_value(self, name: str, labels: dict[str, str] | None = None) -> int:
        by_labels = self._counters.get(name)
        if not by_labels:
            return 0
        counter = by_labels.get(_labels_key(labels))
        return counter.value if counter else 0

    def get_metrics(self) -> dict[str, Any]:
        counters = {
            name: {_format_labels(key) or "_": c.value for key, c in by_labels.items()}
            for name, by_labels in self._counters.items()
        }
        histograms = {}
        for name, by_labels in self._histograms.items():
            histograms[name] = {
                _format_labels(key) or "_": {
                    "count": h.count,
                    "sum": round(h.sum, 3),
                    **h.percentiles(50, 90, 99),
                }
                for key, h in by_labels.items()
            }
        return {"counters": counters, "histograms": histograms}

    def export_prometheus(self) -> str:
        lines = []
        for name, by_labels in self._counters.items():
            metric = f"{self.prefix}_{name.replace('.', '_')}"
            if not metric.endswith("_total"):
                metric += "_total"
            for key, counter in by_labels.items():
                lines.append(f"{metric}{_format_labels(key)} {counter.value}")

        for name, by_labels in self._histograms.items():
            metric = f"{self.prefix}_{name.replace('.', '_')}"
            for key, hist in by_labels.items():
                if not hist.count:
                    continue
                suffix = _format_labels(key)
                lines.append(f"{metric}_sum{suffix} {round(hist.sum, 3)}")
                lines.append(f"{metric}_count{suffix} {hist.count}")
                for p, v in hist.percentiles(50, 90, 99).items():
                    lines.append(f"{metric}_{p}{suffix} {v}")

        return "\n".join(lines)

    def reset(self):
        self._counters.clear()
        self._histograms.clear()
