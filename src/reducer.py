"""Reduction of histogram sample buffers to summary statistics."""
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Sequence
import math

import numpy as np

PERCENTILES = {"p50": 0.5, "p95": 0.95, "p99": 0.99}


@dataclass
class HistogramSummary:
    """Summary statistics of one histogram buffer."""
    count: int
    sum: float
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def nearest_rank(sorted_values: np.ndarray, percentile: float) -> float:
    """
    Nearest-rank percentile of an ascending array.

    index = ceil(n * percentile) - 1, clamped to [0, n - 1]. No interpolation.
    """
    n = len(sorted_values)
    index = int(math.ceil(n * percentile)) - 1
    index = max(0, min(index, n - 1))
    return float(sorted_values[index])


def reduce_samples(samples: Sequence[float]) -> Optional[HistogramSummary]:
    """Reduce a sample buffer; an empty buffer yields None (no record)."""
    if len(samples) == 0:
        return None

    values = np.sort(np.asarray(samples, dtype=float))
    percentiles = {
        label: nearest_rank(values, p)
        for label, p in PERCENTILES.items()
    }

    return HistogramSummary(
        count=int(values.size),
        sum=float(values.sum()),
        min=float(values[0]),
        max=float(values[-1]),
        avg=float(values.mean()),
        **percentiles
    )
