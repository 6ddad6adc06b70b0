"""Metric series identity and the canonical store key codec."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

DEFAULT_KEY_PREFIX = "metrics"


class MetricKind(str, Enum):
    """Closed set of metric kinds understood by the pipeline."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricKey:
    """A metric series: kind, name and label set.

    Labels keep their insertion order. Two label sets with the same pairs in
    a different order encode to different keys.
    """
    kind: MetricKind
    name: str
    labels: Dict[str, str] = field(default_factory=dict)

    def encode(self, prefix: str = DEFAULT_KEY_PREFIX) -> str:
        """Build the store key: ``<prefix>:<kind>:<name>[:<k>=<v>,...]``."""
        key = f"{prefix}:{self.kind.value}:{self.name}"
        if self.labels:
            key += ":" + ",".join(f"{k}={v}" for k, v in self.labels.items())
        return key


def check_key_parts(name: str, labels: Dict[str, str]):
    """
    Reject a name or labels that would not survive ``parse_key``.

    ``:`` separates key segments, ``,`` separates label pairs and the first
    ``=`` splits a pair, so those are refused where they would be misread.

    Raises:
        ValueError: on the first offending name, label name or label value
    """
    if not name or ":" in name:
        raise ValueError(f"Metric name '{name}' must be non-empty and must not contain ':'")

    for label_name, label_value in labels.items():
        if not label_name or any(c in label_name for c in ":,="):
            raise ValueError(
                f"Label name '{label_name}' on metric '{name}' must be non-empty "
                f"and must not contain ':', ',' or '='"
            )
        if "," in label_value:
            raise ValueError(
                f"Label value '{label_value}' for '{label_name}' on metric '{name}' "
                f"must not contain ','"
            )


def encode_key(
    kind: MetricKind,
    name: str,
    labels: Optional[Dict[str, str]] = None,
    prefix: str = DEFAULT_KEY_PREFIX
) -> str:
    """Shortcut for ``MetricKey(kind, name, labels).encode(prefix)``."""
    return MetricKey(kind, name, dict(labels or {})).encode(prefix)


def parse_key(key: str, prefix: str = DEFAULT_KEY_PREFIX) -> Optional[MetricKey]:
    """
    Parse a store key back into a MetricKey.

    Returns None when the prefix, kind or name is missing or unknown.
    Label pairs without ``=`` are dropped.
    """
    parts = key.split(":", 3)
    if len(parts) < 3 or parts[0] != prefix:
        return None

    try:
        kind = MetricKind(parts[1])
    except ValueError:
        return None

    name = parts[2]
    if not name:
        return None

    labels: Dict[str, str] = {}
    if len(parts) == 4 and parts[3]:
        for pair in parts[3].split(","):
            label_name, sep, label_value = pair.partition("=")
            if sep:
                labels[label_name] = label_value

    return MetricKey(kind, name, labels)
