"""Label normalization, Prometheus name validation and series accounting."""
from collections import Counter
from typing import Dict, Iterable, Optional
import re

from src.series import DEFAULT_KEY_PREFIX, parse_key

METRIC_NAME_PATTERN = re.compile(r'^[a-zA-Z_:][a-zA-Z0-9_:]*$')
LABEL_NAME_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')


def normalize_labels(
    labels: Optional[Dict[str, str]],
    sort: bool = False
) -> Dict[str, str]:
    """
    Copy a label mapping, stringifying values.

    Args:
        labels: Caller supplied labels (may be None)
        sort: Reorder pairs by label name so that the same pairs always
            produce the same series key

    Returns:
        New label dictionary
    """
    if not labels:
        return {}

    items = [(str(k), str(v)) for k, v in labels.items()]
    if sort:
        items.sort()
    return dict(items)


def validate_metric_name(name: str) -> bool:
    """Metric names must match [a-zA-Z_:][a-zA-Z0-9_:]*"""
    return bool(METRIC_NAME_PATTERN.match(name))


def validate_label_names(labels: Dict[str, str]) -> bool:
    """
    Validate label names are Prometheus-safe.

    Label names must match [a-zA-Z_][a-zA-Z0-9_]*
    """
    for name in labels.keys():
        if not LABEL_NAME_PATTERN.match(name):
            return False

    return True


def count_series(keys: Iterable[str], prefix: str = DEFAULT_KEY_PREFIX) -> Dict[str, int]:
    """Count distinct series keys per metric name, ignoring unparseable keys."""
    counts: Counter = Counter()
    for key in keys:
        parsed = parse_key(key, prefix)
        if parsed is not None:
            counts[parsed.name] += 1
    return dict(counts)
