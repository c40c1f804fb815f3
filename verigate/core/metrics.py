"""
verigate/core/metrics.py

Purpose: Lightweight tagged counters

- Counters keyed by name plus a sorted tag set
- Snapshot for the /health endpoint and for tests
- Process-local; an exporter can read snapshot() periodically
"""

from collections import Counter
from threading import Lock
from typing import Dict, Tuple

PUSH_CHALLENGE_COUNTER = "push_challenge"
PUSH_CHALLENGE_DELIVERY_COUNTER = "push_challenge_delivery"
CAPTCHA_ATTEMPT_COUNTER = "captcha"
CODE_REQUESTED_COUNTER = "code_requested"
VERIFIED_COUNTER = "verified"

_counters: Counter = Counter()
_lock = Lock()


def _key(name: str, tags: Dict[str, object]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
    return name, tuple(sorted((k, _tag_value(v)) for k, v in tags.items()))


def _tag_value(value: object) -> str:
    # Booleans are tagged as "true"/"false" so both truth tables read the same
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def increment(name: str, amount: int = 1, **tags) -> None:
    with _lock:
        _counters[_key(name, tags)] += amount


def get_count(name: str, **tags) -> int:
    """
    Sum of every series of `name` whose tags include the given ones.
    """
    wanted = {k: _tag_value(v) for k, v in tags.items()}
    total = 0
    with _lock:
        for (counter_name, counter_tags), value in _counters.items():
            if counter_name != name:
                continue
            tag_map = dict(counter_tags)
            if all(tag_map.get(k) == v for k, v in wanted.items()):
                total += value
    return total


def snapshot() -> Dict[str, int]:
    with _lock:
        items = list(_counters.items())
    result = {}
    for (name, tags), value in items:
        label = ",".join(f"{k}={v}" for k, v in tags)
        result[f"{name}{{{label}}}"] = value
    return result


def reset() -> None:
    with _lock:
        _counters.clear()
