"""
Utility helpers.
"""

from __future__ import annotations

import math
import time
from collections import OrderedDict


def now_ms() -> int:
    return int(time.time() * 1000)


def step_to_decimals(step: float) -> int:
    if step <= 0:
        return 2
    s = f"{step:.10f}".rstrip("0")
    if "." in s:
        return max(0, len(s.split(".")[1]))
    return 0


def floor_to_step(value: float, step: float) -> float:
    if step <= 0:
        return value
    decimals = step_to_decimals(step)
    # Round the ratio first so 99900.0 / 0.1 does not floor to 998999.
    ticks = math.floor(round(value / step, 9))
    return round(ticks * step, decimals)


def ceil_to_step(value: float, step: float) -> float:
    if step <= 0:
        return value
    decimals = step_to_decimals(step)
    ticks = math.ceil(round(value / step, 9))
    return round(ticks * step, decimals)


def sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


class BoundedSet:
    """Insertion-ordered set that forgets its oldest keys beyond maxlen."""

    def __init__(self, maxlen: int = 5000) -> None:
        self.maxlen = maxlen
        self._keys: "OrderedDict[str, None]" = OrderedDict()

    def add(self, key: str) -> bool:
        """False if the key was already present."""
        if key in self._keys:
            return False
        self._keys[key] = None
        while len(self._keys) > self.maxlen:
            self._keys.popitem(last=False)
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)
