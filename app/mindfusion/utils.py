"""Common utility helpers."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from time import perf_counter


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> float:
    return perf_counter() * 1000.0


def elapsed_ms(start_ms: float) -> int:
    return int(perf_counter() * 1000.0 - start_ms)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round1(value: float) -> float:
    return math.floor(value * 10.0 + 0.5) / 10.0
