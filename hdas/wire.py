# hdas/wire.py
"""Text put-command format understood by the time-series collector.

One command per line::

    put <metric_key> <timestamp_ms> <value> [tag=value ...]
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import List

from .errors import RenderError
from .models import GenericMetricType

HEART_RATE_KEY = "health_data_heart_rate"
SLEEP_ANALYSIS_KEY = "health_data_sleep_analysis"


def format_value(value: float) -> str:
    """Shortest decimal form of ``value``; integral values lose their ``.0``."""
    value = float(value)
    if not math.isfinite(value):
        raise RenderError(f"cannot render non-finite value {value!r}")
    if value.is_integer():
        return str(int(value))
    text = repr(value)
    if "e" in text:
        # 1e-07 -> 0.0000001
        text = format(Decimal(text), "f")
    return text


def to_millis(epoch_seconds: int) -> int:
    return int(epoch_seconds) * 1000


def put_command(metric_key: str, epoch_seconds: int, value: float, **tags: str) -> str:
    parts = ["put", metric_key, str(to_millis(epoch_seconds)), format_value(value)]
    parts.extend(f"{name}={tag}" for name, tag in tags.items())
    return " ".join(parts) + "\n"


# === Renderers, one per sample kind ===

def render_heart_rate(row) -> List[str]:
    return [put_command(HEART_RATE_KEY, row.date, row.max)]


def generic_renderer(metric_type: GenericMetricType):
    key = metric_type.wire_key

    def render(row) -> List[str]:
        return [put_command(key, row.date, row.quantity)]

    return render


def render_sleep_analysis(row) -> List[str]:
    return [
        put_command(SLEEP_ANALYSIS_KEY, row.date, row.in_bed, type="in_bed"),
        put_command(SLEEP_ANALYSIS_KEY, row.date, row.asleep, type="asleep"),
    ]
