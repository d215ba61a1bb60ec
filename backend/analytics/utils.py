"""
utils.py — Shared Utility Functions and Logging Setup
======================================================

Common helpers used across the analytics modules.
"""

import os
import math
import time
import logging
from datetime import datetime

from . import config


def setup_logging(level: str = None) -> None:
    """
    Configure structured logging for the analytics engine.

    Sets up a console handler with timestamp, logger name, level,
    and message. All analytics.* loggers inherit this configuration.

    Args:
        level: Log level string (DEBUG/INFO/WARNING/ERROR/CRITICAL).
               Defaults to config.LOG_LEVEL.
    """
    level = level or config.LOG_LEVEL
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(name)s] %(levelname)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    analytics_logger = logging.getLogger("analytics")
    analytics_logger.setLevel(numeric_level)

    # Avoid duplicate handlers on repeated calls
    if not analytics_logger.handlers:
        analytics_logger.addHandler(handler)


def ensure_saved_dir() -> str:
    """
    Ensure the snapshot directory exists.

    Returns:
        Absolute path to the saved directory.
    """
    os.makedirs(config.SAVED_DIR, exist_ok=True)
    return config.SAVED_DIR


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def time_bucket(timestamp_ms: int) -> tuple[int, int]:
    """
    Map a timestamp to its (hour_of_day, day_of_week) pattern bucket.

    Uses local time. Days are numbered Sunday = 0 … Saturday = 6.
    """
    local = datetime.fromtimestamp(timestamp_ms / 1000.0)
    return local.hour, (local.weekday() + 1) % 7


def clamp_score(value: float, low: int = 0, high: int = 100) -> int:
    """
    Clamp a score to an integer in [low, high].

    NaN and infinities collapse to ``low`` so a pathological input can
    never leak a non-finite score.
    """
    if value is None or not math.isfinite(value):
        return low
    return int(max(low, min(high, round(value))))


def validate_record(record: dict) -> bool:
    """
    Validate that a telemetry record has the required fields.

    Args:
        record: Telemetry record dict.

    Returns:
        True if valid (has numeric sensorId, flowRate, pressure), False otherwise.
    """
    required = ["sensorId", "flowRate", "pressure"]
    for key in required:
        if key not in record:
            return False
        try:
            float(record[key])
        except (TypeError, ValueError):
            return False
    return True
