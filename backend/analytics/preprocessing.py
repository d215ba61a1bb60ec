"""
preprocessing.py — Reading Cleaning and Tabulation
===================================================

Responsibilities:
1. Turn a sequence of Reading records into a pandas DataFrame.
2. Remove rows with missing or non-numeric flow/pressure values.
3. Attach the (hour_of_day, day_of_week) pattern bucket of each reading.

Why each step matters:
- **Missing values**: a gateway that drops a field, or a sensor brownout,
  can deliver a reading with no pressure.  A single NaN would poison every
  mean and stddev in the window.
- **Bucket columns**: the pattern learner groups by local hour and weekday;
  computing them once here keeps the grouping consistent with the anomaly
  checker's lookup.
"""

import logging
import pandas as pd

from .models import Reading
from .utils import time_bucket

logger = logging.getLogger("analytics.preprocessing")

READING_COLUMNS = ["sensor_id", "flow_rate", "pressure", "temperature", "timestamp"]


def readings_to_frame(readings: list[Reading]) -> pd.DataFrame:
    """
    Tabulate readings, oldest first.

    Args:
        readings: Reading records in any order.

    Returns:
        DataFrame with READING_COLUMNS, numeric flow/pressure, sorted by
        timestamp.  Empty (with columns) when no readings are given.
    """
    if not readings:
        return pd.DataFrame(columns=READING_COLUMNS)

    df = pd.DataFrame([r.to_dict() for r in readings], columns=READING_COLUMNS)
    for col in ["flow_rate", "pressure", "timestamp"]:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    return df.sort_values("timestamp").reset_index(drop=True)


def remove_missing(df: pd.DataFrame) -> pd.DataFrame:
    """
    Drop rows with a missing flow rate, pressure or timestamp.

    Temperature is optional and never causes a row to be dropped.

    Args:
        df: Frame produced by readings_to_frame().

    Returns:
        DataFrame with incomplete rows removed.
    """
    before = len(df)
    df_clean = df.dropna(subset=["flow_rate", "pressure", "timestamp"])
    dropped = before - len(df_clean)
    if dropped > 0:
        logger.info(f"Removed {dropped} readings with missing values "
                    f"({dropped / before * 100:.1f}% of data)")
    return df_clean.reset_index(drop=True)


def add_time_buckets(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add hour_of_day and day_of_week columns (local time, Sunday = 0).

    Args:
        df: Frame with a millisecond ``timestamp`` column.

    Returns:
        Copy of the frame with the two bucket columns.
    """
    df = df.copy()
    buckets = [time_bucket(int(ts)) for ts in df["timestamp"]]
    df["hour_of_day"] = [b[0] for b in buckets]
    df["day_of_week"] = [b[1] for b in buckets]
    return df


def prepare_readings(readings: list[Reading]) -> pd.DataFrame:
    """Tabulate and clean readings in one step."""
    return remove_missing(readings_to_frame(readings))
