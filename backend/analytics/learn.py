"""
learn.py — Periodic Pattern Learning Job
=========================================

Runs one pattern-learning pass over every known sensor, then refreshes the
persisted risk ranking so dashboards see scores computed against the new
baselines.

This script is meant to be scheduled (cron, systemd timer):
    python -m backend.analytics.learn

Or called programmatically:
    from backend.analytics.learn import run_learning_pass
    run_learning_pass(engine)

Flow:
    1. Build the configured store (restoring the memory snapshot if present)
    2. Learn patterns for each sensor from its most recent readings
    3. Re-score every sensor's risk
    4. Save the memory snapshot so the next run keeps the baselines
"""

import os
import sys
import logging

from . import config
from .engine import AnalysisEngine
from .store import InMemoryStore, StoreError, build_store
from .utils import ensure_saved_dir, setup_logging

logger = logging.getLogger("analytics.learn")


def run_learning_pass(engine: AnalysisEngine) -> dict[int, int]:
    """
    Learn baselines for every sensor and refresh the risk ranking.

    Args:
        engine: AnalysisEngine to run against.

    Returns:
        Mapping of sensor id to the number of pattern buckets updated.
    """
    logger.info("=" * 60)
    logger.info("STARTING PATTERN LEARNING PASS")
    logger.info("=" * 60)

    summary = engine.learn_all()
    skipped = [sid for sid, count in summary.items() if count == 0]
    if skipped:
        logger.info(f"Not enough history to learn for sensors: {skipped}")

    ranked = engine.rank_all()
    if ranked:
        top = ranked[0]
        logger.info(f"Highest risk after learning: sensor {top.sensor_id} "
                    f"({top.sensor_name}) score={top.risk_score}")

    logger.info("=" * 60)
    logger.info(f"PATTERN LEARNING COMPLETE: {sum(summary.values())} buckets "
                f"across {len(summary)} sensors")
    logger.info("=" * 60)
    return summary


def main() -> bool:
    """
    CLI entry point.

    Returns:
        True if the pass completed, False if the datastore failed.
    """
    setup_logging()
    ensure_saved_dir()

    store = build_store()
    if isinstance(store, InMemoryStore) and os.path.exists(config.SNAPSHOT_PATH):
        store = InMemoryStore.load_snapshot(config.SNAPSHOT_PATH)

    engine = AnalysisEngine(store)
    try:
        run_learning_pass(engine)
    except StoreError as e:
        logger.error(f"Pattern learning aborted: {e}")
        return False
    finally:
        engine.shutdown()

    if isinstance(store, InMemoryStore):
        store.save_snapshot(config.SNAPSHOT_PATH)
    return True


# ── CLI entry point ──────────────────────────────────────────────
if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
