"""
config.py — Analytics Configuration Constants
==============================================

Centralizes every threshold, history limit, and connection setting used by
the SPS (Smart Plumbing System) pipe analytics engine. Tuning these values
adjusts how sensitive the system is to leaks and how much history each
analysis looks at.

Unit conventions (as delivered by the sensors):
- Flow rate in flow-units/minute × 100 (scaled integer)
- Pressure in PSI × 100 (scaled integer)
- Temperature in °C × 100 (scaled integer, optional)
- Timestamps in milliseconds since the Unix epoch
"""

import os

# ═══════════════════════════════════════════════════════════════════
# WINDOWED ANALYSIS
# ═══════════════════════════════════════════════════════════════════

# Default window (minutes) for analyze_window. 5 minutes of telemetry is
# long enough to average out a single noisy sample.
DEFAULT_WINDOW_MINUTES = 5

# Fewer readings than this in a window yields an "insufficient_data" result.
MIN_WINDOW_READINGS = 3

# Confidence assigned to a window with enough data and no strong signal.
BASE_CONFIDENCE = 70
INSUFFICIENT_DATA_CONFIDENCE = 50
LOW_PRESSURE_CONFIDENCE = 85
BLOCKAGE_CONFIDENCE = 75
PATTERN_DEVIATION_BOOST = 10
MAX_CONFIDENCE = 95

# Flow stddev above this fraction of mean flow is "high variance".
FLOW_VARIANCE_RATIO = 0.3

# Mean pressure below 30 PSI indicates a leak.
LEAK_PRESSURE_THRESHOLD = 3000

# Flow below 1 unit/min while pressure stays above 50 PSI suggests a blockage.
BLOCKAGE_FLOW_THRESHOLD = 100
BLOCKAGE_PRESSURE_THRESHOLD = 5000

# Upper bound on readings fetched for one range query.
MAX_RANGE_READINGS = 1000

# ═══════════════════════════════════════════════════════════════════
# CROSS-SENSOR COMPARISON
# ═══════════════════════════════════════════════════════════════════

# Aggregation window for comparing sensors (5 minutes).
COMPARISON_WINDOW_MS = 5 * 60 * 1000

# A sensor is "low" below this fraction of its reference flow.
LOW_FLOW_RATIO = 0.5

# More than this fraction of low sensors means a supply-side problem.
SYSTEM_WIDE_FRACTION = 0.7

# Outliers deviate from the cross-sensor mean by more than N stddevs.
OUTLIER_STDDEV_MULTIPLIER = 2.0

# ═══════════════════════════════════════════════════════════════════
# PATTERN LEARNING / ANOMALY CHECK
# ═══════════════════════════════════════════════════════════════════

# Most recent readings considered on every learning pass.
PATTERN_HISTORY_LIMIT = 100

# No learning below this many readings.
MIN_LEARNING_READINGS = 10

# A bucket needs this many samples before it can flag anomalies.
MIN_PATTERN_SAMPLES = 10

# Expected range is avg ± N·stddev.
ANOMALY_STDDEV_MULTIPLIER = 2

# ═══════════════════════════════════════════════════════════════════
# RISK SCORING
# ═══════════════════════════════════════════════════════════════════

RISK_HISTORY_LIMIT = 50
MIN_RISK_READINGS = 10

# Coefficient of variation above this counts as high variability.
RISK_CV_THRESHOLD = 0.5

# Mean pressure below 35 PSI is below normal.
RISK_PRESSURE_THRESHOLD = 3500

# Predictions above this risk count as high-risk pipes in the health report.
HIGH_RISK_THRESHOLD = 50

# ═══════════════════════════════════════════════════════════════════
# LEAK CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════

CLASSIFIER_HISTORY_LIMIT = 20
MIN_CLASSIFIER_READINGS = 5

# ═══════════════════════════════════════════════════════════════════
# STORE ACCESS
# ═══════════════════════════════════════════════════════════════════

# Seconds before a store call is abandoned and treated as "no data".
STORE_TIMEOUT_SECONDS = float(os.environ.get("SPS_STORE_TIMEOUT", "5"))

# Worker threads used for store calls and batch scoring.
STORE_WORKERS = int(os.environ.get("SPS_STORE_WORKERS", "8"))
BATCH_WORKERS = int(os.environ.get("SPS_BATCH_WORKERS", "4"))

# "memory" (in-process fallback provider) or "firebase".
STORE_BACKEND = os.environ.get("SPS_STORE_BACKEND", "memory")

# Directory and file for the in-memory store snapshot (joblib format).
_ANALYTICS_DIR = os.path.dirname(os.path.abspath(__file__))
SAVED_DIR = os.path.join(_ANALYTICS_DIR, "saved")
SNAPSHOT_PATH = os.environ.get(
    "SPS_SNAPSHOT_PATH", os.path.join(SAVED_DIR, "store_snapshot.pkl")
)

# ═══════════════════════════════════════════════════════════════════
# FIREBASE / DATA SOURCE CONFIGURATION
# ═══════════════════════════════════════════════════════════════════

FIREBASE_ROOT_PATH = os.environ.get("SPS_FIREBASE_ROOT", "/sps")
FIREBASE_DATABASE_URL = os.environ.get(
    "FIREBASE_DATABASE_URL", "https://sps-plumbing-default-rtdb.firebaseio.com"
)
FIREBASE_CREDENTIALS_PATH = os.environ.get(
    "FIREBASE_CREDENTIALS_PATH",
    os.path.join(_ANALYTICS_DIR, "..", "serviceAccountKey.json"),
)

# ═══════════════════════════════════════════════════════════════════
# MQTT ALERT TOPICS
# ═══════════════════════════════════════════════════════════════════

# Topic on which new leak / blockage alerts are announced.
MQTT_ALERT_TOPIC = "sps/alerts"

MQTT_BROKER_HOST = os.environ.get("MQTT_BROKER_HOST", "localhost")
MQTT_BROKER_PORT = int(os.environ.get("MQTT_BROKER_PORT", "1883"))
MQTT_CLIENT_ID = "sps-analytics"

# ═══════════════════════════════════════════════════════════════════
# HTTP SERVICE
# ═══════════════════════════════════════════════════════════════════

SERVICE_PORT = int(os.environ.get("SPS_SERVICE_PORT", "5050"))

# ═══════════════════════════════════════════════════════════════════
# LOGGING
# ═══════════════════════════════════════════════════════════════════

# Log level for the analytics engine (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL = os.environ.get("SPS_LOG_LEVEL", "INFO")
