"""
models.py — Domain Records for the Pipe Analytics Engine
=========================================================

Plain dataclasses for the records the engine reads and writes through the
store contract, plus the result records each analysis returns.

All flow/pressure values use the sensors' scaled-integer units
(value × 100); timestamps are milliseconds since the Unix epoch.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

# Sensor status
ACTIVE = "active"
WARNING = "warning"
LEAK = "leak"
OFFLINE = "offline"
SENSOR_STATUSES = (ACTIVE, WARNING, LEAK, OFFLINE)

# Analyzer classification
NORMAL = "normal"
BLOCKAGE = "blockage"

# Alert types
ALERT_LEAK = "leak"
ALERT_BLOCKAGE = "blockage"
ALERT_PRESSURE_DROP = "pressure_drop"
ALERT_ANOMALY = "anomaly"
ALERT_PREDICTION = "prediction"

# Severity
LOW = "low"
MEDIUM = "medium"
HIGH = "high"
CRITICAL = "critical"

# Leak archetypes
BURST = "burst"
JOINT = "joint"
PINHOLE = "pinhole"
SEEPAGE = "seepage"
UNKNOWN = "unknown"


class _Record:
    """Mixin giving dataclasses a JSON-friendly dict form."""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Reading(_Record):
    sensor_id: int
    flow_rate: int
    pressure: int
    timestamp: int
    temperature: Optional[int] = None


@dataclass
class Sensor(_Record):
    id: int
    name: str
    location: str
    pipe_type: str = "main"
    status: str = ACTIVE
    position_x: int = 50
    position_y: int = 50
    description: str = ""


@dataclass
class FlowPattern(_Record):
    """Learned flow baseline for one (sensor, hour-of-day, day-of-week) bucket."""

    sensor_id: int
    hour_of_day: int
    day_of_week: int
    avg_flow_rate: int
    min_flow_rate: int
    max_flow_rate: int
    std_deviation: int
    sample_count: int = 0


@dataclass
class RiskScore(_Record):
    sensor_id: int
    risk_score: int
    leak_probability: int
    blockage_probability: int
    factors: list[str]
    last_analyzed_at: int


@dataclass
class Alert(_Record):
    sensor_id: int
    type: str
    severity: str
    message: str
    location: str
    timestamp: int
    id: Optional[int] = None
    is_read: bool = False
    is_resolved: bool = False


@dataclass
class FlowAggregate(_Record):
    """Per-sensor flow summary over a recent window."""

    sensor_id: int
    avg_flow: float
    min_flow: int
    max_flow: int
    avg_pressure: float
    count: int


# ── Analysis results ─────────────────────────────────────────────


@dataclass
class WindowAnalysis(_Record):
    sensor_id: int
    status: str
    confidence: int
    severity: str
    factors: list[str]
    message: str
    alert_id: Optional[int] = None


@dataclass
class ComparisonResult(_Record):
    is_system_wide_issue: bool
    affected_sensors: list[int]
    diagnosis: str


@dataclass
class AnomalyCheck(_Record):
    is_anomaly: bool
    deviation: float
    expected_range: Optional[tuple[float, float]] = None


@dataclass
class PredictionResult(_Record):
    sensor_id: int
    sensor_name: str
    risk_score: int
    leak_probability: int
    blockage_probability: int
    factors: list[str]
    recommendation: str


@dataclass
class LeakClassification(_Record):
    type: str
    severity: str
    estimated_flow_loss: int
    urgency: str


@dataclass
class SystemHealthReport(_Record):
    overall_health: int
    total_sensors: int
    active_sensors: int
    warning_count: int
    leak_count: int
    predictions: list[PredictionResult] = field(default_factory=list)
