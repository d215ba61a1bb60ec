"""
backend.analytics — Pipe Analytics Engine for the SPS Smart Plumbing System
============================================================================

This package implements the analytics layer of the Smart Plumbing System:
it turns raw flow/pressure telemetry into sensor states, leak alerts and a
ranked list of pipes at risk.

Architecture:
    Pipe Sensors → Gateway → MQTT/HTTP → Telemetry Pipeline
                                               ↓
                                        Analysis Engine
                                               ↓
                                   1. Windowed Analysis (per sensor)
                                   2. Baseline Anomaly Check
                                   3. Cross-Sensor Comparison
                                   4. Risk Scoring + Ranking
                                   5. Leak Classification
                                               ↓
                               Sensor status (active / warning / leak)
                                               ↓
                                 Alerts → Store + MQTT sps/alerts

Modules:
    config              — Thresholds, history limits and connection settings
    models              — Dataclass records shared by every module
    store               — Data-access contract, in-memory and bounded stores
    firebase_store      — Firebase Realtime Database store adapter
    preprocessing       — Reading cleanup and time-bucket columns
    feature_engineering — Window statistics (mean, stddev, CV)
    windowing           — Short-window sensor classification
    comparison          — Cross-sensor system-wide vs. localized verdict
    patterns            — Hour/weekday flow baseline learning
    anomaly             — Live flow vs. learned baseline
    risk                — Per-sensor risk scoring
    leak_classifier     — Leak archetype refinement
    control_logic       — Sensor status state machine
    engine              — Thread-safe facade and health report
    pipeline            — Telemetry ingestion and MQTT alert publishing
    service             — Flask HTTP service
    learn               — Periodic pattern-learning job
    utils               — Shared utility functions and logging helpers
"""

__version__ = "1.0.0"
__author__ = "Water Monitoring IoT Team"
