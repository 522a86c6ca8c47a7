"""
Simulator configuration - tick interval, historian capacity, alarm thresholds
"""

import os
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# tag -> {ll, l, h, hh}; any subset of the four limits may be present
DEFAULT_ALARM_THRESHOLDS: Dict[str, Dict[str, float]] = {
    'INT-FIT-001': {'ll': 0.5, 'l': 1.0, 'h': 8.5, 'hh': 9.5},
    'INT-AIT-001': {'h': 200.0, 'hh': 500.0},
    'INT-PDT-001': {'h': 5.0, 'hh': 8.0},
    'COG-AIT-001': {'h': 50.0, 'hh': 100.0},
    'SED-AIT-001': {'h': 5.0, 'hh': 10.0},
    'SED-LIT-001': {'h': 4.0, 'hh': 6.0},
    'FLT-PDT-001': {'h': 7.0, 'hh': 9.0},
    'FLT-AIT-001': {'h': 0.3, 'hh': 0.5},
    'DIS-AIT-001': {'ll': 0.3, 'l': 0.5, 'h': 3.0, 'hh': 4.0},
    'DIS-AIT-002': {'ll': 0.2, 'l': 0.3, 'h': 2.0},
    'DIS-AIT-003': {'ll': 6.5, 'l': 6.8, 'h': 8.0, 'hh': 8.5},
    'DIS-AIT-004': {'ll': 0.5, 'l': 0.7, 'h': 1.0, 'hh': 1.2},
}

THRESHOLD_KEYS = ('ll', 'l', 'h', 'hh')


def default_thresholds() -> Dict[str, Dict[str, float]]:
    return {tag: dict(limits) for tag, limits in DEFAULT_ALARM_THRESHOLDS.items()}


def validate_thresholds(thresholds) -> Dict[str, Dict[str, float]]:
    """Normalise a tag -> limits mapping, raising ValueError on bad input"""
    if not isinstance(thresholds, dict):
        raise ValueError("Thresholds must be a mapping of tag to limits")

    result = {}
    for tag, limits in thresholds.items():
        if not isinstance(limits, dict):
            raise ValueError(f"Limits for {tag} must be a mapping")
        clean = {}
        for key, value in limits.items():
            if key not in THRESHOLD_KEYS:
                raise ValueError(f"Unknown threshold '{key}' for {tag}")
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Threshold {tag}.{key} must be numeric")
            clean[key] = float(value)
        result[str(tag)] = clean
    return result


@dataclass
class SimulatorConfig:
    tick_interval: float = 0.5              # wall-clock seconds between ticks
    historian_capacity: int = 172800        # 24 h at 2 Hz
    alarm_retention_seconds: float = 300.0
    alarm_history_limit: int = 500
    alarm_thresholds: Dict[str, Dict[str, float]] = field(default_factory=default_thresholds)
    host: str = '0.0.0.0'
    port: int = 8080
    log_dir: str = '/tmp/logs'


def _load_thresholds_file(path: str) -> Dict[str, Dict[str, float]]:
    with open(path, 'r') as f:
        overrides = validate_thresholds(json.load(f))
    thresholds = default_thresholds()
    thresholds.update(overrides)
    logger.info(f"Loaded alarm thresholds for {len(overrides)} tags from {path}")
    return thresholds


def load_config(env: Optional[Dict[str, str]] = None) -> SimulatorConfig:
    """Build a SimulatorConfig from environment variables"""
    env = os.environ if env is None else env

    config = SimulatorConfig(
        tick_interval=int(env.get('TICK_INTERVAL_MS', '500')) / 1000.0,
        historian_capacity=int(env.get('HISTORIAN_MAX_POINTS', '172800')),
        alarm_retention_seconds=float(env.get('ALARM_RETENTION_SECONDS', '300')),
        alarm_history_limit=int(env.get('ALARM_HISTORY_LIMIT', '500')),
        host=env.get('HOST', '0.0.0.0'),
        port=int(env.get('PORT', '8080')),
        log_dir=env.get('LOG_DIR', '/tmp/logs'),
    )

    thresholds_file = env.get('ALARM_THRESHOLDS_FILE')
    if thresholds_file:
        config.alarm_thresholds = _load_thresholds_file(thresholds_file)

    return config
