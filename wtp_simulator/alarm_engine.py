"""
Alarm Engine - threshold alarms with HH/H/L/LL conditions

Stateless per call: evaluate() diffs the current tag values against the
alarm records already held in the ProcessState and reports what changed.
The manager itself only keeps the configured thresholds and the history.
"""

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .config import default_thresholds, validate_thresholds
from .process_state import Alarm, AlarmPriority, ProcessState
from .tags import extract_tag_values, tag_description

logger = logging.getLogger(__name__)

CONDITIONS = ('HH', 'H', 'L', 'LL')

PRIORITY = {
    'HH': AlarmPriority.CRITICAL,
    'LL': AlarmPriority.CRITICAL,
    'H': AlarmPriority.HIGH,
    'L': AlarmPriority.MEDIUM,
}


def alarm_id(tag: str, condition: str) -> str:
    return f"{tag}-{condition}"


def check_conditions(value: float, limits: Dict[str, float]) -> Dict[str, Tuple[bool, float]]:
    """Return condition -> (active, setpoint) for each configured limit

    The more extreme condition always wins: H is only active while the value
    is short of HH, L only while it is above LL.
    """
    hh = limits.get('hh')
    h = limits.get('h')
    l = limits.get('l')
    ll = limits.get('ll')

    result = {}
    if hh is not None:
        result['HH'] = (value >= hh, hh)
    if h is not None:
        result['H'] = (value >= h and (hh is None or value < hh), h)
    if l is not None:
        result['L'] = (value <= l and (ll is None or value > ll), l)
    if ll is not None:
        result['LL'] = (value <= ll, ll)
    return result


@dataclass
class AlarmEvaluation:
    new_alarms: List[Alarm] = field(default_factory=list)
    cleared_alarms: List[Alarm] = field(default_factory=list)
    value_updates: List[Alarm] = field(default_factory=list)


class AlarmManager:
    """Evaluates tag thresholds and keeps the alarm history"""

    def __init__(self, thresholds: Optional[Dict[str, Dict[str, float]]] = None, history_limit: int = 500):
        self.thresholds = validate_thresholds(thresholds) if thresholds is not None else default_thresholds()
        self.history = deque(maxlen=history_limit)

    def evaluate(self, state: ProcessState) -> AlarmEvaluation:
        result = AlarmEvaluation()
        values = extract_tag_values(state)
        existing = {a.id: a for a in state.alarms}
        now = state.timestamp
        visited = set()

        for tag, limits in self.thresholds.items():
            if tag not in values:
                continue
            value = values[tag]

            for condition, (active, setpoint) in check_conditions(value, limits).items():
                aid = alarm_id(tag, condition)
                visited.add(aid)
                current = existing.get(aid)

                if active and (current is None or not current.active):
                    alarm = Alarm(
                        id=aid,
                        tag=tag,
                        description=f"{tag_description(tag)} {condition}",
                        priority=PRIORITY[condition],
                        value=value,
                        setpoint=setpoint,
                        condition=condition,
                        raised_at=now,
                    )
                    result.new_alarms.append(alarm)
                    self.history.appendleft(alarm)
                    logger.info(f"Alarm activated: {aid} value={value:.3f} setpoint={setpoint}")
                elif active:
                    result.value_updates.append(replace(current, value=value))
                elif current is not None and current.active:
                    cleared = replace(current, active=False, cleared_at=now, value=value)
                    result.cleared_alarms.append(cleared)
                    self._update_history(cleared)
                    logger.info(f"Alarm cleared: {aid}")

        # Limits removed from the threshold set no longer hold their alarms
        for current in state.alarms:
            if current.active and current.id not in visited:
                value = values.get(current.tag, current.value)
                cleared = replace(current, active=False, cleared_at=now, value=value)
                result.cleared_alarms.append(cleared)
                self._update_history(cleared)
                logger.info(f"Alarm cleared (threshold removed): {current.id}")

        return result

    def acknowledge(self, alarm: Alarm):
        """Record an acknowledgement made against the live alarm list"""
        self._update_history(alarm)
        logger.info(f"Alarm acknowledged: {alarm.id}")

    def _update_history(self, alarm: Alarm):
        for i, entry in enumerate(self.history):
            if entry.id == alarm.id and entry.raised_at == alarm.raised_at:
                self.history[i] = alarm
                return

    def get_history(self) -> List[Alarm]:
        """Most recent first"""
        return list(self.history)

    def get_thresholds(self) -> Dict[str, Dict[str, float]]:
        return {tag: dict(limits) for tag, limits in self.thresholds.items()}

    def set_thresholds(self, thresholds: Dict[str, Dict[str, float]]):
        self.thresholds = validate_thresholds(thresholds)
        logger.info(f"Alarm thresholds replaced for {len(self.thresholds)} tags")

    def clear_history(self):
        self.history.clear()
