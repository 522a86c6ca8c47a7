"""
Historian - fixed-capacity trend buffer, one sample per tick
"""

import logging
from collections import deque
from typing import Any, Dict, List

from .tags import available_tags, extract_tag_values

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 172800   # 24 h at 2 Hz


class Historian:
    """Ring buffer of {timestamp, values} points; oldest points drop off silently"""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self.points = deque(maxlen=capacity)

    def record(self, state):
        self.points.append({
            'timestamp': state.timestamp,
            'values': extract_tag_values(state),
        })

    def get_tag_history(self, tag: str, duration: float) -> List[Dict[str, Any]]:
        """Points no older than the latest sample minus duration; unknown tags read 0"""
        if not self.points:
            return []
        cutoff = self.points[-1]['timestamp'] - duration
        return [
            {'timestamp': p['timestamp'], 'value': p['values'].get(tag, 0.0)}
            for p in self.points
            if p['timestamp'] >= cutoff
        ]

    def get_available_tags(self) -> List[str]:
        if self.points:
            return list(self.points[-1]['values'].keys())
        return available_tags()

    def clear(self):
        self.points.clear()
        logger.debug("Historian cleared")

    def __len__(self):
        return len(self.points)
