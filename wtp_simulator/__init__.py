"""
WTP Simulator - drinking-water treatment plant process simulation
"""

from .engine import SimulationEngine, EventBus
from .config import SimulatorConfig, load_config

__all__ = ['SimulationEngine', 'EventBus', 'SimulatorConfig', 'load_config']
