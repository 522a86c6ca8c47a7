"""
Numeric primitives shared by the stage models
"""

from dataclasses import replace

import numpy as np


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def lag_factor(dt: float, tau: float) -> float:
    """Fraction of the remaining gap closed in dt seconds for time constant tau"""
    if tau <= 0:
        return 1.0
    if dt <= 0:
        return 0.0
    return float(1.0 - np.exp(-dt / tau))


def first_order_lag(current: float, target: float, factor: float) -> float:
    return current + (target - current) * factor


def accumulate_run_hours(equipment, dt: float):
    """Return equipment with run hours advanced by dt if it is running and healthy"""
    if not equipment.running or equipment.fault or dt <= 0:
        return equipment
    return replace(equipment, run_hours=equipment.run_hours + dt / 3600.0)


def ramp_dose(rate: float, setpoint: float, feeding: bool, dt: float,
              ramp_tau: float, decay_tau: float, hi: float) -> float:
    # Feed pump on: track setpoint. Off or faulted: wash out toward zero.
    if feeding:
        rate = first_order_lag(rate, setpoint, lag_factor(dt, ramp_tau))
    else:
        rate = first_order_lag(rate, 0.0, lag_factor(dt, decay_tau))
    return clamp(rate, 0.0, hi)


def ramp_speed(speed: float, target: float, running: bool, dt: float,
               tau: float, hi: float) -> float:
    goal = target if running else 0.0
    return clamp(first_order_lag(speed, goal, lag_factor(dt, tau)), 0.0, hi)
