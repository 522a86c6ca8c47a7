"""
Simulation Engine - owns the ProcessState and drives the tick loop

One tick pipes the state through intake -> coagulation -> sedimentation ->
disinfection, evaluates alarms, samples the historian, advances the active
scenario and notifies subscribers. Ticks, operator commands and resets are
serialised by a single re-entrant lock so they never overlap.
"""

import time
import uuid
import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from .alarm_engine import AlarmEvaluation, AlarmManager
from .config import SimulatorConfig
from .historian import Historian
from .process_model import CoagulationStage, DisinfectionStage, IntakeStage, SedimentationStage
from .process_state import (
    Alarm, ProcessState, create_initial_state, equipment_name, get_equipment, with_equipment,
)
from .scenario_manager import ScenarioEngine
from .scenarios import check_completion, get_scenario
from .utils import clamp

logger = logging.getLogger(__name__)

EVENTS = (
    'state:update',
    'alarm:new',
    'alarm:cleared',
    'simulation:reset',
    'operator:event',
    'simulation:event',
)

# key -> (stage attribute or None for top level, label, unit, lo, hi)
SETPOINTS = {
    'alum_dose_setpoint': ('coagulation', 'Alum dose setpoint', 'mg/L', 0.0, 80.0),
    'ph_adjust_dose_setpoint': ('coagulation', 'Caustic dose setpoint', 'mg/L', 0.0, 10.0),
    'chlorine_dose_setpoint': ('disinfection', 'Chlorine dose setpoint', 'mg/L', 0.0, 10.0),
    'fluoride_dose_setpoint': ('disinfection', 'Fluoride dose setpoint', 'mg/L', 0.0, 2.0),
    'distribution_demand': ('disinfection', 'Distribution demand', 'MGD', 0.0, 6.0),
    'source_turbidity_base': ('intake', 'Source turbidity', 'NTU', 1.0, 300.0),
    'source_temperature': ('intake', 'Source temperature', 'degC', 0.0, 30.0),
    'source_ph': ('intake', 'Source pH', '', 5.0, 9.0),
    'source_color': ('intake', 'Source color', 'PCU', 0.0, 100.0),
    'natural_inflow': ('intake', 'Natural inflow', 'ft/s', 0.01, 0.20),
    'sim_speed': (None, 'Simulation speed', 'x', 0.5, 60.0),
}

VALVES = {
    'intake_valve': 'Intake Valve (V-101)',
}


def _number(payload: Dict[str, Any], key: str) -> Optional[float]:
    try:
        return float(payload[key])
    except (KeyError, TypeError, ValueError):
        return None


def _text(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) else None


class EventBus:
    """Synchronous fan-out; handlers run in registration order"""

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}

    def on(self, event: str, handler: Callable):
        self.listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable):
        handlers = self.listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload=None):
        # Handler exceptions propagate to the caller
        for handler in list(self.listeners.get(event, [])):
            handler(payload)


class SimulationEngine:
    """Plant simulation orchestrator"""

    def __init__(self, config: Optional[SimulatorConfig] = None, clock: Callable[[], float] = time.time,
                 start_time: Optional[float] = None):
        self.config = config or SimulatorConfig()
        self.clock = clock
        self.bus = EventBus()

        self.intake_stage = IntakeStage()
        self.coagulation_stage = CoagulationStage()
        self.sedimentation_stage = SedimentationStage()
        self.disinfection_stage = DisinfectionStage()

        self.alarm_manager = AlarmManager(self.config.alarm_thresholds, self.config.alarm_history_limit)
        self.historian = Historian(self.config.historian_capacity)
        self.scenario_engine = ScenarioEngine()

        self._lock = threading.RLock()
        self._state = create_initial_state(self.clock() if start_time is None else start_time)
        self._thread = None
        self._stop_event = threading.Event()

        self._commands = {
            'pump': self._pump_command,
            'valve': self._valve_command,
            'setpoint': self._setpoint_command,
            'backwash': self._backwash_command,
            'acknowledge_alarm': self._acknowledge_command,
            'acknowledge_all': self._acknowledge_all_command,
            'clear_screen': self._clear_screen_command,
        }

        logger.info(f"Simulation engine initialised (tick {self.config.tick_interval}s)")

    # --- SUBSCRIPTIONS ---

    def on(self, event: str, handler: Callable):
        self.bus.on(event, handler)

    def off(self, event: str, handler: Callable):
        self.bus.off(event, handler)

    # --- QUERIES ---

    def get_state(self) -> ProcessState:
        return self._state

    @property
    def sim_time(self) -> float:
        return self._state.timestamp

    def get_alarm_history(self) -> List[Alarm]:
        return self.alarm_manager.get_history()

    def get_thresholds(self) -> Dict[str, Dict[str, float]]:
        return self.alarm_manager.get_thresholds()

    def set_thresholds(self, thresholds: Dict[str, Dict[str, float]]):
        with self._lock:
            self.alarm_manager.set_thresholds(thresholds)

    def get_tag_history(self, tag: str, duration: float):
        with self._lock:
            return self.historian.get_tag_history(tag, duration)

    # --- TICK ---

    def tick(self) -> ProcessState:
        with self._lock:
            state = self._state
            if not state.running:
                return state

            dt = self.config.tick_interval * state.sim_speed
            now = state.timestamp + dt

            intake = self.intake_stage.update(state.intake, dt)
            coagulation = self.coagulation_stage.update(state.coagulation, intake, dt)
            sedimentation = self.sedimentation_stage.update(state.sedimentation, coagulation, dt)
            disinfection = self.disinfection_stage.update(
                state.disinfection, sedimentation, dt, coagulation, intake
            )
            backwash_finished = (
                state.sedimentation.backwash_in_progress and not sedimentation.backwash_in_progress
            )

            state = replace(
                state,
                timestamp=now,
                intake=intake,
                coagulation=coagulation,
                sedimentation=sedimentation,
                disinfection=disinfection,
            )

            evaluation = self.alarm_manager.evaluate(state)
            self._state = replace(state, alarms=self._merge_alarms(state.alarms, evaluation, now))

            self.historian.record(self._state)
            self.scenario_engine.tick(self, now, dt)

            if backwash_finished:
                self.emit_simulation_event("Filter backwash completed")

            # Alarm transitions before the state snapshot
            for alarm in evaluation.new_alarms:
                self.bus.emit('alarm:new', alarm)
            for alarm in evaluation.cleared_alarms:
                self.bus.emit('alarm:cleared', alarm)
            self.bus.emit('state:update', self._state)

            return self._state

    def _merge_alarms(self, alarms, evaluation: AlarmEvaluation, now: float):
        merged = {a.id: a for a in alarms}
        for alarm in evaluation.value_updates + evaluation.cleared_alarms:
            merged[alarm.id] = alarm
        for alarm in evaluation.new_alarms:
            # A re-raised alarm replaces its retained cleared record
            merged.pop(alarm.id, None)
            merged[alarm.id] = alarm

        retention = self.config.alarm_retention_seconds
        return tuple(
            a for a in merged.values()
            if a.active or (a.cleared_at is not None and now - a.cleared_at < retention)
        )

    # --- TICK LOOP ---

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name='simulation-tick', daemon=True)
        self._thread.start()
        logger.info("Tick loop started")

    def stop(self, timeout: float = 2.0):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Tick loop stopped")

    def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Update loop error: {e}")
            self._stop_event.wait(self.config.tick_interval)

    def pause(self):
        with self._lock:
            self._state = replace(self._state, running=False)
            self.bus.emit('state:update', self._state)

    def resume(self):
        with self._lock:
            self._state = replace(self._state, running=True)
            self.bus.emit('state:update', self._state)

    # --- SCENARIO HOOKS ---

    def inject_scenario(self, fn: Callable[[ProcessState], ProcessState]):
        with self._lock:
            self._state = fn(self._state)

    def set_active_scenario(self, scenario_id: Optional[str]):
        with self._lock:
            self._state = replace(self._state, active_scenario=scenario_id)

    def emit_simulation_event(self, description: str):
        self.bus.emit('simulation:event', {
            'id': uuid.uuid4().hex[:8],
            'timestamp': self._state.timestamp,
            'description': description,
        })

    def start_scenario(self, scenario_id: str):
        """Start a catalogued scenario; raises ValueError for unknown ids"""
        scenario = get_scenario(scenario_id)
        with self._lock:
            self.scenario_engine.start(scenario, self, self._state.timestamp)
            self.bus.emit('state:update', self._state)
        return scenario

    def stop_scenario(self):
        with self._lock:
            self.scenario_engine.stop(self)
            self.bus.emit('state:update', self._state)

    def scenario_status(self) -> Dict[str, Any]:
        with self._lock:
            scenario = self.scenario_engine.get_active_scenario()
            if scenario is None:
                return {'active': None, 'elapsed': 0.0, 'conditions': []}
            return {
                'active': scenario.id,
                'elapsed': self._state.timestamp - self.scenario_engine.start_time,
                'min_time': scenario.min_time,
                'completion_time': scenario.completion_time,
                'conditions': [
                    {'description': d, 'passed': passed}
                    for d, passed in check_completion(scenario, self._state)
                ],
            }

    # --- RESET ---

    def reset(self):
        with self._lock:
            self._state = create_initial_state(self.clock())
            self.historian.clear()
            self.alarm_manager.clear_history()
            self.scenario_engine.reset()
            logger.info("Simulation reset")
            self.bus.emit('simulation:reset', self._state)
            self.bus.emit('state:update', self._state)

    # --- OPERATOR COMMANDS ---

    def apply_control(self, command_type: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Apply one operator command; unknown commands or targets are ignored

        Returns True when the command changed the plant.
        """
        payload = {} if payload is None else payload
        handler = self._commands.get(command_type) if isinstance(command_type, str) else None
        if handler is None or not isinstance(payload, dict):
            logger.debug(f"Ignoring unknown command: {command_type!r}")
            return False

        with self._lock:
            result = handler(self._state, payload)
            if result is None:
                logger.debug(f"Ignoring {command_type} command: {payload}")
                return False

            description, new_state = result
            self._state = new_state
            logger.info(f"Operator command: {description}")

            self.bus.emit('operator:event', {
                'id': uuid.uuid4().hex[:8],
                'timestamp': new_state.timestamp,
                'type': command_type,
                'description': description,
            })
            self.bus.emit('state:update', self._state)
            return True

    def _pump_command(self, state, payload):
        pump_id = _text(payload, 'pump_id')
        equipment = get_equipment(state, pump_id)
        if equipment is None:
            return None
        name = equipment_name(pump_id)
        command = payload.get('command')

        if command == 'start':
            return f"{name} started", with_equipment(state, pump_id, running=True, fault=False)
        if command == 'stop':
            return f"{name} stopped", with_equipment(state, pump_id, running=False)
        if command == 'set_speed':
            value = _number(payload, 'value')
            if value is None:
                return None
            speed = clamp(value, 0.0, 100.0)
            return (f"{name} speed {equipment.speed:g}% -> {speed:g}%",
                    with_equipment(state, pump_id, speed=speed))
        return None

    def _valve_command(self, state, payload):
        valve_id = _text(payload, 'valve_id')
        if valve_id not in VALVES:
            return None
        name = VALVES[valve_id]
        valve = getattr(state.intake, valve_id)
        command = payload.get('command')

        if command == 'open':
            valve = replace(valve, open=True, position=100.0)
            description = f"{name} opened"
        elif command == 'close':
            valve = replace(valve, open=False, position=0.0)
            description = f"{name} closed"
        elif command == 'set_position':
            value = _number(payload, 'value')
            if value is None:
                return None
            position = clamp(value, 0.0, 100.0)
            description = f"{name} position {valve.position:g}% -> {position:g}%"
            valve = replace(valve, open=position > 0, position=position)
        else:
            return None
        return description, replace(state, intake=replace(state.intake, **{valve_id: valve}))

    def _setpoint_command(self, state, payload):
        key = _text(payload, 'key')
        value = _number(payload, 'value')
        if key not in SETPOINTS or value is None:
            return None
        stage_name, label, unit, lo, hi = SETPOINTS[key]
        value = clamp(value, lo, hi)

        if stage_name is None:
            old = getattr(state, key)
            new_state = replace(state, **{key: value})
        else:
            stage = getattr(state, stage_name)
            old = getattr(stage, key)
            new_state = replace(state, **{stage_name: replace(stage, **{key: value})})
        return f"{label} changed from {old:g} to {value:g} {unit}".rstrip(), new_state

    def _backwash_command(self, state, payload):
        sed = state.sedimentation
        command = payload.get('command')
        if command == 'start':
            if sed.backwash_in_progress:
                return None
            description = f"Filter backwash started (head loss {sed.filter_head_loss:.2f} ft)"
            sed = self.sedimentation_stage.start_backwash(sed)
        elif command == 'abort':
            if not sed.backwash_in_progress:
                return None
            description = f"Filter backwash aborted with {sed.backwash_time_remaining:.0f}s remaining"
            sed = self.sedimentation_stage.abort_backwash(sed)
        else:
            return None
        return description, replace(state, sedimentation=sed)

    def _acknowledge_command(self, state, payload):
        alarm_id = _text(payload, 'alarm_id')
        target = next((a for a in state.alarms if a.id == alarm_id), None)
        if target is None:
            return None
        if target.acknowledged:
            acknowledged = target
        else:
            acknowledged = replace(target, acknowledged=True, acknowledged_at=state.timestamp)
            self.alarm_manager.acknowledge(acknowledged)
        alarms = tuple(acknowledged if a.id == alarm_id else a for a in state.alarms)
        return f"Alarm acknowledged: {target.description}", replace(state, alarms=alarms)

    def _acknowledge_all_command(self, state, payload):
        pending = [a for a in state.alarms if not a.acknowledged]
        alarms = []
        for alarm in state.alarms:
            if not alarm.acknowledged:
                alarm = replace(alarm, acknowledged=True, acknowledged_at=state.timestamp)
                self.alarm_manager.acknowledge(alarm)
            alarms.append(alarm)
        return f"All alarms acknowledged ({len(pending)})", replace(state, alarms=tuple(alarms))

    def _clear_screen_command(self, state, payload):
        description = (f"Intake screen cleaned (DP was "
                       f"{state.intake.screen_differential_pressure:.2f} psi)")
        return description, replace(state, intake=self.intake_stage.clear_screen(state.intake))
