"""
Scenario Manager - schedules timed fault injections against the engine

The engine handle passed in must provide inject_scenario(fn),
set_active_scenario(id) and emit_simulation_event(description).
"""

import logging
from dataclasses import replace
from typing import Optional

from .process_state import equipment_name, get_equipment, with_equipment
from .scenarios import ScenarioDefinition, ScenarioStep
from .utils import clamp, first_order_lag, lag_factor

logger = logging.getLogger(__name__)

DEFAULT_TICK = 0.5


class ScenarioEngine:
    """Runs one scenario at a time; every step fires exactly once"""

    def __init__(self):
        self.active: Optional[ScenarioDefinition] = None
        self.start_time = 0.0
        self.executed = set()
        self.turbidity_target = None     # (target NTU, ramp duration s)

    def get_active_scenario(self) -> Optional[ScenarioDefinition]:
        return self.active

    def start(self, scenario: ScenarioDefinition, engine, start_time: float):
        if self.active is not None:
            logger.warning(f"Replacing active scenario {self.active.id} with {scenario.id}")
            self._deactivate(engine)

        self.active = scenario
        self.start_time = start_time
        self.executed = set()
        self.turbidity_target = None

        engine.set_active_scenario(scenario.id)
        engine.emit_simulation_event(f"Scenario started: {scenario.name}")
        logger.info(f"Started scenario: {scenario.id}")

        for i, step in enumerate(scenario.steps):
            if step.trigger_at <= 0:
                self.executed.add(i)
                self._execute(step, engine)

    def stop(self, engine):
        if self.active is None:
            return
        name = self.active.name
        self._deactivate(engine)
        engine.emit_simulation_event(f"Scenario stopped: {name}")

    def tick(self, engine, now: float, dt: float = DEFAULT_TICK):
        if self.active is None:
            return
        scenario = self.active
        elapsed = now - self.start_time

        for i, step in enumerate(scenario.steps):
            if i in self.executed or step.trigger_at <= 0:
                continue
            if elapsed >= step.trigger_at:
                self.executed.add(i)
                self._execute(step, engine)

        if self.turbidity_target is not None:
            self._ramp_turbidity(engine, dt)

        if scenario.duration > 0 and elapsed > scenario.duration:
            self._deactivate(engine)
            engine.emit_simulation_event(f"Scenario completed: {scenario.name}")
            logger.info(f"Scenario {scenario.id} completed after {elapsed:.1f}s")

    def reset(self):
        self.active = None
        self.start_time = 0.0
        self.executed = set()
        self.turbidity_target = None

    def _deactivate(self, engine):
        logger.info(f"Stopped scenario: {self.active.id}")
        self.reset()
        engine.set_active_scenario(None)

    def _ramp_turbidity(self, engine, dt: float):
        target, duration = self.turbidity_target
        factor = lag_factor(dt, max(duration, 1.0))

        def ramp(state):
            base = first_order_lag(state.intake.source_turbidity_base, target, factor)
            intake = replace(state.intake, source_turbidity_base=clamp(base, 1.0, 300.0))
            return replace(state, intake=intake)

        engine.inject_scenario(ramp)

    def _execute(self, step: ScenarioStep, engine):
        action = step.action
        params = step.params
        logger.info(f"Scenario step: {action} {params}")

        if action == 'fault_pump':
            pump_id = params['pump_id']

            def fault(state):
                if get_equipment(state, pump_id) is None:
                    logger.warning(f"Scenario fault for unknown equipment: {pump_id}")
                    return state
                return with_equipment(state, pump_id, fault=True, running=False)

            engine.inject_scenario(fault)
            engine.emit_simulation_event(f"FAULT: {equipment_name(pump_id)} tripped")

        elif action == 'set_turbidity':
            target = float(params['target'])
            duration = float(params.get('duration', 10.0))
            self.turbidity_target = (target, duration)
            engine.emit_simulation_event(
                f"Source turbidity ramping to {target:g} NTU (over {duration:g}s)"
            )

        elif action == 'preload_filter':
            head_loss = float(params['head_loss'])
            run_time = float(params['run_time'])
            engine.inject_scenario(lambda s: replace(
                s, sedimentation=replace(s.sedimentation, filter_head_loss=head_loss, filter_run_time=run_time)
            ))
            engine.emit_simulation_event(
                f"Filter pre-loaded: head loss {head_loss:g} ft, run time {run_time:g} hr"
            )

        elif action == 'set_alum_dose':
            value = float(params['value'])
            engine.inject_scenario(lambda s: replace(
                s, coagulation=replace(s.coagulation, alum_dose_setpoint=value, alum_dose_rate=value)
            ))
            engine.emit_simulation_event(f"Alum dose forced to {value:g} mg/L")

        elif action == 'set_chlorine_dose_setpoint':
            value = float(params['value'])
            engine.inject_scenario(lambda s: replace(
                s, disinfection=replace(s.disinfection, chlorine_dose_setpoint=value)
            ))
            engine.emit_simulation_event(f"Chlorine dose setpoint changed to {value:g} mg/L")

        elif action == 'set_sludge_level':
            value = float(params['value'])
            engine.inject_scenario(lambda s: replace(
                s, sedimentation=replace(s.sedimentation, sludge_blanket_level=value)
            ))
            engine.emit_simulation_event(f"Sludge blanket raised to {value:g} ft")

        else:
            logger.warning(f"Unknown scenario action: {action}")
