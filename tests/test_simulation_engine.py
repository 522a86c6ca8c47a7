"""
Test: Simulation engine
Tick pipeline, commands, alarms lifecycle, events, reset, tick loop
"""

import time

import pytest

from wtp_simulator.config import SimulatorConfig
from wtp_simulator.engine import EventBus, SimulationEngine
from wtp_simulator.process_state import with_equipment


def make_engine(**config):
    return SimulationEngine(SimulatorConfig(**config), start_time=0.0)


def record(engine, *events):
    seen = []
    for name in events:
        engine.on(name, lambda payload, name=name: seen.append((name, payload)))
    return seen


def run(engine, ticks):
    for _ in range(ticks):
        engine.tick()
    return engine.get_state()


def test_tick_advances_time_and_samples():
    engine = make_engine()
    state = run(engine, 4)
    assert state.timestamp == 2.0
    assert len(engine.historian) == 4
    assert state.alarms == (), "Normal operating point should not alarm"


def test_sim_speed_scales_dt():
    engine = make_engine()
    assert engine.apply_control('setpoint', {'key': 'sim_speed', 'value': 4})
    assert engine.tick().timestamp == 2.0

    engine.apply_control('setpoint', {'key': 'sim_speed', 'value': 500})
    assert engine.get_state().sim_speed == 60.0
    engine.apply_control('setpoint', {'key': 'sim_speed', 'value': 0.1})
    assert engine.get_state().sim_speed == 0.5


def test_trajectory_does_not_depend_on_speed():
    slow, fast = make_engine(), make_engine()
    for engine in (slow, fast):
        engine.apply_control('pump', {'pump_id': 'intake_pump2', 'command': 'start'})
        engine.apply_control('pump', {'pump_id': 'intake_pump2', 'command': 'set_speed', 'value': 80})
        engine.apply_control('setpoint', {'key': 'alum_dose_setpoint', 'value': 30})
    fast.apply_control('setpoint', {'key': 'sim_speed', 'value': 20})

    run(slow, 40)
    run(fast, 1)
    assert slow.get_state().timestamp == fast.get_state().timestamp
    assert slow.get_state().intake.raw_water_flow == pytest.approx(fast.get_state().intake.raw_water_flow, abs=1e-6)
    assert slow.get_state().coagulation.alum_dose_rate == pytest.approx(
        fast.get_state().coagulation.alum_dose_rate, abs=1e-6)


def test_finished_ph_settles_at_normal_doses():
    state = run(make_engine(), 500)
    assert state.disinfection.finished_water_ph == pytest.approx(7.4, abs=0.1)


def test_pause_stops_ticks():
    engine = make_engine()
    engine.pause()
    assert engine.tick().timestamp == 0.0
    engine.resume()
    assert engine.tick().timestamp == 0.5


def test_pump_commands():
    engine = make_engine()
    seen = record(engine, 'operator:event', 'state:update')

    assert engine.apply_control('pump', {'pump_id': 'intake_pump2', 'command': 'start'})
    assert engine.get_state().intake.intake_pump2.running
    assert [name for name, _ in seen] == ['operator:event', 'state:update']
    assert seen[0][1]['description'] == 'Intake Pump 2 (P-102) started'
    assert seen[0][1]['type'] == 'pump'

    engine.apply_control('pump', {'pump_id': 'intake_pump2', 'command': 'set_speed', 'value': 150})
    assert engine.get_state().intake.intake_pump2.speed == 100.0

    engine.apply_control('pump', {'pump_id': 'chlorine_pump', 'command': 'stop'})
    assert not engine.get_state().disinfection.chlorine_pump.running


def test_start_clears_fault():
    engine = make_engine()
    engine.inject_scenario(lambda s: with_equipment(s, 'intake_pump1', fault=True, running=False))
    assert engine.get_state().intake.intake_pump1.fault

    engine.apply_control('pump', {'pump_id': 'intake_pump1', 'command': 'start'})
    pump = engine.get_state().intake.intake_pump1
    assert pump.running and not pump.fault


def test_unknown_commands_are_ignored():
    engine = make_engine()
    seen = record(engine, 'operator:event', 'state:update')
    before = engine.get_state()

    print("1. Unknown command types and targets...")
    assert engine.apply_control('self_destruct', {}) is False
    assert engine.apply_control('pump', {'pump_id': 'pump_99', 'command': 'start'}) is False
    assert engine.apply_control('pump', {'pump_id': 'intake_pump1', 'command': 'explode'}) is False
    assert engine.apply_control('setpoint', {'key': 'reactor_temp', 'value': 5}) is False
    assert engine.apply_control('setpoint', {'key': 'source_ph', 'value': 'acidic'}) is False
    assert engine.apply_control('valve', {'valve_id': 'drain', 'command': 'open'}) is False
    assert engine.apply_control('acknowledge_alarm', {'alarm_id': 'missing'}) is False

    print("2. Malformed ids from JSON bodies...")
    assert engine.apply_control(['pump'], {}) is False
    assert engine.apply_control('pump', ['intake_pump1']) is False
    assert engine.apply_control('pump', {'pump_id': ['x'], 'command': 'start'}) is False
    assert engine.apply_control('pump', {'pump_id': {'id': 1}, 'command': 'stop'}) is False
    assert engine.apply_control('valve', {'valve_id': {}, 'command': 'open'}) is False
    assert engine.apply_control('setpoint', {'key': ['k'], 'value': 1}) is False
    assert engine.apply_control('setpoint', {'key': 'source_ph', 'value': [7]}) is False
    assert engine.apply_control('acknowledge_alarm', {'alarm_id': ['FLT-AIT-001-H']}) is False

    assert engine.get_state() is before
    assert seen == []


def test_setpoint_description_uses_previous_value():
    engine = make_engine()
    seen = record(engine, 'operator:event')
    engine.apply_control('setpoint', {'key': 'alum_dose_setpoint', 'value': 25})
    assert seen[0][1]['description'] == 'Alum dose setpoint changed from 18 to 25 mg/L'

    engine.apply_control('setpoint', {'key': 'source_ph', 'value': 12})
    assert engine.get_state().intake.source_ph == 9.0
    engine.apply_control('setpoint', {'key': 'fluoride_dose_setpoint', 'value': 1.1})
    assert engine.get_state().disinfection.fluoride_dose_setpoint == 1.1


def test_valve_commands():
    engine = make_engine()
    engine.apply_control('valve', {'valve_id': 'intake_valve', 'command': 'close'})
    valve = engine.get_state().intake.intake_valve
    assert not valve.open and valve.position == 0.0

    engine.apply_control('valve', {'valve_id': 'intake_valve', 'command': 'set_position', 'value': 40})
    valve = engine.get_state().intake.intake_valve
    assert valve.open and valve.position == 40.0

    engine.apply_control('valve', {'valve_id': 'intake_valve', 'command': 'open'})
    assert engine.get_state().intake.intake_valve.position == 100.0


def test_clear_screen():
    engine = make_engine()
    engine.apply_control('clear_screen', {})
    assert engine.get_state().intake.screen_differential_pressure == 0.8


def test_backwash_via_commands():
    engine = make_engine()
    seen = record(engine, 'simulation:event')

    print("1. Starting backwash...")
    assert engine.apply_control('backwash', {'command': 'start'})
    assert engine.apply_control('backwash', {'command': 'start'}) is False, "Already running"

    print("2. Running 1199 ticks...")
    state = run(engine, 1199)
    assert state.sedimentation.backwash_in_progress

    print("3. Final tick...")
    state = run(engine, 1)
    assert not state.sedimentation.backwash_in_progress
    assert state.sedimentation.filter_head_loss == 0.5
    assert [p['description'] for _, p in seen] == ['Filter backwash completed']


def test_backwash_abort():
    engine = make_engine()
    assert engine.apply_control('backwash', {'command': 'abort'}) is False
    engine.apply_control('backwash', {'command': 'start'})
    run(engine, 10)
    head_loss = engine.get_state().sedimentation.filter_head_loss
    assert engine.apply_control('backwash', {'command': 'abort'})
    state = engine.get_state()
    assert not state.sedimentation.backwash_in_progress
    assert state.sedimentation.filter_head_loss == head_loss


def test_alarm_lifecycle():
    engine = make_engine()
    seen = record(engine, 'alarm:new', 'alarm:cleared')

    print("1. Pre-loading filter to trip head loss alarm...")
    engine.start_scenario('filter-breakthrough')
    engine.stop_scenario()
    run(engine, 1)
    active = {a.id for a in engine.get_state().alarms if a.active}
    assert 'FLT-PDT-001-H' in active
    assert ('alarm:new', 'FLT-PDT-001-H') in [(n, a.id) for n, a in seen]

    print("2. Acknowledging...")
    assert engine.apply_control('acknowledge_alarm', {'alarm_id': 'FLT-PDT-001-H'})
    alarm = next(a for a in engine.get_state().alarms if a.id == 'FLT-PDT-001-H')
    assert alarm.acknowledged and alarm.acknowledged_at == 0.5
    history = [a for a in engine.get_alarm_history() if a.id == 'FLT-PDT-001-H']
    assert history[0].acknowledged

    print("3. Backwashing to clear it...")
    engine.apply_control('backwash', {'command': 'start'})
    run(engine, 1200)
    alarm = next(a for a in engine.get_state().alarms if a.id == 'FLT-PDT-001-H')
    assert not alarm.active
    assert alarm.cleared_at is not None
    assert ('alarm:cleared', 'FLT-PDT-001-H') in [(n, a.id) for n, a in seen]

    print("4. Cleared alarm is retained for five minutes...")
    run(engine, 590)
    assert any(a.id == 'FLT-PDT-001-H' for a in engine.get_state().alarms)
    run(engine, 20)
    assert not any(a.id == 'FLT-PDT-001-H' for a in engine.get_state().alarms)
    assert any(a.id == 'FLT-PDT-001-H' for a in engine.get_alarm_history()), "History keeps it"


def test_acknowledge_all():
    engine = make_engine()
    engine.set_thresholds({'FLT-AIT-001': {'h': 0.05}, 'DIS-AIT-001': {'h': 1.0}})
    run(engine, 1)
    assert len(engine.get_state().alarms) == 2

    assert engine.apply_control('acknowledge_all', {})
    assert all(a.acknowledged for a in engine.get_state().alarms)


def test_scenario_through_engine():
    engine = make_engine()
    seen = record(engine, 'simulation:event')
    print("1. Starting pump failure scenario...")
    engine.start_scenario('intake-pump-failure')
    assert engine.get_state().active_scenario == 'intake-pump-failure'

    print("2. Running up to the fault step...")
    run(engine, 29)
    assert not engine.get_state().intake.intake_pump1.fault
    run(engine, 2)
    assert engine.get_state().intake.intake_pump1.fault
    assert 'FAULT: Intake Pump 1 (P-101) tripped' in [p['description'] for _, p in seen]

    print("3. Scenario status...")
    status = engine.scenario_status()
    assert status['active'] == 'intake-pump-failure'
    assert status['elapsed'] == 15.5
    assert status['completion_time'] == 120.0
    assert status['min_time'] is None

    with pytest.raises(ValueError):
        engine.start_scenario('does-not-exist')


def test_reset():
    engine = make_engine()
    seen = record(engine, 'simulation:reset', 'state:update')
    engine.set_thresholds({'FLT-AIT-001': {'h': 0.05}})
    print("1. Running a scenario with a tight limit...")
    engine.start_scenario('intake-pump-failure')
    run(engine, 40)
    assert engine.get_alarm_history()

    print("2. Resetting...")
    seen.clear()
    engine.reset()
    state = engine.get_state()
    assert state.intake.intake_pump1.running and not state.intake.intake_pump1.fault
    assert state.active_scenario is None
    assert state.alarms == ()
    assert len(engine.historian) == 0
    assert engine.get_alarm_history() == []
    assert engine.scenario_engine.get_active_scenario() is None
    assert [name for name, _ in seen] == ['simulation:reset', 'state:update']
    assert engine.get_thresholds() == {'FLT-AIT-001': {'h': 0.05}}


def test_event_order_per_tick():
    engine = make_engine()
    engine.set_thresholds({'FLT-AIT-001': {'h': 0.05}})
    seen = record(engine, 'state:update', 'alarm:new')
    run(engine, 1)
    assert [name for name, _ in seen] == ['alarm:new', 'state:update']


def test_alarm_events_survive_failing_state_subscriber():
    engine = make_engine()
    engine.set_thresholds({'FLT-AIT-001': {'h': 0.05}})
    seen = record(engine, 'alarm:new')

    def broken(_):
        raise RuntimeError("trend panel crashed")

    print("1. Ticking with a failing state subscriber...")
    engine.on('state:update', broken)
    with pytest.raises(RuntimeError):
        engine.tick()

    print("2. Alarm should still have been announced...")
    assert [a.id for _, a in seen] == ['FLT-AIT-001-H'], "alarm:new must not be lost"


def test_removed_threshold_clears_active_alarm():
    engine = make_engine()
    seen = record(engine, 'alarm:cleared')

    print("1. Raising an alarm with a tight limit...")
    engine.set_thresholds({'FLT-AIT-001': {'h': 0.05}})
    run(engine, 1)
    assert [a.id for a in engine.get_state().alarms if a.active] == ['FLT-AIT-001-H']

    print("2. Removing every threshold...")
    engine.set_thresholds({})
    run(engine, 1)
    assert not [a.id for a in engine.get_state().alarms if a.active], "Alarm should clear"
    assert [a.id for _, a in seen] == ['FLT-AIT-001-H']

    run(engine, 10)
    assert len(seen) == 1, "Cleared exactly once"


def test_subscriber_errors_propagate():
    engine = make_engine()

    def broken(_):
        raise RuntimeError("display crashed")

    engine.on('state:update', broken)
    with pytest.raises(RuntimeError):
        engine.tick()

    engine.off('state:update', broken)
    engine.tick()


def test_event_bus_order_and_off():
    bus = EventBus()
    calls = []
    first = lambda p: calls.append(('first', p))
    second = lambda p: calls.append(('second', p))
    bus.on('x', first)
    bus.on('x', second)
    bus.emit('x', 1)
    bus.off('x', first)
    bus.off('x', first)
    bus.emit('x', 2)
    bus.emit('nobody-listens', 3)
    assert calls == [('first', 1), ('second', 1), ('second', 2)]


def test_background_loop():
    engine = SimulationEngine(SimulatorConfig(tick_interval=0.01), start_time=0.0)
    engine.start()
    try:
        deadline = time.time() + 5.0
        while engine.get_state().timestamp < 0.1 and time.time() < deadline:
            time.sleep(0.01)
    finally:
        engine.stop()
    assert engine.get_state().timestamp >= 0.1, "Tick loop should advance simulated time"


def test_background_loop_survives_handler_errors():
    engine = SimulationEngine(SimulatorConfig(tick_interval=0.01), start_time=0.0)
    calls = []

    def flaky(state):
        calls.append(state.timestamp)
        if len(calls) == 1:
            raise RuntimeError("first update fails")

    engine.on('state:update', flaky)
    engine.start()
    try:
        deadline = time.time() + 5.0
        while len(calls) < 3 and time.time() < deadline:
            time.sleep(0.01)
    finally:
        engine.stop()
    assert len(calls) >= 3, "Loop should keep ticking after a failing handler"
