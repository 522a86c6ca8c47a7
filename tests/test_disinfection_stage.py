"""
Test: Disinfection stage
Chlorine residual chain, fluoride, finished water pH, clearwell balance
"""

from dataclasses import replace

import pytest

from wtp_simulator.process_model import DisinfectionStage
from wtp_simulator.process_state import create_initial_state

stage = DisinfectionStage()


def initial():
    state = create_initial_state(0.0)
    return state.disinfection, state.sedimentation, state.coagulation, state.intake


def run(dis, sed, coag, intake, ticks, dt=0.5):
    for _ in range(ticks):
        dis = stage.update(dis, sed, dt, coag, intake)
    return dis


def test_finished_ph_at_normal_doses():
    dis, sed, coag, intake = initial()
    dis = run(dis, sed, coag, intake, 500)
    assert dis.finished_water_ph == pytest.approx(7.4, abs=0.1)


def test_alum_overdose_depresses_ph():
    dis, sed, coag, intake = initial()
    coag = replace(coag, alum_dose_rate=50.0)
    dis = run(dis, sed, coag, intake, 500)
    assert dis.finished_water_ph < 6.8, f"pH should fall below 6.8, got {dis.finished_water_ph:.2f}"


def test_ph_is_clamped_to_safe_band():
    dis, sed, coag, intake = initial()
    dis = run(dis, sed, replace(coag, ph_adjust_dose_rate=10.0), replace(intake, source_ph=9.0), 1000)
    assert dis.finished_water_ph == 9.0


def test_plant_residual_tracks_dose():
    dis, sed, coag, intake = initial()
    dis = run(dis, sed, coag, intake, 500)
    assert dis.chlorine_residual_plant == pytest.approx(2.0 * 0.85 - 0.1 * 0.08, abs=0.01)


def test_turbid_water_consumes_chlorine():
    dis, sed, coag, intake = initial()
    print("1. Clean and turbid filter effluent...")
    clean = run(dis, sed, coag, intake, 500)
    dirty = run(dis, replace(sed, filter_effluent_turbidity=5.0), coag, intake, 500)
    assert dirty.chlorine_residual_plant < clean.chlorine_residual_plant


def test_residuals_decay_without_chlorine_feed():
    dis, sed, coag, intake = initial()
    dis = replace(dis, chlorine_pump=replace(dis.chlorine_pump, running=False))
    dis = run(dis, sed, coag, intake, 2000)
    assert dis.chlorine_dose_rate < 0.01
    assert dis.chlorine_residual_plant < 0.05
    assert dis.chlorine_residual_dist < 0.05


def test_distribution_residual_below_plant():
    dis, sed, coag, intake = initial()
    dis = run(dis, sed, coag, intake, 4000)
    assert dis.chlorine_residual_dist < dis.chlorine_residual_plant
    assert dis.chlorine_residual_dist == pytest.approx(stage.distribution_target(dis.chlorine_residual_plant), abs=0.01)


def test_fluoride_residual():
    dis, sed, coag, intake = initial()
    print("1. Fluoride pump dosing...")
    dosed = run(dis, sed, coag, intake, 500)
    assert dosed.fluoride_residual == pytest.approx(0.81, abs=0.01)

    print("2. Fluoride pump stopped...")
    stopped = run(replace(dis, fluoride_pump=replace(dis.fluoride_pump, running=False)), sed, coag, intake, 1000)
    assert stopped.fluoride_residual < 0.05


def test_clearwell_stops_filling_during_backwash():
    dis, sed, coag, intake = initial()
    dis = run(dis, replace(sed, backwash_in_progress=True, backwash_time_remaining=600.0), coag, intake, 100)
    assert dis.clearwell_level < 14.0, "Demand should draw the clearwell down during backwash"


def test_clearwell_inflow_scales_with_flow():
    dis, sed, coag, intake = initial()
    high = run(dis, sed, coag, replace(intake, raw_water_flow=6.0), 100)
    low = run(dis, sed, coag, replace(intake, raw_water_flow=2.0), 100)
    assert high.clearwell_level > low.clearwell_level


def test_clearwell_clamped():
    dis, sed, coag, intake = initial()
    print("1. Overfilling the clearwell...")
    full = run(replace(dis, clearwell_level=19.99), sed, coag, replace(intake, raw_water_flow=10.0), 100)
    assert full.clearwell_level == 20.0
    print("2. Draining it dry...")
    empty = run(replace(dis, clearwell_level=0.01, distribution_demand=6.0), sed, coag,
                replace(intake, raw_water_flow=0.0), 100)
    assert empty.clearwell_level == 0.0
