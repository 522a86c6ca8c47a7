"""
Process Model - WTP stage models
Simulates: intake, coagulation/flocculation, sedimentation/filtration,
           disinfection

Each stage is a pure transition function: it takes the current stage
state, the freshly updated upstream state and dt (simulated seconds) and
returns a new stage state. All dynamics use lag factors built from time
constants so trajectories do not depend on the tick size.
"""

import logging
from dataclasses import replace

import numpy as np

from .process_state import (
    IntakeState, CoagulationState, SedimentationState, DisinfectionState,
)
from .utils import (
    clamp, lag_factor, first_order_lag, accumulate_run_hours, ramp_dose, ramp_speed,
)

logger = logging.getLogger(__name__)


def _available(equipment) -> bool:
    return equipment.running and not equipment.fault


class IntakeStage:
    """Raw water pumps, intake valve, wet well and bar screen"""

    PUMP_CAPACITY = 4.5             # MGD per pump at 100 % speed
    FLOW_TAU = 5.0
    MAX_FLOW = 10.0
    WET_WELL_OUTFLOW_COEFF = 0.02   # ft/s per MGD pumped
    MAX_WET_WELL_LEVEL = 15.0
    SCREEN_DRIFT_RATE = 0.0005      # psi/s
    SCREEN_DP_MIN = 0.5
    SCREEN_DP_MAX = 12.0
    SCREEN_CLEAN_DP = 0.8
    PHASE_RATE = 0.001              # rad/s
    TURBIDITY_TAU = 100.0
    TURBIDITY_MIN = 1.0
    TURBIDITY_MAX = 600.0

    def pump_flow(self, pump) -> float:
        if not _available(pump):
            return 0.0
        return self.PUMP_CAPACITY * pump.speed / 100.0

    def valve_fraction(self, valve) -> float:
        return valve.position / 100.0 if valve.open else 0.0

    def diurnal_turbidity(self, base: float, phase: float) -> float:
        amplitude = max(2.0, base * 0.3)
        return base + np.sin(phase) * amplitude * 0.6 + np.cos(phase * 0.3) * amplitude * 0.4

    def update(self, state: IntakeState, dt: float) -> IntakeState:
        # --- HYDRAULICS ---
        target_flow = (
            (self.pump_flow(state.intake_pump1) + self.pump_flow(state.intake_pump2))
            * self.valve_fraction(state.intake_valve)
        )
        flow = first_order_lag(state.raw_water_flow, target_flow, lag_factor(dt, self.FLOW_TAU))
        flow = clamp(flow, 0.0, self.MAX_FLOW)

        level = state.raw_water_level + (state.natural_inflow - flow * self.WET_WELL_OUTFLOW_COEFF) * dt
        level = clamp(level, 0.0, self.MAX_WET_WELL_LEVEL)

        # --- SCREEN ---
        screen_dp = clamp(
            state.screen_differential_pressure + self.SCREEN_DRIFT_RATE * dt,
            self.SCREEN_DP_MIN, self.SCREEN_DP_MAX,
        )

        # --- RAW WATER QUALITY ---
        phase = state.turbidity_phase + self.PHASE_RATE * dt
        target_turbidity = self.diurnal_turbidity(state.source_turbidity_base, phase)
        turbidity = first_order_lag(
            state.raw_water_turbidity, target_turbidity, lag_factor(dt, self.TURBIDITY_TAU)
        )
        turbidity = clamp(float(turbidity), self.TURBIDITY_MIN, self.TURBIDITY_MAX)

        return replace(
            state,
            raw_water_flow=flow,
            raw_water_level=level,
            screen_differential_pressure=screen_dp,
            raw_water_turbidity=turbidity,
            turbidity_phase=phase,
            intake_pump1=accumulate_run_hours(state.intake_pump1, dt),
            intake_pump2=accumulate_run_hours(state.intake_pump2, dt),
        )

    def clear_screen(self, state: IntakeState) -> IntakeState:
        return replace(state, screen_differential_pressure=self.SCREEN_CLEAN_DP)


class CoagulationStage:
    """Alum and caustic feed, rapid mix and flocculation"""

    ALUM_RAMP_TAU = 5.0
    ALUM_DECAY_TAU = 5.0
    ALUM_MAX = 80.0
    PH_ADJUST_RAMP_TAU = 5.0
    PH_ADJUST_DECAY_TAU = 10.0
    PH_ADJUST_MAX = 10.0
    DOSE_RATIO = 0.12               # mg/L alum per NTU for full effectiveness
    MAX_REMOVAL = 0.85
    TEMP_FACTOR_MIN = 0.35
    FLOC_TAU = 120.0                # basin detention
    FLOC_MIN = 0.5
    FLOC_MAX = 600.0
    RAPID_MIXER_RPM = 120.0
    SLOW_MIXER_RPM = 45.0
    MIXER_TAU = 5.0

    def temperature_factor(self, temperature: float) -> float:
        # Full effectiveness at 20 degC and above, floored in near-freezing water
        return clamp((temperature - 1.0) / 19.0, self.TEMP_FACTOR_MIN, 1.0)

    def effectiveness(self, dose: float, raw_turbidity: float, temperature: float) -> float:
        demand = max(raw_turbidity, 0.1) * self.DOSE_RATIO
        return clamp(dose / demand * self.temperature_factor(temperature), 0.0, 1.0)

    def mixing_factor(self, rapid_mixer, slow_mixer) -> float:
        rapid = 1.2 if _available(rapid_mixer) else 0.5
        slow = 1.1 if _available(slow_mixer) else 0.7
        return rapid * slow

    def update(self, state: CoagulationState, intake: IntakeState, dt: float) -> CoagulationState:
        # --- CHEMICAL FEED ---
        alum = ramp_dose(
            state.alum_dose_rate, state.alum_dose_setpoint, _available(state.alum_pump), dt,
            self.ALUM_RAMP_TAU, self.ALUM_DECAY_TAU, self.ALUM_MAX,
        )
        caustic = ramp_dose(
            state.ph_adjust_dose_rate, state.ph_adjust_dose_setpoint, _available(state.ph_adjust_pump), dt,
            self.PH_ADJUST_RAMP_TAU, self.PH_ADJUST_DECAY_TAU, self.PH_ADJUST_MAX,
        )

        # --- MIXERS ---
        rapid_rpm = ramp_speed(state.rapid_mixer_speed, self.RAPID_MIXER_RPM,
                               _available(state.rapid_mixer), dt, self.MIXER_TAU, 200.0)
        slow_rpm = ramp_speed(state.slow_mixer_speed, self.SLOW_MIXER_RPM,
                              _available(state.slow_mixer), dt, self.MIXER_TAU, 100.0)

        # --- FLOC BASIN ---
        raw = intake.raw_water_turbidity
        eff = self.effectiveness(alum, raw, intake.source_temperature)
        target = raw * (1.0 - self.MAX_REMOVAL * eff) / self.mixing_factor(state.rapid_mixer, state.slow_mixer)
        floc = first_order_lag(state.floc_basin_turbidity, target, lag_factor(dt, self.FLOC_TAU))
        floc = clamp(floc, self.FLOC_MIN, self.FLOC_MAX)

        return replace(
            state,
            alum_dose_rate=alum,
            ph_adjust_dose_rate=caustic,
            rapid_mixer_speed=rapid_rpm,
            slow_mixer_speed=slow_rpm,
            floc_basin_turbidity=floc,
            alum_pump=accumulate_run_hours(state.alum_pump, dt),
            ph_adjust_pump=accumulate_run_hours(state.ph_adjust_pump, dt),
            rapid_mixer=accumulate_run_hours(state.rapid_mixer, dt),
            slow_mixer=accumulate_run_hours(state.slow_mixer, dt),
        )


class SedimentationStage:
    """Clarifier, sludge blanket and the dual-media filter with backwash"""

    BASE_EFFICIENCY = 0.9
    SLUDGE_IMPACT_DEPTH = 6.0       # ft of blanket that would fully foul the clarifier
    MAX_SLUDGE_IMPACT = 0.5
    CLARIFIER_TAU = 30.0
    CLARIFIER_MIN = 0.1
    CLARIFIER_MAX = 200.0
    SLUDGE_ACCUMULATION = 0.002     # ft/s
    SLUDGE_REMOVAL = 0.01           # ft/s at 100 % pump speed
    MAX_SLUDGE = 10.0
    HEAD_LOSS_RATE = 0.0002         # ft/s at zero clarifier turbidity
    MAX_HEAD_LOSS = 12.0
    MAX_RUN_TIME = 72.0             # h before the filter is due for backwash
    CLEAN_HEAD_LOSS = 0.5
    BACKWASH_DURATION = 600.0
    FILTER_REMOVAL = 0.05           # fraction passed by a healthy filter
    BREAKTHROUGH_ONSET = 6.0
    BREAKTHROUGH_FULL = 9.0
    BREAKTHROUGH_PENALTY = 2.0      # NTU
    EFFLUENT_TAU = 15.0
    EFFLUENT_MIN = 0.01
    EFFLUENT_MAX = 10.0

    def clarifier_efficiency(self, sludge_level: float) -> float:
        impact = clamp(sludge_level / self.SLUDGE_IMPACT_DEPTH, 0.0, self.MAX_SLUDGE_IMPACT)
        return self.BASE_EFFICIENCY * (1.0 - impact)

    def breakthrough(self, head_loss: float) -> float:
        span = self.BREAKTHROUGH_FULL - self.BREAKTHROUGH_ONSET
        return clamp((head_loss - self.BREAKTHROUGH_ONSET) / span, 0.0, 1.0)

    def update(self, state: SedimentationState, coagulation: CoagulationState, dt: float) -> SedimentationState:
        # --- CLARIFIER ---
        efficiency = self.clarifier_efficiency(state.sludge_blanket_level)
        target = coagulation.floc_basin_turbidity * (1.0 - efficiency)
        clarifier = first_order_lag(state.clarifier_turbidity, target, lag_factor(dt, self.CLARIFIER_TAU))
        clarifier = clamp(clarifier, self.CLARIFIER_MIN, self.CLARIFIER_MAX)

        removal = 0.0
        if _available(state.sludge_pump):
            removal = self.SLUDGE_REMOVAL * state.sludge_pump.speed / 100.0
        sludge = clamp(
            state.sludge_blanket_level + (self.SLUDGE_ACCUMULATION - removal) * dt,
            0.0, self.MAX_SLUDGE,
        )

        # --- FILTER ---
        head_loss = state.filter_head_loss
        run_time = state.filter_run_time
        in_backwash = state.backwash_in_progress
        remaining = state.backwash_time_remaining

        if in_backwash:
            remaining = max(0.0, remaining - dt)
            if remaining <= 0.0:
                in_backwash = False
                head_loss = self.CLEAN_HEAD_LOSS
                run_time = 0.0
                logger.info("Filter backwash complete")
        elif run_time < self.MAX_RUN_TIME:
            head_loss += self.HEAD_LOSS_RATE * dt * (1.0 + clarifier / 5.0)
            run_time += dt / 3600.0
        head_loss = clamp(head_loss, 0.0, self.MAX_HEAD_LOSS)

        effluent_target = (
            clarifier * self.FILTER_REMOVAL
            + self.breakthrough(head_loss) * self.BREAKTHROUGH_PENALTY
        )
        effluent = first_order_lag(
            state.filter_effluent_turbidity, effluent_target, lag_factor(dt, self.EFFLUENT_TAU)
        )
        effluent = clamp(effluent, self.EFFLUENT_MIN, self.EFFLUENT_MAX)

        return replace(
            state,
            clarifier_turbidity=clarifier,
            sludge_blanket_level=sludge,
            filter_head_loss=head_loss,
            filter_run_time=run_time,
            filter_effluent_turbidity=effluent,
            backwash_in_progress=in_backwash,
            backwash_time_remaining=remaining,
            sludge_pump=accumulate_run_hours(state.sludge_pump, dt),
            clarifier_rake=accumulate_run_hours(state.clarifier_rake, dt),
        )

    def start_backwash(self, state: SedimentationState) -> SedimentationState:
        if state.backwash_in_progress:
            return state
        return replace(state, backwash_in_progress=True, backwash_time_remaining=self.BACKWASH_DURATION)

    def abort_backwash(self, state: SedimentationState) -> SedimentationState:
        return replace(state, backwash_in_progress=False, backwash_time_remaining=0.0)


class DisinfectionStage:
    """Chlorine and fluoride feed, finished water pH and the clearwell"""

    CHLORINE_RAMP_TAU = 5.0
    CHLORINE_DECAY_TAU = 10.0
    CHLORINE_MAX = 10.0
    CHLORINE_EFFICIENCY = 0.85
    TURBIDITY_DEMAND = 0.1          # mg/L Cl2 per NTU
    PLANT_RESIDUAL_TAU = 10.0
    PLANT_RESIDUAL_MAX = 5.0
    DIST_DECAY_RATE = 0.05
    DIST_TRANSIT_TIME = 0.5
    DIST_RESIDUAL_TAU = 30.0
    DIST_RESIDUAL_MAX = 4.0
    FLUORIDE_RAMP_TAU = 5.0
    FLUORIDE_DECAY_TAU = 10.0
    FLUORIDE_MAX = 2.0
    FLUORIDE_RECOVERY = 0.9
    FLUORIDE_TAU = 10.0
    ALUM_PH_DEPRESSION = 0.02       # pH units per mg/L alum
    CAUSTIC_PH_FACTOR = 0.2         # pH units per mg/L caustic
    PH_TAU = 25.0
    PH_MIN = 6.0
    PH_MAX = 9.0
    CLEARWELL_INFLOW_COEFF = 0.006  # ft/s per MGD produced
    CLEARWELL_OUTFLOW_COEFF = 0.005 # ft/s per MGD demand
    CLEARWELL_CAPACITY = 20.0

    def distribution_target(self, plant_residual: float) -> float:
        return plant_residual * float(np.exp(-self.DIST_DECAY_RATE * self.DIST_TRANSIT_TIME))

    def ph_target(self, source_ph: float, alum: float, caustic: float) -> float:
        return source_ph - self.ALUM_PH_DEPRESSION * alum + self.CAUSTIC_PH_FACTOR * caustic

    def update(self, state: DisinfectionState, sedimentation: SedimentationState, dt: float,
               coagulation: CoagulationState, intake: IntakeState) -> DisinfectionState:
        # --- CHLORINE ---
        chlorine = ramp_dose(
            state.chlorine_dose_rate, state.chlorine_dose_setpoint, _available(state.chlorine_pump), dt,
            self.CHLORINE_RAMP_TAU, self.CHLORINE_DECAY_TAU, self.CHLORINE_MAX,
        )
        plant_target = (
            chlorine * self.CHLORINE_EFFICIENCY
            - self.TURBIDITY_DEMAND * sedimentation.filter_effluent_turbidity
        )
        plant = first_order_lag(state.chlorine_residual_plant, plant_target,
                                lag_factor(dt, self.PLANT_RESIDUAL_TAU))
        plant = clamp(plant, 0.0, self.PLANT_RESIDUAL_MAX)

        dist = first_order_lag(state.chlorine_residual_dist, self.distribution_target(plant),
                               lag_factor(dt, self.DIST_RESIDUAL_TAU))
        dist = clamp(dist, 0.0, self.DIST_RESIDUAL_MAX)

        # --- FLUORIDE ---
        fluoride = ramp_dose(
            state.fluoride_dose_rate, state.fluoride_dose_setpoint, _available(state.fluoride_pump), dt,
            self.FLUORIDE_RAMP_TAU, self.FLUORIDE_DECAY_TAU, self.FLUORIDE_MAX,
        )
        fluoride_residual = first_order_lag(state.fluoride_residual, fluoride * self.FLUORIDE_RECOVERY,
                                            lag_factor(dt, self.FLUORIDE_TAU))
        fluoride_residual = clamp(fluoride_residual, 0.0, self.FLUORIDE_MAX)

        # --- pH ---
        ph_target = self.ph_target(intake.source_ph, coagulation.alum_dose_rate,
                                   coagulation.ph_adjust_dose_rate)
        ph = first_order_lag(state.finished_water_ph, ph_target, lag_factor(dt, self.PH_TAU))
        ph = clamp(ph, self.PH_MIN, self.PH_MAX)

        # --- CLEARWELL ---
        inflow = 0.0
        if not sedimentation.backwash_in_progress:
            inflow = intake.raw_water_flow * self.CLEARWELL_INFLOW_COEFF
        outflow = state.distribution_demand * self.CLEARWELL_OUTFLOW_COEFF
        clearwell = clamp(state.clearwell_level + (inflow - outflow) * dt, 0.0, self.CLEARWELL_CAPACITY)

        return replace(
            state,
            chlorine_dose_rate=chlorine,
            chlorine_residual_plant=plant,
            chlorine_residual_dist=dist,
            fluoride_dose_rate=fluoride,
            fluoride_residual=fluoride_residual,
            finished_water_ph=ph,
            clearwell_level=clearwell,
            chlorine_pump=accumulate_run_hours(state.chlorine_pump, dt),
            uv_system=accumulate_run_hours(state.uv_system, dt),
            fluoride_pump=accumulate_run_hours(state.fluoride_pump, dt),
        )
