"""
Process State - immutable snapshot of the whole plant

Every tick and every operator command builds a new ProcessState with
dataclasses.replace(); nothing in here is mutated in place.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple


class AlarmPriority(str, Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'


@dataclass(frozen=True)
class EquipmentStatus:
    running: bool = False
    fault: bool = False
    speed: float = 0.0          # % of full speed
    run_hours: float = 0.0


@dataclass(frozen=True)
class ValveStatus:
    open: bool = True
    fault: bool = False
    position: float = 100.0     # % open


@dataclass(frozen=True)
class Alarm:
    id: str
    tag: str
    description: str
    priority: AlarmPriority
    value: float
    setpoint: float
    condition: str              # HH / H / L / LL
    active: bool = True
    acknowledged: bool = False
    raised_at: float = 0.0
    acknowledged_at: Optional[float] = None
    cleared_at: Optional[float] = None


@dataclass(frozen=True)
class IntakeState:
    raw_water_flow: float               # MGD
    intake_pump1: EquipmentStatus
    intake_pump2: EquipmentStatus
    screen_differential_pressure: float  # psi
    raw_water_turbidity: float          # NTU
    raw_water_level: float              # ft
    intake_valve: ValveStatus
    source_turbidity_base: float        # NTU
    source_temperature: float           # degC
    source_ph: float
    source_color: float                 # PCU
    natural_inflow: float               # ft/s into the wet well
    turbidity_phase: float = 0.0        # diurnal signal phase


@dataclass(frozen=True)
class CoagulationState:
    alum_dose_rate: float               # mg/L
    alum_dose_setpoint: float
    rapid_mixer_speed: float            # RPM
    slow_mixer_speed: float
    floc_basin_turbidity: float         # NTU
    alum_pump: EquipmentStatus
    rapid_mixer: EquipmentStatus
    slow_mixer: EquipmentStatus
    ph_adjust_dose_rate: float          # mg/L caustic
    ph_adjust_dose_setpoint: float
    ph_adjust_pump: EquipmentStatus


@dataclass(frozen=True)
class SedimentationState:
    clarifier_turbidity: float          # NTU
    sludge_blanket_level: float         # ft
    filter_head_loss: float             # ft
    filter_effluent_turbidity: float    # NTU
    filter_run_time: float              # h
    backwash_in_progress: bool
    backwash_time_remaining: float      # s
    sludge_pump: EquipmentStatus
    clarifier_rake: EquipmentStatus


@dataclass(frozen=True)
class DisinfectionState:
    chlorine_dose_rate: float           # mg/L
    chlorine_dose_setpoint: float
    chlorine_residual_plant: float
    chlorine_residual_dist: float
    finished_water_ph: float
    clearwell_level: float              # ft
    chlorine_pump: EquipmentStatus
    uv_system: EquipmentStatus
    fluoride_dose_rate: float
    fluoride_dose_setpoint: float
    fluoride_residual: float
    fluoride_pump: EquipmentStatus
    distribution_demand: float          # MGD


@dataclass(frozen=True)
class ProcessState:
    timestamp: float                    # simulated seconds
    running: bool
    sim_speed: float
    intake: IntakeState
    coagulation: CoagulationState
    sedimentation: SedimentationState
    disinfection: DisinfectionState
    alarms: Tuple[Alarm, ...] = ()
    active_scenario: Optional[str] = None


# equipment id -> (stage attribute, display name)
EQUIPMENT = {
    'intake_pump1': ('intake', 'Intake Pump 1 (P-101)'),
    'intake_pump2': ('intake', 'Intake Pump 2 (P-102)'),
    'alum_pump': ('coagulation', 'Alum Feed Pump (CP-201)'),
    'ph_adjust_pump': ('coagulation', 'Caustic Feed Pump (CP-202)'),
    'rapid_mixer': ('coagulation', 'Rapid Mixer (M-201)'),
    'slow_mixer': ('coagulation', 'Flocculator (M-202)'),
    'sludge_pump': ('sedimentation', 'Sludge Pump (P-301)'),
    'clarifier_rake': ('sedimentation', 'Clarifier Rake (D-301)'),
    'chlorine_pump': ('disinfection', 'Chlorine Feed Pump (CP-401)'),
    'fluoride_pump': ('disinfection', 'Fluoride Feed Pump (CP-402)'),
    'uv_system': ('disinfection', 'UV Disinfection (UV-401)'),
}


def _lookup(equipment_id):
    if not isinstance(equipment_id, str):
        return None
    return EQUIPMENT.get(equipment_id)


def equipment_name(equipment_id: str) -> str:
    entry = _lookup(equipment_id)
    return entry[1] if entry else equipment_id


def get_equipment(state: ProcessState, equipment_id: str) -> Optional[EquipmentStatus]:
    entry = _lookup(equipment_id)
    if entry is None:
        return None
    return getattr(getattr(state, entry[0]), equipment_id)


def with_equipment(state: ProcessState, equipment_id: str, **changes) -> ProcessState:
    """Return state with the named equipment updated; unknown ids return state unchanged"""
    entry = _lookup(equipment_id)
    if entry is None:
        return state
    stage_name = entry[0]
    stage = getattr(state, stage_name)
    equipment = replace(getattr(stage, equipment_id), **changes)
    return replace(state, **{stage_name: replace(stage, **{equipment_id: equipment})})


def create_initial_state(timestamp: float) -> ProcessState:
    """Plant at its normal operating point, no alarms standing"""
    intake = IntakeState(
        raw_water_flow=3.375,
        intake_pump1=EquipmentStatus(running=True, speed=75.0, run_hours=1240.0),
        intake_pump2=EquipmentStatus(running=False, speed=0.0, run_hours=860.0),
        screen_differential_pressure=1.8,
        raw_water_turbidity=15.0,
        raw_water_level=8.5,
        intake_valve=ValveStatus(open=True, position=100.0),
        source_turbidity_base=15.0,
        source_temperature=16.0,
        source_ph=7.2,
        source_color=5.0,
        natural_inflow=0.07,
    )

    coagulation = CoagulationState(
        alum_dose_rate=18.0,
        alum_dose_setpoint=18.0,
        rapid_mixer_speed=120.0,
        slow_mixer_speed=45.0,
        floc_basin_turbidity=8.5,
        alum_pump=EquipmentStatus(running=True, speed=60.0, run_hours=2100.0),
        rapid_mixer=EquipmentStatus(running=True, speed=100.0, run_hours=5200.0),
        slow_mixer=EquipmentStatus(running=True, speed=100.0, run_hours=5200.0),
        ph_adjust_dose_rate=2.8,
        ph_adjust_dose_setpoint=2.8,
        ph_adjust_pump=EquipmentStatus(running=True, speed=40.0, run_hours=1800.0),
    )

    sedimentation = SedimentationState(
        clarifier_turbidity=2.1,
        sludge_blanket_level=1.5,
        filter_head_loss=2.3,
        filter_effluent_turbidity=0.08,
        filter_run_time=18.5,
        backwash_in_progress=False,
        backwash_time_remaining=0.0,
        sludge_pump=EquipmentStatus(running=True, speed=50.0, run_hours=3400.0),
        clarifier_rake=EquipmentStatus(running=True, speed=100.0, run_hours=8900.0),
    )

    disinfection = DisinfectionState(
        chlorine_dose_rate=2.0,
        chlorine_dose_setpoint=2.0,
        chlorine_residual_plant=1.7,
        chlorine_residual_dist=1.5,
        finished_water_ph=7.4,
        clearwell_level=14.0,
        chlorine_pump=EquipmentStatus(running=True, speed=65.0, run_hours=4200.0),
        uv_system=EquipmentStatus(running=True, speed=100.0, run_hours=6100.0),
        fluoride_dose_rate=0.9,
        fluoride_dose_setpoint=0.9,
        fluoride_residual=0.8,
        fluoride_pump=EquipmentStatus(running=True, speed=30.0, run_hours=2900.0),
        distribution_demand=3.0,
    )

    return ProcessState(
        timestamp=timestamp,
        running=True,
        sim_speed=1.0,
        intake=intake,
        coagulation=coagulation,
        sedimentation=sedimentation,
        disinfection=disinfection,
    )
