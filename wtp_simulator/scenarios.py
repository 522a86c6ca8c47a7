"""
Training scenarios - scripted fault injections and their pass criteria
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .process_state import ProcessState


@dataclass(frozen=True)
class ScenarioStep:
    trigger_at: float               # seconds after scenario start
    action: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CompletionCondition:
    description: str
    check: Callable[[ProcessState], bool]


@dataclass(frozen=True)
class ScenarioDefinition:
    id: str
    name: str
    description: str
    difficulty: str                 # Beginner / Intermediate / Advanced
    duration: float = 0.0           # 0 = runs until stopped
    steps: Tuple[ScenarioStep, ...] = ()
    completion_conditions: Tuple[CompletionCondition, ...] = ()
    sim_speed: Optional[float] = None
    min_time: Optional[float] = None         # s to run before it can be passed
    completion_time: Optional[float] = None  # target s to finish


NORMAL_OPERATIONS = ScenarioDefinition(
    id='normal-operations',
    name='Normal Shift',
    description='Routine shift: keep the plant in compliance with no upsets.',
    difficulty='Beginner',
    completion_conditions=(
        CompletionCondition('Raw water flow at or above 2.0 MGD',
                            lambda s: s.intake.raw_water_flow >= 2.0),
        CompletionCondition('Filter effluent below 0.3 NTU',
                            lambda s: s.sedimentation.filter_effluent_turbidity < 0.3),
        CompletionCondition('Plant chlorine residual above 0.5 mg/L',
                            lambda s: s.disinfection.chlorine_residual_plant > 0.5),
    ),
    min_time=120.0,
)

HIGH_TURBIDITY_STORM = ScenarioDefinition(
    id='high-turbidity-storm',
    name='Storm Runoff Event',
    description='Heavy rain in the watershed drives raw turbidity up to 300 NTU before it recedes. '
                'Raise the alum dose to hold filter effluent below 0.3 NTU.',
    difficulty='Intermediate',
    duration=300.0,
    steps=(
        ScenarioStep(10.0, 'set_turbidity', {'target': 80.0, 'duration': 10.0}),
        ScenarioStep(30.0, 'set_turbidity', {'target': 180.0, 'duration': 10.0}),
        ScenarioStep(60.0, 'set_turbidity', {'target': 300.0, 'duration': 10.0}),
        ScenarioStep(120.0, 'set_turbidity', {'target': 120.0, 'duration': 15.0}),
        ScenarioStep(210.0, 'set_turbidity', {'target': 20.0, 'duration': 30.0}),
    ),
    completion_conditions=(
        CompletionCondition('Filter effluent below 0.3 NTU',
                            lambda s: s.sedimentation.filter_effluent_turbidity < 0.3),
        CompletionCondition('Clarifier effluent below 5 NTU',
                            lambda s: s.sedimentation.clarifier_turbidity < 5.0),
    ),
    sim_speed=5.0,
    completion_time=250.0,
)

INTAKE_PUMP_FAILURE = ScenarioDefinition(
    id='intake-pump-failure',
    name='Intake Pump 1 Failure',
    description='The duty intake pump trips on overload. Bring the standby pump online and restore flow.',
    difficulty='Intermediate',
    steps=(
        ScenarioStep(15.0, 'fault_pump', {'pump_id': 'intake_pump1'}),
    ),
    completion_conditions=(
        CompletionCondition('Intake pump 2 running',
                            lambda s: s.intake.intake_pump2.running and not s.intake.intake_pump2.fault),
        CompletionCondition('Raw water flow at or above 2.0 MGD',
                            lambda s: s.intake.raw_water_flow >= 2.0),
    ),
    completion_time=120.0,
)

FILTER_BREAKTHROUGH = ScenarioDefinition(
    id='filter-breakthrough',
    name='Filter Breakthrough',
    description='The filter is near the end of its run and turbidity is breaking through. Backwash it.',
    difficulty='Advanced',
    steps=(
        ScenarioStep(0.0, 'preload_filter', {'head_loss': 8.5, 'run_time': 71.0}),
    ),
    completion_conditions=(
        CompletionCondition('Backwash finished',
                            lambda s: not s.sedimentation.backwash_in_progress),
        CompletionCondition('Filter head loss below 4 ft',
                            lambda s: s.sedimentation.filter_head_loss < 4.0),
        CompletionCondition('Filter effluent below 0.3 NTU',
                            lambda s: s.sedimentation.filter_effluent_turbidity < 0.3),
    ),
    min_time=60.0,
)

CHLORINE_DOSING_FAULT = ScenarioDefinition(
    id='chlorine-dosing-fault',
    name='Chlorine Dosing Fault',
    description='The chlorine setpoint is lost and then the feed pump trips. Restore disinfection.',
    difficulty='Advanced',
    steps=(
        ScenarioStep(5.0, 'set_chlorine_dose_setpoint', {'value': 0.0}),
        ScenarioStep(15.0, 'fault_pump', {'pump_id': 'chlorine_pump'}),
    ),
    completion_conditions=(
        CompletionCondition('Chlorine pump running',
                            lambda s: s.disinfection.chlorine_pump.running and not s.disinfection.chlorine_pump.fault),
        CompletionCondition('Plant chlorine residual above 0.5 mg/L',
                            lambda s: s.disinfection.chlorine_residual_plant > 0.5),
        CompletionCondition('Distribution chlorine residual above 0.2 mg/L',
                            lambda s: s.disinfection.chlorine_residual_dist > 0.2),
    ),
    min_time=60.0,
)

ALUM_OVERDOSE = ScenarioDefinition(
    id='alum-overdose',
    name='Stuck Alum Valve',
    description='The alum control valve sticks wide open and finished water pH starts to fall. '
                'Bring the dose back down and trim caustic.',
    difficulty='Intermediate',
    steps=(
        ScenarioStep(15.0, 'set_alum_dose', {'value': 50.0}),
    ),
    completion_conditions=(
        CompletionCondition('Alum dose below 30 mg/L',
                            lambda s: s.coagulation.alum_dose_rate < 30.0),
        CompletionCondition('Finished water pH between 6.8 and 8.0',
                            lambda s: 6.8 <= s.disinfection.finished_water_ph <= 8.0),
    ),
)

SLUDGE_BLANKET_BUILDUP = ScenarioDefinition(
    id='sludge-blanket-buildup',
    name='Sludge Pump Failure',
    description='The sludge blanket is already high when the sludge pump trips. Restore sludge removal.',
    difficulty='Intermediate',
    steps=(
        ScenarioStep(0.0, 'set_sludge_level', {'value': 3.5}),
        ScenarioStep(15.0, 'fault_pump', {'pump_id': 'sludge_pump'}),
    ),
    completion_conditions=(
        CompletionCondition('Sludge pump running',
                            lambda s: s.sedimentation.sludge_pump.running and not s.sedimentation.sludge_pump.fault),
        CompletionCondition('Sludge blanket below 3 ft',
                            lambda s: s.sedimentation.sludge_blanket_level < 3.0),
    ),
    completion_time=180.0,
)

SCENARIOS: Dict[str, ScenarioDefinition] = {
    s.id: s for s in (
        NORMAL_OPERATIONS,
        HIGH_TURBIDITY_STORM,
        INTAKE_PUMP_FAILURE,
        FILTER_BREAKTHROUGH,
        CHLORINE_DOSING_FAULT,
        ALUM_OVERDOSE,
        SLUDGE_BLANKET_BUILDUP,
    )
}


def get_scenario(scenario_id: str) -> ScenarioDefinition:
    if scenario_id not in SCENARIOS:
        raise ValueError(f"Unknown scenario: {scenario_id}")
    return SCENARIOS[scenario_id]


def check_completion(scenario: ScenarioDefinition, state: ProcessState) -> List[Tuple[str, bool]]:
    return [(c.description, bool(c.check(state))) for c in scenario.completion_conditions]


def get_scenario_list() -> List[Dict[str, Any]]:
    return [
        {
            'id': s.id,
            'name': s.name,
            'description': s.description,
            'difficulty': s.difficulty,
            'duration': s.duration,
            'steps': len(s.steps),
            'recommended_speed': s.sim_speed,
            'min_time': s.min_time,
            'completion_time': s.completion_time,
        }
        for s in SCENARIOS.values()
    ]
