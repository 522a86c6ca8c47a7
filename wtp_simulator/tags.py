"""
Tag catalogue - maps instrument tags to ProcessState values
Naming: <AREA>-<ISA TYPE>-<LOOP>, e.g. FLT-AIT-001
"""

import logging
from typing import Dict, Any, List

logger = logging.getLogger(__name__)

# (tag, unit, description, extractor, alarmed)
CORE_TAGS = [
    # Intake
    ('INT-FIT-001', 'MGD', 'Raw Water Flow', lambda s: s.intake.raw_water_flow, True),
    ('INT-AIT-001', 'NTU', 'Raw Water Turbidity', lambda s: s.intake.raw_water_turbidity, True),
    ('INT-PDT-001', 'psi', 'Intake Screen DP', lambda s: s.intake.screen_differential_pressure, True),
    ('INT-LIT-001', 'ft', 'Raw Water Wet Well Level', lambda s: s.intake.raw_water_level, False),

    # Coagulation / flocculation
    ('COG-AIT-001', 'NTU', 'Floc Basin Turbidity', lambda s: s.coagulation.floc_basin_turbidity, True),
    ('COG-FIT-001', 'mg/L', 'Alum Dose Rate', lambda s: s.coagulation.alum_dose_rate, False),

    # Sedimentation / filtration
    ('SED-AIT-001', 'NTU', 'Clarifier Effluent Turbidity', lambda s: s.sedimentation.clarifier_turbidity, True),
    ('SED-LIT-001', 'ft', 'Sludge Blanket Level', lambda s: s.sedimentation.sludge_blanket_level, True),
    ('FLT-PDT-001', 'ft', 'Filter Head Loss', lambda s: s.sedimentation.filter_head_loss, True),
    ('FLT-AIT-001', 'NTU', 'Filter Effluent Turbidity', lambda s: s.sedimentation.filter_effluent_turbidity, True),
    ('FLT-RUN-001', 'h', 'Filter Run Time', lambda s: s.sedimentation.filter_run_time, False),

    # Disinfection
    ('DIS-AIT-001', 'mg/L', 'Plant Cl2 Residual', lambda s: s.disinfection.chlorine_residual_plant, True),
    ('DIS-AIT-002', 'mg/L', 'Distribution Cl2 Residual', lambda s: s.disinfection.chlorine_residual_dist, True),
    ('DIS-AIT-003', 'pH', 'Finished Water pH', lambda s: s.disinfection.finished_water_ph, True),
    ('DIS-AIT-004', 'mg/L', 'Fluoride Residual', lambda s: s.disinfection.fluoride_residual, True),
    ('DIS-LIT-001', 'ft', 'Clearwell Level', lambda s: s.disinfection.clearwell_level, False),
    ('DIS-FIT-001', 'mg/L', 'Chlorine Dose Rate', lambda s: s.disinfection.chlorine_dose_rate, False),
]

TAG_NAMES = [t[0] for t in CORE_TAGS]


def tag_metadata() -> Dict[str, Dict[str, Any]]:
    return {
        tag: {'unit': unit, 'description': description, 'alarmed': alarmed}
        for tag, unit, description, _, alarmed in CORE_TAGS
    }


def tag_description(tag: str) -> str:
    for name, _, description, _, _ in CORE_TAGS:
        if name == tag:
            return description
    return tag


def extract_tag_values(state) -> Dict[str, float]:
    """Sample every catalogued tag from a ProcessState"""
    return {tag: float(extract(state)) for tag, _, _, extract, _ in CORE_TAGS}


def available_tags() -> List[str]:
    return list(TAG_NAMES)
