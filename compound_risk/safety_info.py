"""
Safety information generation and hazard record merging
Maps NIOSH tables, GHS statements and physical form to a basic, enhanced or
maximum handling protocol
"""

from enum import Enum
from typing import Dict, List, Optional

from compound_risk.constants import MAXIMUM_SAFETY_GHS_KEYWORDS, PHYSICAL_FORM_SEVERITY
from compound_risk.models import (
    DataQuality,
    DataSource,
    GHSClassification,
    HazardAssessment,
    NioshClassification,
    PhysicalForm,
    PhysicalProperties,
    PPERequirement,
    PPEType,
    SafetyInfo,
)


class SafetyLevel(str, Enum):
    BASIC = "basic"
    ENHANCED = "enhanced"
    MAXIMUM = "maximum"


# ============================================================================
# Protocol tables
# ============================================================================

_BASIC_PRECAUTIONS = [
    "Wash hands thoroughly after handling",
    "Avoid contact with eyes and skin",
    "Use in well-ventilated area",
]
_ENHANCED_PRECAUTIONS = _BASIC_PRECAUTIONS + [
    "Minimize dust generation",
    "Use dedicated equipment",
    "Decontaminate work surfaces after use",
]
_MAXIMUM_PRECAUTIONS = _ENHANCED_PRECAUTIONS + [
    "Use closed-system drug transfer devices",
    "Double-bag all waste",
    "Shower and change clothes after handling",
    "Monitor for exposure symptoms",
]

HANDLING_PRECAUTIONS = {
    SafetyLevel.BASIC: _BASIC_PRECAUTIONS,
    SafetyLevel.ENHANCED: _ENHANCED_PRECAUTIONS,
    SafetyLevel.MAXIMUM: _MAXIMUM_PRECAUTIONS,
}

PPE_REQUIREMENTS = {
    SafetyLevel.BASIC: [
        (PPEType.GLOVES, "Nitrile gloves"),
        (PPEType.EYEWEAR, "Safety glasses"),
    ],
    SafetyLevel.ENHANCED: [
        (PPEType.GLOVES, "Double nitrile gloves"),
        (PPEType.EYEWEAR, "Safety goggles"),
        (PPEType.GOWN, "Lab coat or disposable gown"),
        (PPEType.RESPIRATOR, "N95 respirator for powder handling"),
    ],
    SafetyLevel.MAXIMUM: [
        (PPEType.GLOVES, "Double chemotherapy-tested nitrile gloves"),
        (PPEType.EYEWEAR, "Safety goggles with face shield"),
        (PPEType.GOWN, "Disposable chemo gown with closed front"),
        (PPEType.RESPIRATOR, "N95 or P100 respirator"),
        (PPEType.SHOE_COVERS, "Disposable shoe covers"),
        (PPEType.HAIR_COVER, "Disposable hair cover"),
    ],
}

ENGINEERING_CONTROLS = {
    SafetyLevel.BASIC: [
        "Good general ventilation",
        "Eye wash station available",
    ],
    SafetyLevel.ENHANCED: [
        "Fume hood or powder containment hood",
        "Dedicated work area",
        "Spill kit readily available",
    ],
    SafetyLevel.MAXIMUM: [
        "Class II Type B2 BSC or containment isolator",
        "Negative pressure room",
        "HEPA-filtered exhaust",
        "Dedicated HVAC system",
        "Continuous air monitoring",
    ],
}

_BASIC_SPILL_RESPONSE = [
    "Absorb spill with appropriate material",
    "Clean area with appropriate cleaner",
    "Dispose of waste properly",
]

SPILL_RESPONSE = {
    SafetyLevel.BASIC: _BASIC_SPILL_RESPONSE,
    SafetyLevel.ENHANCED: [
        "Alert others in area",
        "Don appropriate PPE before cleanup",
        *_BASIC_SPILL_RESPONSE,
        "Decontaminate area after cleanup",
    ],
    SafetyLevel.MAXIMUM: [
        "Evacuate immediate area",
        "Post warning signs",
        "Don maximum PPE including respirator",
        "Use certified spill kit",
        "Double-bag all contaminated materials",
        "Decontaminate area multiple times",
        "Document incident and notify safety officer",
    ],
}


# ============================================================================
# Generation
# ============================================================================


def determine_safety_level(
    ghs: List[GHSClassification],
    niosh: Optional[NioshClassification],
    physical_form: PhysicalForm,
) -> SafetyLevel:
    """
    Pick the handling protocol for an ingredient

    NIOSH Table 1 or a severe GHS statement selects maximum, Table 2 selects
    enhanced, and powders are never handled below enhanced.
    """
    level = SafetyLevel.BASIC

    if niosh is not None:
        if niosh.table == 1:
            level = SafetyLevel.MAXIMUM
        elif niosh.table == 2:
            level = SafetyLevel.ENHANCED

    if any(
        keyword in classification.description.lower()
        for classification in ghs
        for keyword in MAXIMUM_SAFETY_GHS_KEYWORDS
    ):
        level = SafetyLevel.MAXIMUM

    if physical_form == PhysicalForm.POWDER and level == SafetyLevel.BASIC:
        level = SafetyLevel.ENHANCED

    return level


def safety_info_for_level(level: SafetyLevel) -> SafetyInfo:
    """Build a fresh SafetyInfo for a protocol level"""
    return SafetyInfo(
        handling_precautions=list(HANDLING_PRECAUTIONS[level]),
        ppe_requirements=[
            PPERequirement(type=ppe_type, specification=specification)
            for ppe_type, specification in PPE_REQUIREMENTS[level]
        ],
        engineering_controls=list(ENGINEERING_CONTROLS[level]),
        spill_response=list(SPILL_RESPONSE[level]),
    )


def generate_safety_info(
    ghs: List[GHSClassification],
    niosh: Optional[NioshClassification],
    physical_form: PhysicalForm,
) -> SafetyInfo:
    return safety_info_for_level(determine_safety_level(ghs, niosh, physical_form))


# ============================================================================
# Merging
# ============================================================================


def _merge_niosh(records: List[HazardAssessment]) -> Optional[NioshClassification]:
    listings = [record.niosh for record in records if record.niosh is not None]
    if not listings:
        return None

    tables = [listing.table for listing in listings if listing.table is not None]
    strictest = min(tables) if tables else None
    primary = next((n for n in listings if n.table == strictest), listings[0])

    return NioshClassification(
        table=strictest,
        category=primary.category,
        is_hazardous=any(n.is_hazardous for n in listings),
        has_reproductive_toxicity=any(n.has_reproductive_toxicity for n in listings),
        is_carcinogenic=any(n.is_carcinogenic for n in listings),
    )


def _merge_physical_properties(records: List[HazardAssessment]) -> PhysicalProperties:
    properties = [record.physical_properties for record in records]
    physical_form = max(
        (p.physical_form for p in properties),
        key=lambda form: PHYSICAL_FORM_SEVERITY[form],
        default=PhysicalForm.POWDER,
    )
    solubility = next(
        (p.solubility for p in properties if p.solubility and p.solubility != "unknown"),
        "unknown",
    )
    molecular_weight = next(
        (p.molecular_weight for p in properties if p.molecular_weight is not None), None
    )
    return PhysicalProperties(
        physical_form=physical_form,
        solubility=solubility,
        molecular_weight=molecular_weight,
    )


def merge_hazard_records(
    name: str, records: List[HazardAssessment], confidence: float
) -> HazardAssessment:
    """
    Merge hazard records of one ingredient from several sources

    The merged record keeps the most hazardous reading of every field: the
    union of GHS codes, the strictest NIOSH table and flags, and the most
    hazardous physical form. Safety info is regenerated from the merged data.

    Args:
        name: Ingredient name as requested
        records: Records from the sources that answered, best source first
        confidence: Confidence of the merged record

    Returns:
        Merged HazardAssessment
    """
    ghs: Dict[str, GHSClassification] = {}
    for record in records:
        for classification in record.ghs:
            ghs.setdefault(classification.code, classification)

    niosh = _merge_niosh(records)
    physical_properties = _merge_physical_properties(records)

    sources: Dict[str, DataSource] = {}
    warnings: List[str] = []
    for record in records:
        for source in record.data_quality.sources:
            sources.setdefault(source.name, source)
        for warning in record.data_quality.warnings:
            if warning not in warnings:
                warnings.append(warning)

    merged_ghs = list(ghs.values())
    return HazardAssessment(
        ingredient_name=name,
        normalized_name=next((r.normalized_name for r in records if r.normalized_name), name),
        cas_number=next((r.cas_number for r in records if r.cas_number), None),
        ghs=merged_ghs,
        niosh=niosh,
        physical_properties=physical_properties,
        safety_info=generate_safety_info(
            merged_ghs, niosh, physical_properties.physical_form
        ),
        data_quality=DataQuality(
            sources=list(sources.values()),
            confidence=confidence,
            warnings=warnings,
            verification_required=any(
                r.data_quality.verification_required for r in records
            ),
        ),
    )
