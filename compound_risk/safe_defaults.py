"""
Conservative defaults used when no hazard data source can answer
Every default assumes the worst: hazardous, powdered, Level C
"""

import re
from typing import Any, Callable, Dict, List, Optional

from compound_risk.constants import SAFE_DEFAULT_CONFIDENCE, SAFE_DEFAULT_SOURCE
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
    RiskLevel,
    SafetyInfo,
)

HAZARD_ASSESSMENT_CONTEXT = "hazard_assessment"
PHYSICAL_PROPERTIES_CONTEXT = "physical_properties"
RISK_LEVEL_CONTEXT = "risk_level"
PPE_REQUIREMENTS_CONTEXT = "ppe_requirements"

UNKNOWN_INGREDIENT = "Unknown"
NO_DATA_WARNING = "No data available - using maximum safety protocols"


def _maximum_ppe() -> List[PPERequirement]:
    return [
        PPERequirement(type=PPEType.RESPIRATOR, specification="N95 respirator or higher"),
        PPERequirement(
            type=PPEType.GLOVES, specification="Double chemotherapy-tested nitrile gloves"
        ),
        PPERequirement(type=PPEType.GOWN, specification="Disposable chemo gown"),
        PPERequirement(type=PPEType.EYEWEAR, specification="Safety goggles with face shield"),
        PPERequirement(type=PPEType.SHOE_COVERS, specification="Disposable shoe covers"),
    ]


class SafeDefaults:
    """
    Resolves a free-text fallback context to a conservative default

    Known contexts: hazard_assessment, physical_properties, risk_level and
    ppe_requirements. A context such as "hazard lookup for X" resolves by its
    first word that equals the leading word of a known context; anything else
    resolves to hazard_assessment. Each call returns a new object.
    """

    def __init__(self):
        self._factories: Dict[str, Callable[[Optional[str]], Any]] = {
            HAZARD_ASSESSMENT_CONTEXT: self.hazard_assessment,
            PHYSICAL_PROPERTIES_CONTEXT: lambda subject: self.physical_properties(),
            RISK_LEVEL_CONTEXT: lambda subject: RiskLevel.C,
            PPE_REQUIREMENTS_CONTEXT: lambda subject: _maximum_ppe(),
        }

    def resolve_context(self, context: str) -> str:
        """Map a free-text context to the key of a known default"""
        for word in re.findall(r"[a-z]+", context.lower()):
            for key in self._factories:
                if word == key.split("_")[0]:
                    return key
        return HAZARD_ASSESSMENT_CONTEXT

    def for_context(self, context: str, subject: Optional[str] = None) -> Any:
        """
        Get the safe default for a context

        Args:
            context: Free-text description of what was being looked up
            subject: Optional ingredient name for record-shaped defaults

        Returns:
            Fresh default value
        """
        return self._factories[self.resolve_context(context)](subject)

    def hazard_assessment(self, subject: Optional[str] = None) -> HazardAssessment:
        """Hazard record that classifies as Level C with maximum PPE"""
        name = subject or UNKNOWN_INGREDIENT
        return HazardAssessment(
            ingredient_name=name,
            normalized_name=name.lower(),
            ghs=[
                GHSClassification(
                    code="DEFAULT",
                    category="Unknown Hazard",
                    description="Hazard data unavailable - assume highest risk",
                    source="System Default",
                )
            ],
            niosh=NioshClassification(
                table=1,
                category="Unknown - Assume Hazardous",
                is_hazardous=True,
            ),
            physical_properties=self.physical_properties(),
            safety_info=SafetyInfo(
                handling_precautions=[
                    "Use maximum PPE including respirator",
                    "Handle in certified fume hood only",
                    "Minimize exposure time",
                    "Consult safety officer before handling",
                ],
                ppe_requirements=_maximum_ppe(),
                engineering_controls=[
                    "Class II Type B2 BSC or containment isolator",
                    "Negative pressure room",
                    "Closed system drug transfer devices required",
                ],
                spill_response=[
                    "Evacuate immediate area",
                    "Don maximum PPE including respirator",
                    "Document incident and notify safety officer",
                ],
            ),
            data_quality=DataQuality(
                sources=[DataSource(name=SAFE_DEFAULT_SOURCE)],
                confidence=SAFE_DEFAULT_CONFIDENCE,
                warnings=[NO_DATA_WARNING],
                verification_required=True,
            ),
        )

    def physical_properties(self) -> PhysicalProperties:
        return PhysicalProperties(
            physical_form=PhysicalForm.POWDER, solubility="unknown", molecular_weight=None
        )
