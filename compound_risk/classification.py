"""
NAPRA risk classification engine
Assigns a compound formulation to Level A, B or C and derives the PPE,
engineering controls, precautions and validity window of the assessment
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from compound_risk.constants import (
    CREAM_DOSAGE_KEYWORDS,
    EXPIRY_DAYS_DEFAULT,
    EXPIRY_DAYS_LOW_CONFIDENCE,
    EXPIRY_DAYS_VERY_LOW_CONFIDENCE,
    HIGH_CONCENTRATION_PERCENT,
    INCOMPATIBLE_PAIRS,
    LEVEL_C_GHS_KEYWORDS,
    LEVEL_C_NOTICES,
    LOW_CONFIDENCE_THRESHOLD,
    MINIMUM_CONTROLS_BY_LEVEL,
    MINIMUM_PPE_BY_LEVEL,
    MODERATE_CONFIDENCE_THRESHOLD,
    PPE_HIERARCHY,
    SIGNIFICANT_HAZARD_KEYWORDS,
    VERY_LOW_CONFIDENCE_THRESHOLD,
)
from compound_risk.exceptions import FormulationValidationError
from compound_risk.models import (
    CompoundFormulation,
    CompoundIngredient,
    ContributionLevel,
    HazardAssessment,
    IngredientAssessment,
    PhysicalForm,
    PPERequirement,
    PPEType,
    RiskAssessment,
    RiskLevel,
)
from compound_risk.safe_defaults import SafeDefaults
from compound_risk.validation import validate_formulation

logger = logging.getLogger(__name__)

LOOKUP_FAILED_CONCERN = "Unable to retrieve complete hazard data - assuming highest risk"
AEROSOLIZATION_PRECAUTION = "Use appropriate mixing equipment to minimize aerosolization"
LARGE_BATCH_PRECAUTION = (
    "Large batch size - ensure adequate ventilation and breaks during preparation"
)


class HazardProvider(ABC):
    """Source of hazard records for the classification engine"""

    @abstractmethod
    async def get_hazard_data(self, name: str, force_refresh: bool = False) -> HazardAssessment:
        """Return the hazard record of one ingredient"""


# ============================================================================
# Rule helpers
# ============================================================================


def ppe_rank(requirement: PPERequirement) -> int:
    """
    Rank a PPE specification within its type's hierarchy

    Returns:
        Index of the highest hierarchy entry contained in the specification
        (case-insensitive), or -1 if none matches or the type is unranked
    """
    hierarchy = PPE_HIERARCHY.get(requirement.type, [])
    specification = requirement.specification.lower()
    rank = -1
    for index, entry in enumerate(hierarchy):
        if entry in specification:
            rank = index
    return rank


def is_higher_ppe(candidate: PPERequirement, existing: PPERequirement) -> bool:
    return ppe_rank(candidate) > ppe_rank(existing)


def _ghs_mentions(hazard: HazardAssessment, keywords) -> List[str]:
    return [
        ghs.code
        for ghs in hazard.ghs
        if any(keyword in ghs.description.lower() for keyword in keywords)
    ]


def level_c_findings(hazard: HazardAssessment) -> List[str]:
    """Reasons an ingredient forces Level C"""
    findings: List[str] = []
    name = hazard.ingredient_name
    niosh = hazard.niosh

    if niosh is not None:
        if niosh.table == 1:
            findings.append(f"{name}: NIOSH Table 1 hazardous drug")
        if niosh.has_reproductive_toxicity:
            findings.append(f"{name}: reproductive toxicity")
        if niosh.is_carcinogenic:
            findings.append(f"{name}: carcinogenic")

    for code in _ghs_mentions(hazard, LEVEL_C_GHS_KEYWORDS):
        findings.append(f"{name}: GHS {code} indicates a severe health hazard")

    return findings


def level_b_findings(hazard: HazardAssessment) -> List[str]:
    """Reasons an ingredient forces at least Level B (excluding ingredient counts)"""
    findings: List[str] = []
    name = hazard.ingredient_name

    if hazard.niosh is not None and hazard.niosh.table == 2:
        findings.append(f"{name}: NIOSH Table 2 hazardous drug")
    if hazard.physical_properties.physical_form == PhysicalForm.POWDER:
        findings.append(f"{name}: powder form")
    if hazard.data_quality.confidence < LOW_CONFIDENCE_THRESHOLD:
        findings.append(
            f"{name}: low confidence hazard data ({hazard.data_quality.confidence:g})"
        )

    return findings


def assess_contribution(hazard: HazardAssessment, percentage: float) -> ContributionLevel:
    """
    Weigh an ingredient's contribution to the compound's risk

    NIOSH Table 1 is always high. Significant hazards (NIOSH hazardous, or a
    toxic/harmful GHS statement) are high above 10%, medium above 1%, else
    low. Other ingredients are medium above 50%, else low.
    """
    if hazard.niosh is not None and hazard.niosh.table == 1:
        return ContributionLevel.HIGH

    significant = bool(
        (hazard.niosh is not None and hazard.niosh.is_hazardous)
        or _ghs_mentions(hazard, SIGNIFICANT_HAZARD_KEYWORDS)
    )
    if significant:
        if percentage > 10:
            return ContributionLevel.HIGH
        if percentage > 1:
            return ContributionLevel.MEDIUM
        return ContributionLevel.LOW

    if percentage > 50:
        return ContributionLevel.MEDIUM
    return ContributionLevel.LOW


def identify_specific_concerns(
    hazard: HazardAssessment, ingredient: CompoundIngredient
) -> List[str]:
    concerns: List[str] = []

    if hazard.physical_properties.physical_form == PhysicalForm.POWDER:
        concerns.append("Powder form - risk of inhalation exposure")

    for ghs in hazard.ghs:
        description = ghs.description.lower()
        if "skin" in description:
            concerns.append("Skin sensitizer/irritant - ensure proper glove selection")
        if "eye" in description:
            concerns.append("Eye irritant - face shield recommended")
        if "respiratory" in description:
            concerns.append("Respiratory hazard - ensure proper ventilation")

    percentage = ingredient.percentage or 0
    if percentage > HIGH_CONCENTRATION_PERCENT:
        concerns.append(f"High concentration ({percentage:g}%) - increased exposure risk")

    concerns.extend(hazard.data_quality.warnings)
    return concerns


# ============================================================================
# Engine
# ============================================================================


class RiskClassificationEngine:
    """
    Classifies compound formulations into NAPRA risk levels

    Args:
        hazard_provider: Hazard record lookup
        safe_defaults: Substitute records for failed lookups
        large_batch_threshold: Total quantity above which a batch is large
        max_ingredients: Upper bound on ingredient lines
        now: Source of the assessment date
    """

    def __init__(
        self,
        hazard_provider: HazardProvider,
        safe_defaults: SafeDefaults,
        large_batch_threshold: float = 1000,
        max_ingredients: int = 50,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.hazard_provider = hazard_provider
        self.safe_defaults = safe_defaults
        self.large_batch_threshold = large_batch_threshold
        self.max_ingredients = max_ingredients
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def assess_compound(self, compound: CompoundFormulation) -> RiskAssessment:
        """
        Assess a compound formulation

        Args:
            compound: Formulation to classify

        Returns:
            RiskAssessment; never less protective than the data supports

        Raises:
            FormulationValidationError: If the formulation is structurally invalid
        """
        errors = validate_formulation(compound, self.max_ingredients)
        if errors:
            logger.warning(
                f"Rejected formulation {compound.name!r}: {len(errors)} validation errors"
            )
            raise FormulationValidationError(errors)

        logger.info(
            f"Starting risk assessment for {compound.name} "
            f"({len(compound.ingredients)} ingredients)"
        )

        assessments = await self._assess_ingredients(compound.ingredients)
        level, rationale = self._classify(assessments)
        required_ppe, required_controls = self._determine_requirements(assessments, level)
        assessment_date = self._now()

        result = RiskAssessment(
            compound=compound,
            overall_risk_level=level,
            rationale=rationale,
            ingredient_assessments=assessments,
            required_ppe=required_ppe,
            required_controls=required_controls,
            additional_precautions=self._additional_precautions(compound, assessments, level),
            assessment_date=assessment_date,
            review_required=self._is_review_required(assessments),
            expiry_date=self._expiry_date(assessments, assessment_date),
        )

        logger.info(
            f"Assessment for {compound.name}: Level {level.value} "
            f"(review_required={result.review_required})"
        )
        return result

    async def _assess_ingredients(
        self, ingredients: List[CompoundIngredient]
    ) -> List[IngredientAssessment]:
        lookups = await asyncio.gather(
            *(self.hazard_provider.get_hazard_data(i.name) for i in ingredients),
            return_exceptions=True,
        )

        assessments: List[IngredientAssessment] = []
        for ingredient, lookup in zip(ingredients, lookups):
            if isinstance(lookup, Exception):
                logger.error(f"Failed to assess ingredient {ingredient.name}: {lookup}")
                assessments.append(
                    IngredientAssessment(
                        ingredient=ingredient,
                        hazard_data=self.safe_defaults.hazard_assessment(ingredient.name),
                        contribution_to_risk=ContributionLevel.HIGH,
                        specific_concerns=[LOOKUP_FAILED_CONCERN],
                    )
                )
                continue
            if isinstance(lookup, BaseException):
                raise lookup

            assessments.append(
                IngredientAssessment(
                    ingredient=ingredient,
                    hazard_data=lookup,
                    contribution_to_risk=assess_contribution(lookup, ingredient.percentage or 0),
                    specific_concerns=identify_specific_concerns(lookup, ingredient),
                )
            )

        return assessments

    def _classify(self, assessments: List[IngredientAssessment]) -> Tuple[RiskLevel, List[str]]:
        hazards = [a.hazard_data for a in assessments]

        c_findings = [finding for h in hazards for finding in level_c_findings(h)]
        if c_findings:
            return RiskLevel.C, c_findings

        b_findings = [finding for h in hazards for finding in level_b_findings(h)]
        hazardous = [h.ingredient_name for h in hazards if h.is_hazardous]
        if len(hazardous) > 1:
            b_findings.append(
                f"{len(hazardous)} hazardous ingredients: {', '.join(hazardous)}"
            )
        if b_findings:
            return RiskLevel.B, b_findings

        return RiskLevel.A, ["No Level B or C hazard indicators found"]

    def _determine_requirements(
        self, assessments: List[IngredientAssessment], level: RiskLevel
    ) -> Tuple[List[PPERequirement], List[str]]:
        ppe: Dict[PPEType, PPERequirement] = {}
        # Unranked specifications of a ranked type cannot be compared; all are kept
        unranked: List[PPERequirement] = []
        controls: List[str] = []

        for assessment in assessments:
            safety_info = assessment.hazard_data.safety_info
            for requirement in safety_info.ppe_requirements:
                if requirement.type in PPE_HIERARCHY and ppe_rank(requirement) < 0:
                    if not any(
                        kept.type == requirement.type
                        and kept.specification.lower() == requirement.specification.lower()
                        for kept in unranked
                    ):
                        unranked.append(requirement)
                    continue
                existing = ppe.get(requirement.type)
                if existing is None or is_higher_ppe(requirement, existing):
                    ppe[requirement.type] = requirement
            for control in safety_info.engineering_controls:
                if control not in controls:
                    controls.append(control)

        # The level minimum is a floor: it replaces weaker entries, never stronger ones
        for ppe_type, specification in MINIMUM_PPE_BY_LEVEL[level]:
            minimum = PPERequirement(type=ppe_type, specification=specification)
            existing = ppe.get(ppe_type)
            if existing is None or is_higher_ppe(minimum, existing):
                ppe[ppe_type] = minimum

        for control in MINIMUM_CONTROLS_BY_LEVEL[level]:
            if control not in controls:
                controls.append(control)

        return list(ppe.values()) + unranked, controls

    def _additional_precautions(
        self,
        compound: CompoundFormulation,
        assessments: List[IngredientAssessment],
        level: RiskLevel,
    ) -> List[str]:
        precautions: List[str] = []

        dosage_form = compound.dosage_form.lower()
        if any(keyword in dosage_form for keyword in CREAM_DOSAGE_KEYWORDS):
            precautions.append(AEROSOLIZATION_PRECAUTION)

        names = {a.ingredient.name.strip().lower() for a in assessments}
        for first, second, warning in INCOMPATIBLE_PAIRS:
            if first in names and second in names:
                precautions.append(warning)

        low_confidence = [
            a.ingredient.name
            for a in assessments
            if a.hazard_data.data_quality.confidence < LOW_CONFIDENCE_THRESHOLD
        ]
        if low_confidence:
            precautions.append(
                f"Limited hazard data available for: {', '.join(low_confidence)}. "
                "Exercise additional caution."
            )

        if compound.total_quantity > self.large_batch_threshold:
            precautions.append(LARGE_BATCH_PRECAUTION)

        if level == RiskLevel.C:
            precautions.extend(LEVEL_C_NOTICES)

        return precautions

    def _is_review_required(self, assessments: List[IngredientAssessment]) -> bool:
        return any(
            a.hazard_data.data_quality.confidence < LOW_CONFIDENCE_THRESHOLD
            or a.hazard_data.data_quality.verification_required
            or a.contribution_to_risk == ContributionLevel.HIGH
            for a in assessments
        )

    def _expiry_date(
        self, assessments: List[IngredientAssessment], assessment_date: datetime
    ) -> datetime:
        lowest = min(a.hazard_data.data_quality.confidence for a in assessments)
        if lowest < VERY_LOW_CONFIDENCE_THRESHOLD:
            days = EXPIRY_DAYS_VERY_LOW_CONFIDENCE
        elif lowest < MODERATE_CONFIDENCE_THRESHOLD:
            days = EXPIRY_DAYS_LOW_CONFIDENCE
        else:
            days = EXPIRY_DAYS_DEFAULT
        return assessment_date + timedelta(days=days)
