"""
Pydantic models for the Compound Risk service
Defines hazard records, compound formulations, risk assessments and
observability snapshots
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Enumerations
# ============================================================================


class CacheType(str, Enum):
    """Closed set of cached data families, each with its own TTL"""

    PUBCHEM = "pubchem"
    RXNORM = "rxnorm"
    DAILYMED = "dailymed"
    ASSESSMENT = "assessment"
    NIOSH = "niosh"


class RiskLevel(str, Enum):
    """
    NAPRA compounding risk level

    Strictly ordered A < B < C; use ``rank`` for comparisons.
    """

    A = "A"
    B = "B"
    C = "C"

    @property
    def rank(self) -> int:
        return _RISK_LEVEL_RANK[self.value]

    @classmethod
    def highest(cls, *levels: "RiskLevel") -> "RiskLevel":
        """Return the most severe of the given levels (A when none given)"""
        result = cls.A
        for level in levels:
            if level.rank > result.rank:
                result = level
        return result


_RISK_LEVEL_RANK = {"A": 0, "B": 1, "C": 2}


class ContributionLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PhysicalForm(str, Enum):
    POWDER = "powder"
    LIQUID = "liquid"
    SOLID = "solid"
    GAS = "gas"


class PPEType(str, Enum):
    GLOVES = "gloves"
    EYEWEAR = "eyewear"
    RESPIRATOR = "respirator"
    GOWN = "gown"
    SHOE_COVERS = "shoe covers"
    HAIR_COVER = "hair cover"


# ============================================================================
# Hazard records
# ============================================================================


class GHSClassification(BaseModel):
    """
    A single GHS hazard classification

    Attributes:
        code: Hazard statement code (e.g. 'H350')
        category: Hazard class and category
        description: Free-text hazard statement
        pictogram: Optional GHS pictogram identifier
        source: Database the classification came from
    """

    code: str
    category: str = ""
    description: str = ""
    pictogram: Optional[str] = None
    source: Optional[str] = None


class NioshClassification(BaseModel):
    """
    NIOSH hazardous drug listing

    Attributes:
        table: NIOSH table (1 or 2), or None when listed without a table
        category: Hazard type summary
        is_hazardous: Whether the drug requires hazardous handling
        has_reproductive_toxicity: Listed for reproductive/developmental effects
        is_carcinogenic: Listed as a carcinogen
    """

    table: Optional[int] = Field(None, ge=1, le=2)
    category: str = ""
    is_hazardous: bool = False
    has_reproductive_toxicity: bool = False
    is_carcinogenic: bool = False


class PhysicalProperties(BaseModel):
    physical_form: PhysicalForm = PhysicalForm.POWDER
    solubility: str = "unknown"
    molecular_weight: Optional[float] = None


class PPERequirement(BaseModel):
    """
    A piece of personal protective equipment and its required grade

    Attributes:
        type: PPE category
        specification: Required grade, matched against the PPE hierarchy
    """

    type: PPEType
    specification: str


class SafetyInfo(BaseModel):
    handling_precautions: List[str] = []
    ppe_requirements: List[PPERequirement] = []
    engineering_controls: List[str] = []
    spill_response: List[str] = []


class DataSource(BaseModel):
    name: str
    url: str = ""


class DataQuality(BaseModel):
    """
    Provenance and trust metadata of a hazard record

    Attributes:
        sources: Databases that contributed to the record
        confidence: Trust weight in [0, 1]
        last_updated: When the underlying data was produced
        warnings: Human-readable data-quality warnings
        verification_required: Record must be checked by a pharmacist
    """

    sources: List[DataSource] = []
    confidence: float = Field(..., ge=0.0, le=1.0)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    warnings: List[str] = []
    verification_required: bool = False


class HazardAssessment(BaseModel):
    """
    Normalized hazard data for one ingredient

    This is the unit exchanged between hazard-data sources and the
    classification engine.
    """

    ingredient_name: str
    normalized_name: str = ""
    cas_number: Optional[str] = None
    ghs: List[GHSClassification] = []
    niosh: Optional[NioshClassification] = None
    physical_properties: PhysicalProperties = Field(default_factory=PhysicalProperties)
    safety_info: SafetyInfo = Field(default_factory=SafetyInfo)
    data_quality: DataQuality

    @property
    def is_hazardous(self) -> bool:
        """NIOSH-hazardous or carrying at least one GHS classification"""
        return bool((self.niosh and self.niosh.is_hazardous) or self.ghs)


# ============================================================================
# Compound formulation and risk assessment
# ============================================================================


class CompoundIngredient(BaseModel):
    """
    One ingredient line of a compound formulation

    Attributes:
        name: Ingredient name as entered by the pharmacist
        quantity: Amount used
        unit: Unit of the quantity (g, mL, ...)
        percentage: Optional concentration in the final preparation
    """

    name: str
    quantity: float = 0.0
    unit: str = "g"
    percentage: Optional[float] = None


class CompoundFormulation(BaseModel):
    """
    A compound preparation submitted for risk assessment

    Attributes:
        name: Preparation name
        dosage_form: Dosage form (cream, capsule, solution, ...)
        total_quantity: Batch size
        ingredients: Ingredient lines
    """

    name: str
    dosage_form: str = ""
    total_quantity: float = 0.0
    ingredients: List[CompoundIngredient] = []


class IngredientAssessment(BaseModel):
    ingredient: CompoundIngredient
    hazard_data: HazardAssessment
    contribution_to_risk: ContributionLevel
    specific_concerns: List[str] = []


class RiskAssessment(BaseModel):
    """
    Result of classifying a compound formulation

    Attributes:
        compound: The assessed formulation
        overall_risk_level: Highest level implied by any ingredient or data gap
        rationale: Findings that determined the risk level
        ingredient_assessments: Per-ingredient hazard data and contribution
        required_ppe: Aggregated PPE, never below the level minimum
        required_controls: Aggregated engineering controls
        additional_precautions: Free-text precautions
        assessment_date: When the assessment was computed
        review_required: Pharmacist review needed before use
        expiry_date: End of the assessment's validity window
    """

    compound: CompoundFormulation
    overall_risk_level: RiskLevel
    rationale: List[str] = []
    ingredient_assessments: List[IngredientAssessment]
    required_ppe: List[PPERequirement]
    required_controls: List[str]
    additional_precautions: List[str] = []
    assessment_date: datetime
    review_required: bool
    expiry_date: datetime


# ============================================================================
# Observability snapshots
# ============================================================================


class CacheItemRef(BaseModel):
    key: str
    timestamp: float


class CacheStats(BaseModel):
    """
    Read-only snapshot of the hazard cache

    Attributes:
        total_items: Number of entries
        size_in_bytes: Rough serialized size estimate
        items_by_type: Entry count per cache type
        hit_rate: hits / (hits + initial fetches)
        oldest_item: Oldest entry, if any
        newest_item: Newest entry, if any
    """

    total_items: int
    size_in_bytes: int
    items_by_type: Dict[CacheType, int]
    hit_rate: float
    oldest_item: Optional[CacheItemRef] = None
    newest_item: Optional[CacheItemRef] = None


class OperationStats(BaseModel):
    """
    Rolling reliability statistics of one named operation

    Attributes:
        total_calls: Attempts recorded
        successful_calls: Attempts that succeeded
        failed_calls: Attempts that failed
        average_duration: Running mean attempt duration in seconds
        last_failure: Time of the most recent failure
    """

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    average_duration: float = 0.0
    last_failure: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 1.0
        return self.successful_calls / self.total_calls


class ReliabilityResponse(BaseModel):
    operation: str
    reliable: bool
    threshold: float
    stats: Optional[OperationStats] = None


class CacheClearResponse(BaseModel):
    cleared: str
    remaining_items: int
