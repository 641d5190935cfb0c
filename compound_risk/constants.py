"""
Shared constants for the Compound Risk service
Centralizes TTLs, PPE tables and classification keywords so the cache,
safety-info generator and classification engine cannot drift apart
"""

from compound_risk.models import CacheType, PhysicalForm, PPEType, RiskLevel

# ============================================================================
# Cache
# ============================================================================

_HOUR = 60 * 60
_DAY = 24 * _HOUR

# Time-to-live per cache type, in seconds
CACHE_TTL_SECONDS = {
    CacheType.PUBCHEM: 7 * _DAY,
    CacheType.RXNORM: 30 * _DAY,
    CacheType.DAILYMED: _DAY,
    CacheType.ASSESSMENT: _HOUR,
    CacheType.NIOSH: 365 * _DAY,  # list is republished annually
}

# Eviction score bonus per cache hit (one hour of "freshness" per hit)
EVICTION_HIT_BONUS_SECONDS = _HOUR

# Type cleared first when the persistence quota is exhausted
QUOTA_RELIEF_CACHE_TYPE = CacheType.ASSESSMENT

# ============================================================================
# Fallback
# ============================================================================

SAFE_DEFAULT_SOURCE = "safe_default"
SAFE_DEFAULT_CONFIDENCE = 0.1
SAFE_DEFAULT_WARNING = (
    "Using conservative safety defaults due to data unavailability. "
    "Manual review recommended."
)
PARTIAL_SOURCES_WARNING = "Some data sources were unavailable"

# ============================================================================
# Classification keywords
# ============================================================================

# Substring heuristics over GHS free text; not an authoritative taxonomy
LEVEL_C_GHS_KEYWORDS = ("fatal", "cancer", "mutagenic", "reproductive")
SIGNIFICANT_HAZARD_KEYWORDS = ("toxic", "harmful")
MAXIMUM_SAFETY_GHS_KEYWORDS = ("fatal", "toxic", "cancer", "reproductive")

LOW_CONFIDENCE_THRESHOLD = 0.5
HIGH_CONCENTRATION_PERCENT = 25.0

CREAM_DOSAGE_KEYWORDS = ("cream", "ointment")

# (ingredient, ingredient, warning); names are matched lowercased
INCOMPATIBLE_PAIRS = [
    (
        "tretinoin",
        "benzoyl peroxide",
        "Warning: Tretinoin and benzoyl peroxide may be incompatible - prepare separately",
    ),
    (
        "hydroquinone",
        "benzoyl peroxide",
        "Warning: Hydroquinone and benzoyl peroxide may cause transient skin staining - prepare separately",
    ),
]

LEVEL_C_NOTICES = [
    "Level C compound - requires specialized training",
    "Pregnant or nursing staff should not handle this compound",
    "Maintain detailed exposure records",
]

# Assessment validity windows by lowest ingredient confidence
EXPIRY_DAYS_VERY_LOW_CONFIDENCE = 30  # confidence < 0.3
EXPIRY_DAYS_LOW_CONFIDENCE = 90  # confidence < 0.7
EXPIRY_DAYS_DEFAULT = 365
VERY_LOW_CONFIDENCE_THRESHOLD = 0.3
MODERATE_CONFIDENCE_THRESHOLD = 0.7

# ============================================================================
# PPE and engineering controls
# ============================================================================

# Specifications in increasing order of protection; matched case-insensitively
# as substrings, the highest matching rank wins
PPE_HIERARCHY = {
    PPEType.GLOVES: [
        "nitrile gloves",
        "double nitrile gloves",
        "double chemotherapy-tested nitrile gloves",
    ],
    PPEType.EYEWEAR: [
        "safety glasses",
        "safety goggles",
        "face shield",
    ],
    PPEType.RESPIRATOR: [
        "surgical mask",
        "n95",
        "p100",
    ],
    PPEType.GOWN: [
        "lab coat",
        "disposable gown",
        "disposable chemo gown",
    ],
}

MINIMUM_PPE_BY_LEVEL = {
    RiskLevel.A: [
        (PPEType.GLOVES, "Nitrile gloves"),
        (PPEType.EYEWEAR, "Safety glasses"),
    ],
    RiskLevel.B: [
        (PPEType.GLOVES, "Double nitrile gloves"),
        (PPEType.EYEWEAR, "Safety goggles"),
        (PPEType.GOWN, "Disposable gown"),
    ],
    RiskLevel.C: [
        (PPEType.GLOVES, "Double chemotherapy-tested nitrile gloves"),
        (PPEType.EYEWEAR, "Safety goggles with face shield"),
        (PPEType.GOWN, "Disposable chemo gown with closed front"),
        (PPEType.RESPIRATOR, "N95 respirator minimum"),
    ],
}

MINIMUM_CONTROLS_BY_LEVEL = {
    RiskLevel.A: ["Good general ventilation"],
    RiskLevel.B: ["Dedicated compounding area", "Powder containment hood or BSC"],
    RiskLevel.C: [
        "Class II Type B2 BSC or containment isolator",
        "Negative pressure room",
        "Closed system drug transfer devices",
    ],
}

# ============================================================================
# NIOSH 2024 List of Hazardous Drugs in Healthcare Settings
# ============================================================================

NIOSH_DRUG_LIST = {
    "azathioprine": (1, ["Carcinogenic (IARC Group 1)"], True),
    "cyclophosphamide": (1, ["Carcinogenic (IARC Group 1)"], True),
    "cisplatin": (1, ["Carcinogenic (IARC Group 2A)"], True),
    "estradiol": (1, ["Reproductive toxicity", "Developmental hazard"], True),
    "anastrozole": (2, ["Reproductive hazard"], False),
    "dutasteride": (2, ["Reproductive hazard"], False),
    "misoprostol": (2, ["Reproductive hazard", "Developmental hazard"], False),
}

# Drugs no longer considered hazardous
NIOSH_REMOVED_DRUGS = {
    "bcg",
    "risperidone",
    "pertuzumab",
    "paliperidone",
    "liraglutide",
    "telavancin",
}

NIOSH_SOURCE_NAME = "NIOSH 2024"
NIOSH_SOURCE_URL = "https://www.cdc.gov/niosh"
NIOSH_SOURCE_CONFIDENCE = 0.5  # rank among sources
NIOSH_RECORD_CONFIDENCE = 0.8  # trust in the published list itself
NIOSH_STATIC_WARNING = "Using static NIOSH 2024 data"

# ============================================================================
# Formulation validation
# ============================================================================

# Rounding slack allowed when ingredient percentages are summed
PERCENTAGE_SUM_TOLERANCE = 0.01
MAX_PERCENTAGE = 100.0

# Physical forms by exposure risk, most hazardous last
PHYSICAL_FORM_SEVERITY = {
    PhysicalForm.SOLID: 0,
    PhysicalForm.LIQUID: 1,
    PhysicalForm.GAS: 2,
    PhysicalForm.POWDER: 3,
}
