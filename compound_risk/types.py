"""
Type definitions for the Compound Risk service
Provides TypedDict and other type hints for structured data
"""

from typing import TypedDict, List, Dict, Any, Optional


class CacheEntryDict(TypedDict):
    """
    Typed dictionary for one persisted cache entry

    This is the on-disk shape of a snapshot record; ``type`` holds the
    CacheType value.
    """
    data: Any
    timestamp: float
    type: str
    source: Optional[str]
    hits: int


class ServiceStatsDict(TypedDict):
    """
    Typed dictionary for hazard data service statistics
    """
    operations: Dict[str, Any]
    cache: Dict[str, Any]
    breakers: Dict[str, str]


class ValidationSummaryDict(TypedDict, total=False):
    """
    Typed dictionary for validation summary

    All fields are optional to match the actual validation response structure.
    """
    valid: bool
    error_count: int
    errors_by_code: Dict[str, int]
    errors_by_ingredient: Dict[str, int]
    errors: List[Dict[str, Any]]
