"""
Hazard data sources
Each source turns an ingredient identifier into a normalized HazardAssessment
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import pydantic

from compound_risk.constants import (
    NIOSH_DRUG_LIST,
    NIOSH_RECORD_CONFIDENCE,
    NIOSH_REMOVED_DRUGS,
    NIOSH_SOURCE_CONFIDENCE,
    NIOSH_SOURCE_NAME,
    NIOSH_SOURCE_URL,
    NIOSH_STATIC_WARNING,
)
from compound_risk.exceptions import SourceDataNotFoundError, TransientSourceError
from compound_risk.models import (
    CacheType,
    DataQuality,
    DataSource,
    HazardAssessment,
    NioshClassification,
    PhysicalForm,
    PhysicalProperties,
)
from compound_risk.safety_info import generate_safety_info

logger = logging.getLogger(__name__)

NIOSH_LIST_DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)

RawHazardFetcher = Callable[[str], Awaitable[Any]]


class HazardSource(ABC):
    """
    A named hazard data source with a fixed rank

    Attributes:
        name: Source name, used for fallback ordering, stats and breakers
        confidence: Trust weight in [0, 1]
        cache_type: Cache family the source's records are stored under
    """

    def __init__(self, name: str, confidence: float, cache_type: CacheType):
        self.name = name
        self.confidence = confidence
        self.cache_type = cache_type

    @abstractmethod
    async def fetch(self, identifier: str) -> HazardAssessment:
        """
        Fetch the hazard record of one ingredient

        Raises:
            SourceDataNotFoundError: The source has no record for identifier
            TransientSourceError: Network failure or malformed response
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, confidence={self.confidence})"


class CallableHazardSource(HazardSource):
    """
    Adapts an injected fetcher to the source interface

    The fetcher may return a HazardAssessment or a dict of the same shape;
    None means the source holds no record for the identifier.
    """

    def __init__(
        self,
        name: str,
        confidence: float,
        fetcher: RawHazardFetcher,
        cache_type: CacheType = CacheType.PUBCHEM,
    ):
        super().__init__(name, confidence, cache_type)
        self._fetcher = fetcher

    async def fetch(self, identifier: str) -> HazardAssessment:
        raw = await self._fetcher(identifier)

        if raw is None:
            raise SourceDataNotFoundError(self.name, identifier)
        if isinstance(raw, HazardAssessment):
            return raw
        if not isinstance(raw, dict):
            raise TransientSourceError(
                f"Unexpected {type(raw).__name__} response for '{identifier}'",
                source=self.name,
            )

        try:
            return HazardAssessment.model_validate(raw)
        except pydantic.ValidationError as e:
            raise TransientSourceError(
                f"Malformed hazard record for '{identifier}'",
                source=self.name,
                details={"errors": e.error_count()},
            ) from e


class StaticNioshSource(HazardSource):
    """Bundled NIOSH 2024 hazardous drug list"""

    def __init__(
        self,
        name: str = "static_niosh",
        confidence: float = NIOSH_SOURCE_CONFIDENCE,
    ):
        super().__init__(name, confidence, CacheType.NIOSH)

    def lookup(self, identifier: str) -> Optional[Tuple[int, List[str], bool]]:
        """
        Find the NIOSH listing of a drug

        Removed drugs never match. An exact name match wins; otherwise the
        first listed drug whose name contains, or is contained in, the
        identifier.

        Returns:
            (table, hazard types, requires special handling) or None
        """
        name = identifier.lower().strip()
        if not name:
            return None
        if any(removed in name for removed in NIOSH_REMOVED_DRUGS):
            return None
        if name in NIOSH_DRUG_LIST:
            return NIOSH_DRUG_LIST[name]
        for drug, listing in NIOSH_DRUG_LIST.items():
            if drug in name or name in drug:
                return listing
        return None

    async def fetch(self, identifier: str) -> HazardAssessment:
        listing = self.lookup(identifier)
        if listing is None:
            raise SourceDataNotFoundError(self.name, identifier)

        table, hazard_types, requires_special_handling = listing
        niosh = NioshClassification(
            table=table,
            category=", ".join(hazard_types),
            is_hazardous=requires_special_handling,
            has_reproductive_toxicity=any("reproductive" in t.lower() for t in hazard_types),
            is_carcinogenic=any("carcinogen" in t.lower() for t in hazard_types),
        )
        logger.debug(f"NIOSH Table {table} listing found for {identifier}")

        return HazardAssessment(
            ingredient_name=identifier,
            normalized_name=identifier,
            niosh=niosh,
            # No physical data in the list; assume the most hazardous form
            physical_properties=PhysicalProperties(physical_form=PhysicalForm.POWDER),
            safety_info=generate_safety_info([], niosh, PhysicalForm.POWDER),
            data_quality=DataQuality(
                sources=[DataSource(name=NIOSH_SOURCE_NAME, url=NIOSH_SOURCE_URL)],
                confidence=NIOSH_RECORD_CONFIDENCE,
                last_updated=NIOSH_LIST_DATE,
                warnings=[NIOSH_STATIC_WARNING],
            ),
        )
