"""
Shared fixtures for the Compound Risk tests
"""

from typing import Callable, List, Optional, Union

import pytest

from compound_risk.circuit_breaker import CircuitBreakerRegistry
from compound_risk.fallback import FallbackOrchestrator
from compound_risk.models import (
    CacheType,
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
from compound_risk.safe_defaults import SafeDefaults
from compound_risk.sources import HazardSource
from compound_risk.stats_tracker import ReliabilityStatsTracker
from compound_risk.utils.cache import HazardCache
from compound_risk.utils.storage import InMemoryCacheStorage


class FakeClock:
    """Manually advanced clock returning epoch seconds"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_hazard(
    name: str = "ingredient",
    table: Optional[int] = None,
    niosh_hazardous: bool = False,
    reproductive: bool = False,
    carcinogenic: bool = False,
    ghs: Optional[List[str]] = None,
    physical_form: PhysicalForm = PhysicalForm.LIQUID,
    confidence: float = 0.9,
    ppe: Optional[List[PPERequirement]] = None,
    controls: Optional[List[str]] = None,
    warnings: Optional[List[str]] = None,
    verification_required: bool = False,
    source: str = "test",
) -> HazardAssessment:
    """Build a hazard record; ``ghs`` holds hazard statement descriptions"""
    niosh = None
    if table is not None or niosh_hazardous or reproductive or carcinogenic:
        niosh = NioshClassification(
            table=table,
            category="test listing",
            is_hazardous=niosh_hazardous,
            has_reproductive_toxicity=reproductive,
            is_carcinogenic=carcinogenic,
        )
    return HazardAssessment(
        ingredient_name=name,
        normalized_name=name.lower(),
        ghs=[
            GHSClassification(code=f"H{300 + i}", category="test", description=description)
            for i, description in enumerate(ghs or [])
        ],
        niosh=niosh,
        physical_properties=PhysicalProperties(physical_form=physical_form),
        safety_info=SafetyInfo(
            ppe_requirements=ppe
            if ppe is not None
            else [PPERequirement(type=PPEType.GLOVES, specification="Nitrile gloves")],
            engineering_controls=controls or [],
        ),
        data_quality=DataQuality(
            sources=[DataSource(name=source)],
            confidence=confidence,
            warnings=warnings or [],
            verification_required=verification_required,
        ),
    )


class StubSource(HazardSource):
    """
    Source returning a fixed record or raising a fixed error

    ``result`` may be a HazardAssessment, an exception instance, or a
    callable taking the identifier and returning either.
    """

    def __init__(
        self,
        name: str,
        confidence: float,
        result: Union[HazardAssessment, Exception, Callable] = None,
        cache_type: CacheType = CacheType.PUBCHEM,
    ):
        super().__init__(name, confidence, cache_type)
        self.result = result
        self.calls: List[str] = []

    async def fetch(self, identifier: str) -> HazardAssessment:
        self.calls.append(identifier)
        result = self.result(identifier) if callable(self.result) else self.result
        if isinstance(result, Exception):
            raise result
        if result is None:
            return make_hazard(name=identifier, source=self.name)
        return result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> InMemoryCacheStorage:
    return InMemoryCacheStorage()


@pytest.fixture
def cache(storage, clock) -> HazardCache:
    return HazardCache(storage=storage, max_size=100, clock=clock)


@pytest.fixture
def stats(clock) -> ReliabilityStatsTracker:
    return ReliabilityStatsTracker(clock=clock)


@pytest.fixture
def safe_defaults() -> SafeDefaults:
    return SafeDefaults()


@pytest.fixture
def breakers(clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(failure_threshold=3, reset_timeout=60.0, clock=clock)


@pytest.fixture
def orchestrator(stats, safe_defaults) -> FallbackOrchestrator:
    return FallbackOrchestrator(stats, safe_defaults)


@pytest.fixture
def hazard_factory() -> Callable[..., HazardAssessment]:
    return make_hazard
