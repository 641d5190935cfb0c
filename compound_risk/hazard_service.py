"""
Hazard data service
Combines ranked sources, the TTL cache, circuit breakers and fallback
orchestration into the hazard lookup used by the classification engine
"""

import asyncio
import logging
import re
from typing import List, Optional

from compound_risk.circuit_breaker import CircuitBreakerRegistry
from compound_risk.classification import HazardProvider
from compound_risk.exceptions import SourceTimeoutError
from compound_risk.fallback import MULTIPLE_SOURCES, FallbackOperation, FallbackOrchestrator
from compound_risk.models import CacheType, HazardAssessment
from compound_risk.safety_info import merge_hazard_records
from compound_risk.sources import HazardSource
from compound_risk.types import ServiceStatsDict
from compound_risk.utils.cache import HazardCache

logger = logging.getLogger(__name__)


def normalize_ingredient_name(name: str) -> str:
    """
    Normalize an ingredient name for lookups and cache keys

    Lowercases, drops characters other than word characters, whitespace and
    hyphens, and collapses whitespace.
    """
    normalized = re.sub(r"[^\w\s\-]", "", name.lower().strip())
    return re.sub(r"\s+", " ", normalized).strip()


class HazardDataService(HazardProvider):
    """
    Resilient hazard lookups over several sources

    Args:
        sources: Hazard data sources
        cache: Cache for per-source records and corroborated results
        orchestrator: Fallback orchestrator (also owns the safe defaults)
        breakers: Optional breaker registry guarding each source's fetch
        timeout: Optional per-source time limit in seconds; a time-out
            counts as a breaker failure and falls back to stale cache
        min_success_rate: Required fraction of sources for corroboration
    """

    def __init__(
        self,
        sources: List[HazardSource],
        cache: HazardCache,
        orchestrator: FallbackOrchestrator,
        breakers: Optional[CircuitBreakerRegistry] = None,
        timeout: Optional[float] = None,
        min_success_rate: float = 0.5,
    ):
        self.sources = sources
        self.cache = cache
        self.orchestrator = orchestrator
        self.breakers = breakers
        self.timeout = timeout
        self.min_success_rate = min_success_rate

    async def get_hazard_data(
        self, name: str, force_refresh: bool = False
    ) -> HazardAssessment:
        """
        Get the hazard record of the best available source

        Args:
            name: Ingredient name
            force_refresh: Bypass cached source records

        Returns:
            HazardAssessment; the safe default named after the ingredient if
            every source failed
        """
        normalized = normalize_ingredient_name(name)
        result = await self.orchestrator.execute_with_fallback(
            self._operations(normalized, force_refresh),
            f"Hazard assessment for {name}",
            default_subject=name,
        )

        assessment = result.data
        if result.warning and result.warning not in assessment.data_quality.warnings:
            assessment.data_quality.warnings.append(result.warning)

        logger.info(
            f"Hazard data for {name} from {result.source} "
            f"(confidence={assessment.data_quality.confidence})"
        )
        return assessment

    async def get_corroborated_hazard_data(
        self, name: str, force_refresh: bool = False
    ) -> HazardAssessment:
        """
        Query every source concurrently and merge the answers

        Args:
            name: Ingredient name
            force_refresh: Bypass cached source records and merged results

        Returns:
            Merged HazardAssessment, or the safe default carrying the
            percentage warning when too few sources answered
        """
        normalized = normalize_ingredient_name(name)

        if not force_refresh:
            cached = self.cache.get(normalized, CacheType.ASSESSMENT)
            if cached is not None:
                return HazardAssessment.model_validate(cached).model_copy(deep=True)

        result = await self.orchestrator.execute_parallel_with_fallback(
            self._operations(normalized, force_refresh),
            f"Corroborated hazard assessment for {name}",
            min_success_rate=self.min_success_rate,
        )

        if not result.success:
            assessment = self.orchestrator.safe_defaults.hazard_assessment(name)
            assessment.data_quality.warnings.append(result.warning)
            return assessment

        assessment = merge_hazard_records(name, result.data, result.confidence)
        if result.warning:
            assessment.data_quality.warnings.append(result.warning)
        self.cache.set(normalized, assessment, CacheType.ASSESSMENT, source=MULTIPLE_SOURCES)
        return assessment

    def get_stats(self) -> ServiceStatsDict:
        breakers = self.breakers.states() if self.breakers is not None else {}
        return {
            "operations": {
                name: stats.model_dump(mode="json")
                for name, stats in self.orchestrator.get_operation_stats().items()
            },
            "cache": self.cache.get_stats().model_dump(mode="json"),
            "breakers": {name: state.value for name, state in breakers.items()},
        }

    def _operations(
        self, normalized: str, force_refresh: bool
    ) -> List[FallbackOperation[HazardAssessment]]:
        return [self._operation(source, normalized, force_refresh) for source in self.sources]

    def _operation(
        self, source: HazardSource, normalized: str, force_refresh: bool
    ) -> FallbackOperation[HazardAssessment]:
        async def fetch() -> HazardAssessment:
            if self.timeout is None:
                return await source.fetch(normalized)
            try:
                return await asyncio.wait_for(source.fetch(normalized), self.timeout)
            except asyncio.TimeoutError as e:
                raise SourceTimeoutError(source.name, self.timeout) from e

        if self.breakers is not None:
            fetch = self.breakers.get(source.name).wrap(fetch)

        async def cached_fetch() -> HazardAssessment:
            data = await self.cache.get_or_fetch(
                f"{source.name}:{normalized}",
                fetch,
                source.cache_type,
                force_refresh=force_refresh,
                source=source.name,
            )
            # Callers may annotate the record; never hand out the cached object
            return HazardAssessment.model_validate(data).model_copy(deep=True)

        return FallbackOperation(source.name, source.confidence, cached_fetch)
