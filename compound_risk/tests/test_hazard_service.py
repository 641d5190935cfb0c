"""
Tests for the resilient hazard data service
"""

import asyncio

import pytest

from compound_risk.circuit_breaker import CircuitState
from compound_risk.constants import SAFE_DEFAULT_WARNING
from compound_risk.exceptions import SourceDataNotFoundError, TransientSourceError
from compound_risk.fallback import FallbackOrchestrator
from compound_risk.hazard_service import HazardDataService, normalize_ingredient_name
from compound_risk.models import CacheType, PhysicalForm
from compound_risk.sources import CallableHazardSource

from conftest import StubSource, make_hazard

WEEK = 7 * 24 * 60 * 60


def make_service(sources, cache, stats, safe_defaults, breakers=None, **kwargs):
    orchestrator = FallbackOrchestrator(stats, safe_defaults)
    return HazardDataService(sources, cache, orchestrator, breakers=breakers, **kwargs)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Aspirin", "aspirin"),
        ("  Hydro-Cortisone  (1%) ", "hydro-cortisone 1"),
        ("Benzoyl\tPeroxide", "benzoyl peroxide"),
    ],
)
def test_normalize_ingredient_name(name, expected):
    """Test name normalization for lookups and cache keys"""
    assert normalize_ingredient_name(name) == expected


@pytest.mark.asyncio
async def test_best_source_answers_and_is_cached(cache, stats, safe_defaults):
    """Test that the top-ranked source answers and its record is cached"""
    pubchem = StubSource("pubchem", 0.9)
    niosh = StubSource("static_niosh", 0.5, cache_type=CacheType.NIOSH)
    service = make_service([niosh, pubchem], cache, stats, safe_defaults)

    first = await service.get_hazard_data("Aspirin")
    second = await service.get_hazard_data("ASPIRIN")

    assert first.data_quality.sources[0].name == "pubchem"
    assert second.ingredient_name == "aspirin"
    assert pubchem.calls == ["aspirin"]
    assert niosh.calls == []
    assert cache.get("pubchem:aspirin", CacheType.PUBCHEM) is not None


@pytest.mark.asyncio
async def test_force_refresh_bypasses_cache(cache, stats, safe_defaults):
    """Test that force_refresh refetches from the source"""
    pubchem = StubSource("pubchem", 0.9)
    service = make_service([pubchem], cache, stats, safe_defaults)

    await service.get_hazard_data("aspirin")
    await service.get_hazard_data("aspirin", force_refresh=True)

    assert pubchem.calls == ["aspirin", "aspirin"]


@pytest.mark.asyncio
async def test_falls_back_to_lower_ranked_source(cache, stats, safe_defaults):
    """Test that a failing source hands over to the next one"""
    pubchem = StubSource("pubchem", 0.9, TransientSourceError("timeout", source="pubchem"))
    niosh = StubSource("static_niosh", 0.5, cache_type=CacheType.NIOSH)
    service = make_service([pubchem, niosh], cache, stats, safe_defaults)

    record = await service.get_hazard_data("cisplatin")

    assert record.data_quality.sources[0].name == "static_niosh"
    assert SAFE_DEFAULT_WARNING not in record.data_quality.warnings
    assert stats.get("pubchem").failed_calls == 1
    assert stats.get("static_niosh").successful_calls == 1


@pytest.mark.asyncio
async def test_all_sources_fail_returns_safe_default(cache, stats, safe_defaults):
    """Test the conservative record when nothing answers"""
    sources = [
        StubSource("pubchem", 0.9, TransientSourceError("down")),
        StubSource("static_niosh", 0.5, SourceDataNotFoundError("static_niosh", "mystery")),
    ]
    service = make_service(sources, cache, stats, safe_defaults)

    record = await service.get_hazard_data("Mystery Powder")

    assert record.ingredient_name == "Mystery Powder"
    assert record.niosh.table == 1
    assert record.physical_properties.physical_form == PhysicalForm.POWDER
    assert record.data_quality.confidence == 0.1
    assert record.data_quality.warnings[-1] == SAFE_DEFAULT_WARNING
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_returned_records_are_copies(cache, stats, safe_defaults):
    """Test that annotating a returned record leaves the cached one intact"""
    service = make_service([StubSource("pubchem", 0.9)], cache, stats, safe_defaults)

    first = await service.get_hazard_data("aspirin")
    first.data_quality.warnings.append("annotated by caller")
    second = await service.get_hazard_data("aspirin")

    assert second.data_quality.warnings == []


@pytest.mark.asyncio
async def test_open_breaker_serves_stale_cache(cache, stats, safe_defaults, breakers, clock):
    """Test that cached records stay usable while a source's breaker is open"""
    pubchem = StubSource("pubchem", 0.9, make_hazard(name="aspirin", ghs=["Harmful if swallowed"]))
    service = make_service([pubchem], cache, stats, safe_defaults, breakers=breakers)
    await service.get_hazard_data("aspirin")

    clock.advance(WEEK + 1)
    pubchem.result = TransientSourceError("pubchem down", source="pubchem")
    for _ in range(3):
        stale = await service.get_hazard_data("aspirin")
        assert stale.ghs[0].description == "Harmful if swallowed"

    assert breakers.get("pubchem").state == CircuitState.OPEN

    record = await service.get_hazard_data("aspirin")

    assert record.ghs[0].description == "Harmful if swallowed"
    assert len(pubchem.calls) == 4


@pytest.mark.asyncio
async def test_timeout_falls_back(cache, stats, safe_defaults):
    """Test that a hanging source is abandoned after the configured timeout"""

    async def hang(identifier):
        await asyncio.Event().wait()

    class HangingSource(StubSource):
        async def fetch(self, identifier):
            self.calls.append(identifier)
            return await hang(identifier)

    slow = HangingSource("pubchem", 0.9)
    niosh = StubSource("static_niosh", 0.5, cache_type=CacheType.NIOSH)
    service = make_service([slow, niosh], cache, stats, safe_defaults, timeout=0.01)

    record = await service.get_hazard_data("aspirin")

    assert record.data_quality.sources[0].name == "static_niosh"
    assert stats.get("pubchem").failed_calls == 1


@pytest.mark.asyncio
async def test_corroborated_merges_and_caches(cache, stats, safe_defaults):
    """Test parallel corroboration and caching of the merged record"""
    pubchem = StubSource("pubchem", 0.9, make_hazard(name="drug", ghs=["Harmful if swallowed"], source="pubchem"))
    niosh = StubSource(
        "static_niosh",
        0.5,
        make_hazard(name="drug", table=2, reproductive=True, source="niosh"),
        cache_type=CacheType.NIOSH,
    )
    service = make_service([pubchem, niosh], cache, stats, safe_defaults)

    merged = await service.get_corroborated_hazard_data("Drug")
    again = await service.get_corroborated_hazard_data("drug")

    assert merged.ingredient_name == "Drug"
    assert merged.niosh.table == 2
    assert [g.description for g in merged.ghs] == ["Harmful if swallowed"]
    assert {s.name for s in merged.data_quality.sources} == {"pubchem", "niosh"}
    assert merged.data_quality.confidence == pytest.approx(0.7)
    assert again.niosh.table == 2
    assert pubchem.calls == ["drug"]
    assert niosh.calls == ["drug"]
    assert cache.get("drug", CacheType.ASSESSMENT) is not None


@pytest.mark.asyncio
async def test_corroborated_partial_success_warns(cache, stats, safe_defaults):
    """Test that a partial corroboration carries the unavailability warning"""
    sources = [
        StubSource("pubchem", 0.9),
        StubSource("rxnorm", 0.7, TransientSourceError("down"), cache_type=CacheType.RXNORM),
    ]
    service = make_service(sources, cache, stats, safe_defaults)

    merged = await service.get_corroborated_hazard_data("aspirin")

    assert "Some data sources were unavailable" in merged.data_quality.warnings


@pytest.mark.asyncio
async def test_corroborated_insufficient_returns_safe_default(cache, stats, safe_defaults):
    """Test that too few answers yield the safe default with the percentage warning"""
    sources = [
        StubSource("pubchem", 0.9),
        StubSource("rxnorm", 0.7, TransientSourceError("down"), cache_type=CacheType.RXNORM),
        StubSource("dailymed", 0.6, TransientSourceError("down"), cache_type=CacheType.DAILYMED),
    ]
    service = make_service(sources, cache, stats, safe_defaults)

    record = await service.get_corroborated_hazard_data("aspirin")

    assert record.data_quality.sources[0].name == "safe_default"
    assert record.niosh.table == 1
    assert record.data_quality.warnings[-1] == (
        "Only 33% of data sources available. Manual verification required."
    )
    assert cache.get("aspirin", CacheType.ASSESSMENT) is None


@pytest.mark.asyncio
async def test_get_stats(cache, stats, safe_defaults, breakers):
    """Test the combined statistics snapshot"""
    sources = [StubSource("pubchem", 0.9)]
    service = make_service(sources, cache, stats, safe_defaults, breakers=breakers)
    await service.get_hazard_data("aspirin")

    snapshot = service.get_stats()

    assert snapshot["operations"]["pubchem"]["successful_calls"] == 1
    assert snapshot["cache"]["total_items"] == 1
    assert snapshot["breakers"] == {"pubchem": "closed"}


@pytest.mark.asyncio
async def test_timeouts_open_breaker_and_serve_stale(cache, stats, safe_defaults, breakers, clock):
    """Test that time-outs count as breaker failures while stale data is served"""
    release = asyncio.Event()

    class SlowSource(StubSource):
        async def fetch(self, identifier):
            self.calls.append(identifier)
            if self.result == "hang":
                await release.wait()
            return make_hazard(name=identifier, ghs=["Harmful if swallowed"])

    source = SlowSource("pubchem", 0.9)
    service = make_service(
        [source], cache, stats, safe_defaults, breakers=breakers, timeout=0.01
    )
    await service.get_hazard_data("aspirin")

    clock.advance(WEEK + 1)
    source.result = "hang"
    for _ in range(3):
        record = await service.get_hazard_data("aspirin")
        assert record.ghs[0].description == "Harmful if swallowed"

    assert breakers.get("pubchem").state == CircuitState.OPEN
    assert len(source.calls) == 4


@pytest.mark.asyncio
async def test_unknown_ingredients_leave_breaker_closed(cache, stats, safe_defaults, breakers):
    """Test that "no record" answers never trip a source's breaker"""

    async def fetcher(identifier):
        if identifier == "water":
            return make_hazard(name="water", confidence=0.95)
        return None

    pubchem = CallableHazardSource("pubchem", 0.9, fetcher)
    service = make_service([pubchem], cache, stats, safe_defaults, breakers=breakers)

    for index in range(1, 6):
        record = await service.get_hazard_data(f"zz{index}")
        assert record.data_quality.warnings[-1] == SAFE_DEFAULT_WARNING

    assert breakers.get("pubchem").state == CircuitState.CLOSED

    record = await service.get_hazard_data("water")
    assert record.data_quality.confidence == 0.95
    assert SAFE_DEFAULT_WARNING not in record.data_quality.warnings
