"""
Tests for fallback orchestration
"""

import asyncio

import pytest

from compound_risk.circuit_breaker import CircuitState
from compound_risk.constants import SAFE_DEFAULT_WARNING
from compound_risk.exceptions import (
    CircuitOpenError,
    InsufficientDataError,
    SourceTimeoutError,
    TransientSourceError,
)
from compound_risk.fallback import FallbackOperation, FallbackOrchestrator, with_fallback
from compound_risk.models import HazardAssessment, PhysicalProperties, RiskLevel


def succeed(value, log=None, name=None):
    async def run():
        if log is not None:
            log.append(name)
        return value

    return run


def fail(log=None, name=None):
    async def run():
        if log is not None:
            log.append(name)
        raise TransientSourceError(f"{name} unavailable", source=name)

    return run


async def hang():
    await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_tries_in_descending_confidence(orchestrator):
    """Test that the highest-confidence success wins and lower ones are skipped"""
    log = []
    operations = [
        FallbackOperation("static_niosh", 0.5, succeed("niosh", log, "static_niosh")),
        FallbackOperation("integrated", 0.9, fail(log, "integrated")),
        FallbackOperation("pubchem_only", 0.7, succeed("pubchem", log, "pubchem_only")),
    ]

    result = await orchestrator.execute_with_fallback(operations, "hazard_assessment for aspirin")

    assert log == ["integrated", "pubchem_only"]
    assert result.success is True
    assert result.data == "pubchem"
    assert result.source == "pubchem_only"
    assert result.confidence == 0.7
    assert result.warning is None


@pytest.mark.asyncio
async def test_equal_confidence_keeps_input_order(orchestrator):
    """Test that the sort is stable"""
    log = []
    operations = [
        FallbackOperation("first", 0.5, fail(log, "first")),
        FallbackOperation("second", 0.5, fail(log, "second")),
    ]

    await orchestrator.execute_with_fallback(operations, "hazard_assessment")

    assert log == ["first", "second"]


@pytest.mark.asyncio
async def test_all_fail_returns_safe_default(orchestrator):
    """Test that total failure yields the conservative default, never an error"""
    operations = [
        FallbackOperation("pubchem", 0.8, fail(name="pubchem")),
        FallbackOperation("rxnorm", 0.7, fail(name="rxnorm")),
    ]

    result = await orchestrator.execute_with_fallback(
        operations, "Hazard assessment for mystery powder", default_subject="mystery powder"
    )

    assert result.success is False
    assert result.source == "safe_default"
    assert result.confidence == 0.1
    assert result.warning == SAFE_DEFAULT_WARNING
    assert len(result.errors) == 2
    assert isinstance(result.data, HazardAssessment)
    assert result.data.ingredient_name == "mystery powder"
    assert result.data.niosh.table == 1


@pytest.mark.asyncio
async def test_empty_operations_return_safe_default(orchestrator):
    """Test the degenerate case with nothing to try"""
    result = await orchestrator.execute_with_fallback([], "risk_level")

    assert result.success is False
    assert result.data == RiskLevel.C


@pytest.mark.asyncio
async def test_safe_default_follows_context(orchestrator):
    """Test that the default is picked from the context text"""
    operations = [FallbackOperation("props", 0.9, fail(name="props"))]

    result = await orchestrator.execute_with_fallback(operations, "physical_properties lookup")

    assert isinstance(result.data, PhysicalProperties)


@pytest.mark.asyncio
async def test_every_attempt_is_recorded(orchestrator, stats):
    """Test that failures and the final success each produce one record"""
    operations = [
        FallbackOperation("a", 0.9, fail(name="a")),
        FallbackOperation("b", 0.8, succeed("b")),
        FallbackOperation("c", 0.7, succeed("c")),
    ]

    await orchestrator.execute_with_fallback(operations, "hazard_assessment")

    recorded = orchestrator.get_operation_stats()
    assert recorded["a"].failed_calls == 1
    assert recorded["b"].successful_calls == 1
    assert "c" not in recorded


@pytest.mark.asyncio
async def test_timeout_becomes_source_timeout(orchestrator, stats):
    """Test that a slow attempt is abandoned and the next one is tried"""
    operations = [
        FallbackOperation("slow", 0.9, hang),
        FallbackOperation("fast", 0.5, succeed("fast")),
    ]

    result = await orchestrator.execute_with_fallback(
        operations, "hazard_assessment", timeout=0.01
    )

    assert result.source == "fast"
    assert isinstance(result.errors[0], SourceTimeoutError)
    assert result.errors[0].timeout == 0.01
    assert stats.get("slow").failed_calls == 1


@pytest.mark.asyncio
async def test_breaker_registry_guards_operations(stats, safe_defaults, breakers):
    """Test that repeated failures open the operation's breaker"""
    orchestrator = FallbackOrchestrator(stats, safe_defaults, breakers=breakers)
    log = []
    operations = [FallbackOperation("pubchem", 0.9, fail(log, "pubchem"))]

    for _ in range(4):
        await orchestrator.execute_with_fallback(operations, "hazard_assessment")

    # Threshold of 3: the fourth run is rejected without calling the source
    assert log == ["pubchem"] * 3
    assert breakers.get("pubchem").state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_timeouts_count_as_breaker_failures(stats, safe_defaults, breakers):
    """Test that time-outs feed the breaker"""
    orchestrator = FallbackOrchestrator(stats, safe_defaults, breakers=breakers)
    operations = [FallbackOperation("slow", 0.9, hang)]

    for _ in range(3):
        await orchestrator.execute_with_fallback(operations, "hazard_assessment", timeout=0.01)

    result = await orchestrator.execute_with_fallback(operations, "hazard_assessment", timeout=0.01)

    assert breakers.get("slow").state == CircuitState.OPEN
    assert isinstance(result.errors[0], CircuitOpenError)


@pytest.mark.asyncio
async def test_parallel_success_above_min_rate(orchestrator):
    """Test a partial parallel success"""
    operations = [
        FallbackOperation("a", 0.9, succeed("A")),
        FallbackOperation("b", 0.8, fail(name="b")),
        FallbackOperation("c", 0.5, succeed("C")),
    ]

    result = await orchestrator.execute_parallel_with_fallback(operations, "hazard_assessment")

    assert result.success is True
    assert result.data == ["A", "C"]
    assert result.source == "multiple_sources"
    assert result.confidence == pytest.approx(0.7)
    assert result.warning == "Some data sources were unavailable"


@pytest.mark.asyncio
async def test_parallel_full_success_has_no_warning(orchestrator):
    """Test a complete parallel success"""
    operations = [
        FallbackOperation("a", 0.6, succeed(1)),
        FallbackOperation("b", 0.8, succeed(2)),
    ]

    result = await orchestrator.execute_parallel_with_fallback(operations, "hazard_assessment")

    assert result.data == [1, 2]
    assert result.warning is None


@pytest.mark.asyncio
async def test_parallel_below_min_rate(orchestrator):
    """Test that too few successes yield an empty insufficient result"""
    operations = [
        FallbackOperation("a", 0.9, succeed("A")),
        FallbackOperation("b", 0.8, fail(name="b")),
        FallbackOperation("c", 0.7, fail(name="c")),
    ]

    result = await orchestrator.execute_parallel_with_fallback(
        operations, "hazard_assessment", min_success_rate=0.5
    )

    assert result.success is False
    assert result.data == []
    assert result.source == "insufficient_sources"
    assert result.confidence == 0
    assert result.warning == (
        "Only 33% of data sources available. Manual verification required."
    )
    assert any(isinstance(e, InsufficientDataError) for e in result.errors)


@pytest.mark.asyncio
async def test_parallel_runs_concurrently(orchestrator):
    """Test that parallel operations overlap in time"""
    started = []
    release = asyncio.Event()

    def waiter(name):
        async def run():
            started.append(name)
            await release.wait()
            return name

        return run

    operations = [FallbackOperation(n, 0.5, waiter(n)) for n in ("a", "b")]
    task = asyncio.ensure_future(
        orchestrator.execute_parallel_with_fallback(operations, "hazard_assessment")
    )
    await asyncio.sleep(0.01)

    assert started == ["a", "b"]
    release.set()
    assert (await task).data == ["a", "b"]


def test_create_circuit_breaker_wraps_operation(orchestrator):
    """Test ad-hoc breaker creation"""
    calls = []

    async def flaky():
        calls.append(1)
        raise TransientSourceError("down")

    guarded = orchestrator.create_circuit_breaker(flaky, "flaky", failure_threshold=1)

    async def scenario():
        with pytest.raises(TransientSourceError):
            await guarded()
        with pytest.raises(CircuitOpenError):
            await guarded()

    asyncio.run(scenario())
    assert calls == [1]


def test_is_operation_reliable_delegates(orchestrator, stats):
    """Test reliability delegation to the tracker"""
    for _ in range(10):
        stats.record("pubchem", True, 0.1)

    assert orchestrator.is_operation_reliable("pubchem") is True
    assert orchestrator.is_operation_reliable("pubchem", threshold=1.0) is True


@pytest.mark.asyncio
async def test_with_fallback_returns_data(orchestrator):
    """Test the higher-order wrapper passes arguments to every source"""
    seen = []

    async def primary(name):
        seen.append(("primary", name))
        raise TransientSourceError("primary down")

    async def secondary(name):
        seen.append(("secondary", name))
        return f"record for {name}"

    lookup = with_fallback(
        orchestrator,
        [("primary", 0.9, primary), ("secondary", 0.6, secondary)],
        "hazard_assessment",
    )

    assert await lookup("aspirin") == "record for aspirin"
    assert seen == [("primary", "aspirin"), ("secondary", "aspirin")]


@pytest.mark.asyncio
async def test_with_fallback_returns_safe_default_data(orchestrator):
    """Test that the wrapper hands back the safe default on total failure"""

    async def broken(name):
        raise TransientSourceError("down")

    lookup = with_fallback(orchestrator, [("broken", 0.9, broken)], "ppe_requirements")

    ppe = await lookup("aspirin")

    assert {p.type.value for p in ppe} >= {"respirator", "gloves", "gown", "eyewear"}
