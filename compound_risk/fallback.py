"""
Fallback orchestration across ranked hazard data sources
Runs alternatives in confidence order or in parallel and degrades to a
conservative safe default instead of failing
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

from compound_risk.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from compound_risk.constants import (
    PARTIAL_SOURCES_WARNING,
    SAFE_DEFAULT_CONFIDENCE,
    SAFE_DEFAULT_SOURCE,
    SAFE_DEFAULT_WARNING,
)
from compound_risk.exceptions import InsufficientDataError, SourceTimeoutError
from compound_risk.models import OperationStats
from compound_risk.safe_defaults import SafeDefaults
from compound_risk.stats_tracker import ReliabilityStatsTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")

INSUFFICIENT_SOURCES = "insufficient_sources"
MULTIPLE_SOURCES = "multiple_sources"


@dataclass
class FallbackOperation(Generic[T]):
    """
    One named, ranked alternative for producing a value

    Attributes:
        name: Operation name, also the key for stats and breakers
        confidence: Trust weight in [0, 1]; higher runs first
        operation: Zero-argument coroutine function
    """

    name: str
    confidence: float
    operation: Callable[[], Awaitable[T]]


@dataclass
class FallbackResult(Generic[T]):
    """
    Outcome of a fallback run

    When ``success`` is False, ``data`` still holds a usable conservative
    default and ``warning`` explains the degradation.
    """

    success: bool
    data: T
    source: str
    confidence: float
    errors: List[Exception] = field(default_factory=list)
    warning: Optional[str] = None


class FallbackOrchestrator:
    """
    Executes ranked alternatives and records every attempt

    Args:
        stats: Tracker receiving one record per attempt
        safe_defaults: Resolver of the conservative default per context
        breakers: Optional registry; when given each operation runs behind
            the breaker registered under its name
    """

    def __init__(
        self,
        stats: ReliabilityStatsTracker,
        safe_defaults: SafeDefaults,
        breakers: Optional[CircuitBreakerRegistry] = None,
    ):
        self.stats = stats
        self.safe_defaults = safe_defaults
        self.breakers = breakers

    async def execute_with_fallback(
        self,
        operations: Sequence[FallbackOperation[T]],
        context: str,
        timeout: Optional[float] = None,
        default_subject: Optional[str] = None,
    ) -> FallbackResult[T]:
        """
        Try operations one at a time in descending confidence order

        Args:
            operations: Alternatives to try
            context: Free-text description, also selects the safe default
            timeout: Optional per-attempt time limit in seconds
            default_subject: Name to put on a record-shaped safe default

        Returns:
            Result of the first success, or the safe default if all fail
        """
        ordered = sorted(operations, key=lambda op: op.confidence, reverse=True)
        errors: List[Exception] = []

        for op in ordered:
            try:
                data = await self._run_recorded(op, timeout)
            except Exception as e:
                errors.append(e)
                logger.warning(f"Operation {op.name} failed for {context}: {e}")
                continue

            logger.debug(f"Operation {op.name} succeeded for {context}")
            return FallbackResult(
                success=True,
                data=data,
                source=op.name,
                confidence=op.confidence,
                errors=errors,
            )

        logger.warning(f"All operations failed for {context}, using safe default")
        return FallbackResult(
            success=False,
            data=self.safe_defaults.for_context(context, default_subject),
            source=SAFE_DEFAULT_SOURCE,
            confidence=SAFE_DEFAULT_CONFIDENCE,
            errors=errors,
            warning=SAFE_DEFAULT_WARNING,
        )

    async def execute_parallel_with_fallback(
        self,
        operations: Sequence[FallbackOperation[T]],
        context: str,
        min_success_rate: float = 0.5,
        timeout: Optional[float] = None,
    ) -> FallbackResult[List[T]]:
        """
        Run all operations concurrently and require a minimum success rate

        Args:
            operations: Alternatives to run
            context: Free-text description for logs and errors
            min_success_rate: Fraction of operations that must succeed
            timeout: Optional per-attempt time limit in seconds

        Returns:
            Successful values in input order with their mean confidence, or
            an empty failed result when too few operations succeeded
        """
        outcomes = await asyncio.gather(
            *(self._run_recorded(op, timeout) for op in operations),
            return_exceptions=True,
        )

        values: List[T] = []
        confidences: List[float] = []
        errors: List[Exception] = []
        for op, outcome in zip(operations, outcomes):
            if isinstance(outcome, Exception):
                errors.append(outcome)
                logger.warning(f"Parallel operation {op.name} failed for {context}: {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                values.append(outcome)
                confidences.append(op.confidence)

        success_rate = len(values) / len(operations) if operations else 0.0

        if operations and success_rate >= min_success_rate:
            return FallbackResult(
                success=True,
                data=values,
                source=MULTIPLE_SOURCES,
                confidence=sum(confidences) / len(confidences) if confidences else 0.0,
                errors=errors,
                warning=PARTIAL_SOURCES_WARNING if errors else None,
            )

        errors.append(InsufficientDataError(context, success_rate, min_success_rate))
        logger.warning(
            f"Only {round(success_rate * 100)}% of sources succeeded for {context}"
        )
        return FallbackResult(
            success=False,
            data=[],
            source=INSUFFICIENT_SOURCES,
            confidence=0.0,
            errors=errors,
            warning=(
                f"Only {round(success_rate * 100)}% of data sources available. "
                "Manual verification required."
            ),
        )

    def create_circuit_breaker(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
    ) -> Callable[[], Awaitable[T]]:
        """Guard a single operation with its own breaker"""
        breaker = CircuitBreaker(
            name, failure_threshold=failure_threshold, reset_timeout=reset_timeout
        )
        return breaker.wrap(operation)

    def is_operation_reliable(self, name: str, threshold: float = 0.8) -> bool:
        return self.stats.is_operation_reliable(name, threshold)

    def get_operation_stats(self) -> Dict[str, OperationStats]:
        return self.stats.get_operation_stats()

    async def _run_recorded(self, op: FallbackOperation[T], timeout: Optional[float]) -> T:
        start = time.perf_counter()
        try:
            result = await self._run(op, timeout)
        except Exception:
            self.stats.record(op.name, False, time.perf_counter() - start)
            raise
        self.stats.record(op.name, True, time.perf_counter() - start)
        return result

    async def _run(self, op: FallbackOperation[T], timeout: Optional[float]) -> T:
        async def bounded() -> T:
            if timeout is None:
                return await op.operation()
            try:
                return await asyncio.wait_for(op.operation(), timeout)
            except asyncio.TimeoutError as e:
                raise SourceTimeoutError(op.name, timeout) from e

        if self.breakers is None:
            return await bounded()
        return await self.breakers.get(op.name).call(bounded)


def with_fallback(
    orchestrator: FallbackOrchestrator,
    sources: Sequence[Tuple[str, float, Callable[..., Awaitable[Any]]]],
    context: str,
    timeout: Optional[float] = None,
) -> Callable[..., Awaitable[Any]]:
    """
    Combine several sources into one coroutine function with fallback

    Args:
        orchestrator: Orchestrator running the sources
        sources: (name, confidence, coroutine function) triples; every
            function receives the caller's arguments
        context: Fallback context, also selects the safe default
        timeout: Optional per-attempt time limit in seconds

    Returns:
        Coroutine function returning only the data of the fallback result
    """

    async def call(*args: Any, **kwargs: Any) -> Any:
        operations = [
            FallbackOperation(name, confidence, functools.partial(fn, *args, **kwargs))
            for name, confidence, fn in sources
        ]
        result = await orchestrator.execute_with_fallback(operations, context, timeout=timeout)
        if result.warning:
            logger.warning(f"{context}: {result.warning}")
        return result.data

    return call
