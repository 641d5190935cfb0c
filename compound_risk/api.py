"""
FastAPI application and endpoints for the Compound Risk service
Exposes compound assessment, hazard lookup and reliability observability
"""

# Standard library imports
import logging
import traceback
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

# Third-party imports
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Local application imports
from compound_risk.circuit_breaker import CircuitBreakerRegistry, CircuitState
from compound_risk.classification import RiskClassificationEngine
from compound_risk.config import Settings, get_settings
from compound_risk.exceptions import AssessmentError, FormulationValidationError, SourceError
from compound_risk.fallback import FallbackOrchestrator
from compound_risk.hazard_service import HazardDataService
from compound_risk.models import (
    CacheClearResponse,
    CacheStats,
    CacheType,
    CompoundFormulation,
    HazardAssessment,
    OperationStats,
    ReliabilityResponse,
    RiskAssessment,
)
from compound_risk.safe_defaults import SafeDefaults
from compound_risk.sources import HazardSource, StaticNioshSource
from compound_risk.stats_tracker import ReliabilityStatsTracker
from compound_risk.utils.cache import HazardCache
from compound_risk.utils.logging_config import REQUEST_ID_HEADER, set_request_id
from compound_risk.utils.storage import create_storage
from compound_risk.validation import get_validation_summary

logger = logging.getLogger(__name__)

API_TITLE = "Compound Risk API"
API_VERSION = "1.0.0"


@dataclass
class Services:
    """Explicitly constructed service graph shared by all requests"""

    settings: Settings
    cache: HazardCache
    breakers: CircuitBreakerRegistry
    stats: ReliabilityStatsTracker
    safe_defaults: SafeDefaults
    orchestrator: FallbackOrchestrator
    hazard_service: HazardDataService
    engine: RiskClassificationEngine


def build_services(
    settings: Settings, sources: Optional[List[HazardSource]] = None
) -> Services:
    """
    Build the service graph from settings

    Args:
        settings: Application settings
        sources: Hazard data sources (default: the bundled NIOSH list)

    Returns:
        Services container
    """
    cache = HazardCache(
        storage=create_storage(
            settings.cache_storage_dir,
            settings.cache_storage_key,
            max_bytes=settings.cache_storage_max_bytes,
        ),
        max_size=settings.cache_max_size,
        cleanup_interval=settings.cache_cleanup_interval_seconds,
    )
    breakers = CircuitBreakerRegistry(
        failure_threshold=settings.breaker_failure_threshold,
        reset_timeout=settings.breaker_reset_timeout_seconds,
    )
    stats = ReliabilityStatsTracker(
        min_calls=settings.reliability_min_calls,
        recent_failure_window=settings.reliability_recent_failure_seconds,
    )
    safe_defaults = SafeDefaults()
    # Breakers wrap source fetches inside the cache, not the orchestrator
    orchestrator = FallbackOrchestrator(stats, safe_defaults)
    hazard_service = HazardDataService(
        sources if sources is not None else [StaticNioshSource()],
        cache,
        orchestrator,
        breakers=breakers,
        timeout=settings.source_timeout_seconds,
        min_success_rate=settings.parallel_min_success_rate,
    )
    engine = RiskClassificationEngine(
        hazard_service,
        safe_defaults,
        large_batch_threshold=settings.large_batch_threshold,
        max_ingredients=settings.max_ingredients,
    )
    return Services(
        settings=settings,
        cache=cache,
        breakers=breakers,
        stats=stats,
        safe_defaults=safe_defaults,
        orchestrator=orchestrator,
        hazard_service=hazard_service,
        engine=engine,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def add_debug_info(error_dict: Dict[str, Any], debug: bool) -> Dict[str, Any]:
    """
    Add debug information (traceback) to error dict if DEBUG mode is enabled

    Args:
        error_dict: Error dictionary to add debug info to
        debug: Whether debug mode is enabled

    Returns:
        Modified error dictionary with debug info if enabled
    """
    if debug and "traceback" not in error_dict.get("details", {}):
        error_dict.setdefault("details", {})["traceback"] = traceback.format_exc()
    return error_dict


# ============================================================================
# Endpoints
# ============================================================================

router = APIRouter()


@router.get("/")
def read_root():
    """Root endpoint with API information"""
    logger.info("Root endpoint accessed")
    return {
        "message": API_TITLE,
        "version": API_VERSION,
        "endpoints": {
            "assessments": "/assessments",
            "hazards": "/hazards/{ingredient}",
            "health": "/health",
            "cache_stats": "/cache/stats",
            "cache_clear": "/cache",
            "operation_stats": "/stats/operations",
            "operation_reliability": "/stats/operations/{name}/reliability",
            "breakers": "/stats/breakers",
        },
    }


@router.get("/health")
def health_check(services: Services = Depends(get_services)):
    """Health check endpoint"""
    logger.debug("Health check requested")
    open_breakers = [
        name
        for name, state in services.breakers.states().items()
        if state != CircuitState.CLOSED
    ]
    return {
        "status": "degraded" if open_breakers else "healthy",
        "open_breakers": open_breakers,
        "cached_items": len(services.cache),
    }


@router.post("/assessments", response_model=RiskAssessment)
async def assess_compound(
    compound: CompoundFormulation, services: Services = Depends(get_services)
):
    """
    Assess the NAPRA risk level of a compound formulation

    Ingredients whose hazard data cannot be retrieved are assessed with
    conservative defaults; the response is never less protective than the
    available data supports.
    """
    logger.info(f"Assessment requested for {compound.name}")
    return await services.engine.assess_compound(compound)


@router.get("/hazards/{ingredient}", response_model=HazardAssessment)
async def get_hazard(
    ingredient: str,
    corroborate: bool = Query(False, description="Query all sources and merge"),
    force_refresh: bool = Query(False, description="Bypass cached records"),
    services: Services = Depends(get_services),
):
    """Get hazard data for a single ingredient"""
    if not ingredient.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Ingredient name must not be blank",
        )
    if corroborate:
        return await services.hazard_service.get_corroborated_hazard_data(
            ingredient, force_refresh=force_refresh
        )
    return await services.hazard_service.get_hazard_data(
        ingredient, force_refresh=force_refresh
    )


@router.get("/cache/stats", response_model=CacheStats)
def cache_stats(services: Services = Depends(get_services)):
    """Get cache statistics"""
    logger.debug("Cache stats requested")
    return services.cache.get_stats()


@router.delete("/cache", response_model=CacheClearResponse)
def clear_cache(
    type: Optional[CacheType] = Query(None, description="Cache type to clear; all if omitted"),
    services: Services = Depends(get_services),
):
    """Invalidate cached hazard data"""
    removed = services.cache.clear(type)
    logger.info(f"Cache cleared via API ({type.value if type else 'all'}): {removed} entries")
    return CacheClearResponse(
        cleared=type.value if type else "all",
        remaining_items=len(services.cache),
    )


@router.get("/stats/operations", response_model=Dict[str, OperationStats])
def operation_stats(services: Services = Depends(get_services)):
    """Get reliability statistics of every source operation"""
    return services.orchestrator.get_operation_stats()


@router.get("/stats/operations/{name}/reliability", response_model=ReliabilityResponse)
def operation_reliability(
    name: str,
    threshold: Optional[float] = Query(None, ge=0.0, le=1.0),
    services: Services = Depends(get_services),
):
    """Check whether a source operation is currently reliable"""
    if threshold is None:
        threshold = services.settings.reliability_threshold
    return ReliabilityResponse(
        operation=name,
        reliable=services.orchestrator.is_operation_reliable(name, threshold),
        threshold=threshold,
        stats=services.stats.get(name),
    )


@router.get("/stats/breakers", response_model=Dict[str, CircuitState])
def breaker_states(services: Services = Depends(get_services)):
    """Get the state of every circuit breaker"""
    return services.breakers.states()


# ============================================================================
# Application factory
# ============================================================================


def _register_error_handlers(app: FastAPI, debug: bool) -> None:
    @app.exception_handler(FormulationValidationError)
    async def formulation_error_handler(request: Request, exc: FormulationValidationError):
        """Handle rejected formulations with a validation summary"""
        logger.warning(f"Formulation rejected: {exc.message}", extra={"code": exc.code})
        error_dict = exc.to_dict()
        error_dict["details"] = get_validation_summary(exc.errors)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_dict,
        )

    @app.exception_handler(SourceError)
    async def source_error_handler(request: Request, exc: SourceError):
        """Handle source failures that escaped the fallback layer"""
        logger.error(f"Source error: {exc.message}", extra={"code": exc.code})
        error_dict = add_debug_info(exc.to_dict(), debug)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error_dict,
        )

    @app.exception_handler(AssessmentError)
    async def assessment_error_handler(request: Request, exc: AssessmentError):
        """Handle service errors with structured format"""
        logger.error(f"Assessment error: {exc.message}", extra={"code": exc.code})
        error_dict = add_debug_info(exc.to_dict(), debug)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_dict,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors with structured format"""
        logger.warning(f"Validation error: {exc.errors()}")

        error_messages = []
        for error in exc.errors():
            loc = " -> ".join(str(x) for x in error.get("loc", []))
            msg = error.get("msg", "Validation error")
            error_messages.append(f"{loc}: {msg}")

        error_response: Dict[str, Any] = {
            "code": "validation_error",
            "message": "; ".join(error_messages),
            "details": {
                "errors": [
                    {key: error.get(key) for key in ("type", "loc", "msg")}
                    for error in exc.errors()
                ],
            },
        }

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=add_debug_info(error_response, debug),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with structured format"""
        logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")

        error_response: Dict[str, Any] = {
            "code": f"http_{exc.status_code}",
            "message": exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            "details": {
                "status_code": exc.status_code,
            },
        }

        return JSONResponse(status_code=exc.status_code, content=error_response)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions with structured format"""
        logger.exception("Unhandled exception", exc_info=exc)

        error_response: Dict[str, Any] = {
            "code": "internal_error",
            "message": str(exc) if debug else "An internal error occurred",
            "details": {
                "exception_type": type(exc).__name__,
            },
        }

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=add_debug_info(error_response, debug),
        )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Create the FastAPI application

    Args:
        services: Prebuilt service graph (default: built from get_settings())

    Returns:
        Configured FastAPI application
    """
    if services is None:
        services = build_services(get_settings())
    settings = services.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.cache.start_sweeper()
        logger.info(f"{API_TITLE} started (env={settings.env})")
        try:
            yield
        finally:
            await services.cache.stop_sweeper()
            logger.info(f"{API_TITLE} stopped")

    app = FastAPI(
        title=API_TITLE,
        version=API_VERSION,
        description="Risk classification of pharmaceutical compounds with resilient hazard data",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Middleware to add request ID to all requests"""
        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    _register_error_handlers(app, settings.debug)
    app.include_router(router)
    return app
