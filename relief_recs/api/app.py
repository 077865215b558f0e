"""
Recommendation API (FastAPI).

Routes:
  POST /recommendations               - run the pipeline for one crisis
  GET  /recommendations/cache/stats   - cache hit/miss counters
  POST /recommendations/cache/clear   - drop every cache entry
  GET  /health

Run with:
    uvicorn --factory relief_recs.api.app:create_app --port 8000
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import EngineConfig
from ..errors import AllSourcesFailed
from ..recommendations.models import RecommendationRequest
from ..recommendations.orchestrator import RecommendationOrchestrator
from ..utils.logger import get_logger

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def _orchestrator(request: Request) -> RecommendationOrchestrator:
    return request.app.state.orchestrator


@router.post("")
def recommend(body: RecommendationRequest, request: Request):
    """Recommend organizations for a crisis."""
    response = _orchestrator(request).recommend(body)
    return response.to_json_dict()


@router.get("/cache/stats")
def cache_stats(request: Request):
    """Aggregate and per-namespace cache counters."""
    return {"success": True, "stats": _orchestrator(request).cache_stats()}


@router.post("/cache/clear")
def cache_clear(request: Request):
    """Invalidate every cache entry and reset counters."""
    _orchestrator(request).clear_cache()
    return {"success": True, "message": "Cache cleared"}


def create_app(
    orchestrator: Optional[RecommendationOrchestrator] = None,
    config: Optional[EngineConfig] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        orchestrator: Pre-built orchestrator (tests inject one with a fake client)
        config: Engine config used when no orchestrator is given (default: from environment)

    Returns:
        FastAPI application
    """
    logger = get_logger(stage="api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Recommendation API starting up", version=__version__)
        yield
        logger.info("Recommendation API shutting down")

    app = FastAPI(
        title="Relief Recommendations",
        description="Crisis-relevant nonprofit recommendations",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.orchestrator = orchestrator or RecommendationOrchestrator(
        config=config or EngineConfig.from_env(),
        logger=logger,
    )
    app.include_router(router)

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "relief-recs", "version": __version__}

    @app.exception_handler(AllSourcesFailed)
    async def all_sources_failed_handler(request: Request, exc: AllSourcesFailed):
        logger.error("Directory outage: all sources failed", failures=len(exc.failures))
        return JSONResponse(
            status_code=502,
            content={
                "success": False,
                "error": exc.code,
                "message": str(exc),
                "debug": exc.debug.model_dump(by_alias=True) if exc.debug is not None else None,
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", exception=exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "INTERNAL_ERROR", "message": "An error occurred"},
        )

    return app

