"""
Recommendation orchestrator: the public entry point of the engine.

    recommendation cache -> generate -> rerank -> enrich -> respond -> cache

A request deadline is created per request and handed to every sub-call.
When it expires, the pipeline continues with whatever it has collected.
Only a total generation outage (every call failed) becomes a request error.
"""

import time
from typing import Callable, List, Optional

from .. import constants
from ..collectors.directory_client import DirectoryClient
from ..config import EngineConfig
from ..errors import AllSourcesFailed
from ..policy import RankingPolicy
from ..utils.deadline import Deadline
from ..utils.logger import PipelineLogger, get_logger
from .cache import RecommendationCache
from .candidate_generator import CandidateGenerator, GenerationResult
from .enricher import EnrichmentResult, Enricher
from .models import (
    CrisisEntities,
    DebugInfo,
    EnrichedCandidate,
    RecommendationRequest,
    RecommendationResponse,
    RecommendationView,
)
from .providers import SignalProvider
from .reranker import Reranker, RerankResult


def recommendation_key(
    cache: RecommendationCache,
    entities: CrisisEntities,
    top_n: int,
    max_causes: int = constants.MAX_CAUSES_TO_BROWSE,
) -> str:
    """
    Cache key from normalized entities and top_n. Title/description are not part of it.

    Only the first max_causes causes are browsed, so their order is part of the
    key; the full cause set is keyed unordered.
    """
    browsed = {str(i): cause for i, cause in enumerate(entities.causes[:max_causes])}
    return cache.make_key(
        "recommendation",
        browsed_causes=browsed,
        country=entities.geography.country,
        region=entities.geography.region,
        city=entities.geography.city,
        disaster_type=entities.disaster_type,
        affected_groups=entities.affected_groups,
        causes=entities.causes,
        keywords=entities.keywords,
        top_n=top_n,
    )


def to_view(candidate: EnrichedCandidate) -> RecommendationView:
    location = candidate.location_text
    if not location and candidate.location:
        parts = [candidate.location.city, candidate.location.state, candidate.location.country]
        location = ", ".join(p for p in parts if p) or None

    return RecommendationView(
        name=candidate.name,
        identifier=candidate.identifier,
        description=candidate.description or candidate.long_description,
        website_url=candidate.website_url,
        location=location,
        logo_url=candidate.logo_url,
        cover_image_url=candidate.cover_image_url,
        score=candidate.total_score,
        reasons=list(candidate.reasons),
        profile_url=candidate.profile_url,
        geo_tier=candidate.geo_tier,
        cause_level=candidate.cause_level,
        trust_score=candidate.trust.trust_score,
        cause_mismatch=candidate.cause_mismatch,
        enrichment_failed=candidate.enrichment_failed,
    )


class RecommendationOrchestrator:
    """Wires the pipeline stages together around one shared cache."""

    def __init__(
        self,
        client=None,
        cache: Optional[RecommendationCache] = None,
        config: Optional[EngineConfig] = None,
        trust_provider: Optional[SignalProvider] = None,
        vetting_provider: Optional[SignalProvider] = None,
        logger: Optional[PipelineLogger] = None,
        clock: Callable[[], float] = time.monotonic,
        policy: Optional[RankingPolicy] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Directory client (default: DirectoryClient built from config)
            cache: Shared cache service (default: in-memory with config TTLs)
            config: Engine configuration (default: EngineConfig())
            trust_provider: Trust score source for the reranker
            vetting_provider: Vetting status source for the reranker
            logger: Logger instance
            clock: Monotonic time source for the request deadline
            policy: Ranking vocabulary override
        """
        self.config = config or EngineConfig()
        self.logger = logger or get_logger(log_level=self.config.log_level)
        self.client = client or DirectoryClient.from_config(self.config, logger=self.logger)
        self.cache = cache or RecommendationCache(
            ttls=self.config.cache_ttls,
            max_entries=self.config.cache_max_entries,
        )
        self._clock = clock

        self.generator = CandidateGenerator(self.client, self.cache, self.config, logger=self.logger)
        self.reranker = Reranker(
            self.config,
            policy=policy,
            trust_provider=trust_provider,
            vetting_provider=vetting_provider,
            logger=self.logger,
        )
        self.enricher = Enricher(self.client, self.cache, self.config, logger=self.logger)

    def recommend(self, request: RecommendationRequest) -> RecommendationResponse:
        """
        Recommend organizations for one crisis.

        Args:
            request: Request body (entities plus request-level causes/keywords)

        Returns:
            RecommendationResponse with at most top_n (<= 10) recommendations

        Raises:
            AllSourcesFailed: Every candidate-generation call failed
        """
        started = time.perf_counter()
        entities = request.merged_entities()
        key = recommendation_key(self.cache, entities, request.top_n, self.config.max_causes_to_browse)

        cached = self.cache.get("recommendation", key)
        if cached is not None:
            self.logger.info("Recommendation cache hit", title=request.title[:60])
            return self._from_cache(cached, request.debug, started)

        deadline = Deadline(self.config.request_deadline, clock=self._clock)
        timings: dict = {}

        with self.logger.time_stage("generate", timings):
            generation = self.generator.generate(entities, deadline)

        if generation.all_failed:
            debug = self._debug(generation, RerankResult(), EnrichmentResult(), [], deadline, timings, started)
            self.logger.error("All candidate sources failed", failures=len(generation.failures))
            raise AllSourcesFailed(
                f"All {generation.calls} directory calls failed",
                failures=generation.failures,
                debug=debug,
            )

        with self.logger.time_stage("rerank", timings):
            rerank = self.reranker.rerank(generation.candidates, entities)

        with self.logger.time_stage("enrich", timings):
            enrichment = self.enricher.enrich(rerank.ranked, deadline)

        limit = min(request.top_n, self.config.max_response_size)
        views = [to_view(candidate) for candidate in enrichment.enriched[:limit]]

        debug = self._debug(generation, rerank, enrichment, views, deadline, timings, started)
        response = RecommendationResponse(nonprofits=views, debug=debug)

        if generation.failures or debug.deadline_exceeded:
            self.logger.warning(
                "Partial result not cached",
                generation_failures=len(generation.failures),
                deadline_exceeded=debug.deadline_exceeded,
            )
        else:
            self.cache.set("recommendation", key, response)

        self.logger.info(
            "Recommendation complete",
            returned=len(views),
            duration_ms=debug.timings_ms.get("total"),
        )
        return response if request.debug else response.model_copy(update={"debug": None})

    def _from_cache(self, cached: RecommendationResponse, debug: bool, started: float) -> RecommendationResponse:
        if not debug:
            return cached.model_copy(update={"debug": None})

        cached_debug = cached.debug or DebugInfo()
        elapsed = round((time.perf_counter() - started) * 1000, 1)
        return cached.model_copy(
            update={"debug": cached_debug.model_copy(update={"from_cache": True, "timings_ms": {"total": elapsed}})}
        )

    def _debug(
        self,
        generation: GenerationResult,
        rerank: RerankResult,
        enrichment: EnrichmentResult,
        views: List[RecommendationView],
        deadline: Deadline,
        timings: dict,
        started: float,
    ) -> DebugInfo:
        total_ms = round((time.perf_counter() - started) * 1000, 1)
        return DebugInfo(
            from_cache=False,
            search_terms=generation.search_terms,
            causes_browsed=generation.causes_browsed,
            stage_counts={
                "generated": generation.raw_count,
                "deduplicated": len(generation.candidates),
                "ranked": len(rerank.ranked),
                "enriched": enrichment.enriched_count,
                "returned": len(views),
            },
            exclusion_counts=dict(rerank.exclusion_counts),
            geo_tier_distribution=dict(rerank.geo_tier_distribution),
            cause_level_distribution=dict(rerank.cause_level_distribution),
            trust_coverage=rerank.trust_coverage,
            generation_failures=list(generation.failures),
            enrichment_failures=enrichment.failed_count,
            deadline_exceeded=generation.deadline_exceeded or deadline.expired(),
            timings_ms={**timings, "total": total_ms},
        )

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()
        self.logger.info("Recommendation caches cleared")
