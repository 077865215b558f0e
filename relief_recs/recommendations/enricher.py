"""
Enrichment of the top-ranked candidates with full directory detail records.

Detail fetches run in parallel (capped) through the ``details`` cache
namespace. A failed fetch never drops a candidate: it keeps its ranked
fields and is flagged ``enrichment_failed``.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .. import constants
from ..collectors.base import CallResult
from ..collectors.directory_client import build_profile_url, parse_location
from ..utils.deadline import Deadline
from ..utils.logger import PipelineLogger
from ..utils.worker_pool import WorkerPool
from .cache import RecommendationCache
from .models import EnrichedCandidate, NonprofitDetails, RankedCandidate


@dataclass
class EnrichmentResult:
    enriched: List[EnrichedCandidate] = field(default_factory=list)
    enriched_count: int = 0
    failed_count: int = 0


def merge_details(ranked: RankedCandidate, details: NonprofitDetails, profile_base_url: str) -> EnrichedCandidate:
    """
    Layer a detail record onto a ranked candidate.

    Detail-only fields are added; fields the ranked record already has are
    kept, so ranking inputs and the displayed record never disagree.
    """
    base = ranked.model_dump()
    for name in ("description", "website_url", "location_text", "logo_url", "is_disbursable"):
        if base.get(name) is None:
            base[name] = getattr(details, name)

    return EnrichedCandidate(
        **base,
        cover_image_url=details.cover_image_url,
        categories=list(details.categories),
        long_description=details.long_description,
        location=details.location or parse_location(base["location_text"]),
        profile_url=details.profile_url or build_profile_url(ranked.slug, ranked.ein, profile_base_url),
    )


def mark_failed(ranked: RankedCandidate, error: str, profile_base_url: str) -> EnrichedCandidate:
    """Ranked fields unchanged, flagged as not enriched."""
    return EnrichedCandidate(
        **ranked.model_dump(),
        location=parse_location(ranked.location_text),
        profile_url=build_profile_url(ranked.slug, ranked.ein, profile_base_url),
        enrichment_failed=True,
        enrichment_error=error,
    )


class Enricher:
    """Fetch and merge detail records for the top-K ranked candidates."""

    def __init__(
        self,
        client,
        cache: RecommendationCache,
        config=None,
        logger: Optional[PipelineLogger] = None,
    ):
        self.client = client
        self.cache = cache
        self.logger = logger
        self.top_k = getattr(config, "enrichment_top_k", constants.ENRICHMENT_TOP_K)
        self.concurrency = getattr(config, "enrichment_concurrency", constants.ENRICHMENT_CONCURRENCY)
        self.profile_base_url = getattr(config, "profile_base_url", constants.PROFILE_BASE_URL)

    def enrich(
        self,
        ranked: List[RankedCandidate],
        deadline: Optional[Deadline] = None,
        top_k: Optional[int] = None,
    ) -> EnrichmentResult:
        """
        Enrich the first top_k candidates, preserving order.

        Args:
            ranked: Candidates in final rank order
            deadline: Request deadline; unfinished fetches are marked failed
            top_k: Override for how many candidates to enrich

        Returns:
            EnrichmentResult with one EnrichedCandidate per input in the window
        """
        to_enrich = list(ranked[: top_k if top_k is not None else self.top_k])
        if not to_enrich:
            return EnrichmentResult()

        pool = WorkerPool(
            max_workers=min(self.concurrency, len(to_enrich)),
            logger=self.logger,
            thread_name_prefix="relief-recs-enrich",
        )
        outcomes = pool.map(
            lambda candidate: self._fetch(candidate, deadline),
            to_enrich,
            desc="Enrichment",
            deadline=deadline,
        )

        result = EnrichmentResult()
        for ok, candidate, value in outcomes:
            call = value if ok else CallResult.err(value, label=candidate.identifier)
            if call.success:
                result.enriched.append(merge_details(candidate, call.value, self.profile_base_url))
                result.enriched_count += 1
            else:
                result.enriched.append(mark_failed(candidate, call.error_message, self.profile_base_url))
                result.failed_count += 1

        if self.logger:
            self.logger.info(
                "Enrichment finished",
                requested=len(to_enrich),
                enriched=result.enriched_count,
                failed=result.failed_count,
            )
        return result

    def _fetch(self, candidate: RankedCandidate, deadline: Optional[Deadline]) -> CallResult:
        lookup = candidate.slug or candidate.identifier
        key = self.cache.make_key("details", identifier=lookup)
        return CallResult.capture(
            self.cache.get_or_load,
            "details",
            key,
            lambda: self.client.get_details(lookup, deadline=deadline),
            label=candidate.identifier,
        )
