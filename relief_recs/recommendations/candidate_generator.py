"""
Candidate generation: broad recall from the nonprofit directory.

Browses up to 3 crisis causes and runs up to 5 term searches in parallel,
each through the cache, then merges results in a stable order and
deduplicates by identifier. Individual call failures are tolerated; a batch
where every call failed is reported as such instead of as an empty result.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .. import constants
from ..collectors.base import CallResult, partition
from ..errors import DeadlineExceeded, ProviderNotFound
from ..utils.deadline import Deadline
from ..utils.logger import PipelineLogger
from ..utils.worker_pool import WorkerPool
from .cache import RecommendationCache
from .models import Candidate, CrisisEntities


@dataclass(frozen=True)
class GenerationTask:
    kind: str  # "browse" or "search"
    query: str

    @property
    def label(self) -> str:
        return f"{self.kind}:{self.query}"


@dataclass
class GenerationResult:
    candidates: List[Candidate] = field(default_factory=list)
    search_terms: List[str] = field(default_factory=list)
    causes_browsed: List[str] = field(default_factory=list)
    calls: int = 0
    failures: List[str] = field(default_factory=list)
    deadline_exceeded: bool = False
    raw_count: int = 0  # Records returned before deduplication

    @property
    def all_failed(self) -> bool:
        """Every issued call failed (an outage), as opposed to zero matches."""
        return self.calls > 0 and len(self.failures) == self.calls

    @property
    def partial_failure(self) -> bool:
        return bool(self.failures) and not self.all_failed


def build_search_terms(
    entities: CrisisEntities,
    max_terms: int = constants.MAX_SEARCH_TERMS,
    max_groups: int = constants.MAX_AFFECTED_GROUP_TERMS,
) -> List[str]:
    """
    Search terms in priority order.

    [disaster_type, country, "{disaster_type} {country}", *affected_groups[:2]],
    empties and case-insensitive duplicates removed, capped at max_terms.

    Examples:
        >>> build_search_terms(CrisisEntities(disaster_type="earthquake", geography={"country": "Turkey"}))
        ['earthquake', 'Turkey', 'earthquake Turkey']
    """
    disaster = entities.disaster_type or ""
    country = entities.geography.country or ""
    combined = f"{disaster} {country}".strip() if disaster and country else ""

    raw_terms = [disaster, country, combined, *entities.affected_groups[:max_groups]]

    terms: List[str] = []
    seen = set()
    for term in raw_terms:
        term = (term or "").strip()
        if not term or term.lower() in seen:
            continue
        seen.add(term.lower())
        terms.append(term)
    return terms[:max_terms]


class CandidateGenerator:
    """Fan out browse/search calls and merge them into one deduplicated candidate list."""

    def __init__(
        self,
        client,
        cache: RecommendationCache,
        config=None,
        logger: Optional[PipelineLogger] = None,
    ):
        """
        Initialize the generator.

        Args:
            client: DirectoryClient (or any object with search/browse)
            cache: Shared cache service
            config: EngineConfig; defaults from constants when omitted
            logger: Logger instance
        """
        self.client = client
        self.cache = cache
        self.logger = logger
        self.max_causes = getattr(config, "max_causes_to_browse", constants.MAX_CAUSES_TO_BROWSE)
        self.max_search_terms = getattr(config, "max_search_terms", constants.MAX_SEARCH_TERMS)
        self.results_per_query = getattr(config, "results_per_query", constants.RESULTS_PER_QUERY)
        self.max_candidates = getattr(config, "max_candidates", constants.MAX_CANDIDATES)
        self.concurrency = getattr(config, "generation_concurrency", constants.GENERATION_CONCURRENCY)

    def generate(self, entities: CrisisEntities, deadline: Optional[Deadline] = None) -> GenerationResult:
        """
        Run every browse/search call and merge the results.

        Args:
            entities: Crisis entities (request causes already merged in)
            deadline: Request deadline shared by all calls

        Returns:
            GenerationResult; check all_failed before treating an empty list as "no matches"
        """
        deadline = deadline or Deadline.never()
        causes = list(entities.causes)
        causes_browsed = causes[: self.max_causes]
        search_terms = build_search_terms(entities, max_terms=self.max_search_terms)

        tasks = [GenerationTask("browse", c) for c in causes_browsed]
        tasks += [GenerationTask("search", t) for t in search_terms]

        if not tasks:
            if self.logger:
                self.logger.warning("No search terms or causes to query")
            return GenerationResult(search_terms=search_terms, causes_browsed=causes_browsed)

        pool = WorkerPool(
            max_workers=min(self.concurrency, len(tasks)),
            logger=self.logger,
            thread_name_prefix="relief-recs-generate",
        )
        outcomes = pool.map(
            lambda task: self._run_task(task, causes, deadline),
            tasks,
            desc="Candidate generation",
            deadline=deadline,
        )

        results: List[CallResult] = []
        for ok, task, value in outcomes:
            # Abandoned at the deadline: the pool hands back the error itself
            results.append(value if ok else CallResult.err(value, label=task.label))

        successes, failures = partition(results)
        deadline_exceeded = any(isinstance(r.error, DeadlineExceeded) for r in failures) or deadline.expired()

        merged, raw_count = self._merge(results)

        result = GenerationResult(
            candidates=merged,
            search_terms=search_terms,
            causes_browsed=causes_browsed,
            calls=len(tasks),
            failures=[f"{r.label}: {r.error_message}" for r in failures],
            deadline_exceeded=deadline_exceeded,
            raw_count=raw_count,
        )

        if self.logger:
            self.logger.info(
                "Candidate generation finished",
                calls=result.calls,
                successful=len(successes),
                failed=len(failures),
                raw=raw_count,
                unique=len(merged),
            )
        return result

    def _run_task(self, task: GenerationTask, causes: List[str], deadline: Deadline) -> CallResult:
        if task.kind == "browse":
            key = self.cache.make_key("browse", cause=task.query, take=self.results_per_query, page=1)

            def loader():
                return self.client.browse(task.query, take=self.results_per_query, page=1, deadline=deadline)

        else:
            key = self.cache.make_key("search", term=task.query, causes=causes, take=self.results_per_query)

            def loader():
                return self.client.search(
                    task.query, causes=causes or None, take=self.results_per_query, deadline=deadline
                )

        result = CallResult.capture(self.cache.get_or_load, task.kind, key, loader, label=task.label)

        if not result.success and isinstance(result.error, ProviderNotFound):
            # Nothing matches this term/cause; not an outage
            return CallResult.ok((), label=task.label)
        return result

    def _merge(self, results: List[CallResult]) -> tuple:
        """
        Stable merge: browse results in cause order, then search results in
        term order, provider order within each. First occurrence wins.
        """
        ordered = sorted(
            (r for r in results if r.success),
            key=lambda r: 0 if r.label.startswith("browse:") else 1,
        )

        first_seen: dict = {}
        discovered: dict = {}
        raw_count = 0
        for result in ordered:
            for candidate in result.value or ():
                raw_count += 1
                if candidate.identifier not in first_seen:
                    first_seen[candidate.identifier] = candidate
                    discovered[candidate.identifier] = []
                if result.label not in discovered[candidate.identifier]:
                    discovered[candidate.identifier].append(result.label)

        merged = [
            candidate.model_copy(update={"discovered_by": discovered[identifier]})
            for identifier, candidate in first_seen.items()
        ]
        return merged[: self.max_candidates], raw_count
