"""
Reranker: policy-ordered ranking of directory candidates.

Pure and deterministic (no I/O). Ordering policy, strictly ordinal:

    geography (primary) -> cause alignment (secondary) -> trust (tiebreak) -> quality (last tiebreak)

Steps per candidate:
  a) Vetting gate: vetted "false" is excluded; "unknown" must pass the
     fallback quality gate (disbursable, real description, website, a name
     that is more than a legal wrapper).
  b) Geographic tier 1..5 (5 = excluded).
  c) Cause level 1..4 (4 = excluded unless needed to reach a minimum count).
  d) Trust score, compared only within equal (geo tier, cause level).
  e) Quality score from profile completeness.

Then sort, and cap any one category at 2 entries within the top 10.
``total_score`` is for display only and never used for ordering.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .. import constants
from ..policy import RankingPolicy, load_policy
from ..utils.geo_regions import (
    are_in_same_region,
    are_neighbors,
    find_countries,
    mentions_place,
    resolve_country,
)
from ..utils.logger import PipelineLogger
from ..utils.ntee_mapper import normalize_category
from .models import Candidate, CrisisEntities, RankedCandidate, TrustVettingSignal
from .providers import SignalProvider, unknown_trust_provider, unknown_vetting_provider

# Display-only score weights (policy priority order)
GEO_TIER_SCORES = {1: 100, 2: 60, 3: 30, 4: 15, 5: 0}
CAUSE_LEVEL_SCORES = {1: 100, 2: 70, 3: 40, 4: 0}
TOTAL_SCORE_WEIGHTS = {"geo": 0.40, "cause": 0.35, "trust": 0.15, "quality": 0.10}

EXCLUSION_REASONS = ("vetting", "geography", "cause", "invalid")

# Operating presence only: "works in 40 countries", not "families from 30 countries"
_COUNTRY_COUNT_PATTERN = re.compile(
    r"\b(?:in|across|operates in|operating in|works in|working in|active in)\s+"
    r"(?:more than\s+|over\s+|nearly\s+)?(\d{2,3})\+?\s+countries\b"
)


@dataclass
class RerankResult:
    ranked: List[RankedCandidate] = field(default_factory=list)
    exclusion_counts: Dict[str, int] = field(default_factory=lambda: {r: 0 for r in EXCLUSION_REASONS})
    geo_tier_distribution: Dict[str, int] = field(default_factory=dict)
    cause_level_distribution: Dict[str, int] = field(default_factory=dict)
    trust_coverage: float = 0.0  # Percent of ranked candidates with a trust score
    input_count: int = 0
    backfilled: int = 0


@dataclass
class _Evaluation:
    """Scratch record for one candidate while it moves through the steps."""

    candidate: Candidate
    signal: TrustVettingSignal
    geo_tier: int = 5
    geo_reason: str = ""
    cause_level: int = 4
    cause_reason: str = ""
    quality: float = 0.0


def _contains(text: str, term: str) -> bool:
    term = term.strip().lower()
    if not term:
        return False
    return re.search(rf"(?<![\w]){re.escape(term)}(?![\w])", text) is not None


def _candidate_text(candidate: Candidate) -> str:
    """Lowercased text the cause and global checks read from."""
    parts = [
        candidate.name,
        candidate.description,
        candidate.category_text,
        candidate.ntee_meaning,
        " ".join(candidate.tags),
        " ".join(c.replace("-", " ") for c in candidate.causes),
    ]
    return " ".join(p for p in parts if p).lower()


def sort_key(ranked: RankedCandidate) -> Tuple:
    """(cause_mismatch, geo_tier, cause_level, trust missing, -trust, -quality, identifier)."""
    trust = ranked.trust.trust_score
    return (
        ranked.cause_mismatch,
        ranked.geo_tier,
        ranked.cause_level,
        trust is None,
        -(trust or 0.0),
        -ranked.quality_score,
        ranked.identifier,
    )


class Reranker:
    """Score, filter and order candidates against one crisis."""

    def __init__(
        self,
        config=None,
        policy: Optional[RankingPolicy] = None,
        trust_provider: Optional[SignalProvider] = None,
        vetting_provider: Optional[SignalProvider] = None,
        logger: Optional[PipelineLogger] = None,
    ):
        """
        Initialize the reranker.

        Args:
            config: EngineConfig; gate thresholds and diversity settings
            policy: Ranking vocabulary (default: config/ranking_policy.yaml)
            trust_provider: Supplies trust_score (default: always unknown)
            vetting_provider: Supplies vetted_status (default: always unknown)
            logger: Logger instance
        """
        self.policy = policy or load_policy(getattr(config, "policy_path", None))
        self.trust_provider = trust_provider or unknown_trust_provider
        self.vetting_provider = vetting_provider or unknown_vetting_provider
        self.logger = logger

        self.min_description_length = getattr(config, "min_description_length", constants.MIN_DESCRIPTION_LENGTH)
        self.require_disbursable = getattr(config, "require_disbursable", constants.REQUIRE_DISBURSABLE)
        self.require_website = getattr(config, "require_website", constants.REQUIRE_WEBSITE)
        self.min_results_before_backfill = getattr(
            config, "min_results_before_backfill", constants.MIN_RESULTS_BEFORE_BACKFILL
        )
        self.diversity_cap = getattr(config, "diversity_category_cap", constants.DIVERSITY_CATEGORY_CAP)
        self.diversity_window = getattr(config, "diversity_window", constants.DIVERSITY_WINDOW)
        self.flexibility_score_threshold = getattr(
            config, "flexibility_score_threshold", constants.FLEXIBILITY_SCORE_THRESHOLD
        )
        self.rapid_response_marker_min = getattr(
            config, "rapid_response_marker_min", constants.RAPID_RESPONSE_MARKER_MIN
        )

    def rerank(self, candidates: List[Candidate], entities: CrisisEntities) -> RerankResult:
        """
        Rank candidates for a crisis.

        Args:
            candidates: Deduplicated candidates from generation
            entities: Crisis entities (request causes already merged in)

        Returns:
            RerankResult with ranked survivors and per-reason exclusion counts
        """
        result = RerankResult(input_count=len(candidates))
        exclusions = result.exclusion_counts
        aligned: List[RankedCandidate] = []
        mismatched: List[RankedCandidate] = []

        for candidate in candidates:
            try:
                evaluation = self._evaluate(candidate, entities)
            except (AttributeError, TypeError, ValueError) as e:
                exclusions["invalid"] += 1
                if self.logger:
                    self.logger.warning("Skipping malformed candidate", error=str(e))
                continue

            if evaluation is None:
                exclusions["vetting"] += 1
                continue
            if evaluation.geo_tier >= 5:
                exclusions["geography"] += 1
                continue

            ranked = self._to_ranked(evaluation)
            if evaluation.cause_level >= 4:
                mismatched.append(ranked)
            else:
                aligned.append(ranked)

        aligned.sort(key=sort_key)
        mismatched.sort(key=sort_key)

        # Backfill: keep just enough cause-mismatched candidates to reach the minimum
        needed = max(0, self.min_results_before_backfill - len(aligned))
        backfill = [self._flag_mismatch(r) for r in mismatched[:needed]]
        exclusions["cause"] += len(mismatched) - len(backfill)
        result.backfilled = len(backfill)

        result.ranked = self._apply_diversity(aligned) + backfill

        result.geo_tier_distribution = {str(t): n for t, n in sorted(Counter(r.geo_tier for r in result.ranked).items())}
        result.cause_level_distribution = {
            str(lvl): n for lvl, n in sorted(Counter(r.cause_level for r in result.ranked).items())
        }
        with_trust = sum(1 for r in result.ranked if r.trust.trust_score is not None)
        result.trust_coverage = round(100.0 * with_trust / len(result.ranked), 1) if result.ranked else 0.0

        if self.logger:
            self.logger.info(
                "Reranking finished",
                input=result.input_count,
                ranked=len(result.ranked),
                backfilled=result.backfilled,
                trust_coverage=f"{result.trust_coverage:.1f}%",
                **{f"excluded_{k}": v for k, v in exclusions.items() if v},
            )
        return result

    # ------------------------------------------------------------------
    # a) Vetting gate
    # ------------------------------------------------------------------

    def _signal(self, candidate: Candidate) -> TrustVettingSignal:
        """Merge trust_score from the trust provider and vetted_status from the vetting provider."""
        trust = self._call_provider(self.trust_provider, candidate, "trust")
        vetting = self._call_provider(self.vetting_provider, candidate, "vetting")

        sources = [s for s in (trust.source, vetting.source) if s and s != "none"]
        return TrustVettingSignal(
            trust_score=trust.trust_score,
            vetted_status=vetting.vetted_status,
            source=" + ".join(dict.fromkeys(sources)) or "none",
        )

    def _call_provider(self, provider: SignalProvider, candidate: Candidate, kind: str) -> TrustVettingSignal:
        try:
            signal = provider(candidate)
        except Exception as e:
            if self.logger:
                self.logger.warning(f"{kind.title()} provider failed, treating as unknown", identifier=candidate.identifier, error=str(e))
            return TrustVettingSignal.unknown()
        return signal if isinstance(signal, TrustVettingSignal) else TrustVettingSignal.unknown()

    def quality_gate_failures(self, candidate: Candidate) -> List[str]:
        """Reasons an unvetted candidate fails the fallback gate (empty list = passes)."""
        failures = []
        if self.require_disbursable and candidate.is_disbursable is not True:
            failures.append("not disbursable")
        if len((candidate.description or "").strip()) <= self.min_description_length:
            failures.append("description too short")
        if self.require_website and not candidate.website_url:
            failures.append("no website")
        if self.policy.is_generic_legal_name(candidate.name):
            failures.append("generic legal name")
        return failures

    # ------------------------------------------------------------------
    # Per-candidate evaluation
    # ------------------------------------------------------------------

    def _evaluate(self, candidate: Candidate, entities: CrisisEntities) -> Optional[_Evaluation]:
        """None when the vetting gate rejects the candidate."""
        signal = self._signal(candidate)
        if signal.vetted_status == "false":
            return None
        if signal.vetted_status == "unknown":
            failures = self.quality_gate_failures(candidate)
            if failures:
                if self.logger:
                    self.logger.debug("Quality gate rejected candidate", identifier=candidate.identifier, failures=failures)
                return None

        evaluation = _Evaluation(candidate=candidate, signal=signal)
        text = _candidate_text(candidate)
        evaluation.geo_tier, evaluation.geo_reason = self.geo_tier(candidate, entities, text)
        if evaluation.geo_tier < 5:
            evaluation.cause_level, evaluation.cause_reason = self.cause_level(candidate, entities, text)
        evaluation.quality = self.quality_score(candidate)
        return evaluation

    # ------------------------------------------------------------------
    # b) Geography
    # ------------------------------------------------------------------

    def geo_tier(self, candidate: Candidate, entities: CrisisEntities, text: Optional[str] = None) -> Tuple[int, str]:
        """
        Geographic tier and its reason.

        1: same country, or the crisis city/region appears in the location
        2: neighboring country or shared macro-region
        3: global/multinational with flexible deployment
        4: global/multinational
        5: none of the above (excluded)
        """
        geography = entities.geography
        text = text if text is not None else _candidate_text(candidate)
        location = candidate.location_text or ""
        location_countries = find_countries(location)
        crisis_code = resolve_country(geography.country)
        place = geography.country or geography.region or geography.city

        if location:
            if crisis_code and crisis_code in location_countries:
                return 1, f"Operates directly in {geography.country} ({location})"
            # A resolved crisis country is matched by code only ("Sudan" must not match "South Sudan")
            names = [geography.region, geography.city]
            if not crisis_code:
                names.insert(0, geography.country)
            for name in names:
                if name and mentions_place(location, name):
                    return 1, f"Operates directly in {name} ({location})"

            if crisis_code:
                for code in location_countries:
                    if are_neighbors(crisis_code, code) or are_in_same_region(crisis_code, code):
                        return 2, f"Regional responder near {geography.country} ({location})"

        if self._is_global(candidate, text, location_countries):
            if self._is_flexible(candidate, text, location_countries):
                return 3, "Global responder with rapid deployment capacity"
            return 4, "Global organization"

        if not place:
            return 4, "No crisis location to match against"

        return 5, "No presence in or near the affected area"

    @staticmethod
    def _operating_country_count(candidate: Candidate) -> bool:
        return _COUNTRY_COUNT_PATTERN.search((candidate.description or "").lower()) is not None

    def _multi_country_presence(self, candidate: Candidate) -> bool:
        described = find_countries(" ".join(p for p in (candidate.description, " ".join(candidate.tags)) if p))
        if len(described) >= 2:
            return True
        return self._operating_country_count(candidate)

    def _explicit_multinational(self, candidate: Candidate) -> bool:
        """International NTEE code, global marker in the name, flexibility attribute, or operating-country count."""
        if candidate.ntee_code and candidate.ntee_code.strip().upper().startswith("Q"):
            return True
        if candidate.flexibility_score is not None:
            return True
        name = (candidate.name or "").lower()
        if any(_contains(name, marker) for marker in self.policy.global_markers):
            return True
        return self._operating_country_count(candidate)

    def _is_global(self, candidate: Candidate, text: str, location_countries: List[str]) -> bool:
        if self._explicit_multinational(candidate):
            return True
        # Based in one country outside the crisis area: mission wording alone is not enough
        if len(location_countries) == 1:
            return False
        if any(_contains(text, marker) for marker in self.policy.global_markers):
            return True
        return self._multi_country_presence(candidate)

    def _is_flexible(self, candidate: Candidate, text: str, location_countries: List[str]) -> bool:
        if candidate.flexibility_score is not None:
            return candidate.flexibility_score >= self.flexibility_score_threshold

        markers = sum(1 for marker in self.policy.rapid_response_markers if _contains(text, marker))
        if markers >= self.rapid_response_marker_min:
            return True

        single_country = len(location_countries) == 1
        return not single_country and self._multi_country_presence(candidate)

    # ------------------------------------------------------------------
    # c) Cause alignment
    # ------------------------------------------------------------------

    def cause_level(self, candidate: Candidate, entities: CrisisEntities, text: Optional[str] = None) -> Tuple[int, str]:
        """
        Cause level and its reason.

        1: disaster type (or synonym) AND an affected-group/need term
        2: crisis cause (slug, category or vocabulary) or the disaster type alone
        3: adjacent cause, or a crisis keyword
        4: no alignment
        """
        text = text if text is not None else _candidate_text(candidate)
        disaster = entities.disaster_type
        disaster_hit = next((t for t in self.policy.disaster_terms(disaster) if _contains(text, t)), None)

        if disaster_hit:
            needs = list(entities.affected_groups) + self.policy.need_terms
            need_hit = next((n for n in needs if n.lower() != disaster_hit and _contains(text, n)), None)
            if need_hit:
                return 1, f"Specializes in {disaster} relief ({need_hit})"

        crisis_causes = [c.lower() for c in entities.causes] or list(self.policy.default_causes)
        category = normalize_category(candidate.category_text, candidate.ntee_code)
        candidate_causes = {c.strip().lower() for c in candidate.causes}

        matched = self._matching_cause(crisis_causes, candidate_causes, category, text)
        if matched:
            return 2, f"Works on {matched.replace('-', ' ')}"
        if disaster_hit:
            return 2, f"Responds to {disaster} disasters"

        adjacent = self._matching_cause(self.policy.adjacent_to(crisis_causes), candidate_causes, category, text)
        if adjacent:
            return 3, f"Related cause: {adjacent.replace('-', ' ')}"

        keyword = next((k for k in entities.keywords if _contains(text, k)), None)
        if keyword:
            return 3, f"Mentions {keyword}"

        return 4, "No direct cause alignment"

    def _matching_cause(self, causes: List[str], candidate_causes: set, category: Optional[str], text: str) -> Optional[str]:
        for cause in causes:
            if cause in candidate_causes or cause == category:
                return cause
        for cause in causes:
            if any(_contains(text, term) for term in self.policy.cause_terms(cause)):
                return cause
        return None

    # ------------------------------------------------------------------
    # d/e) Trust and quality
    # ------------------------------------------------------------------

    @staticmethod
    def quality_score(candidate: Candidate) -> float:
        """Profile completeness, 0-100."""
        score = 0.0
        description = (candidate.description or "").strip()
        if len(description) > 50:
            score += 20
        if len(description) > 200:
            score += 10
        if candidate.website_url:
            score += 30
        if candidate.ein:
            score += 10
        if candidate.location_text:
            score += 10
        if candidate.logo_url:
            score += 10
        if candidate.ntee_code:
            score += 10
        return min(100.0, score)

    def _to_ranked(self, evaluation: _Evaluation) -> RankedCandidate:
        signal = evaluation.signal
        trust_value = signal.trust_score if signal.trust_score is not None else 0.0
        total = (
            GEO_TIER_SCORES[evaluation.geo_tier] * TOTAL_SCORE_WEIGHTS["geo"]
            + CAUSE_LEVEL_SCORES[evaluation.cause_level] * TOTAL_SCORE_WEIGHTS["cause"]
            + trust_value * TOTAL_SCORE_WEIGHTS["trust"]
            + evaluation.quality * TOTAL_SCORE_WEIGHTS["quality"]
        )

        reasons = [evaluation.geo_reason, evaluation.cause_reason]
        if signal.trust_score is not None:
            reasons.append(f"Trust score: {signal.trust_score:.0f} ({signal.source})")
        elif signal.vetted_status == "unknown":
            reasons.append("Trust score unavailable; included via quality gate")
        else:
            reasons.append("Trust score unavailable")
        if signal.vetted_status == "true":
            reasons.append(f"Vetted by {signal.source}")
        if evaluation.quality >= 80:
            reasons.append("Complete profile with verified information")

        candidate = evaluation.candidate
        return RankedCandidate(
            **candidate.model_dump(),
            geo_tier=evaluation.geo_tier,
            cause_level=evaluation.cause_level,
            trust=signal,
            quality_score=evaluation.quality,
            total_score=round(total, 1),
            reasons=[r for r in reasons if r],
            category_key=normalize_category(candidate.category_text, candidate.ntee_code),
        )

    @staticmethod
    def _flag_mismatch(ranked: RankedCandidate) -> RankedCandidate:
        return ranked.model_copy(
            update={
                "cause_mismatch": True,
                "reasons": list(ranked.reasons) + ["Included to fill the list despite a cause mismatch"],
            }
        )

    # ------------------------------------------------------------------
    # g) Diversity
    # ------------------------------------------------------------------

    def _apply_diversity(self, ordered: List[RankedCandidate]) -> List[RankedCandidate]:
        """
        Cap each category at diversity_cap entries within the first
        diversity_window positions. Excess entries move below the window in
        their original order; nothing is dropped. Uncategorized entries are
        never capped.
        """
        top: List[RankedCandidate] = []
        below: List[RankedCandidate] = []
        counts: Counter = Counter()

        for ranked in ordered:
            if len(top) >= self.diversity_window:
                below.append(ranked)
                continue
            key = ranked.category_key
            if key and counts[key] >= self.diversity_cap:
                below.append(ranked)
                continue
            if key:
                counts[key] += 1
            top.append(ranked)

        return top + below
