"""
Pydantic models for the recommendation pipeline.

Every record is frozen. Each stage builds a new record layered on the
previous one (Candidate -> RankedCandidate -> EnrichedCandidate), so a stage
can never mutate what an earlier stage (or the cache) holds.

JSON field names are camelCase (``disasterType``, ``websiteUrl``); Python
attributes are snake_case. Both names are accepted on input.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

VettedStatus = Literal["true", "false", "unknown"]
CandidateSource = Literal["search", "browse"]


def _clean_terms(values: Optional[List[str]]) -> List[str]:
    """Strip, drop empties, dedupe case-insensitively, keep first spelling and order."""
    seen = set()
    cleaned = []
    for value in values or []:
        if value is None:
            continue
        text = str(value).strip()
        if not text or text.lower() in seen:
            continue
        seen.add(text.lower())
        cleaned.append(text)
    return cleaned


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Input
# ============================================================================


class Geography(FrozenModel):
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None

    @field_validator("country", "region", "city", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class CrisisEntities(FrozenModel):
    """Structured crisis description produced by the upstream classifier."""

    geography: Geography = Field(default_factory=Geography)
    disaster_type: Optional[str] = None
    affected_groups: List[str] = Field(default_factory=list)
    causes: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)

    @field_validator("disaster_type", mode="before")
    @classmethod
    def blank_disaster_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("affected_groups", "causes", "keywords", mode="before")
    @classmethod
    def clean_lists(cls, v):
        return _clean_terms(v)


class RecommendationRequest(FrozenModel):
    """Body of POST /recommendations."""

    title: str = ""
    description: Optional[str] = None
    content: Optional[str] = None  # Accepted for callers that send the article body; not ranked on
    url: Optional[str] = None
    entities: CrisisEntities = Field(default_factory=CrisisEntities)
    causes: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    debug: bool = False
    top_n: int = Field(10, ge=1, le=10)

    @field_validator("causes", "keywords", mode="before")
    @classmethod
    def clean_lists(cls, v):
        return _clean_terms(v)

    def merged_entities(self) -> CrisisEntities:
        """Entities with request-level causes/keywords merged in (deduplicated, order kept)."""
        return self.entities.model_copy(
            update={
                "causes": _clean_terms(list(self.entities.causes) + list(self.causes)),
                "keywords": _clean_terms(list(self.entities.keywords) + list(self.keywords)),
            }
        )


# ============================================================================
# Pipeline records
# ============================================================================


class Provenance(FrozenModel):
    source: CandidateSource
    query_used: str


class Candidate(FrozenModel):
    """Raw directory record. Records sharing an identifier are the same organization."""

    identifier: str
    slug: Optional[str] = None
    ein: Optional[str] = None
    name: str
    description: Optional[str] = None
    website_url: Optional[str] = None
    location_text: Optional[str] = None
    category_text: Optional[str] = None
    ntee_code: Optional[str] = None
    ntee_meaning: Optional[str] = None
    causes: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    logo_url: Optional[str] = None
    is_disbursable: Optional[bool] = None
    flexibility_score: Optional[float] = None  # Explicit rapid-response attribute (0-1), when a source supplies one
    provenance: Provenance
    discovered_by: List[str] = Field(default_factory=list)


class TrustVettingSignal(FrozenModel):
    trust_score: Optional[float] = Field(None, ge=0, le=100)
    vetted_status: VettedStatus = "unknown"
    source: str = "none"

    @classmethod
    def unknown(cls, source: str = "none") -> "TrustVettingSignal":
        return cls(trust_score=None, vetted_status="unknown", source=source)


class RankedCandidate(Candidate):
    geo_tier: int = Field(..., ge=1, le=5)
    cause_level: int = Field(..., ge=1, le=4)
    trust: TrustVettingSignal = Field(default_factory=TrustVettingSignal.unknown)
    quality_score: float = 0.0
    total_score: float = 0.0  # Display only; never used for ordering
    reasons: List[str] = Field(default_factory=list)
    cause_mismatch: bool = False
    category_key: Optional[str] = None


class Location(FrozenModel):
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class NonprofitDetails(FrozenModel):
    """Directory detail record for one organization."""

    identifier: str
    slug: Optional[str] = None
    ein: Optional[str] = None
    name: str
    description: Optional[str] = None
    long_description: Optional[str] = None
    website_url: Optional[str] = None
    logo_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    location_text: Optional[str] = None
    location: Optional[Location] = None
    categories: List[str] = Field(default_factory=list)
    is_disbursable: Optional[bool] = None
    profile_url: Optional[str] = None


class EnrichedCandidate(RankedCandidate):
    cover_image_url: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    long_description: Optional[str] = None
    location: Optional[Location] = None
    profile_url: Optional[str] = None
    enrichment_failed: bool = False
    enrichment_error: Optional[str] = None


# ============================================================================
# Output
# ============================================================================


class RecommendationView(FrozenModel):
    name: str
    identifier: str
    description: Optional[str] = None
    website_url: Optional[str] = None
    location: Optional[str] = None
    logo_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    score: float
    reasons: List[str] = Field(default_factory=list)
    profile_url: Optional[str] = None
    geo_tier: int
    cause_level: int
    trust_score: Optional[float] = None
    cause_mismatch: bool = False
    enrichment_failed: bool = False


class DebugInfo(FrozenModel):
    from_cache: bool = False
    search_terms: List[str] = Field(default_factory=list)
    causes_browsed: List[str] = Field(default_factory=list)
    stage_counts: Dict[str, int] = Field(default_factory=dict)
    exclusion_counts: Dict[str, int] = Field(default_factory=dict)
    geo_tier_distribution: Dict[str, int] = Field(default_factory=dict)
    cause_level_distribution: Dict[str, int] = Field(default_factory=dict)
    trust_coverage: float = 0.0
    generation_failures: List[str] = Field(default_factory=list)
    enrichment_failures: int = 0
    deadline_exceeded: bool = False
    timings_ms: Dict[str, float] = Field(default_factory=dict)


class RecommendationResponse(FrozenModel):
    success: bool = True
    nonprofits: List[RecommendationView] = Field(default_factory=list, max_length=10)
    debug: Optional[DebugInfo] = None

    def to_json_dict(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True)
        if self.debug is None:
            data.pop("debug")
        return data
