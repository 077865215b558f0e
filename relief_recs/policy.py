"""Ranking policy vocabulary.

Loads disaster synonyms, cause vocabularies, adjacent-cause sets and the
global/rapid-response markers the reranker matches against directory text.

Usage:
    from relief_recs.policy import load_policy

    policy = load_policy()
    policy.disaster_terms("earthquake")      # ["earthquake", "earthquakes", "quake", ...]
    policy.adjacent_to(["disaster-relief"])  # ["humanitarian", "refugees", ...]
"""

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

import yaml

from .config import get_policy_path

logger = logging.getLogger(__name__)

DEFAULT_LEGAL_NAME_PATTERN = r"^[\w\s.&,-]+\b(Trust|Tr|Fund|UW|FBO)\.?$"


@dataclass
class RankingPolicy:
    """Vocabulary behind geo tiers 3/4, cause levels and the legal-name check."""

    default_causes: list[str] = field(default_factory=lambda: ["disaster-relief"])
    disaster_synonyms: dict[str, list[str]] = field(default_factory=dict)
    need_terms: list[str] = field(default_factory=list)
    cause_vocabularies: dict[str, list[str]] = field(default_factory=dict)
    adjacent_causes: dict[str, list[str]] = field(default_factory=dict)
    global_markers: list[str] = field(default_factory=list)
    rapid_response_markers: list[str] = field(default_factory=list)
    legal_name_pattern: str = DEFAULT_LEGAL_NAME_PATTERN
    generic_name_tokens: list[str] = field(default_factory=list)
    version: str = "default"

    def disaster_terms(self, disaster_type: Optional[str]) -> list[str]:
        """The disaster type plus every synonym of the group it belongs to."""
        if not disaster_type:
            return []
        key = disaster_type.strip().lower()
        if not key:
            return []

        terms = [key]
        for name, synonyms in self.disaster_synonyms.items():
            group = [name.lower()] + [s.lower() for s in synonyms]
            if key in group:
                terms.extend(term for term in group if term not in terms)
        return terms

    def cause_terms(self, cause: str) -> list[str]:
        """Words indicating a cause; unknown slugs match their own words."""
        slug = cause.strip().lower()
        terms = [slug, slug.replace("-", " ")]
        terms.extend(term.lower() for term in self.cause_vocabularies.get(slug, []))
        return list(dict.fromkeys(terms))

    def adjacent_to(self, causes: Iterable[str]) -> list[str]:
        """Adjacent causes of every crisis cause, minus the crisis causes themselves."""
        crisis = [c.strip().lower() for c in causes]
        adjacent: list[str] = []
        for cause in crisis:
            for other in self.adjacent_causes.get(cause, []):
                other = other.lower()
                if other not in crisis and other not in adjacent:
                    adjacent.append(other)
        return adjacent

    def distinguishing_terms(self) -> set[str]:
        """Words that make an organization name more than a legal shell."""
        terms: set[str] = set(t.lower() for t in self.need_terms)
        for name, synonyms in self.disaster_synonyms.items():
            terms.add(name.lower())
            terms.update(s.lower() for s in synonyms)
        for vocabulary in self.cause_vocabularies.values():
            terms.update(t.lower() for t in vocabulary)
        return terms

    def is_generic_legal_name(self, name: Optional[str]) -> bool:
        """
        True when a name is only a legal wrapper ("John Smith Trust", "Doe Family Fund UW").

        A name passes when it carries any crisis or cause word
        ("Turkey Earthquake Relief Fund").
        """
        if not name or not name.strip():
            return True

        words = re.findall(r"[a-z0-9]+", name.lower())
        generic = set(t.lower() for t in self.generic_name_tokens)
        if words and all(word in generic for word in words):
            return True

        if not re.match(self.legal_name_pattern, name.strip(), re.IGNORECASE):
            return False

        lowered = " ".join(words)
        return not any(_contains_term(lowered, term) for term in self.distinguishing_terms())


def _contains_term(text: str, term: str) -> bool:
    return re.search(rf"(?<![\w]){re.escape(term)}(?![\w])", text) is not None


def _build_default_policy() -> RankingPolicy:
    """Fallback: minimal disaster-relief vocabulary."""
    return RankingPolicy(
        disaster_synonyms={
            "earthquake": ["quake", "seismic"],
            "flood": ["flooding", "floods"],
            "hurricane": ["cyclone", "typhoon"],
            "wildfire": ["bushfire", "fire"],
        },
        need_terms=["displaced", "shelter", "food", "water", "medical", "rescue", "relief"],
        cause_vocabularies={
            "disaster-relief": ["disaster", "relief", "emergency", "recovery"],
            "humanitarian": ["humanitarian", "aid"],
            "refugees": ["refugee", "refugees", "displaced"],
        },
        adjacent_causes={"disaster-relief": ["humanitarian", "refugees"]},
        global_markers=["international", "global", "worldwide"],
        rapid_response_markers=["rapid response", "emergency response", "deploy"],
        generic_name_tokens=["the", "of", "and", "trust", "tr", "fund", "uw", "fbo", "foundation", "inc"],
    )


@lru_cache(maxsize=8)
def _load_policy_file(config_path: Path) -> RankingPolicy:
    if not config_path.exists():
        logger.warning(f"Ranking policy not found at {config_path}, using defaults")
        return _build_default_policy()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    policy = RankingPolicy(
        default_causes=[c.lower() for c in raw.get("default_causes", ["disaster-relief"])],
        disaster_synonyms={k.lower(): list(v or []) for k, v in raw.get("disaster_synonyms", {}).items()},
        need_terms=list(raw.get("need_terms", [])),
        cause_vocabularies={k.lower(): list(v or []) for k, v in raw.get("cause_vocabularies", {}).items()},
        adjacent_causes={k.lower(): list(v or []) for k, v in raw.get("adjacent_causes", {}).items()},
        global_markers=list(raw.get("global_markers", [])),
        rapid_response_markers=list(raw.get("rapid_response_markers", [])),
        legal_name_pattern=raw.get("legal_name_pattern", DEFAULT_LEGAL_NAME_PATTERN),
        generic_name_tokens=list(raw.get("generic_name_tokens", [])),
        version=str(raw.get("version", "unversioned")),
    )
    re.compile(policy.legal_name_pattern)

    logger.info(
        f"Loaded ranking policy {policy.version}: {len(policy.disaster_synonyms)} disaster types, "
        f"{len(policy.cause_vocabularies)} cause vocabularies"
    )
    return policy


def load_policy(path: Optional[Path] = None) -> RankingPolicy:
    """Load and cache the ranking policy (config/ranking_policy.yaml by default)."""
    return _load_policy_file(Path(path) if path else get_policy_path())


def clear_cache():
    """Clear the policy cache (useful for testing)."""
    _load_policy_file.cache_clear()
