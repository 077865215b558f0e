"""Shared fixtures for recommendation engine tests.

No test touches the network: directory calls go to FakeDirectoryClient, and
the HTTP client tests use a fake requests session.
"""

import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from relief_recs.config import EngineConfig  # noqa: E402
from relief_recs.errors import ProviderNotFound  # noqa: E402
from relief_recs.policy import clear_cache as clear_policy_cache  # noqa: E402
from relief_recs.recommendations.cache import RecommendationCache  # noqa: E402
from relief_recs.recommendations.models import (  # noqa: E402
    Candidate,
    CrisisEntities,
    NonprofitDetails,
    Provenance,
)

LONG_DESCRIPTION = "Provides emergency shelter, food and medical care to families displaced by disasters."


def build_candidate(identifier: str = "test-org", **overrides) -> Candidate:
    """Candidate that passes the fallback quality gate unless overridden."""
    defaults = dict(
        identifier=identifier,
        slug=identifier,
        name=f"{identifier.replace('-', ' ').title()} Relief",
        description=LONG_DESCRIPTION,
        website_url=f"https://{identifier}.example.org",
        location_text="Istanbul, Turkey",
        category_text="Disaster Relief",
        causes=["disaster-relief"],
        is_disbursable=True,
        provenance=Provenance(source="search", query_used="earthquake"),
    )
    defaults.update(overrides)
    return Candidate(**defaults)


def build_details(identifier: str, **overrides) -> NonprofitDetails:
    defaults = dict(
        identifier=identifier,
        slug=identifier,
        name=f"{identifier.replace('-', ' ').title()} Relief",
        long_description="A much longer description from the detail record.",
        cover_image_url=f"https://img.example.org/{identifier}.jpg",
        categories=["Disaster Relief"],
        profile_url=f"https://www.every.org/{identifier}",
    )
    defaults.update(overrides)
    return NonprofitDetails(**defaults)


class FakeClock:
    """Controllable monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeDirectoryClient:
    """
    Recording stand-in for DirectoryClient.

    search/browse/details responses are configured per query; a configured
    Exception instance is raised instead of returned. Unconfigured queries
    return an empty list (search/browse) or raise ProviderNotFound (details).
    """

    def __init__(self, search=None, browse=None, details=None, delay: float = 0.0):
        self.search_results = dict(search or {})
        self.browse_results = dict(browse or {})
        self.detail_results = dict(details or {})
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    def _enter(self, call):
        with self._lock:
            self.calls.append(call)
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)

    def _exit(self):
        with self._lock:
            self._in_flight -= 1

    def _respond(self, call, value, default):
        self._enter(call)
        try:
            if self.delay:
                time.sleep(self.delay)
            if value is None:
                value = default()
            if isinstance(value, Exception):
                raise value
            return list(value) if isinstance(value, (list, tuple)) else value
        finally:
            self._exit()

    def search(self, term, causes=None, take=50, deadline=None):
        return self._respond(("search", term, tuple(causes or ())), self.search_results.get(term), list)

    def browse(self, cause, take=50, page=1, deadline=None):
        return self._respond(("browse", cause), self.browse_results.get(cause), list)

    def get_details(self, identifier, deadline=None):
        def missing():
            return ProviderNotFound(f"No detail record for {identifier}", status_code=404)

        return self._respond(("details", identifier), self.detail_results.get(identifier), missing)

    def count(self, kind: str) -> int:
        with self._lock:
            return sum(1 for call in self.calls if call[0] == kind)


@pytest.fixture(autouse=True)
def _fresh_policy_cache():
    clear_policy_cache()
    yield
    clear_policy_cache()


@pytest.fixture
def make_candidate():
    return build_candidate


@pytest.fixture
def make_details():
    return build_details


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return RecommendationCache(clock=clock)


@pytest.fixture
def config(tmp_path):
    """Config with no API key and zero retry delay; never reads the environment."""
    return EngineConfig(api_key="test-key", retry_base_delay=0.0, request_deadline=5.0)


@pytest.fixture
def turkey_entities():
    return CrisisEntities(
        geography={"country": "Turkey"},
        disaster_type="earthquake",
        affected_groups=["families"],
        causes=["disaster-relief"],
    )


@pytest.fixture
def turkey_fixture_set():
    """Turkey-based, Greece-based and global high-flexibility disaster-relief orgs."""
    turkey_org = build_candidate(
        "ahbap",
        name="Ahbap Earthquake Relief",
        location_text="Istanbul, Turkey",
        description="Delivers earthquake relief, emergency shelter and hot meals to families across Turkey.",
    )
    greece_org = build_candidate(
        "hellenic-rescue",
        name="Hellenic Rescue Team",
        location_text="Athens, Greece",
        description="Volunteer search and rescue teams supporting earthquake survivors in the Aegean.",
    )
    global_org = build_candidate(
        "direct-relief",
        name="Direct Relief",
        location_text="Santa Barbara, CA",
        description=(
            "International humanitarian organization providing medical aid worldwide. "
            "Our rapid response teams deploy within hours when disaster strikes."
        ),
        category_text="Humanitarian Aid",
        ein="95-1831116",
        ntee_code="Q33",
    )
    return turkey_org, greece_org, global_org
