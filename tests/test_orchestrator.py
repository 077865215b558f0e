"""End-to-end tests for the recommendation orchestrator against a fake directory."""

import time

import pytest

from relief_recs.config import EngineConfig
from relief_recs.errors import AllSourcesFailed, ProviderServerError
from relief_recs.recommendations.models import CrisisEntities, RecommendationRequest
from relief_recs.recommendations.orchestrator import RecommendationOrchestrator, recommendation_key
from relief_recs.recommendations.providers import StaticSignalProvider
from tests.conftest import FakeDirectoryClient, build_details


def _request(entities, **overrides) -> RecommendationRequest:
    values = dict(title="Earthquake devastates southern Turkey", entities=entities, debug=True)
    values.update(overrides)
    return RecommendationRequest(**values)


@pytest.fixture
def turkey_client(turkey_fixture_set):
    ids = [c.identifier for c in turkey_fixture_set]
    return FakeDirectoryClient(
        search={"earthquake": list(turkey_fixture_set)},
        details={i: build_details(i) for i in ids},
    )


@pytest.fixture
def orchestrator(turkey_client, cache, config):
    return RecommendationOrchestrator(client=turkey_client, cache=cache, config=config)


class TestRecommend:
    def test_turkey_earthquake(self, orchestrator, turkey_entities):
        response = orchestrator.recommend(_request(turkey_entities))

        assert response.success
        assert [v.identifier for v in response.nonprofits] == ["ahbap", "hellenic-rescue", "direct-relief"]
        assert [v.geo_tier for v in response.nonprofits] == [1, 2, 3]
        first = response.nonprofits[0]
        assert first.location == "Istanbul, Turkey"
        assert first.cover_image_url == "https://img.example.org/ahbap.jpg"
        assert first.profile_url == "https://www.every.org/ahbap"
        assert first.trust_score is None
        assert first.reasons

    def test_debug_block(self, orchestrator, turkey_entities):
        debug = orchestrator.recommend(_request(turkey_entities)).debug

        assert debug.from_cache is False
        assert debug.search_terms == ["earthquake", "Turkey", "earthquake Turkey", "families"]
        assert debug.causes_browsed == ["disaster-relief"]
        assert debug.stage_counts == {"generated": 3, "deduplicated": 3, "ranked": 3, "enriched": 3, "returned": 3}
        assert debug.geo_tier_distribution == {"1": 1, "2": 1, "3": 1}
        assert debug.trust_coverage == 0.0
        assert debug.generation_failures == []
        assert not debug.deadline_exceeded
        assert {"generate", "rerank", "enrich", "total"} <= set(debug.timings_ms)

    def test_debug_omitted_unless_requested(self, orchestrator, turkey_entities):
        assert orchestrator.recommend(_request(turkey_entities, debug=False)).debug is None

    def test_top_n(self, orchestrator, turkey_entities):
        response = orchestrator.recommend(_request(turkey_entities, top_n=2))

        assert [v.identifier for v in response.nonprofits] == ["ahbap", "hellenic-rescue"]

    def test_never_more_than_ten(self, cache, config, turkey_entities, make_candidate):
        orgs = [make_candidate(f"org-{i}", category_text=f"Category {i}") for i in range(15)]
        client = FakeDirectoryClient(search={"earthquake": orgs})
        orchestrator = RecommendationOrchestrator(client=client, cache=cache, config=config)

        response = orchestrator.recommend(_request(turkey_entities))

        assert len(response.nonprofits) == 10

    def test_request_causes_merged(self, turkey_client, cache, config, turkey_entities):
        orchestrator = RecommendationOrchestrator(client=turkey_client, cache=cache, config=config)

        orchestrator.recommend(_request(turkey_entities, causes=["refugees", "Disaster-Relief"]))

        assert ("browse", "refugees") in turkey_client.calls
        assert turkey_client.count("browse") == 2

    def test_trust_provider_wired(self, turkey_client, cache, config, turkey_entities):
        trust = StaticSignalProvider.from_scores({"ahbap": 88.0}, source="ratings")
        orchestrator = RecommendationOrchestrator(client=turkey_client, cache=cache, config=config, trust_provider=trust)

        response = orchestrator.recommend(_request(turkey_entities))

        assert response.nonprofits[0].trust_score == 88.0
        assert "Trust score: 88 (ratings)" in response.nonprofits[0].reasons

    def test_enrichment_failure_flagged(self, cache, config, turkey_entities, turkey_fixture_set):
        client = FakeDirectoryClient(
            search={"earthquake": list(turkey_fixture_set)},
            details={"ahbap": ProviderServerError("HTTP 500", status_code=500)},
        )
        orchestrator = RecommendationOrchestrator(client=client, cache=cache, config=config)

        response = orchestrator.recommend(_request(turkey_entities))

        assert len(response.nonprofits) == 3
        assert all(v.enrichment_failed for v in response.nonprofits)
        assert response.debug.enrichment_failures == 3

    def test_no_candidates_is_empty_success(self, cache, config, turkey_entities):
        orchestrator = RecommendationOrchestrator(client=FakeDirectoryClient(), cache=cache, config=config)

        response = orchestrator.recommend(_request(turkey_entities))

        assert response.success
        assert response.nonprofits == []


class TestCaching:
    def test_repeat_request_served_from_cache(self, orchestrator, turkey_client, turkey_entities):
        first = orchestrator.recommend(_request(turkey_entities))
        calls = len(turkey_client.calls)

        second = orchestrator.recommend(_request(turkey_entities, title="A different headline"))

        assert len(turkey_client.calls) == calls
        assert second.nonprofits == first.nonprofits
        assert second.debug.from_cache is True
        assert second.debug.stage_counts == first.debug.stage_counts

    def test_cached_without_debug(self, orchestrator, turkey_entities):
        orchestrator.recommend(_request(turkey_entities, debug=False))

        assert orchestrator.recommend(_request(turkey_entities, debug=False)).debug is None

    def test_top_n_is_part_of_key(self, orchestrator, turkey_entities):
        orchestrator.recommend(_request(turkey_entities, top_n=2))

        response = orchestrator.recommend(_request(turkey_entities, top_n=3))

        assert len(response.nonprofits) == 3
        assert response.debug.from_cache is False

    def test_browsed_cause_order_is_part_of_key(self, orchestrator, turkey_client, turkey_entities):
        orchestrator.recommend(_request(turkey_entities, causes=["refugees", "health", "water"]))

        response = orchestrator.recommend(_request(turkey_entities, causes=["water", "health", "refugees"]))

        assert response.debug.from_cache is False
        assert response.debug.causes_browsed == ["disaster-relief", "water", "health"]
        assert ("browse", "water") in turkey_client.calls

    def test_unbrowsed_cause_order_shares_key(self, cache):
        first = CrisisEntities(causes=["disaster-relief", "refugees", "health", "water", "housing"])
        second = CrisisEntities(causes=["disaster-relief", "refugees", "health", "housing", "water"])
        reordered = CrisisEntities(causes=["refugees", "disaster-relief", "health", "water", "housing"])

        assert recommendation_key(cache, first, 10, max_causes=3) == recommendation_key(cache, second, 10, max_causes=3)
        assert recommendation_key(cache, first, 10, max_causes=3) != recommendation_key(cache, reordered, 10, max_causes=3)

    def test_clear_forces_fresh_calls(self, orchestrator, turkey_client, turkey_entities):
        orchestrator.recommend(_request(turkey_entities))
        calls = len(turkey_client.calls)

        orchestrator.clear_cache()
        response = orchestrator.recommend(_request(turkey_entities))

        assert len(turkey_client.calls) > calls
        assert response.debug.from_cache is False
        assert orchestrator.cache_stats()["namespaces"]["recommendation"]["size"] == 1

    def test_partial_generation_failure_not_cached(self, cache, config, turkey_entities, turkey_fixture_set):
        client = FakeDirectoryClient(
            search={
                "earthquake": list(turkey_fixture_set),
                "Turkey": ProviderServerError("HTTP 503", status_code=503),
            },
        )
        orchestrator = RecommendationOrchestrator(client=client, cache=cache, config=config)

        first = orchestrator.recommend(_request(turkey_entities))
        second = orchestrator.recommend(_request(turkey_entities))

        assert len(first.nonprofits) == 3
        assert first.debug.generation_failures
        assert second.debug.from_cache is False
        assert cache.stats()["namespaces"]["recommendation"]["size"] == 0


class TestFailures:
    def test_all_sources_failed(self, cache, config, turkey_entities):
        error = ProviderServerError("HTTP 500", status_code=500)
        client = FakeDirectoryClient(
            search={t: error for t in ["earthquake", "Turkey", "earthquake Turkey", "families"]},
            browse={"disaster-relief": error},
        )
        orchestrator = RecommendationOrchestrator(client=client, cache=cache, config=config)

        with pytest.raises(AllSourcesFailed) as exc_info:
            orchestrator.recommend(_request(turkey_entities))

        assert len(exc_info.value.failures) == 5
        assert exc_info.value.debug.stage_counts["generated"] == 0
        assert cache.stats()["namespaces"]["recommendation"]["size"] == 0

    @pytest.mark.slow
    def test_deadline_returns_partial_results(self, cache, turkey_entities, turkey_fixture_set):
        class SlowDetailsClient(FakeDirectoryClient):
            def get_details(self, identifier, deadline=None):
                time.sleep(0.5)
                return super().get_details(identifier, deadline)

        ids = [c.identifier for c in turkey_fixture_set]
        client = SlowDetailsClient(
            search={"earthquake": list(turkey_fixture_set)},
            details={i: build_details(i) for i in ids},
        )
        config = EngineConfig(api_key="k", retry_base_delay=0.0, request_deadline=0.25)
        orchestrator = RecommendationOrchestrator(client=client, cache=cache, config=config)

        response = orchestrator.recommend(_request(turkey_entities))

        assert [v.identifier for v in response.nonprofits] == ["ahbap", "hellenic-rescue", "direct-relief"]
        assert all(v.enrichment_failed for v in response.nonprofits)
        assert response.debug.deadline_exceeded
        assert cache.stats()["namespaces"]["recommendation"]["size"] == 0
