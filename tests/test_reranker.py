"""Tests for the reranker ordering policy.

Geography dominates cause, cause dominates trust, trust dominates quality.
"""

import random

import pytest

from relief_recs.recommendations.models import CrisisEntities, TrustVettingSignal
from relief_recs.recommendations.providers import StaticSignalProvider
from relief_recs.recommendations.reranker import Reranker, sort_key
from tests.conftest import build_candidate

# ─── Helpers ──────────────────────────────────────────────────────────────────


def _ids(result) -> list:
    return [r.identifier for r in result.ranked]


def _refugee_org(identifier: str, **overrides):
    """Turkey-based org aligned only through an adjacent cause (level 3)."""
    defaults = dict(
        name="Refugee Welcome Center",
        description="Helps refugees and asylum seekers resettle with language classes and job placement.",
        causes=["refugees"],
        category_text="Refugee Support",
    )
    defaults.update(overrides)
    return build_candidate(identifier, **defaults)


def _arts_org(identifier: str, **overrides):
    """Turkey-based org with no cause alignment (level 4)."""
    defaults = dict(
        name=f"Istanbul Art Museum {identifier}",
        description="Offers painting classes and gallery exhibitions for local artists and students year round.",
        causes=["arts"],
        category_text="Arts",
    )
    defaults.update(overrides)
    return build_candidate(identifier, **defaults)


def _vetted_everyone(candidate):
    return TrustVettingSignal(vetted_status="true", source="test")


# ─── Scenarios ────────────────────────────────────────────────────────────────


class TestTurkeyEarthquake:
    """Turkey org (tier 1) > Greece org (tier 2) > global flexible org (tier 3)."""

    def test_expected_order(self, turkey_entities, turkey_fixture_set):
        turkey_org, greece_org, global_org = turkey_fixture_set
        result = Reranker().rerank([global_org, greece_org, turkey_org], turkey_entities)

        assert _ids(result) == ["ahbap", "hellenic-rescue", "direct-relief"]
        assert [r.geo_tier for r in result.ranked] == [1, 2, 3]

    def test_reasons_explain_geography(self, turkey_entities, turkey_fixture_set):
        result = Reranker().rerank(list(turkey_fixture_set), turkey_entities)
        by_id = {r.identifier: r for r in result.ranked}

        assert by_id["ahbap"].reasons[0].startswith("Operates directly in Turkey")
        assert by_id["hellenic-rescue"].reasons[0].startswith("Regional responder")
        assert by_id["direct-relief"].reasons[0] == "Global responder with rapid deployment capacity"

    def test_global_without_flexibility_is_tier_4(self, turkey_entities):
        org = build_candidate(
            "global-aid",
            location_text="Geneva, Switzerland",
            description="An international federation supporting national societies with long-term development programs.",
        )
        result = Reranker().rerank([org], turkey_entities)

        assert result.ranked[0].geo_tier == 4

    def test_explicit_flexibility_score(self, turkey_entities):
        org = build_candidate(
            "global-aid",
            location_text="Geneva, Switzerland",
            description="An international federation supporting national societies with long-term development programs.",
            flexibility_score=0.8,
        )
        result = Reranker().rerank([org], turkey_entities)

        assert result.ranked[0].geo_tier == 3


class TestGlobalFlexibility:
    """Tier 3 needs a strong flexibility signal; tier 4 is global without it."""

    def _global_org(self, **overrides):
        defaults = dict(
            location_text="Geneva, Switzerland",
            ntee_code="Q33",
            description="Supports partner agencies with relief supplies and long-term recovery programs.",
        )
        defaults.update(overrides)
        return build_candidate("intl-aid", **defaults)

    @pytest.mark.parametrize("score,expected_tier", [(0.2, 4), (0.49, 4), (0.5, 3), (0.9, 3)])
    def test_flexibility_score_on_unit_scale(self, turkey_entities, score, expected_tier):
        result = Reranker().rerank([self._global_org(flexibility_score=score)], turkey_entities)

        assert result.ranked[0].geo_tier == expected_tier

    def test_single_marker_is_not_enough(self, turkey_entities):
        org = self._global_org(description="Supports partner agencies and can deploy volunteers to long-term recovery.")

        result = Reranker().rerank([org], turkey_entities)

        assert result.ranked[0].geo_tier == 4

    def test_two_markers_reach_tier_3(self, turkey_entities):
        org = self._global_org(description="Our rapid response teams deploy relief supplies to recovery programs.")

        result = Reranker().rerank([org], turkey_entities)

        assert result.ranked[0].geo_tier == 3

    def test_thresholds_come_from_config(self, turkey_entities, config):
        config.flexibility_score_threshold = 0.95
        config.rapid_response_marker_min = 1
        by_score = self._global_org(flexibility_score=0.9)
        by_marker = self._global_org(description="Supports partner agencies and can deploy volunteers to long-term recovery.")

        reranker = Reranker(config)

        assert reranker.geo_tier(by_score, turkey_entities)[0] == 4
        assert reranker.geo_tier(by_marker, turkey_entities)[0] == 3


class TestMissingTrustData:
    """No providers configured: every survivor is unscored, still ranked."""

    def test_reasons_and_coverage(self, turkey_entities, turkey_fixture_set):
        result = Reranker().rerank(list(turkey_fixture_set), turkey_entities)

        assert len(result.ranked) == 3
        assert result.trust_coverage == 0.0
        for ranked in result.ranked:
            assert ranked.trust.trust_score is None
            assert "Trust score unavailable; included via quality gate" in ranked.reasons


# ─── Dominance properties ─────────────────────────────────────────────────────


class TestDominance:
    def test_geo_tier_beats_trust_and_cause(self, turkey_entities, turkey_fixture_set):
        """Tier-1 org with low trust and weaker cause still outranks tier-2 with perfect trust."""
        _, greece_org, _ = turkey_fixture_set
        weak_local = _refugee_org("local-refugees")
        trust = StaticSignalProvider.from_scores({"hellenic-rescue": 100.0, "local-refugees": 5.0})

        result = Reranker(trust_provider=trust).rerank([greece_org, weak_local], turkey_entities)

        assert _ids(result) == ["local-refugees", "hellenic-rescue"]
        assert result.ranked[0].cause_level == 3
        assert result.ranked[1].cause_level == 1

    def test_cause_level_beats_trust_within_tier(self, turkey_entities):
        specialist = build_candidate("specialist")
        adjacent = _refugee_org("adjacent")
        trust = StaticSignalProvider.from_scores({"specialist": 10.0, "adjacent": 100.0})

        result = Reranker(trust_provider=trust).rerank([adjacent, specialist], turkey_entities)

        assert _ids(result) == ["specialist", "adjacent"]
        assert [r.cause_level for r in result.ranked] == [1, 3]

    def test_trust_breaks_ties_and_missing_sorts_last(self, turkey_entities):
        high = build_candidate("high-trust", category_text="Emergency Relief")
        low = build_candidate("low-trust", category_text="Food Banks")
        unknown = build_candidate("no-trust", category_text="Housing")
        trust = StaticSignalProvider.from_scores({"high-trust": 90.0, "low-trust": 40.0})

        result = Reranker(trust_provider=trust).rerank([unknown, low, high], turkey_entities)

        assert _ids(result) == ["high-trust", "low-trust", "no-trust"]
        assert any(r.startswith("Trust score unavailable") for r in result.ranked[2].reasons)
        assert result.trust_coverage == pytest.approx(66.7)

    def test_quality_breaks_remaining_ties(self, turkey_entities):
        sparse = build_candidate("sparse", category_text="Housing")
        complete = build_candidate(
            "complete", category_text="Food Banks", ein="12-3456789", logo_url="https://x/logo.png", ntee_code="M20"
        )

        result = Reranker().rerank([sparse, complete], turkey_entities)

        assert _ids(result) == ["complete", "sparse"]
        assert result.ranked[0].quality_score > result.ranked[1].quality_score

    def test_total_score_does_not_affect_order(self, turkey_entities):
        """A tier-2 org can display a higher total score yet still rank second."""
        greece = build_candidate("greece", location_text="Athens, Greece", ein="12-3456789", logo_url="x", ntee_code="M20")
        local = _refugee_org("local")
        trust = StaticSignalProvider.from_scores({"greece": 100.0})

        result = Reranker(trust_provider=trust).rerank([greece, local], turkey_entities)

        assert _ids(result) == ["local", "greece"]
        assert result.ranked[1].total_score > result.ranked[0].total_score


# ─── Hard exclusions and the quality gate ─────────────────────────────────────


class TestExclusions:
    def test_vetted_false_is_excluded(self, turkey_entities):
        org = build_candidate("rejected")
        vetting = StaticSignalProvider.from_vetted({"rejected": False})

        result = Reranker(vetting_provider=vetting).rerank([org], turkey_entities)

        assert result.ranked == []
        assert result.exclusion_counts["vetting"] == 1

    def test_tier_5_is_excluded(self, turkey_entities):
        far_local = build_candidate("lima-food", location_text="Lima, Peru")

        result = Reranker().rerank([far_local], turkey_entities)

        assert result.ranked == []
        assert result.exclusion_counts["geography"] == 1

    def test_missing_location_and_not_global_is_excluded(self, turkey_entities):
        org = build_candidate("nowhere", location_text=None)

        result = Reranker().rerank([org], turkey_entities)

        assert result.exclusion_counts["geography"] == 1

    @pytest.mark.parametrize(
        "identifier,name,location,description",
        [
            (
                "austin-food-bank",
                "Central Texas Food Bank",
                "Austin, TX",
                "Provides emergency food and disaster relief to families and works toward a world without hunger.",
            ),
            (
                "columbus-resettlement",
                "Columbus Refugee Resettlement",
                "Columbus, OH",
                "Emergency relief, housing and job placement for families arriving in Columbus from 30 countries.",
            ),
            (
                "portland-shelter",
                "Portland Community Shelter",
                "Portland, OR",
                "Global citizens volunteering to provide emergency shelter and disaster relief to local families.",
            ),
        ],
    )
    def test_local_org_elsewhere_is_excluded_despite_mission_wording(
        self, turkey_entities, identifier, name, location, description
    ):
        org = build_candidate(identifier, name=name, location_text=location, description=description)

        result = Reranker().rerank([org], turkey_entities)

        assert Reranker().geo_tier(org, turkey_entities)[0] == 5
        assert result.ranked == []
        assert result.exclusion_counts["geography"] == 1

    @pytest.mark.parametrize(
        "overrides",
        [
            {"ntee_code": "Q33"},
            {"name": "International Medical Corps"},
            {"description": "Provides emergency shelter and disaster relief, operating in more than 40 countries."},
        ],
    )
    def test_explicit_multinational_evidence_keeps_located_org_global(self, turkey_entities, overrides):
        org = build_candidate("located-global", location_text="Los Angeles, CA", **overrides)

        tier, reason = Reranker().geo_tier(org, turkey_entities)

        assert tier == 4
        assert reason == "Global organization"


class TestCountryNameCollisions:
    """A crisis country is matched by code, never as a word inside another country's name."""

    @pytest.mark.parametrize(
        "crisis_country,location,expected_tier",
        [
            ("Sudan", "Juba, South Sudan", 2),
            ("Guinea", "Port Moresby, Papua New Guinea", 5),
            ("Congo", "Kinshasa, Democratic Republic of the Congo", 2),
            ("South Sudan", "Juba, South Sudan", 1),
            ("Sudan", "Khartoum, Sudan", 1),
        ],
    )
    def test_tier_by_resolved_country(self, crisis_country, location, expected_tier):
        entities = CrisisEntities(geography={"country": crisis_country}, disaster_type="flood")
        org = build_candidate("local-org", location_text=location)

        tier, reason = Reranker().geo_tier(org, entities)

        assert tier == expected_tier
        if expected_tier != 1:
            assert not reason.startswith("Operates directly")

    def test_unresolved_country_falls_back_to_name(self):
        entities = CrisisEntities(geography={"country": "Kurdistan"}, disaster_type="earthquake")
        org = build_candidate("erbil-aid", location_text="Erbil, Kurdistan Region, Iraq")

        assert Reranker().geo_tier(org, entities) == (1, "Operates directly in Kurdistan (Erbil, Kurdistan Region, Iraq)")

    def test_region_still_matches_by_name(self):
        entities = CrisisEntities(geography={"country": "Sudan", "region": "Darfur"}, disaster_type="flood")
        org = build_candidate("darfur-relief", location_text="Nyala, Darfur")

        assert Reranker().geo_tier(org, entities) == (1, "Operates directly in Darfur (Nyala, Darfur)")


class TestFallbackQualityGate:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"is_disbursable": False},
            {"is_disbursable": None},
            {"description": "Too short."},
            {"website_url": None},
            {"name": "John Smith Trust"},
            {"name": "Doe Family Fund UW"},
        ],
    )
    def test_unvetted_candidate_failing_gate_is_excluded(self, turkey_entities, overrides):
        org = build_candidate("gated", **overrides)

        result = Reranker().rerank([org], turkey_entities)

        assert result.ranked == []
        assert result.exclusion_counts["vetting"] == 1

    def test_distinguishing_words_keep_fund_names(self, turkey_entities):
        org = build_candidate("quake-fund", name="Turkey Earthquake Relief Fund")

        result = Reranker().rerank([org], turkey_entities)

        assert _ids(result) == ["quake-fund"]

    def test_vetted_true_skips_gate(self, turkey_entities):
        org = build_candidate("vetted", is_disbursable=False, website_url=None)

        result = Reranker(vetting_provider=_vetted_everyone).rerank([org], turkey_entities)

        assert _ids(result) == ["vetted"]
        assert any(reason.startswith("Vetted by") for reason in result.ranked[0].reasons)

    def test_thresholds_come_from_config(self, turkey_entities, config):
        config.min_description_length = 200
        org = build_candidate("medium-description")

        result = Reranker(config).rerank([org], turkey_entities)

        assert result.ranked == []


# ─── Cause backfill ───────────────────────────────────────────────────────────


class TestCauseBackfill:
    def test_backfills_to_minimum_and_ranks_mismatches_last(self, turkey_entities, turkey_fixture_set):
        _, greece_org, global_org = turkey_fixture_set
        arts = [_arts_org(f"arts-{i}") for i in range(4)]

        result = Reranker().rerank(arts + [global_org, greece_org], turkey_entities)

        assert len(result.ranked) == 5
        assert _ids(result)[:2] == ["hellenic-rescue", "direct-relief"]
        assert all(r.cause_mismatch for r in result.ranked[2:])
        assert all(r.cause_level == 4 for r in result.ranked[2:])
        assert result.exclusion_counts["cause"] == 1
        assert result.backfilled == 3

    def test_no_backfill_when_enough_aligned(self, turkey_entities):
        aligned = [build_candidate(f"org-{i}", category_text=f"Category {i}") for i in range(5)]

        result = Reranker().rerank(aligned + [_arts_org("arts")], turkey_entities)

        assert len(result.ranked) == 5
        assert not any(r.cause_mismatch for r in result.ranked)
        assert result.exclusion_counts["cause"] == 1


# ─── Diversity ────────────────────────────────────────────────────────────────


class TestDiversity:
    def test_category_capped_in_top_ten(self, turkey_entities):
        same = [build_candidate(f"dr-{i}", category_text="Disaster Relief") for i in range(6)]
        other = [build_candidate(f"food-{i}", category_text="Food Banks") for i in range(2)]
        trust = StaticSignalProvider.from_scores({f"dr-{i}": 90.0 - i for i in range(6)})

        result = Reranker(trust_provider=trust).rerank(same + other, turkey_entities)
        top_ten = result.ranked[:10]
        categories = [r.category_key for r in top_ten]

        assert len(result.ranked) == 8
        assert categories[:4] == ["disaster-relief", "disaster-relief", "food-security", "food-security"]
        assert _ids(result)[4:] == ["dr-2", "dr-3", "dr-4", "dr-5"]

    def test_uncategorized_not_capped(self, turkey_entities):
        orgs = [build_candidate(f"org-{i}", category_text=None) for i in range(4)]

        result = Reranker().rerank(orgs, turkey_entities)

        assert _ids(result) == ["org-0", "org-1", "org-2", "org-3"]


# ─── Robustness ───────────────────────────────────────────────────────────────


class TestRobustness:
    def test_minimal_candidate_never_raises(self, turkey_entities):
        bare = build_candidate(
            "bare",
            name="Bare",
            description=None,
            website_url=None,
            location_text=None,
            category_text=None,
            causes=[],
            is_disbursable=None,
        )

        vetted = Reranker(vetting_provider=_vetted_everyone).rerank([bare], turkey_entities)
        unvetted = Reranker().rerank([bare], turkey_entities)

        assert vetted.ranked == [] and vetted.exclusion_counts["geography"] == 1
        assert unvetted.ranked == [] and unvetted.exclusion_counts["vetting"] == 1

    def test_failing_provider_treated_as_unknown(self, turkey_entities):
        def broken(candidate):
            raise RuntimeError("reputation service down")

        result = Reranker(trust_provider=broken, vetting_provider=broken).rerank(
            [build_candidate("ok")], turkey_entities
        )

        assert _ids(result) == ["ok"]
        assert result.ranked[0].trust.vetted_status == "unknown"

    def test_empty_entities(self):
        org = build_candidate("org", description="An international network responding to emergencies in 40 countries.")

        result = Reranker().rerank([org], CrisisEntities())

        assert len(result.ranked) == 1

    def test_deterministic_regardless_of_input_order(self, turkey_entities, turkey_fixture_set):
        pool = list(turkey_fixture_set) + [build_candidate(f"org-{i}", category_text=f"C{i}") for i in range(6)]
        expected = _ids(Reranker().rerank(pool, turkey_entities))

        shuffled = pool[:]
        random.Random(7).shuffle(shuffled)

        assert _ids(Reranker().rerank(shuffled, turkey_entities)) == expected

    def test_sort_key_orders_mismatch_last(self, turkey_entities):
        ranked = Reranker().rerank([build_candidate("a")], turkey_entities).ranked[0]
        flagged = ranked.model_copy(update={"cause_mismatch": True, "geo_tier": 1})
        other = ranked.model_copy(update={"geo_tier": 4, "identifier": "b"})

        assert sorted([flagged, other], key=sort_key)[0].identifier == "b"
