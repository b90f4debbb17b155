"""
Tests for tier-restricted engine selection.
"""

import random

import pytest

from pipeline.models import CostTier, Engine, EngineType
from services.engine_selector import (
    DEFAULT_ENGINE_POOL,
    NoEngineAvailableError,
    SceneRequest,
    allowed_tiers_for,
    assign_engines,
    preferred_type,
    select_engine,
)


def engine(engine_id, engine_type, cost_tier):
    return Engine(id=engine_id, name=engine_id, type=engine_type, cost_tier=cost_tier)


PAID_POOL = [
    engine("cheap-t2v", EngineType.TEXT_TO_VIDEO, CostTier.CHEAP),
    engine("normal-avatar", EngineType.AVATAR, CostTier.NORMAL),
    engine("expensive-t2v", EngineType.TEXT_TO_VIDEO, CostTier.EXPENSIVE),
]


class TestTiers:
    def test_inclusion(self):
        assert allowed_tiers_for("free") == [CostTier.FREE]
        assert allowed_tiers_for(CostTier.NORMAL) == [CostTier.FREE, CostTier.CHEAP, CostTier.NORMAL]
        assert len(allowed_tiers_for("expensive")) == 4

    def test_unknown_tier(self):
        with pytest.raises(ValueError):
            allowed_tiers_for("platinum")


class TestPreferredType:
    @pytest.mark.parametrize("scene_type, hint, expected", [
        ("avatar", None, EngineType.AVATAR),
        ("Customer Testimonial", "a photo of a happy customer", EngineType.AVATAR),
        ("broll", "product photo on a table", EngineType.IMAGE_TO_VIDEO),
        ("broll", "An IMAGE slowly zooming", EngineType.IMAGE_TO_VIDEO),
        ("hook", "city at night", EngineType.TEXT_TO_VIDEO),
        (None, None, EngineType.TEXT_TO_VIDEO),
    ])
    def test_heuristic(self, scene_type, hint, expected):
        assert preferred_type(scene_type, hint) == expected


class TestSelectEngine:
    def test_no_engine_for_free_tier(self):
        """A pool with only paid engines cannot serve a free caller."""
        with pytest.raises(NoEngineAvailableError) as exc_info:
            select_engine("broll", "city", [CostTier.FREE], pool=PAID_POOL)

        error = exc_info.value
        assert error.message == "No engines available for tiers: free"
        assert error.details == {"allowed_cost_tiers": ["free"]}
        assert error.retryable is False

    def test_result_is_always_within_allowed_tiers(self):
        rng = random.Random(7)
        for _ in range(50):
            chosen = select_engine("hook", "city", [CostTier.FREE, CostTier.CHEAP], rng=rng)
            assert chosen.cost_tier in (CostTier.FREE, CostTier.CHEAP)

    def test_prefers_matching_type(self):
        rng = random.Random(1)
        for _ in range(20):
            chosen = select_engine("avatar", None, list(CostTier), pool=PAID_POOL, rng=rng)
            assert chosen.id == "normal-avatar"

    def test_falls_back_to_any_eligible_engine(self):
        """No avatar engine in the cheap tier: any cheap engine is used."""
        chosen = select_engine("avatar", None, [CostTier.CHEAP], pool=PAID_POOL, rng=random.Random(3))
        assert chosen.id == "cheap-t2v"

    def test_default_pool_free_tier(self):
        chosen = select_engine("hook", "city", ["free"])
        assert chosen.id == "ffmpeg-template"

    def test_seeded_choice_is_reproducible(self):
        first = select_engine("hook", None, list(CostTier), rng=random.Random(42))
        second = select_engine("hook", None, list(CostTier), rng=random.Random(42))
        assert first.id == second.id
        assert first.type == EngineType.TEXT_TO_VIDEO


class TestAssignEngines:
    def test_one_engine_per_scene(self):
        scenes = [
            SceneRequest(id="s1", sceneType="avatar"),
            SceneRequest(id="s2", sceneType="broll", visualPrompt="product photo"),
            SceneRequest(id="s3", sceneType="hook", visualPrompt="neon city"),
        ]

        assignments = assign_engines(scenes, CostTier.EXPENSIVE, rng=random.Random(0))

        assert list(assignments) == ["s1", "s2", "s3"]
        assert assignments["s1"].type == EngineType.AVATAR
        assert assignments["s2"].id == "fal-ai"
        assert assignments["s3"].type == EngineType.TEXT_TO_VIDEO

    def test_free_pricing_tier_uses_free_engines(self):
        scenes = [SceneRequest(id="s1", sceneType="avatar"), SceneRequest(id="s2")]

        assignments = assign_engines(scenes, "free")

        assert {e.cost_tier for e in assignments.values()} == {CostTier.FREE}

    def test_default_pool_is_unchanged(self):
        before = [e.id for e in DEFAULT_ENGINE_POOL]
        assign_engines([SceneRequest(id="s1")], "normal")
        assert [e.id for e in DEFAULT_ENGINE_POOL] == before
