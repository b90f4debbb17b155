"""
Engine selector for upstream content generation.

Picks one engine per scene from a read-only pool, restricted to the cost
tiers the caller's pricing tier includes, preferring the engine type that
suits the scene.
"""

import random
from typing import Dict, Iterable, List, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, Field

from pipeline.error_handler import PipelineError, ErrorType
from pipeline.models import CostTier, Engine, EngineType

logger = structlog.get_logger()

# A pricing tier admits its own cost tier and every cheaper one
TIER_INCLUSION: Dict[CostTier, List[CostTier]] = {
    CostTier.FREE: [CostTier.FREE],
    CostTier.CHEAP: [CostTier.FREE, CostTier.CHEAP],
    CostTier.NORMAL: [CostTier.FREE, CostTier.CHEAP, CostTier.NORMAL],
    CostTier.EXPENSIVE: [CostTier.FREE, CostTier.CHEAP, CostTier.NORMAL, CostTier.EXPENSIVE],
}

AVATAR_SCENE_TYPES = ("avatar", "testimonial")
IMAGE_HINTS = ("photo", "image")

DEFAULT_ENGINE_POOL: List[Engine] = [
    Engine(id="ffmpeg-template", name="FFmpeg Templates", type=EngineType.TEMPLATE_BASED,
           cost_tier=CostTier.FREE, supports_free_tier=True, priority_score=100),
    Engine(id="runway-gen3", name="Runway Gen-3", type=EngineType.TEXT_TO_VIDEO,
           cost_tier=CostTier.EXPENSIVE, priority_score=95),
    Engine(id="luma-dream-machine", name="Luma Dream Machine", type=EngineType.TEXT_TO_VIDEO,
           cost_tier=CostTier.NORMAL, priority_score=88),
    Engine(id="pika-labs", name="Pika Labs", type=EngineType.TEXT_TO_VIDEO,
           cost_tier=CostTier.CHEAP, supports_free_tier=True, priority_score=85),
    Engine(id="fal-ai", name="Fal AI", type=EngineType.IMAGE_TO_VIDEO,
           cost_tier=CostTier.NORMAL, priority_score=80),
    Engine(id="heygen", name="HeyGen", type=EngineType.AVATAR,
           cost_tier=CostTier.EXPENSIVE, priority_score=90),
    Engine(id="d-id", name="D-ID", type=EngineType.AVATAR,
           cost_tier=CostTier.NORMAL, priority_score=75),
    Engine(id="elevenlabs", name="ElevenLabs", type=EngineType.VOICE,
           cost_tier=CostTier.CHEAP, supports_free_tier=True, priority_score=90),
]


class NoEngineAvailableError(PipelineError):
    """No engine in the pool is admitted by the allowed cost tiers."""

    def __init__(self, allowed_cost_tiers: Sequence[CostTier]):
        tiers = ", ".join(t.value for t in allowed_cost_tiers) or "none"
        super().__init__(
            ErrorType.VALIDATION_ERROR,
            f"No engines available for tiers: {tiers}",
            stage="engine_selection",
            retryable=False,
            suggested_fix="Raise the pricing tier or add an engine for the allowed cost tiers.",
            details={"allowed_cost_tiers": [t.value for t in allowed_cost_tiers]}
        )


class SceneRequest(BaseModel):
    id: str
    sceneType: Optional[str] = Field(None, description="avatar, testimonial, broll, ...")
    visualPrompt: Optional[str] = None


def allowed_tiers_for(pricing_tier: Union[CostTier, str]) -> List[CostTier]:
    """Cost tiers admitted by a pricing tier."""
    return list(TIER_INCLUSION[CostTier(pricing_tier)])


def preferred_type(scene_type: Optional[str], visual_hint: Optional[str]) -> EngineType:
    scene_type = (scene_type or "").lower()
    hint = (visual_hint or "").lower()

    if any(t in scene_type for t in AVATAR_SCENE_TYPES):
        return EngineType.AVATAR
    if any(word in hint for word in IMAGE_HINTS):
        return EngineType.IMAGE_TO_VIDEO
    return EngineType.TEXT_TO_VIDEO


def select_engine(
    scene_type: Optional[str],
    visual_hint: Optional[str],
    allowed_cost_tiers: Iterable[Union[CostTier, str]],
    pool: Sequence[Engine] = DEFAULT_ENGINE_POOL,
    rng: Optional[random.Random] = None
) -> Engine:
    """
    Choose an engine for one scene.

    Args:
        scene_type: Scene role (avatar, testimonial, broll, ...)
        visual_hint: Visual prompt text
        allowed_cost_tiers: Cost tiers the caller may use
        pool: Engines to choose from
        rng: Random source (uniform choice)

    Raises:
        NoEngineAvailableError: Nothing in the pool fits the allowed tiers
    """
    allowed = [CostTier(t) for t in allowed_cost_tiers]
    eligible = [e for e in pool if e.cost_tier in allowed]
    if not eligible:
        raise NoEngineAvailableError(allowed)

    wanted = preferred_type(scene_type, visual_hint)
    narrowed = [e for e in eligible if e.type == wanted]
    candidates = narrowed or eligible

    engine = (rng or random).choice(candidates)
    logger.debug(
        "engine_selected",
        engine=engine.id,
        preferred_type=wanted.value,
        narrowed=bool(narrowed),
        candidates=len(candidates)
    )
    return engine


def assign_engines(
    scenes: Sequence[SceneRequest],
    pricing_tier: Union[CostTier, str],
    pool: Sequence[Engine] = DEFAULT_ENGINE_POOL,
    rng: Optional[random.Random] = None
) -> Dict[str, Engine]:
    """Engine per scene id for a whole script."""
    allowed = allowed_tiers_for(pricing_tier)
    assignments = {
        scene.id: select_engine(scene.sceneType, scene.visualPrompt, allowed, pool, rng)
        for scene in scenes
    }
    logger.info("engines_assigned", scenes=len(scenes), pricing_tier=CostTier(pricing_tier).value)
    return assignments
