"""
Binds a variation idea to concrete segments and a transformation.

ACTION_TABLE is the single place action semantics are defined. Resolution
is deterministic: the same idea against the same segments always yields
an equal ResolvedAction.
"""

from typing import Callable, Dict, List, Optional, Sequence, Union

import structlog

from pipeline.models import ActionType, ResolvedAction, Segment, Transformation, VariationIdea

logger = structlog.get_logger()

# Returns a transformation, or an error string when the action cannot apply
ActionRule = Callable[[List[Segment]], Union[Transformation, str]]


def _remove(targets: List[Segment]):
    return Transformation(remove=True)


def _compress(targets: List[Segment]):
    return Transformation(speed_multiplier=1.25, trim_percent_start=0.1, trim_percent_end=0.1)


def _emphasize(targets: List[Segment]):
    return Transformation(speed_multiplier=0.9)


def _reorder(targets: List[Segment]):
    # -1 defers placement to the compiler's ordering pass
    return Transformation(timeline_offset_ms=-1)


def _replace(targets: List[Segment]):
    return "replace_segment requires external asset reference"


def _split(targets: List[Segment]):
    return Transformation(trim_percent_end=0.5)


def _merge(targets: List[Segment]):
    if len(targets) < 2:
        return "merge_segments requires at least 2 segments"
    return Transformation()


ACTION_TABLE: Dict[ActionType, ActionRule] = {
    ActionType.REMOVE_SEGMENT: _remove,
    ActionType.COMPRESS_SEGMENT: _compress,
    ActionType.EMPHASIZE_SEGMENT: _emphasize,
    ActionType.REORDER_SEGMENTS: _reorder,
    ActionType.REPLACE_SEGMENT: _replace,
    ActionType.SPLIT_SEGMENT: _split,
    ActionType.MERGE_SEGMENTS: _merge,
}

_missing_actions = set(ActionType) - set(ACTION_TABLE)
if _missing_actions:
    raise RuntimeError(f"ACTION_TABLE has no rule for: {sorted(a.value for a in _missing_actions)}")


def parse_action(action: str) -> Optional[ActionType]:
    try:
        return ActionType(action)
    except ValueError:
        return None


def _unresolved(idea: VariationIdea, targets: List[str], error: str) -> ResolvedAction:
    return ResolvedAction(
        action_id=idea.id,
        source_action=idea.action,
        target_segments=targets,
        transformation=Transformation(),
        resolved=False,
        resolution_error=error,
    )


def resolve_action(idea: VariationIdea, segments: Sequence[Segment]) -> ResolvedAction:
    """
    Resolve one variation idea against the segments of a source analysis.

    Args:
        idea: The variation idea to resolve
        segments: Every segment of the source analysis

    Returns:
        ResolvedAction; resolved=False carries a resolution_error naming the
        constraint that failed. Never raises for modeling mismatches.
    """
    targets = [s for s in segments if s.type == idea.target_segment_type]
    target_ids = [s.id for s in targets]

    if not targets:
        logger.info("action_unresolved", action_id=idea.id, reason="no_matching_segments",
                    target_type=idea.target_segment_type)
        return _unresolved(idea, [], f'No segments of type "{idea.target_segment_type}" found in source')

    action_type = parse_action(idea.action)
    if action_type is None:
        logger.info("action_unresolved", action_id=idea.id, reason="unknown_action", action=idea.action)
        return _unresolved(idea, target_ids, f"Unknown action type: {idea.action}")

    outcome = ACTION_TABLE[action_type](targets)
    if isinstance(outcome, str):
        logger.info("action_unresolved", action_id=idea.id, reason=outcome)
        return _unresolved(idea, target_ids, outcome)

    return ResolvedAction(
        action_id=idea.id,
        source_action=idea.action,
        target_segments=target_ids,
        transformation=outcome,
        resolved=True,
    )
