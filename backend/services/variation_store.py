"""
Persistence for video variations and their retry state.

The variation table keeps retry bookkeeping in a JSON column; this store
is the only place that JSON is read or written, always via RetryState.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from models import VideoVariation
from pipeline.models import RetryState

logger = structlog.get_logger()

RETRY_STATE_KEYS = ("retry_count", "fallback_mode", "engine_used", "last_retry_at", "completed_at", "last_error_at")


class VariationStore:
    """
    Reads and updates VideoVariation rows.

    Example:
        >>> with get_db_context() as db:
        ...     store = VariationStore(db)
        ...     state = store.get_retry_state(store.get("var-1"))
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, video_id: str) -> Optional[VideoVariation]:
        return self.db.query(VideoVariation).filter(VideoVariation.id == video_id).first()

    def create(
        self,
        variation_config: Dict[str, Any],
        video_id: Optional[str] = None,
        status: str = "pending",
        metadata: Optional[Dict[str, Any]] = None
    ) -> VideoVariation:
        variation = VideoVariation(
            id=video_id or str(uuid.uuid4()),
            status=status,
            variation_config=variation_config,
            variation_metadata=metadata or {}
        )
        self.db.add(variation)
        self.db.commit()
        self.db.refresh(variation)
        logger.info("variation_created", video_id=variation.id)
        return variation

    @staticmethod
    def get_retry_state(variation: VideoVariation) -> RetryState:
        """Typed view of the retry keys in the variation's metadata."""
        metadata = variation.variation_metadata or {}
        fields = {key: metadata[key] for key in RETRY_STATE_KEYS if metadata.get(key) is not None}
        if "engine_used" not in fields and (variation.variation_config or {}).get("engine"):
            fields["engine_used"] = variation.variation_config["engine"]
        return RetryState(video_id=variation.id, **fields)

    def _update(self, variation: VideoVariation, state: RetryState, **metadata_updates) -> VideoVariation:
        metadata = dict(variation.variation_metadata or {})
        metadata.update(state.model_dump(mode="json", exclude={"video_id"}))
        metadata.update(metadata_updates)
        # Reassign so SQLAlchemy sees the JSON change
        variation.variation_metadata = metadata
        variation.updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
        self.db.commit()
        self.db.refresh(variation)
        return variation

    def mark_processing(self, variation: VideoVariation, state: RetryState) -> VideoVariation:
        variation.status = "processing"
        logger.info("variation_processing", video_id=variation.id, retry_count=state.retry_count,
                    fallback_mode=state.fallback_mode.value)
        return self._update(variation, state)

    def mark_completed(
        self,
        variation: VideoVariation,
        state: RetryState,
        video_url: str,
        duration_sec: Optional[float] = None,
        status: str = "completed"
    ) -> VideoVariation:
        variation.status = status
        variation.video_url = video_url
        if duration_sec is not None:
            variation.duration_sec = duration_sec
        logger.info("variation_completed", video_id=variation.id, video_url=video_url)
        return self._update(variation, state, pipeline_error=None)

    def mark_failed(self, variation: VideoVariation, state: RetryState, error: Dict[str, Any]) -> VideoVariation:
        variation.status = "failed"
        logger.warning("variation_failed", video_id=variation.id, error_type=error.get("errorType"))
        return self._update(variation, state, pipeline_error=error)
