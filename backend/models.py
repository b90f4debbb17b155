"""
SQLAlchemy database models
"""

from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, JSON
from database import Base


class VideoVariation(Base):
    """
    One rendered variation of a source video

    Retry bookkeeping (retry_count, fallback_mode, engine_used, timestamps)
    lives in the metadata JSON column and is read/written through
    services.variation_store as a typed RetryState.
    """
    __tablename__ = "video_variations"

    # Primary key
    id = Column(String, primary_key=True, index=True)  # UUID

    status = Column(String, nullable=False, default="pending", index=True)  # pending, processing, completed, failed
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Output
    video_url = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    duration_sec = Column(Float, nullable=True)

    # Render inputs: source videos, pacing, ratio, transitions, engine
    variation_config = Column(JSON, nullable=False, default=dict)

    # "metadata" is reserved on declarative classes, so the attribute is renamed
    variation_metadata = Column("metadata", JSON, nullable=False, default=dict)

    quality_score = Column(Float, nullable=True)

    def __repr__(self):
        return f"<VideoVariation(id={self.id}, status={self.status})>"

    def to_dict(self):
        """Convert variation to dictionary"""
        return {
            "id": self.id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "video_url": self.video_url,
            "thumbnail_url": self.thumbnail_url,
            "duration_sec": self.duration_sec,
            "variation_config": self.variation_config,
            "metadata": self.variation_metadata,
            "quality_score": self.quality_score
        }
