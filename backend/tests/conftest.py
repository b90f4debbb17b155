"""
Pytest configuration shared by the backend test suite.

Puts the backend directory on sys.path, pins settings that must not leak
from a developer .env, and provides common domain fixtures.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

os.environ["API_KEY"] = ""
os.environ["STORAGE_BACKEND"] = "local"
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from pipeline.models import (
    AnalysisAudio,
    AnalysisMetadata,
    CreativeBlueprint,
    Segment,
    SourceAnalysis,
    VariationIdea,
)


@pytest.fixture
def segments():
    """hook(0-3000), body(3000-9000), cta(9000-11000)"""
    return [
        Segment(id="seg_hook", type="hook", start_ms=0, end_ms=3000),
        Segment(id="seg_body", type="body", start_ms=3000, end_ms=9000),
        Segment(id="seg_cta", type="cta", start_ms=9000, end_ms=11000),
    ]


@pytest.fixture
def analysis(segments):
    return SourceAnalysis(
        id="analysis-1",
        source_video_id="video-1",
        segments=segments,
        metadata=AnalysisMetadata(duration_ms=11000, fps=30, aspect_ratio="9:16"),
        audio=AnalysisAudio(has_voiceover=False),
    )


@pytest.fixture
def make_blueprint():
    """Build a blueprint from (action, target_segment_type) pairs."""
    def _make(*ideas):
        return CreativeBlueprint(
            id="blueprint-1",
            source_analysis_id="analysis-1",
            variation_ideas=[
                VariationIdea(id=f"var_{i}", action=action, target_segment_type=target)
                for i, (action, target) in enumerate(ideas)
            ],
        )
    return _make


@pytest.fixture
def db_session():
    """In-memory SQLite session with every table created."""
    import models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
