"""
Creative render pipeline package.

This package contains the core components for turning creative variations into rendered videos:
- Action resolution and timeline compilation into execution plans
- Filter-graph building and ffmpeg execution
- Asset management for per-task working areas
- Error handling and retry/fallback scheduling
"""

__version__ = "0.1.0"

from .asset_manager import AssetManager
from .error_handler import PipelineError, ErrorType, should_retry
from .plan_builder import compile_plan, compile_all

__all__ = [
    "AssetManager",
    "PipelineError",
    "ErrorType",
    "should_retry",
    "compile_plan",
    "compile_all",
]
