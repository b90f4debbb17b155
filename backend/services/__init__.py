"""
Services module for storage, persistence and engine integration
"""

from .storage_backend import StorageBackend, get_storage_backend
from .engine_client import EngineClient, get_engine_client

__all__ = ["StorageBackend", "get_storage_backend", "EngineClient", "get_engine_client"]
