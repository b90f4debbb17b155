"""
API key authentication for the /api/ routes
"""

from typing import List
import hashlib
import hmac
from config import settings

# API key header name
API_KEY_HEADER = "X-API-Key"
API_KEY_QUERY = "api_key"


def configured_keys() -> List[str]:
    """Configured API keys (comma-separated API_KEY setting)"""
    return [key.strip() for key in settings.API_KEY.split(",") if key.strip()]


def auth_enabled() -> bool:
    """No API key configured means development mode: every request is allowed"""
    return bool(configured_keys())


def check_api_key(api_key: str) -> bool:
    """
    Verify API key against configured keys

    Supports:
    - Single API key
    - Multiple API keys (comma-separated)
    - Hashed keys stored as "hash:<sha256 hex>"
    """
    valid_keys = configured_keys()

    if not valid_keys:
        return True

    if not api_key:
        return False

    # Direct match
    for valid_key in valid_keys:
        if not valid_key.startswith("hash:") and hmac.compare_digest(valid_key, api_key):
            return True

    provided_hash = hashlib.sha256(api_key.encode()).hexdigest()
    for valid_key in valid_keys:
        if valid_key.startswith("hash:"):
            stored_hash = valid_key[5:]  # Remove "hash:" prefix
            if hmac.compare_digest(stored_hash, provided_hash):
                return True

    return False
