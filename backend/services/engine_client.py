"""
Client for the upstream content-generation engines.

The render pipeline only calls an engine during same_engine retries, to
regenerate a variation's source clips with the engine that produced them.
The engines sit behind one HTTP gateway (ENGINE_API_URL).
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import structlog
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from config import settings
from pipeline.error_handler import ErrorType, PipelineError

logger = structlog.get_logger(__name__)


class EngineClient(ABC):
    """Regenerates source clips for a variation."""

    @abstractmethod
    async def regenerate(self, engine: str, variation_config: Dict[str, Any]) -> List[str]:
        """
        Ask an engine to produce fresh source clips.

        Args:
            engine: Engine id (RetryState.engine_used)
            variation_config: The variation's stored render inputs

        Returns:
            URLs of the regenerated clips

        Raises:
            PipelineError: engine_error on any failure
        """
        pass


class HttpEngineClient(EngineClient):
    """
    Engine gateway over HTTP.

    POST {base_url}/regenerate  {"engine": ..., "variationConfig": {...}}
    -> {"videoUrls": [...]}
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: int = 600):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.NetworkError),
        before_sleep=before_sleep_log(logging.getLogger(__name__), logging.INFO),
        reraise=True,
    )
    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.base_url}/regenerate", json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

    async def regenerate(self, engine: str, variation_config: Dict[str, Any]) -> List[str]:
        logger.info("engine_regenerate_requested", engine=engine)

        try:
            body = await self._post({"engine": engine, "variationConfig": variation_config})
        except (httpx.HTTPStatusError, httpx.NetworkError, httpx.TimeoutException) as e:
            logger.error("engine_regenerate_failed", engine=engine, error=str(e))
            raise PipelineError(
                ErrorType.ENGINE_ERROR,
                f"Engine {engine} failed to regenerate clips: {e}",
                stage="engine",
                details={"engine": engine}
            ) from e
        except ValueError as e:
            logger.error("engine_response_not_json", engine=engine, error=str(e))
            raise PipelineError(
                ErrorType.ENGINE_ERROR,
                f"Engine {engine} returned a malformed response: {e}",
                stage="engine",
                details={"engine": engine}
            ) from e

        if not isinstance(body, dict):
            raise PipelineError(
                ErrorType.ENGINE_ERROR,
                f"Engine {engine} returned a malformed response: expected an object",
                stage="engine",
                details={"engine": engine}
            )

        urls = body.get("videoUrls") or []
        if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
            raise PipelineError(
                ErrorType.ENGINE_ERROR,
                f"Engine {engine} returned a malformed response: videoUrls must be a list of URLs",
                stage="engine",
                details={"engine": engine}
            )
        if not urls:
            raise PipelineError(
                ErrorType.ENGINE_ERROR,
                f"Engine {engine} returned no clips",
                stage="engine",
                details={"engine": engine}
            )

        logger.info("engine_regenerate_succeeded", engine=engine, clips=len(urls))
        return urls


def get_engine_client() -> Optional[EngineClient]:
    """Engine client from settings, or None when no gateway is configured."""
    if not settings.ENGINE_API_URL:
        return None
    return HttpEngineClient(settings.ENGINE_API_URL, settings.ENGINE_API_KEY, settings.ENGINE_TIMEOUT)
