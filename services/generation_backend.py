# ============================================================================
# GENERATION BACKENDS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Service - Pluggable resource generators
# PURPOSE: Turn aggregated context into a generated resource
# CREATED: 16 OCT 2026
# ============================================================================
"""
Generation Backends

The worker calls GenerationBackend.generate(resource_id, context) and
records whatever it returns. A backend signals failure by raising; the
job queue then applies its retry policy, so backends do not retry.

Implementations:
    EchoGenerationBackend  - deterministic output for local runs and tests
    HttpGenerationBackend  - POSTs to an external generation service
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """Raised when a backend could not produce a resource."""

    def __init__(self, resource_id: str, message: str):
        self.resource_id = resource_id
        super().__init__(f"Generation failed for {resource_id}: {message}")


class GenerationBackend(ABC):
    """Abstract base for generation backends."""

    @abstractmethod
    async def generate(self, resource_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate one resource.

        Args:
            resource_id: Resource to generate
            context: Aggregated context payload

        Returns:
            Generated output (stored as the resource summary)

        Raises:
            GenerationError or any exception on failure
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


class EchoGenerationBackend(GenerationBackend):
    """Returns a summary of its input. No external calls."""

    async def generate(self, resource_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        sources = [s["resource_id"] for group in ("critical", "required", "optional") for s in context.get(group, [])]
        return {
            "resource_id": resource_id,
            "content": f"Generated {resource_id} from {len(sources)} sources",
            "sources": sources,
            "context_tokens": context.get("total_tokens", 0),
        }


class HttpGenerationBackend(GenerationBackend):
    """
    Calls an external generation service.

    POST {base_url}/generate with {"resource_id", "context"}; any non-2xx
    status or transport error raises GenerationError.
    """

    def __init__(self, base_url: str, timeout_seconds: float = 120.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_env(cls) -> Optional["HttpGenerationBackend"]:
        """Create from GENERATION_BACKEND_URL, or None if unset."""
        url = os.getenv("GENERATION_BACKEND_URL")
        if not url:
            return None
        return cls(url, timeout_seconds=float(os.getenv("GENERATION_TIMEOUT_SECONDS", 120.0)))

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def generate(self, resource_id: str, context: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}/generate"
        session = await self._get_session()
        try:
            async with session.post(url, json={"resource_id": resource_id, "context": context}) as response:
                if response.status not in (200, 201):
                    body = await response.text()
                    raise GenerationError(resource_id, f"status={response.status}, body={body[:500]}")
                return await response.json()
        except aiohttp.ClientError as e:
            raise GenerationError(resource_id, str(e)) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def create_generation_backend() -> GenerationBackend:
    """HTTP backend if configured, otherwise the echo backend."""
    backend = HttpGenerationBackend.from_env()
    if backend is not None:
        logger.info("Using HTTP generation backend")
        return backend
    logger.info("GENERATION_BACKEND_URL not set, using echo generation backend")
    return EchoGenerationBackend()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "GenerationBackend",
    "GenerationError",
    "EchoGenerationBackend",
    "HttpGenerationBackend",
    "create_generation_backend",
]
