import asyncio
import logging
from typing import Optional

import httpx

from bookbase.config import settings

logger = logging.getLogger(__name__)


class PooledHTTPClient:
    """Async HTTP client with connection pooling and retry logic"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        limits = httpx.Limits(
            max_keepalive_connections=10,
            max_connections=50,
            keepalive_expiry=30.0
        )

        timeout = httpx.Timeout(
            timeout=settings.storage_timeout,
            connect=5.0
        )

        # A custom transport lets tests answer requests without a network
        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=timeout,
            follow_redirects=True,
            transport=transport
        )

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self._client.post(url, **kwargs)

    async def post_with_retry(self, url: str, retries: int = 3, backoff: float = 0.5, **kwargs) -> httpx.Response:
        """POST with exponential backoff on connection errors; the last error is re-raised"""
        for attempt in range(retries):
            try:
                return await self.post(url, **kwargs)
            except httpx.RequestError as e:
                if attempt == retries - 1:
                    raise
                wait_time = backoff * (2 ** attempt)
                logger.warning("POST %s failed (%s), retrying in %.1fs", url, e, wait_time)
                await asyncio.sleep(wait_time)
        raise RuntimeError("retries must be at least 1")

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Global HTTP client instance
_global_client: Optional[PooledHTTPClient] = None


async def get_http_client() -> PooledHTTPClient:
    """Get or create the global HTTP client"""
    global _global_client
    if _global_client is None:
        _global_client = PooledHTTPClient()
    return _global_client


async def cleanup_http_client():
    """Close the global HTTP client"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
