"""
Shared HTTP client with connection pooling for calls to the classification service
"""

import httpx
from typing import Optional
import structlog

logger = structlog.get_logger(__name__)


class HTTPClientPool:
    """Lazily-built shared httpx.AsyncClient"""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def initialize(self):
        """Initialize the HTTP client"""
        if self._client is None:
            limits = httpx.Limits(
                max_keepalive_connections=20,
                max_connections=50,
                keepalive_expiry=30.0
            )

            timeout = httpx.Timeout(
                self.timeout,
                connect=5.0,
                pool=5.0
            )

            self._client = httpx.AsyncClient(
                limits=limits,
                timeout=timeout,
                transport=self._transport,
                follow_redirects=True
            )

            logger.info("HTTP client pool initialized",
                        max_connections=50,
                        max_keepalive=20,
                        timeout=self.timeout)

    async def get_client(self) -> httpx.AsyncClient:
        """Get the shared HTTP client"""
        if self._client is None:
            await self.initialize()
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("HTTP client pool closed")
