# makeup_preview/services/utils/http_client.py
import contextlib
from typing import AsyncIterator

import aiohttp
import structlog

from makeup_preview.data.settings import settings

logger = structlog.get_logger(__name__)


class SharedSession:
    """
    One aiohttp session per process for Replicate calls and output downloads.
    Created on first use; recreated if something closed it.
    """

    def __init__(self) -> None:
        self._session: aiohttp.ClientSession | None = None

    async def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            cfg = settings.http
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=None, connect=cfg.connect_timeout_s, sock_read=cfg.read_timeout_s
                ),
                connector=aiohttp.TCPConnector(limit=cfg.pool_limit, ttl_dns_cache=60),
                trust_env=True,
            )
            logger.debug("HTTP session opened", pool_limit=cfg.pool_limit)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @contextlib.asynccontextmanager
    async def lifespan(self) -> AsyncIterator["SharedSession"]:
        try:
            yield self
        finally:
            await self.close()


http_client = SharedSession()
