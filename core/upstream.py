import asyncio
import logging
from typing import Optional

import aiohttp

from core.errors import UpstreamTransportError
from core.query import UpstreamQuery


logger = logging.getLogger("dohproxy.upstream")

USER_AGENT = "dohproxy/1.0"


class UpstreamClient:
    """Single-attempt GET client for the JSON DoH endpoint.

    Owns one aiohttp.ClientSession for the lifetime of the server. The session
    timeout is the only deadline a query gets.
    """

    def __init__(self, timeout: float = 10.0, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/dns-json", "User-Agent": USER_AGENT},
            )
            self._owns_session = True
        return self._session

    async def fetch(self, query: UpstreamQuery) -> bytes:
        session = await self._get_session()
        try:
            async with session.get(query.endpoint, params=query.params) as resp:
                body = await resp.read()
                if resp.status != 200:
                    # the JSON API reports errors in the body; still hand it to the decoder
                    logger.warning("DoH upstream returned HTTP %d for %s", resp.status, query.endpoint)
                return body
        except asyncio.TimeoutError as e:
            raise UpstreamTransportError(f"timeout after {self.timeout}s talking to {query.endpoint}") from e
        except aiohttp.ClientError as e:
            raise UpstreamTransportError(f"{type(e).__name__}: {e}") from e

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
