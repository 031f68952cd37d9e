# knowledge_compiler/crawler/fetcher.py
"""
Fetcher module: single-page HTTP retrieval with timeout, retry/backoff and a body-size ceiling.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from aiohttp import ClientError, ClientSession

from knowledge_compiler.config import CompilerConfig
from knowledge_compiler.crawler.models import FetchedPage
from knowledge_compiler.errors import FetchError, FetchErrorKind
from knowledge_compiler.logger import logger
from knowledge_compiler.utils import extract_host, normalize_url

_CHUNK_SIZE = 64 * 1024


class Fetcher:
    """Fetches one URL at a time over a shared :class:`aiohttp.ClientSession`.

    Timeouts and network errors are retried with exponential backoff; HTTP
    error statuses and oversized bodies are terminal for the URL. Every
    attempt, retries included, first awaits *throttle* with the target host.
    """

    def __init__(
        self,
        session: ClientSession,
        config: CompilerConfig,
        throttle: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> None:
        self.session = session
        self.config = config
        self.throttle = throttle

    async def fetch(self, url: str) -> FetchedPage:
        """
        Fetch *url* following redirects.

        Returns a FetchedPage whose ``url`` is the normalized final URL.
        Raises FetchError once retries are exhausted or for a terminal failure.
        """
        attempts = 0
        host = extract_host(url)
        while True:
            if self.throttle is not None:
                await self.throttle(host)
            try:
                return await self._fetch_once(url)
            except FetchError as exc:
                if not exc.retryable or attempts >= self.config.retry_times:
                    raise
                attempts += 1
                backoff = self.config.backoff_base * 2 ** (attempts - 1)
                logger.debug(
                    "Retry %d/%d for %s after %.2f s (%s)",
                    attempts, self.config.retry_times, url, backoff, exc.kind.value,
                )
                await asyncio.sleep(backoff)

    async def _fetch_once(self, url: str) -> FetchedPage:
        limit = self.config.max_response_bytes
        try:
            async with self.session.get(url, allow_redirects=True) as resp:
                if resp.status >= 400:
                    raise FetchError(FetchErrorKind.HTTP_ERROR, url, status=resp.status)

                declared = resp.content_length
                if declared is not None and declared > limit:
                    raise FetchError(
                        FetchErrorKind.TOO_LARGE, url, detail=f"declared {declared} bytes > {limit}"
                    )

                body = bytearray()
                async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
                    body.extend(chunk)
                    if len(body) > limit:
                        raise FetchError(
                            FetchErrorKind.TOO_LARGE, url, detail=f"body exceeded {limit} bytes"
                        )

                final_url = normalize_url(str(resp.url)) or url
                return FetchedPage(
                    url=final_url,
                    requested_url=url,
                    status=resp.status,
                    content_type=resp.content_type.lower(),
                    charset=resp.charset,
                    body=bytes(body),
                    fetched_at=datetime.now(timezone.utc),
                )
        except asyncio.TimeoutError as exc:
            raise FetchError(FetchErrorKind.TIMEOUT, url, detail=str(exc) or "timed out") from exc
        except ClientError as exc:
            raise FetchError(FetchErrorKind.NETWORK_ERROR, url, detail=str(exc)) from exc
