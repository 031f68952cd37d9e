# knowledge_compiler/crawler/crawler.py
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

from aiohttp import ClientSession, ClientTimeout

from knowledge_compiler.aggregator import RunMetrics
from knowledge_compiler.classifier import Classifier
from knowledge_compiler.config import CompilerConfig
from knowledge_compiler.crawler.fetcher import Fetcher
from knowledge_compiler.crawler.frontier import Frontier, FrontierState
from knowledge_compiler.crawler.models import CrawlTarget, PageRecord
from knowledge_compiler.crawler.robots import RobotsTxtRules
from knowledge_compiler.dedup import Deduplicator
from knowledge_compiler.errors import CrawlAborted, FetchError, FetchErrorKind
from knowledge_compiler.logger import logger
from knowledge_compiler.models import ContentBlock
from knowledge_compiler.parser.html_parser import extract
from knowledge_compiler.parser.sitemap_parser import SitemapEntries, parse_sitemap
from knowledge_compiler.utils import normalize_url, remove_duplicates

__all__ = ("CrawlResult", "AsyncCrawler")


@dataclass(slots=True)
class CrawlResult:
    """Pages in completion order and their classified blocks in discovery order."""

    seed_url: Optional[str]
    pages: List[PageRecord] = field(default_factory=list)
    blocks: List[ContentBlock] = field(default_factory=list)


def _page_order(page: PageRecord) -> tuple[int, str]:
    return (page.depth, page.url)


class AsyncCrawler:
    """Worker pool draining a :class:`Frontier` over one shared aiohttp session.

    Workers fetch and extract pages and hand the discovered links back to the
    frontier. Once the pool is done, pages are deduplicated and classified
    in discovery order, so which copy of a repeated page survives never
    depends on worker scheduling.
    """

    def __init__(
        self,
        config: CompilerConfig,
        *,
        metrics: Optional[RunMetrics] = None,
        cancel_event: Optional[asyncio.Event] = None,
        classifier: Optional[Classifier] = None,
    ) -> None:
        self.config = config
        self.metrics = metrics if metrics is not None else RunMetrics()
        self.cancel_event = cancel_event or asyncio.Event()
        self.classifier = classifier or Classifier.from_config(config)
        self.page_dedup = Deduplicator.from_config(config)
        self.session: Optional[ClientSession] = None
        self.fetcher: Optional[Fetcher] = None
        self.frontier: Optional[Frontier] = None
        self.robots_rules: Optional[RobotsTxtRules] = None
        self._result = CrawlResult(seed_url=None)

    async def __aenter__(self) -> AsyncCrawler:
        timeout = ClientTimeout(total=self.config.timeout)
        self.session = ClientSession(
            timeout=timeout,
            headers={"User-Agent": self.config.user_agent},
            raise_for_status=False,
        )
        self.fetcher = Fetcher(self.session, self.config)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.session and not self.session.closed:
            await self.session.close()

    async def crawl(self) -> CrawlResult:
        """Crawl from ``config.seed_url``.

        Raises CrawlAborted if the seed is invalid, unreachable or redirects
        to another site.
        """
        if self.session is None or self.fetcher is None:
            raise RuntimeError("Session not initialized")

        frontier = self.frontier = Frontier(self.config)
        seed = frontier.start(self.config.seed_url)
        if seed is None:
            raise CrawlAborted(frontier.abort_reason or "invalid seed URL")
        self.fetcher.throttle = frontier.wait_politeness
        self._result = CrawlResult(seed_url=seed.url)
        logger.info("Crawl started: %s", seed.url)
        start = time.monotonic()

        if self.config.respect_robots:
            self.robots_rules = await self._load_robots(seed.url)
            frontier.set_robots(self.robots_rules)
        if self.config.use_sitemap:
            await self._seed_from_sitemap(frontier, seed)
        if self.cancel_event.is_set():
            await frontier.cancel()

        watcher = asyncio.create_task(self._watch_cancel(frontier))
        workers = [asyncio.create_task(self._worker(frontier)) for _ in range(self.config.concurrency)]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in (*workers, watcher):
                task.cancel()
            await asyncio.gather(*workers, watcher, return_exceptions=True)

        self.metrics.urls_rejected.update(frontier.rejections)
        if frontier.state is FrontierState.ABORTED:
            raise CrawlAborted(frontier.abort_reason or "crawl aborted")

        self._classify_pages()
        duration = time.monotonic() - start
        logger.info(
            "Crawl finished: %d pages, %d blocks, %d skipped in %.2f s",
            len(self._result.pages), len(self._result.blocks), self.metrics.pages_skipped, duration,
        )
        if frontier.rejections.get("robots"):
            logger.info("Blocked by robots.txt: %d", frontier.rejections["robots"])
        return self._result

    # ------------------------------------------------------------------ #
    # workers                                                            #
    # ------------------------------------------------------------------ #

    async def _worker(self, frontier: Frontier) -> None:
        while True:
            target = await frontier.next()
            if target is None:
                return
            try:
                await self._process(frontier, target)
            except Exception:
                logger.exception("Unexpected error while processing %s", target.url)
                self.metrics.pages_skipped += 1
            finally:
                await frontier.task_done(target)

    async def _process(self, frontier: Frontier, target: CrawlTarget) -> None:
        assert self.fetcher is not None
        try:
            fetched = await self.fetcher.fetch(target.url)
        except FetchError as exc:
            if target.is_seed:
                await frontier.abort(f"seed fetch failed: {exc}")
                return
            logger.warning("Skipping page: %s", exc)
            self.metrics.pages_skipped += 1
            return

        source = target
        if fetched.redirected:
            if target.is_seed:
                if not frontier.rebase(fetched.url):
                    await frontier.abort(f"seed redirected off-site to {fetched.url}")
                    return
            elif not frontier.in_scope(fetched.url):
                logger.info("Skipping %s: redirected out of scope to %s", target.url, fetched.url)
                self.metrics.pages_skipped += 1
                return
            elif not await frontier.mark_visited(fetched.url):
                logger.debug("Skipping %s: redirect target %s already visited", target.url, fetched.url)
                self.metrics.pages_skipped += 1
                return
            source = CrawlTarget(url=fetched.url, depth=target.depth, origin=target.origin)

        if not fetched.is_html:
            logger.debug("Skipping %s: content type %s", fetched.url, fetched.content_type or "unknown")
            self.metrics.pages_skipped += 1
            return

        extracted = extract(fetched.body, fetched.url, fetched.charset)
        page = PageRecord(
            url=fetched.url,
            http_status=fetched.status,
            fetched_at=fetched.fetched_at,
            raw_size=len(fetched.body),
            title=extracted.title,
            text_content=extracted.text_content,
            outbound_links=frozenset(extracted.links),
            sections=extracted.sections,
            depth=target.depth,
        )
        self.metrics.pages_visited += 1
        self._result.pages.append(page)
        await frontier.record_discovered(extracted.links, source)

    def _classify_pages(self) -> None:
        for page in sorted(self._result.pages, key=_page_order):
            if not page.text_content:
                continue
            fp, duplicate = self.page_dedup.check_and_register(page.text_content)
            if duplicate:
                logger.debug("Duplicate page content at %s (%s)", page.url, fp[:12])
                self.metrics.duplicates_dropped += 1
                continue
            blocks = self.classifier.classify(page)
            self.metrics.blocks_classified += len(blocks)
            self._result.blocks.extend(blocks)

    async def _watch_cancel(self, frontier: Frontier) -> None:
        await self.cancel_event.wait()
        logger.warning("Run cancelled, no new pages will be fetched")
        await frontier.cancel()

    # ------------------------------------------------------------------ #
    # robots.txt and sitemap                                             #
    # ------------------------------------------------------------------ #

    async def _load_robots(self, seed_url: str) -> Optional[RobotsTxtRules]:
        assert self.fetcher is not None
        parts = urlsplit(seed_url)
        robots_url = urlunsplit((parts.scheme, parts.netloc, "/robots.txt", "", ""))
        try:
            page = await self.fetcher.fetch(robots_url)
        except FetchError as exc:
            if exc.kind is FetchErrorKind.HTTP_ERROR:
                logger.debug("No robots.txt at %s (HTTP %s)", robots_url, exc.status)
            else:
                logger.warning("Error loading robots.txt from %s: %s", robots_url, exc)
            return None
        return RobotsTxtRules(page.body.decode(page.charset or "utf-8", errors="replace"))

    async def _fetch_sitemap(self, url: str) -> SitemapEntries:
        assert self.fetcher is not None
        try:
            page = await self.fetcher.fetch(url)
        except FetchError as exc:
            logger.debug("No sitemap at %s: %s", url, exc)
            return SitemapEntries()
        return parse_sitemap(page.body)

    async def _seed_from_sitemap(self, frontier: Frontier, seed: CrawlTarget) -> None:
        parts = urlsplit(seed.url)
        entries = await self._fetch_sitemap(urlunsplit((parts.scheme, parts.netloc, "/sitemap.xml", "", "")))
        pages = list(entries.pages)
        for raw in entries.sitemaps:
            nested = normalize_url(raw)
            if nested is None or not frontier.in_scope(nested):
                logger.info("Ignoring sitemap outside the site: %s", raw)
                frontier.rejections["out_of_scope"] += 1
                continue
            pages.extend((await self._fetch_sitemap(nested)).pages)
        urls = remove_duplicates([u for u in (normalize_url(p) for p in pages) if u is not None])
        accepted = await frontier.record_discovered(urls, seed)
        logger.info("Sitemap: %d URLs listed, %d queued", len(urls), accepted)
