# knowledge_compiler/crawler/frontier.py
"""
Crawl frontier: the to-visit queue plus the visited-set.

The frontier is the only state shared by crawl workers. All mutations happen
under one ``asyncio.Condition``; workers block in :meth:`Frontier.next` until
a target is available or the crawl is over. The per-host politeness delay
is applied by :meth:`Frontier.wait_politeness`, which the fetcher awaits
before every request.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections import Counter
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from knowledge_compiler.config import CompilerConfig
from knowledge_compiler.crawler.models import CrawlTarget
from knowledge_compiler.crawler.robots import RobotsTxtRules
from knowledge_compiler.logger import logger
from knowledge_compiler.utils import extract_host, is_in_scope, normalize_url, registrable_domain


class FrontierState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class Frontier:
    """Breadth-first, scope/depth/page bounded crawl queue."""

    def __init__(self, config: CompilerConfig, robots: Optional[RobotsTxtRules] = None) -> None:
        self.config = config
        self.robots = robots
        self.state = FrontierState.IDLE
        self.seed: Optional[CrawlTarget] = None
        self.seed_host = ""
        self.abort_reason: Optional[str] = None
        self.cancelled = False

        self.visited_count = 0
        self.rejections: Counter[str] = Counter()

        self._heap: List[Tuple[int, int, CrawlTarget]] = []
        self._seen: Set[str] = set()
        self._sequence = itertools.count()
        self._in_flight = 0
        self._cond = asyncio.Condition()

        self._last_request: Dict[str, float] = {}
        self._host_locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------ #
    # lifecycle                                                          #
    # ------------------------------------------------------------------ #

    def start(self, seed_raw: Optional[str]) -> Optional[CrawlTarget]:
        """Normalise the seed and move to RUNNING, or to ABORTED if it is invalid."""
        if self.state is not FrontierState.IDLE:
            raise RuntimeError(f"Frontier already {self.state.value}")
        url = normalize_url(seed_raw)
        if url is None:
            self.state = FrontierState.ABORTED
            self.abort_reason = f"invalid seed URL: {seed_raw!r}"
            logger.error("Crawl aborted: %s", self.abort_reason)
            return None
        self.seed = CrawlTarget(url=url, depth=0)
        self.seed_host = extract_host(url)
        self.state = FrontierState.RUNNING
        self._push(self.seed)
        self.set_robots(self.robots)
        logger.debug("Frontier started at %s", url)
        return self.seed

    def rebase(self, resolved_seed_url: str) -> bool:
        """Move the scope to the host the seed redirected to.

        Only hosts under the seed's registrable domain are accepted; returns
        False (scope unchanged) for a redirect to another site.
        """
        host = extract_host(resolved_seed_url)
        if not host or registrable_domain(host) != registrable_domain(self.seed_host):
            logger.warning("Seed redirected off-site: %s -> %s", self.seed_host, host or resolved_seed_url)
            return False
        if host != self.seed_host:
            logger.info("Seed redirected, scope moved from %s to %s", self.seed_host, host)
            self.seed_host = host
        self._seen.add(resolved_seed_url)
        return True

    def set_robots(self, robots: Optional[RobotsTxtRules]) -> None:
        """Attach robots.txt rules; a still-queued seed they disallow is dropped."""
        self.robots = robots
        if robots is None or self.seed is None:
            return
        if any(entry[2] is self.seed for entry in self._heap) and not self._robots_allow(self.seed.url):
            self._heap = [entry for entry in self._heap if entry[2] is not self.seed]
            heapq.heapify(self._heap)
            self.rejections["robots"] += 1
            logger.warning("Seed %s is disallowed by robots.txt", self.seed.url)

    async def abort(self, reason: str) -> None:
        async with self._cond:
            if self.state is FrontierState.ABORTED:
                return
            self.state = FrontierState.ABORTED
            self.abort_reason = reason
            self._heap.clear()
            self._cond.notify_all()
        logger.error("Crawl aborted: %s", reason)

    async def cancel(self) -> None:
        """Stop issuing targets; in-flight work is left to finish."""
        async with self._cond:
            self.cancelled = True
            if self.state is FrontierState.RUNNING:
                self._complete("cancelled")
            self._cond.notify_all()

    @property
    def pending(self) -> int:
        return len(self._heap)

    # ------------------------------------------------------------------ #
    # queue operations                                                   #
    # ------------------------------------------------------------------ #

    async def enqueue(self, target: CrawlTarget) -> bool:
        async with self._cond:
            accepted = self._admit(target)
            if accepted:
                self._cond.notify()
            return accepted

    async def record_discovered(self, urls: Iterable[str], from_target: CrawlTarget) -> int:
        """Enqueue links found on *from_target* one level deeper. Returns how many were accepted."""
        accepted = 0
        async with self._cond:
            for url in urls:
                target = CrawlTarget(url=url, depth=from_target.depth + 1, origin=from_target.url)
                if self._admit(target):
                    accepted += 1
            if accepted:
                self._cond.notify(accepted)
        return accepted

    async def mark_visited(self, url: str) -> bool:
        """Record *url* as seen; False if it was already seen."""
        async with self._cond:
            if url in self._seen:
                return False
            self._seen.add(url)
            return True

    async def next(self) -> Optional[CrawlTarget]:
        """Return the next target breadth-first, or None once the crawl is over."""
        async with self._cond:
            while True:
                if self.state is not FrontierState.RUNNING:
                    return None
                if self.cancelled:
                    self._complete("cancelled")
                    return None
                if self.visited_count >= self.config.max_pages:
                    self._complete("page budget reached")
                    return None
                if self._heap:
                    _, _, target = heapq.heappop(self._heap)
                    self._in_flight += 1
                    self.visited_count += 1
                    break
                if self._in_flight == 0:
                    self._complete("queue exhausted")
                    return None
                await self._cond.wait()

        return target

    async def task_done(self, target: CrawlTarget) -> None:
        async with self._cond:
            self._in_flight -= 1
            self._cond.notify_all()

    # ------------------------------------------------------------------ #
    # helpers                                                            #
    # ------------------------------------------------------------------ #

    def in_scope(self, url: str) -> bool:
        return is_in_scope(url, self.seed_host, self.config.allow_subdomains)

    def _admit(self, target: CrawlTarget) -> bool:
        reason = self._rejection_reason(target)
        if reason is not None:
            self.rejections[reason] += 1
            logger.debug("Rejected %s (depth %d): %s", target.url, target.depth, reason)
            return False
        self._push(target)
        return True

    def _rejection_reason(self, target: CrawlTarget) -> Optional[str]:
        if self.state is not FrontierState.RUNNING:
            return "not_running"
        if normalize_url(target.url) != target.url:
            return "invalid_url"
        if not self.in_scope(target.url):
            return "out_of_scope"
        if target.depth > self.config.max_depth:
            return "too_deep"
        if target.url in self._seen:
            return "already_seen"
        if not self._robots_allow(target.url):
            return "robots"
        return None

    def _robots_allow(self, url: str) -> bool:
        if self.robots is None:
            return True
        parts = urlsplit(url)
        path = parts.path + (f"?{parts.query}" if parts.query else "")
        return self.robots.can_fetch(self.config.user_agent, path)

    def _push(self, target: CrawlTarget) -> None:
        self._seen.add(target.url)
        heapq.heappush(self._heap, (target.depth, next(self._sequence), target))

    def _complete(self, why: str) -> None:
        self.state = FrontierState.COMPLETED
        self._heap.clear()
        self._cond.notify_all()
        logger.info("Frontier completed (%s): %d pages issued", why, self.visited_count)

    def _delay(self) -> float:
        delay = self.config.politeness_delay
        if self.robots is not None:
            delay = max(delay, self.robots.crawl_delay(self.config.user_agent) or 0.0)
        return delay

    async def wait_politeness(self, host: str) -> None:
        """Sleep until *host* may be requested again, then record the request time."""
        delay = self._delay()
        if delay <= 0:
            return
        lock = self._host_locks.setdefault(host, asyncio.Lock())
        async with lock:
            last = self._last_request.get(host)
            if last is not None:
                wait = delay - (time.monotonic() - last)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_request[host] = time.monotonic()
