# knowledge_compiler/crawler/models.py
"""
Data models produced by the crawl stage.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Optional, Tuple


@dataclass(frozen=True, slots=True)
class CrawlTarget:
    """A normalized URL waiting to be fetched, with its link depth from the seed."""

    url: str
    depth: int
    origin: Optional[str] = None

    @property
    def is_seed(self) -> bool:
        return self.origin is None and self.depth == 0


@dataclass(frozen=True, slots=True)
class FetchedPage:
    """Raw response of a successful fetch; ``url`` is the final URL after redirects."""

    url: str
    requested_url: str
    status: int
    content_type: str
    charset: Optional[str]
    body: bytes
    fetched_at: datetime

    @property
    def redirected(self) -> bool:
        return self.url != self.requested_url

    @property
    def is_html(self) -> bool:
        return self.content_type in ("text/html", "application/xhtml+xml")


@dataclass(frozen=True, slots=True)
class PageRecord:
    """A fetched page after extraction. Built once, never mutated."""

    url: str
    http_status: int
    fetched_at: datetime
    raw_size: int
    title: str
    text_content: str
    outbound_links: FrozenSet[str]
    sections: Tuple[str, ...] = ()
    depth: int = 0
