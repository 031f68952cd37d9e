# File: tests/conftest.py
from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pytest
import pytest_asyncio
from aiohttp import web

from knowledge_compiler.config import CompilerConfig
from knowledge_compiler.crawler.models import PageRecord
from knowledge_compiler.errors import GenerationError
from knowledge_compiler.models import Category, ContentBlock, FactUnit, QAPair, render_fact


class WordTokenizer:
    """Counts whitespace-separated words; the prompt separator costs nothing."""

    def count_tokens(self, text: str) -> int:
        return len(text.split())


class StubGenerator:
    """Returns the block text as one bare fact and records every call."""

    def __init__(self, fail_on: Sequence[str] = (), delay: float = 0.0) -> None:
        self.fail_on = tuple(fail_on)
        self.delay = delay
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def generate(self, text: str, category_hint: Category, *, request_key: str) -> List[QAPair]:
        self.calls.append(request_key)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if any(marker in text for marker in self.fail_on):
                raise GenerationError(f"refusing {text[:20]!r}")
            return [QAPair(None, text)]
        finally:
            self.active -= 1


@pytest.fixture()
def word_tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture()
def stub_generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture()
def make_generator() -> type[StubGenerator]:
    return StubGenerator


@pytest.fixture()
def make_config() -> Callable[..., CompilerConfig]:
    """Config factory with quick, local-server friendly defaults."""

    def _make(**overrides: Any) -> CompilerConfig:
        params: dict[str, Any] = dict(
            seed_url="http://127.0.0.1/",
            timeout=2.0,
            politeness_delay=0.0,
            retry_times=0,
            backoff_base=0.0,
            run_timeout=30.0,
            generator="extractive",
            user_agent="TestAgent/1.0",
        )
        params.update(overrides)
        return CompilerConfig(**params)

    return _make


@pytest.fixture()
def make_page() -> Callable[..., PageRecord]:
    def _make(
        url: str = "http://example.com/",
        text: str = "",
        sections: Sequence[str] = (),
        depth: int = 0,
        links: Sequence[str] = (),
    ) -> PageRecord:
        return PageRecord(
            url=url,
            http_status=200,
            fetched_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            raw_size=len(text),
            title="",
            text_content=text or " ".join(sections),
            outbound_links=frozenset(links),
            sections=tuple(sections),
            depth=depth,
        )

    return _make


@pytest.fixture()
def make_block() -> Callable[..., ContentBlock]:
    def _make(
        text: str = "Some block text",
        category: Category = Category.OTHER,
        relevance: float = 0.5,
        url: str = "http://example.com/",
        depth: int = 0,
        position: int = 0,
    ) -> ContentBlock:
        return ContentBlock(
            source_url=url,
            category=category,
            text=text,
            relevance_score=relevance,
            depth=depth,
            position=position,
        )

    return _make


@pytest.fixture()
def make_unit(make_block) -> Callable[..., FactUnit]:
    counter = {"n": 0}

    def _make(
        answer: str = "An answer",
        *,
        question: Optional[str] = None,
        tokens: Optional[int] = None,
        category: Category = Category.OTHER,
        relevance: float = 0.5,
        url: str = "http://example.com/",
        depth: int = 0,
        position: int = 0,
        index: int = 0,
        unit_id: Optional[str] = None,
    ) -> FactUnit:
        counter["n"] += 1
        block = make_block(answer, category, relevance, url, depth, position)
        return FactUnit(
            id=unit_id or f"unit-{counter['n']}",
            question=question,
            answer=answer,
            source_block=block,
            estimated_tokens=tokens if tokens is not None else len(render_fact(question, answer).split()),
            index=index,
        )

    return _make


@pytest_asyncio.fixture
async def serve(unused_tcp_port_factory) -> AsyncIterator[Callable[[web.Application], Awaitable[str]]]:
    """Start aiohttp applications on 127.0.0.1; every one is cleaned up after the test."""
    runners: List[web.AppRunner] = []

    async def _serve(app: web.Application) -> str:
        runner = web.AppRunner(app)
        await runner.setup()
        port = unused_tcp_port_factory()
        site = web.TCPSite(runner, "127.0.0.1", port)
        await site.start()
        runners.append(runner)
        return f"http://127.0.0.1:{port}"

    try:
        yield _serve
    finally:
        for runner in runners:
            await runner.cleanup()


def html_page(body: str, title: str = "") -> web.Response:
    head = f"<head><title>{title}</title></head>" if title else ""
    return web.Response(text=f"<html>{head}<body>{body}</body></html>", content_type="text/html")


@pytest.fixture()
def page_response() -> Callable[..., web.Response]:
    return html_page


@pytest.fixture()
def page_handler() -> Callable[..., Callable[[web.Request], Awaitable[web.Response]]]:
    """Build an async handler serving a fixed HTML body."""

    def _make(body: str, title: str = "") -> Callable[[web.Request], Awaitable[web.Response]]:
        async def handler(_: web.Request) -> web.Response:
            return html_page(body, title)

        return handler

    return _make


Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@pytest.fixture()
def site() -> Callable[..., Tuple[web.Application, Counter]]:
    """Build a site from ``{path: html body}`` plus optional custom handlers.

    Every request is counted per path in the returned Counter; unknown paths are 404.
    """

    def _make(
        pages: Mapping[str, str],
        handlers: Optional[Dict[str, Handler]] = None,
    ) -> Tuple[web.Application, Counter]:
        hits: Counter = Counter()
        custom = dict(handlers or {})

        async def dispatch(request: web.Request) -> web.StreamResponse:
            hits[request.path] += 1
            if request.path in custom:
                return await custom[request.path](request)
            if request.path not in pages:
                raise web.HTTPNotFound()
            return html_page(pages[request.path])

        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", dispatch)
        return app, hits

    return _make
