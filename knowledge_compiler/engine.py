# File: knowledge_compiler/engine.py
"""knowledge_compiler.engine: Orchestration of one compilation run, crawl to prompt."""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import List, Optional

from knowledge_compiler.aggregator import CompilationReport, RunMetrics
from knowledge_compiler.assembler import assemble
from knowledge_compiler.config import CompilerConfig, load_config
from knowledge_compiler.crawler.crawler import AsyncCrawler
from knowledge_compiler.dedup import Deduplicator, FingerprintCache, retain_unique_blocks
from knowledge_compiler.logger import logger
from knowledge_compiler.models import FactUnit
from knowledge_compiler.synthesizer import (
    Synthesizer,
    TextGenerator,
    TiktokenTokenizer,
    Tokenizer,
    build_generator,
)
from knowledge_compiler.utils import extract_host, registrable_domain

__all__ = ["Engine", "compile_site"]


def _expire(cancel_event: asyncio.Event, seconds: float) -> None:
    if not cancel_event.is_set():
        logger.warning("Deadline of %.1f s reached, cancelling", seconds)
        cancel_event.set()


async def compile_site(
    config: CompilerConfig,
    *,
    generator: Optional[TextGenerator] = None,
    tokenizer: Optional[Tokenizer] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> CompilationReport:
    """Crawl ``config.seed_url`` and compile what it says into a budgeted prompt.

    Setting *cancel_event* (or reaching ``config.run_timeout``) stops the run
    early. Blocks already crawled are still synthesized within
    ``config.synthesis_grace`` seconds and assembled. Raises
    CrawlAborted when the seed is invalid or cannot be fetched.
    """
    run_id = uuid.uuid4().hex
    metrics = RunMetrics()
    cancel_event = cancel_event if cancel_event is not None else asyncio.Event()
    started = time.monotonic()
    loop = asyncio.get_running_loop()
    grace: Optional[asyncio.TimerHandle] = None
    deadline = loop.call_later(config.run_timeout, _expire, cancel_event, config.run_timeout)
    logger.info("Run %s started for %s", run_id, config.seed_url)

    try:
        async with AsyncCrawler(config, metrics=metrics, cancel_event=cancel_event) as crawler:
            crawled = await crawler.crawl()

        units: List[FactUnit] = []
        block_dedup = Deduplicator.from_config(config)
        cache: Optional[FingerprintCache] = None
        domain = registrable_domain(extract_host(crawled.seed_url or ""))
        if config.fingerprint_cache is not None:
            cache = FingerprintCache(config.fingerprint_cache)
            for fp in sorted(cache.known(domain)):
                block_dedup.register(fp)

        blocks, dropped = retain_unique_blocks(crawled.blocks, block_dedup)
        metrics.duplicates_dropped += len(dropped)
        if cache is not None and dropped:
            cache.record(domain, dropped, run_id)
            cache.save()

        synth_cancel = cancel_event
        if cancel_event.is_set() and blocks:
            logger.info(
                "Crawl cancelled, synthesizing %d collected blocks within %.1f s",
                len(blocks), config.synthesis_grace,
            )
            synth_cancel = asyncio.Event()
            grace = loop.call_later(config.synthesis_grace, _expire, synth_cancel, config.synthesis_grace)
        if blocks:
            synthesizer = Synthesizer(
                generator if generator is not None else build_generator(config),
                tokenizer if tokenizer is not None else TiktokenTokenizer(config.tokenizer_encoding),
                concurrency=config.generation_concurrency,
                cancel_event=synth_cancel,
            )
            units = await synthesizer.synthesize_all(blocks)
            metrics.generation_failures = synthesizer.failures

        prompt = assemble(units, config.token_ceiling)
    finally:
        deadline.cancel()
        if grace is not None:
            grace.cancel()

    metrics.fact_units = len(units)
    metrics.duration = time.monotonic() - started
    report = CompilationReport(
        run_id=run_id,
        seed_url=crawled.seed_url,
        prompt=prompt,
        fact_units=units,
        metrics=metrics,
        cancelled=cancel_event.is_set(),
    )
    logger.info(
        "Run %s %s: %d pages, %d fact units, %d/%d tokens in %.2f s",
        run_id, report.status, metrics.pages_visited, len(prompt.included_fact_unit_ids),
        prompt.total_tokens, config.token_ceiling, metrics.duration,
    )
    return report


class Engine:
    """Synchronous facade for the CLI and scripts."""

    @staticmethod
    def load_config(path: Optional[str]) -> CompilerConfig:
        return load_config(path)

    def __init__(self, config: CompilerConfig) -> None:
        self.config = config

    def compile(
        self,
        *,
        generator: Optional[TextGenerator] = None,
        tokenizer: Optional[Tokenizer] = None,
    ) -> CompilationReport:
        """Run :func:`compile_site` on a fresh event loop."""
        try:
            return asyncio.run(compile_site(self.config, generator=generator, tokenizer=tokenizer))
        except Exception as exc:
            logger.error("Compilation failed: %s", exc)
            raise
