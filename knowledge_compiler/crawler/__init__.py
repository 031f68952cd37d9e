"""Crawl stage: frontier, fetcher, robots rules and the worker pool."""
