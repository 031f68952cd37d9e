# File: knowledge_compiler/errors.py
"""knowledge_compiler.errors: Error taxonomy of the compilation pipeline.

Only :class:`CrawlAborted` ever reaches the caller of a run. Fetch and
generation errors are contained by the component that hits them and end up
as counters in :class:`~knowledge_compiler.aggregator.RunMetrics`.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class CompilerError(Exception):
    """Base class for every error raised by knowledge_compiler."""


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    TOO_LARGE = "too_large"


class FetchError(CompilerError):
    """A single page could not be retrieved."""

    _RETRYABLE = frozenset({FetchErrorKind.TIMEOUT, FetchErrorKind.NETWORK_ERROR})

    def __init__(
        self,
        kind: FetchErrorKind,
        url: str,
        *,
        status: Optional[int] = None,
        detail: str = "",
    ) -> None:
        self.kind = kind
        self.url = url
        self.status = status
        self.detail = detail
        message = f"{kind.value} fetching {url}"
        if status is not None:
            message += f" (HTTP {status})"
        if detail:
            message += f": {detail}"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in self._RETRYABLE


class GenerationError(CompilerError):
    """The text-generation collaborator failed for one content block."""


class CrawlAborted(CompilerError):
    """The seed URL was invalid or could not be fetched; nothing was crawled."""


__all__ = [
    "CompilerError",
    "FetchErrorKind",
    "FetchError",
    "GenerationError",
    "CrawlAborted",
]
