# knowledge_compiler/models.py
"""
Data models of the knowledge stage: classified blocks, fact units and the compiled prompt.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class Category(str, Enum):
    PRODUCT = "product"
    SERVICE = "service"
    FAQ = "faq"
    CONTACT = "contact"
    OTHER = "other"


#: lower value sorts first in the compiled prompt
CATEGORY_PRIORITY = {
    Category.FAQ: 0,
    Category.PRODUCT: 1,
    Category.SERVICE: 2,
    Category.CONTACT: 3,
    Category.OTHER: 4,
}


@dataclass(frozen=True, slots=True)
class ContentBlock:
    """A classified section of page text."""

    source_url: str
    category: Category
    text: str
    relevance_score: float
    depth: int = 0
    position: int = 0

    @property
    def discovery_key(self) -> Tuple[int, str, int]:
        """Discovery order that does not depend on worker scheduling."""
        return (self.depth, self.source_url, self.position)


@dataclass(frozen=True, slots=True)
class QAPair:
    """One question/answer (or bare fact) returned by a text generator."""

    question: Optional[str]
    answer: str


@dataclass(frozen=True, slots=True)
class FactUnit:
    """A prompt-ready fact derived from a ContentBlock."""

    id: str
    question: Optional[str]
    answer: str
    source_block: ContentBlock
    estimated_tokens: int
    index: int = 0

    @property
    def text(self) -> str:
        return render_fact(self.question, self.answer)

    @property
    def relevance_score(self) -> float:
        return self.source_block.relevance_score

    @property
    def category(self) -> Category:
        return self.source_block.category


@dataclass(frozen=True, slots=True)
class CompiledPrompt:
    """Terminal artifact of a run."""

    text: str
    included_fact_unit_ids: Tuple[str, ...]
    total_tokens: int
    truncated: bool
    skipped_fact_unit_ids: Tuple[str, ...] = ()


PROMPT_SEPARATOR = "\n\n"


def render_fact(question: Optional[str], answer: str) -> str:
    """Text of one fact as it appears in the prompt."""
    if question:
        return f"Q: {question}\nA: {answer}"
    return answer
