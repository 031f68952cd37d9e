# File: knowledge_compiler/classifier.py
"""knowledge_compiler.classifier: Keyword-density classification of page sections."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from knowledge_compiler.config import CompilerConfig
from knowledge_compiler.crawler.models import PageRecord
from knowledge_compiler.models import CATEGORY_PRIORITY, Category, ContentBlock

__all__: Sequence[str] = ("Classifier", "CATEGORY_PATTERNS", "split_sentences")

_WORD_RE = re.compile(r"[^\W_]+(?:['’][^\W_]+)*", re.UNICODE)
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def _words(*words: str) -> Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE)


#: marker patterns per category; each match counts as one hit
CATEGORY_PATTERNS: Dict[Category, Tuple[Pattern[str], ...]] = {
    Category.PRODUCT: (
        _words(
            r"products?", r"prices?", r"pricing", r"buy", r"purchase", r"cart", r"shop",
            r"order(?:s|ing)?", r"shipping", r"delivery", r"warranty", r"in stock",
            r"catalog(?:ue)?", r"models?", r"sizes?", r"colou?rs?", r"discount", r"sale",
        ),
        re.compile(r"(?:[$€£¥]\s?\d[\d,.]*|\b\d[\d,.]*\s?(?:usd|eur|gbp)\b)", re.IGNORECASE),
    ),
    Category.SERVICE: (
        _words(
            r"services?", r"appointments?", r"book(?:ing)?", r"consult(?:ation|ing)?",
            r"repairs?", r"install(?:ation)?", r"maintenance", r"support", r"plans?",
            r"subscriptions?", r"packages?", r"clients?", r"solutions?", r"schedule",
            r"treatments?", r"sessions?",
        ),
    ),
    Category.FAQ: (
        re.compile(r"(?:^|\s)(?:q|a)\s*[:.]\s", re.IGNORECASE),
        re.compile(r"\?"),
        _words(r"faqs?", r"frequently asked", r"questions?", r"answers?"),
        re.compile(
            r"(?:^|[.!?]\s+)(?:how|what|when|where|why|who|which|can|do|does|is|are|will|should)\s",
            re.IGNORECASE,
        ),
    ),
    Category.CONTACT: (
        re.compile(r"(?:\+?\d[\d\s().-]{7,}\d)"),
        re.compile(r"\b[\w.+-]+@[\w-]+(?:\.[\w-]+)+\b"),
        re.compile(
            r"\b\d{1,5}\s+(?:[A-Z][\w.]*\s+){1,4}"
            r"(?:street|st|avenue|ave|road|rd|boulevard|blvd|lane|ln|drive|dr|suite|way)\b\.?",
            re.IGNORECASE,
        ),
        _words(
            r"contact(?: us)?", r"call us", r"email us", r"phone", r"address", r"opening hours",
            r"hours", r"open", r"visit us", r"location", r"directions", r"fax",
        ),
    ),
}

#: normalised score = min(1, hits / words * DENSITY_SCALE)
DENSITY_SCALE = 5.0


def split_sentences(text: str, max_chars: int) -> List[str]:
    """Split *text* into chunks of at most *max_chars*, cutting at sentence ends where possible."""
    if len(text) <= max_chars:
        return [text]
    chunks: List[str] = []
    current = ""
    for sentence in _SENTENCE_RE.split(text):
        while len(sentence) > max_chars:
            cut = sentence.rfind(" ", 0, max_chars)
            cut = cut if cut > 0 else max_chars
            head, sentence = sentence[:cut].strip(), sentence[cut:].strip()
            if current:
                chunks.append(current)
                current = ""
            chunks.append(head)
        if not sentence:
            continue
        if current and len(current) + 1 + len(sentence) > max_chars:
            chunks.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence
    if current:
        chunks.append(current)
    return chunks


class Classifier:
    """Split a page into segments and tag each one with a category."""

    def __init__(
        self,
        *,
        min_segment_chars: int = 20,
        max_block_chars: int = 2000,
        min_category_score: float = 0.1,
        patterns: Optional[Dict[Category, Tuple[Pattern[str], ...]]] = None,
    ) -> None:
        self.min_segment_chars = min_segment_chars
        self.max_block_chars = max_block_chars
        self.min_category_score = min_category_score
        self.patterns = patterns or CATEGORY_PATTERNS

    @classmethod
    def from_config(cls, config: CompilerConfig) -> Classifier:
        return cls(
            min_segment_chars=config.min_segment_chars,
            max_block_chars=config.max_block_chars,
            min_category_score=config.min_category_score,
        )

    def segments(self, page: PageRecord) -> List[str]:
        raw = list(page.sections) if page.sections else [page.text_content]
        out: List[str] = []
        for section in raw:
            section = section.strip()
            if not section:
                continue
            for chunk in split_sentences(section, self.max_block_chars):
                if len(chunk) >= self.min_segment_chars:
                    out.append(chunk)
        return out

    def score(self, text: str) -> Dict[Category, float]:
        """Normalised keyword density of *text* for every scored category, in ``[0, 1]``."""
        word_count = len(_WORD_RE.findall(text))
        scores: Dict[Category, float] = {}
        for category, patterns in self.patterns.items():
            if not word_count:
                scores[category] = 0.0
                continue
            hits = sum(len(p.findall(text)) for p in patterns)
            scores[category] = round(min(1.0, hits / word_count * DENSITY_SCALE), 6)
        return scores

    def categorize(self, text: str) -> Tuple[Category, float]:
        scores = self.score(text)
        if not scores:
            return Category.OTHER, 0.0
        category, best = min(scores.items(), key=lambda kv: (-kv[1], CATEGORY_PRIORITY[kv[0]]))
        if best < self.min_category_score or best <= 0.0:
            return Category.OTHER, max(0.0, best)
        return category, best

    def classify(self, page: PageRecord) -> List[ContentBlock]:
        blocks: List[ContentBlock] = []
        for position, segment in enumerate(self.segments(page)):
            category, relevance = self.categorize(segment)
            blocks.append(
                ContentBlock(
                    source_url=page.url,
                    category=category,
                    text=segment,
                    relevance_score=relevance,
                    depth=page.depth,
                    position=position,
                )
            )
        return blocks
