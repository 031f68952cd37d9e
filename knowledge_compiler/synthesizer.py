# File: knowledge_compiler/synthesizer.py
"""knowledge_compiler.synthesizer: Turns classified blocks into prompt-ready fact units.

The synthesizer itself is a thin adapter. Language generation is delegated to
a :class:`TextGenerator` and token accounting to a :class:`Tokenizer`, so the
rest of the pipeline stays deterministic and can be tested with stubs.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable

import openai
import tiktoken
from openai import AsyncOpenAI

from knowledge_compiler.config import CompilerConfig
from knowledge_compiler.errors import GenerationError
from knowledge_compiler.logger import logger
from knowledge_compiler.models import (
    PROMPT_SEPARATOR,
    Category,
    ContentBlock,
    FactUnit,
    QAPair,
    render_fact,
)

__all__: Sequence[str] = (
    "TextGenerator",
    "Tokenizer",
    "OpenAIGenerator",
    "ExtractiveGenerator",
    "CachingGenerator",
    "TiktokenTokenizer",
    "Synthesizer",
    "build_generator",
    "request_key",
)


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(
        self, text: str, category_hint: Category, *, request_key: str
    ) -> List[QAPair]: ...


@runtime_checkable
class Tokenizer(Protocol):
    def count_tokens(self, text: str) -> int: ...


def request_key(block: ContentBlock) -> str:
    """Stable idempotency key: identical blocks always produce the same key."""
    payload = f"{block.category.value}\x1f{block.text}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# --------------------------------------------------------------------------- #
# Tokenizer                                                                   #
# --------------------------------------------------------------------------- #


class TiktokenTokenizer:
    """Token counter backed by a tiktoken encoding (loaded on first use)."""

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self.encoding_name = encoding_name
        self._encoding: Optional[tiktoken.Encoding] = None

    def count_tokens(self, text: str) -> int:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return len(self._encoding.encode(text, disallowed_special=()))


# --------------------------------------------------------------------------- #
# Generators                                                                  #
# --------------------------------------------------------------------------- #

SYSTEM_PROMPT = """You extract knowledge for a customer-facing voice agent.
Rules:
1. Use ONLY facts stated in the provided website text. Never invent details.
2. Produce short question/answer pairs a caller might ask, answered in one or two sentences.
3. When the text states a fact that does not fit a question, emit it with "question": null.
4. Skip navigation, legal boilerplate and marketing filler.
Return ONLY JSON of the form {"facts": [{"question": "...", "answer": "..."}]}."""

USER_TEMPLATE = """Section category: {category}

Website text:
{text}"""


def _parse_facts(raw: str) -> List[QAPair]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", raw, re.S)
        if not match:
            raise GenerationError(f"generator returned no JSON object: {raw[:80]!r}")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise GenerationError(f"generator returned malformed JSON: {exc}") from exc

    facts = data.get("facts") if isinstance(data, dict) else data
    if not isinstance(facts, list):
        raise GenerationError("generator JSON has no 'facts' list")

    pairs: List[QAPair] = []
    for item in facts:
        if not isinstance(item, dict):
            continue
        answer = item.get("answer")
        question = item.get("question")
        if not isinstance(answer, str) or not answer.strip():
            continue
        pairs.append(
            QAPair(
                question=question.strip() if isinstance(question, str) and question.strip() else None,
                answer=answer.strip(),
            )
        )
    return pairs


class OpenAIGenerator:
    """Q&A generation through the OpenAI chat completions API."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        *,
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
    ) -> None:
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def generate(
        self, text: str, category_hint: Category, *, request_key: str
    ) -> List[QAPair]:
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": USER_TEMPLATE.format(category=category_hint.value, text=text),
                    },
                ],
                response_format={"type": "json_object"},
                temperature=0,
                seed=int(request_key[:8], 16),
                user=request_key[:32],
            )
        except openai.OpenAIError as exc:
            raise GenerationError(f"OpenAI request failed: {exc}") from exc
        if not resp.choices:
            raise GenerationError("OpenAI returned no choices")
        return _parse_facts(resp.choices[0].message.content or "")


_QA_RE = re.compile(r"(?:^|\s)Q\s*[:.]\s*(.+?)\s+A\s*[:.]\s*(.+?)(?=\s+Q\s*[:.]|$)", re.S)
_QUESTION_RE = re.compile(r"([^.!?]*\?)\s*([^?]+?)(?=(?:[^.!?]*\?)|$)")


class ExtractiveGenerator:
    """Deterministic offline generator.

    Pairs explicit ``Q:``/``A:`` markers or question sentences with the text
    that follows; everything else becomes one bare fact holding the block text.
    """

    async def generate(
        self, text: str, category_hint: Category, *, request_key: str
    ) -> List[QAPair]:
        text = text.strip()
        if not text:
            return []
        pairs = [QAPair(q.strip(), a.strip()) for q, a in _QA_RE.findall(text) if a.strip()]
        if not pairs and category_hint is Category.FAQ:
            pairs = [
                QAPair(q.strip(), a.strip())
                for q, a in _QUESTION_RE.findall(text)
                if q.strip() and a.strip()
            ]
        return pairs or [QAPair(None, text)]


def _valid_entries(data: Any) -> Dict[str, List[Dict[str, Any]]]:
    """Keep only cache entries shaped as lists of {"question": str|None, "answer": str}."""
    if not isinstance(data, dict):
        return {}
    valid: Dict[str, List[Dict[str, Any]]] = {}
    for key, items in data.items():
        if not isinstance(key, str) or not isinstance(items, list):
            continue
        if all(
            isinstance(item, dict)
            and isinstance(item.get("answer"), str)
            and (item.get("question") is None or isinstance(item.get("question"), str))
            for item in items
        ):
            valid[key] = items
    return valid


class CachingGenerator:
    """Wraps a generator with a response cache keyed by request key.

    With *path* the cache persists as JSON between runs, so a retried or
    repeated request always yields identical phrasing.
    """

    def __init__(self, inner: TextGenerator, path: Union[str, Path, None] = None) -> None:
        self.inner = inner
        self.path = Path(path) if path is not None else None
        self._cache: Dict[str, List[Dict[str, Any]]] = {}
        if self.path is not None and self.path.is_file():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                logger.warning("Ignoring unreadable generation cache %s: %s", self.path, exc)
            else:
                self._cache = _valid_entries(data)
                if isinstance(data, dict) and len(self._cache) < len(data):
                    logger.warning(
                        "Ignoring %d malformed entries in generation cache %s",
                        len(data) - len(self._cache), self.path,
                    )

    async def generate(
        self, text: str, category_hint: Category, *, request_key: str
    ) -> List[QAPair]:
        cached = self._cache.get(request_key)
        if cached is not None:
            logger.debug("Generation cache hit %s", request_key[:12])
            return [QAPair(item.get("question"), item["answer"]) for item in cached]
        pairs = await self.inner.generate(text, category_hint, request_key=request_key)
        self._cache[request_key] = [{"question": p.question, "answer": p.answer} for p in pairs]
        return pairs

    def save(self) -> Optional[Path]:
        if self.path is None:
            return None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._cache, ensure_ascii=False, indent=2), encoding="utf-8")
        return self.path


def build_generator(config: CompilerConfig) -> TextGenerator:
    """Generator selected by ``config.generator``, cached when ``generation_cache`` is set."""
    generator: TextGenerator
    if config.generator == "openai":
        generator = OpenAIGenerator(config.openai_model)
    else:
        generator = ExtractiveGenerator()
    if config.generation_cache is not None:
        generator = CachingGenerator(generator, config.generation_cache)
    return generator


# --------------------------------------------------------------------------- #
# Synthesizer                                                                 #
# --------------------------------------------------------------------------- #


class Synthesizer:
    """Calls the generator once per block and wraps the answers into FactUnits."""

    def __init__(
        self,
        generator: TextGenerator,
        tokenizer: Tokenizer,
        *,
        concurrency: int = 4,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.generator = generator
        self.tokenizer = tokenizer
        self.cancel_event = cancel_event
        self.failures = 0
        self.skipped = 0
        self._semaphore = asyncio.Semaphore(concurrency)
        self._separator_tokens: Optional[int] = None

    def _estimate(self, text: str) -> int:
        if self._separator_tokens is None:
            self._separator_tokens = self.tokenizer.count_tokens(PROMPT_SEPARATOR)
        return self.tokenizer.count_tokens(text) + self._separator_tokens

    async def synthesize(self, block: ContentBlock) -> List[FactUnit]:
        """FactUnits for one block; an empty list if generation failed."""
        key = request_key(block)
        try:
            pairs = await self.generator.generate(block.text, block.category, request_key=key)
        except (GenerationError, openai.OpenAIError) as exc:
            self.failures += 1
            logger.warning("Generation failed for block %d of %s: %s", block.position, block.source_url, exc)
            return []
        except Exception:
            self.failures += 1
            logger.exception("Generator crashed on block %d of %s", block.position, block.source_url)
            return []

        units: List[FactUnit] = []
        for index, pair in enumerate(pairs):
            answer = pair.answer.strip()
            if not answer:
                continue
            question = (pair.question or "").strip() or None
            units.append(
                FactUnit(
                    id=f"{key[:12]}-{index}",
                    question=question,
                    answer=answer,
                    source_block=block,
                    estimated_tokens=self._estimate(render_fact(question, answer)),
                    index=index,
                )
            )
        return units

    async def _bounded(self, block: ContentBlock) -> List[FactUnit]:
        async with self._semaphore:
            if self.cancel_event is not None and self.cancel_event.is_set():
                self.skipped += 1
                return []
            return await self.synthesize(block)

    async def synthesize_all(self, blocks: Sequence[ContentBlock]) -> List[FactUnit]:
        results = await asyncio.gather(*(self._bounded(b) for b in blocks))
        units = [unit for group in results for unit in group]
        logger.info(
            "Synthesized %d fact units from %d blocks (%d failed, %d skipped)",
            len(units), len(blocks), self.failures, self.skipped,
        )
        if isinstance(self.generator, CachingGenerator):
            self.generator.save()
        return units
