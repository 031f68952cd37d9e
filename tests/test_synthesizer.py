# File: tests/test_synthesizer.py
from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import openai
import pytest

from knowledge_compiler.errors import GenerationError
from knowledge_compiler.models import Category, QAPair
from knowledge_compiler.synthesizer import (
    CachingGenerator,
    ExtractiveGenerator,
    OpenAIGenerator,
    Synthesizer,
    build_generator,
    request_key,
)


class FixedGenerator:
    def __init__(self, pairs):
        self.pairs = pairs

    async def generate(self, text, category_hint, *, request_key):
        return list(self.pairs)


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_request_key_is_stable(make_block):
    a = make_block("Free shipping over $50", Category.PRODUCT)
    b = make_block("Free shipping over $50", Category.PRODUCT, url="http://other.example/", position=4)
    c = make_block("Free shipping over $50", Category.SERVICE)
    assert request_key(a) == request_key(b)
    assert request_key(a) != request_key(c)


@pytest.mark.asyncio()
async def test_units_built_from_pairs(make_block, word_tokenizer):
    block = make_block("Returns accepted within 30 days", Category.FAQ, 0.8)
    generator = FixedGenerator([QAPair("Can I return items?", "Yes, within 30 days."), QAPair(None, "No fee.")])
    units = await Synthesizer(generator, word_tokenizer).synthesize(block)

    key = request_key(block)
    assert [u.id for u in units] == [f"{key[:12]}-0", f"{key[:12]}-1"]
    assert units[0].text == "Q: Can I return items?\nA: Yes, within 30 days."
    assert units[0].estimated_tokens == 10
    assert units[1].text == "No fee."
    assert units[1].estimated_tokens == 2
    assert all(u.source_block is block for u in units)
    assert units[0].relevance_score == 0.8
    assert units[0].category is Category.FAQ


@pytest.mark.asyncio()
async def test_empty_answers_dropped(make_block, word_tokenizer):
    generator = FixedGenerator([QAPair("Q?", "   "), QAPair(" ", "Kept fact")])
    units = await Synthesizer(generator, word_tokenizer).synthesize(make_block())
    assert len(units) == 1
    assert units[0].question is None
    assert units[0].answer == "Kept fact"
    assert units[0].index == 1


@pytest.mark.asyncio()
async def test_generation_failure_is_contained(make_block, make_generator, word_tokenizer):
    generator = make_generator(fail_on=["boom"])
    synthesizer = Synthesizer(generator, word_tokenizer)
    blocks = [make_block("fine block one", position=0), make_block("boom block", position=1),
              make_block("fine block two", position=2)]
    units = await synthesizer.synthesize_all(blocks)
    assert [u.answer for u in units] == ["fine block one", "fine block two"]
    assert synthesizer.failures == 1


class CrashingGenerator:
    async def generate(self, text, category_hint, *, request_key):
        if "crash" in text:
            raise KeyError("choices")
        return [QAPair(None, text)]


@pytest.mark.asyncio()
async def test_unexpected_generator_error_is_contained(make_block, word_tokenizer):
    synthesizer = Synthesizer(CrashingGenerator(), word_tokenizer)
    blocks = [make_block("first good block", position=0), make_block("crash here", position=1),
              make_block("second good block", position=2)]
    units = await synthesizer.synthesize_all(blocks)
    assert [u.answer for u in units] == ["first good block", "second good block"]
    assert synthesizer.failures == 1


@pytest.mark.asyncio()
async def test_no_requests_after_cancellation(make_block, stub_generator, word_tokenizer):
    cancel = asyncio.Event()
    cancel.set()
    synthesizer = Synthesizer(stub_generator, word_tokenizer, cancel_event=cancel)
    units = await synthesizer.synthesize_all([make_block("a block"), make_block("another block")])
    assert units == []
    assert stub_generator.calls == []
    assert synthesizer.skipped == 2


@pytest.mark.asyncio()
async def test_concurrency_is_bounded(make_block, make_generator, word_tokenizer):
    generator = make_generator(delay=0.02)
    synthesizer = Synthesizer(generator, word_tokenizer, concurrency=2)
    blocks = [make_block(f"block number {i}", position=i) for i in range(8)]
    units = await synthesizer.synthesize_all(blocks)
    assert len(units) == 8
    assert generator.max_active == 2


@pytest.mark.asyncio()
async def test_extractive_qa_markers():
    text = "Q: Do you ship abroad? A: Yes, to 30 countries. Q: Can I return items? A: Within 30 days."
    pairs = await ExtractiveGenerator().generate(text, Category.FAQ, request_key="k")
    assert pairs == [
        QAPair("Do you ship abroad?", "Yes, to 30 countries."),
        QAPair("Can I return items?", "Within 30 days."),
    ]


@pytest.mark.asyncio()
async def test_extractive_question_sentences():
    text = "How long does delivery take? Usually three days. Do you offer refunds? Yes, within 30 days."
    pairs = await ExtractiveGenerator().generate(text, Category.FAQ, request_key="k")
    assert pairs == [
        QAPair("How long does delivery take?", "Usually three days."),
        QAPair("Do you offer refunds?", "Yes, within 30 days."),
    ]


@pytest.mark.asyncio()
async def test_extractive_plain_text_and_empty():
    generator = ExtractiveGenerator()
    assert await generator.generate("Open daily 9 to 5.", Category.CONTACT, request_key="k") == [
        QAPair(None, "Open daily 9 to 5.")
    ]
    assert await generator.generate("   ", Category.OTHER, request_key="k") == []


@pytest.mark.asyncio()
async def test_openai_generator_request_and_parsing():
    content = json.dumps({"facts": [
        {"question": "Do you deliver?", "answer": "Yes, nationwide."},
        {"question": None, "answer": "Founded in 1999."},
        {"question": "Empty?", "answer": ""},
    ]})
    completions = FakeCompletions(content=content)
    generator = OpenAIGenerator("test-model", client=fake_client(completions))

    pairs = await generator.generate("We deliver nationwide.", Category.SERVICE, request_key="ab" * 32)
    assert pairs == [QAPair("Do you deliver?", "Yes, nationwide."), QAPair(None, "Founded in 1999.")]
    assert completions.kwargs["model"] == "test-model"
    assert completions.kwargs["temperature"] == 0
    assert completions.kwargs["response_format"] == {"type": "json_object"}
    assert completions.kwargs["seed"] == int("abababab", 16)
    assert "We deliver nationwide." in completions.kwargs["messages"][1]["content"]


@pytest.mark.asyncio()
@pytest.mark.parametrize("content", ["not json", '{"answers": []}'])
async def test_openai_generator_malformed_output(content):
    generator = OpenAIGenerator(client=fake_client(FakeCompletions(content=content)))
    with pytest.raises(GenerationError):
        await generator.generate("text", Category.OTHER, request_key="0" * 64)


@pytest.mark.asyncio()
async def test_openai_errors_become_generation_errors():
    completions = FakeCompletions(error=openai.OpenAIError("service unavailable"))
    generator = OpenAIGenerator(client=fake_client(completions))
    with pytest.raises(GenerationError):
        await generator.generate("text", Category.OTHER, request_key="0" * 64)


@pytest.mark.asyncio()
async def test_caching_generator_persists(tmp_path, stub_generator):
    path = tmp_path / "gen.json"
    cached = CachingGenerator(stub_generator, path)
    first = await cached.generate("Same text", Category.OTHER, request_key="key1")
    second = await cached.generate("Same text", Category.OTHER, request_key="key1")
    assert first == second
    assert stub_generator.calls == ["key1"]
    cached.save()

    reloaded = CachingGenerator(stub_generator, path)
    assert await reloaded.generate("Same text", Category.OTHER, request_key="key1") == first
    assert stub_generator.calls == ["key1"]


@pytest.mark.asyncio()
async def test_caching_generator_ignores_malformed_entries(tmp_path, stub_generator):
    path = tmp_path / "gen.json"
    path.write_text(json.dumps({
        "missing-answer": [{"question": "q"}],
        "not-a-list": "text",
        "good": [{"question": None, "answer": "Kept answer"}],
    }), encoding="utf-8")
    cached = CachingGenerator(stub_generator, path)

    assert await cached.generate("Fresh text", Category.OTHER, request_key="missing-answer") == [
        QAPair(None, "Fresh text")
    ]
    assert await cached.generate("Other", Category.OTHER, request_key="good") == [QAPair(None, "Kept answer")]
    assert stub_generator.calls == ["missing-answer"]


def test_build_generator(make_config, tmp_path, monkeypatch):
    assert isinstance(build_generator(make_config(generator="extractive")), ExtractiveGenerator)

    cached = build_generator(make_config(generator="extractive", generation_cache=tmp_path / "c.json"))
    assert isinstance(cached, CachingGenerator)
    assert isinstance(cached.inner, ExtractiveGenerator)

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    generator = build_generator(make_config(generator="openai", openai_model="gpt-test"))
    assert isinstance(generator, OpenAIGenerator)
    assert generator.model == "gpt-test"
