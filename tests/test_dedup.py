# File: tests/test_dedup.py
import json

import pytest

from knowledge_compiler.dedup import (
    Deduplicator,
    FingerprintCache,
    fingerprint,
    jaccard,
    normalize_text,
    retain_unique_blocks,
    shingles,
)

LONG_TEXT = " ".join(f"word{i}" for i in range(100))


def test_normalize_text():
    assert normalize_text("  Hello,\tWORLD!!  ") == "hello world"
    assert normalize_text("ﬁne") == "fine"


def test_fingerprint_ignores_case_punctuation_and_spacing():
    assert fingerprint("Hello, world") == fingerprint("hello   WORLD!")
    assert fingerprint("Hello world") != fingerprint("Hello there world")
    assert len(fingerprint("x")) == 64


def test_check_and_register():
    dedup = Deduplicator()
    fp, duplicate = dedup.check_and_register("Same content here")
    assert not duplicate
    fp2, duplicate = dedup.check_and_register("same content, here.")
    assert duplicate
    assert fp == fp2
    assert len(dedup) == 1


def test_register_then_is_duplicate():
    dedup = Deduplicator()
    fp = dedup.fingerprint("Footer text")
    assert not dedup.is_duplicate(fp)
    dedup.register(fp)
    assert dedup.is_duplicate(fp)


def test_near_mode_catches_small_edits():
    edited = LONG_TEXT.rsplit(" ", 1)[0] + " changed"
    exact = Deduplicator("exact")
    exact.check_and_register(LONG_TEXT)
    assert not exact.check_and_register(edited)[1]

    near = Deduplicator("near", similarity_threshold=0.9, shingle_size=5)
    near.check_and_register(LONG_TEXT)
    assert near.check_and_register(edited)[1]
    assert not near.check_and_register("completely different words in this one")[1]


def test_near_mode_window_is_bounded():
    near = Deduplicator("near", window=1)
    near.check_and_register(LONG_TEXT)
    near.check_and_register("some other unrelated text goes here now")
    edited = LONG_TEXT.rsplit(" ", 1)[0] + " changed"
    assert not near.check_and_register(edited)[1]


def test_unknown_mode():
    with pytest.raises(ValueError):
        Deduplicator("fuzzy")


def test_shingles_and_jaccard():
    assert shingles("a b c", 5) == frozenset({"a b c"})
    assert shingles("", 5) == frozenset()
    assert len(shingles("a b c d e f", 5)) == 2
    assert jaccard(frozenset(), frozenset()) == 1.0
    assert jaccard(frozenset({"x"}), frozenset({"y"})) == 0.0


def test_retain_unique_blocks_keeps_first_in_discovery_order(make_block):
    footer_deep = make_block("Shared footer text", url="http://example.com/b", depth=1, position=3)
    footer_home = make_block("Shared footer text", url="http://example.com/", depth=0, position=2)
    intro = make_block("Intro", url="http://example.com/", depth=0, position=0)

    kept, dropped = retain_unique_blocks([footer_deep, intro, footer_home], Deduplicator())
    assert kept == [intro, footer_home]
    assert dropped == [fingerprint("Shared footer text")]


def test_identical_pages_yield_one_block_set(make_block):
    page_a = [make_block("Alpha text", url="http://e.com/a")]
    page_b = [make_block("Alpha text", url="http://e.com/b")]
    kept, _ = retain_unique_blocks(page_a + page_b, Deduplicator())
    assert [b.source_url for b in kept] == ["http://e.com/a"]


def test_fingerprint_cache_round_trip(tmp_path):
    path = tmp_path / "cache" / "fps.json"
    cache = FingerprintCache(path)
    assert cache.known("example.com") == set()
    cache.record("example.com", ["aa", "bb"], "run1")
    cache.record("example.com", ["bb"], "run2")
    cache.save()

    reloaded = FingerprintCache(path)
    assert reloaded.known("example.com") == {"aa", "bb"}
    assert reloaded.last_seen("example.com", "bb") == "run2"
    assert reloaded.known("other.com") == set()
    assert json.loads(path.read_text(encoding="utf-8"))["example.com"]["aa"] == "run1"


@pytest.mark.parametrize("content", ["{broken", "[1, 2, 3]"])
def test_fingerprint_cache_ignores_bad_files(tmp_path, content):
    path = tmp_path / "fps.json"
    path.write_text(content, encoding="utf-8")
    assert FingerprintCache(path).known("example.com") == set()
