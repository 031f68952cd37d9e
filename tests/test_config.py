# File: tests/test_config.py
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from knowledge_compiler.config import CompilerConfig, load_config

REPO_DEFAULT = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"


def write_file(tmp_path: Path, content: str, suffix: str) -> Path:
    path = tmp_path / f"config{suffix}"
    path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.parametrize(
    "content,suffix,expect_exc",
    [
        ("seed_url: http://example.com\nmax_depth: 2\n", ".yaml", None),
        (json.dumps({"seed_url": "http://example.com", "max_depth": 2}), ".json", None),
        ("max_depth: -1\n", ".yaml", ValidationError),
        ("unknown_option: 1\n", ".yaml", ValidationError),
        ("not: a: mapping", ".yaml", ValueError),
        ("- a\n- b\n", ".yaml", TypeError),
        ("{not json", ".json", ValueError),
        ("[1, 2]", ".json", TypeError),
        ("seed_url = 'x'", ".toml", ValueError),
    ],
)
def test_load_config_variants(tmp_path, content, suffix, expect_exc):
    cfg_path = write_file(tmp_path, content, suffix)
    if expect_exc:
        with pytest.raises(expect_exc):
            load_config(cfg_path)
    else:
        cfg = load_config(cfg_path)
        assert isinstance(cfg, CompilerConfig)
        assert cfg.seed_url == "http://example.com"
        assert cfg.max_depth == 2


def test_load_config_default_missing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        load_config(None)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_load_config_default_path(tmp_path, monkeypatch):
    (tmp_path / "configs").mkdir()
    (tmp_path / "configs" / "default.yaml").write_text("token_ceiling: 500\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    assert load_config(None).token_ceiling == 500


def test_overrides_skip_none(tmp_path):
    cfg_path = write_file(tmp_path, "seed_url: http://example.com\nmax_pages: 50\n", ".yaml")
    cfg = load_config(cfg_path, max_pages=5, seed_url=None)
    assert cfg.max_pages == 5
    assert cfg.seed_url == "http://example.com"


def test_shipped_default_matches_model_defaults():
    assert load_config(REPO_DEFAULT).model_dump() == CompilerConfig().model_dump()


def test_defaults():
    cfg = CompilerConfig()
    assert cfg.max_depth == 3
    assert cfg.max_pages == 200
    assert cfg.timeout == 10.0
    assert cfg.politeness_delay == 0.5
    assert cfg.retry_times == 2
    assert cfg.max_response_bytes == 5 * 1024 * 1024
    assert cfg.dedup_mode == "exact"
    assert (cfg.shingle_size, cfg.similarity_threshold, cfg.dedup_window) == (5, 0.9, 256)
    assert cfg.token_ceiling == 2000


def test_blank_seed_becomes_none():
    assert CompilerConfig(seed_url="   ").seed_url is None


@pytest.mark.parametrize(
    "field,value",
    [("max_pages", 0), ("timeout", 0), ("run_timeout", -1), ("concurrency", 33), ("token_ceiling", -1)],
)
def test_rejects_out_of_range(field, value):
    with pytest.raises(ValidationError):
        CompilerConfig(**{field: value})


def test_block_bounds_checked():
    with pytest.raises(ValidationError):
        CompilerConfig(min_segment_chars=500, max_block_chars=200)


def test_config_is_frozen():
    cfg = CompilerConfig()
    with pytest.raises(ValidationError):
        cfg.max_pages = 10
