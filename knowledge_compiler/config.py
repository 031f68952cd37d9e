# === FILE: knowledge_compiler/config.py ===
"""
Loading and validation of the compiler configuration.
The schema is described with Pydantic; files may be YAML or JSON.
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class CompilerConfig(BaseModel):
    """Configuration of one knowledge-compilation run."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    # seed & scope
    seed_url: Optional[str] = Field(None, description="Absolute or bare-host URL of the site.")
    allow_subdomains: bool = Field(False, description="Treat subdomains of the seed domain as in scope.")
    respect_robots: bool = Field(True, description="Honour robots.txt Disallow and Crawl-delay.")
    use_sitemap: bool = Field(False, description="Seed the frontier from /sitemap.xml.")

    # crawl bounds
    max_depth: int = Field(3, ge=0, description="Maximum link depth from the seed.")
    max_pages: int = Field(200, ge=1, description="Hard limit on fetched pages.")
    concurrency: int = Field(4, ge=1, le=32, description="Number of crawl workers.")
    politeness_delay: float = Field(0.5, ge=0, description="Minimum delay between requests to one host (s).")
    run_timeout: float = Field(300.0, gt=0, description="Deadline of the whole run (s).")
    synthesis_grace: float = Field(
        30.0, ge=0, description="Time left to synthesize already crawled blocks after a cancellation (s)."
    )

    # fetching
    timeout: float = Field(10.0, gt=0, description="Per-request timeout (s).")
    user_agent: str = Field("KnowledgeCompilerBot/1.0", min_length=1, description="User-Agent header.")
    retry_times: int = Field(2, ge=0, description="Retries for timeouts and network errors.")
    backoff_base: float = Field(0.5, ge=0, description="Base of the exponential retry backoff (s).")
    max_response_bytes: int = Field(5 * 1024 * 1024, ge=1, description="Response body ceiling.")

    # deduplication
    dedup_mode: Literal["exact", "near"] = Field("exact", description="Duplicate detection mode.")
    similarity_threshold: float = Field(0.9, gt=0, le=1, description="Jaccard threshold (near mode).")
    shingle_size: int = Field(5, ge=1, description="Words per shingle (near mode).")
    dedup_window: int = Field(256, ge=1, description="Recent entries compared against (near mode).")
    fingerprint_cache: Optional[Path] = Field(None, description="JSON file remembering boilerplate.")

    # classification
    min_segment_chars: int = Field(20, ge=0, description="Shorter segments are noise.")
    max_block_chars: int = Field(2000, ge=100, description="Longer segments are split at sentences.")
    min_category_score: float = Field(0.1, ge=0, le=1, description="Score below which a block is 'other'.")

    # synthesis & assembly
    generator: Literal["openai", "extractive"] = Field("openai", description="Q&A generator backend.")
    openai_model: str = Field("gpt-4o-mini", min_length=1, description="Chat model for the openai generator.")
    generation_concurrency: int = Field(4, ge=1, le=32, description="Concurrent generation requests.")
    generation_cache: Optional[Path] = Field(None, description="JSON file caching generator responses.")
    tokenizer_encoding: str = Field("cl100k_base", min_length=1, description="tiktoken encoding name.")
    token_ceiling: int = Field(2000, ge=0, description="Hard token budget of the compiled prompt.")

    @field_validator("seed_url", mode="before")
    def _strip_seed(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @model_validator(mode="after")
    def _check_block_bounds(self) -> CompilerConfig:
        if self.max_block_chars < self.min_segment_chars:
            raise ValueError("max_block_chars must not be smaller than min_segment_chars")
        return self


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of YAML must be a mapping, got {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of JSON must be a mapping, got {type(data).__name__}")
    return data


def load_config(path: Union[str, Path, None], **overrides: Any) -> CompilerConfig:
    """
    Read a YAML or JSON file and return a validated CompilerConfig.
    Keyword *overrides* whose value is not None replace file values.
    Raises FileNotFoundError when the file (or the default one) is missing.
    """
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(DEFAULT_CONFIG_PATH))
        path_obj = DEFAULT_CONFIG_PATH
    else:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path_obj)
    elif suffix == ".json":
        data = _read_json(path_obj)
    else:
        raise ValueError(f"Unsupported config format: {suffix}")

    data.update({k: v for k, v in overrides.items() if v is not None})
    return CompilerConfig(**data)


__all__ = ["CompilerConfig", "load_config", "DEFAULT_CONFIG_PATH"]
