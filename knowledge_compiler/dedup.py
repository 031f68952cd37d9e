# File: knowledge_compiler/dedup.py
"""knowledge_compiler.dedup: Content fingerprints, duplicate detection and the boilerplate cache.

Two detection modes:

* ``exact`` (default): text is normalised (case, punctuation, whitespace,
  Unicode form) and hashed with SHA-256; equal digests are duplicates.
* ``near``: additionally compares word shingles by Jaccard similarity against
  the most recently registered entries, catching boilerplate that differs by a
  timestamp or an ad slot. The result depends on registration order, so it
  must be enabled explicitly.
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from knowledge_compiler.config import CompilerConfig
from knowledge_compiler.logger import logger
from knowledge_compiler.models import ContentBlock

_PUNCT_RE = re.compile(r"[^\w\s]|_", re.UNICODE)
_WS_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lower-case, NFKC-normalise, drop punctuation and collapse whitespace."""
    text = unicodedata.normalize("NFKC", text).lower()
    text = _PUNCT_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def fingerprint(text: str) -> str:
    """Fixed-size digest of the normalised text."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def shingles(text: str, size: int) -> FrozenSet[str]:
    words = normalize_text(text).split()
    if len(words) <= size:
        return frozenset([" ".join(words)]) if words else frozenset()
    return frozenset(" ".join(words[i : i + size]) for i in range(len(words) - size + 1))


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a and not b:
        return 1.0
    union = len(a | b)
    return len(a & b) / union if union else 0.0


@dataclass(frozen=True, slots=True)
class _Recent:
    fingerprint: str
    shingles: FrozenSet[str]


class Deduplicator:
    """Registry of content fingerprints seen during one run."""

    def __init__(
        self,
        mode: str = "exact",
        *,
        similarity_threshold: float = 0.9,
        shingle_size: int = 5,
        window: int = 256,
    ) -> None:
        if mode not in ("exact", "near"):
            raise ValueError(f"Unknown dedup mode: {mode}")
        self.mode = mode
        self.similarity_threshold = similarity_threshold
        self.shingle_size = shingle_size
        self._seen: Set[str] = set()
        self._recent: Deque[_Recent] = deque(maxlen=window)

    @classmethod
    def from_config(cls, config: CompilerConfig) -> Deduplicator:
        return cls(
            config.dedup_mode,
            similarity_threshold=config.similarity_threshold,
            shingle_size=config.shingle_size,
            window=config.dedup_window,
        )

    def __len__(self) -> int:
        return len(self._seen)

    @staticmethod
    def fingerprint(text: str) -> str:
        return fingerprint(text)

    def is_duplicate(self, fp: str, text: Optional[str] = None) -> bool:
        """True if *fp* was registered, or (near mode) *text* is similar to a recent entry."""
        if fp in self._seen:
            return True
        if self.mode != "near" or text is None:
            return False
        candidate = shingles(text, self.shingle_size)
        for recent in self._recent:
            if jaccard(candidate, recent.shingles) >= self.similarity_threshold:
                logger.debug("Near-duplicate of %s", recent.fingerprint[:12])
                return True
        return False

    def register(self, fp: str, text: Optional[str] = None) -> None:
        if fp in self._seen:
            return
        self._seen.add(fp)
        if self.mode == "near" and text is not None:
            self._recent.append(_Recent(fp, shingles(text, self.shingle_size)))

    def check_and_register(self, text: str) -> Tuple[str, bool]:
        """Fingerprint *text*; return ``(fp, duplicate)`` and register it when new.

        Runs without suspension points, so concurrent workers on one event
        loop can never both keep the same content.
        """
        fp = fingerprint(text)
        if self.is_duplicate(fp, text):
            return fp, True
        self.register(fp, text)
        return fp, False


def retain_unique_blocks(
    blocks: Iterable[ContentBlock], deduplicator: Deduplicator
) -> Tuple[List[ContentBlock], List[str]]:
    """Drop blocks whose text was already kept, walking them in discovery order.

    Returns the kept blocks (in discovery order) and the fingerprints of the
    dropped ones.
    """
    kept: List[ContentBlock] = []
    dropped: List[str] = []
    for block in sorted(blocks, key=lambda b: b.discovery_key):
        fp, duplicate = deduplicator.check_and_register(block.text)
        if duplicate:
            dropped.append(fp)
        else:
            kept.append(block)
    if dropped:
        logger.debug("Dropped %d duplicate blocks", len(dropped))
    return kept, dropped


class FingerprintCache:
    """JSON file mapping ``domain -> {fingerprint: last_seen_run_id}``.

    Holds the fingerprints of boilerplate blocks (text repeated across pages)
    so a later run on the same domain can skip them outright.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._data: Dict[str, Dict[str, str]] = {}
        self.load()

    def load(self) -> None:
        if not self.path.is_file():
            self._data = {}
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable fingerprint cache %s: %s", self.path, exc)
            self._data = {}
            return
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed fingerprint cache %s", self.path)
            self._data = {}
            return
        self._data = {
            str(domain): {str(fp): str(run) for fp, run in entries.items()}
            for domain, entries in raw.items()
            if isinstance(entries, dict)
        }

    def known(self, domain: str) -> Set[str]:
        return set(self._data.get(domain, {}))

    def last_seen(self, domain: str, fp: str) -> Optional[str]:
        return self._data.get(domain, {}).get(fp)

    def record(self, domain: str, fingerprints: Iterable[str], run_id: str) -> None:
        entries = self._data.setdefault(domain, {})
        for fp in fingerprints:
            entries[fp] = run_id

    def save(self) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        return self.path
