# File: knowledge_compiler/aggregator.py
"""knowledge_compiler.aggregator: Run metrics and the final compilation report."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional, TypedDict

from knowledge_compiler.models import CompiledPrompt, FactUnit

Status = Literal["completed", "cancelled", "empty"]


class FactUnitInfo(TypedDict):
    """Serialized form of a FactUnit."""

    id: str
    question: Optional[str]
    answer: str
    category: str
    relevance_score: float
    source_url: str
    estimated_tokens: int


@dataclass(slots=True)
class RunMetrics:
    """Counters collected over one run."""

    pages_visited: int = 0
    pages_skipped: int = 0
    blocks_classified: int = 0
    duplicates_dropped: int = 0
    urls_rejected: Counter[str] = field(default_factory=Counter)
    generation_failures: int = 0
    fact_units: int = 0
    duration: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["urls_rejected"] = dict(sorted(self.urls_rejected.items()))
        data["duration"] = round(self.duration, 3)
        return data


def fact_unit_info(unit: FactUnit) -> FactUnitInfo:
    return {
        "id": unit.id,
        "question": unit.question,
        "answer": unit.answer,
        "category": unit.category.value,
        "relevance_score": unit.relevance_score,
        "source_url": unit.source_block.source_url,
        "estimated_tokens": unit.estimated_tokens,
    }


@dataclass(slots=True)
class CompilationReport:
    """Everything a run produced: the prompt, the units behind it and the metrics."""

    run_id: str
    seed_url: Optional[str]
    prompt: CompiledPrompt
    fact_units: List[FactUnit] = field(default_factory=list)
    metrics: RunMetrics = field(default_factory=RunMetrics)
    cancelled: bool = False

    @property
    def status(self) -> Status:
        if not self.fact_units:
            return "empty"
        return "cancelled" if self.cancelled else "completed"

    def as_dict(self) -> Dict[str, Any]:
        included = set(self.prompt.included_fact_unit_ids)
        return {
            "run_id": self.run_id,
            "seed_url": self.seed_url,
            "status": self.status,
            "prompt": {
                "text": self.prompt.text,
                "total_tokens": self.prompt.total_tokens,
                "truncated": self.prompt.truncated,
                "included_fact_unit_ids": list(self.prompt.included_fact_unit_ids),
                "skipped_fact_unit_ids": list(self.prompt.skipped_fact_unit_ids),
            },
            "fact_units": [
                dict(fact_unit_info(u), included=u.id in included) for u in self.fact_units
            ],
            "metrics": self.metrics.as_dict(),
        }

    def json(self, *, pretty: bool = False) -> str:
        """JSON form of the report."""
        return json.dumps(self.as_dict(), ensure_ascii=False, indent=2 if pretty else None)
